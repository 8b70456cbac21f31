"""Storage, photo verification, alert dispatch and remote analytics, with fake transports."""
import json
import smtplib
import sqlite3
from datetime import datetime, timedelta

import pytest
import requests

from sipsafe import log_store
from sipsafe.alerts import (
    EmailSmsDispatcher,
    EmergencyContact,
    compose_alert_message,
    gateway_addresses,
    normalize_phone10,
    usable_contacts,
)
from sipsafe.drinks import DrinkEvent
from sipsafe.errors import CollaboratorError, InvalidContact
from sipsafe.remote import RemoteAnalyticsClient
from sipsafe.verification import GeminiVerifier, interpret_verdict, sanitize_model_json

NOW = datetime(2026, 10, 17, 22, 0)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def _answer(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response

    post = _answer
    get = _answer


def gemini_reply(verdict):
    return FakeResponse(payload={"candidates": [{"content": {"parts": [{"text": verdict}]}}]})


# ── log_store ──


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "sipsafe.db")
    log_store.init_db(path)
    return path


def test_profile_round_trip(db_path):
    assert log_store.get_profile(db_path, client_id="c1") is None
    contacts = [{"label": "Mom", "phone": "5551234567", "carrier": "att"}]
    log_store.save_profile(db_path, client_id="c1", weight_lbs=150, sex="male", emergency_contacts=contacts)
    saved = log_store.save_profile(db_path, client_id="c1", weight_lbs=155, sex="male", emergency_contacts=contacts)
    assert saved == {"weight_lbs": 155.0, "sex": "male", "emergency_contacts": contacts}


def test_record_and_list_drinks(db_path):
    older = DrinkEvent(label="WINE", timestamp=NOW - timedelta(hours=2), volume_ml=150, abv_percent=12.0)
    newer = DrinkEvent(label="SHOT", timestamp=NOW, standard_drinks=1)
    log_store.record_drink(db_path, client_id="c1", event=older)
    log_store.record_drink(db_path, client_id="c1", event=newer)
    log_store.record_drink(db_path, client_id="c2", event=newer)

    rows = log_store.list_drink_logs(db_path, client_id="c1")
    assert [r["drink_name"] for r in rows] == ["SHOT", "WINE"]
    assert rows[0]["category"] == "spirits"
    assert rows[0]["volume_ml"] == 355
    assert rows[1]["pure_alcohol_ml"] == pytest.approx(18.0)
    assert rows[1]["estimated_bac_contribution"] > 0

    recent = log_store.list_drink_logs(db_path, client_id="c1", since=NOW - timedelta(hours=1))
    assert [r["event_id"] for r in recent] == [newer.id]
    assert len(log_store.list_drink_logs(db_path, client_id="c1", limit=1)) == 1


def seed_logs(path, client_id, start, count):
    rows = [
        (client_id, "BEER", "beer", 355, 5.0, 17.75, 0.02, stamp.isoformat(timespec="microseconds"))
        for stamp in (start + timedelta(minutes=i) for i in range(count))
    ]
    with sqlite3.connect(path) as conn:
        conn.executemany(
            "INSERT INTO drink_logs (client_id, drink_name, category, volume_ml, abv, pure_alcohol_ml,"
            " estimated_bac_contribution, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )


def test_list_without_limit_returns_every_row(db_path):
    seed_logs(db_path, "c1", NOW - timedelta(days=2), log_store.MAX_LIST_LIMIT + 200)
    assert len(log_store.list_drink_logs(db_path, client_id="c1")) == 20
    assert len(log_store.list_drink_logs(db_path, client_id="c1", limit=5000)) == log_store.MAX_LIST_LIMIT
    assert len(log_store.list_drink_logs(db_path, client_id="c1", limit=None)) == log_store.MAX_LIST_LIMIT + 200


def test_record_failure_raises_collaborator_error(tmp_path):
    missing = str(tmp_path / "no-such-dir" / "x.db")
    with pytest.raises(CollaboratorError):
        log_store.record_drink(missing, client_id="c1", event=DrinkEvent(label="BEER", timestamp=NOW))


# ── verification ──


def test_sanitize_model_json():
    assert sanitize_model_json('```json\n{"match": true}\n```') == '{"match": true}'
    assert sanitize_model_json('Sure! {"a": 1} thanks') == '{"a": 1}'


def test_interpret_verdict():
    ok = interpret_verdict({"match": True, "matchedDrinkType": "beer", "summary": "A lager."}, "BEER")
    assert ok.allowed and ok.matched_drink_type == "BEER"

    spiked = interpret_verdict({"match": True, "druggingLikely": True, "concerns": ["residue", ""]}, "BEER")
    assert not spiked.allowed
    assert spiked.concerns == ["residue"]

    solo = interpret_verdict({"match": False, "matchedDrinkType": "red solo cup"}, "COCKTAIL")
    assert solo.allowed


def test_verifier_without_key_rejects():
    result = GeminiVerifier("", session=FakeHttp()).verify("aGVsbG8=", "BEER")
    assert not result.allowed
    assert "missing" in result.summary


def test_verifier_parses_reply():
    http = FakeHttp(gemini_reply('```json\n{"match": true, "matchedDrinkType": "SHOT", "summary": "ok"}\n```'))
    result = GeminiVerifier("k", session=http).verify("aGVsbG8=", "SHOT", mime_type="image/gif")
    assert result.allowed
    url, kwargs = http.requests[0]
    assert url.endswith("/models/gemini-1.5-flash:generateContent")
    assert kwargs["params"] == {"key": "k"}
    assert kwargs["json"]["contents"][0]["parts"][1]["inlineData"]["mimeType"] == "image/jpeg"


@pytest.mark.parametrize(
    "http",
    [
        FakeHttp(error=requests.ConnectionError("down")),
        FakeHttp(FakeResponse(status_code=500, text="boom")),
        FakeHttp(FakeResponse(payload={"promptFeedback": {"blockReason": "SAFETY"}})),
        FakeHttp(FakeResponse(payload={"candidates": []})),
        FakeHttp(gemini_reply("not json at all")),
        FakeHttp(FakeResponse(payload=["candidates"])),
        FakeHttp(FakeResponse(payload={"candidates": ["x"]})),
        FakeHttp(FakeResponse(payload={"candidates": [{"content": {"parts": ["x"]}}]})),
        FakeHttp(FakeResponse(payload={"candidates": [{"content": "x"}], "promptFeedback": "none"})),
    ],
)
def test_verifier_failures_raise(http):
    with pytest.raises(CollaboratorError):
        GeminiVerifier("k", session=http).verify("aGVsbG8=", "BEER")


# ── alerts ──


def test_usable_contacts_filters_placeholders():
    raw = [
        {"label": "Mom", "phone": "(555) 123-4567", "carrier": "att"},
        {"label": "", "phone": "5551234567"},
        {"label": "Fake", "phone": "1234567890"},
        {"label": "Short", "phone": "555"},
        "not a contact",
    ]
    assert [c.label for c in usable_contacts(raw)] == ["Mom"]


def test_gateway_addresses():
    assert normalize_phone10("+1 (555) 123-4567") == "5551234567"
    assert normalize_phone10("123") is None
    contact = EmergencyContact("Mom", "15551234567", "verizon")
    assert gateway_addresses(contact) == ["5551234567@vtext.com", "5551234567@vzwpix.com"]
    with pytest.raises(InvalidContact):
        gateway_addresses(EmergencyContact("Dad", "5551234567", "pigeon"))


def test_compose_alert_message():
    text = compose_alert_message(0.16, NOW, (40.0, -75.5))
    assert "BAC: 0.160%" in text
    assert "2026-10-17 22:00" in text
    assert "maps.google.com/?q=40.000000,-75.500000" in text
    assert "Location unavailable." in compose_alert_message(0.16, NOW)


class FakeSmtp:
    def __init__(self, refuse=(), error=None):
        self.refuse = set(refuse)
        self.error = error
        self.sent = []
        self.closed = False

    def send_message(self, mail):
        if self.error:
            raise self.error
        if mail["To"] in self.refuse:
            raise smtplib.SMTPRecipientsRefused({mail["To"]: (550, b"no")})
        self.sent.append(mail)

    def quit(self):
        if self.error:
            raise self.error
        self.closed = True

    def close(self):
        self.closed = True


def dispatcher():
    return EmailSmsDispatcher("smtp.example.com", 587, "user", "pass", sender="alerts@example.com")


def test_dispatcher_unconfigured():
    with pytest.raises(CollaboratorError):
        EmailSmsDispatcher("", 587, "", "").send_alert("help", [EmergencyContact("Mom", "5551234567", "att")])


def test_dispatcher_requires_message_and_contacts():
    with pytest.raises(ValueError):
        dispatcher().send_alert("   ", [EmergencyContact("Mom", "5551234567", "att")])
    with pytest.raises(ValueError):
        dispatcher().send_alert("help", [])


def test_dispatcher_falls_through_gateways(monkeypatch):
    smtp = FakeSmtp(refuse={"5551234567@txt.att.net"})
    d = dispatcher()
    monkeypatch.setattr(d, "_connect", lambda: smtp)
    report = d.send_alert(
        "help " * 100,
        [EmergencyContact("Mom", "5551234567", "att"), {"label": "Dad", "phone": "5559876543", "carrier": ""}],
    )
    assert report.attempted == 2
    assert [s["to"] for s in report.sent] == ["5551234567@mms.att.net"]
    assert len(report.failed) == 1
    assert report.ok
    assert len(smtp.sent[0].get_content().strip()) <= 300
    assert smtp.closed


def test_dispatcher_connection_failure(monkeypatch):
    d = dispatcher()

    def refuse():
        raise OSError("connection refused")

    monkeypatch.setattr(d, "_connect", refuse)
    with pytest.raises(CollaboratorError):
        d.send_alert("help", [EmergencyContact("Mom", "5551234567", "att")])


def test_dispatcher_send_timeouts_become_failures(monkeypatch):
    smtp = FakeSmtp(error=TimeoutError("timed out"))
    d = dispatcher()
    monkeypatch.setattr(d, "_connect", lambda: smtp)
    report = d.send_alert("help", [EmergencyContact("Mom", "5551234567", "att")])
    assert report.attempted == 1
    assert report.sent == []
    assert "timed out" in report.failed[0]["error"]
    assert not report.ok
    assert smtp.closed


def test_dispatcher_closes_socket_when_login_fails(monkeypatch):
    opened = []

    class LoginRefused(FakeSmtp):
        def __init__(self, host, port, timeout=None):
            super().__init__()
            opened.append(self)

        def starttls(self):
            pass

        def login(self, user, password):
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(smtplib, "SMTP", LoginRefused)
    with pytest.raises(CollaboratorError):
        dispatcher().send_alert("help", [EmergencyContact("Mom", "5551234567", "att")])
    assert len(opened) == 1 and opened[0].closed


# ── remote analytics ──


def test_remote_client_parses_result():
    payload = {
        "range": "1w",
        "buckets": [{"label": "Sat", "date_key": "2026-10-17", "count": 2, "pure_alcohol_ml": 30.5}],
        "totals": {"total_drinks": 2, "total_pure_alcohol_ml": 30.5},
        "trends": {
            "direction": "up",
            "current_period_drinks": 2,
            "previous_period_drinks": 0,
            "avg_hours_between_drinks": 1.5,
            "longest_gap_hours": 1.5,
        },
    }
    http = FakeHttp(FakeResponse(payload=payload))
    result = RemoteAnalyticsClient("https://api.example.com/", token="t", session=http)("1W")
    assert result.total_drinks == 2
    assert result.buckets[0].pure_alcohol_ml == 30.5
    url, kwargs = http.requests[0]
    assert url == "https://api.example.com/api/drinklogs/analytics"
    assert kwargs["params"] == {"range": "1w"}
    assert kwargs["headers"] == {"Authorization": "Bearer t"}


@pytest.mark.parametrize(
    "http",
    [
        FakeHttp(error=requests.Timeout("slow")),
        FakeHttp(FakeResponse(status_code=503, text="down")),
        FakeHttp(FakeResponse(payload={"range": "1w"})),
    ],
)
def test_remote_client_failures(http):
    with pytest.raises(CollaboratorError):
        RemoteAnalyticsClient("https://api.example.com", session=http).fetch("1w")
