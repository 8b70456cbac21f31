"""SipSafe Flask app.

Run from project root:
    python app.py
"""

import logging
import math
import os
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request, session as flask_session

from sipsafe import log_store
from sipsafe.alerts import EmailSmsDispatcher, EmergencyContact, compose_alert_message, usable_contacts
from sipsafe.analytics import (
    AnalyticsService,
    get_analytics,
    normalize_range,
    parse_instant,
    summary_stats,
    window_for,
)
from sipsafe.calculations import bac_curve, resolve_profile
from sipsafe.catalog import QUICK_OPTIONS, get_entry, list_by_category, search
from sipsafe.config import Settings
from sipsafe.drinks import DEFAULT_VOLUME_ML, DrinkEvent, estimate_custom_abv
from sipsafe.errors import AnalyticsUnavailable, CollaboratorError, CollaboratorResult
from sipsafe.remote import RemoteAnalyticsClient
from sipsafe.session import SessionRegistry, SessionTracker
from sipsafe.ticker import SessionTicker
from sipsafe.verification import GeminiVerifier

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = settings.secret_key
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SECURE"] = os.environ.get("SESSION_COOKIE_SECURE", "0") == "1"
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
app.config["ALERT_DISPATCH_SYNC"] = False
app.config["CLOCK"] = datetime.now
app.config["TICK_SECONDS"] = settings.tick_seconds

MIN_WEIGHT_LB = 80.0
MAX_WEIGHT_LB = 400.0
MIN_COUNT = 0.25
MAX_COUNT = 20.0
MAX_MINUTES_AGO = 24 * 60.0
MAX_CONTACTS = 5
CLIENT_KEY = "client_id"


def _db_path() -> str:
    return os.environ.get("SIPSAFE_DB_PATH", settings.db_path)


def _ensure_db() -> None:
    db_path = Path(_db_path())
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        log_store.init_db(str(db_path))
    except (OSError, sqlite3.Error) as exc:
        raise CollaboratorError(f"drink log store unavailable: {exc}") from exc


def _now() -> datetime:
    return app.config["CLOCK"]()


def _clamp_float(value: Any, default: float, min_value: float, max_value: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = default
    if not math.isfinite(parsed):
        parsed = default
    return max(min_value, min(max_value, parsed))


def _optional_float(value: Any) -> float | None:
    """None for a missing value; ValueError for anything that is not a finite number."""
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except TypeError as exc:
        raise ValueError(f"{value!r} is not a number") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{value!r} is not a finite number")
    return parsed


def _json_body() -> dict[str, Any] | None:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


# ── Collaborators ───────────────────────────────────────────────────────────


def _services() -> dict[str, Any]:
    return app.extensions.setdefault("sipsafe", {})


def _verifier():
    services = _services()
    if "verifier" not in services:
        services["verifier"] = GeminiVerifier(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.collaborator_timeout,
        )
    return services["verifier"]


def _dispatcher():
    services = _services()
    if "dispatcher" not in services:
        services["dispatcher"] = EmailSmsDispatcher(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_pass,
            sender=settings.smtp_from,
            timeout=settings.collaborator_timeout,
        )
    return services["dispatcher"]


def _remote_analytics():
    services = _services()
    if "remote" not in services:
        services["remote"] = (
            RemoteAnalyticsClient(settings.remote_analytics_url, timeout=settings.collaborator_timeout)
            if settings.remote_analytics_url
            else None
        )
    return services["remote"]


def _registry() -> SessionRegistry:
    services = _services()
    if "sessions" not in services:
        services["sessions"] = SessionRegistry(_new_tracker)
    return services["sessions"]


def _load_profile(client_id: str) -> dict[str, Any] | None:
    try:
        _ensure_db()
        return log_store.get_profile(_db_path(), client_id=client_id)
    except (CollaboratorError, sqlite3.Error) as exc:
        logger.warning("Profile lookup failed for %s: %s", client_id, exc)
        return None


def _new_tracker(client_id: str) -> SessionTracker:
    def record(event: DrinkEvent) -> int:
        _ensure_db()
        return log_store.record_drink(
            _db_path(), client_id=client_id, event=event, profile=_load_profile(client_id)
        )

    return SessionTracker(
        profile=_load_profile(client_id),
        now=_now(),
        recorder=record,
        verifier=_verifier(),
        on_emergency_alert=lambda bac: _raise_emergency_alert(client_id, bac),
        clock=_now,
    )


def _send_alert(client_id: str, message: str, contacts: list[EmergencyContact]) -> CollaboratorResult:
    try:
        report = _dispatcher().send_alert(message, contacts)
    except (CollaboratorError, ValueError, OSError) as exc:
        reason = getattr(exc, "reason", str(exc))
        logger.warning("Emergency alert for %s failed: %s", client_id, reason)
        result = CollaboratorResult.failure(reason)
    else:
        result = CollaboratorResult.success(report)
    _services().setdefault("alert_results", {})[client_id] = result
    return result


def _raise_emergency_alert(client_id: str, bac: float) -> None:
    contacts = usable_contacts((_load_profile(client_id) or {}).get("emergency_contacts", []))
    if not contacts:
        logger.warning("No emergency contacts for %s; DANGER alert not sent", client_id)
        return
    message = compose_alert_message(bac, _now())
    if app.config["ALERT_DISPATCH_SYNC"]:
        _send_alert(client_id, message, contacts)
        return
    threading.Thread(target=_send_alert, args=(client_id, message, contacts), daemon=True).start()


def _start_ticker(client_id: str, tracker: SessionTracker) -> None:
    _stop_ticker(client_id)
    interval = float(app.config["TICK_SECONDS"])
    if interval <= 0:
        return
    ticker = SessionTicker(tracker, interval_seconds=interval, clock=_now)
    _services().setdefault("tickers", {})[client_id] = ticker
    ticker.start()


def _stop_ticker(client_id: str) -> None:
    ticker = _services().setdefault("tickers", {}).pop(client_id, None)
    if ticker is not None:
        ticker.stop()


def _client_id() -> str:
    client_id = flask_session.get(CLIENT_KEY)
    if not isinstance(client_id, str):
        client_id = uuid.uuid4().hex
        flask_session.permanent = True
        flask_session[CLIENT_KEY] = client_id
    return client_id


def _tracker() -> SessionTracker:
    return _registry().get(_client_id())


def _event_from_request(data: dict[str, Any], now: datetime) -> DrinkEvent:
    """Build a DrinkEvent from a catalog id, a custom mix, raw volume/ABV, or standard drinks."""
    minutes_ago = _clamp_float(data.get("minutes_ago"), 0.0, 0.0, MAX_MINUTES_AGO)
    timestamp = now - timedelta(minutes=minutes_ago)
    count = _clamp_float(data.get("count"), 1.0, MIN_COUNT, MAX_COUNT)

    if data.get("option_id"):
        entry = get_entry(str(data["option_id"]))
        if entry is None:
            raise ValueError("Unknown drink option")
        return DrinkEvent(
            label=entry.name,
            timestamp=timestamp,
            volume_ml=entry.serving_ml * count,
            abv_percent=entry.abv,
        )

    label = str(data.get("label", "")).strip()[:60]
    if not label:
        raise ValueError("label is required")

    if data.get("spirit_base") and data.get("strength"):
        volume = _optional_float(data.get("volume_ml")) or DEFAULT_VOLUME_ML
        abv = estimate_custom_abv(str(data["spirit_base"]), str(data["strength"]))
        return DrinkEvent(label=label, timestamp=timestamp, volume_ml=volume, abv_percent=abv)

    volume = _optional_float(data.get("volume_ml"))
    abv = _optional_float(data.get("abv_percent"))
    if volume is not None and abv is not None:
        if volume <= 0 or not 0 <= abv <= 100:
            raise ValueError("volume_ml must be positive and abv_percent between 0 and 100")
        return DrinkEvent(label=label, timestamp=timestamp, volume_ml=volume, abv_percent=abv)

    standard = _optional_float(data.get("standard_drinks"))
    standard = 1.0 if standard is None else max(0.0, min(MAX_COUNT, standard))
    return DrinkEvent(label=label, timestamp=timestamp, standard_drinks=standard, abv_percent=abv)


def _state_payload(tracker: SessionTracker, now: datetime) -> dict[str, Any]:
    snapshot = tracker.snapshot(now)
    curve = bac_curve(tracker.events, tracker.profile, now)
    snapshot["curve"] = [{"t": t.isoformat(), "bac": bac} for t, bac in curve]
    return snapshot


# ── Routes ──────────────────────────────────────────────────────────────────


@app.route("/healthz")
def healthz():
    return jsonify({"ok": True})


@app.route("/api/profile")
def api_profile():
    stored = _load_profile(_client_id())
    profile = resolve_profile(stored)
    return jsonify({
        "configured": stored is not None,
        "profile": {
            **profile.to_dict(),
            "emergency_contacts": (stored or {}).get("emergency_contacts", []),
        },
    })


@app.route("/api/profile", methods=["POST"])
def api_profile_save():
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    sex = str(data.get("sex", "")).strip().lower()
    if sex not in {"male", "female"}:
        return jsonify({"error": "sex must be male or female"}), 400
    try:
        weight = _optional_float(data.get("weight_lbs"))
    except ValueError:
        weight = None
    if weight is None:
        return jsonify({"error": "weight_lbs is required"}), 400
    if weight < MIN_WEIGHT_LB or weight > MAX_WEIGHT_LB:
        return jsonify({"error": "Weight must be between 80 and 400 lb"}), 400

    contacts_raw = data.get("emergency_contacts") or []
    if not isinstance(contacts_raw, list) or len(contacts_raw) > MAX_CONTACTS:
        return jsonify({"error": f"emergency_contacts must be a list of at most {MAX_CONTACTS}"}), 400
    contacts = [EmergencyContact.from_dict(c).to_dict() for c in contacts_raw]

    try:
        _ensure_db()
        saved = log_store.save_profile(
            _db_path(),
            client_id=_client_id(),
            weight_lbs=weight,
            sex=sex,
            emergency_contacts=contacts,
        )
    except (CollaboratorError, sqlite3.Error) as exc:
        logger.warning("Profile save failed: %s", exc)
        return jsonify({"error": "Profile could not be saved"}), 503
    return jsonify({"ok": True, "profile": saved})


@app.route("/api/drink-options")
def api_drink_options():
    return jsonify({"options": [e.to_dict() for e in QUICK_OPTIONS]})


@app.route("/api/catalog")
def api_catalog():
    query = request.args.get("q", "")
    return jsonify({"items": [e.to_dict() for e in search(query)], "by_category": list_by_category()})


@app.route("/api/session/start", methods=["POST"])
def api_session_start():
    client_id = _client_id()
    tracker = _registry().get(client_id)
    now = _now()
    tracker.start_session(now, profile=_load_profile(client_id))
    _start_ticker(client_id, tracker)
    return jsonify({"ok": True, "state": _state_payload(tracker, now)})


@app.route("/api/session/end", methods=["POST"])
def api_session_end():
    client_id = _client_id()
    tracker = _registry().get(client_id)
    now = _now()
    _stop_ticker(client_id)
    tracker.end_session(now)
    return jsonify({"ok": True, "state": _state_payload(tracker, now)})


@app.route("/api/state")
def api_state():
    return jsonify(_state_payload(_tracker(), _now()))


@app.route("/api/drink", methods=["POST"])
def api_drink():
    tracker = _tracker()
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    now = _now()
    try:
        event = _event_from_request(data, now)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    photo = data.get("photo_base64")
    if photo:
        outcome = tracker.log_verified_drink(
            event, str(photo), now, mime_type=str(data.get("mime_type") or "image/jpeg")
        )
    else:
        outcome = tracker.log_drink(event, now)

    if outcome.logged:
        return jsonify(outcome.to_dict()), 201
    if outcome.reason == "rejected":
        return jsonify(outcome.to_dict())
    return jsonify({**outcome.to_dict(), "error": f"Could not verify drink: {outcome.reason}"}), 502


@app.route("/api/drink/<event_id>", methods=["DELETE"])
def api_drink_remove(event_id: str):
    reading = _tracker().remove_drink(event_id, _now())
    if reading is None:
        return jsonify({"error": "Drink not found"}), 404
    return jsonify({"ok": True, "bac": round(reading.bac, 4), "zone": reading.zone.value})


@app.route("/api/nudge/dismiss", methods=["POST"])
def api_nudge_dismiss():
    _tracker().dismiss_hydration_nudge()
    return jsonify({"ok": True})


@app.route("/api/alert", methods=["POST"])
def api_alert():
    client_id = _client_id()
    tracker = _registry().get(client_id)
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    now = _now()

    contacts = usable_contacts((_load_profile(client_id) or {}).get("emergency_contacts", []))
    if not contacts:
        return jsonify({"error": "Add at least one emergency contact in your profile before sending alerts."}), 400
    if not _dispatcher().configured:
        return jsonify({"error": "Alert delivery is not configured"}), 503

    location = None
    try:
        lat, lng = _optional_float(data.get("lat")), _optional_float(data.get("lng"))
    except ValueError:
        return jsonify({"error": "lat and lng must be numbers"}), 400
    if lat is not None and lng is not None:
        location = (lat, lng)

    message = str(data.get("message", "")).strip() or compose_alert_message(tracker.tick(now).bac, now, location)
    result = _send_alert(client_id, message, contacts)
    if not result.ok:
        return jsonify({"error": result.reason}), 502
    return jsonify(result.value.to_dict())


@app.route("/api/drinklogs")
def api_drinklogs():
    limit = request.args.get("limit", type=int) or 20
    since_raw = request.args.get("since", "")
    try:
        since = parse_instant(since_raw) if since_raw else None
    except ValueError:
        return jsonify({"error": "since must be an ISO timestamp"}), 400

    try:
        _ensure_db()
        items = log_store.list_drink_logs(_db_path(), client_id=_client_id(), limit=limit, since=since)
    except CollaboratorError as exc:
        return jsonify({"error": exc.reason}), 502
    return jsonify({"items": items})


@app.route("/api/drinklogs/stats")
def api_drinklogs_stats():
    try:
        _ensure_db()
        records = log_store.list_drink_logs(_db_path(), client_id=_client_id(), limit=None)
    except CollaboratorError as exc:
        return jsonify({"error": exc.reason}), 502
    return jsonify(summary_stats(records, _now()))


@app.route("/api/drinklogs/analytics")
def api_drinklogs_analytics():
    now = _now()
    try:
        range_key = normalize_range(request.args.get("range"))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    # every row of both periods; the trend compares them
    window = window_for(range_key, now)
    try:
        _ensure_db()
        records = log_store.list_drink_logs(
            _db_path(),
            client_id=_client_id(),
            limit=None,
            since=window.start - (now - window.start),
        )
    except CollaboratorError as exc:
        return jsonify({"error": exc.reason}), 502
    return jsonify(get_analytics(range_key, records, now).to_dict())


@app.route("/api/analytics")
def api_analytics():
    client_id = _client_id()
    db_path = _db_path()

    def list_logs(limit: int, since: datetime | None):
        _ensure_db()
        return log_store.list_drink_logs(db_path, client_id=client_id, limit=limit, since=since)

    service = AnalyticsService(list_logs=list_logs, remote=_remote_analytics())
    try:
        result = service.get(request.args.get("range"), _now())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except AnalyticsUnavailable as exc:
        return jsonify({"error": f"Analytics unavailable: {exc}"}), 503
    return jsonify(result.to_dict())


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "0") == "1")
