"""Emergency alerts: contacts, message text, and SMS through carrier email gateways."""

from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Iterable, List, Optional

from sipsafe.errors import CollaboratorError, InvalidContact

logger = logging.getLogger(__name__)

CARRIER_GATEWAYS = {
    "att": ["txt.att.net", "mms.att.net"],
    "verizon": ["vtext.com", "vzwpix.com"],
    "tmobile": ["tmomail.net"],
    "sprint": ["messaging.sprintpcs.com", "pm.sprint.com"],
    "boost": ["sms.myboostmobile.com", "myboostmobile.com"],
    "cricket": ["sms.cricketwireless.net", "mms.cricketwireless.net"],
    "uscellular": ["email.uscc.net", "mms.uscc.net"],
    "metropcs": ["mymetropcs.com"],
    "virgin": ["vmobl.com"],
    "visible": ["vtext.com"],
}

PLACEHOLDER_PHONE = "1234567890"
MAX_MESSAGE_CHARS = 300
ALERT_SUBJECT = "SipSafe Alert"


@dataclass(frozen=True)
class EmergencyContact:
    label: str
    phone: str
    carrier: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> EmergencyContact:
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            label=str(raw.get("label") or "").strip(),
            phone=str(raw.get("phone") or "").strip(),
            carrier=str(raw.get("carrier") or "").strip().lower(),
        )

    def to_dict(self) -> dict:
        return {"label": self.label, "phone": self.phone, "carrier": self.carrier}


@dataclass
class AlertReport:
    attempted: int = 0
    sent: List[dict] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.sent)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "attempted": self.attempted, "sent": self.sent, "failed": self.failed}


def usable_contacts(raw_contacts: Iterable[Any]) -> List[EmergencyContact]:
    """Contacts with a label and a real-looking phone number."""
    out = []
    for raw in raw_contacts or []:
        contact = raw if isinstance(raw, EmergencyContact) else EmergencyContact.from_dict(raw)
        digits = re.sub(r"\D", "", contact.phone)
        if not contact.label or len(digits) < 10 or digits == PLACEHOLDER_PHONE:
            continue
        out.append(contact)
    return out


def normalize_phone10(raw_phone: str) -> Optional[str]:
    digits = re.sub(r"\D", "", raw_phone or "")
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    if len(digits) == 10:
        return digits
    return None


def gateway_addresses(contact: EmergencyContact) -> List[str]:
    number = normalize_phone10(contact.phone)
    if number is None:
        raise InvalidContact("Invalid US phone number.")
    domains = CARRIER_GATEWAYS.get(contact.carrier.strip().lower())
    if not domains:
        raise InvalidContact(
            "Unsupported or missing carrier. Supported: " + ", ".join(CARRIER_GATEWAYS) + "."
        )
    return [f"{number}@{domain}" for domain in domains]


def compose_alert_message(bac: float, now: datetime, location: Optional[tuple] = None) -> str:
    if location is not None:
        lat, lng = location
        where = f"Coordinates: {lat:.6f}, {lng:.6f}. Map: https://maps.google.com/?q={lat:.6f},{lng:.6f}"
    else:
        where = "Location unavailable."
    return (
        f"SipSafe alert: I may need help. BAC: {bac:.3f}%. "
        f"Time: {now.strftime('%Y-%m-%d %H:%M')}. {where}"
    )


class EmailSmsDispatcher:
    """Sends each contact's alert to its carrier gateways, stopping at the first that accepts it."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str = "",
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.port and self.user and self.password and self.sender)

    def send_alert(self, message: str, contacts: Iterable[Any]) -> AlertReport:
        if not self.configured:
            raise CollaboratorError(
                "SMTP is not configured. Set SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, and SMTP_FROM."
            )
        message = message.strip()
        if not message:
            raise ValueError("Message is required.")
        contacts = [c if isinstance(c, EmergencyContact) else EmergencyContact.from_dict(c) for c in contacts]
        if not contacts:
            raise ValueError("At least one contact is required.")

        report = AlertReport(attempted=len(contacts))
        try:
            smtp = self._connect()
        except (OSError, smtplib.SMTPException) as exc:
            raise CollaboratorError(f"SMTP connection failed: {exc}") from exc

        try:
            for contact in contacts:
                self._deliver(smtp, contact, message[:MAX_MESSAGE_CHARS], report)
        finally:
            _hang_up(smtp)
        logger.info("Alert dispatched: %d sent, %d failed", len(report.sent), len(report.failed))
        return report

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.port != 465:
                smtp.starttls()
            smtp.login(self.user, self.password)
        except (OSError, smtplib.SMTPException):
            smtp.close()
            raise
        return smtp

    def _deliver(self, smtp: smtplib.SMTP, contact: EmergencyContact, text: str, report: AlertReport) -> None:
        try:
            addresses = gateway_addresses(contact)
        except InvalidContact as exc:
            report.failed.append({"to": contact.phone, "error": str(exc)})
            return

        last_error = ""
        for address in addresses:
            mail = EmailMessage()
            mail["From"] = self.sender
            mail["To"] = address
            mail["Subject"] = ALERT_SUBJECT
            mail["Message-ID"] = make_msgid()
            mail.set_content(text)
            try:
                smtp.send_message(mail)
            except (smtplib.SMTPException, OSError) as exc:
                last_error = str(exc)
                continue
            report.sent.append({"to": address, "sid": mail["Message-ID"]})
            return
        report.failed.append(
            {
                "to": " | ".join(addresses),
                "error": f"All carrier gateways failed. {last_error or 'Email-to-SMS send failed.'}",
            }
        )


def _hang_up(smtp: smtplib.SMTP) -> None:
    try:
        smtp.quit()
    except (smtplib.SMTPException, OSError):
        smtp.close()
