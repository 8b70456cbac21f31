"""Runtime settings from the environment (and a local .env file, if present)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DB_PATH = str(Path("instance") / "sipsafe.db")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    secret_key: str
    db_path: str
    gemini_api_key: str
    gemini_model: str
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_pass: str
    smtp_from: str
    remote_analytics_url: str
    collaborator_timeout: float
    tick_seconds: float
    log_level: str

    @classmethod
    def from_env(cls, dotenv: bool = True) -> Settings:
        if dotenv:
            load_dotenv()
        smtp_user = _env_str("SMTP_USER")
        return cls(
            secret_key=_env_str("APP_SECRET_KEY", "dev-only-change-me"),
            db_path=_env_str("SIPSAFE_DB_PATH", DEFAULT_DB_PATH),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-1.5-flash"),
            smtp_host=_env_str("SMTP_HOST"),
            smtp_port=int(_env_float("SMTP_PORT", 587)),
            smtp_user=smtp_user,
            smtp_pass=_env_str("SMTP_PASS"),
            smtp_from=_env_str("SMTP_FROM") or smtp_user,
            remote_analytics_url=_env_str("REMOTE_ANALYTICS_URL"),
            collaborator_timeout=_env_float("COLLABORATOR_TIMEOUT_SECONDS", 15.0),
            tick_seconds=_env_float("TICK_SECONDS", 60.0),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )
