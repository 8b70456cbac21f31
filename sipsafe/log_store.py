"""SQLite-backed drink logs and per-client profiles.

Drink logs are append-only; nothing here deletes them.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any

from sipsafe import calculations, drinks
from sipsafe.errors import CollaboratorError

MAX_LIST_LIMIT = 1000


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS profiles (
                client_id TEXT PRIMARY KEY,
                weight_lbs REAL NOT NULL,
                sex TEXT NOT NULL,
                emergency_contacts_json TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS drink_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_id TEXT NOT NULL,
                event_id TEXT,
                drink_name TEXT NOT NULL,
                category TEXT NOT NULL,
                abv REAL,
                volume_ml REAL,
                standard_drinks REAL,
                pure_alcohol_ml REAL NOT NULL,
                estimated_bac_contribution REAL NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_drink_logs_client_created ON drink_logs(client_id, created_at)"
        )
        conn.commit()


def _stamp(ts: datetime) -> str:
    # fixed width so text comparison in SQL follows time order
    return ts.isoformat(timespec="microseconds")


def save_profile(
    db_path: str,
    *,
    client_id: str,
    weight_lbs: float,
    sex: str,
    emergency_contacts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    contacts_json = json.dumps(emergency_contacts or [], separators=(",", ":"), ensure_ascii=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO profiles (client_id, weight_lbs, sex, emergency_contacts_json)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(client_id) DO UPDATE SET
                weight_lbs = excluded.weight_lbs,
                sex = excluded.sex,
                emergency_contacts_json = excluded.emergency_contacts_json,
                updated_at = datetime('now')
            """,
            (client_id, float(weight_lbs), sex, contacts_json),
        )
        conn.commit()
    return get_profile(db_path, client_id=client_id) or {}


def get_profile(db_path: str, *, client_id: str) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            "SELECT weight_lbs, sex, emergency_contacts_json FROM profiles WHERE client_id = ?",
            (client_id,),
        ).fetchone()
    if row is None:
        return None
    try:
        contacts = json.loads(row["emergency_contacts_json"] or "[]")
    except json.JSONDecodeError:
        contacts = []
    return {
        "weight_lbs": row["weight_lbs"],
        "sex": row["sex"],
        "emergency_contacts": contacts if isinstance(contacts, list) else [],
    }


def record_drink(
    db_path: str,
    *,
    client_id: str,
    event: drinks.DrinkEvent,
    profile: Any = None,
    category: str | None = None,
) -> int:
    """Append one drink log; raises CollaboratorError if the write fails."""
    resolved = calculations.resolve_profile(profile)
    grams = event.ethanol_grams
    volume_ml = event.volume_ml
    if volume_ml is None and event.standard_drinks is not None:
        volume_ml = drinks.volume_ml_from_standard_drinks(event.standard_drinks, event.abv_percent)
    try:
        with sqlite3.connect(db_path) as conn:
            cur = conn.execute(
                """
                INSERT INTO drink_logs (
                    client_id, event_id, drink_name, category, abv, volume_ml, standard_drinks,
                    pure_alcohol_ml, estimated_bac_contribution, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client_id,
                    event.id,
                    event.label,
                    category or drinks.label_to_category(event.label),
                    event.abv_percent,
                    volume_ml,
                    grams / drinks.STANDARD_DRINK_GRAMS,
                    grams / drinks.ETHANOL_DENSITY,
                    calculations.peak_bac(grams, resolved),
                    _stamp(event.timestamp),
                ),
            )
            conn.commit()
            return int(cur.lastrowid)
    except sqlite3.Error as exc:
        raise CollaboratorError(f"drink log write failed: {exc}") from exc


def list_drink_logs(
    db_path: str,
    *,
    client_id: str,
    limit: int | None = 20,
    since: datetime | None = None,
) -> list[dict[str, Any]]:
    """Newest first, optionally only from ``since`` on.

    ``limit`` is capped at MAX_LIST_LIMIT; ``limit=None`` returns every matching row.
    """
    query = """
        SELECT id, event_id, drink_name, category, abv, volume_ml, standard_drinks,
               pure_alcohol_ml, estimated_bac_contribution, created_at
        FROM drink_logs
        WHERE client_id = ?
    """
    params: list[Any] = [client_id]
    if since is not None:
        query += " AND created_at >= ?"
        params.append(_stamp(since))
    query += " ORDER BY created_at DESC, id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(max(1, min(int(limit), MAX_LIST_LIMIT)))

    try:
        with sqlite3.connect(db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(query, params).fetchall()
    except sqlite3.Error as exc:
        raise CollaboratorError(f"drink log read failed: {exc}") from exc
    return [dict(row) for row in rows]
