from __future__ import annotations

import base64
import binascii
import re
from datetime import date, datetime, timezone

from flask import request

EMPTY_MARKERS = {"", "null", "undefined"}
DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)


def to_null(value):
    """Collapse empty-ish form values ("", "null", "undefined", None) to None."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in EMPTY_MARKERS:
        return None
    return value


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value, field_name: str) -> datetime | None:
    value = to_null(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).strip()))
    except ValueError as exc:
        raise ValueError(f"Formato de fecha invalido para {field_name}") from exc


def parse_date(value, field_name: str) -> date | None:
    value = to_null(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError as exc:
        raise ValueError(f"Formato de fecha invalido para {field_name}") from exc


def parse_id(value, field_name: str) -> int | None:
    value = to_null(value)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Identificador invalido para {field_name}")
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if not raw.isdigit():
        raise ValueError(f"Identificador invalido para {field_name}")
    return int(raw)


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    match = DATA_URL_RE.match((data_url or "").strip())
    if not match:
        raise ValueError("Data URL invalida")
    mime = match.group("mime") or "image/png"
    try:
        payload = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URL invalida") from exc
    return payload, mime


def request_payload() -> dict:
    """JSON body when present, else form fields."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()
