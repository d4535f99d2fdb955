"""
External (camelCase) <-> internal (snake_case) field mapping per entity.

The mapping is a pure renaming plus value coercion: empty-ish optional values
("", "null", "undefined") collapse to ``None``, ids are parsed to integers and
timestamps are normalised to UTC. Reading a row back produces the same
external value that was written.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from app.core.utils import iso, parse_date, parse_datetime, parse_id, to_null


def _text(value, name):
    value = to_null(value)
    return "" if value is None else str(value).strip()


def _optional_text(value, name):
    value = to_null(value)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _integer(value, name):
    value = to_null(value)
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Valor numerico invalido para {name}") from exc


def _optional_integer(value, name):
    if to_null(value) is None:
        return None
    return _integer(value, name)


def _boolean(value, name):
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "on", "yes", "si", "sí"}
    return bool(value)


def _string_list(value, name):
    value = to_null(value)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Se esperaba una lista para {name}")
    return [str(item) for item in value if to_null(item) is not None]


def _parts(value, name):
    value = to_null(value)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Se esperaba una lista para {name}")
    return [dict(item) for item in value]


CONVERTERS: dict[str, Callable[[Any, str], Any]] = {
    "text": _text,
    "optional_text": _optional_text,
    "int": _integer,
    "optional_int": _optional_integer,
    "bool": _boolean,
    "id": parse_id,
    "datetime": parse_datetime,
    "date": parse_date,
    "string_list": _string_list,
    "parts": _parts,
}


@dataclass(frozen=True)
class Field:
    external: str
    internal: str
    kind: str = "text"
    writable: bool = True


class FieldMap:
    def __init__(self, *fields: Field):
        self.fields = fields
        self._by_external = {f.external: f for f in fields}
        self._by_internal = {f.internal: f for f in fields}

    @property
    def internal_names(self) -> list[str]:
        return [f.internal for f in self.fields]

    def external_name(self, internal: str) -> str:
        return self._by_internal[internal].external

    def internal_name(self, external: str) -> str:
        return self._by_external[external].internal

    def to_internal(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Map only the writable fields present in ``payload``; unknown keys are ignored."""
        values: dict[str, Any] = {}
        for key, raw in (payload or {}).items():
            entry = self._by_external.get(key)
            if entry is None or not entry.writable:
                continue
            values[entry.internal] = CONVERTERS[entry.kind](raw, entry.external)
        return values

    def to_external(self, source: Any) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for entry in self.fields:
            if isinstance(source, dict):
                if entry.internal not in source:
                    continue
                value = source[entry.internal]
            else:
                value = getattr(source, entry.internal, None)
            if isinstance(value, (datetime, date)):
                value = iso(value)
            result[entry.external] = value
        return result


def _meta(*extra: Field) -> tuple[Field, ...]:
    return (
        Field("id", "id", "id", writable=False),
        Field("companyId", "company_id", "id", writable=False),
        *extra,
        Field("createdAt", "created_at", "datetime", writable=False),
    )


BUILDING_FIELDS = FieldMap(
    *_meta(
        Field("address", "address"),
        Field("neighborhood", "neighborhood"),
        Field("contactPhone", "contact_phone"),
        Field("entryHours", "entry_hours"),
        Field("clientName", "client_name"),
        Field("relationshipStartDate", "relationship_start_date", "date"),
    )
)

ELEVATOR_FIELDS = FieldMap(
    *_meta(
        Field("buildingId", "building_id", "id"),
        Field("number", "number", "int"),
        Field("locationDescription", "location_description"),
        Field("hasTwoDoors", "has_two_doors", "bool"),
        Field("status", "status"),
        Field("stops", "stops", "int"),
        Field("capacity", "capacity", "int"),
        Field("machineRoomLocation", "machine_room_location"),
        Field("controlType", "control_type"),
        Field("plateNumber", "plate_number", "optional_text"),
    )
)

EQUIPMENT_FIELDS = FieldMap(
    *_meta(
        Field("buildingId", "building_id", "id"),
        Field("type", "type"),
        Field("name", "name"),
        Field("locationDescription", "location_description"),
        Field("brand", "brand", "optional_text"),
        Field("model", "model", "optional_text"),
        Field("serialNumber", "serial_number", "optional_text"),
        Field("capacity", "capacity", "optional_int"),
        Field("status", "status"),
    )
)

TECHNICIAN_FIELDS = FieldMap(
    *_meta(
        Field("userId", "user_id", "id"),
        Field("name", "name"),
        Field("specialty", "specialty"),
        Field("contact", "contact"),
        Field("role", "role"),
    )
)

WORK_ORDER_FIELDS = FieldMap(
    *_meta(
        Field("claimType", "claim_type"),
        Field("correctiveType", "corrective_type", "optional_text"),
        Field("buildingId", "building_id", "id"),
        Field("elevatorId", "elevator_id", "id"),
        Field("equipmentId", "equipment_id", "id"),
        Field("technicianId", "technician_id", "id"),
        Field("contactName", "contact_name"),
        Field("contactPhone", "contact_phone"),
        Field("dateTime", "date_time", "datetime"),
        Field("description", "description"),
        Field("status", "status"),
        Field("priority", "priority"),
        Field("startTime", "start_time", "datetime"),
        Field("finishTime", "finish_time", "datetime"),
        Field("comments", "comments", "optional_text"),
        Field("partsUsed", "parts_used", "parts"),
        Field("photoUrls", "photo_urls", "string_list"),
        Field("signatureDataUrl", "signature_data_url", "optional_text"),
        Field("technicianSignatureDataUrl", "technician_signature_data_url", "optional_text"),
        Field("clientDni", "client_dni", "optional_text"),
        Field("clientClarification", "client_clarification", "optional_text"),
    )
)

ELEVATOR_HISTORY_FIELDS = FieldMap(
    *_meta(
        Field("elevatorId", "elevator_id", "id"),
        Field("workOrderId", "work_order_id", "id"),
        Field("date", "date", "date"),
        Field("description", "description"),
        Field("technicianName", "technician_name"),
    )
)

ENGINEER_FIELDS = FieldMap(
    Field("id", "id", "id", writable=False),
    Field("userId", "user_id", "id"),
    Field("name", "name"),
    Field("contact", "contact", "optional_text"),
    Field("createdAt", "created_at", "datetime", writable=False),
)

ENGINEER_MEMBERSHIP_FIELDS = FieldMap(
    Field("id", "id", "id", writable=False),
    Field("engineerId", "engineer_id", "id", writable=False),
    Field("companyId", "company_id", "id", writable=False),
    Field("createdAt", "created_at", "datetime", writable=False),
)

ENGINEER_REPORT_FIELDS = FieldMap(
    *_meta(
        Field("engineerId", "engineer_id", "id"),
        Field("address", "address"),
        Field("comments", "comments", "optional_text"),
        Field("isRead", "is_read", "bool"),
    )
)

REMITO_FIELDS = FieldMap(
    Field("id", "id", "id", writable=False),
    Field("companyId", "company_id", "id", writable=False),
    Field("workOrderId", "work_order_id", "id", writable=False),
    Field("remitoNumber", "remito_number", "int", writable=False),
    Field("fileUrl", "file_url", writable=False),
    Field("createdAt", "created_at", "datetime", writable=False),
    Field("updatedAt", "updated_at", "datetime", writable=False),
)
