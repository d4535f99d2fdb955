"""
Tenant-scoped data access for the maintenance domain.

Every read filters by ``company_id`` and every write stamps it, so a row that
belongs to another company behaves exactly like a missing row: ``get_*`` and
``update_*`` return ``None`` and nothing is written. Payloads use the external
camelCase field names; see :mod:`app.maintenance.fields`.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.core.cache import snapshot_cache
from app.core.extensions import db
from app.core.models import (
    Building,
    Company,
    CompanyJoinCode,
    Elevator,
    ElevatorHistory,
    Engineer,
    EngineerCompanyMembership,
    EngineerReport,
    Equipment,
    STATUS_TRANSITIONS,
    Technician,
    WorkOrder,
    WorkOrderStatus,
    utcnow,
)
from app.core.storage import PHOTOS_BUCKET, SIGNATURES_BUCKET, StorageError, get_storage
from app.core.utils import as_utc, decode_data_url, parse_id, to_null
from app.maintenance.fields import (
    BUILDING_FIELDS,
    ELEVATOR_FIELDS,
    ELEVATOR_HISTORY_FIELDS,
    ENGINEER_FIELDS,
    ENGINEER_REPORT_FIELDS,
    EQUIPMENT_FIELDS,
    TECHNICIAN_FIELDS,
    WORK_ORDER_FIELDS,
    FieldMap,
)

logger = structlog.get_logger(__name__)

WORK_ORDER_FILTERS = ("status", "priority", "technicianId", "buildingId", "elevatorId", "equipmentId")
ELEVATOR_FILTERS = ("buildingId", "status")
EQUIPMENT_FILTERS = ("buildingId", "type", "status")
TECHNICIAN_FILTERS = ("role", "userId")
HISTORY_FILTERS = ("elevatorId", "workOrderId")
REPORT_UPDATABLE = {"isRead", "comments", "address"}


def invalidate_company(company_id: int) -> None:
    snapshot_cache().invalidate(company_id)


def _safe_id(value) -> int | None:
    try:
        return parse_id(value, "id")
    except ValueError:
        return None


def _get(model, row_id, company_id: int):
    row_id = _safe_id(row_id)
    if row_id is None or company_id is None:
        return None
    return model.query.filter_by(id=row_id, company_id=company_id).first()


def _list(model, field_map: FieldMap, company_id: int, filters: dict[str, Any] | None, allowed, order_by):
    query = model.query.filter_by(company_id=company_id)
    for key in allowed:
        if key not in (filters or {}):
            continue
        values = field_map.to_internal({key: filters[key]})
        value = values.get(field_map.internal_name(key))
        if value is None or value == "":
            continue
        query = query.filter(getattr(model, field_map.internal_name(key)) == value)
    return query.order_by(*order_by).all()


def _assign(row, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


def _ensure_owned(model, row_id: int | None, company_id: int, message: str) -> None:
    if row_id is None:
        return
    exists = db.session.query(model.id).filter_by(id=row_id, company_id=company_id).first()
    if exists is None:
        raise ValueError(message)


def _build(model, field_map: FieldMap, fields: dict[str, Any], company_id: int, validate=None):
    values = field_map.to_internal(fields)
    if validate is not None:
        validate(values, company_id)
    row = model(company_id=company_id)
    _assign(row, values)
    return row


def _create(model, field_map: FieldMap, fields: dict[str, Any], company_id: int, validate=None):
    row = _build(model, field_map, fields, company_id, validate)
    db.session.add(row)
    db.session.commit()
    invalidate_company(company_id)
    logger.info("row_created", table=model.__tablename__, id=row.id, company_id=company_id)
    return row


def _update(model, field_map: FieldMap, row_id, fields: dict[str, Any], company_id: int, validate=None):
    row = _get(model, row_id, company_id)
    if row is None:
        return None
    values = field_map.to_internal(fields)
    if validate is not None:
        validate(values, company_id)
    try:
        _assign(row, values)
    except ValueError:
        db.session.rollback()
        raise
    db.session.commit()
    invalidate_company(company_id)
    return row


# Buildings


def _validate_building(values: dict[str, Any], company_id: int) -> None:
    if "address" in values and not values["address"]:
        raise ValueError("La dirección es obligatoria")


def list_buildings(company_id: int, filters: dict[str, Any] | None = None) -> list[Building]:
    return _list(Building, BUILDING_FIELDS, company_id, filters, (), (Building.created_at.desc(), Building.id.desc()))


def get_building(building_id, company_id: int) -> Building | None:
    return _get(Building, building_id, company_id)


def create_building(fields: dict[str, Any], company_id: int) -> Building:
    if not to_null((fields or {}).get("address")):
        raise ValueError("La dirección es obligatoria")
    return _create(Building, BUILDING_FIELDS, fields, company_id, _validate_building)


def update_building(building_id, fields: dict[str, Any], company_id: int) -> Building | None:
    return _update(Building, BUILDING_FIELDS, building_id, fields, company_id, _validate_building)


# Elevators


def _validate_elevator(values: dict[str, Any], company_id: int) -> None:
    if "building_id" in values:
        if values["building_id"] is None:
            raise ValueError("building_id es requerido para el ascensor")
        _ensure_owned(Building, values["building_id"], company_id, "El edificio no pertenece a la compañía")


def list_elevators(company_id: int, filters: dict[str, Any] | None = None) -> list[Elevator]:
    return _list(
        Elevator, ELEVATOR_FIELDS, company_id, filters, ELEVATOR_FILTERS, (Elevator.created_at.desc(), Elevator.id.desc())
    )


def get_elevator(elevator_id, company_id: int) -> Elevator | None:
    return _get(Elevator, elevator_id, company_id)


def create_elevator(fields: dict[str, Any], company_id: int) -> Elevator:
    if to_null((fields or {}).get("buildingId")) is None:
        raise ValueError("building_id es requerido para el ascensor")
    return _create(Elevator, ELEVATOR_FIELDS, fields, company_id, _validate_elevator)


def update_elevator(elevator_id, fields: dict[str, Any], company_id: int) -> Elevator | None:
    return _update(Elevator, ELEVATOR_FIELDS, elevator_id, fields, company_id, _validate_elevator)


# Equipment


def _validate_equipment(values: dict[str, Any], company_id: int) -> None:
    if "building_id" in values:
        if values["building_id"] is None:
            raise ValueError("building_id es requerido para el equipo")
        _ensure_owned(Building, values["building_id"], company_id, "El edificio no pertenece a la compañía")


def list_equipments(company_id: int, filters: dict[str, Any] | None = None) -> list[Equipment]:
    return _list(
        Equipment,
        EQUIPMENT_FIELDS,
        company_id,
        filters,
        EQUIPMENT_FILTERS,
        (Equipment.created_at.desc(), Equipment.id.desc()),
    )


def get_equipment(equipment_id, company_id: int) -> Equipment | None:
    return _get(Equipment, equipment_id, company_id)


def create_equipment(fields: dict[str, Any], company_id: int) -> Equipment:
    if to_null((fields or {}).get("buildingId")) is None:
        raise ValueError("building_id es requerido para el equipo")
    return _create(Equipment, EQUIPMENT_FIELDS, fields, company_id, _validate_equipment)


def update_equipment(equipment_id, fields: dict[str, Any], company_id: int) -> Equipment | None:
    return _update(Equipment, EQUIPMENT_FIELDS, equipment_id, fields, company_id, _validate_equipment)


def delete_equipment(equipment_id, company_id: int) -> bool:
    row = _get(Equipment, equipment_id, company_id)
    if row is None:
        return False
    in_use = WorkOrder.query.filter_by(company_id=company_id, equipment_id=row.id).count()
    if in_use:
        raise ValueError("El equipo tiene órdenes de trabajo asociadas")
    db.session.delete(row)
    db.session.commit()
    invalidate_company(company_id)
    logger.info("equipment_deleted", id=row.id, company_id=company_id)
    return True


def create_building_with_assets(
    company_id: int,
    building: dict[str, Any],
    elevators: list[dict[str, Any]] | None = None,
    equipments: list[dict[str, Any]] | None = None,
) -> Building:
    """Create a building plus its elevators and equipment in one transaction.

    Any validation or backend failure rolls the whole set back, so no building
    is left without the assets submitted with it.
    """
    if not to_null((building or {}).get("address")):
        raise ValueError("La dirección es obligatoria")
    try:
        row = _build(Building, BUILDING_FIELDS, building, company_id, _validate_building)
        db.session.add(row)
        db.session.flush()
        for fields in elevators or []:
            elevator = _build(Elevator, ELEVATOR_FIELDS, {**fields, "buildingId": row.id}, company_id)
            db.session.add(elevator)
        for fields in equipments or []:
            equipment = _build(Equipment, EQUIPMENT_FIELDS, {**fields, "buildingId": row.id}, company_id)
            db.session.add(equipment)
        db.session.flush()
    except (ValueError, SQLAlchemyError):
        db.session.rollback()
        logger.warning("building_with_assets_rolled_back", company_id=company_id)
        raise
    db.session.commit()
    invalidate_company(company_id)
    logger.info(
        "building_with_assets_created",
        id=row.id,
        company_id=company_id,
        elevators=len(elevators or []),
        equipments=len(equipments or []),
    )
    return row


# Technicians


def _validate_technician(values: dict[str, Any], company_id: int) -> None:
    if "name" in values and not values["name"]:
        raise ValueError("El nombre es obligatorio")


def list_technicians(company_id: int, filters: dict[str, Any] | None = None) -> list[Technician]:
    return _list(
        Technician,
        TECHNICIAN_FIELDS,
        company_id,
        filters,
        TECHNICIAN_FILTERS,
        (Technician.created_at.desc(), Technician.id.desc()),
    )


def get_technician(technician_id, company_id: int) -> Technician | None:
    return _get(Technician, technician_id, company_id)


def get_technician_by_user_id(user_id: int, company_id: int) -> Technician | None:
    return Technician.query.filter_by(user_id=user_id, company_id=company_id).first()


def create_technician(fields: dict[str, Any], company_id: int) -> Technician:
    if not to_null((fields or {}).get("name")):
        raise ValueError("El nombre es obligatorio")
    return _create(Technician, TECHNICIAN_FIELDS, fields, company_id, _validate_technician)


def update_technician(technician_id, fields: dict[str, Any], company_id: int) -> Technician | None:
    return _update(Technician, TECHNICIAN_FIELDS, technician_id, fields, company_id, _validate_technician)


def technician_status(company_id: int, technician_id) -> str | None:
    technician = get_technician(technician_id, company_id)
    if technician is None:
        return None
    busy = (
        WorkOrder.query.filter_by(
            company_id=company_id,
            technician_id=technician.id,
            status=WorkOrderStatus.IN_PROGRESS.value,
        ).first()
        is not None
    )
    return "busy" if busy else "free"


# Work orders

WORK_ORDER_REFS = ("building_id", "elevator_id", "equipment_id", "technician_id")


def _validate_work_order_refs(values: dict[str, Any], company_id: int) -> None:
    _ensure_owned(Building, values.get("building_id"), company_id, "El edificio no pertenece a la compañía")
    _ensure_owned(Elevator, values.get("elevator_id"), company_id, "El ascensor no pertenece a la compañía")
    _ensure_owned(Equipment, values.get("equipment_id"), company_id, "El equipo no pertenece a la compañía")
    _ensure_owned(Technician, values.get("technician_id"), company_id, "El técnico no pertenece a la compañía")


def _validate_work_order_assets(values: dict[str, Any], company_id: int) -> None:
    """Building set, at least one asset, and every asset inside that building."""
    if values.get("building_id") is None:
        raise ValueError("building_id es requerido para crear la orden")
    if values.get("elevator_id") is None and values.get("equipment_id") is None:
        raise ValueError("Debés asignar un ascensor o un equipo a la orden")
    _validate_work_order_refs(values, company_id)
    if values.get("elevator_id") is not None:
        elevator = db.session.get(Elevator, values["elevator_id"])
        if elevator.building_id != values["building_id"]:
            raise ValueError("El ascensor no pertenece al edificio indicado")
    if values.get("equipment_id") is not None:
        equipment = db.session.get(Equipment, values["equipment_id"])
        if equipment.building_id != values["building_id"]:
            raise ValueError("El equipo no pertenece al edificio indicado")


def _check_status_change(current: str, target: str) -> None:
    if target == current:
        return
    if target == WorkOrderStatus.COMPLETED.value:
        raise ValueError("Para completar la orden usá la finalización con firma del cliente")
    if target not in STATUS_TRANSITIONS.get(current, set()):
        raise ValueError(f"Transicion invalida: {current} -> {target}")


def list_work_orders(company_id: int, filters: dict[str, Any] | None = None) -> list[WorkOrder]:
    return _list(
        WorkOrder,
        WORK_ORDER_FIELDS,
        company_id,
        filters,
        WORK_ORDER_FILTERS,
        (WorkOrder.created_at.desc(), WorkOrder.id.desc()),
    )


def get_work_order(order_id, company_id: int) -> WorkOrder | None:
    return _get(WorkOrder, order_id, company_id)


def create_work_order(fields: dict[str, Any], company_id: int) -> WorkOrder:
    # New orders always start Pending; later states go through the lifecycle
    payload = {**(fields or {}), "status": WorkOrderStatus.PENDING.value}
    row = _build(WorkOrder, WORK_ORDER_FIELDS, payload, company_id, _validate_work_order_assets)
    db.session.add(row)
    db.session.commit()
    invalidate_company(company_id)
    logger.info("work_order_created", id=row.id, company_id=company_id, status=row.status)
    return row


def update_work_order(order_id, fields: dict[str, Any], company_id: int) -> WorkOrder | None:
    row = get_work_order(order_id, company_id)
    if row is None:
        return None
    values = WORK_ORDER_FIELDS.to_internal(fields)
    if "status" in values:
        _check_status_change(row.status, values["status"])

    merged = {name: getattr(row, name) for name in WORK_ORDER_REFS}
    merged.update({name: values[name] for name in WORK_ORDER_REFS if name in values})
    _validate_work_order_assets(merged, company_id)

    try:
        _assign(row, values)
    except ValueError:
        db.session.rollback()
        raise
    if row.status == WorkOrderStatus.IN_PROGRESS.value and row.start_time is None:
        row.start_time = utcnow()
    db.session.commit()
    invalidate_company(company_id)
    return row


def _content_bytes(content) -> bytes:
    if isinstance(content, FileStorage):
        return content.read()
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    if isinstance(content, str):
        return decode_data_url(content)[0]
    raise ValueError("Contenido de archivo no soportado")


def upload_photo(company_id: int, work_order_id, filename: str, content) -> str | None:
    order = get_work_order(work_order_id, company_id)
    if order is None:
        logger.warning("photo_upload_skipped", company_id=company_id, work_order_id=work_order_id)
        return None
    safe_name = secure_filename(filename or "") or "foto.jpg"
    storage = get_storage()
    stamp = int(time.time() * 1000)
    key = f"{company_id}/{order.id}/{stamp}_{safe_name}"
    while storage.exists(PHOTOS_BUCKET, key):
        stamp += 1
        key = f"{company_id}/{order.id}/{stamp}_{safe_name}"
    try:
        storage.upload(PHOTOS_BUCKET, key, _content_bytes(content), upsert=False)
    except (StorageError, ValueError) as exc:
        logger.error("photo_upload_failed", company_id=company_id, work_order_id=order.id, error=str(exc))
        return None
    return storage.public_url(PHOTOS_BUCKET, key)


def signature_key(company_id: int, work_order_id: int) -> str:
    return f"{company_id}/{work_order_id}/signature.png"


def upload_signature(company_id: int, work_order_id, content) -> str | None:
    order = get_work_order(work_order_id, company_id)
    if order is None:
        logger.warning("signature_upload_skipped", company_id=company_id, work_order_id=work_order_id)
        return None
    key = signature_key(company_id, order.id)
    storage = get_storage()
    try:
        storage.upload(SIGNATURES_BUCKET, key, _content_bytes(content), upsert=True)
    except (StorageError, ValueError) as exc:
        logger.error("signature_upload_failed", company_id=company_id, work_order_id=order.id, error=str(exc))
        return None
    return storage.public_url(SIGNATURES_BUCKET, key)


# Elevator history


def _validate_history(values: dict[str, Any], company_id: int) -> None:
    if "elevator_id" in values:
        if values["elevator_id"] is None:
            raise ValueError("elevator_id es requerido para el historial")
        _ensure_owned(Elevator, values["elevator_id"], company_id, "El ascensor no pertenece a la compañía")
    _ensure_owned(WorkOrder, values.get("work_order_id"), company_id, "La orden no pertenece a la compañía")
    if "date" in values and values["date"] is None:
        raise ValueError("La fecha es obligatoria")


def list_elevator_history(company_id: int, filters: dict[str, Any] | None = None) -> list[ElevatorHistory]:
    return _list(
        ElevatorHistory,
        ELEVATOR_HISTORY_FIELDS,
        company_id,
        filters,
        HISTORY_FILTERS,
        (ElevatorHistory.date.desc(), ElevatorHistory.created_at.desc(), ElevatorHistory.id.desc()),
    )


def get_elevator_history(history_id, company_id: int) -> ElevatorHistory | None:
    return _get(ElevatorHistory, history_id, company_id)


def create_elevator_history(fields: dict[str, Any], company_id: int) -> ElevatorHistory:
    payload = fields or {}
    if to_null(payload.get("elevatorId")) is None:
        raise ValueError("elevator_id es requerido para el historial")
    if to_null(payload.get("date")) is None:
        raise ValueError("La fecha es obligatoria")
    return _create(ElevatorHistory, ELEVATOR_HISTORY_FIELDS, payload, company_id, _validate_history)


def update_elevator_history(history_id, fields: dict[str, Any], company_id: int) -> ElevatorHistory | None:
    return _update(ElevatorHistory, ELEVATOR_HISTORY_FIELDS, history_id, fields, company_id, _validate_history)


# Engineers


def resolve_join_code(code: str | None) -> CompanyJoinCode:
    raw = (code or "").strip()
    join_code = CompanyJoinCode.query.filter_by(code=raw).first() if raw else None
    if join_code is None or not join_code.is_active:
        raise ValueError("Código de ingreso inválido o inactivo")
    if join_code.expires_at is not None and as_utc(join_code.expires_at) < datetime.now(timezone.utc):
        raise ValueError("El código de ingreso está vencido")
    return join_code


def create_engineer(fields: dict[str, Any]) -> Engineer:
    values = ENGINEER_FIELDS.to_internal(fields)
    if values.get("user_id") is None:
        raise ValueError("user_id es requerido para el ingeniero")
    if not values.get("name"):
        raise ValueError("El nombre es obligatorio")
    if Engineer.query.filter_by(user_id=values["user_id"]).first() is not None:
        raise ValueError("El usuario ya tiene un perfil de ingeniero")
    engineer = Engineer()
    _assign(engineer, values)
    db.session.add(engineer)
    db.session.commit()
    logger.info("engineer_created", id=engineer.id)
    return engineer


def get_engineer(engineer_id) -> Engineer | None:
    engineer_id = _safe_id(engineer_id)
    if engineer_id is None:
        return None
    return db.session.get(Engineer, engineer_id)


def get_engineer_by_user_id(user_id: int) -> Engineer | None:
    return Engineer.query.filter_by(user_id=user_id).first()


def update_engineer(engineer_id, fields: dict[str, Any]) -> Engineer | None:
    engineer = get_engineer(engineer_id)
    if engineer is None:
        return None
    values = ENGINEER_FIELDS.to_internal(fields)
    # The owning identity never changes
    values.pop("user_id", None)
    if "name" in values and not values["name"]:
        raise ValueError("El nombre es obligatorio")
    _assign(engineer, values)
    db.session.commit()
    for membership in engineer.memberships:
        invalidate_company(membership.company_id)
    return engineer


def list_engineers(company_id: int) -> list[Engineer]:
    return (
        Engineer.query.join(EngineerCompanyMembership, EngineerCompanyMembership.engineer_id == Engineer.id)
        .filter(EngineerCompanyMembership.company_id == company_id)
        .order_by(Engineer.created_at.desc(), Engineer.id.desc())
        .all()
    )


def get_company_engineer(engineer_id, company_id: int) -> Engineer | None:
    engineer_id = _safe_id(engineer_id)
    if engineer_id is None:
        return None
    return (
        Engineer.query.join(EngineerCompanyMembership, EngineerCompanyMembership.engineer_id == Engineer.id)
        .filter(EngineerCompanyMembership.company_id == company_id, Engineer.id == engineer_id)
        .first()
    )


def list_engineer_memberships(engineer_id: int) -> list[EngineerCompanyMembership]:
    return (
        EngineerCompanyMembership.query.filter_by(engineer_id=engineer_id)
        .order_by(EngineerCompanyMembership.created_at.asc(), EngineerCompanyMembership.id.asc())
        .all()
    )


def join_company_with_code(engineer_id: int, code: str) -> EngineerCompanyMembership:
    engineer = get_engineer(engineer_id)
    if engineer is None:
        raise ValueError("Ingeniero no encontrado")
    join_code = resolve_join_code(code)
    existing = EngineerCompanyMembership.query.filter_by(
        engineer_id=engineer.id, company_id=join_code.company_id
    ).first()
    if existing is not None:
        raise ValueError("Ya estás asociado a esta compañía")
    membership = EngineerCompanyMembership(engineer_id=engineer.id, company_id=join_code.company_id)
    db.session.add(membership)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValueError("Ya estás asociado a esta compañía") from exc
    invalidate_company(join_code.company_id)
    logger.info("engineer_joined_company", engineer_id=engineer.id, company_id=join_code.company_id)
    return membership


def remove_engineer_membership(engineer_id: int, membership_id) -> bool:
    membership_id = _safe_id(membership_id)
    membership = (
        EngineerCompanyMembership.query.filter_by(id=membership_id, engineer_id=engineer_id).first()
        if membership_id is not None
        else None
    )
    if membership is None:
        return False
    company_id = membership.company_id
    db.session.delete(membership)
    db.session.commit()
    invalidate_company(company_id)
    logger.info("engineer_left_company", engineer_id=engineer_id, company_id=company_id)
    return True


def company_name(company_id: int) -> str:
    company = db.session.get(Company, company_id)
    return company.name if company else ""


# Engineer reports


def list_engineer_reports(company_id: int, engineer_id=None) -> list[EngineerReport]:
    query = EngineerReport.query.filter_by(company_id=company_id)
    engineer_id = _safe_id(engineer_id)
    if engineer_id is not None:
        query = query.filter_by(engineer_id=engineer_id)
    return query.order_by(EngineerReport.created_at.desc(), EngineerReport.id.desc()).all()


def get_engineer_report(report_id, company_id: int) -> EngineerReport | None:
    return _get(EngineerReport, report_id, company_id)


def create_engineer_report(fields: dict[str, Any], company_id: int) -> EngineerReport:
    values = ENGINEER_REPORT_FIELDS.to_internal(fields)
    if not values.get("address"):
        raise ValueError("La dirección es obligatoria")
    engineer_id = values.get("engineer_id")
    if engineer_id is None or get_company_engineer(engineer_id, company_id) is None:
        raise ValueError("El ingeniero no pertenece a esta compañía")
    values["is_read"] = False
    report = EngineerReport(company_id=company_id)
    _assign(report, values)
    db.session.add(report)
    db.session.commit()
    invalidate_company(company_id)
    logger.info("engineer_report_created", id=report.id, company_id=company_id, engineer_id=engineer_id)
    return report


def update_engineer_report(report_id, fields: dict[str, Any], company_id: int) -> EngineerReport | None:
    allowed = {key: value for key, value in (fields or {}).items() if key in REPORT_UPDATABLE}
    return _update(EngineerReport, ENGINEER_REPORT_FIELDS, report_id, allowed, company_id)


def count_unread_reports_by_engineer(company_id: int) -> dict[int, int]:
    rows = (
        db.session.query(EngineerReport.engineer_id, func.count(EngineerReport.id))
        .filter(EngineerReport.company_id == company_id, EngineerReport.is_read.is_(False))
        .group_by(EngineerReport.engineer_id)
        .all()
    )
    return {engineer_id: count for engineer_id, count in rows}
