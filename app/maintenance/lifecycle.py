"""
Work-order lifecycle: status transitions, completion rules and the derived
dashboard buckets.

Buckets and technician availability are pure functions of an order snapshot;
they are recomputed on every read and never stored. Calendar days are taken
in the business timezone (Buenos Aires by default), not the server's.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, MutableMapping
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

import structlog
from flask import current_app, has_app_context

from app.core.cache import snapshot_cache
from app.core.extensions import db
from app.core.i18n import label
from app.core.models import (
    Building,
    ElevatorHistory,
    Priority,
    STATUS_TRANSITIONS,
    Technician,
    WorkOrder,
    WorkOrderStatus,
    utcnow,
)
from app.core.utils import as_utc, iso
from app.maintenance import repository
from app.maintenance.autocorrect import autocorrect_parts, autocorrect_text
from app.maintenance.fields import WORK_ORDER_FIELDS

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"

COMPLETION_FIELDS = (
    "comments",
    "partsUsed",
    "photoUrls",
    "signatureDataUrl",
    "technicianSignatureDataUrl",
    "clientDni",
    "clientClarification",
)

PRIORITY_WEIGHT = {
    Priority.HIGH.value: 3,
    Priority.MEDIUM.value: 2,
    Priority.LOW.value: 1,
}

BUCKETS = ("due_today", "backlog", "unassigned", "in_progress", "completed_today", "completed_all")


def business_timezone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE", DEFAULT_TIMEZONE)
    return ZoneInfo(name)


def day_key(value: datetime, tz: ZoneInfo | None = None) -> str:
    """Calendar day (YYYY-MM-DD) of ``value`` in the business timezone."""
    return as_utc(value).astimezone(tz or business_timezone()).strftime("%Y-%m-%d")


def business_today(now: datetime | None = None, tz: ZoneInfo | None = None):
    return as_utc(now or utcnow()).astimezone(tz or business_timezone()).date()


def _check_transition(order: WorkOrder, target: str) -> None:
    current = order.status
    if current == WorkOrderStatus.COMPLETED.value:
        raise ValueError("La orden ya está completada")
    if target not in STATUS_TRANSITIONS.get(current, set()):
        raise ValueError(f"Transicion invalida: {current} -> {target}")


def _assigned_technician(order: WorkOrder) -> Technician | None:
    if order.technician_id is None:
        return None
    return Technician.query.filter_by(id=order.technician_id, company_id=order.company_id).first()


def _check_actor(order: WorkOrder, acting_user_id: int | None) -> Technician | None:
    if order.technician_id is None:
        return None
    technician = _assigned_technician(order)
    if technician is None or technician.user_id is None or technician.user_id != acting_user_id:
        raise PermissionError("Esta orden está asignada a otro técnico")
    return technician


def _completion_values(changes: Mapping[str, Any] | None) -> dict[str, Any]:
    allowed = {key: value for key, value in (changes or {}).items() if key in COMPLETION_FIELDS}
    values = WORK_ORDER_FIELDS.to_internal(allowed)
    if "comments" in values:
        values["comments"] = autocorrect_text(values["comments"])
    if "client_clarification" in values:
        values["client_clarification"] = autocorrect_text(values["client_clarification"])
    if "parts_used" in values:
        values["parts_used"] = autocorrect_parts(values["parts_used"])
    return values


def start_work_order(company_id: int, order_id, acting_user_id: int | None, now: datetime | None = None):
    order = repository.get_work_order(order_id, company_id)
    if order is None:
        return None
    _check_transition(order, WorkOrderStatus.IN_PROGRESS.value)
    _check_actor(order, acting_user_id)
    order.status = WorkOrderStatus.IN_PROGRESS.value
    order.start_time = as_utc(now) if now else utcnow()
    db.session.commit()
    repository.invalidate_company(company_id)
    logger.info("work_order_started", id=order.id, company_id=company_id, user_id=acting_user_id)
    return order


def save_work_order_progress(company_id: int, order_id, acting_user_id: int | None, changes: Mapping[str, Any]):
    order = repository.get_work_order(order_id, company_id)
    if order is None:
        return None
    if order.status == WorkOrderStatus.COMPLETED.value:
        raise ValueError("La orden ya está completada")
    _check_actor(order, acting_user_id)
    values = _completion_values(changes)
    try:
        for key, value in values.items():
            setattr(order, key, value)
    except ValueError:
        db.session.rollback()
        raise
    db.session.commit()
    repository.invalidate_company(company_id)
    return order


def _mark_completed(
    order: WorkOrder,
    acting_user_id: int | None,
    changes: Mapping[str, Any] | None,
    now: datetime | None,
) -> WorkOrder:
    # Preconditions are checked in order and before any mutation
    _check_transition(order, WorkOrderStatus.COMPLETED.value)
    technician = _check_actor(order, acting_user_id)
    values = _completion_values(changes)
    signature = values.get("signature_data_url", order.signature_data_url)
    if not signature:
        raise ValueError("La firma del cliente es obligatoria para completar la orden")

    finished_at = as_utc(now) if now else utcnow()
    try:
        for key, value in values.items():
            setattr(order, key, value)
        order.status = WorkOrderStatus.COMPLETED.value
        order.finish_time = finished_at
    except ValueError:
        db.session.rollback()
        raise

    if order.elevator_id is not None:
        technician = technician or _assigned_technician(order)
        db.session.add(
            ElevatorHistory(
                company_id=order.company_id,
                elevator_id=order.elevator_id,
                work_order_id=order.id,
                date=business_today(finished_at),
                description=f"{label('claim', order.claim_type)} - {order.description}",
                technician_name=technician.name if technician else "Desconocido",
            )
        )
    return order


def complete_work_order(
    company_id: int,
    order_id,
    acting_user_id: int | None,
    changes: Mapping[str, Any] | None = None,
    now: datetime | None = None,
):
    order = repository.get_work_order(order_id, company_id)
    if order is None:
        return None
    _mark_completed(order, acting_user_id, changes, now)
    db.session.commit()
    repository.invalidate_company(company_id)
    logger.info("work_order_completed", id=order.id, company_id=company_id, user_id=acting_user_id)
    return order


def complete_with_revisit(
    company_id: int,
    order_id,
    acting_user_id: int | None,
    changes: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> tuple[WorkOrder, WorkOrder] | None:
    """Complete an order and open an unassigned follow-up visit for the same asset."""
    order = repository.get_work_order(order_id, company_id)
    if order is None:
        return None
    _mark_completed(order, acting_user_id, changes, now)
    building = db.session.get(Building, order.building_id)
    follow_up = WorkOrder(
        company_id=company_id,
        claim_type=order.claim_type,
        corrective_type=order.corrective_type,
        building_id=order.building_id,
        elevator_id=order.elevator_id,
        equipment_id=order.equipment_id,
        technician_id=None,
        contact_name=order.contact_name or (building.client_name if building else ""),
        contact_phone=order.contact_phone or (building.contact_phone if building else ""),
        description=f"Revisita de OT #{order.id}: {order.description}",
        status=WorkOrderStatus.PENDING.value,
        priority=order.priority,
    )
    db.session.add(follow_up)
    db.session.commit()
    repository.invalidate_company(company_id)
    logger.info("work_order_revisit_created", id=order.id, follow_up_id=follow_up.id, company_id=company_id)
    return order, follow_up


def apply_optimistically(
    state: MutableMapping[Any, Any],
    changes: Mapping[Any, Any],
    confirm: Callable[[], T],
) -> T:
    """Apply ``changes`` to ``state`` now, then confirm remotely.

    If ``confirm`` raises, ``state`` is restored to its prior snapshot and the
    error is re-raised unchanged.
    """
    snapshot = dict(state)
    state.update(changes)
    try:
        return confirm()
    except Exception:
        state.clear()
        state.update(snapshot)
        raise


@dataclass(frozen=True)
class OrderView:
    id: int
    status: str
    priority: str
    claim_type: str
    building_id: int | None
    elevator_id: int | None
    equipment_id: int | None
    technician_id: int | None
    description: str
    date_time: datetime | None
    finish_time: datetime | None
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: WorkOrder) -> OrderView:
        return cls(
            id=row.id,
            status=row.status,
            priority=row.priority,
            claim_type=row.claim_type,
            building_id=row.building_id,
            elevator_id=row.elevator_id,
            equipment_id=row.equipment_id,
            technician_id=row.technician_id,
            description=row.description,
            date_time=as_utc(row.date_time),
            finish_time=as_utc(row.finish_time),
            created_at=as_utc(row.created_at),
        )

    def to_cache(self) -> dict[str, Any]:
        values = asdict(self)
        for name in ("date_time", "finish_time", "created_at"):
            values[name] = iso(values[name])
        return values

    @classmethod
    def from_cache(cls, values: Mapping[str, Any]) -> OrderView:
        data = dict(values)
        for name in ("date_time", "finish_time", "created_at"):
            data[name] = as_utc(datetime.fromisoformat(data[name])) if data.get(name) else None
        return cls(**data)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "priority": self.priority,
            "claimType": self.claim_type,
            "buildingId": self.building_id,
            "elevatorId": self.elevator_id,
            "equipmentId": self.equipment_id,
            "technicianId": self.technician_id,
            "description": self.description,
            "dateTime": iso(self.date_time),
            "finishTime": iso(self.finish_time),
            "createdAt": iso(self.created_at),
        }


def _is_due_today(order, today: str, tz: ZoneInfo) -> bool:
    return (
        order.status == WorkOrderStatus.PENDING.value
        and order.date_time is not None
        and day_key(order.date_time, tz) == today
    )


def classify_work_order(order, now: datetime | None = None, tz: ZoneInfo | None = None) -> set[str]:
    tz = tz or business_timezone()
    today = day_key(now or utcnow(), tz)
    buckets: set[str] = set()
    if order.status == WorkOrderStatus.PENDING.value:
        due = _is_due_today(order, today, tz)
        if due:
            buckets.add("due_today")
        if not due or order.technician_id is None:
            buckets.add("backlog")
        if order.technician_id is None:
            buckets.add("unassigned")
    elif order.status == WorkOrderStatus.IN_PROGRESS.value:
        buckets.add("in_progress")
    elif order.status == WorkOrderStatus.COMPLETED.value:
        buckets.add("completed_all")
        if order.finish_time is not None and day_key(order.finish_time, tz) == today:
            buckets.add("completed_today")
    return buckets


def _created_sort_value(order) -> float:
    created = getattr(order, "created_at", None)
    return as_utc(created).timestamp() if created else 0.0


def sort_work_orders(orders: Iterable[Any]) -> list[Any]:
    """In Progress first, then higher priority, then newest."""
    return sorted(
        orders,
        key=lambda o: (
            0 if o.status == WorkOrderStatus.IN_PROGRESS.value else 1,
            -PRIORITY_WEIGHT.get(o.priority, 0),
            -_created_sort_value(o),
        ),
    )


def filter_bucket(orders: Iterable[Any], bucket: str, now: datetime | None = None) -> list[Any]:
    if bucket not in BUCKETS:
        raise ValueError(f"Bucket desconocido: {bucket}")
    tz = business_timezone()
    return sort_work_orders(o for o in orders if bucket in classify_work_order(o, now, tz))


def bucket_counts(orders: Iterable[Any], now: datetime | None = None) -> dict[str, int]:
    tz = business_timezone()
    counts = {bucket: 0 for bucket in BUCKETS}
    for order in orders:
        for bucket in classify_work_order(order, now, tz):
            counts[bucket] += 1
    return counts


def due_today(orders, now=None):
    return filter_bucket(orders, "due_today", now)


def backlog(orders, now=None):
    return filter_bucket(orders, "backlog", now)


def unassigned(orders, now=None):
    return filter_bucket(orders, "unassigned", now)


def in_progress(orders, now=None):
    return filter_bucket(orders, "in_progress", now)


def completed_today(orders, now=None):
    return filter_bucket(orders, "completed_today", now)


def completed_all(orders, now=None):
    return filter_bucket(orders, "completed_all", now)


def technician_statuses(technicians: Iterable[Any], orders: Iterable[Any]) -> dict[int, str]:
    busy = {
        o.technician_id
        for o in orders
        if o.status == WorkOrderStatus.IN_PROGRESS.value and o.technician_id is not None
    }
    return {t.id: "busy" if t.id in busy else "free" for t in technicians}


def work_order_snapshot(company_id: int) -> list[OrderView]:
    """Current orders of a company, shared by concurrent dashboard reads."""

    def fetch() -> list[OrderView]:
        return [OrderView.from_row(row) for row in repository.list_work_orders(company_id)]

    return snapshot_cache().get_or_load(
        company_id,
        "work_orders",
        fetch,
        dump=lambda orders: [o.to_cache() for o in orders],
        load=lambda items: [OrderView.from_cache(item) for item in items],
    )


def dashboard(company_id: int, now: datetime | None = None) -> dict[str, Any]:
    orders = work_order_snapshot(company_id)
    technicians = repository.list_technicians(company_id)
    return {
        "counts": bucket_counts(orders, now),
        "technicians": technician_statuses(technicians, orders),
    }


class TaskBoard:
    """Technician task list view model with optimistic completion."""

    def __init__(self, company_id: int, acting_user_id: int | None, orders: Iterable[OrderView]):
        self.company_id = company_id
        self.acting_user_id = acting_user_id
        self.orders: dict[int, OrderView] = {o.id: o for o in orders}

    @classmethod
    def load(cls, company_id: int, acting_user_id: int | None, technician_id: int | None = None) -> TaskBoard:
        orders = work_order_snapshot(company_id)
        if technician_id is not None:
            orders = [o for o in orders if o.technician_id == technician_id]
        return cls(company_id, acting_user_id, orders)

    def tasks(self) -> list[OrderView]:
        return sort_work_orders(self.orders.values())

    def counts(self, now: datetime | None = None) -> dict[str, int]:
        return bucket_counts(self.orders.values(), now)

    def bucket(self, name: str, now: datetime | None = None) -> list[OrderView]:
        return filter_bucket(self.orders.values(), name, now)

    def complete(self, order_id: int, changes: Mapping[str, Any] | None = None, now: datetime | None = None) -> OrderView:
        current = self.orders.get(order_id)
        if current is None:
            raise LookupError(order_id)
        finished_at = as_utc(now) if now else datetime.now(timezone.utc)
        optimistic = replace(current, status=WorkOrderStatus.COMPLETED.value, finish_time=finished_at)

        def confirm() -> OrderView:
            row = complete_work_order(self.company_id, order_id, self.acting_user_id, changes, finished_at)
            if row is None:
                raise LookupError(order_id)
            return OrderView.from_row(row)

        confirmed = apply_optimistically(self.orders, {order_id: optimistic}, confirm)
        self.orders[order_id] = confirmed
        return confirmed
