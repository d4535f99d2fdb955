from __future__ import annotations

from flask import Response, abort, g, jsonify, request
from flask_login import current_user, login_required

from app.core.models import MemberRole
from app.core.permissions import require_membership, require_role
from app.core.utils import request_payload
from app.maintenance import lifecycle, maintenance_bp, receipts, repository
from app.maintenance.fields import (
    BUILDING_FIELDS,
    ELEVATOR_FIELDS,
    ELEVATOR_HISTORY_FIELDS,
    ENGINEER_FIELDS,
    ENGINEER_MEMBERSHIP_FIELDS,
    ENGINEER_REPORT_FIELDS,
    EQUIPMENT_FIELDS,
    REMITO_FIELDS,
    TECHNICIAN_FIELDS,
    WORK_ORDER_FIELDS,
)

OFFICE = MemberRole.OFFICE.value
TECHNICIAN = MemberRole.TECHNICIAN.value
ENGINEER = MemberRole.ENGINEER.value


def _company_id() -> int:
    return g.company_id


def _one(row, field_map):
    if row is None:
        abort(404)
    return jsonify(field_map.to_external(row))


def _many(rows, field_map):
    return jsonify([field_map.to_external(row) for row in rows])


def _filters() -> dict[str, str]:
    return request.args.to_dict()


# Dashboard


@maintenance_bp.get("/dashboard")
@login_required
@require_membership
def dashboard():
    return jsonify(lifecycle.dashboard(_company_id()))


# Buildings


@maintenance_bp.get("/buildings")
@login_required
@require_membership
def buildings_list():
    return _many(repository.list_buildings(_company_id(), _filters()), BUILDING_FIELDS)


@maintenance_bp.post("/buildings")
@login_required
@require_membership
@require_role(OFFICE)
def buildings_create():
    row = repository.create_building(request_payload(), _company_id())
    return jsonify(BUILDING_FIELDS.to_external(row)), 201


@maintenance_bp.post("/buildings/with-assets")
@login_required
@require_membership
@require_role(OFFICE)
def buildings_create_with_assets():
    payload = request_payload()
    building = repository.create_building_with_assets(
        _company_id(),
        payload.get("building") or {},
        payload.get("elevators") or [],
        payload.get("equipments") or [],
    )
    body = BUILDING_FIELDS.to_external(building)
    body["elevators"] = [ELEVATOR_FIELDS.to_external(e) for e in building.elevators]
    body["equipments"] = [EQUIPMENT_FIELDS.to_external(e) for e in building.equipments]
    return jsonify(body), 201


@maintenance_bp.get("/buildings/<int:building_id>")
@login_required
@require_membership
def buildings_detail(building_id: int):
    return _one(repository.get_building(building_id, _company_id()), BUILDING_FIELDS)


@maintenance_bp.patch("/buildings/<int:building_id>")
@login_required
@require_membership
@require_role(OFFICE)
def buildings_update(building_id: int):
    return _one(repository.update_building(building_id, request_payload(), _company_id()), BUILDING_FIELDS)


# Elevators


@maintenance_bp.get("/elevators")
@login_required
@require_membership
def elevators_list():
    return _many(repository.list_elevators(_company_id(), _filters()), ELEVATOR_FIELDS)


@maintenance_bp.post("/elevators")
@login_required
@require_membership
@require_role(OFFICE)
def elevators_create():
    row = repository.create_elevator(request_payload(), _company_id())
    return jsonify(ELEVATOR_FIELDS.to_external(row)), 201


@maintenance_bp.get("/elevators/<int:elevator_id>")
@login_required
@require_membership
def elevators_detail(elevator_id: int):
    return _one(repository.get_elevator(elevator_id, _company_id()), ELEVATOR_FIELDS)


@maintenance_bp.patch("/elevators/<int:elevator_id>")
@login_required
@require_membership
@require_role(OFFICE)
def elevators_update(elevator_id: int):
    return _one(repository.update_elevator(elevator_id, request_payload(), _company_id()), ELEVATOR_FIELDS)


# Equipment


@maintenance_bp.get("/equipments")
@login_required
@require_membership
def equipments_list():
    return _many(repository.list_equipments(_company_id(), _filters()), EQUIPMENT_FIELDS)


@maintenance_bp.post("/equipments")
@login_required
@require_membership
@require_role(OFFICE)
def equipments_create():
    row = repository.create_equipment(request_payload(), _company_id())
    return jsonify(EQUIPMENT_FIELDS.to_external(row)), 201


@maintenance_bp.get("/equipments/<int:equipment_id>")
@login_required
@require_membership
def equipments_detail(equipment_id: int):
    return _one(repository.get_equipment(equipment_id, _company_id()), EQUIPMENT_FIELDS)


@maintenance_bp.patch("/equipments/<int:equipment_id>")
@login_required
@require_membership
@require_role(OFFICE)
def equipments_update(equipment_id: int):
    return _one(repository.update_equipment(equipment_id, request_payload(), _company_id()), EQUIPMENT_FIELDS)


@maintenance_bp.delete("/equipments/<int:equipment_id>")
@login_required
@require_membership
@require_role(OFFICE)
def equipments_delete(equipment_id: int):
    if not repository.delete_equipment(equipment_id, _company_id()):
        abort(404)
    return "", 204


# Technicians


def _technician_body(row, statuses: dict[int, str]) -> dict[str, object]:
    body = TECHNICIAN_FIELDS.to_external(row)
    body["status"] = statuses.get(row.id, "free")
    return body


@maintenance_bp.get("/technicians")
@login_required
@require_membership
def technicians_list():
    company_id = _company_id()
    technicians = repository.list_technicians(company_id, _filters())
    statuses = lifecycle.technician_statuses(technicians, lifecycle.work_order_snapshot(company_id))
    return jsonify([_technician_body(row, statuses) for row in technicians])


@maintenance_bp.post("/technicians")
@login_required
@require_membership
@require_role(OFFICE)
def technicians_create():
    row = repository.create_technician(request_payload(), _company_id())
    return jsonify(_technician_body(row, {})), 201


@maintenance_bp.get("/technicians/<int:technician_id>")
@login_required
@require_membership
def technicians_detail(technician_id: int):
    company_id = _company_id()
    row = repository.get_technician(technician_id, company_id)
    if row is None:
        abort(404)
    return jsonify(_technician_body(row, {row.id: repository.technician_status(company_id, row.id)}))


@maintenance_bp.patch("/technicians/<int:technician_id>")
@login_required
@require_membership
@require_role(OFFICE)
def technicians_update(technician_id: int):
    return _one(repository.update_technician(technician_id, request_payload(), _company_id()), TECHNICIAN_FIELDS)


# Work orders


@maintenance_bp.get("/work-orders")
@login_required
@require_membership
def work_orders_list():
    filters = _filters()
    bucket = filters.pop("bucket", None)
    rows = repository.list_work_orders(_company_id(), filters)
    if bucket:
        rows = lifecycle.filter_bucket(rows, bucket)
    return _many(rows, WORK_ORDER_FIELDS)


@maintenance_bp.post("/work-orders")
@login_required
@require_membership
@require_role(OFFICE)
def work_orders_create():
    row = repository.create_work_order(request_payload(), _company_id())
    return jsonify(WORK_ORDER_FIELDS.to_external(row)), 201


@maintenance_bp.get("/work-orders/<int:order_id>")
@login_required
@require_membership
def work_orders_detail(order_id: int):
    return _one(repository.get_work_order(order_id, _company_id()), WORK_ORDER_FIELDS)


@maintenance_bp.patch("/work-orders/<int:order_id>")
@login_required
@require_membership
@require_role(OFFICE)
def work_orders_update(order_id: int):
    return _one(repository.update_work_order(order_id, request_payload(), _company_id()), WORK_ORDER_FIELDS)


@maintenance_bp.post("/work-orders/<int:order_id>/start")
@login_required
@require_membership
def work_orders_start(order_id: int):
    row = lifecycle.start_work_order(_company_id(), order_id, current_user.id)
    return _one(row, WORK_ORDER_FIELDS)


@maintenance_bp.post("/work-orders/<int:order_id>/progress")
@login_required
@require_membership
def work_orders_progress(order_id: int):
    row = lifecycle.save_work_order_progress(_company_id(), order_id, current_user.id, request_payload())
    return _one(row, WORK_ORDER_FIELDS)


@maintenance_bp.post("/work-orders/<int:order_id>/complete")
@login_required
@require_membership
def work_orders_complete(order_id: int):
    row = lifecycle.complete_work_order(_company_id(), order_id, current_user.id, request_payload())
    return _one(row, WORK_ORDER_FIELDS)


@maintenance_bp.post("/work-orders/<int:order_id>/revisit")
@login_required
@require_membership
def work_orders_revisit(order_id: int):
    result = lifecycle.complete_with_revisit(_company_id(), order_id, current_user.id, request_payload())
    if result is None:
        abort(404)
    order, follow_up = result
    return jsonify(
        {
            "workOrder": WORK_ORDER_FIELDS.to_external(order),
            "followUp": WORK_ORDER_FIELDS.to_external(follow_up),
        }
    )


@maintenance_bp.post("/work-orders/<int:order_id>/photos")
@login_required
@require_membership
def work_orders_photo(order_id: int):
    upload = request.files.get("file")
    if upload is not None:
        url = repository.upload_photo(_company_id(), order_id, upload.filename or "", upload)
    else:
        payload = request_payload()
        url = repository.upload_photo(_company_id(), order_id, payload.get("filename", ""), payload.get("dataUrl", ""))
    if url is None:
        return jsonify({"error": "No se pudo subir la foto"}), 400
    return jsonify({"url": url}), 201


@maintenance_bp.post("/work-orders/<int:order_id>/signature")
@login_required
@require_membership
def work_orders_signature(order_id: int):
    upload = request.files.get("file")
    content = upload if upload is not None else request_payload().get("dataUrl", "")
    url = repository.upload_signature(_company_id(), order_id, content)
    if url is None:
        return jsonify({"error": "No se pudo subir la firma"}), 400
    return jsonify({"url": url}), 201


@maintenance_bp.post("/work-orders/<int:order_id>/remito")
@login_required
@require_membership
def work_orders_remito_generate(order_id: int):
    remito = receipts.generate_remito(_company_id(), order_id)
    if remito is None:
        abort(404)
    body = REMITO_FIELDS.to_external(remito)
    body["displayNumber"] = remito.display_number
    return jsonify(body), 201


@maintenance_bp.get("/work-orders/<int:order_id>/remito")
@login_required
@require_membership
def work_orders_remito_detail(order_id: int):
    remito = receipts.get_remito(_company_id(), order_id)
    if remito is None:
        abort(404)
    body = REMITO_FIELDS.to_external(remito)
    body["displayNumber"] = remito.display_number
    return jsonify(body)


@maintenance_bp.get("/work-orders/<int:order_id>/pdf")
@login_required
@require_membership
def work_orders_pdf(order_id: int):
    pdf = receipts.work_order_summary_pdf(_company_id(), order_id)
    if pdf is None:
        abort(404)
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f"inline; filename=orden_{order_id}.pdf"},
    )


# Technician task board


def _task_board() -> lifecycle.TaskBoard:
    company_id = _company_id()
    technician = repository.get_technician_by_user_id(current_user.id, company_id)
    if technician is None:
        abort(404)
    return lifecycle.TaskBoard.load(company_id, current_user.id, technician.id)


@maintenance_bp.get("/tasks")
@login_required
@require_membership
@require_role(TECHNICIAN)
def tasks_list():
    board = _task_board()
    bucket = request.args.get("bucket")
    tasks = board.bucket(bucket) if bucket else board.tasks()
    return jsonify({"counts": board.counts(), "tasks": [task.as_dict() for task in tasks]})


@maintenance_bp.post("/tasks/<int:order_id>/complete")
@login_required
@require_membership
@require_role(TECHNICIAN)
def tasks_complete(order_id: int):
    board = _task_board()
    try:
        task = board.complete(order_id, request_payload())
    except LookupError:
        abort(404)
    return jsonify({"task": task.as_dict(), "counts": board.counts()})


# Elevator history


@maintenance_bp.get("/elevator-history")
@login_required
@require_membership
def history_list():
    return _many(repository.list_elevator_history(_company_id(), _filters()), ELEVATOR_HISTORY_FIELDS)


@maintenance_bp.post("/elevator-history")
@login_required
@require_membership
@require_role(OFFICE)
def history_create():
    row = repository.create_elevator_history(request_payload(), _company_id())
    return jsonify(ELEVATOR_HISTORY_FIELDS.to_external(row)), 201


@maintenance_bp.get("/elevator-history/<int:history_id>")
@login_required
@require_membership
def history_detail(history_id: int):
    return _one(repository.get_elevator_history(history_id, _company_id()), ELEVATOR_HISTORY_FIELDS)


@maintenance_bp.patch("/elevator-history/<int:history_id>")
@login_required
@require_membership
@require_role(OFFICE)
def history_update(history_id: int):
    row = repository.update_elevator_history(history_id, request_payload(), _company_id())
    return _one(row, ELEVATOR_HISTORY_FIELDS)


# Engineers seen from a company


@maintenance_bp.get("/engineers")
@login_required
@require_membership
@require_role(OFFICE)
def engineers_list():
    company_id = _company_id()
    unread = repository.count_unread_reports_by_engineer(company_id)
    body = []
    for engineer in repository.list_engineers(company_id):
        item = ENGINEER_FIELDS.to_external(engineer)
        item["unreadReports"] = unread.get(engineer.id, 0)
        body.append(item)
    return jsonify(body)


@maintenance_bp.get("/engineers/<int:engineer_id>")
@login_required
@require_membership
@require_role(OFFICE)
def engineers_detail(engineer_id: int):
    return _one(repository.get_company_engineer(engineer_id, _company_id()), ENGINEER_FIELDS)


# Engineer self-service (no active company required)


def _own_engineer_id() -> int:
    engineer_id = getattr(g, "engineer_id", None)
    if engineer_id is None:
        abort(403)
    return engineer_id


@maintenance_bp.get("/engineer/profile")
@login_required
@require_role(ENGINEER)
def engineer_profile():
    return _one(repository.get_engineer(_own_engineer_id()), ENGINEER_FIELDS)


@maintenance_bp.patch("/engineer/profile")
@login_required
@require_role(ENGINEER)
def engineer_profile_update():
    return _one(repository.update_engineer(_own_engineer_id(), request_payload()), ENGINEER_FIELDS)


@maintenance_bp.get("/engineer/memberships")
@login_required
@require_role(ENGINEER)
def engineer_memberships():
    rows = repository.list_engineer_memberships(_own_engineer_id())
    body = []
    for row in rows:
        item = ENGINEER_MEMBERSHIP_FIELDS.to_external(row)
        item["companyName"] = repository.company_name(row.company_id)
        body.append(item)
    return jsonify(body)


@maintenance_bp.post("/engineer/memberships")
@login_required
@require_role(ENGINEER)
def engineer_join_company():
    membership = repository.join_company_with_code(_own_engineer_id(), request_payload().get("joinCode", ""))
    return jsonify(ENGINEER_MEMBERSHIP_FIELDS.to_external(membership)), 201


@maintenance_bp.delete("/engineer/memberships/<int:membership_id>")
@login_required
@require_role(ENGINEER)
def engineer_leave_company(membership_id: int):
    if not repository.remove_engineer_membership(_own_engineer_id(), membership_id):
        abort(404)
    return "", 204


# Engineer reports


@maintenance_bp.get("/engineer-reports")
@login_required
@require_membership
def reports_list():
    engineer_id = request.args.get("engineerId")
    if g.role == ENGINEER:
        engineer_id = g.engineer_id
    rows = repository.list_engineer_reports(_company_id(), engineer_id)
    return _many(rows, ENGINEER_REPORT_FIELDS)


@maintenance_bp.post("/engineer-reports")
@login_required
@require_membership
@require_role(ENGINEER)
def reports_create():
    payload = {**request_payload(), "engineerId": _own_engineer_id()}
    row = repository.create_engineer_report(payload, _company_id())
    return jsonify(ENGINEER_REPORT_FIELDS.to_external(row)), 201


@maintenance_bp.get("/engineer-reports/<int:report_id>")
@login_required
@require_membership
def reports_detail(report_id: int):
    row = repository.get_engineer_report(report_id, _company_id())
    if row is not None and g.role == ENGINEER and row.engineer_id != g.engineer_id:
        row = None
    return _one(row, ENGINEER_REPORT_FIELDS)


@maintenance_bp.patch("/engineer-reports/<int:report_id>")
@login_required
@require_membership
@require_role(OFFICE)
def reports_update(report_id: int):
    row = repository.update_engineer_report(report_id, request_payload(), _company_id())
    return _one(row, ENGINEER_REPORT_FIELDS)
