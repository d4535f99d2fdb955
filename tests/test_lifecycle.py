from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.core.extensions import db
from app.core.models import ElevatorHistory, Technician, WorkOrder
from app.maintenance import lifecycle, repository
from app.maintenance.lifecycle import OrderView, TaskBoard, apply_optimistically, classify_work_order


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _view(**overrides) -> OrderView:
    values = {
        "id": 1,
        "status": "Pending",
        "priority": "Low",
        "claim_type": "Corrective",
        "building_id": 1,
        "elevator_id": 1,
        "equipment_id": None,
        "technician_id": 7,
        "description": "",
        "date_time": None,
        "finish_time": None,
        "created_at": _utc(2026, 1, 1, 12, 0),
    }
    values.update(overrides)
    return OrderView(**values)


def _assigned_order(demo) -> WorkOrder:
    return WorkOrder.query.filter_by(company_id=demo["company_id"], technician_id=demo["technician_id"]).first()


def test_completion_requires_signature_and_keeps_status(app, demo):
    with app.app_context():
        order = _assigned_order(demo)
        lifecycle.start_work_order(demo["company_id"], order.id, demo["tech_user_id"])
        with pytest.raises(ValueError, match="firma"):
            lifecycle.complete_work_order(demo["company_id"], order.id, demo["tech_user_id"], {"comments": "listo"})
        db.session.expire_all()
        reloaded = db.session.get(WorkOrder, order.id)
        assert reloaded.status == "In Progress"
        assert reloaded.finish_time is None
        assert reloaded.comments is None


def test_completion_by_another_identity_is_rejected(app, demo, signature):
    with app.app_context():
        order = _assigned_order(demo)
        with pytest.raises(PermissionError):
            lifecycle.complete_work_order(
                demo["company_id"], order.id, demo["office_user_id"], {"signatureDataUrl": signature}
            )
        assert db.session.get(WorkOrder, order.id).status == "Pending"


def test_completed_order_cannot_be_completed_again(app, demo, signature):
    with app.app_context():
        order = _assigned_order(demo)
        lifecycle.complete_work_order(demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature})
        with pytest.raises(ValueError, match="ya está completada"):
            lifecycle.complete_work_order(
                demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature}
            )


def test_completion_persists_changes_and_appends_history(app, demo, signature):
    finished = _utc(2026, 3, 11, 1, 30)  # 22:30 on March 10th in Buenos Aires
    with app.app_context():
        order = _assigned_order(demo)
        completed = lifecycle.complete_work_order(
            demo["company_id"],
            order.id,
            demo["tech_user_id"],
            {
                "comments": "cambio de  valvula en asensor",
                "partsUsed": [{"name": "plaqueta", "quantity": "1"}],
                "signatureDataUrl": signature,
                "clientDni": "30111222",
                "clientClarification": "Encargado",
                "status": "Pending",
            },
            now=finished,
        )
        assert completed.status == "Completed"
        assert completed.comments == "cambio de válvula en ascensor"
        assert completed.parts_used == [{"name": "placa", "quantity": 1}]
        assert completed.client_dni == "30111222"

        history = ElevatorHistory.query.filter_by(work_order_id=order.id).one()
        assert history.elevator_id == demo["elevator_id"]
        assert history.date.isoformat() == "2026-03-10"
        assert history.description == "Mantenimiento mensual - Mantenimiento mensual ascensor 1"
        assert history.technician_name == "Juan Pérez"


def test_unassigned_order_can_be_completed_by_anyone(app, demo, signature):
    with app.app_context():
        order = WorkOrder.query.filter_by(company_id=demo["company_id"], technician_id=None).first()
        completed = lifecycle.complete_work_order(
            demo["company_id"], order.id, demo["office_user_id"], {"signatureDataUrl": signature}
        )
        assert completed.status == "Completed"
        # Equipment orders do not feed the elevator service log
        assert ElevatorHistory.query.filter_by(work_order_id=order.id).count() == 0


def test_technician_without_identity_blocks_completion(app, demo, signature):
    with app.app_context():
        ghost = Technician(company_id=demo["company_id"], name="Sin usuario")
        db.session.add(ghost)
        db.session.commit()
        order = _assigned_order(demo)
        repository.update_work_order(order.id, {"technicianId": ghost.id}, demo["company_id"])
        with pytest.raises(PermissionError):
            lifecycle.complete_work_order(
                demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature}
            )


def test_completion_of_foreign_order_is_not_found(app, demo, other_company, signature):
    with app.app_context():
        result = lifecycle.complete_work_order(
            demo["company_id"], other_company["work_order_id"], demo["tech_user_id"], {"signatureDataUrl": signature}
        )
        assert result is None


def test_start_sets_start_time_and_rejects_restart(app, demo):
    with app.app_context():
        order = _assigned_order(demo)
        started = lifecycle.start_work_order(demo["company_id"], order.id, demo["tech_user_id"], now=_utc(2026, 3, 10, 12))
        assert started.status == "In Progress"
        assert started.start_time is not None
        with pytest.raises(ValueError, match="Transicion invalida"):
            lifecycle.start_work_order(demo["company_id"], order.id, demo["tech_user_id"])


def test_save_progress_keeps_status(app, demo):
    with app.app_context():
        order = _assigned_order(demo)
        saved = lifecycle.save_work_order_progress(
            demo["company_id"], order.id, demo["tech_user_id"], {"comments": "revisar llabe", "status": "Completed"}
        )
        assert saved.status == "Pending"
        assert saved.comments == "revisar llave"


def test_complete_with_revisit_opens_unassigned_follow_up(app, demo, signature):
    with app.app_context():
        order = _assigned_order(demo)
        done, follow_up = lifecycle.complete_with_revisit(
            demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature}
        )
        assert done.status == "Completed"
        assert follow_up.status == "Pending"
        assert follow_up.technician_id is None
        assert follow_up.elevator_id == order.elevator_id
        assert follow_up.description == f"Revisita de OT #{order.id}: Mantenimiento mensual ascensor 1"
        assert follow_up.contact_name == "Encargado"


def test_due_today_uses_buenos_aires_calendar_day():
    # 23:30 in Buenos Aires is already the next day in UTC
    order = _view(date_time=_utc(2026, 3, 11, 2, 30))
    late_evening = _utc(2026, 3, 11, 2, 45)
    assert "due_today" in classify_work_order(order, late_evening)

    # Early morning in UTC is still the previous day in Buenos Aires
    morning_order = _view(date_time=_utc(2026, 3, 11, 4, 0))
    assert "due_today" not in classify_work_order(morning_order, late_evening)
    assert "due_today" in classify_work_order(morning_order, _utc(2026, 3, 11, 13, 0))


def test_completed_today_uses_buenos_aires_calendar_day():
    order = _view(status="Completed", finish_time=_utc(2026, 3, 11, 1, 0))
    assert classify_work_order(order, _utc(2026, 3, 10, 15, 0)) == {"completed_all", "completed_today"}
    assert classify_work_order(order, _utc(2026, 3, 11, 15, 0)) == {"completed_all"}


def test_backlog_overlaps_due_today_for_unassigned_orders():
    now = _utc(2026, 3, 10, 15, 0)
    unassigned_today = _view(technician_id=None, date_time=_utc(2026, 3, 10, 18, 0))
    assert classify_work_order(unassigned_today, now) == {"due_today", "backlog", "unassigned"}
    assigned_today = _view(date_time=_utc(2026, 3, 10, 18, 0))
    assert classify_work_order(assigned_today, now) == {"due_today"}
    in_progress = _view(status="In Progress", date_time=_utc(2026, 3, 10, 18, 0))
    assert classify_work_order(in_progress, now) == {"in_progress"}


def test_pending_without_schedule_is_backlog_not_due_today():
    order = _view(date_time=None)
    buckets = classify_work_order(order, _utc(2026, 3, 10, 15, 0))
    assert "backlog" in buckets
    assert "due_today" not in buckets


def test_bucket_sorting_prefers_in_progress_then_priority_then_newest():
    orders = [
        _view(id=1, priority="Low", created_at=_utc(2026, 1, 3)),
        _view(id=2, priority="High", created_at=_utc(2026, 1, 1)),
        _view(id=3, priority="High", created_at=_utc(2026, 1, 2)),
        _view(id=4, status="In Progress", priority="Low", created_at=_utc(2026, 1, 1)),
    ]
    assert [o.id for o in lifecycle.sort_work_orders(orders)] == [4, 3, 2, 1]
    counts = lifecycle.bucket_counts(orders, _utc(2026, 1, 5))
    assert counts["backlog"] == 3
    assert counts["in_progress"] == 1
    with pytest.raises(ValueError):
        lifecycle.filter_bucket(orders, "mañana")


def test_scenario_new_order_is_pending_only(app, demo):
    with app.app_context():
        building = repository.create_building({"address": "Av. Corrientes 1234"}, demo["company_id"])
        elevator = repository.create_elevator(
            {"buildingId": building.id, "number": 1, "locationDescription": "Hall"}, demo["company_id"]
        )
        order = repository.create_work_order(
            {"buildingId": building.id, "elevatorId": elevator.id, "status": "Pending", "priority": "High"},
            demo["company_id"],
        )
        pending = repository.list_work_orders(demo["company_id"], {"status": "Pending", "buildingId": building.id})
        assert [o.id for o in pending] == [order.id]
        rows = repository.list_work_orders(demo["company_id"])
        assert order.id not in {o.id for o in lifecycle.completed_all(rows)}
        assert order.id not in {o.id for o in lifecycle.in_progress(rows)}
        assert order.id in {o.id for o in lifecycle.backlog(rows)}


def test_technician_busy_free_derivation(app, demo, signature):
    with app.app_context():
        technicians = repository.list_technicians(demo["company_id"])

        def status() -> str:
            orders = lifecycle.work_order_snapshot(demo["company_id"])
            return lifecycle.technician_statuses(technicians, orders)[demo["technician_id"]]

        assert status() == "free"
        order = _assigned_order(demo)
        lifecycle.start_work_order(demo["company_id"], order.id, demo["tech_user_id"])
        assert status() == "busy"
        lifecycle.complete_work_order(demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature})
        assert status() == "free"


def test_apply_optimistically_restores_snapshot_on_failure():
    state = {"a": 1, "b": 2}

    def fail():
        raise RuntimeError("backend down")

    with pytest.raises(RuntimeError):
        apply_optimistically(state, {"a": 10, "c": 3}, fail)
    assert state == {"a": 1, "b": 2}

    assert apply_optimistically(state, {"a": 5}, lambda: "ok") == "ok"
    assert state == {"a": 5, "b": 2}


def test_task_board_rolls_back_failed_completion(app, demo, signature):
    with app.app_context():
        board = TaskBoard.load(demo["company_id"], demo["tech_user_id"], demo["technician_id"])
        order_id = next(iter(board.orders))
        with pytest.raises(ValueError):
            board.complete(order_id, {})
        assert board.orders[order_id].status == "Pending"

        confirmed = board.complete(order_id, {"signatureDataUrl": signature})
        assert confirmed.status == "Completed"
        assert board.counts()["completed_all"] == 1
