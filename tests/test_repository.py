from __future__ import annotations

import pytest

from app.core.extensions import db
from app.core.models import Building, Elevator, Equipment, WorkOrder
from app.core.storage import PHOTOS_BUCKET, SIGNATURES_BUCKET, get_storage
from app.maintenance import repository
from app.maintenance.fields import BUILDING_FIELDS, ELEVATOR_FIELDS, WORK_ORDER_FIELDS


def test_get_and_update_are_filtered_by_tenant(app, demo, other_company):
    with app.app_context():
        foreign_id = other_company["work_order_id"]
        assert repository.get_work_order(foreign_id, demo["company_id"]) is None
        assert repository.update_work_order(foreign_id, {"description": "hack"}, demo["company_id"]) is None
        assert repository.get_building(other_company["building_id"], demo["company_id"]) is None
        assert repository.update_building(other_company["building_id"], {"address": "X"}, demo["company_id"]) is None
        assert repository.get_elevator(other_company["elevator_id"], demo["company_id"]) is None

        untouched = db.session.get(WorkOrder, foreign_id)
        assert untouched.description == "Ruido en cabina"
        assert db.session.get(Building, other_company["building_id"]).address == "Cabildo 3000"


def test_lists_only_return_rows_of_the_tenant(app, demo, other_company):
    with app.app_context():
        orders = repository.list_work_orders(demo["company_id"])
        assert orders
        assert all(o.company_id == demo["company_id"] for o in orders)
        assert other_company["work_order_id"] not in {o.id for o in orders}
        buildings = repository.list_buildings(other_company["company_id"])
        assert [b.address for b in buildings] == ["Cabildo 3000"]


def test_work_order_creation_requires_building_and_asset(app, demo):
    with app.app_context():
        before = WorkOrder.query.count()
        with pytest.raises(ValueError, match="building_id es requerido"):
            repository.create_work_order({"elevatorId": demo["elevator_id"]}, demo["company_id"])
        with pytest.raises(ValueError, match="ascensor o un equipo"):
            repository.create_work_order(
                {"buildingId": demo["building_id"], "elevatorId": "", "equipmentId": "undefined"},
                demo["company_id"],
            )
        assert WorkOrder.query.count() == before


def test_work_order_cannot_reference_assets_of_another_tenant(app, demo, other_company):
    with app.app_context():
        with pytest.raises(ValueError, match="no pertenece"):
            repository.create_work_order(
                {"buildingId": demo["building_id"], "elevatorId": other_company["elevator_id"]},
                demo["company_id"],
            )


def test_field_mapping_round_trip_with_empty_foreign_keys(app, demo):
    payload = {
        "claimType": "Corrective",
        "correctiveType": "Minor Repair",
        "buildingId": demo["building_id"],
        "elevatorId": demo["elevator_id"],
        "equipmentId": "",
        "technicianId": "null",
        "contactName": "Portero",
        "contactPhone": "11 4000-0000",
        "dateTime": "2026-03-10T14:30:00+00:00",
        "description": "Puerta no cierra",
        "priority": "High",
        "partsUsed": [{"name": "Rodamiento", "quantity": 2}],
        "photoUrls": ["https://example.com/a.jpg"],
    }
    with app.app_context():
        created = repository.create_work_order(payload, demo["company_id"])
        fetched = repository.get_work_order(created.id, demo["company_id"])
        external = WORK_ORDER_FIELDS.to_external(fetched)

    assert external["equipmentId"] is None
    assert external["technicianId"] is None
    assert external["status"] == "Pending"
    assert external["companyId"] == demo["company_id"]
    assert external["dateTime"] == "2026-03-10T14:30:00+00:00"
    for key in ("claimType", "correctiveType", "buildingId", "elevatorId", "contactName", "description",
                "priority", "partsUsed", "photoUrls"):
        assert external[key] == payload[key]


def test_field_map_renames_losslessly():
    internal = {"building_id": 3, "number": 2, "location_description": "Hall", "has_two_doors": True}
    external = ELEVATOR_FIELDS.to_external(internal)
    assert external == {"buildingId": 3, "number": 2, "locationDescription": "Hall", "hasTwoDoors": True}
    assert ELEVATOR_FIELDS.to_internal(external) == internal


def test_update_only_touches_present_fields(app, demo):
    with app.app_context():
        building = repository.create_building(
            {"address": "Av. Corrientes 1234", "neighborhood": "Centro", "clientName": "Consorcio"},
            demo["company_id"],
        )
        updated = repository.update_building(building.id, {"neighborhood": "San Nicolás"}, demo["company_id"])
        body = BUILDING_FIELDS.to_external(updated)
    assert body["neighborhood"] == "San Nicolás"
    assert body["address"] == "Av. Corrientes 1234"
    assert body["clientName"] == "Consorcio"


def test_history_is_listed_by_service_date(app, demo):
    with app.app_context():
        for day, text in (("2026-01-05", "vieja"), ("2026-03-01", "nueva"), ("2026-02-01", "media")):
            repository.create_elevator_history(
                {"elevatorId": demo["elevator_id"], "date": day, "description": text, "technicianName": "Juan"},
                demo["company_id"],
            )
        rows = repository.list_elevator_history(demo["company_id"], {"elevatorId": demo["elevator_id"]})
    assert [r.description for r in rows] == ["nueva", "media", "vieja"]


def test_delete_equipment_is_tenant_scoped(app, demo, other_company):
    with app.app_context():
        equipment = repository.create_equipment(
            {"buildingId": demo["building_id"], "type": "dumbwaiter", "name": "Montaplatos"},
            demo["company_id"],
        )
        assert repository.delete_equipment(equipment.id, other_company["company_id"]) is False
        assert repository.delete_equipment(equipment.id, demo["company_id"]) is True
        assert db.session.get(Equipment, equipment.id) is None


def test_elevator_typed_equipment_is_allowed(app, demo):
    with app.app_context():
        equipment = repository.create_equipment(
            {"buildingId": demo["building_id"], "type": "elevator", "name": "Ascensor de servicio"},
            demo["company_id"],
        )
        assert equipment.type == "elevator"
        with pytest.raises(ValueError):
            repository.create_equipment(
                {"buildingId": demo["building_id"], "type": "escalera"},
                demo["company_id"],
            )


def test_building_with_assets_is_all_or_nothing(app, demo):
    with app.app_context():
        buildings_before = Building.query.count()
        elevators_before = Elevator.query.count()
        with pytest.raises(ValueError):
            repository.create_building_with_assets(
                demo["company_id"],
                {"address": "Rivadavia 500"},
                elevators=[{"number": 1, "locationDescription": "Hall"}],
                equipments=[{"type": "no-existe", "name": "Bomba"}],
            )
        assert Building.query.count() == buildings_before
        assert Elevator.query.count() == elevators_before

        building = repository.create_building_with_assets(
            demo["company_id"],
            {"address": "Rivadavia 500"},
            elevators=[{"number": 1}, {"number": 2}],
            equipments=[{"type": "water_pump", "name": "Bomba"}],
        )
        assert len(building.elevators) == 2
        assert len(building.equipments) == 1
        assert all(e.company_id == demo["company_id"] for e in building.elevators)


def test_photo_upload_creates_new_objects(app, demo, signature):
    with app.app_context():
        first = repository.upload_photo(demo["company_id"], 1, "puerta.jpg", b"img-1")
        second = repository.upload_photo(demo["company_id"], 1, "puerta.jpg", signature)
        assert first and second and first != second
        prefix = f"/files/{PHOTOS_BUCKET}/{demo['company_id']}/1/"
        assert prefix in first
        assert first.endswith("_puerta.jpg")


def test_signature_upload_overwrites_fixed_path(app, demo, signature):
    with app.app_context():
        first = repository.upload_signature(demo["company_id"], 1, b"old")
        second = repository.upload_signature(demo["company_id"], 1, signature)
        assert first == second
        assert first.endswith(f"/files/{SIGNATURES_BUCKET}/{demo['company_id']}/1/signature.png")
        stored = get_storage().read(SIGNATURES_BUCKET, repository.signature_key(demo["company_id"], 1))
        assert stored.startswith(b"\x89PNG")


def test_upload_failures_return_none(app, demo, other_company):
    with app.app_context():
        assert repository.upload_photo(demo["company_id"], 1, "x.jpg", "not-a-data-url") is None
        assert repository.upload_signature(demo["company_id"], other_company["work_order_id"], b"x") is None


def test_technician_status_follows_in_progress_orders(app, demo):
    with app.app_context():
        assert repository.technician_status(demo["company_id"], demo["technician_id"]) == "free"
        order = WorkOrder.query.filter_by(technician_id=demo["technician_id"]).first()
        repository.update_work_order(order.id, {"status": "In Progress"}, demo["company_id"])
        assert repository.technician_status(demo["company_id"], demo["technician_id"]) == "busy"


def test_engineer_report_read_toggle_and_unread_counts(app, demo, other_company):
    with app.app_context():
        first = repository.create_engineer_report(
            {"engineerId": demo["engineer_id"], "address": "Santa Fe 2450", "isRead": True},
            demo["company_id"],
        )
        repository.create_engineer_report(
            {"engineerId": demo["engineer_id"], "address": "Callao 100"},
            demo["company_id"],
        )
        assert first.is_read is False
        assert repository.count_unread_reports_by_engineer(demo["company_id"]) == {demo["engineer_id"]: 2}

        updated = repository.update_engineer_report(
            first.id, {"isRead": True, "engineerId": 999}, demo["company_id"]
        )
        assert updated.is_read is True
        assert updated.engineer_id == demo["engineer_id"]
        assert repository.update_engineer_report(first.id, {"isRead": False}, other_company["company_id"]) is None
        assert repository.count_unread_reports_by_engineer(demo["company_id"]) == {demo["engineer_id"]: 1}

        with pytest.raises(ValueError, match="dirección"):
            repository.create_engineer_report({"engineerId": demo["engineer_id"]}, demo["company_id"])
        with pytest.raises(ValueError, match="no pertenece"):
            repository.create_engineer_report(
                {"engineerId": demo["engineer_id"], "address": "X"}, other_company["company_id"]
            )


def test_engineer_join_and_leave_company(app, demo, other_company):
    from app.core.models import CompanyJoinCode

    with app.app_context():
        db.session.add(CompanyJoinCode(company_id=other_company["company_id"], code="NORTE1"))
        db.session.commit()

        with pytest.raises(ValueError, match="Ya estás asociado"):
            repository.join_company_with_code(demo["engineer_id"], "DEMO2024")
        with pytest.raises(ValueError, match="inválido o inactivo"):
            repository.join_company_with_code(demo["engineer_id"], "NOPE")

        membership = repository.join_company_with_code(demo["engineer_id"], "NORTE1")
        companies = {m.company_id for m in repository.list_engineer_memberships(demo["engineer_id"])}
        assert companies == {demo["company_id"], other_company["company_id"]}
        assert [e.id for e in repository.list_engineers(other_company["company_id"])] == [demo["engineer_id"]]

        assert repository.remove_engineer_membership(demo["engineer_id"], membership.id) is True
        assert repository.list_engineers(other_company["company_id"]) == []


def test_inactive_or_expired_join_codes_are_rejected(app, demo):
    from datetime import timedelta

    from app.core.models import CompanyJoinCode, utcnow

    with app.app_context():
        db.session.add_all(
            [
                CompanyJoinCode(company_id=demo["company_id"], code="OFF", is_active=False),
                CompanyJoinCode(company_id=demo["company_id"], code="OLD", expires_at=utcnow() - timedelta(days=1)),
            ]
        )
        db.session.commit()
        with pytest.raises(ValueError, match="inválido o inactivo"):
            repository.resolve_join_code("OFF")
        with pytest.raises(ValueError, match="vencido"):
            repository.resolve_join_code("OLD")
        assert repository.resolve_join_code(" DEMO2024 ").company_id == demo["company_id"]


def test_new_work_orders_always_start_pending(app, demo):
    with app.app_context():
        order = repository.create_work_order(
            {"buildingId": demo["building_id"], "elevatorId": demo["elevator_id"], "status": "Completed"},
            demo["company_id"],
        )
        assert order.status == "Pending"
        assert order.finish_time is None


def test_update_cannot_complete_or_move_status_backwards(app, demo, signature):
    from app.maintenance import lifecycle

    with app.app_context():
        order = WorkOrder.query.filter_by(technician_id=demo["technician_id"]).first()
        with pytest.raises(ValueError, match="finalización"):
            repository.update_work_order(order.id, {"status": "Completed"}, demo["company_id"])
        db.session.expire_all()
        assert db.session.get(WorkOrder, order.id).status == "Pending"

        started = repository.update_work_order(order.id, {"status": "In Progress"}, demo["company_id"])
        assert started.start_time is not None
        with pytest.raises(ValueError, match="Transicion invalida"):
            repository.update_work_order(order.id, {"status": "Pending"}, demo["company_id"])

        lifecycle.complete_work_order(demo["company_id"], order.id, demo["tech_user_id"], {"signatureDataUrl": signature})
        with pytest.raises(ValueError, match="Transicion invalida"):
            repository.update_work_order(order.id, {"status": "Pending"}, demo["company_id"])
        updated = repository.update_work_order(order.id, {"description": "Nota final"}, demo["company_id"])
        assert updated.status == "Completed"
        assert updated.description == "Nota final"


def test_update_keeps_an_asset_on_the_order(app, demo):
    with app.app_context():
        order = WorkOrder.query.filter_by(elevator_id=demo["elevator_id"]).first()
        with pytest.raises(ValueError, match="ascensor o un equipo"):
            repository.update_work_order(order.id, {"elevatorId": ""}, demo["company_id"])
        db.session.expire_all()
        assert db.session.get(WorkOrder, order.id).elevator_id == demo["elevator_id"]

        pump = Equipment.query.filter_by(company_id=demo["company_id"]).first()
        swapped = repository.update_work_order(
            order.id, {"elevatorId": "", "equipmentId": pump.id}, demo["company_id"]
        )
        assert swapped.elevator_id is None
        assert swapped.equipment_id == pump.id


def test_update_keeps_assets_inside_the_order_building(app, demo):
    with app.app_context():
        other = repository.create_building({"address": "Corrientes 5000"}, demo["company_id"])
        other_elevator = repository.create_elevator({"buildingId": other.id, "number": 1}, demo["company_id"])
        order = WorkOrder.query.filter_by(elevator_id=demo["elevator_id"]).first()

        with pytest.raises(ValueError, match="no pertenece al edificio"):
            repository.update_work_order(order.id, {"elevatorId": other_elevator.id}, demo["company_id"])
        with pytest.raises(ValueError, match="no pertenece al edificio"):
            repository.update_work_order(order.id, {"buildingId": other.id}, demo["company_id"])

        moved = repository.update_work_order(
            order.id, {"buildingId": other.id, "elevatorId": other_elevator.id}, demo["company_id"]
        )
        assert moved.building_id == other.id
