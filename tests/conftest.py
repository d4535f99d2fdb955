from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import (
    Building,
    Company,
    CompanyMembership,
    Elevator,
    Engineer,
    Technician,
    User,
    WorkOrder,
    seed_demo_data,
)
from werkzeug.security import generate_password_hash

# 1x1 transparent PNG
PNG_DATA_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    SNAPSHOT_CACHE_SECONDS = 0
    REDIS_URL = None
    LOG_LEVEL = "WARNING"
    REMITO_TEMPLATE_PATH = None


def make_config(tmp_path: Path, **overrides) -> type[Config]:
    attrs = {"STORAGE_ROOT": str(tmp_path / "storage"), **overrides}
    return type("TmpTestConfig", (TestConfig,), attrs)


@pytest.fixture
def app(tmp_path):
    app = create_app(make_config(tmp_path))
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signature():
    return PNG_DATA_URL


@pytest.fixture
def demo(app):
    with app.app_context():
        company = Company.query.filter_by(name="Ascensores Demo").first()
        technician = Technician.query.filter_by(company_id=company.id).first()
        return {
            "company_id": company.id,
            "building_id": Building.query.filter_by(company_id=company.id).first().id,
            "elevator_id": Elevator.query.filter_by(company_id=company.id).first().id,
            "technician_id": technician.id,
            "tech_user_id": technician.user_id,
            "office_user_id": User.query.filter_by(email="oficina@demo.local").first().id,
            "engineer_id": Engineer.query.first().id,
        }


def _login(client, email: str, password: str):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def login_office(client):
    def _do():
        return _login(client, "oficina@demo.local", "oficina123")

    return _do


@pytest.fixture
def login_technician(client):
    def _do():
        return _login(client, "tecnico@demo.local", "tecnico123")

    return _do


@pytest.fixture
def login_engineer(client):
    def _do():
        return _login(client, "ingeniero@demo.local", "ingeniero123")

    return _do


@pytest.fixture
def other_company(app):
    """Second tenant with its own office user, building, elevator and order."""
    with app.app_context():
        company = Company(name="Elevadores Norte")
        user = User(
            email="norte@example.com",
            full_name="Oficina Norte",
            password_hash=generate_password_hash("norte123"),
        )
        db.session.add_all([company, user])
        db.session.flush()
        db.session.add(CompanyMembership(user_id=user.id, company_id=company.id, role="office"))
        building = Building(company_id=company.id, address="Cabildo 3000")
        db.session.add(building)
        db.session.flush()
        elevator = Elevator(company_id=company.id, building_id=building.id, number=1)
        db.session.add(elevator)
        db.session.flush()
        order = WorkOrder(
            company_id=company.id,
            building_id=building.id,
            elevator_id=elevator.id,
            description="Ruido en cabina",
        )
        db.session.add(order)
        db.session.commit()
        return {
            "company_id": company.id,
            "user_id": user.id,
            "building_id": building.id,
            "elevator_id": elevator.id,
            "work_order_id": order.id,
        }
