from __future__ import annotations

from sqlalchemy.exc import OperationalError

from app.core import tenancy
from app.core.extensions import db
from app.core.models import CompanyMembership, Engineer, User
from app.core.tenancy import resolve_tenant_session


def _user_id(email: str) -> int:
    return User.query.filter_by(email=email).one().id


def test_office_membership_resolves_first_company(app, demo):
    with app.app_context():
        tenant = resolve_tenant_session(demo["office_user_id"], None)
        assert tenant.role == "office"
        assert tenant.company_id == demo["company_id"]
        assert tenant.engineer_id is None


def test_stored_company_is_honoured_only_when_member(app, demo, other_company):
    with app.app_context():
        db.session.add(
            CompanyMembership(user_id=demo["office_user_id"], company_id=other_company["company_id"], role="technician")
        )
        db.session.commit()

        switched = resolve_tenant_session(demo["office_user_id"], other_company["company_id"])
        assert switched.company_id == other_company["company_id"]
        assert switched.role == "technician"

        unknown = resolve_tenant_session(demo["office_user_id"], 4242)
        assert unknown.company_id == demo["company_id"]
        assert unknown.role == "office"


def test_engineer_profile_takes_priority(app, demo):
    with app.app_context():
        user_id = _user_id("ingeniero@demo.local")
        db.session.add(CompanyMembership(user_id=user_id, company_id=demo["company_id"], role="office"))
        db.session.commit()
        tenant = resolve_tenant_session(user_id, None)
        assert tenant.role == "engineer"
        assert tenant.engineer_id == demo["engineer_id"]
        assert [m.role for m in tenant.memberships] == ["engineer"]


def test_engineer_without_companies_keeps_role(app, demo):
    with app.app_context():
        engineer = db.session.get(Engineer, demo["engineer_id"])
        for membership in list(engineer.memberships):
            db.session.delete(membership)
        db.session.commit()
        tenant = resolve_tenant_session(engineer.user_id, demo["company_id"])
        assert tenant.role == "engineer"
        assert tenant.company_id is None
        assert tenant.memberships == []


def test_lookup_failure_degrades_to_empty_session(app, demo, monkeypatch):
    def broken(user_id):
        raise OperationalError("SELECT company_membership", {}, Exception("database is locked"))

    monkeypatch.setattr(tenancy, "_company_memberships", broken)
    with app.app_context():
        tenant = resolve_tenant_session(demo["office_user_id"], demo["company_id"])
    assert tenant.role is None
    assert tenant.company_id is None
    assert tenant.memberships == []


def test_anonymous_identity_has_no_tenant(app):
    with app.app_context():
        assert resolve_tenant_session(None, 1).as_dict() == {
            "role": None,
            "companyId": None,
            "engineerId": None,
            "memberships": [],
        }
