from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from flask import g, session
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from app.core.extensions import db
from app.core.models import (
    Company,
    CompanyMembership,
    Engineer,
    EngineerCompanyMembership,
    MemberRole,
)

logger = structlog.get_logger(__name__)

ACTIVE_COMPANY_KEY = "active_company_id"


@dataclass(frozen=True)
class MembershipView:
    membership_id: int
    company_id: int
    company_name: str
    role: str


@dataclass
class TenantSession:
    role: str | None = None
    company_id: int | None = None
    memberships: list[MembershipView] = field(default_factory=list)
    engineer_id: int | None = None

    def membership_for(self, company_id: int | None) -> MembershipView | None:
        for membership in self.memberships:
            if membership.company_id == company_id:
                return membership
        return None

    def as_dict(self) -> dict[str, object]:
        return {
            "role": self.role,
            "companyId": self.company_id,
            "engineerId": self.engineer_id,
            "memberships": [
                {
                    "id": m.membership_id,
                    "companyId": m.company_id,
                    "companyName": m.company_name,
                    "role": m.role,
                }
                for m in self.memberships
            ],
        }


def _engineer_memberships(engineer: Engineer) -> list[MembershipView]:
    rows = (
        db.session.query(EngineerCompanyMembership, Company)
        .join(Company, Company.id == EngineerCompanyMembership.company_id)
        .filter(EngineerCompanyMembership.engineer_id == engineer.id)
        .order_by(EngineerCompanyMembership.created_at.asc(), EngineerCompanyMembership.id.asc())
        .all()
    )
    return [
        MembershipView(row.id, company.id, company.name, MemberRole.ENGINEER.value)
        for row, company in rows
    ]


def _company_memberships(user_id: int) -> list[MembershipView]:
    rows = (
        db.session.query(CompanyMembership, Company)
        .join(Company, Company.id == CompanyMembership.company_id)
        .filter(CompanyMembership.user_id == user_id)
        .order_by(CompanyMembership.created_at.asc(), CompanyMembership.id.asc())
        .all()
    )
    return [MembershipView(row.id, company.id, company.name, row.role) for row, company in rows]


def resolve_tenant_session(user_id: int | None, stored_company_id: int | None) -> TenantSession:
    """Resolve role, memberships and active company for an identity.

    An engineer profile wins over company memberships. The stored company id is
    honoured only when it matches one of the memberships; otherwise the first
    membership becomes active. Lookup failures degrade to "no memberships".
    """
    if user_id is None:
        return TenantSession()
    try:
        engineer = Engineer.query.filter_by(user_id=user_id).first()
        if engineer is not None:
            memberships = _engineer_memberships(engineer)
        else:
            memberships = _company_memberships(user_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("tenant_lookup_failed", user_id=user_id, error=str(exc))
        return TenantSession()

    resolved = TenantSession(memberships=memberships, engineer_id=engineer.id if engineer else None)
    if not memberships:
        # Engineers without companies keep their role so they can still join one
        resolved.role = MemberRole.ENGINEER.value if engineer else None
        return resolved

    active = resolved.membership_for(stored_company_id) or memberships[0]
    resolved.company_id = active.company_id
    resolved.role = active.role
    return resolved


def _stored_company_id() -> int | None:
    raw = session.get(ACTIVE_COMPANY_KEY)
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _apply(tenant: TenantSession) -> None:
    g.tenant = tenant
    g.role = tenant.role
    g.company_id = tenant.company_id
    g.memberships = tenant.memberships
    g.engineer_id = tenant.engineer_id


def load_tenant_context() -> None:
    if not current_user.is_authenticated:
        _apply(TenantSession())
        return
    tenant = resolve_tenant_session(current_user.id, _stored_company_id())
    _apply(tenant)
    if tenant.company_id is not None and tenant.company_id != _stored_company_id():
        session[ACTIVE_COMPANY_KEY] = tenant.company_id
        session.permanent = True


def set_active_company(company_id: int) -> TenantSession:
    tenant: TenantSession | None = getattr(g, "tenant", None)
    if tenant is None:
        raise PermissionError("Sesion no inicializada")
    # Validated against the memberships already loaded for this request
    membership = tenant.membership_for(company_id)
    if membership is None:
        raise ValueError("No perteneces a esta compañía")
    tenant.company_id = membership.company_id
    tenant.role = membership.role
    _apply(tenant)
    session[ACTIVE_COMPANY_KEY] = membership.company_id
    session.permanent = True
    logger.info("active_company_changed", company_id=membership.company_id)
    return tenant


def clear_tenant_context() -> None:
    session.pop(ACTIVE_COMPANY_KEY, None)
    _apply(TenantSession())


def active_company_id() -> int | None:
    return getattr(g, "company_id", None)


def current_tenant() -> TenantSession:
    return getattr(g, "tenant", None) or TenantSession()
