from __future__ import annotations

import structlog
from flask import Blueprint, abort, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.core.extensions import db
from app.core.i18n import DEFAULT_LANG, SUPPORTED_LANGS
from app.core.models import (
    CompanyMembership,
    Engineer,
    EngineerCompanyMembership,
    MemberRole,
    Technician,
    TechnicianRole,
    User,
)
from app.core.tenancy import (
    clear_tenant_context,
    current_tenant,
    load_tenant_context,
    set_active_company,
)
from app.core.utils import parse_id, request_payload
from app.maintenance.repository import invalidate_company, resolve_join_code

logger = structlog.get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LENGTH = 6


def sign_up(payload: dict) -> User:
    """Create an identity and attach it to the company behind a join code.

    Office and technician users get a company membership (technicians also a
    technician profile); engineers get an engineer profile linked to the
    company instead.
    """
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    full_name = (payload.get("fullName") or payload.get("name") or "").strip()
    role = (payload.get("role") or MemberRole.OFFICE.value).strip().lower()
    if not email or "@" not in email:
        raise ValueError("Email invalido")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres")
    if role not in {r.value for r in MemberRole}:
        raise ValueError("Rol invalido")
    if not full_name:
        raise ValueError("El nombre es obligatorio")
    if User.query.filter_by(email=email).first() is not None:
        raise ValueError("Ya existe un usuario con ese email")
    join_code = resolve_join_code(payload.get("joinCode"))

    user = User(email=email, full_name=full_name, password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.flush()
    if role == MemberRole.ENGINEER.value:
        engineer = Engineer(user_id=user.id, name=full_name, contact=(payload.get("contact") or "").strip() or None)
        db.session.add(engineer)
        db.session.flush()
        db.session.add(EngineerCompanyMembership(engineer_id=engineer.id, company_id=join_code.company_id))
    else:
        db.session.add(CompanyMembership(user_id=user.id, company_id=join_code.company_id, role=role))
        if role == MemberRole.TECHNICIAN.value:
            db.session.add(
                Technician(
                    company_id=join_code.company_id,
                    user_id=user.id,
                    name=full_name,
                    specialty=(payload.get("specialty") or "").strip(),
                    contact=(payload.get("contact") or "").strip(),
                    role=payload.get("technicianRole") or TechnicianRole.RECLAMISTA.value,
                )
            )
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValueError("Ya existe un usuario con ese email") from exc
    invalidate_company(join_code.company_id)
    logger.info("user_signed_up", user_id=user.id, company_id=join_code.company_id, role=role)
    return user


def authenticate(email: str, password: str) -> User | None:
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password or ""):
        return None
    return user


def _session_body() -> dict[str, object]:
    return {
        "user": {
            "id": current_user.id,
            "email": current_user.email,
            "fullName": current_user.full_name,
        },
        **current_tenant().as_dict(),
    }


@auth_bp.post("/signup")
def signup():
    user = sign_up(request_payload())
    login_user(user, remember=True)
    load_tenant_context()
    return jsonify(_session_body()), 201


@auth_bp.post("/login")
def login():
    payload = request_payload()
    user = authenticate(payload.get("email", ""), payload.get("password", ""))
    if user is None:
        logger.warning("login_failed", email=(payload.get("email") or "").strip().lower())
        return jsonify({"error": "Credenciales inválidas"}), 401
    login_user(user, remember=True)
    load_tenant_context()
    return jsonify(_session_body())


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    clear_tenant_context()
    return jsonify({"ok": True})


@auth_bp.get("/session")
@login_required
def session_info():
    return jsonify(_session_body())


@auth_bp.post("/company")
@login_required
def switch_company():
    company_id = parse_id(request_payload().get("companyId"), "companyId")
    if company_id is None:
        abort(400)
    set_active_company(company_id)
    return jsonify(_session_body())


@auth_bp.post("/lang")
def set_lang():
    lang = (request_payload().get("lang") or DEFAULT_LANG).strip().lower()
    if lang not in SUPPORTED_LANGS:
        lang = DEFAULT_LANG
    session["lang"] = lang
    return jsonify({"lang": lang})
