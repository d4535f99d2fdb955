from __future__ import annotations

import secrets
from datetime import timedelta

import click
import structlog
from flask import Flask, abort, jsonify, send_from_directory
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.core.auth import auth_bp
from app.core.cache import init_cache
from app.core.config import Config
from app.core.extensions import db, login_manager, migrate
from app.core.logging import register_request_id, setup_logging
from app.core.models import Company, CompanyJoinCode, User, seed_demo_data, utcnow
from app.core.storage import BUCKETS, StorageError, get_storage, init_storage
from app.core.tenancy import load_tenant_context
from app.maintenance import maintenance_bp

logger = structlog.get_logger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    setup_logging(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    init_storage(app)
    init_cache(app)

    register_request_id(app)
    app.before_request(load_tenant_context)

    app.register_blueprint(auth_bp)
    app.register_blueprint(maintenance_bp)

    register_cli(app)
    register_routes(app)
    register_error_handlers(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.get("/files/<bucket>/<path:key>")
    def stored_file(bucket: str, key: str):
        if bucket not in BUCKETS:
            abort(404)
        storage = get_storage()
        try:
            path = storage.local_path(bucket, key)
        except StorageError:
            abort(404)
        if not path.exists():
            abort(404)
        return send_from_directory(path.parent, path.name)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValueError)
    def bad_request(error: ValueError):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(PermissionError)
    def forbidden_action(error: PermissionError):
        return jsonify({"error": str(error)}), 403

    @app.errorhandler(SQLAlchemyError)
    def backend_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.error("backend_error", error=str(error))
        return jsonify({"error": "Error de base de datos"}), 500

    @app.errorhandler(StorageError)
    def storage_error(error: StorageError):
        logger.error("storage_error", error=str(error))
        return jsonify({"error": "Error de almacenamiento"}), 500

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        return jsonify({"error": error.description}), error.code


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed a demo company with users, assets and work orders."""
        if reset:
            db.drop_all()
            db.create_all()
        if not Company.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing companies found.")

    @app.cli.command("join-code-create")
    @click.option("--company-id", type=int, required=True, help="Company that receives the new members.")
    @click.option("--code", type=str, default=None, help="Explicit code; random when omitted.")
    @click.option("--expires-days", type=int, default=None, help="Days until the code expires.")
    def join_code_create(company_id: int, code: str | None, expires_days: int | None) -> None:
        """Issue a join code for a company."""
        if db.session.get(Company, company_id) is None:
            raise click.ClickException(f"Company {company_id} not found")
        join_code = CompanyJoinCode(
            company_id=company_id,
            code=(code or secrets.token_hex(4).upper()).strip(),
            expires_at=utcnow() + timedelta(days=expires_days) if expires_days else None,
        )
        db.session.add(join_code)
        db.session.commit()
        click.echo(f"[{company_id}] join code: {join_code.code}")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    abort(401)
