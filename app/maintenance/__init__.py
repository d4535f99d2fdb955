from flask import Blueprint

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api")

from app.maintenance import routes  # noqa: E402,F401
