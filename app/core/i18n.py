from __future__ import annotations

from flask import has_request_context, session

SUPPORTED_LANGS = {"es", "en"}
DEFAULT_LANG = "es"

I18N: dict[str, dict[str, str]] = {
    "status.Pending": {"es": "Por hacer", "en": "Pending"},
    "status.In Progress": {"es": "En curso", "en": "In progress"},
    "status.Completed": {"es": "Completada", "en": "Completed"},
    "priority.Low": {"es": "Baja", "en": "Low"},
    "priority.Medium": {"es": "Media", "en": "Medium"},
    "priority.High": {"es": "Alta", "en": "High"},
    "claim.Semiannual Tests": {"es": "Pruebas semestrales", "en": "Semiannual tests"},
    "claim.Monthly Maintenance": {"es": "Mantenimiento mensual", "en": "Monthly maintenance"},
    "claim.Corrective": {"es": "Correctivo", "en": "Corrective"},
    "corrective.Minor Repair": {"es": "Reparación menor", "en": "Minor repair"},
    "corrective.Refurbishment": {"es": "Reacondicionamiento", "en": "Refurbishment"},
    "corrective.Installation": {"es": "Instalación", "en": "Installation"},
    "technician.free": {"es": "Libre", "en": "Free"},
    "technician.busy": {"es": "Ocupado", "en": "Busy"},
    "pdf.work_order": {"es": "Orden de Trabajo", "en": "Work order"},
    "pdf.location": {"es": "Ubicación", "en": "Location"},
    "pdf.assignment": {"es": "Asignación", "en": "Assignment"},
    "pdf.description": {"es": "Descripción", "en": "Description"},
    "pdf.parts": {"es": "Repuestos usados", "en": "Parts used"},
    "pdf.no_parts": {"es": "Sin repuestos registrados.", "en": "No parts recorded."},
    "pdf.signature": {"es": "Firma del cliente", "en": "Customer signature"},
    "pdf.unassigned": {"es": "Sin asignar", "en": "Unassigned"},
}


def get_locale() -> str:
    if not has_request_context():
        return DEFAULT_LANG
    lang = session.get("lang", DEFAULT_LANG)
    if lang not in SUPPORTED_LANGS:
        return DEFAULT_LANG
    return lang


def translate(key: str) -> str:
    lang = get_locale()
    return I18N.get(key, {}).get(lang, key)


def label(prefix: str, value: str | None) -> str:
    if not value:
        return ""
    key = f"{prefix}.{value}"
    if key not in I18N:
        return value
    return translate(key)
