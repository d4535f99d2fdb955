"""
Remito (completion receipt) numbering and PDF rendering.

Numbers come from a per-company counter row incremented inside the database,
so concurrent completions never share a number. The receipt is drawn with
reportlab on top of the first page of an optional PDF template.
"""
from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import structlog
from flask import current_app
from PIL import Image
from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.core.extensions import db
from app.core.i18n import label, translate
from app.core.models import Building, Remito, RemitoCounter, Technician, WorkOrder, WorkOrderStatus
from app.core.storage import REMITOS_BUCKET, StorageError, get_storage
from app.core.utils import as_utc, decode_data_url
from app.maintenance import repository
from app.maintenance.lifecycle import business_timezone

logger = structlog.get_logger(__name__)

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
BASE_FONT_SIZE = 12.0
MIN_FONT_SIZE = 8.0
FONT_STEP = 0.5
COUNTER_RETRIES = 3

# Anchors in points on the receipt template
FIRMA_BOX = {"x": 376.3, "y": 109.65, "w": 187.0, "h": 82.0}
DOMICILIO = {"x": -1.73, "y": 659.0, "max_w": 491.25}
DESC_START = {"x": 134.9, "y": 560.9, "max_w": 491.25, "line_h": 16.5, "max_lines": 10}
NUMERO = {"x": 379.0, "y": 765.5, "max_w": 112.5}
FECHA = {"x": 404.9, "y": 730.0, "max_w": 165.0}


@dataclass(frozen=True)
class ReceiptPayload:
    number: str
    date: str
    address: str
    description: str
    signature: str | None = None


def format_remito_number(number: int) -> str:
    return f"{int(number):08d}"


def next_remito_number(company_id: int) -> int:
    """Atomically draw the next receipt number for a company and commit it."""
    for _ in range(COUNTER_RETRIES):
        result = db.session.execute(
            update(RemitoCounter)
            .where(RemitoCounter.company_id == company_id)
            .values(last_number=RemitoCounter.last_number + 1)
        )
        if result.rowcount == 0:
            try:
                with db.session.begin_nested():
                    db.session.add(RemitoCounter(company_id=company_id, last_number=1))
            except IntegrityError:
                # Created concurrently; increment the existing row instead
                continue
        number = db.session.execute(
            select(RemitoCounter.last_number).where(RemitoCounter.company_id == company_id)
        ).scalar_one()
        db.session.commit()
        logger.info("remito_number_drawn", company_id=company_id, number=number)
        return number
    db.session.rollback()
    raise RuntimeError(f"No se pudo obtener el numero de remito para la compañía {company_id}")


def baseline_fix(size: float) -> float:
    return size * 0.35


def fit_font_size(text: str, max_width: float, font: str = FONT, size: float = BASE_FONT_SIZE) -> float:
    while size > MIN_FONT_SIZE and stringWidth(text or "", font, size) > max_width:
        size -= FONT_STEP
    return size


def wrap_lines(
    text: str,
    max_width: float,
    font: str = FONT,
    size: float = BASE_FONT_SIZE,
    max_lines: int = DESC_START["max_lines"],
) -> list[str]:
    """Greedy word wrap; anything past ``max_lines`` is dropped."""
    lines: list[str] = []
    line = ""
    for word in (text or "").split():
        candidate = f"{line} {word}" if line else word
        if not line or stringWidth(candidate, font, size) <= max_width:
            line = candidate
            continue
        lines.append(line)
        if len(lines) >= max_lines:
            return lines
        line = word
    if line:
        lines.append(line)
    return lines


def _draw_fitted(c: canvas.Canvas, text: str, anchor: dict[str, float]) -> None:
    size = fit_font_size(text, anchor["max_w"])
    c.setFont(FONT, size)
    c.drawString(anchor["x"], anchor["y"] - baseline_fix(size), text or "")


def _flatten_signature(data: bytes) -> ImageReader:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as exc:
        raise ValueError("La firma del cliente no es una imagen válida") from exc
    # Signature pads export transparent PNGs; paint them on white paper
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode == "P":
            img = img.convert("RGBA")
        flat = Image.new("RGB", img.size, (255, 255, 255))
        flat.paste(img, mask=img.split()[-1])
        img = flat
    elif img.mode != "RGB":
        img = img.convert("RGB")
    return ImageReader(img)


def _signature_image(source: str | None) -> ImageReader | None:
    if not source:
        return None
    if source.startswith("data:"):
        data, _mime = decode_data_url(source)
        return _flatten_signature(data)
    storage = get_storage()
    located = storage.resolve_public_url(source)
    if located is None:
        raise ValueError("No se pudo leer la firma del cliente")
    try:
        return _flatten_signature(storage.read(*located))
    except StorageError as exc:
        raise ValueError("No se pudo leer la firma del cliente") from exc


def _draw_signature(c: canvas.Canvas, image: ImageReader, box: dict[str, float]) -> None:
    width, height = image.getSize()
    scale = min(box["w"] / width, box["h"] / height)
    draw_w, draw_h = width * scale, height * scale
    x = box["x"] + (box["w"] - draw_w) / 2
    y = box["y"] + (box["h"] - draw_h) / 2
    c.drawImage(image, x, y, width=draw_w, height=draw_h, mask="auto")


def _template_page(template: str | Path | bytes | None):
    if template is None:
        return None
    if isinstance(template, (str, Path)):
        path = Path(template)
        if not path.exists():
            logger.warning("remito_template_missing", path=str(path))
            return None
        reader = PdfReader(str(path))
    else:
        reader = PdfReader(BytesIO(template))
    return reader.pages[0]


def render_remito(payload: ReceiptPayload, template: str | Path | bytes | None = None) -> bytes:
    base_page = _template_page(template)
    if base_page is not None:
        page_size = (float(base_page.mediabox.width), float(base_page.mediabox.height))
    else:
        page_size = A4

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=page_size)
    c.setFillColor(colors.black)
    _draw_fitted(c, payload.number, NUMERO)
    _draw_fitted(c, payload.date, FECHA)
    _draw_fitted(c, payload.address, DOMICILIO)

    c.setFont(FONT, BASE_FONT_SIZE)
    y = DESC_START["y"] - baseline_fix(BASE_FONT_SIZE)
    for line in wrap_lines(payload.description, DESC_START["max_w"]):
        c.drawString(DESC_START["x"], y, line)
        y -= DESC_START["line_h"]

    image = _signature_image(payload.signature)
    if image is not None:
        _draw_signature(c, image, FIRMA_BOX)
    c.showPage()
    c.save()

    if base_page is None:
        return buffer.getvalue()

    overlay = PdfReader(BytesIO(buffer.getvalue())).pages[0]
    base_page.merge_page(overlay)
    writer = PdfWriter()
    writer.add_page(base_page)
    output = BytesIO()
    writer.write(output)
    return output.getvalue()


def remito_key(company_id: int, work_order_id: int, number: str) -> str:
    return f"{company_id}/{work_order_id}/remito_{number}.pdf"


def _find_remito(company_id: int, work_order_id: int) -> Remito | None:
    return Remito.query.filter_by(company_id=company_id, work_order_id=work_order_id).first()


def save_remito(company_id: int, work_order_id: int, number: int, file_url: str) -> Remito:
    """Insert or update the single remito record of an order."""
    remito = _find_remito(company_id, work_order_id)
    if remito is None:
        try:
            with db.session.begin_nested():
                remito = Remito(company_id=company_id, work_order_id=work_order_id, remito_number=number, file_url=file_url)
                db.session.add(remito)
        except IntegrityError:
            # Inserted by a concurrent regeneration of the same order
            remito = _find_remito(company_id, work_order_id)
            if remito is None:
                raise
    remito.remito_number = number
    remito.file_url = file_url
    db.session.commit()
    return remito


def generate_remito(company_id: int, work_order_id) -> Remito | None:
    order = repository.get_work_order(work_order_id, company_id)
    if order is None:
        return None
    if order.status != WorkOrderStatus.COMPLETED.value:
        raise ValueError("La orden debe estar completada para generar el remito")
    if order.finish_time is None:
        raise ValueError("La orden no tiene hora de finalización")
    building = Building.query.filter_by(id=order.building_id, company_id=company_id).first()
    if building is None or not (building.address or "").strip():
        raise ValueError("El edificio no tiene dirección")
    if not order.signature_data_url:
        raise ValueError("Falta la firma del cliente")

    number = next_remito_number(company_id)
    display_number = format_remito_number(number)
    finished_local = as_utc(order.finish_time).astimezone(business_timezone())
    payload = ReceiptPayload(
        number=display_number,
        date=finished_local.strftime("%d/%m/%Y"),
        address=building.address,
        description=order.comments or order.description or "",
        signature=order.signature_data_url,
    )
    pdf = render_remito(payload, current_app.config.get("REMITO_TEMPLATE_PATH") or None)

    storage = get_storage()
    key = remito_key(company_id, order.id, display_number)
    storage.upload(REMITOS_BUCKET, key, pdf, upsert=True)
    file_url = storage.public_url(REMITOS_BUCKET, key)

    remito = save_remito(company_id, order.id, number, file_url)
    repository.invalidate_company(company_id)
    logger.info("remito_generated", company_id=company_id, work_order_id=order.id, number=display_number)
    return remito


def get_remito(company_id: int, work_order_id) -> Remito | None:
    order = repository.get_work_order(work_order_id, company_id)
    if order is None:
        return None
    return _find_remito(company_id, order.id)


def _summary_rows(order: WorkOrder) -> list[tuple[str, str]]:
    building = db.session.get(Building, order.building_id)
    technician = (
        Technician.query.filter_by(id=order.technician_id, company_id=order.company_id).first()
        if order.technician_id
        else None
    )
    if order.elevator is not None:
        asset = f"Ascensor {order.elevator.number}"
    elif order.equipment is not None:
        asset = order.equipment.name or order.equipment.type
    else:
        asset = "-"
    tz = business_timezone()

    def when(value) -> str:
        return as_utc(value).astimezone(tz).strftime("%d/%m/%Y %H:%M") if value else "-"

    claim = label("claim", order.claim_type)
    if order.corrective_type:
        claim = f"{claim} ({label('corrective', order.corrective_type)})"
    return [
        ("Tipo", claim),
        ("Estado", label("status", order.status)),
        ("Prioridad", label("priority", order.priority)),
        (translate("pdf.location"), f"{building.address if building else '-'} / {asset}"),
        (translate("pdf.assignment"), technician.name if technician else translate("pdf.unassigned")),
        ("Contacto", f"{order.contact_name} {order.contact_phone}".strip() or "-"),
        ("Programada", when(order.date_time)),
        ("Inicio", when(order.start_time)),
        ("Fin", when(order.finish_time)),
    ]


def work_order_summary_pdf(company_id: int, order_id) -> bytes | None:
    order = repository.get_work_order(order_id, company_id)
    if order is None:
        return None
    width, height = A4
    margin = 40.0
    max_width = width - 2 * margin
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)

    y = height - margin
    c.setFont(FONT_BOLD, 16)
    c.drawString(margin, y, f"{translate('pdf.work_order')} #{order.id}")
    y -= 28

    for name, value in _summary_rows(order):
        c.setFont(FONT_BOLD, 10.5)
        c.drawString(margin, y, f"{name}:")
        c.setFont(FONT, 10.5)
        c.drawString(margin + 110, y, value)
        y -= 15

    y -= 10
    c.setFont(FONT_BOLD, 12)
    c.drawString(margin, y, translate("pdf.description"))
    y -= 16
    c.setFont(FONT, 10.5)
    for line in wrap_lines(order.comments or order.description, max_width, size=10.5, max_lines=20):
        c.drawString(margin, y, line)
        y -= 14

    y -= 10
    c.setFont(FONT_BOLD, 12)
    c.drawString(margin, y, translate("pdf.parts"))
    y -= 16
    c.setFont(FONT, 10.5)
    parts = order.parts_used or []
    if not parts:
        c.drawString(margin, y, translate("pdf.no_parts"))
        y -= 14
    for part in parts:
        c.drawString(margin, y, f"- {part.get('name', '')} x{part.get('quantity', 0)}")
        y -= 14

    if order.signature_data_url:
        y -= 10
        c.setFont(FONT_BOLD, 12)
        c.drawString(margin, y, translate("pdf.signature"))
        image = _signature_image(order.signature_data_url)
        box = {"x": margin, "y": max(y - 100, margin), "w": 200.0, "h": 90.0}
        _draw_signature(c, image, box)
        if order.client_clarification or order.client_dni:
            c.setFont(FONT, 10)
            c.drawString(margin, box["y"] - 12, f"{order.client_clarification or ''} DNI {order.client_dni or '-'}")

    c.showPage()
    c.save()
    return buffer.getvalue()
