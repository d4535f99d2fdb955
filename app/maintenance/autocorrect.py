from __future__ import annotations

import re

# Frequent field typos in technician notes, applied in order
AUTOCORRECT_MAP: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\basensor\b", re.IGNORECASE), "ascensor"),
    (re.compile(r"\bvalvula\b", re.IGNORECASE), "válvula"),
    (re.compile(r"\bvalvulas\b", re.IGNORECASE), "válvulas"),
    (re.compile(r"\bmanija\b", re.IGNORECASE), "manilla"),
    (re.compile(r"\bplaqueta\b", re.IGNORECASE), "placa"),
    (re.compile(r"\bmanten(i|í)mento\b", re.IGNORECASE), "mantenimiento"),
    (re.compile(r"\bpreventibo\b", re.IGNORECASE), "preventivo"),
    (re.compile(r"\bcorrectibo\b", re.IGNORECASE), "correctivo"),
    (re.compile(r"\bllabe\b", re.IGNORECASE), "llave"),
    (re.compile(r"\bpasamano\b", re.IGNORECASE), "pasamanos"),
    (re.compile(r"\bpuerta cabina\b", re.IGNORECASE), "puerta de cabina"),
    (re.compile(r"\bpuerta piso\b", re.IGNORECASE), "puerta de piso"),
    (re.compile(r"\btablero electrico\b", re.IGNORECASE), "tablero eléctrico"),
    (re.compile(r"\binterruptor termico\b", re.IGNORECASE), "interruptor térmico"),
    (re.compile(r"\bcontacto electrico\b", re.IGNORECASE), "contacto eléctrico"),
]

_INLINE_SPACES = re.compile(r"[ \t]+")
_SPACE_BEFORE_NEWLINE = re.compile(r"\s+\n")


def normalize_spacing(text: str) -> str:
    text = _INLINE_SPACES.sub(" ", text)
    text = _SPACE_BEFORE_NEWLINE.sub("\n", text)
    return text.strip()


def autocorrect_text(text: str | None) -> str | None:
    if not text:
        return text
    for pattern, replacement in AUTOCORRECT_MAP:
        text = pattern.sub(replacement, text)
    return normalize_spacing(text)


def autocorrect_parts(parts: list[dict] | None) -> list[dict] | None:
    if parts is None:
        return None
    return [{**part, "name": autocorrect_text(part.get("name") or "")} for part in parts]
