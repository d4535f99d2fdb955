from __future__ import annotations

from app.maintenance.autocorrect import autocorrect_parts, autocorrect_text, normalize_spacing


def test_known_typos_are_fixed_case_insensitively():
    assert autocorrect_text("Cambio de VALVULA del asensor") == "Cambio de válvula del ascensor"
    assert autocorrect_text("revision tablero electrico y puerta cabina") == (
        "revision tablero eléctrico y puerta de cabina"
    )


def test_whole_words_only():
    assert autocorrect_text("plaquetas nuevas") == "plaquetas nuevas"


def test_spacing_is_normalized():
    assert normalize_spacing("  uno   dos \t tres  \ncuatro ") == "uno dos tres\ncuatro"


def test_empty_values_pass_through():
    assert autocorrect_text(None) is None
    assert autocorrect_text("") == ""
    assert autocorrect_parts(None) is None


def test_part_names_are_corrected():
    parts = [{"name": "plaqueta  principal", "quantity": 2}]
    assert autocorrect_parts(parts) == [{"name": "placa principal", "quantity": 2}]
