from __future__ import annotations

import re

from conferente.models.invoice import Purpose

_CNPJ_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_CNPJ_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def _cnpj_digit(digits: str, weights: tuple[int, ...]) -> str:
    remainder = sum(int(d) * w for d, w in zip(digits, weights, strict=True)) % 11
    return "0" if remainder < 2 else str(11 - remainder)


def validate_cnpj(value: str) -> str:
    """Validate a CNPJ (punctuation allowed) and return its 14 digits."""
    digits = re.sub(r"[.\-/\s]", "", value)
    if not re.fullmatch(r"\d{14}", digits) or len(set(digits)) == 1:
        raise ValueError("CNPJ: deve ter 14 digitos numericos")
    if digits[12] != _cnpj_digit(digits[:12], _CNPJ_WEIGHTS_1) or digits[13] != _cnpj_digit(
        digits[:13], _CNPJ_WEIGHTS_2
    ):
        raise ValueError("CNPJ: digitos verificadores invalidos")
    return digits


def validate_purpose(value: str) -> Purpose:
    """Validate a purpose name ('revenda' or 'consumo')."""
    try:
        return Purpose(value.strip().lower())
    except ValueError:
        raise ValueError(f"Finalidade invalida: '{value}'. Use revenda ou consumo.") from None
