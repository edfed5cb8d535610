"""Decimal helpers shared by the parser, the validation engine and the analyzer.

All currency comparisons use the same absolute tolerance and all tax
computations round half away from zero to two places.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TOLERANCE = Decimal("0.05")
ZERO = Decimal("0")
DEC2 = Decimal("0.01")
DEC4 = Decimal("0.0001")


def parse_decimal(raw: str | None) -> Decimal | None:
    """Parse an invariant-culture number ("1234.56"), or None when it is not one."""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    try:
        d = Decimal(raw)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return d


def to_decimal(raw: str | None) -> Decimal:
    """Like parse_decimal, but missing or unparseable values are zero."""
    d = parse_decimal(raw)
    return ZERO if d is None else d


def round_money(value: Decimal) -> Decimal:
    return value.quantize(DEC2, rounding=ROUND_HALF_UP)


def tax_from_rate(base: Decimal, rate: Decimal) -> Decimal:
    """Tax value for *base* at *rate* percent, rounded to cents."""
    return round_money(base * rate / Decimal(100))


def differs(a: Decimal, b: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(a - b) > tolerance


def sefaz_total(
    products: Decimal,
    discount: Decimal,
    ipi: Decimal,
    icms_st: Decimal,
    freight: Decimal,
    insurance: Decimal,
    other: Decimal,
) -> Decimal:
    """vNF = vProd - vDesc + vIPI + vST + vFrete + vSeg + vOutro."""
    return products - discount + ipi + icms_st + freight + insurance + other
