from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal


def format_brl(value: Decimal | str) -> str:
    """Format a numeric value as R$ X.XXX,XX."""
    d = Decimal(value)
    formatted = f"{d:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {formatted}"


def format_date(value: date | datetime | None) -> str:
    """Format a date as dd/mm/aaaa, or '-' when missing."""
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")
