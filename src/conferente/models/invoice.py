from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from conferente.utils.money import DEC4, ZERO


class Purpose(StrEnum):
    """Why the recipient bought the goods; drives the consumption advisories."""

    RESALE = "revenda"
    CONSUMPTION = "consumo"


class PaymentStatus(StrEnum):
    PENDING = "pendente"
    OVERDUE = "vencida"
    PAID = "paga"


@dataclass(frozen=True)
class Installment:
    """One duplicata (payment installment) of an invoice."""

    id: str
    number: str
    due_date: date
    value: Decimal
    status: PaymentStatus = PaymentStatus.PENDING


@dataclass(frozen=True)
class InvoiceItem:
    number: str  # nItem
    code: str
    name: str
    ncm: str
    cfop: str
    unit: str
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    total_value: Decimal = ZERO

    # Per-item accessory values (prorated header figures)
    freight_value: Decimal = ZERO
    insurance_value: Decimal = ZERO
    discount_value: Decimal = ZERO
    other_expenses_value: Decimal = ZERO

    cst: str = ""  # origin + CST, e.g. "000", "060"
    csosn: str = ""  # Simples Nacional

    icms_base: Decimal = ZERO
    icms_rate: Decimal = ZERO
    icms_value: Decimal = ZERO

    icms_st_base: Decimal = ZERO
    icms_st_rate: Decimal = ZERO
    icms_st_value: Decimal = ZERO

    ipi_base: Decimal = ZERO
    ipi_rate: Decimal = ZERO
    ipi_value: Decimal = ZERO

    pis_base: Decimal = ZERO
    pis_rate: Decimal = ZERO
    pis_value: Decimal = ZERO

    cofins_base: Decimal = ZERO
    cofins_rate: Decimal = ZERO
    cofins_value: Decimal = ZERO

    @property
    def effective_unit_cost(self) -> Decimal:
        """Unit cost including non-recoverable taxes and accessory expenses.

        Meaningful for consumption purchases, where IPI and ICMS-ST cannot be
        credited. Zero when quantity is not positive.
        """
        if self.quantity <= 0:
            return ZERO
        cost = (
            self.total_value
            + self.ipi_value
            + self.icms_st_value
            + self.freight_value
            + self.insurance_value
            + self.other_expenses_value
            - self.discount_value
        )
        return (cost / self.quantity).quantize(DEC4, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Invoice:
    id: str
    number: str
    series: str
    access_key: str
    issue_date: datetime
    file_name: str
    purpose: Purpose = Purpose.RESALE
    exit_date: datetime | None = None
    nature_of_operation: str = ""

    issuer_name: str = ""
    issuer_tax_id: str = ""
    issuer_state: str = ""

    recipient_name: str = ""
    recipient_tax_id: str = ""
    recipient_state: str = ""

    total_value: Decimal = ZERO  # vNF
    products_value: Decimal = ZERO
    freight_value: Decimal = ZERO
    insurance_value: Decimal = ZERO
    discount_value: Decimal = ZERO
    other_expenses_value: Decimal = ZERO
    icms_base: Decimal = ZERO
    icms_value: Decimal = ZERO
    icms_st_base: Decimal = ZERO
    icms_st_value: Decimal = ZERO
    ipi_value: Decimal = ZERO
    pis_value: Decimal = ZERO
    cofins_value: Decimal = ZERO
    approximate_tax_value: Decimal = ZERO  # vTotTrib

    items: tuple[InvoiceItem, ...] = field(default_factory=tuple)
    installments: tuple[Installment, ...] = field(default_factory=tuple)
