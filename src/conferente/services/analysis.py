"""Recalculate an invoice from its line items and report where the XML disagrees."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from decimal import Decimal

from conferente.models.fiscal import Discrepancy, FiscalAnalysis
from conferente.models.invoice import Invoice, InvoiceItem, Purpose
from conferente.services.validation import validate_invoice
from conferente.utils.money import ZERO, differs, round_money, sefaz_total, tax_from_rate

logger = logging.getLogger(__name__)


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def recalculate_item(item: InvoiceItem) -> InvoiceItem:
    """Return *item* with ICMS/IPI values recomputed where they miss base × rate."""
    changes: dict[str, Decimal] = {}

    expected_total = round_money(item.quantity * item.unit_price)
    if differs(item.total_value, expected_total):
        # Unit prices are often truncated in the XML, so the declared total is kept.
        logger.debug(
            "Item %s: vProd %s differs from qCom x vUnCom %s (not corrected)",
            item.number,
            item.total_value,
            expected_total,
        )

    if item.icms_base > 0 and item.icms_rate > 0:
        expected_icms = tax_from_rate(item.icms_base, item.icms_rate)
        if differs(item.icms_value, expected_icms):
            logger.debug("Item %s: ICMS %s -> %s", item.number, item.icms_value, expected_icms)
            changes["icms_value"] = expected_icms

    if item.ipi_base > 0 and item.ipi_rate > 0:
        expected_ipi = tax_from_rate(item.ipi_base, item.ipi_rate)
        if differs(item.ipi_value, expected_ipi):
            logger.debug("Item %s: IPI %s -> %s", item.number, item.ipi_value, expected_ipi)
            changes["ipi_value"] = expected_ipi

    return dataclasses.replace(item, **changes)


def recalculate(invoice: Invoice) -> Invoice:
    """Derive the calculated invoice: corrected items, header sums, SEFAZ total.

    Freight, insurance, discount and other expenses keep their header value
    unless it is zero and the items carry a positive prorated amount.
    Installments are shared with the original.
    """
    items = tuple(recalculate_item(i) for i in invoice.items)

    def header_or_items(header: Decimal, items_sum: Decimal) -> Decimal:
        if header == 0 and items_sum > 0:
            return items_sum
        return header

    freight = header_or_items(invoice.freight_value, _sum(i.freight_value for i in items))
    insurance = header_or_items(invoice.insurance_value, _sum(i.insurance_value for i in items))
    discount = header_or_items(invoice.discount_value, _sum(i.discount_value for i in items))
    other = header_or_items(
        invoice.other_expenses_value, _sum(i.other_expenses_value for i in items)
    )

    products = _sum(i.total_value for i in items)
    ipi = _sum(i.ipi_value for i in items)
    icms_st = _sum(i.icms_st_value for i in items)

    return dataclasses.replace(
        invoice,
        items=items,
        products_value=products,
        ipi_value=ipi,
        icms_value=_sum(i.icms_value for i in items),
        icms_base=_sum(i.icms_base for i in items),
        icms_st_value=icms_st,
        icms_st_base=_sum(i.icms_st_base for i in items),
        pis_value=_sum(i.pis_value for i in items),
        cofins_value=_sum(i.cofins_value for i in items),
        freight_value=freight,
        insurance_value=insurance,
        discount_value=discount,
        other_expenses_value=other,
        total_value=sefaz_total(
            products=products,
            discount=discount,
            ipi=ipi,
            icms_st=icms_st,
            freight=freight,
            insurance=insurance,
            other=other,
        ),
    )


# (label, Invoice attribute) pairs compared between XML and recalculation
COMPARED_FIELDS = (
    ("Total da Nota", "total_value"),
    ("Total Produtos", "products_value"),
    ("Total IPI", "ipi_value"),
    ("Total ICMS", "icms_value"),
    ("Total ICMS ST", "icms_st_value"),
)


def compare(original: Invoice, calculated: Invoice) -> list[Discrepancy]:
    discrepancies = []
    for label, attr in COMPARED_FIELDS:
        before = getattr(original, attr)
        after = getattr(calculated, attr)
        if differs(before, after):
            discrepancies.append(Discrepancy(label, before, after))
    return discrepancies


def analyze(invoice: Invoice, purpose: Purpose | None = None) -> FiscalAnalysis:
    """Recalculate *invoice*, list discrepancies and attach invoice-level findings.

    *purpose* only changes the advisory findings; the recalculated totals
    never depend on it.
    """
    calculated = recalculate(invoice)
    return FiscalAnalysis(
        original=invoice,
        calculated=calculated,
        discrepancies=tuple(compare(invoice, calculated)),
        validation_findings=tuple(validate_invoice(invoice, purpose)),
    )
