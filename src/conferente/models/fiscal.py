from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from conferente.models.finding import Finding, FiscalDocumentStatus
from conferente.models.invoice import Invoice
from conferente.utils.formatters import format_brl
from conferente.utils.money import ZERO


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one XML document.

    ``invoice`` and ``error_message`` are mutually exclusive. A skipped
    document still carries its invoice; skipping is advisory.
    """

    file_name: str
    invoice: Invoice | None = None
    error_message: str | None = None
    is_skipped: bool = False
    skip_reason: str | None = None
    missing_duplicates: bool = False
    recipient_tax_id: str | None = None
    validation_findings: tuple[Finding, ...] = ()

    @property
    def ok(self) -> bool:
        return self.invoice is not None


@dataclass(frozen=True)
class Discrepancy:
    label: str
    original: Decimal
    calculated: Decimal

    def __str__(self) -> str:
        return f"{self.label}: XML({format_brl(self.original)}) != Calc({format_brl(self.calculated)})"


@dataclass(frozen=True)
class FiscalAnalysis:
    original: Invoice
    calculated: Invoice
    discrepancies: tuple[Discrepancy, ...] = ()
    validation_findings: tuple[Finding, ...] = ()


@dataclass(frozen=True)
class FiscalDocument:
    """Tracking record for an XML document checked by the validation engine."""

    id: str
    xml_content: str
    file_name: str
    status: FiscalDocumentStatus = FiscalDocumentStatus.PENDING
    access_key: str = ""
    issue_date: datetime | None = None
    total_amount: Decimal = ZERO
    findings: tuple[Finding, ...] = ()
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
