from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum, StrEnum


class Severity(IntEnum):
    INFO = 1
    WARNING = 2
    ERROR = 3


class FiscalDocumentStatus(StrEnum):
    PENDING = "pendente"
    VALID = "valida"
    INVALID = "invalida"
    WARNING = "alerta"


@dataclass(frozen=True)
class Finding:
    """A single validation outcome, tagged with its severity where it is detected."""

    code: str
    severity: Severity
    message: str

    def __str__(self) -> str:
        return self.message


def info(code: str, message: str) -> Finding:
    return Finding(code, Severity.INFO, message)


def warning(code: str, message: str) -> Finding:
    return Finding(code, Severity.WARNING, message)


def error(code: str, message: str) -> Finding:
    return Finding(code, Severity.ERROR, message)


def dedupe(findings: Iterable[Finding]) -> list[Finding]:
    """Drop repeated findings, keeping the first occurrence's position."""
    return list(dict.fromkeys(findings))


def max_severity(findings: Iterable[Finding]) -> Severity | None:
    return max((f.severity for f in findings), default=None)


def document_status(findings: Iterable[Finding]) -> FiscalDocumentStatus:
    """Invalid on any error, Warning on any other finding, else Valid."""
    top = max_severity(findings)
    if top is None:
        return FiscalDocumentStatus.VALID
    if top >= Severity.ERROR:
        return FiscalDocumentStatus.INVALID
    return FiscalDocumentStatus.WARNING
