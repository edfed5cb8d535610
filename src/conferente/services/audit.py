"""Parse → analyze pipeline over one document or a batch of files."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from conferente.models.finding import (
    Finding,
    FiscalDocumentStatus,
    dedupe,
    document_status,
    warning,
)
from conferente.models.fiscal import FiscalAnalysis, ParseResult
from conferente.models.invoice import Invoice, Purpose
from conferente.models.settings import Settings
from conferente.services.analysis import analyze
from conferente.services.xml_parser import XmlSource, parse, parse_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditResult:
    """Everything downstream consumers need for one source document."""

    file_name: str
    parse_result: ParseResult
    analysis: FiscalAnalysis | None = None
    extra_findings: tuple[Finding, ...] = ()

    @property
    def findings(self) -> list[Finding]:
        return dedupe((*self.parse_result.validation_findings, *self.extra_findings))

    @property
    def status(self) -> FiscalDocumentStatus:
        if not self.parse_result.ok:
            return FiscalDocumentStatus.INVALID
        return document_status(self.findings)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable summary (decimals as strings, dates ISO)."""
        pr = self.parse_result
        data: dict[str, Any] = {
            "arquivo": self.file_name,
            "status": self.status.value,
            "erro": pr.error_message,
            "ignorada": pr.is_skipped,
            "motivo_ignorada": pr.skip_reason,
            "duplicatas_ausentes": pr.missing_duplicates,
            "cnpj_destinatario": pr.recipient_tax_id,
            "achados": [
                {"codigo": f.code, "severidade": f.severity.name.lower(), "mensagem": f.message}
                for f in self.findings
            ],
        }
        if pr.invoice is not None:
            data["nota"] = _invoice_to_dict(pr.invoice)
        if self.analysis is not None:
            data["divergencias"] = [
                {
                    "campo": d.label,
                    "xml": str(d.original),
                    "calculado": str(d.calculated),
                }
                for d in self.analysis.discrepancies
            ]
            data["valor_total_calculado"] = str(self.analysis.calculated.total_value)
        return data


def _invoice_to_dict(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": invoice.id,
        "numero": invoice.number,
        "serie": invoice.series,
        "chave": invoice.access_key,
        "emissao": invoice.issue_date.isoformat(),
        "natureza_operacao": invoice.nature_of_operation,
        "finalidade": invoice.purpose.value,
        "emitente": {
            "nome": invoice.issuer_name,
            "documento": invoice.issuer_tax_id,
            "uf": invoice.issuer_state,
        },
        "destinatario": {
            "nome": invoice.recipient_name,
            "documento": invoice.recipient_tax_id,
            "uf": invoice.recipient_state,
        },
        "valor_total": str(invoice.total_value),
        "valor_produtos": str(invoice.products_value),
        "itens": len(invoice.items),
        "parcelas": [
            {
                "numero": i.number,
                "vencimento": i.due_date.isoformat(),
                "valor": str(i.value),
                "status": i.status.value,
            }
            for i in invoice.installments
        ],
    }


def _recipient_findings(result: ParseResult, settings: Settings) -> tuple[Finding, ...]:
    expected = settings.cnpj_empresa
    actual = result.recipient_tax_id
    if not expected or not actual or actual == expected:
        return ()
    return (
        warning(
            "destinatario_divergente",
            f"Atenção: Nota destinada ao documento {actual}, diferente do CNPJ da empresa ({expected}).",
        ),
    )


def _finish(result: ParseResult, purpose: Purpose, settings: Settings) -> AuditResult:
    if result.invoice is None:
        return AuditResult(file_name=result.file_name, parse_result=result)
    return AuditResult(
        file_name=result.file_name,
        parse_result=result,
        analysis=analyze(result.invoice, purpose),
        extra_findings=_recipient_findings(result, settings),
    )


def audit(
    source: XmlSource,
    file_name: str,
    purpose: Purpose = Purpose.RESALE,
    settings: Settings | None = None,
) -> AuditResult:
    settings = settings or Settings()
    result = parse(source, file_name, purpose, settings.naturezas_ignoradas)
    return _finish(result, purpose, settings)


def expand_paths(paths: Iterable[str | Path]) -> list[Path]:
    """Files as given; directories replaced by their *.xml files (sorted)."""
    files: list[Path] = []
    for p in map(Path, paths):
        if p.is_dir():
            files.extend(sorted(f for f in p.iterdir() if f.suffix.lower() == ".xml" and f.is_file()))
        else:
            files.append(p)
    return files


def audit_paths(
    paths: Iterable[str | Path],
    purpose: Purpose = Purpose.RESALE,
    settings: Settings | None = None,
) -> list[AuditResult]:
    """Audit every file independently; a failing file never stops the batch."""
    settings = settings or Settings()
    results = []
    for path in expand_paths(paths):
        result = parse_file(path, purpose, settings.naturezas_ignoradas)
        if not result.ok:
            logger.warning("Could not parse %s: %s", path, result.error_message)
        results.append(_finish(result, purpose, settings))
    return results
