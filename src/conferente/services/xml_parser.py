"""NF-e / NFC-e / CF-e XML → Invoice.

The same semantic value lives under different tags depending on the document
family, so most fields are resolved through an ordered fallback chain.
"""

from __future__ import annotations

import logging
import unicodedata
import uuid
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import BinaryIO, TextIO

from conferente.config import BRT, SKIP_TERMS
from conferente.models.finding import dedupe
from conferente.models.fiscal import ParseResult
from conferente.models.invoice import (
    Installment,
    Invoice,
    InvoiceItem,
    PaymentStatus,
    Purpose,
)
from conferente.services.exceptions import XmlReadError
from conferente.services.validation import (
    resolve_access_key,
    validate_document,
    validate_invoice,
)
from conferente.utils import xml_lookup as xl
from conferente.utils.access_key import ACCESS_KEY_LENGTH
from conferente.utils.dates import parse_date, parse_datetime, today_brt
from conferente.utils.money import parse_decimal, to_decimal

logger = logging.getLogger(__name__)

NO_NUMBER = "S/N"
UNKNOWN_ISSUER = "Consumidor / Desconhecido"

XmlSource = bytes | str | BinaryIO | TextIO


def _read(source: XmlSource) -> bytes | str:
    """Buffer the whole input; file-like sources are closed before returning.

    Text stays text so its encoding declaration is not applied a second time.
    """
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, str):
        return source
    try:
        return source.read()
    finally:
        source.close()


def _fold(value: str) -> str:
    """Lowercase and strip accents so 'Devolução' matches 'devolucao'."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def match_skip_term(nature: str, extra_terms: Iterable[str] = ()) -> str | None:
    """Return the rejection term found in the operation nature, if any."""
    folded = _fold(nature)
    for term in (*SKIP_TERMS, *extra_terms):
        if term and _fold(term) in folded:
            return term
    return None


def _fallback_id(number: str, *identity: str) -> str:
    """Identifier for documents without an access key.

    Digits of the invoice number plus a name-based UUID over the issuer
    identity, so re-parsing the same file yields the same id.
    """
    digits = "".join(ch for ch in number if ch.isdigit())
    token = uuid.uuid5(uuid.NAMESPACE_URL, "|".join((number, *identity)))
    return f"{digits}-{token}"


def _parse_item(det: xl.Element) -> InvoiceItem:
    prod = xl.find(det, "prod")
    imposto = xl.find(det, "imposto")
    icms = xl.child(imposto, "ICMS")
    ipi = xl.child(imposto, "IPI")
    pis = xl.child(imposto, "PIS")
    cofins = xl.child(imposto, "COFINS")

    def p(tag: str) -> str:
        return xl.child_text(prod, tag)

    def dec(block: xl.Element | None, tag: str) -> Decimal:
        return to_decimal(xl.text(block, tag))

    cst = xl.text(icms, "CST")
    return InvoiceItem(
        number=xl.attr(det, "nItem"),
        code=p("cProd"),
        name=p("xProd"),
        ncm=p("NCM"),
        cfop=p("CFOP"),
        unit=xl.first_of(lambda: p("uCom"), lambda: p("uTrib"), default=""),
        quantity=to_decimal(xl.first_of(lambda: p("qCom"), lambda: p("qTrib"), default="")),
        unit_price=to_decimal(xl.first_of(lambda: p("vUnCom"), lambda: p("vUnTrib"), default="")),
        total_value=to_decimal(p("vProd")),
        freight_value=to_decimal(p("vFrete")),
        insurance_value=to_decimal(p("vSeg")),
        discount_value=to_decimal(p("vDesc")),
        other_expenses_value=to_decimal(p("vOutro")),
        cst=xl.text(icms, "orig") + cst if cst else "",
        csosn=xl.text(icms, "CSOSN"),
        icms_base=dec(icms, "vBC"),
        icms_rate=dec(icms, "pICMS"),
        icms_value=dec(icms, "vICMS"),
        icms_st_base=dec(icms, "vBCST"),
        icms_st_rate=dec(icms, "pICMSST"),
        icms_st_value=dec(icms, "vICMSST"),
        ipi_base=dec(ipi, "vBC"),
        ipi_rate=dec(ipi, "pIPI"),
        ipi_value=dec(ipi, "vIPI"),
        pis_base=dec(pis, "vBC"),
        pis_rate=dec(pis, "pPIS"),
        pis_value=dec(pis, "vPIS"),
        cofins_base=dec(cofins, "vBC"),
        cofins_rate=dec(cofins, "pCOFINS"),
        cofins_value=dec(cofins, "vCOFINS"),
    )


def _parse_installments(root: xl.Element, invoice_id: str) -> list[Installment]:
    today = today_brt()
    installments: list[Installment] = []
    for dup in xl.find_all(root, "dup"):
        n_dup = xl.text(dup, "nDup")
        due_date = parse_date(xl.text(dup, "dVenc"))
        value = parse_decimal(xl.text(dup, "vDup"))
        if due_date is None or value is None:
            logger.debug("Ignoring duplicata %r of %s: missing due date or value", n_dup, invoice_id)
            continue
        installments.append(
            Installment(
                id=f"{invoice_id}-{n_dup}",
                number=n_dup,
                due_date=due_date,
                value=value,
                status=PaymentStatus.OVERDUE if due_date < today else PaymentStatus.PENDING,
            )
        )
    return installments


def _build_result(
    root: xl.Element,
    file_name: str,
    purpose: Purpose,
    extra_skip_terms: Iterable[str],
) -> ParseResult:
    ide = xl.find(root, "ide")
    emit = xl.find(root, "emit")
    dest = xl.find(root, "dest")
    icms_tot = xl.find(root, "ICMSTot")

    number = xl.first_text(root, "nNF", "nCFe", "nFat", default=NO_NUMBER)
    series = xl.text(ide, "serie")

    issue_raw = xl.first_text(root, "dhEmi", "dEmi")
    issue_date = parse_datetime(issue_raw) or datetime.now(BRT)
    exit_date = parse_datetime(xl.first_text(ide, "dhSaiEnt", "dSaiEnt"))

    issuer_tax_id = xl.first_text(emit, "CNPJ", "CPF")
    recipient_tax_id = xl.first_text(dest, "CNPJ", "CPF", "idEstrangeiro")

    total_value = to_decimal(
        xl.first_of(
            lambda: xl.text(icms_tot, "vNF"),
            lambda: xl.text(root, "vLiq"),
            lambda: xl.text(root, "vCFe"),
            lambda: xl.text(root, "vNF"),
            default="",
        )
    )

    access_key = resolve_access_key(root)
    if len(access_key) == ACCESS_KEY_LENGTH:
        invoice_id = access_key
    else:
        invoice_id = _fallback_id(number, issuer_tax_id, series, issue_raw, file_name)

    installments = _parse_installments(root, invoice_id)
    missing_duplicates = not installments
    if missing_duplicates:
        if total_value <= 0:
            return ParseResult(
                file_name=file_name,
                error_message="Nota sem valor total e sem duplicatas.",
                recipient_tax_id=recipient_tax_id or None,
            )
        due = issue_date.date()
        installments = [
            Installment(
                id=f"{invoice_id}-single",
                number="001",
                due_date=due,
                value=total_value,
                status=PaymentStatus.OVERDUE if due < today_brt() else PaymentStatus.PENDING,
            )
        ]
        logger.info("No duplicatas in %s; estimated a single installment", file_name)

    def tot(tag: str) -> Decimal:
        return to_decimal(xl.text(icms_tot, tag))

    nature = xl.text(root, "natOp")

    invoice = Invoice(
        id=invoice_id,
        number=number,
        series=series,
        access_key=access_key,
        issue_date=issue_date,
        exit_date=exit_date,
        file_name=file_name,
        purpose=purpose,
        nature_of_operation=nature,
        issuer_name=xl.text(emit, "xNome") or UNKNOWN_ISSUER,
        issuer_tax_id=issuer_tax_id,
        issuer_state=xl.child_text(xl.child(emit, "enderEmit"), "UF"),
        recipient_name=xl.text(dest, "xNome"),
        recipient_tax_id=recipient_tax_id,
        recipient_state=xl.child_text(xl.child(dest, "enderDest"), "UF"),
        total_value=total_value,
        products_value=tot("vProd"),
        freight_value=tot("vFrete"),
        insurance_value=tot("vSeg"),
        discount_value=tot("vDesc"),
        other_expenses_value=tot("vOutro"),
        icms_base=tot("vBC"),
        icms_value=tot("vICMS"),
        icms_st_base=tot("vBCST"),
        icms_st_value=tot("vST"),
        ipi_value=tot("vIPI"),
        pis_value=tot("vPIS"),
        cofins_value=tot("vCOFINS"),
        approximate_tax_value=tot("vTotTrib"),
        items=tuple(_parse_item(det) for det in xl.find_all(root, "det")),
        installments=tuple(installments),
    )

    skip_reason = None
    term = match_skip_term(nature, extra_skip_terms) if nature else None
    if term is not None:
        skip_reason = f"Nota ignorada: natureza da operação '{nature}' indica {term}, não compra."
        logger.info("Skipping %s: %s", file_name, skip_reason)

    findings = dedupe(validate_document(root, purpose) + validate_invoice(invoice))

    return ParseResult(
        file_name=file_name,
        invoice=invoice,
        is_skipped=skip_reason is not None,
        skip_reason=skip_reason,
        missing_duplicates=missing_duplicates,
        recipient_tax_id=recipient_tax_id or None,
        validation_findings=tuple(findings),
    )


def parse(
    source: XmlSource,
    file_name: str,
    purpose: Purpose = Purpose.RESALE,
    extra_skip_terms: Iterable[str] = (),
) -> ParseResult:
    """Parse one XML document into a ParseResult. Never raises.

    Structural failures (unreadable stream, malformed XML, missing root) come
    back as ``error_message`` with no invoice.
    """
    try:
        data = _read(source)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read %s: %s", file_name, exc)
        return ParseResult(file_name=file_name, error_message=f"Erro ao ler arquivo: {exc}")

    try:
        root = xl.parse_xml(data, file_name)
    except XmlReadError as exc:
        logger.warning("Failed to parse %s: %s", file_name, exc)
        return ParseResult(file_name=file_name, error_message=str(exc))

    try:
        return _build_result(root, file_name, purpose, extra_skip_terms)
    except Exception as exc:
        logger.warning("Unexpected error interpreting %s", file_name, exc_info=True)
        return ParseResult(file_name=file_name, error_message=f"Erro ao interpretar XML: {exc}")


def parse_file(
    path: str | Path,
    purpose: Purpose = Purpose.RESALE,
    extra_skip_terms: Iterable[str] = (),
) -> ParseResult:
    """Open *path* and parse it; the file name is carried into the result."""
    path = Path(path)
    try:
        fh = path.open("rb")
    except OSError as exc:
        logger.warning("Failed to open %s: %s", path, exc)
        return ParseResult(file_name=path.name, error_message=f"Erro ao ler arquivo: {exc}")
    return parse(fh, path.name, purpose, extra_skip_terms)
