"""Fiscal validation engine.

Every check is a pure function returning its own findings; the engine only
concatenates them. A check whose inputs are missing returns nothing and never
prevents the others from running.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from decimal import Decimal

from conferente.config import (
    CONSUMPTION_CFOPS,
    DOCUMENT_ROOTS,
    FOREIGN_STATE,
    VALID_MODELS,
)
from conferente.models.finding import (
    Finding,
    FiscalDocumentStatus,
    dedupe,
    document_status,
    error,
    info,
    warning,
)
from conferente.models.fiscal import FiscalDocument
from conferente.models.invoice import Invoice, Purpose
from conferente.services.exceptions import XmlReadError
from conferente.utils import xml_lookup as xl
from conferente.utils.access_key import ACCESS_KEY_LENGTH, model_of, strip_key_prefix
from conferente.utils.dates import parse_datetime
from conferente.utils.formatters import format_brl
from conferente.utils.money import ZERO, differs, sefaz_total, to_decimal

logger = logging.getLogger(__name__)


def resolve_access_key(root: xl.Element) -> str:
    """Access key from chNFe, falling back to the infNFe/infCFe Id attribute."""

    def from_id() -> str:
        inf = xl.find(root, "infNFe")
        if inf is None:
            inf = xl.find(root, "infCFe")
        if inf is None and xl.local_name(root) in ("infNFe", "infCFe"):
            inf = root
        return strip_key_prefix(xl.attr(inf, "Id"))

    return xl.first_of(lambda: xl.text(root, "chNFe"), from_id, default="")


# --- Document checks (raw XML) ---


def check_access_key(root: xl.Element) -> list[Finding]:
    key = resolve_access_key(root)
    if not key:
        return [error("chave_ausente", "Chave de acesso não encontrada.")]
    if len(key) != ACCESS_KEY_LENGTH:
        return [
            error(
                "chave_tamanho",
                f"Chave de acesso inválida (tamanho {len(key)}, esperado {ACCESS_KEY_LENGTH}).",
            )
        ]
    model = model_of(key)
    if model not in VALID_MODELS:
        return [
            error(
                "chave_modelo",
                f"Modelo de nota na chave ({model}) é desconhecido (esperado 55 ou 65).",
            )
        ]
    return []


def check_signature(root: xl.Element) -> list[Finding]:
    """Compare the signature digest with the protocol digest (string equality only)."""
    signature = xl.find(root, "Signature")
    if signature is None:
        return [warning("assinatura_ausente", "Aviso: Assinatura digital não encontrada no XML.")]

    prot = xl.find(root, "protNFe")
    if prot is None:
        return []
    dig_val = xl.text(prot, "digVal")
    sig_digest = xl.text(xl.find(signature, "Reference"), "DigestValue")
    if dig_val and sig_digest and dig_val != sig_digest:
        return [
            error(
                "digest_divergente",
                "Divergência: O DigestValue do protocolo não coincide com o da assinatura.",
            )
        ]
    return []


def check_totals(root: xl.Element) -> list[Finding]:
    icms_tot = xl.find(root, "ICMSTot")
    if icms_tot is None:
        return []

    def dec(tag: str) -> Decimal:
        return to_decimal(xl.text(icms_tot, tag))

    v_nf = dec("vNF")
    calculated = sefaz_total(
        products=dec("vProd"),
        discount=dec("vDesc"),
        ipi=dec("vIPI"),
        icms_st=dec("vST"),
        freight=dec("vFrete"),
        insurance=dec("vSeg"),
        other=dec("vOutro"),
    )
    if differs(calculated, v_nf):
        return [
            error(
                "totais_divergentes",
                f"Divergência nos Totais da Nota: vNF ({format_brl(v_nf)}) "
                f"!= Cálculo SEFAZ ({format_brl(calculated)}).",
            )
        ]
    return []


def _party_state(root: xl.Element, party: str, address: str) -> str:
    return xl.child_text(xl.child(xl.find(root, party), address), "UF")


def check_items(root: xl.Element, purpose: Purpose = Purpose.RESALE) -> list[Finding]:
    findings: list[Finding] = []
    emit_uf = _party_state(root, "emit", "enderEmit")
    dest_uf = _party_state(root, "dest", "enderDest")

    for det in xl.find_all(root, "det"):
        n_item = xl.attr(det, "nItem")
        prod = xl.find(det, "prod")
        cfop = xl.child_text(prod, "CFOP")
        ncm = xl.child_text(prod, "NCM")

        if cfop and emit_uf and dest_uf:
            internal = emit_uf == dest_uf
            if internal and not cfop.startswith("5"):
                findings.append(
                    error(
                        "cfop_interno",
                        f"Item {n_item}: CFOP {cfop} incompatível com operação interna (UF {emit_uf}).",
                    )
                )
            elif not internal and not cfop.startswith("6") and dest_uf != FOREIGN_STATE:
                findings.append(
                    error(
                        "cfop_interestadual",
                        f"Item {n_item}: CFOP {cfop} incompatível com operação interestadual.",
                    )
                )

        if purpose == Purpose.RESALE and cfop in CONSUMPTION_CFOPS:
            findings.append(
                warning(
                    "cfop_consumo_revenda",
                    f"Item {n_item}: CFOP {cfop} indica Consumo, mas a finalidade é Revenda.",
                )
            )

        if len(ncm) != 8:
            findings.append(
                error(
                    "ncm_invalido",
                    f"Item {n_item}: NCM {ncm or '(ausente)'} inválido (esperado 8 dígitos).",
                )
            )
    return findings


def check_dates(root: xl.Element) -> list[Finding]:
    ide = xl.find(root, "ide")
    if ide is None:
        return []
    issued = parse_datetime(
        xl.first_of(lambda: xl.child_text(ide, "dhEmi"), lambda: xl.child_text(ide, "dEmi"), default="")
    )
    moved = parse_datetime(
        xl.first_of(
            lambda: xl.child_text(ide, "dhSaiEnt"), lambda: xl.child_text(ide, "dSaiEnt"), default=""
        )
    )
    if issued is not None and moved is not None and moved < issued:
        return [
            warning("data_saida_anterior", "Atenção: Data de saída/entrada anterior à data de emissão.")
        ]
    return []


def validate_document(
    source: xl.Element | bytes | str,
    purpose: Purpose = Purpose.RESALE,
) -> list[Finding]:
    """Run every raw-XML check and return their de-duplicated findings."""
    if isinstance(source, (bytes, str)):
        try:
            root = xl.parse_xml(source)
        except XmlReadError as exc:
            return [error("xml_ilegivel", f"Erro ao ler XML: {exc}")]
    else:
        root = source

    findings = (
        check_access_key(root)
        + check_signature(root)
        + check_totals(root)
        + check_items(root, purpose)
        + check_dates(root)
    )
    return dedupe(findings)


# --- Invoice-object logic ---


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def _sum_divergence(
    code: str, label: str, items_sum: Decimal, header: Decimal
) -> list[Finding]:
    if not differs(items_sum, header):
        return []
    return [
        error(
            code,
            f"Divergência {label}: Soma dos itens ({format_brl(items_sum)}) "
            f"difere do total do cabeçalho ({format_brl(header)}).",
        )
    ]


def check_item_sums(invoice: Invoice) -> list[Finding]:
    items = invoice.items
    return (
        _sum_divergence(
            "produtos_divergentes",
            "no Total de Produtos",
            _sum(i.total_value for i in items),
            invoice.products_value,
        )
        + _sum_divergence(
            "icms_divergente", "no ICMS", _sum(i.icms_value for i in items), invoice.icms_value
        )
        + _sum_divergence(
            "ipi_divergente", "no IPI", _sum(i.ipi_value for i in items), invoice.ipi_value
        )
    )


def check_invoice_total(invoice: Invoice) -> list[Finding]:
    calculated = sefaz_total(
        products=invoice.products_value,
        discount=invoice.discount_value,
        ipi=invoice.ipi_value,
        icms_st=invoice.icms_st_value,
        freight=invoice.freight_value,
        insurance=invoice.insurance_value,
        other=invoice.other_expenses_value,
    )
    if not differs(calculated, invoice.total_value):
        return []
    return [
        error(
            "vnf_divergente",
            f"Divergência no Total da Nota (vNF): O valor {format_brl(invoice.total_value)} "
            f"difere do cálculo SEFAZ {format_brl(calculated)} "
            "(Produtos - Desc + IPI + ST + Frete + Seg + Outros).",
        )
    ]


def check_consumption(invoice: Invoice) -> list[Finding]:
    """Advisories for goods bought for own use, where ICMS/IPI/ST become cost."""
    findings: list[Finding] = []
    if invoice.icms_value > 0:
        findings.append(
            info(
                "consumo_icms",
                "Atenção (Consumo): O ICMS destacado é um 'custo escondido' e "
                "geralmente não gera crédito para itens de consumo.",
            )
        )
    if invoice.ipi_value > 0:
        findings.append(
            info(
                "consumo_ipi",
                f"Atenção (Consumo): O IPI ({format_brl(invoice.ipi_value)}) integra o custo "
                "da mercadoria e a base de cálculo do ICMS na entrada.",
            )
        )
    if invoice.icms_st_value > 0:
        findings.append(
            info(
                "consumo_st",
                f"Alerta ST (Consumo): ICMS-ST de {format_brl(invoice.icms_st_value)} detectado. "
                "O fornecedor já reteve o imposto, o que torna o item mais caro.",
            )
        )
    if invoice.recipient_state and any(i.cfop.startswith("6") for i in invoice.items):
        findings.append(
            info(
                "difal",
                "DIFAL de Entrada: Operação interestadual p/ consumo detectada. Você deve "
                "calcular e pagar o diferencial de alíquota ao seu estado.",
            )
        )
    return findings


def validate_invoice(invoice: Invoice, purpose: Purpose | None = None) -> list[Finding]:
    """Arithmetic and purpose checks over a parsed invoice; *purpose* overrides the invoice's."""
    effective = purpose or invoice.purpose
    findings = check_item_sums(invoice) + check_invoice_total(invoice)
    if effective == Purpose.CONSUMPTION:
        findings += check_consumption(invoice)
    return dedupe(findings)


def validate(
    source: Invoice | xl.Element | bytes | str,
    purpose: Purpose | None = None,
) -> list[Finding]:
    """Validate either a parsed Invoice or a raw XML document."""
    if isinstance(source, Invoice):
        return validate_invoice(source, purpose)
    return validate_document(source, purpose or Purpose.RESALE)


# --- Document tracking ---


def build_fiscal_document(
    content: bytes | str,
    file_name: str,
    purpose: Purpose = Purpose.RESALE,
) -> FiscalDocument:
    """Validate an XML document and wrap the outcome in a FiscalDocument record."""
    xml_content = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    doc_id = str(uuid.uuid4())

    try:
        root = xl.parse_xml(content, file_name)
    except XmlReadError as exc:
        logger.warning("Unreadable fiscal document %s: %s", file_name, exc)
        return FiscalDocument(
            id=doc_id,
            xml_content=xml_content,
            file_name=file_name,
            status=FiscalDocumentStatus.INVALID,
            findings=(error("xml_ilegivel", f"Erro ao ler XML: {exc}"),),
        )

    if xl.local_name(root) not in DOCUMENT_ROOTS:
        return FiscalDocument(
            id=doc_id,
            xml_content=xml_content,
            file_name=file_name,
            status=FiscalDocumentStatus.INVALID,
            findings=(
                error("raiz_invalida", "XML inválido: Elemento raiz deve ser 'nfeProc' ou 'NFe'."),
            ),
        )

    findings = validate_document(root, purpose)

    total = to_decimal(xl.text(root, "vNF"))
    if total <= 0:
        findings.append(warning("total_nao_positivo", "Alerta: Valor total da nota é zero ou negativo."))

    findings = dedupe(findings)
    return FiscalDocument(
        id=doc_id,
        xml_content=xml_content,
        file_name=file_name,
        status=document_status(findings),
        access_key=resolve_access_key(root),
        issue_date=parse_datetime(xl.first_text(root, "dhEmi", "dEmi")),
        total_amount=total,
        findings=tuple(findings),
    )
