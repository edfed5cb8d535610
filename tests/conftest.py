from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from conferente.models.invoice import Installment, Invoice, InvoiceItem, PaymentStatus, Purpose
from conferente.utils.access_key import build_access_key

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

ISSUER_CNPJ = "12345678000195"
RECIPIENT_CNPJ = "98765432000198"
ACCESS_KEY = build_access_key("35", "2401", ISSUER_CNPJ, "55", "001", 1234, "1", "00001234")

DEFAULT_ITEM = {
    "cfop": "5102",
    "ncm": "73181500",
    "q": "10.0000",
    "v_un": "100.00",
    "v_prod": "1000.00",
    "icms": ("1000.00", "18.00", "180.00"),
}


def _item_xml(n: int, item: dict) -> str:
    icms = item.get("icms")
    st = item.get("st")  # (base, rate, value)
    if icms or st:
        base, rate, value = icms or ("0.00", "0.00", "0.00")
        st_xml = ""
        if st:
            st_xml = f"<vBCST>{st[0]}</vBCST><pICMSST>{st[1]}</pICMSST><vICMSST>{st[2]}</vICMSST>"
        icms_xml = (
            f"<ICMS><ICMS{'10' if st else '00'}><orig>0</orig><CST>{'10' if st else '00'}</CST>"
            f"<modBC>3</modBC><vBC>{base}</vBC><pICMS>{rate}</pICMS><vICMS>{value}</vICMS>"
            f"{st_xml}</ICMS{'10' if st else '00'}></ICMS>"
        )
    else:
        icms_xml = "<ICMS><ICMSSN102><orig>0</orig><CSOSN>102</CSOSN></ICMSSN102></ICMS>"

    ipi = item.get("ipi")
    ipi_xml = ""
    if ipi:
        ipi_xml = (
            "<IPI><cEnq>999</cEnq><IPITrib><CST>50</CST>"
            f"<vBC>{ipi[0]}</vBC><pIPI>{ipi[1]}</pIPI><vIPI>{ipi[2]}</vIPI></IPITrib></IPI>"
        )

    extras = "".join(
        f"<{tag}>{item[key]}</{tag}>"
        for key, tag in (("frete", "vFrete"), ("seg", "vSeg"), ("desc", "vDesc"), ("outro", "vOutro"))
        if key in item
    )
    ncm_xml = f"<NCM>{item['ncm']}</NCM>" if item.get("ncm") is not None else ""
    return (
        f'<det nItem="{n}"><prod>'
        f"<cProd>{n:03d}</cProd><cEAN>SEM GTIN</cEAN><xProd>Produto {n}</xProd>{ncm_xml}"
        f"<CFOP>{item['cfop']}</CFOP><uCom>UN</uCom><qCom>{item['q']}</qCom>"
        f"<vUnCom>{item['v_un']}</vUnCom><vProd>{item['v_prod']}</vProd>{extras}"
        "<indTot>1</indTot></prod>"
        f"<imposto><vTotTrib>0.00</vTotTrib>{icms_xml}{ipi_xml}"
        "<PIS><PISNT><CST>07</CST></PISNT></PIS><COFINS><COFINSNT><CST>07</CST></COFINSNT></COFINS>"
        "</imposto></det>"
    )


def _totals(items: list[dict]) -> dict[str, Decimal]:
    def total(fn) -> Decimal:
        return sum((Decimal(fn(i)) for i in items), Decimal("0"))

    t = {
        "vBC": total(lambda i: (i.get("icms") or ("0",))[0]),
        "vICMS": total(lambda i: (i.get("icms") or ("0", "0", "0"))[2]),
        "vBCST": total(lambda i: (i.get("st") or ("0",))[0]),
        "vST": total(lambda i: (i.get("st") or ("0", "0", "0"))[2]),
        "vProd": total(lambda i: i["v_prod"]),
        "vFrete": total(lambda i: i.get("frete", "0")),
        "vSeg": total(lambda i: i.get("seg", "0")),
        "vDesc": total(lambda i: i.get("desc", "0")),
        "vIPI": total(lambda i: (i.get("ipi") or ("0", "0", "0"))[2]),
        "vPIS": Decimal("0.00"),
        "vCOFINS": Decimal("0.00"),
        "vOutro": total(lambda i: i.get("outro", "0")),
    }
    t["vNF"] = (
        t["vProd"] - t["vDesc"] + t["vIPI"] + t["vST"] + t["vFrete"] + t["vSeg"] + t["vOutro"]
    )
    return t


def make_nfe_xml(
    *,
    key: str | None = ACCESS_KEY,
    items: list[dict] | None = None,
    totals: dict[str, str] | None = None,
    dups: list[tuple[str, str, str]] | None = None,
    emit_uf: str = "SP",
    dest_uf: str = "SP",
    nat_op: str = "Venda de mercadoria",
    dh_emi: str = "2024-01-15T10:00:00-03:00",
    dh_sai_ent: str | None = None,
    signature: bool = True,
    digest: str = "q1w2e3r4t5y6u7i8o9p0=",
    prot_digest: str | None = None,
    with_ns: bool = True,
    root: str = "nfeProc",
) -> bytes:
    """Build a realistic nfeProc document; totals are derived from items unless overridden."""
    items = items if items is not None else [dict(DEFAULT_ITEM)]
    if dups is None:
        dups = [("001", "2099-02-15", "1000.00")]
    t = {k: f"{v:.2f}" for k, v in _totals(items).items()}
    t.update(totals or {})

    ns = f' xmlns="{NFE_NS}"' if with_ns else ""
    id_attr = f' Id="NFe{key}"' if key is not None else ""
    sai = f"<dhSaiEnt>{dh_sai_ent}</dhSaiEnt>" if dh_sai_ent else ""
    dets = "".join(_item_xml(n, item) for n, item in enumerate(items, start=1))
    tot = "".join(
        f"<{tag}>{t[tag]}</{tag}>"
        for tag in (
            "vBC", "vICMS", "vBCST", "vST", "vProd", "vFrete", "vSeg", "vDesc",
            "vIPI", "vPIS", "vCOFINS", "vOutro", "vNF",
        )
    )
    cobr = ""
    if dups:
        dup_xml = "".join(
            f"<dup><nDup>{n}</nDup><dVenc>{d}</dVenc><vDup>{v}</vDup></dup>" for n, d, v in dups
        )
        cobr = (
            f"<cobr><fat><nFat>1234</nFat><vOrig>{t['vNF']}</vOrig><vDesc>0.00</vDesc>"
            f"<vLiq>{t['vNF']}</vLiq></fat>{dup_xml}</cobr>"
        )
    sig = ""
    if signature:
        sig = (
            f'<Signature xmlns="{DSIG_NS}"><SignedInfo>'
            f'<Reference URI="#NFe{key}"><DigestValue>{digest}</DigestValue></Reference>'
            "</SignedInfo><SignatureValue>c2lnbmF0dXJl</SignatureValue></Signature>"
        )
    nfe = (
        f"<NFe{ns}><infNFe versao=\"4.00\"{id_attr}>"
        f"<ide><cUF>35</cUF><cNF>00001234</cNF><natOp>{nat_op}</natOp><mod>55</mod>"
        f"<serie>1</serie><nNF>1234</nNF><dhEmi>{dh_emi}</dhEmi>{sai}<tpNF>1</tpNF></ide>"
        f"<emit><CNPJ>{ISSUER_CNPJ}</CNPJ><xNome>Fornecedor Exemplo LTDA</xNome>"
        f"<enderEmit><xLgr>Rua A</xLgr><nro>10</nro><xMun>Sao Paulo</xMun><UF>{emit_uf}</UF>"
        "</enderEmit><IE>111111111111</IE><CRT>3</CRT></emit>"
        f"<dest><CNPJ>{RECIPIENT_CNPJ}</CNPJ><xNome>Comprador Exemplo LTDA</xNome>"
        f"<enderDest><xLgr>Rua B</xLgr><nro>20</nro><xMun>Cidade</xMun><UF>{dest_uf}</UF>"
        "</enderDest><indIEDest>1</indIEDest></dest>"
        f"{dets}<total><ICMSTot>{tot}<vTotTrib>0.00</vTotTrib></ICMSTot></total>"
        f"{cobr}</infNFe>{sig}</NFe>"
    )
    if root == "NFe":
        return f'<?xml version="1.0" encoding="UTF-8"?>{nfe}'.encode()
    prot = ""
    if key is not None:
        prot = (
            f'<protNFe versao="4.00"><infProt><tpAmb>1</tpAmb><chNFe>{key}</chNFe>'
            f"<dhRecbto>2024-01-15T10:01:00-03:00</dhRecbto><nProt>135240000000001</nProt>"
            f"<digVal>{prot_digest or digest}</digVal><cStat>100</cStat>"
            "<xMotivo>Autorizado o uso da NF-e</xMotivo></infProt></protNFe>"
        )
    return (
        f'<?xml version="1.0" encoding="UTF-8"?><{root}{ns} versao="4.00">{nfe}{prot}</{root}>'
    ).encode()


@pytest.fixture
def nfe_xml() -> bytes:
    return make_nfe_xml()


# --- Invoice fixtures ---


def make_item(**overrides) -> InvoiceItem:
    values = {
        "number": "1",
        "code": "001",
        "name": "Parafuso",
        "ncm": "73181500",
        "cfop": "5102",
        "unit": "UN",
        "quantity": Decimal("10"),
        "unit_price": Decimal("100.00"),
        "total_value": Decimal("1000.00"),
        "icms_base": Decimal("1000.00"),
        "icms_rate": Decimal("18.00"),
        "icms_value": Decimal("180.00"),
    }
    values.update(overrides)
    return InvoiceItem(**values)


def make_invoice(items: tuple[InvoiceItem, ...] | None = None, **overrides) -> Invoice:
    items = items if items is not None else (make_item(),)
    values = {
        "id": ACCESS_KEY,
        "number": "1234",
        "series": "1",
        "access_key": ACCESS_KEY,
        "issue_date": datetime(2024, 1, 15, 13, 0, tzinfo=UTC),
        "file_name": "nota.xml",
        "purpose": Purpose.RESALE,
        "issuer_name": "Fornecedor Exemplo LTDA",
        "issuer_tax_id": ISSUER_CNPJ,
        "issuer_state": "SP",
        "recipient_name": "Comprador Exemplo LTDA",
        "recipient_tax_id": RECIPIENT_CNPJ,
        "recipient_state": "SP",
        "total_value": sum((i.total_value for i in items), Decimal("0")),
        "products_value": sum((i.total_value for i in items), Decimal("0")),
        "icms_value": sum((i.icms_value for i in items), Decimal("0")),
        "icms_base": sum((i.icms_base for i in items), Decimal("0")),
        "items": items,
        "installments": (
            Installment(
                id=f"{ACCESS_KEY}-001",
                number="001",
                due_date=datetime(2099, 2, 15).date(),
                value=Decimal("1000.00"),
                status=PaymentStatus.PENDING,
            ),
        ),
    }
    values.update(overrides)
    return Invoice(**values)


@pytest.fixture
def sample_invoice() -> Invoice:
    return make_invoice()
