from __future__ import annotations

import json
import logging
import os
import sys
from importlib.resources import files
from typing import TYPE_CHECKING

from conferente.models.finding import Severity
from conferente.models.invoice import Purpose

if TYPE_CHECKING:
    from conferente.services.audit import AuditResult

USAGE = """\
Uso: conferente-nfe [--consumo | --revenda] [--json] ARQUIVO_OU_PASTA...
     conferente-nfe init

Confere XMLs de NF-e/NFC-e: valida regras SEFAZ, recalcula totais e
aponta divergências.
"""

_SEVERITY_LABEL = {
    Severity.ERROR: "ERRO",
    Severity.WARNING: "AVISO",
    Severity.INFO: "INFO",
}


def _configure_logging() -> None:
    level_name = os.environ.get("CONFERENTE_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_args(argv: list[str]) -> tuple[Purpose | None, bool, list[str]]:
    """Split argv into (purpose override, json flag, paths). Raises ValueError on unknown flags."""
    purpose: Purpose | None = None
    as_json = False
    paths: list[str] = []
    for arg in argv:
        match arg:
            case "--consumo":
                purpose = Purpose.CONSUMPTION
            case "--revenda":
                purpose = Purpose.RESALE
            case "--json":
                as_json = True
            case _ if arg.startswith("--"):
                raise ValueError(f"Opção desconhecida: {arg}")
            case _:
                paths.append(arg)
    return purpose, as_json, paths


def _print_report(result: AuditResult) -> None:
    """Human-readable report for one AuditResult."""
    from conferente.utils.formatters import format_brl, format_date

    pr = result.parse_result
    print()
    print(f"{result.file_name}  [{result.status.value.upper()}]")
    print("─" * max(len(result.file_name) + 4, 40))

    if pr.invoice is None:
        print(f"  ERRO: {pr.error_message}")
        return

    inv = pr.invoice
    print(f"  Nota {inv.number} série {inv.series or '-'}  emitida em {format_date(inv.issue_date)}")
    print(f"  Emitente: {inv.issuer_name} ({inv.issuer_tax_id or '-'})")
    if inv.recipient_name or inv.recipient_tax_id:
        print(f"  Destinatário: {inv.recipient_name} ({inv.recipient_tax_id or '-'})")
    print(f"  Valor total: {format_brl(inv.total_value)}")
    if pr.is_skipped:
        print(f"  {pr.skip_reason}")

    print("  Parcelas:")
    for inst in inv.installments:
        print(
            f"    {inst.number:>5}  {format_date(inst.due_date)}  "
            f"{format_brl(inst.value):>16}  {inst.status.value}"
        )
    if pr.missing_duplicates:
        print("    (sem duplicatas no XML, parcela única estimada)")

    if result.analysis is not None and result.analysis.discrepancies:
        print("  Divergências do recálculo:")
        for d in result.analysis.discrepancies:
            print(f"    {d}")

    findings = result.findings
    if findings:
        print("  Achados:")
        for f in findings:
            print(f"    [{_SEVERITY_LABEL[f.severity]}] {f.message}")


def _init_config() -> None:
    """Copy the bundled settings template and optionally fill in settings.yaml."""
    from conferente.config import get_config_dir, load_settings, save_settings
    from conferente.models.settings import Settings
    from conferente.utils.validators import validate_cnpj, validate_purpose

    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    dest = config_dir / "settings.yaml.example"
    if dest.exists():
        print(f"  já existe: {dest}")
    else:
        src = files("conferente") / "templates" / "settings.yaml.example"
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  criado: {dest}")

    print()
    print(f"Configuração: {config_dir}")
    print()

    try:
        answer = input("Deseja configurar a empresa agora? [S/n]: ").strip().lower()
        if answer not in ("", "s", "sim", "y", "yes"):
            return

        current = load_settings()
        cnpj: str | None = current.cnpj_empresa
        while True:
            raw = input("CNPJ da empresa (vazio para pular): ").strip()
            if not raw:
                break
            try:
                cnpj = validate_cnpj(raw)
                break
            except ValueError as e:
                print(f"  {e}")

        purpose = current.finalidade
        while True:
            raw = input(f"Finalidade padrão [revenda/consumo] ({purpose.value}): ").strip()
            if not raw:
                break
            try:
                purpose = validate_purpose(raw)
                break
            except ValueError as e:
                print(f"  {e}")
    except (EOFError, KeyboardInterrupt):
        print()
        return

    path = save_settings(
        Settings(
            finalidade=purpose,
            cnpj_empresa=cnpj,
            naturezas_ignoradas=current.naturezas_ignoradas,
        )
    )
    print(f"  Configuração salva em {path}")


def main() -> None:
    """Entry point for the conferente-nfe CLI."""
    argv = sys.argv[1:]
    if argv and argv[0] == "init":
        _init_config()
        return
    if not argv or argv[0] in ("-h", "--help"):
        print(USAGE)
        sys.exit(0 if argv else 1)

    try:
        purpose, as_json, paths = _parse_args(argv)
    except ValueError as e:
        print(f"Erro: {e}")
        print(USAGE)
        sys.exit(1)

    _configure_logging()

    from conferente.config import load_settings
    from conferente.services.audit import audit_paths

    settings = load_settings()
    results = audit_paths(paths, purpose or settings.finalidade, settings)
    if not results:
        print("Erro: nenhum arquivo XML encontrado.")
        sys.exit(1)

    if as_json:
        print(json.dumps([r.to_dict() for r in results], ensure_ascii=False, indent=2))
    else:
        for r in results:
            _print_report(r)
        failed = sum(1 for r in results if not r.parse_result.ok)
        print()
        print(f"{len(results)} arquivo(s) conferido(s), {failed} com erro de leitura.")

    if any(not r.parse_result.ok for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
