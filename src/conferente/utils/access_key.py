from __future__ import annotations

ACCESS_KEY_LENGTH = 44

_KEY_PREFIXES = ("NFe", "CFe")


def strip_key_prefix(identifier: str) -> str:
    """Drop the NFe/CFe prefix of an infNFe/infCFe Id attribute."""
    for prefix in _KEY_PREFIXES:
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
    return identifier


def model_of(key: str) -> str:
    """Return the document model digits (positions 20-21)."""
    return key[20:22]


def check_digit(key43: str) -> str:
    """Modulo-11 check digit with weights 2..9 applied right to left."""
    total = 0
    weight = 2
    for ch in reversed(key43):
        total += int(ch) * weight
        weight = 2 if weight == 9 else weight + 1
    remainder = total % 11
    return "0" if remainder < 2 else str(11 - remainder)


def build_access_key(
    uf: str,
    year_month: str,
    cnpj: str,
    model: str,
    series: str,
    number: str | int,
    emission_type: str = "1",
    code: str = "00000000",
) -> str:
    """Generate a 44-character access key with its check digit.

    Example: 35240112345678000199550010000012341000000001 (+ DV)
    """
    parts = [
        uf.zfill(2),
        year_month.zfill(4),
        cnpj.zfill(14),
        model.zfill(2),
        series.zfill(3),
        str(number).zfill(9),
        emission_type,
        code.zfill(8),
    ]
    body = "".join(parts)
    if len(body) != ACCESS_KEY_LENGTH - 1:
        raise ValueError(f"Access key body must be 43 chars, got {len(body)}: {body}")
    return body + check_digit(body)
