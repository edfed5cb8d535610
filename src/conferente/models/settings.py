from __future__ import annotations

from dataclasses import dataclass, field

from conferente.models.invoice import Purpose


@dataclass(frozen=True)
class Settings:
    """User settings loaded from settings.yaml."""

    finalidade: Purpose = Purpose.RESALE
    cnpj_empresa: str | None = None
    naturezas_ignoradas: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, d: dict | None) -> Settings:
        """Create Settings from a YAML-loaded dict, applying defaults for missing keys."""
        d = d or {}
        cnpj = "".join(ch for ch in str(d.get("cnpj_empresa") or "") if ch.isdigit())
        return cls(
            finalidade=Purpose(str(d.get("finalidade", Purpose.RESALE.value)).lower()),
            cnpj_empresa=cnpj or None,
            naturezas_ignoradas=tuple(str(t) for t in d.get("naturezas_ignoradas") or ()),
        )

    def to_dict(self) -> dict:
        data: dict = {"finalidade": self.finalidade.value}
        if self.cnpj_empresa:
            data["cnpj_empresa"] = self.cnpj_empresa
        if self.naturezas_ignoradas:
            data["naturezas_ignoradas"] = list(self.naturezas_ignoradas)
        return data
