from __future__ import annotations

import os
from datetime import timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

from conferente.models.settings import Settings

APP_NAME = "conferente-nfe"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Returns None if only platformdirs would resolve and that dir does not exist yet.
    """
    from_env = os.environ.get("CONFERENTE_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes.

    Priority: 1) CONFERENTE_CONFIG_DIR, 2) dev repo layout, 3) platformdirs.
    """
    from_env = os.environ.get("CONFERENTE_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    # Development layout: src/conferente/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    return Path(platformdirs.user_config_dir(APP_NAME))


BRT = timezone(timedelta(hours=-3))

VALID_MODELS = frozenset({"55", "65"})

# Root elements accepted for document tracking
DOCUMENT_ROOTS = frozenset({"nfeProc", "NFe"})

# natOp terms that mark a document as not being a purchase (matched without accents)
SKIP_TERMS = (
    "garantia",
    "devolucao",
    "conserto",
    "reparo",
    "remessa para conserto",
)

# Consumption-only CFOPs that contradict a resale purpose
CONSUMPTION_CFOPS = frozenset({"1556", "2556"})

# Recipient state used for foreign operations
FOREIGN_STATE = "EX"


# --- YAML settings ---


def settings_path() -> Path:
    return get_config_dir() / "settings.yaml"


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text()) or {}


def load_settings() -> Settings:
    """Load settings.yaml (defaults when absent); CONFERENTE_FINALIDADE overrides finalidade."""
    path = settings_path()
    data = load_yaml(path) if path.is_file() else {}
    from_env = os.environ.get("CONFERENTE_FINALIDADE")
    if from_env:
        data["finalidade"] = from_env
    return Settings.from_dict(data)


def save_settings(settings: Settings) -> Path:
    """Save settings to settings.yaml (atomic write)."""
    path = settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(yaml.dump(settings.to_dict(), default_flow_style=False, allow_unicode=True))
    os.replace(tmp, path)
    return path
