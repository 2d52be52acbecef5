"""
VoiceBridge configuration.

config.yaml is read once and cached. String values may name environment
variables as ${VAR} (also picked up from .env), so keys and webhook secrets
stay out of the file. A missing variable resolves to an empty string, which
the components treat as "not configured".

Set VOICEBRIDGE_CONFIG to point at a different file.
"""

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(os.environ.get("VOICEBRIDGE_CONFIG", Path(__file__).parent.parent / "config.yaml"))

_ENV_REF = re.compile(r"\$\{(\w+)\}")

SECTIONS = (
    "server",
    "auth",
    "storage",
    "logging",
    "stream",
    "providers",
    "embeddings",
    "billing",
    "email",
    "analytics",
    "integrations",
)

DEFAULT_SQLITE_PATH = "./data/voicebridge.db"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

_config: dict | None = None


def _expand(value):
    """Substitute ${VAR} references in every string, at any depth."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    return value


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None:
        return _config

    config_path = Path(path) if path else _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _expand(raw)
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def section(cfg: dict, name: str) -> dict:
    """One top-level section of `cfg`. Absent or empty (`providers:` with nothing under it) gives {}."""
    if name not in SECTIONS:
        raise KeyError(f"Unknown config section: {name}")
    return cfg.get(name) or {}


def sqlite_path(cfg: dict) -> str:
    return section(cfg, "storage").get("sqlite_path") or DEFAULT_SQLITE_PATH


def server_address(cfg: dict) -> tuple[str, int]:
    server = section(cfg, "server")
    return server.get("host") or DEFAULT_HOST, int(server.get("port") or DEFAULT_PORT)
