import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from lazyreview_core.errors import ConfigError
from lazyreview_core.models import ProviderType

DEFAULT_CONFIG: dict = {
    "default_provider": "",
    "providers": [],  # [{name, type, host, base_url, token_env}]
    "ui": {
        "theme": "lazygit",
        "vim_mode": True,
        "show_checks": True,
        "unicode_mode": "auto",
    },
    "keybindings": {},
    "performance": {
        "max_concurrency": 4,  # PR groups replayed at the same time
    },
    "queue": {
        "path": None,  # None = <config dir>/queue.db
        "max_attempts": None,  # None = retry failed actions on every replay
    },
    "secrets": {
        "backend": "auto",  # auto | keychain | file
        "dir": None,  # None = <config dir>
    },
}

# Sections merged key-by-key rather than replaced wholesale.
_NESTED_SECTIONS = ("ui", "keybindings", "performance", "queue", "secrets")

_DEFAULT_HOSTS = {
    ProviderType.GITHUB.value: "github.com",
    ProviderType.GITLAB.value: "gitlab.com",
    ProviderType.BITBUCKET.value: "bitbucket.org",
    ProviderType.AZUREDEVOPS.value: "dev.azure.com",
    ProviderType.GITEA.value: "gitea.com",
}


def get_config_dir() -> Path:
    """Return the per-user profile directory (``~/.config/lazyreview`` by default)."""
    override = os.environ.get("LAZYREVIEW_CONFIG_DIR")
    if override:
        return Path(override)
    return Path.home() / ".config" / "lazyreview"


def get_config_path() -> Path:
    override = os.environ.get("LAZYREVIEW_CONFIG")
    if override:
        return Path(override)
    return get_config_dir() / "config.yaml"


def default_host(provider_type: str) -> str:
    return _DEFAULT_HOSTS.get(provider_type, "")


def load_config(config_path: Optional[str] = None, cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. config.yaml in the profile directory (or ``config_path``)
      3. CLI argument overrides
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else get_config_path()
    if path.exists():
        with open(path) as f:
            try:
                file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level.")
        for key, value in file_config.items():
            if key in _NESTED_SECTIONS and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["providers"] = [_normalize_provider(p) for p in config.get("providers") or []]
    return config


def save_config(config: dict, config_path: Optional[str] = None) -> Path:
    """Write ``config`` as YAML, creating the profile directory if needed."""
    path = Path(config_path) if config_path else get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config, default_flow_style=False, sort_keys=False))
    return path


def get_default_provider(config: dict) -> Optional[dict]:
    """Return the provider named by ``default_provider``, else the first one configured."""
    providers = config.get("providers") or []
    if not providers:
        return None

    wanted = config.get("default_provider")
    if wanted:
        for provider in providers:
            if provider.get("name") == wanted:
                return provider

    return providers[0]


def find_provider(config: dict, provider_type: str) -> Optional[dict]:
    """Return the first configured provider of ``provider_type``."""
    for provider in config.get("providers") or []:
        if provider["type"] == provider_type:
            return provider
    return None


def get_queue_path(config: dict) -> Path:
    return Path(config["queue"].get("path") or get_config_dir() / "queue.db")


def get_secrets_dir(config: dict) -> Path:
    return Path(config["secrets"].get("dir") or get_config_dir())


def _normalize_provider(raw) -> dict:
    if not isinstance(raw, dict):
        raise ConfigError(f"Provider entries must be mappings, got {raw!r}")

    provider_type = raw.get("type")
    valid = [t.value for t in ProviderType]
    if provider_type not in valid:
        raise ConfigError(f"Unknown provider type {provider_type!r}. Expected one of: {', '.join(valid)}")

    return {
        "name": raw.get("name") or provider_type,
        "type": provider_type,
        "host": raw.get("host") or default_host(provider_type),
        "base_url": raw.get("base_url"),
        "token_env": raw.get("token_env"),
    }
