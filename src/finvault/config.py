"""
Per-environment configuration for secrets bundles.

Each environment names a private identity file, an encrypted secrets file, an
optional template and optional extra recipients. Settings are read from a TOML file
($FINVAULT_CONFIG or ./finvault.toml); without one, built-in defaults cover dev, test
and prod.

Example finvault.toml:

    [defaults]
    template_file = "env/dev/secrets.example.toml"

    [environments.dev]
    key_file = { env = "FINVAULT_DEV_KEY_FILE", default = "~/.config/finvault/dev-key.txt" }
    secrets_file = "env/dev/secrets.toml.enc"

    [environments.prod]
    key_file = "~/.config/finvault/prod-key.txt"
    secrets_file = "env/prod/secrets.toml.enc"
    recipients = ["age1..."]

A value is either a plain string or an ``{ env = "VAR", default = "..." }`` table,
resolved once at load time. Relative paths resolve against the config file's directory.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from finvault.errors import ConfigError

DEFAULT_ENVIRONMENTS = ("dev", "test", "prod")
DEFAULT_EDITOR = "vim"
CONFIG_FILENAME = "finvault.toml"

ENV_ALIASES = {
    "dev": "dev",
    "development": "dev",
    "test": "test",
    "prod": "prod",
    "production": "prod",
}

_KNOWN_KEYS = {"key_file", "secrets_file", "template_file", "recipients"}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Resolved file locations for one environment."""

    name: str
    key_file: Path
    secrets_file: Path
    template_file: Path | None = None
    recipients: tuple[str, ...] = ()


@dataclass(frozen=True)
class SecretsConfig:
    """All configured environments plus the editor selection."""

    environments: dict[str, EnvironmentConfig] = field(default_factory=dict)
    editor: str = DEFAULT_EDITOR
    root: Path = field(default_factory=Path.cwd)

    def environment(self, name: str) -> EnvironmentConfig:
        """Look up an environment by name or alias. Raises ConfigError if unknown."""
        canonical = canonical_environment(name)
        if canonical not in self.environments:
            valid = ", ".join(sorted(self.environments))
            raise ConfigError(f"Unknown environment: {name} (valid environments: {valid})")
        return self.environments[canonical]


def canonical_environment(name: str) -> str:
    return ENV_ALIASES.get(name, name)


def resolve_editor(env: Mapping[str, str] | None = None) -> str:
    """Pick the editor: $VISUAL, then $EDITOR, then vim."""
    env = os.environ if env is None else env
    return env.get("VISUAL") or env.get("EDITOR") or DEFAULT_EDITOR


def _resolve_value(name: str, value: object) -> str | None:
    """Resolve a typed value constructor to a string."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, dict):
        var = value.get("env")
        if not isinstance(var, str):
            raise ConfigError(f"Setting '{name}' table must name an 'env' variable")
        resolved = os.environ.get(var)
        if resolved:
            return resolved
        if "default" in value:
            return value["default"]
        raise ConfigError(f"Setting '{name}' requires environment variable {var}, which is not set")
    raise ConfigError(f"Setting '{name}' must be a string or an env table")


def _resolve_path(value: str | None, root: Path) -> Path | None:
    if value is None:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path


def _default_settings(name: str) -> dict:
    return {
        "key_file": f"~/.config/finvault/{name}-key.txt",
        "secrets_file": f"env/{name}/secrets.toml.enc",
        "template_file": f"env/{name}/secrets.example.toml",
    }


def _build_environment(name: str, settings: dict, root: Path) -> EnvironmentConfig:
    unknown = set(settings) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(
            f"Unknown settings for environment '{name}': {', '.join(sorted(unknown))}"
        )
    key_file = _resolve_path(_resolve_value("key_file", settings.get("key_file")), root)
    secrets_file = _resolve_path(
        _resolve_value("secrets_file", settings.get("secrets_file")), root
    )
    if key_file is None:
        raise ConfigError(f"No key file configured for {name} environment")
    if secrets_file is None:
        raise ConfigError(f"No secrets file configured for {name} environment")

    template_file = _resolve_path(
        _resolve_value("template_file", settings.get("template_file")), root
    )
    recipients = settings.get("recipients", [])
    if not isinstance(recipients, list):
        raise ConfigError(f"'recipients' for environment '{name}' must be a list")
    return EnvironmentConfig(
        name=name,
        key_file=key_file,
        secrets_file=secrets_file,
        template_file=template_file,
        recipients=tuple(_resolve_value("recipients", r) for r in recipients),
    )


def default_config(root: Path | None = None) -> SecretsConfig:
    """Built-in dev/test/prod layout rooted at root (default: working directory)."""
    root = Path.cwd() if root is None else Path(root)
    return SecretsConfig(
        environments={
            name: _build_environment(name, _default_settings(name), root)
            for name in DEFAULT_ENVIRONMENTS
        },
        editor=resolve_editor(),
        root=root,
    )


def load_config(path: Path | str | None = None) -> SecretsConfig:
    """Load configuration from a TOML file.

    Lookup order: explicit path, $FINVAULT_CONFIG, ./finvault.toml. Falls back to the
    built-in defaults when no file exists and none was requested explicitly.
    """
    if path is None:
        path = os.environ.get("FINVAULT_CONFIG")
        if path is None:
            candidate = Path.cwd() / CONFIG_FILENAME
            if not candidate.exists():
                return default_config()
            path = candidate

    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    root = path.resolve().parent
    base = data.get("defaults", {})
    env_tables = data.get("environments")
    if not env_tables:
        env_tables = {name: {} for name in DEFAULT_ENVIRONMENTS}

    environments = {}
    for name, overrides in env_tables.items():
        # env tables override defaults only for keys they set
        settings = {**_default_settings(name), **base, **overrides}
        environments[name] = _build_environment(name, settings, root)

    return SecretsConfig(environments=environments, editor=resolve_editor(), root=root)
