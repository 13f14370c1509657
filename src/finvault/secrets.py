"""Per-environment encrypted secrets bundles.

A bundle is a TOML document encrypted to the environment's public key (plus any
configured team recipients) and decrypted at startup with the environment's private
identity file. Only key names and file paths ever appear in errors or logs.
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, field_validator

from finvault.config import EnvironmentConfig, SecretsConfig
from finvault.crypto import decode_key, encode_key, generate_key
from finvault.errors import ConfigError, DecryptionFailure, MissingSecret
from finvault.recipients import (
    Recipient,
    decrypt_file,
    encrypt_file,
    read_identity_file,
    read_public_key,
)
from finvault.scratch import file_checksum, plaintext_scratch

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATE = """\
# Finance aggregator secrets
#
# This file contains sensitive credentials. It is encrypted as soon as the
# editor exits; the plaintext is never written to the repository.

[bank_integration]
client_id = "your_client_id_here"
secret = "your_secret_here"
environment = "sandbox"  # sandbox | development | production

[database]
# 256-bit key for stored OAuth tokens. Rotating it requires re-encrypting
# every stored credential.
encryption_key = "{encryption_key}"
"""


# --- Schema ---


class BankEnvironment(str, Enum):
    """Bank-data provider environments."""

    sandbox = "sandbox"
    development = "development"
    production = "production"


class BankIntegration(BaseModel):
    """Bank-data API client credentials."""

    model_config = ConfigDict(extra="allow", frozen=True)

    client_id: str
    secret: SecretStr
    environment: BankEnvironment = BankEnvironment.sandbox


class DatabaseSecrets(BaseModel):
    """Database secrets. The encryption key protects stored OAuth tokens."""

    model_config = ConfigDict(extra="allow", frozen=True)

    encryption_key: SecretStr

    @field_validator("encryption_key")
    @classmethod
    def _valid_key(cls, value: SecretStr) -> SecretStr:
        decode_key(value.get_secret_value())
        return value


class SecretsBundle(BaseModel):
    """Decrypted secrets for one environment. Unknown top-level keys pass through."""

    model_config = ConfigDict(extra="allow", frozen=True)

    bank_integration: BankIntegration
    database: DatabaseSecrets

    def vault_key(self) -> bytes:
        """The 256-bit credential vault key."""
        return decode_key(self.database.encryption_key.get_secret_value())


def _describe_validation_error(e: ValidationError) -> str:
    # Only field locations and messages; pydantic's str() would echo input values.
    problems = []
    for err in e.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "(root)"
        problems.append(f"{loc}: {err['msg']}")
    return "; ".join(problems)


def check_document(text: str) -> dict[str, Any]:
    """Parse TOML text. Raises ConfigError on syntax errors."""
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Secrets document is not valid TOML: {e}") from None


def parse_bundle(text: str) -> SecretsBundle:
    """Parse and validate a decrypted secrets document."""
    document = check_document(text)
    try:
        return SecretsBundle.model_validate(document)
    except ValidationError as e:
        raise ConfigError(
            f"Secrets document does not match the schema: {_describe_validation_error(e)}"
        ) from None


def get_secret(bundle: SecretsBundle, path: str | tuple[str, ...]) -> Any:
    """Look up a secret by dotted path or tuple, e.g. ``"bank_integration.client_id"``.

    Raises MissingSecret listing the keys available where the lookup failed.
    """
    parts = tuple(path.split(".")) if isinstance(path, str) else tuple(path)
    node: Any = bundle
    for depth, part in enumerate(parts):
        if isinstance(node, BaseModel):
            fields = {**{name: getattr(node, name) for name in type(node).model_fields},
                      **(node.model_extra or {})}
        elif isinstance(node, dict):
            fields = node
        else:
            fields = {}
        if part not in fields:
            raise MissingSecret(".".join(parts[: depth + 1]), sorted(fields))
        node = fields[part]
    return node


# --- Templates ---


def default_template() -> str:
    """Built-in template with a freshly generated database encryption key."""
    return _DEFAULT_TEMPLATE.format(encryption_key=encode_key(generate_key()))


def template_for(config: SecretsConfig, env: EnvironmentConfig) -> str:
    """Template text: the environment's own, else the dev template, else the default."""
    candidates = [env.template_file]
    dev = config.environments.get("dev")
    if dev is not None:
        candidates.append(dev.template_file)
    for candidate in candidates:
        if candidate is not None and candidate.is_file():
            return candidate.read_text()
    return default_template()


# --- Store operations ---


def _require_key_file(env: EnvironmentConfig) -> None:
    if not env.key_file.exists():
        raise ConfigError(
            f"Identity file (private key) not found for {env.name} environment: {env.key_file}"
        )


def _require_secrets_file(env: EnvironmentConfig) -> None:
    if not env.secrets_file.exists():
        raise ConfigError(
            f"Encrypted secrets file not found for {env.name} environment: {env.secrets_file}"
        )


def bundle_recipients(env: EnvironmentConfig) -> list[Recipient]:
    """The environment's own public key plus any configured team recipients."""
    _require_key_file(env)
    try:
        recipients = [read_public_key(env.key_file)]
        recipients.extend(Recipient.from_string(r) for r in env.recipients)
    except ValueError as e:
        raise ConfigError(f"Invalid key material for {env.name} environment: {e}") from None
    except OSError as e:
        raise ConfigError(f"Cannot read identity file {env.key_file}: {e.strerror}") from e
    return recipients


def decrypt_bundle_text(env: EnvironmentConfig) -> bytes:
    """Decrypt the environment's secrets file to raw bytes.

    DecryptionFailure propagates so callers can report ownership mismatches.
    """
    _require_key_file(env)
    _require_secrets_file(env)
    try:
        identity = read_identity_file(env.key_file)
    except ValueError as e:
        raise ConfigError(f"Invalid identity file {env.key_file}: {e}") from None
    except OSError as e:
        raise ConfigError(f"Cannot read identity file {env.key_file}: {e.strerror}") from e
    try:
        return decrypt_file(env.secrets_file, identity)
    except OSError as e:
        raise ConfigError(
            f"Cannot read encrypted secrets file {env.secrets_file}: {e.strerror}"
        ) from e


def load_bundle(environment: str, config: SecretsConfig) -> SecretsBundle:
    """Decrypt and validate the secrets bundle for an environment.

    Raises ConfigError for missing files, decryption failure or schema mismatch.
    """
    env = config.environment(environment)
    logger.info("Loading encrypted secrets for %s from %s", env.name, env.secrets_file)
    try:
        data = decrypt_bundle_text(env)
    except DecryptionFailure as e:
        raise ConfigError(
            f"Failed to decrypt secrets file {env.secrets_file} "
            f"with identity {env.key_file}: {e}"
        ) from e
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        raise ConfigError(f"Secrets file {env.secrets_file} is not UTF-8 text") from None
    bundle = parse_bundle(text)
    logger.info("Loaded secrets for %s (keys: %s)", env.name, ", ".join(bundle_keys(bundle)))
    return bundle


def bundle_keys(bundle: SecretsBundle) -> list[str]:
    """Top-level key names of a bundle."""
    return sorted([*type(bundle).model_fields, *(bundle.model_extra or {})])


def _edit_until_valid(
    scratch: Path,
    edit: Callable[[Path], None],
    on_invalid: Callable[[ConfigError], bool] | None,
    target: Path,
    original_checksum: str | None = None,
) -> None:
    """Run the edit step until the document parses or the operator gives up.

    on_invalid is asked whether to reopen the same scratch file; without it, or when
    it declines, ConfigError is raised and target is left untouched. Content matching
    original_checksum is accepted as is.
    """
    while True:
        edit(scratch)
        if original_checksum is not None and file_checksum(scratch) == original_checksum:
            return
        try:
            check_document(scratch.read_text())
            return
        except ConfigError as e:
            if on_invalid is not None and on_invalid(e):
                continue
            raise ConfigError(f"{e}. Edits were discarded; {target} is unchanged") from None


def create_bundle(
    env: EnvironmentConfig,
    template: str,
    edit: Callable[[Path], None],
    overwrite: bool = False,
    on_invalid: Callable[[ConfigError], bool] | None = None,
) -> Path:
    """Create an encrypted secrets file from a template edited by the operator.

    Raises FileExistsError if the secrets file exists and overwrite is False.
    """
    _require_key_file(env)
    if env.secrets_file.exists() and not overwrite:
        raise FileExistsError(f"Encrypted secrets file already exists: {env.secrets_file}")
    recipients = bundle_recipients(env)

    with plaintext_scratch() as scratch:
        scratch.write_text(template)
        _edit_until_valid(scratch, edit, on_invalid, env.secrets_file)
        encrypt_file(scratch, recipients, env.secrets_file)

    logger.info("Created secrets file %s for %s", env.secrets_file, env.name)
    return env.secrets_file


def edit_bundle(
    env: EnvironmentConfig,
    edit: Callable[[Path], None],
    on_invalid: Callable[[ConfigError], bool] | None = None,
) -> bool:
    """Decrypt, edit and re-encrypt a secrets file.

    Re-encryption is skipped when the content checksum is unchanged.
    Returns True if the encrypted file was rewritten.
    """
    recipients = bundle_recipients(env)
    data = decrypt_bundle_text(env)

    with plaintext_scratch() as scratch:
        scratch.write_bytes(data)
        before = file_checksum(scratch)
        _edit_until_valid(scratch, edit, on_invalid, env.secrets_file, before)
        if file_checksum(scratch) == before:
            logger.info("No changes to %s, skipping re-encryption", env.secrets_file)
            return False
        encrypt_file(scratch, recipients, env.secrets_file)

    logger.info("Re-encrypted %s for %s", env.secrets_file, env.name)
    return True
