"""Credential vault: per-record AES-256-GCM encryption of OAuth access tokens.

The vault owns only the encrypt/decrypt transform. Records are persisted through a
CredentialStore collaborator, which never needs to understand the payload.

One credential is kept per (owner, institution): storing again replaces the payload
of the existing record in place.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel, Field

from finvault.crypto import decrypt_value, encrypt_value
from finvault.errors import AuthenticationFailure, CredentialUnreadable, NotFound
from finvault.secrets import SecretsBundle

logger = logging.getLogger(__name__)

_INSTITUTION_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_INSTITUTION_MAX_LENGTH = 64


class CredentialRecord(BaseModel):
    """A stored, encrypted third-party credential."""

    id: str
    owner: str
    institution: str
    encrypted_payload: str = Field(repr=False)
    created_at: datetime
    last_used_at: datetime | None = None


class CredentialStore(Protocol):
    """Persistence operations the vault needs from the database layer."""

    async def insert(self, record: CredentialRecord) -> None: ...

    async def update(self, record: CredentialRecord) -> None: ...

    async def touch(self, record_id: str, when: datetime) -> None: ...

    async def find_by(self, owner: str, institution: str) -> CredentialRecord | None: ...

    async def find_all(self) -> list[CredentialRecord]: ...

    async def delete(self, owner: str, institution: str) -> bool: ...

    async def replace_payloads(self, payloads: dict[str, str]) -> None: ...


def validate_institution(institution: str) -> None:
    """Validate an institution tag.

    Raises ValueError if the tag is invalid.
    """
    if not institution:
        raise ValueError("Institution cannot be empty")
    if len(institution) > _INSTITUTION_MAX_LENGTH:
        raise ValueError(f"Institution exceeds {_INSTITUTION_MAX_LENGTH} characters")
    if not _INSTITUTION_PATTERN.match(institution):
        raise ValueError(
            f"Invalid institution '{institution}': must match [a-z][a-z0-9_-]*"
        )


def vault_key_from_bundle(bundle: SecretsBundle) -> bytes:
    """Resolve the vault key from a decrypted secrets bundle."""
    return bundle.vault_key()


def _now() -> datetime:
    return datetime.now(UTC)


async def store_credential(
    store: CredentialStore,
    vault_key: bytes,
    owner: str,
    institution: str,
    token: str,
    record_id: str | None = None,
) -> CredentialRecord:
    """Encrypt and persist a token for (owner, institution).

    An existing record for the pair keeps its id and created_at; its payload is replaced.
    """
    validate_institution(institution)
    if not owner:
        raise ValueError("Owner cannot be empty")

    payload = encrypt_value(token, vault_key)
    existing = await store.find_by(owner, institution)
    if existing is not None:
        record = existing.model_copy(
            update={"encrypted_payload": payload, "last_used_at": _now()}
        )
        await store.update(record)
        logger.info("Replaced credential %s for %s/%s", record.id, owner, institution)
        return record

    record = CredentialRecord(
        id=record_id or f"cred_{uuid.uuid4().hex}",
        owner=owner,
        institution=institution,
        encrypted_payload=payload,
        created_at=_now(),
    )
    await store.insert(record)
    logger.info("Stored credential %s for %s/%s", record.id, owner, institution)
    return record


async def open_credential(
    store: CredentialStore, vault_key: bytes, owner: str, institution: str
) -> tuple[CredentialRecord, str]:
    """Decrypt the token for (owner, institution) and touch last_used_at.

    Returns the record as touched along with the token. Only the last-used timestamp is
    written, so a refresh or rotation landing meanwhile is never overwritten.

    Raises NotFound if nothing is stored, CredentialUnreadable if the payload cannot
    be authenticated (usually a vault key that was rotated without re-encryption).
    """
    validate_institution(institution)
    record = await store.find_by(owner, institution)
    if record is None:
        raise NotFound(f"No credential stored for {owner}/{institution}")
    try:
        token = decrypt_value(record.encrypted_payload, vault_key)
    except AuthenticationFailure as e:
        logger.warning("Credential %s for %s/%s is unreadable", record.id, owner, institution)
        raise CredentialUnreadable(
            f"Stored credential {record.id} for {owner}/{institution} is unreadable"
        ) from e
    used_at = _now()
    await store.touch(record.id, used_at)
    return record.model_copy(update={"last_used_at": used_at}), token


async def retrieve_credential(
    store: CredentialStore, vault_key: bytes, owner: str, institution: str
) -> str:
    """Decrypt the token for (owner, institution). See open_credential()."""
    _, token = await open_credential(store, vault_key, owner, institution)
    return token


async def credential_exists(store: CredentialStore, owner: str, institution: str) -> bool:
    """Check whether a credential is stored for (owner, institution)."""
    validate_institution(institution)
    return await store.find_by(owner, institution) is not None


async def delete_credential(store: CredentialStore, owner: str, institution: str) -> bool:
    """Remove the credential for (owner, institution). Returns True if one was deleted."""
    validate_institution(institution)
    deleted = await store.delete(owner, institution)
    if deleted:
        logger.info("Deleted credential for %s/%s", owner, institution)
    return deleted


async def rotate_vault_key(store: CredentialStore, old_key: bytes, new_key: bytes) -> int:
    """Re-encrypt every stored credential from old_key to new_key.

    All payloads are decrypted before anything is written; if any fails, nothing
    changes and CredentialUnreadable is raised. Returns the number of records rotated.
    """
    records = await store.find_all()
    payloads: dict[str, str] = {}
    for record in records:
        try:
            token = decrypt_value(record.encrypted_payload, old_key)
        except AuthenticationFailure as e:
            raise CredentialUnreadable(
                f"Credential {record.id} cannot be decrypted with the old vault key; "
                "no credentials were rotated"
            ) from e
        payloads[record.id] = encrypt_value(token, new_key)

    await store.replace_payloads(payloads)
    logger.info("Rotated vault key for %d credential(s)", len(payloads))
    return len(payloads)
