"""Recipient-based file encryption in the age format.

A file is encrypted to one or more age X25519 recipients (``age1...``) and decrypted
with any matching identity (``AGE-SECRET-KEY-1...``). Files and identity files are
interchangeable with the ``age`` and ``age-keygen`` command line tools.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from datetime import UTC, datetime
from pathlib import Path

import pyrage
from pyrage import x25519

from finvault.errors import DecryptionFailure

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "age1"
SECRET_PREFIX = "AGE-SECRET-KEY-1"

_NO_MATCHING_KEYS = "no matching keys"


class Recipient:
    """An age X25519 public key that files can be encrypted to."""

    def __init__(self, recipient: x25519.Recipient):
        self._recipient = recipient

    @classmethod
    def from_string(cls, text: str) -> Recipient:
        text = text.strip()
        if not text.startswith(PUBLIC_PREFIX):
            raise ValueError(f"Public key must start with '{PUBLIC_PREFIX}'")
        try:
            return cls(x25519.Recipient.from_str(text))
        except pyrage.RecipientError:
            raise ValueError("Malformed public key") from None

    def __str__(self) -> str:
        return str(self._recipient)

    def __repr__(self) -> str:
        return f"Recipient({self})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Recipient) and str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))


class Identity:
    """An age X25519 private key. Its string form is secret and never logged."""

    def __init__(self, identity: x25519.Identity):
        self._identity = identity

    @classmethod
    def generate(cls) -> Identity:
        return cls(x25519.Identity.generate())

    @classmethod
    def from_string(cls, text: str) -> Identity:
        text = text.strip()
        if not text.startswith(SECRET_PREFIX):
            raise ValueError(f"Secret key must start with '{SECRET_PREFIX}'")
        try:
            return cls(x25519.Identity.from_str(text))
        except pyrage.IdentityError:
            raise ValueError("Malformed secret key") from None

    @property
    def recipient(self) -> Recipient:
        return Recipient(self._identity.to_public())

    def __str__(self) -> str:
        return str(self._identity)

    def __repr__(self) -> str:
        return f"Identity(recipient={self.recipient})"


def generate_keypair() -> tuple[Recipient, Identity]:
    """Generate a new keypair. Returns (public recipient, private identity)."""
    identity = Identity.generate()
    return identity.recipient, identity


# --- Identity files ---


def write_identity_file(path: Path, identity: Identity, overwrite: bool = False) -> Path:
    """Write an identity file readable only by the owner.

    Raises FileExistsError if the file exists and overwrite is False.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"Identity file already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    created = datetime.now(UTC).replace(microsecond=0).isoformat()
    content = (
        f"# created: {created}\n"
        f"# public key: {identity.recipient}\n"
        f"{identity}\n"
    )
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
    logger.info("Wrote identity file %s", path)
    return path


def read_identity_file(path: Path) -> Identity:
    """Load the private identity from a key file. Comment lines are ignored."""
    path = Path(path)
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return Identity.from_string(line)
    raise ValueError(f"No secret key found in {path}")


def read_public_key(path: Path) -> Recipient:
    """Derive the public key from an identity file."""
    return read_identity_file(path).recipient


# --- Encryption ---


def encrypt(plaintext: bytes, recipients: list[Recipient]) -> bytes:
    """Encrypt plaintext to every recipient. Any one matching identity can decrypt."""
    unique = list(dict.fromkeys(recipients))
    if not unique:
        raise ValueError("At least one recipient is required")
    return pyrage.encrypt(plaintext, [r._recipient for r in unique])


def decrypt(ciphertext: bytes, identity: Identity) -> bytes:
    """Decrypt with a private identity.

    Raises DecryptionFailure with reason ``not_recipient`` when the identity is not
    among the recipients, or ``corrupted`` when the file is malformed or tampered.
    """
    try:
        return pyrage.decrypt(ciphertext, [identity._identity])
    except pyrage.DecryptError as e:
        if _NO_MATCHING_KEYS in str(e).lower():
            reason = DecryptionFailure.NOT_RECIPIENT
            message = "File is not encrypted to this identity"
        else:
            reason = DecryptionFailure.CORRUPTED
            message = f"File is not a valid age file or was modified ({e})"
        raise DecryptionFailure(message, reason, public_key=str(identity.recipient)) from None

def atomic_write(path: Path, data: bytes) -> None:
    """Replace path with data so readers never observe a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def encrypt_file(plaintext_path: Path, recipients: list[Recipient], output_path: Path) -> None:
    """Encrypt a file to the recipients, atomically replacing output_path."""
    data = Path(plaintext_path).read_bytes()
    atomic_write(Path(output_path), encrypt(data, recipients))
    logger.info(
        "Encrypted %s to %s (%d recipient(s))",
        plaintext_path, output_path, len(set(recipients)),
    )


def decrypt_file(ciphertext_path: Path, identity: Identity) -> bytes:
    """Decrypt a file with a private identity. See decrypt()."""
    return decrypt(Path(ciphertext_path).read_bytes(), identity)
