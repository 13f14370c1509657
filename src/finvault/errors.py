"""Exception hierarchy shared by the secrets store, credential vault and CLI.

Messages carry paths, environment names, key names and public keys only.
Secret values never appear in an exception message.
"""


class FinvaultError(Exception):
    """Base class for all finvault errors."""


class ConfigError(FinvaultError):
    """Missing or misconfigured key files, secrets files or bundle contents."""


class MissingSecret(ConfigError):
    """A requested path is absent from a secrets bundle."""

    def __init__(self, path: str, available: list[str]):
        self.path = path
        self.available = available
        listing = ", ".join(available) if available else "(none)"
        super().__init__(f"Secret '{path}' not found in bundle. Available keys: {listing}")


class DecryptionFailure(FinvaultError):
    """An encrypted file could not be opened with the given identity.

    ``reason`` is ``"not_recipient"`` when no recipient stanza matches the identity,
    or ``"corrupted"`` when the file is malformed or fails authentication.
    """

    NOT_RECIPIENT = "not_recipient"
    CORRUPTED = "corrupted"

    def __init__(self, message: str, reason: str, public_key: str | None = None):
        self.reason = reason
        self.public_key = public_key
        super().__init__(message)


class AuthenticationFailure(FinvaultError):
    """AEAD tag mismatch: wrong key, truncated or tampered payload."""


class CredentialUnreadable(AuthenticationFailure):
    """A stored credential exists but cannot be decrypted with the current vault key."""


class NotFound(FinvaultError):
    """No stored credential for the requested owner and institution."""


class EditorFailure(FinvaultError):
    """The interactive editor could not be started or exited non-zero."""
