"""Test helpers shared across modules."""

import stat
from pathlib import Path

from finvault.crypto import encode_key


def bundle_text(encryption_key: bytes, extra: str = "", key_text: str | None = None) -> str:
    """A schema-conformant secrets document."""
    key_text = encode_key(encryption_key) if key_text is None else key_text
    return (
        "[bank_integration]\n"
        'client_id = "client-123"\n'
        'secret = "bank-secret-456"\n'
        'environment = "sandbox"\n'
        "\n"
        "[database]\n"
        f'encryption_key = "{key_text}"\n'
        f"{extra}"
    )


def write_editor(path: Path, body: str) -> str:
    """Write an executable shell script that stands in for the operator's editor."""
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(stat.S_IRWXU)
    return str(path)
