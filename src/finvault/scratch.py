"""Plaintext scratch files and the interactive editor step."""

import hashlib
import logging
import os
import shlex
import stat
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from finvault.errors import EditorFailure

logger = logging.getLogger(__name__)


def secure_delete(path: Path) -> None:
    """Overwrite a file with random bytes, then unlink it (best effort).

    Journaling and copy-on-write filesystems may keep older blocks around.
    """
    path = Path(path)
    if not path.exists():
        return
    try:
        size = path.stat().st_size
        with open(path, "r+b") as f:
            f.write(os.urandom(size))
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        logger.warning("Could not overwrite %s before deleting: %s", path, e)
    path.unlink(missing_ok=True)


@contextmanager
def plaintext_scratch(suffix: str = ".toml") -> Iterator[Path]:
    """Yield an owner-only temp file that is securely deleted on every exit path."""
    fd, name = tempfile.mkstemp(prefix="secrets-", suffix=suffix)
    os.close(fd)
    path = Path(name)
    path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
    try:
        yield path
    finally:
        secure_delete(path)


def file_checksum(path: Path) -> str:
    """SHA-256 hex digest of a file's contents."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def run_editor(editor: str, path: Path) -> None:
    """Open path in the editor and block until it exits.

    Raises EditorFailure if the editor cannot be started or exits non-zero.
    """
    argv = shlex.split(editor)
    if not argv:
        raise EditorFailure("No editor configured")
    command = [*argv, str(path)]
    logger.debug("Launching editor %s", command[0])
    try:
        result = subprocess.run(command)
    except OSError as e:
        raise EditorFailure(f"Could not start editor '{editor}': {e}") from e
    if result.returncode != 0:
        raise EditorFailure(f"Editor '{editor}' exited with status {result.returncode}")
