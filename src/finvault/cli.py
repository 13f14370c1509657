"""
finvault-secrets: manage encrypted secrets bundles.

Usage:
    finvault-secrets keygen <env>     # Generate a keypair for an environment
    finvault-secrets new <env>        # Create a secrets bundle from a template
    finvault-secrets edit <env>       # Edit an existing secrets bundle
    finvault-secrets show-key         # Print public keys for all environments
    finvault-secrets encrypt FILE     # Encrypt FILE to FILE.enc (dev key)
    finvault-secrets decrypt FILE     # Decrypt FILE.enc to FILE (dev key)

Environments: dev, test, prod (aliases: development, production).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from finvault.config import SecretsConfig, load_config
from finvault.errors import DecryptionFailure, EditorFailure, FinvaultError
from finvault.recipients import (
    Identity,
    decrypt_file,
    encrypt_file,
    read_identity_file,
    read_public_key,
    write_identity_file,
)
from finvault.scratch import run_editor
from finvault.secrets import bundle_recipients, create_bundle, edit_bundle, template_for

DEFAULT_IDENTITY_ENV = "dev"
ENCRYPTED_SUFFIX = ".enc"

_COLORS = {
    "red": "\033[0;31m",
    "green": "\033[0;32m",
    "yellow": "\033[1;33m",
    "blue": "\033[0;34m",
}
_RESET = "\033[0m"


def _colorize(color: str, text: str, stream) -> str:
    if not stream.isatty():
        return text
    return f"{_COLORS[color]}{text}{_RESET}"


def _error(message: str) -> None:
    print(_colorize("red", f"Error: {message}", sys.stderr), file=sys.stderr)


def _success(message: str) -> None:
    print(_colorize("green", message, sys.stdout))


def _warning(message: str) -> None:
    print(_colorize("yellow", message, sys.stdout))


def _info(message: str) -> None:
    print(_colorize("blue", message, sys.stdout))


def _confirm(message: str, assume_yes: bool) -> bool:
    """Ask a y/N question. Anything but 'y' declines."""
    if assume_yes:
        return True
    try:
        answer = input(f"{message} (y/N) ")
    except EOFError:
        answer = ""
    if answer.strip().lower() == "y":
        return True
    print("Aborted.")
    return False


def _report_decryption_failure(e: DecryptionFailure) -> None:
    _error(f"Failed to decrypt file: {e}")
    print()
    if e.reason == DecryptionFailure.NOT_RECIPIENT:
        print("You are not a recipient of this file.")
        print("Ask a team member to re-encrypt it with your public key.")
    else:
        print("Possible causes:")
        print("  - The file is corrupted or was modified")
        print("  - The file is not an age-encrypted file")
    if e.public_key:
        print()
        print("Your public key:")
        print(f"  {e.public_key}")


def _reopen_editor(error: Exception) -> bool:
    _error(str(error))
    return _confirm("Reopen the editor to fix it?", False)


def _require_key_file(cfg: SecretsConfig, env_name: str) -> Path | None:
    env = cfg.environment(env_name)
    if env.key_file.exists():
        return env.key_file
    _error(f"Identity file (private key) not found: {env.key_file}")
    print()
    print(f"To set up secrets for {env.name} environment:")
    print(f"  1. Generate a key:  finvault-secrets keygen {env.name}")
    print(f"  2. Create secrets:  finvault-secrets new {env.name}")
    return None


# --- Commands ---


def _cmd_keygen(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    env = cfg.environment(args.environment)
    if env.key_file.exists():
        _warning(f"Key file already exists: {env.key_file}")
        if not _confirm("Overwrite? This will make existing secrets unreadable!", args.yes):
            return 1

    _info(f"Generating encryption key for {env.name}...")
    identity = Identity.generate()
    write_identity_file(env.key_file, identity, overwrite=True)

    print()
    _success("Key generated successfully!")
    print()
    print(f"Key location: {env.key_file}")
    print()
    print("IMPORTANT:")
    print("  - Back up this key securely")
    print("  - Never commit this key to git")
    print()
    print("Your public key (share with team):")
    print(f"  {identity.recipient}")
    print()
    print("Next steps:")
    print(f"  finvault-secrets new {env.name}")
    return 0


def _cmd_new(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    env = cfg.environment(args.environment)
    if _require_key_file(cfg, env.name) is None:
        return 1
    if env.secrets_file.exists():
        _warning(f"Encrypted secrets file already exists: {env.secrets_file}")
        if not _confirm("Overwrite?", args.yes):
            return 1

    template = template_for(cfg, env)
    print()
    _info(f"Opening editor for {env.name} secrets...")
    create_bundle(
        env,
        template,
        lambda path: run_editor(cfg.editor, path),
        overwrite=True,
        on_invalid=_reopen_editor,
    )

    print()
    _success("Secrets created successfully!")
    print()
    print(f"Encrypted file: {env.secrets_file}")
    print(f"Public key: {read_public_key(env.key_file)}")
    return 0


def _cmd_edit(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    env = cfg.environment(args.environment)
    if _require_key_file(cfg, env.name) is None:
        return 1
    if not env.secrets_file.exists():
        _error(f"Encrypted secrets file not found: {env.secrets_file}")
        print()
        print("To create a new secrets file, run:")
        print(f"  finvault-secrets new {env.name}")
        return 1

    _info(f"Decrypting {env.secrets_file}...")
    changed = edit_bundle(
        env, lambda path: run_editor(cfg.editor, path), on_invalid=_reopen_editor
    )
    print()
    if changed:
        _success("Secrets updated successfully!")
    else:
        _warning("No changes detected, skipping re-encryption")
    print()
    _success("Plaintext securely deleted")
    return 0


def _cmd_show_key(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    print()
    _success("Public keys by environment:")
    print()
    for name, env in sorted(cfg.environments.items()):
        if not env.key_file.exists():
            print(f"  {name}: (key file not found: {env.key_file})")
            continue
        try:
            print(f"  {name}: {read_public_key(env.key_file)}")
        except (OSError, ValueError):
            print(f"  {name}: (could not read key from {env.key_file})")
    return 0


def _cmd_encrypt(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    if _require_key_file(cfg, DEFAULT_IDENTITY_ENV) is None:
        return 1
    source = Path(args.file)
    if not source.is_file():
        _error(f"File not found: {source}")
        return 1
    output = source.with_name(source.name + ENCRYPTED_SUFFIX)
    if output.exists():
        _warning(f"Output file already exists: {output}")
        if not _confirm("Overwrite?", args.yes):
            return 1

    _info(f"Encrypting {source}...")
    encrypt_file(source, bundle_recipients(cfg.environment(DEFAULT_IDENTITY_ENV)), output)
    print()
    _success(f"Encrypted to: {output}")
    return 0


def _cmd_decrypt(args: argparse.Namespace, cfg: SecretsConfig) -> int:
    key_file = _require_key_file(cfg, DEFAULT_IDENTITY_ENV)
    if key_file is None:
        return 1
    source = Path(args.file)
    if not source.is_file():
        _error(f"File not found: {source}")
        return 1
    if source.name.endswith(ENCRYPTED_SUFFIX):
        output = source.with_name(source.name[: -len(ENCRYPTED_SUFFIX)])
    else:
        output = source.with_name(source.name + ".decrypted")
    if output.exists():
        _warning(f"Output file already exists: {output}")
        if not _confirm("Overwrite?", args.yes):
            return 1

    _info(f"Decrypting {source}...")
    data = decrypt_file(source, read_identity_file(key_file))
    fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)

    print()
    _success(f"Decrypted to: {output}")
    print()
    _warning("Remember to securely delete this file when done!")
    return 0


_COMMANDS = {
    "keygen": _cmd_keygen,
    "new": _cmd_new,
    "edit": _cmd_edit,
    "show-key": _cmd_show_key,
    "encrypt": _cmd_encrypt,
    "decrypt": _cmd_decrypt,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="finvault-secrets",
        description="Manage encrypted secrets bundles for the finance aggregator.",
    )
    parser.add_argument("--config", help="Config file (default: $FINVAULT_CONFIG or ./finvault.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a keypair for an environment")
    keygen_parser.add_argument("environment", help="dev, test or prod")
    keygen_parser.add_argument("--yes", "-y", action="store_true", help="Overwrite without asking")

    new_parser = subparsers.add_parser("new", help="Create a secrets bundle from a template")
    new_parser.add_argument("environment", help="dev, test or prod")
    new_parser.add_argument("--yes", "-y", action="store_true", help="Overwrite without asking")

    edit_parser = subparsers.add_parser("edit", help="Edit an encrypted secrets bundle")
    edit_parser.add_argument("environment", help="dev, test or prod")

    subparsers.add_parser("show-key", help="Print public keys for all environments")

    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a file with the dev key")
    encrypt_parser.add_argument("file")
    encrypt_parser.add_argument("--yes", "-y", action="store_true", help="Overwrite without asking")

    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt a file with the dev key")
    decrypt_parser.add_argument("file")
    decrypt_parser.add_argument("--yes", "-y", action="store_true", help="Overwrite without asking")

    subparsers.add_parser("help", help="Show this help message")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command in (None, "help"):
        parser.print_help()
        return 0

    try:
        cfg = load_config(args.config)
        return _COMMANDS[args.command](args, cfg)
    except DecryptionFailure as e:
        _report_decryption_failure(e)
    except EditorFailure as e:
        _error(f"{e}. Nothing was encrypted.")
    except (FinvaultError, FileExistsError, ValueError) as e:
        _error(str(e))
    except OSError as e:
        _error(f"{e.strerror}: {e.filename}" if e.filename else str(e))
    return 1


if __name__ == "__main__":
    sys.exit(main())
