"""Shared test fixtures for finvault."""

import os
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from finvault.config import load_config
from finvault.crypto import generate_key
from finvault.db import SqliteCredentialStore, connect
from finvault.recipients import Identity, encrypt_file, write_identity_file

from helpers import bundle_text


@pytest.fixture(autouse=True)
def _clean_editor_env(monkeypatch):
    """Keep the caller's editor variables out of config resolution."""
    monkeypatch.delenv("VISUAL", raising=False)
    monkeypatch.delenv("EDITOR", raising=False)
    monkeypatch.delenv("FINVAULT_CONFIG", raising=False)


@pytest.fixture
def config_path(tmp_path) -> Path:
    """A finvault.toml with dev/test/prod rooted in tmp_path."""
    path = tmp_path / "finvault.toml"
    lines = []
    for name in ("dev", "test", "prod"):
        lines += [
            f"[environments.{name}]",
            f'key_file = "keys/{name}-key.txt"',
            f'secrets_file = "env/{name}/secrets.toml.enc"',
            f'template_file = "env/{name}/secrets.example.toml"',
            "",
        ]
    path.write_text("\n".join(lines))
    return path


@pytest.fixture
def config(config_path):
    return load_config(config_path)


@pytest.fixture
def identities(config) -> dict[str, Identity]:
    """Generate and write an identity file for every environment."""
    result = {}
    for name, env in config.environments.items():
        identity = Identity.generate()
        write_identity_file(env.key_file, identity)
        result[name] = identity
    return result


@pytest.fixture
def vault_key() -> bytes:
    return generate_key()


@pytest.fixture
def write_bundle(config, identities, tmp_path):
    """Encrypt a secrets document for an environment."""

    def _write(env_name: str, text: str) -> Path:
        env = config.environment(env_name)
        plaintext = tmp_path / f"{env_name}-plain.toml"
        plaintext.write_text(text)
        encrypt_file(plaintext, [identities[env_name].recipient], env.secrets_file)
        os.remove(plaintext)
        return env.secrets_file

    return _write


@pytest.fixture
async def store():
    """Credential store over an in-memory database."""
    db = await connect(":memory:")
    yield SqliteCredentialStore(db)
    await db.close()


@pytest.fixture
async def app(config, write_bundle, vault_key, tmp_path):
    """App started against a dev bundle holding vault_key."""
    from finvault.app import create_app

    write_bundle("dev", bundle_text(vault_key))
    application = create_app(config=config, environment="dev", db_path=tmp_path / "finvault.db")

    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    """HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
