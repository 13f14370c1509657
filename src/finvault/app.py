"""FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from finvault.api.credentials import router as credentials_router
from finvault.api.health import router as health_router
from finvault.config import SecretsConfig, load_config
from finvault.db import SqliteCredentialStore, connect
from finvault.secrets import load_bundle

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "dev"


def create_app(
    config: SecretsConfig | None = None,
    environment: str | None = None,
    db_path: Path | str | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Secrets are loaded once at startup; a missing or undecryptable bundle
    stops the application from starting.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle: load secrets, open the credential store."""
        cfg = config if config is not None else load_config()
        env = environment or os.environ.get("FINVAULT_ENV", DEFAULT_ENVIRONMENT)
        app.state.secrets = load_bundle(env, cfg)
        app.state.environment = cfg.environment(env).name

        path = db_path
        if path is None:
            path = Path(os.environ.get("FINVAULT_DATA_DIR", "./data")) / "finvault.db"
        db = await connect(path)
        app.state.credential_store = SqliteCredentialStore(db)
        logger.info("finvault started for %s environment", env)

        yield

        await db.close()

    app = FastAPI(title="finvault", version="0.1.0", lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(credentials_router)
    return app
