"""Serve the credential API: python -m finvault.

FINVAULT_HOST and FINVAULT_PORT choose the listen address (default 127.0.0.1:8080).
"""

import logging
import os

import uvicorn

from finvault.app import create_app

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        create_app(),
        host=os.environ.get("FINVAULT_HOST", "127.0.0.1"),
        port=int(os.environ.get("FINVAULT_PORT", "8080")),
    )
