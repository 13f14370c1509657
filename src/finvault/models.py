"""Pydantic request/response models for the credential API."""

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response: the loaded environment and its top-level secret names."""

    status: str = "ok"
    environment: str
    secrets: list[str] = []


class StoreCredentialRequest(BaseModel):
    """Access token obtained from a completed OAuth exchange."""

    access_token: str = Field(min_length=1, repr=False)


class CredentialInfo(BaseModel):
    """Credential metadata. Never includes the token or its ciphertext."""

    id: str
    owner: str
    institution: str
    created_at: datetime
    last_used_at: datetime | None = None
