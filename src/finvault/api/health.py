"""Liveness endpoint reporting which environment's secrets were loaded."""

from fastapi import APIRouter, Request

from finvault.models import HealthResponse
from finvault.secrets import bundle_keys

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    # key names only; values never leave the bundle
    return HealthResponse(
        environment=request.app.state.environment,
        secrets=bundle_keys(request.app.state.secrets),
    )
