"""Credential link routes: store, check and unlink an owner's institution token."""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from finvault.errors import CredentialUnreadable, NotFound
from finvault.models import CredentialInfo, StoreCredentialRequest
from finvault.vault import (
    CredentialRecord,
    delete_credential,
    open_credential,
    store_credential,
    vault_key_from_bundle,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users/{owner}/credentials")


def _info(record: CredentialRecord) -> CredentialInfo:
    return CredentialInfo(
        id=record.id,
        owner=record.owner,
        institution=record.institution,
        created_at=record.created_at,
        last_used_at=record.last_used_at,
    )


@router.put("/{institution}", status_code=201, response_model=CredentialInfo)
async def link_credential(
    owner: str, institution: str, body: StoreCredentialRequest, request: Request
) -> CredentialInfo:
    """Encrypt and store the access token for an institution."""
    store = request.app.state.credential_store
    vault_key = vault_key_from_bundle(request.app.state.secrets)
    try:
        record = await store_credential(store, vault_key, owner, institution, body.access_token)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _info(record)


@router.get("/{institution}", response_model=CredentialInfo)
async def check_credential(owner: str, institution: str, request: Request) -> CredentialInfo:
    """Verify the stored credential decrypts. The token itself is never returned."""
    store = request.app.state.credential_store
    vault_key = vault_key_from_bundle(request.app.state.secrets)
    try:
        record, _ = await open_credential(store, vault_key, owner, institution)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFound:
        raise HTTPException(status_code=404, detail=f"No {institution} credential linked")
    except CredentialUnreadable:
        raise HTTPException(
            status_code=409,
            detail=f"{institution} credential unavailable, please relink",
        )
    return _info(record)


@router.delete("/{institution}", status_code=204)
async def unlink_credential(owner: str, institution: str, request: Request) -> Response:
    """Remove the stored credential for an institution."""
    store = request.app.state.credential_store
    try:
        deleted = await delete_credential(store, owner, institution)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No {institution} credential linked")
    return Response(status_code=204)
