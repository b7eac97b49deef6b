"""
Voice-assistant caller endpoint. POST /voice/session resolves the calling assistant to its
shop's background credential and reports whether downstream calls can proceed.
The credential itself is never returned over HTTP.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from storefront_auth.errors import ResolutionError
from storefront_auth.resolver import SessionResolver, extract_caller_id
from storefront_auth.services import get_resolver

logger = logging.getLogger(__name__)
router = APIRouter(tags=["voice"])


@router.post("/voice/session")
async def voice_session(request: Request, resolver: SessionResolver = Depends(get_resolver)):
    """Resolve caller id (header or body) -> tenant -> credential."""
    raw = await request.body()
    body = {}
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail={"error": "invalid_request", "error_description": "Body must be JSON"},
            )
    caller_id = extract_caller_id(request.headers, body)
    if not caller_id:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": "No assistant id in request"},
        )
    try:
        credential = await run_in_threadpool(resolver.resolve, caller_id)
    except ResolutionError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())
    return {
        "authorized": True,
        "tenant_id": credential.tenant_id,
        "scopes": credential.scopes,
    }
