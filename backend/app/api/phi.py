"""PHI placeholder tokenization for workflows."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import rate_limit_hash_pid, require_hash_pid_api_key
from app.schemas.phi import HashPidResponse
from app.services.phi import InvalidPayloadError, store_placeholders, tokenize_records
from app.services.workflow.client import EXECUTION_ID_HEADER

logger = logging.getLogger("veston.api.phi")

router = APIRouter(tags=["PHI"])


@router.post(
    "/hash-pid",
    response_model=HashPidResponse,
    dependencies=[Depends(require_hash_pid_api_key), Depends(rate_limit_hash_pid)],
)
async def hash_pid(request: Request):
    """Replace identifiers in workflow rows with placeholder tokens.

    Authenticated with ``HASH_PID_API_KEY`` (``X-API-Key`` or Bearer). When
    the caller sends an ``execution-id`` header the token table is kept for
    ``PHI_PLACEHOLDER_TTL_SECONDS`` so the chat reply for that execution can
    be restored.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body must be an array of objects",
        )

    try:
        tokenized, table = tokenize_records(payload)
    except InvalidPayloadError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    execution_id = request.headers.get(EXECUTION_ID_HEADER)
    stored = False
    if execution_id and table:
        await store_placeholders(execution_id, table)
        stored = True

    logger.info("Tokenized %d rows into %d placeholders", len(tokenized), len(table))
    return HashPidResponse(ok=True, tokenized_payload=tokenized, placeholders_stored=stored)
