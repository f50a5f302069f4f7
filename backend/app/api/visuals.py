"""Visualization endpoints: decide, generate and store chart specs."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import CurrentUser, get_chat_repository, get_current_user
from app.schemas.visuals import (
    VisualClassifyRequest,
    VisualClassifyResponse,
    VisualGenerateRequest,
    VisualGenerateResponse,
    VisualStoreRequest,
    VisualStoreResponse,
)
from app.services.chats import ChatRepository
from app.services.visualization import VisualizationService
from app.services.workflow.normalizer import normalize_visualizations

logger = logging.getLogger("veston.api.visuals")

router = APIRouter(prefix="/visuals", tags=["Visualizations"])


@router.post("/classify", response_model=VisualClassifyResponse, response_model_exclude_none=True)
async def classify_visual(request: VisualClassifyRequest):
    """Decide whether a question should get a chart."""
    result = await VisualizationService().classify(request.question)
    return VisualClassifyResponse(**result)


@router.post("/generate", response_model=VisualGenerateResponse, response_model_exclude_none=True)
async def generate_visuals(request: VisualGenerateRequest):
    """Generate chart specs from an assistant reply and its raw workflow payload."""
    result = await VisualizationService().generate(
        request.question,
        request.answer,
        raw=request.raw,
        preview=request.preview,
    )
    return VisualGenerateResponse(**result)


@router.post("/store", response_model=VisualStoreResponse)
async def store_visuals(
    request: VisualStoreRequest,
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    """Attach chart specs to one of the user's messages (replacing earlier ones)."""
    if not request.chat_id or not request.message_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="chat_id and message_id are required",
        )
    try:
        chat_id = uuid.UUID(request.chat_id)
        message_id = uuid.UUID(request.message_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="chat_id and message_id must be UUIDs",
        )

    visualizations = normalize_visualizations(request.visualizations)
    if visualizations is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid visualization payload",
        )

    message = await repo.get_message(message_id, chat_id, current_user.email)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    await repo.upsert_visualizations(
        message_id, chat_id, current_user.email, visualizations
    )
    summary = (
        f"count={len(visualizations)}"
        if isinstance(visualizations, list)
        else f"type={type(visualizations).__name__}"
    )
    logger.info("Stored visualizations %s", summary)
    return VisualStoreResponse(ok=True)
