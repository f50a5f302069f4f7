"""Chat history endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import CurrentUser, get_chat_repository, get_current_user
from app.config import settings
from app.schemas.chat import (
    ChatCreate,
    ChatDetail,
    ChatRename,
    ChatSearchResponse,
    ChatSummary,
    MessageResponse,
    MessageSearchHit,
    SourceSchema,
)
from app.services.chats import ChatRepository, build_preview
from app.utils.cache import CacheKeys, clear_cache, get_cached, set_cached

router = APIRouter(prefix="/chats", tags=["Chats"])


def _summary(chat, preview: str | None = None) -> ChatSummary:
    return ChatSummary(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        preview=preview,
    )


async def _summaries(repo: ChatRepository, user_email: str) -> list[ChatSummary]:
    chats = await repo.list_chats(user_email)
    previews = await repo.latest_previews([chat.id for chat in chats], user_email)
    return [_summary(chat, previews.get(chat.id)) for chat in chats]


@router.get("", response_model=list[ChatSummary])
async def list_chats(
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    """List the user's chats, most recently active first."""
    cache_key = CacheKeys.chats(current_user.email)
    cached = await get_cached(cache_key)
    if cached is not None:
        return cached

    summaries = await _summaries(repo, current_user.email)
    await set_cached(cache_key, summaries, settings.response_cache_ttl_seconds)
    return summaries


@router.post("", response_model=ChatSummary, status_code=status.HTTP_201_CREATED)
async def create_chat(
    request: ChatCreate,
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    chat = await repo.create_chat(current_user.email, user_id=current_user.id, title=request.title)
    await clear_cache(CacheKeys.chats_prefix(current_user.email))
    return _summary(chat)


@router.get("/search", response_model=ChatSearchResponse)
async def search_chats(
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(20, ge=1, le=100),
):
    """Search chat titles, latest-message previews and message content."""
    needle = q.strip().lower()
    summaries = await _summaries(repo, current_user.email)
    matching_chats = [
        summary
        for summary in summaries
        if needle in summary.title.lower() or needle in (summary.preview or "").lower()
    ][:limit]

    titles = {summary.id: summary.title for summary in summaries}
    hits = await repo.search_messages(current_user.email, q.strip(), limit)
    messages = [
        MessageSearchHit(
            chat_id=message.chat_id,
            chat_title=titles.get(message.chat_id, ""),
            message_id=message.id,
            role=message.role,
            preview=build_preview(message.content),
            created_at=message.created_at,
        )
        for message in hits
    ]
    return ChatSearchResponse(query=q, chats=matching_chats, messages=messages)


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat_id: UUID,
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    """Get a chat with its messages, sources and stored charts."""
    chat = await repo.get_chat(chat_id, current_user.email)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    messages = await repo.list_messages(chat_id, current_user.email)
    message_ids = [message.id for message in messages]
    sources = await repo.sources_for_messages(message_ids, chat_id, current_user.email)
    visualizations = await repo.visualizations_for_messages(
        message_ids, chat_id, current_user.email
    )

    return ChatDetail(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        preview=build_preview(messages[-1].content) if messages else None,
        messages=[
            MessageResponse(
                id=message.id,
                role=message.role,
                content=message.content,
                created_at=message.created_at,
                sources=[
                    SourceSchema.model_validate(source)
                    for source in sources.get(message.id, [])
                ],
                visualizations=visualizations.get(message.id),
            )
            for message in messages
        ],
    )


@router.patch("/{chat_id}", response_model=ChatSummary)
async def rename_chat(
    chat_id: UUID,
    request: ChatRename,
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    title = request.title.strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    renamed = await repo.rename_chat(chat_id, current_user.email, title)
    if not renamed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    await clear_cache(CacheKeys.chats_prefix(current_user.email))
    chat = await repo.get_chat(chat_id, current_user.email)
    return _summary(chat)


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: UUID,
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    deleted = await repo.delete_chat(chat_id, current_user.email)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    await clear_cache(CacheKeys.chats_prefix(current_user.email))
