"""Pydantic schemas for API request/response validation."""

from app.schemas.auth import CurrentUserResponse
from app.schemas.chat import (
    AskRequest,
    AskResponse,
    ChatCreate,
    ChatDetail,
    ChatRename,
    ChatSearchResponse,
    ChatSummary,
    HistoryMessage,
    MessageResponse,
    MessageSearchHit,
    SourceSchema,
    TitleRequest,
    TitleResponse,
)
from app.schemas.phi import HashPidResponse
from app.schemas.proxy import SheetPreview, XlsxPreviewResponse
from app.schemas.visuals import (
    VisualClassifyRequest,
    VisualClassifyResponse,
    VisualGenerateRequest,
    VisualGenerateResponse,
    VisualStoreRequest,
    VisualStoreResponse,
)

__all__ = [
    # Auth
    "CurrentUserResponse",
    # Chat
    "AskRequest",
    "AskResponse",
    "ChatCreate",
    "ChatDetail",
    "ChatRename",
    "ChatSearchResponse",
    "ChatSummary",
    "HistoryMessage",
    "MessageResponse",
    "MessageSearchHit",
    "SourceSchema",
    "TitleRequest",
    "TitleResponse",
    # PHI
    "HashPidResponse",
    # Proxy
    "SheetPreview",
    "XlsxPreviewResponse",
    # Visuals
    "VisualClassifyRequest",
    "VisualClassifyResponse",
    "VisualGenerateRequest",
    "VisualGenerateResponse",
    "VisualStoreRequest",
    "VisualStoreResponse",
]
