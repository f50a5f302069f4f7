"""Pydantic schemas for Chat API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ============================================
# Message Schemas
# ============================================


class HistoryMessage(BaseModel):
    """A prior turn supplied by the client."""

    role: str  # "user" or "assistant"
    content: str


class SourceSchema(BaseModel):
    """A citation returned by a workflow."""

    model_config = ConfigDict(from_attributes=True)

    url: str
    title: str | None = None
    snippet: str | None = None
    score: float | None = None


class MessageResponse(BaseModel):
    """A stored message with its sources and charts."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role: str
    content: str
    created_at: datetime
    sources: list[SourceSchema] = []
    visualizations: Any = None


# ============================================
# Chat Schemas
# ============================================


class ChatCreate(BaseModel):
    """Request to create a new chat."""

    title: str | None = Field(None, max_length=200)


class ChatRename(BaseModel):
    """Request to rename a chat."""

    title: str = Field(..., min_length=1, max_length=200)


class ChatSummary(BaseModel):
    """A chat in the sidebar list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime
    preview: str | None = None


class ChatDetail(ChatSummary):
    """A chat with its full message history."""

    messages: list[MessageResponse] = []


class MessageSearchHit(BaseModel):
    """A message matching a search query."""

    chat_id: UUID
    chat_title: str
    message_id: UUID
    role: str
    preview: str | None = None
    created_at: datetime


class ChatSearchResponse(BaseModel):
    """Chats and messages matching a search query."""

    query: str
    chats: list[ChatSummary] = []
    messages: list[MessageSearchHit] = []


# ============================================
# Ask Request/Response
# ============================================


class AskRequest(BaseModel):
    """A question for the workflow pipeline.

    Field names are accepted in snake_case or camelCase.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    question: str | None = Field(None, max_length=8000)
    chat_id: UUID | None = None
    history: list[HistoryMessage] | None = None
    mode: str | None = None
    fast: bool = False
    slow: bool = False
    openai: bool = False
    gemini: bool = False
    radmapping: bool = False
    rag: bool = Field(False, validation_alias=AliasChoices("rag", "RAG"))
    study_analysis: bool = False
    no_workflow: bool = False


class AskResponse(BaseModel):
    """Reconciled workflow reply."""

    reply: str
    raw: Any = None
    chat_id: UUID
    workflow: str
    classifier: dict[str, Any] | None = None
    rewrite: dict[str, Any] | None = None
    sources: list[SourceSchema] | None = None
    visualizations: Any = None
    user_message_id: UUID | None = None
    assistant_message_id: UUID | None = None


# ============================================
# Titles
# ============================================


class TitleRequest(BaseModel):
    message: str | None = None
    fallback: str | None = None


class TitleResponse(BaseModel):
    title: str
    reason: str | None = None
