"""Pydantic schemas for visualization endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class VisualClassifyRequest(BaseModel):
    question: str | None = None


class VisualClassifyResponse(BaseModel):
    should_visualize: bool
    reason: str | None = None
    raw: str | None = None


class VisualGenerateRequest(BaseModel):
    question: str | None = None
    answer: str | None = None
    raw: Any = None
    preview: str | None = None


class VisualGenerateResponse(BaseModel):
    charts: list[dict[str, Any]] = []
    reason: str | None = None


class VisualStoreRequest(BaseModel):
    """Charts to attach to an assistant message."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chat_id: str | None = None
    message_id: str | None = None
    visualizations: Any = None


class VisualStoreResponse(BaseModel):
    ok: bool = True
