"""Chat title generation."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.config import settings
from app.models import DEFAULT_CHAT_TITLE
from app.services.llm.client import LLMService

logger = logging.getLogger("veston.titles")

FALLBACK_TITLE_LENGTH = 50


def build_fallback_title(value: str | None) -> str:
    if value and value.strip():
        trimmed = value.strip()
        if len(trimmed) > FALLBACK_TITLE_LENGTH:
            return f"{trimmed[:FALLBACK_TITLE_LENGTH]}..."
        return trimmed
    return DEFAULT_CHAT_TITLE


@dataclass
class TitleResult:
    title: str
    reason: Optional[str] = None


class ChatTitleGenerator:
    def __init__(
        self,
        llm: LLMService | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.llm = llm or LLMService.get_instance()
        self.model = model or settings.chat_title_model
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.chat_title_timeout_seconds
        )

    async def generate(self, message: str | None, fallback: str | None = None) -> TitleResult:
        base_title = build_fallback_title(fallback or message)
        if not message or not message.strip():
            return TitleResult(title=base_title, reason="missing-message")

        prompt = "\n".join(
            [
                "Create a concise, human-friendly chat title (max 8 words) for the first user message.",
                "Return only the title text without quotes or punctuation at the end.",
                f"Message: {message}",
            ]
        )
        try:
            text = await asyncio.wait_for(
                self.llm.chat_completion(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0.4,
                ),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            logger.error("Chat title generation failed: %s", exc.__class__.__name__)
            return TitleResult(title=base_title, reason="unavailable")

        return TitleResult(title=build_fallback_title(text.strip() or message))
