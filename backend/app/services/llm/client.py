"""OpenAI client wrapper shared by the classifier, rewriter and visual helpers."""

import logging
from typing import Any, Optional

from openai import AsyncOpenAI

from app.config import settings

logger = logging.getLogger("veston.llm")


class LLMUnavailableError(RuntimeError):
    """Raised when no OpenAI API key is configured."""


class LLMService:
    """Thin async facade over the OpenAI SDK.

    The client is created lazily so the application can start (and the
    health endpoints can report) without an API key.
    """

    _instance: Optional["LLMService"] = None

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self._client: AsyncOpenAI | None = None

    @classmethod
    def get_instance(cls) -> "LLMService":
        """Get singleton instance of the LLM service."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise LLMUnavailableError("Missing OPENAI_API_KEY")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def structured_response(
        self,
        *,
        model: str,
        system: str,
        user: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> str:
        """Run a Responses API call constrained to a strict JSON schema.

        Returns the raw ``output_text``; callers own parsing so a malformed
        answer can fall back instead of failing the request.
        """
        response = await self.client.responses.create(
            model=model,
            input=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            text={
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        )
        return response.output_text or ""

    async def chat_completion(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = await self.client.chat.completions.create(**kwargs)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    def get_model_info(self) -> dict:
        """Get information about the configured models."""
        return {
            "provider": "openai",
            "api_key_configured": self.has_api_key,
            "models": {
                "classifier": settings.classifier_model,
                "rewrite": settings.rewrite_model,
                "chat_title": settings.chat_title_model,
                "visual_classifier": settings.visual_classifier_model,
                "visual_generator": settings.visual_generator_model,
            },
            "delegated_routing": bool(settings.n8n_classifier_url),
        }
