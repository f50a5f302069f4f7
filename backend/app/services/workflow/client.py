"""HTTP client for the n8n workflow webhooks."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from app.config import settings

logger = logging.getLogger("veston.workflow")

EXECUTION_ID_HEADER = "execution-id"


class WorkflowConfigurationError(RuntimeError):
    """No webhook URL is configured for the requested route."""


class WorkflowRequestError(RuntimeError):
    """The webhook could not be reached."""


@dataclass
class WorkflowOptions:
    """Mode flags forwarded to the workflow untouched."""

    mode: Optional[str] = None
    fast: bool = False
    slow: bool = False
    openai: bool = False
    gemini: bool = False
    radmapping: bool = False
    rag: bool = False
    study_analysis: bool = False
    no_workflow: bool = False


@dataclass
class WorkflowResult:
    status_code: int
    text: str
    json: Any = None
    execution_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def raw(self) -> Any:
        """Parsed body when the webhook returned JSON, otherwise the text."""
        return self.json if self.json is not None else self.text


def parse_json_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def build_payload(
    *,
    question: str,
    history: list[dict[str, str]],
    classifier: dict | None,
    options: WorkflowOptions,
    chat_id: str | None,
) -> dict[str, Any]:
    return {
        "question": question,
        "history": history,
        "classifier": classifier,
        "mode": options.mode,
        "fast": options.fast is True,
        "slow": options.slow is True,
        "openai": options.openai is True,
        "gemini": options.gemini is True,
        "radmapping": options.radmapping is True,
        "RAG": options.rag is True,
        "studyAnalysis": options.study_analysis is True,
        "noWorkflow": options.no_workflow is True,
        "chatId": chat_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class WorkflowClient:
    def __init__(
        self,
        urls: dict[str, Optional[str]] | None = None,
        delegated_url: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.urls = urls if urls is not None else settings.workflow_urls
        self.delegated_url = (
            delegated_url if delegated_url is not None else settings.n8n_classifier_url
        )
        self.timeout_seconds = timeout_seconds or settings.workflow_timeout_seconds

    @property
    def delegated(self) -> bool:
        return bool(self.delegated_url)

    def url_for(self, label: str) -> str:
        url = self.urls.get(label)
        if not url:
            raise WorkflowConfigurationError(f"No workflow URL configured for label {label}")
        return url

    async def post(self, url: str, payload: dict[str, Any]) -> WorkflowResult:
        """POST ``payload`` and capture status, body and execution id.

        Non-2xx responses are returned, not raised; only transport failures raise.
        """

        def _request() -> WorkflowResult:
            try:
                response = requests.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as exc:
                raise WorkflowRequestError(f"Workflow request failed: {exc}") from exc

            text = response.text or ""
            return WorkflowResult(
                status_code=response.status_code,
                text=text,
                json=parse_json_body(text),
                execution_id=response.headers.get(EXECUTION_ID_HEADER),
            )

        result = await asyncio.to_thread(_request)
        logger.info(
            "Workflow responded status=%d bytes=%d execution_id=%s",
            result.status_code,
            len(result.text),
            result.execution_id or "-",
        )
        return result
