"""Chat turn orchestration.

One ``ask`` call runs a full turn: persist the question, rewrite it against
the chat history, pick a workflow, call the webhook, reconcile its reply,
restore PHI placeholders and persist the answer. Only the user message
insert and the workflow call can fail the turn; the other writes are
best-effort and are logged when they fail.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import settings
from app.logging import execution_id_var
from app.models import DEFAULT_CHAT_TITLE
from app.services.chats import ChatRepository, to_history
from app.services.llm.classifier import DELEGATED, ClassificationResult, WorkflowClassifier
from app.services.llm.rewriter import QuestionRewriter, RewriteResult
from app.services.metrics import record_event
from app.services.phi import restore_placeholders
from app.services.workflow.client import (
    WorkflowClient,
    WorkflowOptions,
    WorkflowRequestError,
    build_payload,
)
from app.services.workflow.normalizer import normalize_workflow_reply

logger = logging.getLogger("veston.pipeline")

CHAT_TITLE_LENGTH = 30


class EmptyQuestionError(ValueError):
    pass


class ChatNotFoundError(LookupError):
    pass


class ChatPersistenceError(RuntimeError):
    """The chat or the user message could not be stored."""


class WorkflowFailedError(RuntimeError):
    """The webhook answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any):
        super().__init__(f"Workflow request failed with status {status_code}")
        self.status_code = status_code
        self.body = body


@dataclass
class ChatTurnResult:
    reply: str
    raw: Any
    chat_id: uuid.UUID
    workflow: str
    classifier: Optional[dict] = None
    rewrite: Optional[dict] = None
    sources: Optional[list[dict]] = None
    visualizations: Any = None
    user_message_id: Optional[uuid.UUID] = None
    assistant_message_id: Optional[uuid.UUID] = None
    execution_id: Optional[str] = None


def title_from_question(question: str) -> str:
    question = question.strip()
    if len(question) > CHAT_TITLE_LENGTH:
        return f"{question[:CHAT_TITLE_LENGTH]}..."
    return question


@dataclass
class ChatPipeline:
    repo: ChatRepository
    classifier: WorkflowClassifier = field(default_factory=WorkflowClassifier)
    rewriter: QuestionRewriter = field(default_factory=QuestionRewriter)
    workflow_client: WorkflowClient = field(default_factory=WorkflowClient)

    async def _resolve_chat(self, chat_id, user_email: str, user_id: str | None):
        if chat_id is None:
            try:
                return await self.repo.create_chat(user_email, user_id=user_id)
            except Exception as exc:
                logger.exception("Failed to create chat")
                raise ChatPersistenceError("Failed to create chat") from exc
        chat = await self.repo.get_chat(chat_id, user_email)
        if chat is None:
            raise ChatNotFoundError("Chat not found")
        return chat

    async def _rewrite(
        self, question: str, history: list[dict[str, str]], chat_id, message_id, user_email: str
    ) -> RewriteResult:
        try:
            result = await self.rewriter.rewrite(question, history)
        except Exception:
            logger.exception("Question rewrite step failed")
            return RewriteResult(
                original_question=question, rewritten_question=question, skipped_reason="error"
            )

        if result.skipped_reason in ("disabled", "no-history"):
            return result
        try:
            await self.repo.add_rewrite(
                message_id,
                chat_id,
                user_email,
                original_question=result.original_question,
                rewritten_question=result.rewritten_question,
                applied=result.applied,
                rationale=result.rationale,
            )
        except Exception:
            logger.warning("Failed to persist question rewrite", exc_info=True)
        return result

    async def ask(
        self,
        *,
        user_email: str,
        question: str | None,
        user_id: str | None = None,
        chat_id: uuid.UUID | None = None,
        history: list[dict[str, str]] | None = None,
        options: WorkflowOptions | None = None,
    ) -> ChatTurnResult:
        """Run one chat turn.

        Raises:
            EmptyQuestionError: blank question.
            ChatNotFoundError: ``chat_id`` is not owned by the user.
            ChatPersistenceError: the chat or user message insert failed.
            LLMUnavailableError: classification needs an API key that is missing.
            WorkflowConfigurationError: the chosen route has no webhook URL.
            WorkflowRequestError: the webhook could not be reached.
            WorkflowFailedError: the webhook answered with an error status.
        """
        if not question or not question.strip():
            raise EmptyQuestionError("Question is required")
        options = options or WorkflowOptions()

        chat = await self._resolve_chat(chat_id, user_email, user_id)
        stored = await self.repo.recent_history(
            chat.id, user_email, settings.rewrite_history_messages
        )
        turn_history = to_history(stored) if stored else list(history or [])

        try:
            user_message = await self.repo.add_message(chat.id, user_email, "user", question)
        except Exception as exc:
            logger.exception("Failed to insert user message")
            raise ChatPersistenceError("Failed to create message") from exc

        if not stored and chat.title == DEFAULT_CHAT_TITLE:
            try:
                await self.repo.rename_chat(chat.id, user_email, title_from_question(question))
            except Exception:
                logger.warning("Failed to set chat title", exc_info=True)
        await self.repo.commit()

        rewrite = await self._rewrite(question, turn_history, chat.id, user_message.id, user_email)
        effective_question = rewrite.effective_question

        classification: ClassificationResult | None = None
        if self.workflow_client.delegated:
            workflow = DELEGATED
            url = self.workflow_client.delegated_url
        else:
            classification = await self.classifier.classify(
                effective_question, radmapping=options.radmapping, rag=options.rag
            )
            workflow = classification.label
            url = self.workflow_client.url_for(workflow)

        classifier_payload = classification.to_dict() if classification else None
        payload = build_payload(
            question=effective_question,
            history=turn_history,
            classifier=classifier_payload,
            options=options,
            chat_id=str(chat.id),
        )
        try:
            result = await self.workflow_client.post(url, payload)
        except WorkflowRequestError:
            record_event("workflow_failed", workflow=workflow, reason="transport")
            raise
        if not result.ok:
            record_event("workflow_failed", workflow=workflow, status=result.status_code)
            raise WorkflowFailedError(result.status_code, result.raw)

        normalized = normalize_workflow_reply(result.text, result.json, result.execution_id)
        if normalized.execution_id:
            execution_id_var.set(normalized.execution_id)
        reply = await restore_placeholders(normalized.reply, normalized.execution_id)

        assistant_message_id = None
        try:
            assistant = await self.repo.add_message(chat.id, user_email, "assistant", reply)
            assistant_message_id = assistant.id
        except Exception:
            logger.exception("Failed to insert assistant message")

        sources = None
        if normalized.sources is not None:
            sources = [source.to_dict() for source in normalized.sources]
        if assistant_message_id and sources:
            try:
                await self.repo.add_sources(assistant_message_id, chat.id, user_email, sources)
            except Exception:
                logger.warning("Skipping source persistence", exc_info=True)

        try:
            await self.repo.touch_chat(chat.id)
        except Exception:
            logger.warning("Failed to update chat timestamp", exc_info=True)

        logger.info(
            "Chat turn complete workflow=%s rewrite_applied=%s sources=%d",
            workflow,
            rewrite.applied,
            len(sources or []),
        )
        return ChatTurnResult(
            reply=reply,
            raw=result.raw,
            chat_id=chat.id,
            workflow=workflow,
            classifier=classifier_payload,
            rewrite=rewrite.to_dict(),
            sources=sources,
            visualizations=normalized.visualizations,
            user_message_id=user_message.id,
            assistant_message_id=assistant_message_id,
            execution_id=normalized.execution_id,
        )
