"""Coreference rewriting of follow-up questions.

Follow-ups such as "what about the one from yesterday?" are rewritten into
standalone questions using recent chat history before they are routed. The
rewrite is discarded when it drops or changes any date/time phrase of the
original question, since workflows filter studies by those phrases.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from app.config import settings
from app.services.llm.client import LLMService
from app.services.metrics import record_event

logger = logging.getLogger("veston.rewrite")

REWRITE_SCHEMA = {
    "type": "object",
    "properties": {
        "rewritten_question": {"type": "string"},
        "needs_rewrite": {"type": "boolean"},
        "rationale": {"type": "string"},
    },
    "required": ["rewritten_question", "needs_rewrite", "rationale"],
    "additionalProperties": False,
}

REWRITE_SYSTEM_PROMPT = (
    "You resolve references in follow-up questions for a radiology operations assistant. "
    "Given the recent conversation and the latest user question, decide whether the question "
    "depends on earlier messages (pronouns, 'that study', 'the same site', ellipsis). "
    "If it does, rewrite it as a single standalone question that keeps the user's wording. "
    "Never change, drop or add dates, times or relative time expressions. "
    "If no rewrite is needed, return the question unchanged with needs_rewrite set to false."
)

_UNITS = r"(?:minutes?|mins?|hours?|hrs?|days?|weeks?|months?|quarters?|years?)"
_MONTHS = (
    r"(?:january|february|march|april|june|july|august|september|october|november|december)"
)
_MONTH_ABBR = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)"
_WEEKDAYS = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)s?"

TEMPORAL_PATTERN = re.compile(
    r"\b(?:"
    rf"(?:last|past|previous|next|coming)\s+\d+\s+{_UNITS}"
    rf"|\d+\s+{_UNITS}\s+(?:ago|from\s+now)"
    r"|(?:last|past|previous|this|next|coming)\s+"
    r"(?:night|morning|afternoon|evening|week|weekend|month|quarter|year|shift)"
    rf"|(?:last|this|next)\s+{_WEEKDAYS}"
    r"|day\s+before\s+yesterday|day\s+after\s+tomorrow"
    r"|today|tonight|yesterday|tomorrow|overnight"
    r"|year[\s-]to[\s-]date|month[\s-]to[\s-]date|ytd|mtd"
    rf"|{_MONTHS}(?:\s+\d{{1,2}}(?:st|nd|rd|th)?)?(?:,?\s+\d{{4}})?"
    rf"|{_MONTH_ABBR}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    rf"|{_WEEKDAYS}"
    r"|\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}/\d{1,2}(?:/\d{2,4})?"
    r"|\d{1,2}:\d{2}(?::\d{2})?(?:\s*[ap]\.?m\.?)?"
    r"|\d{1,2}\s*[ap]\.?m\.?"
    r")(?![\w/])",
    re.IGNORECASE,
)


def extract_temporal_phrases(text: str) -> list[str]:
    """Return the date/time phrases in ``text`` in order of appearance."""
    if not text:
        return []
    return [match.group(0) for match in TEMPORAL_PATTERN.finditer(text)]


def preserves_temporal_phrases(original: str, rewritten: str) -> bool:
    """True when every date/time phrase of ``original`` appears verbatim in ``rewritten``."""
    haystack = " ".join(rewritten.lower().split())
    for phrase in extract_temporal_phrases(original):
        if " ".join(phrase.lower().split()) not in haystack:
            return False
    return True


@dataclass
class RewriteResult:
    original_question: str
    rewritten_question: str
    applied: bool = False
    rationale: Optional[str] = None
    skipped_reason: Optional[str] = None

    @property
    def effective_question(self) -> str:
        return self.rewritten_question if self.applied else self.original_question

    def to_dict(self) -> dict:
        return asdict(self)


class QuestionRewriter:
    def __init__(
        self,
        llm: LLMService | None = None,
        model: str | None = None,
        history_limit: int | None = None,
        enabled: bool | None = None,
    ):
        self.llm = llm or LLMService.get_instance()
        self.model = model or settings.rewrite_model
        self.history_limit = (
            history_limit if history_limit is not None else settings.rewrite_history_messages
        )
        self.enabled = settings.rewrite_enabled if enabled is None else enabled

    def _build_user_prompt(self, question: str, history: list[dict[str, str]]) -> str:
        lines = ["Conversation so far:"]
        for turn in history[-self.history_limit:]:
            lines.append(f"{turn.get('role', 'user')}: {turn.get('content', '')}")
        lines.append("")
        lines.append(f"Latest question: {question}")
        return "\n".join(lines)

    async def rewrite(self, question: str, history: list[dict[str, str]]) -> RewriteResult:
        """Rewrite ``question`` into a standalone question when history is needed."""
        result = RewriteResult(original_question=question, rewritten_question=question)
        if not self.enabled:
            result.skipped_reason = "disabled"
            return result
        if not history:
            result.skipped_reason = "no-history"
            return result

        try:
            raw_output = await self.llm.structured_response(
                model=self.model,
                system=REWRITE_SYSTEM_PROMPT,
                user=self._build_user_prompt(question, history),
                schema_name="question_rewrite",
                schema=REWRITE_SCHEMA,
            )
            payload = json.loads(raw_output)
        except Exception as exc:
            logger.warning("Question rewrite failed: %s", exc)
            record_event("rewrite_failed", error=exc.__class__.__name__)
            result.skipped_reason = "error"
            return result

        if not isinstance(payload, dict):
            record_event("rewrite_failed", error="non_object")
            result.skipped_reason = "error"
            return result

        rewritten = str(payload.get("rewritten_question") or "").strip()
        result.rationale = payload.get("rationale") or None
        if not payload.get("needs_rewrite") or not rewritten or rewritten == question.strip():
            record_event("rewrite_not_needed")
            return result

        result.rewritten_question = rewritten
        if not preserves_temporal_phrases(question, rewritten):
            logger.info(
                "Rejected rewrite that altered date/time phrases: %s",
                extract_temporal_phrases(question),
            )
            record_event("rewrite_rejected_temporal")
            result.skipped_reason = "temporal-mismatch"
            return result

        result.applied = True
        record_event("rewrite_applied")
        return result
