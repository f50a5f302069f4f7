"""Workflow routing classifier."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from openai import OpenAIError

from app.config import settings
from app.services.llm.client import LLMService, LLMUnavailableError
from app.services.metrics import record_event

logger = logging.getLogger("veston.classifier")

GOOGLE_BUCKET_SCRAPER = "GOOGLE_BUCKET_SCRAPER"
RADMAPPING_PLUS = "RADMAPPING_PLUS"
DELEGATED = "DELEGATED"

WORKFLOW_LABELS = (GOOGLE_BUCKET_SCRAPER, RADMAPPING_PLUS)
DEFAULT_LABEL = GOOGLE_BUCKET_SCRAPER

CLASSIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "label": {"type": "string", "enum": list(WORKFLOW_LABELS)},
        "confidence": {"type": "string"},
        "rationale": {"type": "string"},
    },
    "required": ["label", "confidence", "rationale"],
    "additionalProperties": False,
}


@dataclass
class ClassificationResult:
    label: str
    confidence: Optional[str] = None
    rationale: Optional[str] = None
    source: str = "llm"

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "source": self.source,
        }


def parse_classifier_output(raw_output: str | None) -> ClassificationResult | None:
    """Parse the model's JSON answer, returning None when it is unusable."""
    if not raw_output:
        return None
    try:
        payload = json.loads(raw_output)
    except json.JSONDecodeError:
        logger.warning("Failed to parse classifier output")
        return None
    if not isinstance(payload, dict) or payload.get("label") not in WORKFLOW_LABELS:
        logger.warning("Classifier returned an unknown label")
        return None
    return ClassificationResult(
        label=payload["label"],
        confidence=payload.get("confidence"),
        rationale=payload.get("rationale"),
    )


class WorkflowClassifier:
    """Pick the workflow webhook for a question."""

    def __init__(
        self,
        llm: LLMService | None = None,
        model: str | None = None,
        guidelines: str | None = None,
    ):
        self.llm = llm or LLMService.get_instance()
        self.model = model or settings.classifier_model
        self.guidelines = guidelines or settings.classification_prompt

    def _system_prompt(self) -> str:
        return (
            "You are a strict classification engine. Pick exactly one workflow label for each "
            f"message. Use these rules:\n{self.guidelines}\n"
            "Respond as JSON that matches the provided schema."
        )

    async def classify(
        self,
        question: str,
        *,
        radmapping: bool = False,
        rag: bool = False,
    ) -> ClassificationResult:
        """Classify ``question``; explicit toggles win without a model call.

        Raises:
            LLMUnavailableError: no API key is configured and no toggle is set.
        """
        if radmapping:
            return ClassificationResult(
                label=RADMAPPING_PLUS, rationale="radmapping toggle", source="toggle"
            )
        if rag:
            return ClassificationResult(
                label=GOOGLE_BUCKET_SCRAPER, rationale="RAG toggle", source="toggle"
            )

        if not self.llm.has_api_key:
            raise LLMUnavailableError("Missing OPENAI_API_KEY")

        try:
            raw_output = await self.llm.structured_response(
                model=self.model,
                system=self._system_prompt(),
                user=f"User message: {question}",
                schema_name="workflow_classifier",
                schema=CLASSIFICATION_SCHEMA,
            )
        except OpenAIError as exc:
            logger.warning("Classifier call failed: %s", exc)
            record_event("classifier_fallback", reason="error")
            return ClassificationResult(label=DEFAULT_LABEL, source="fallback")

        result = parse_classifier_output(raw_output)
        if result is None:
            record_event("classifier_fallback", reason="unparseable")
            return ClassificationResult(label=DEFAULT_LABEL, source="fallback")

        logger.info("Classified question label=%s confidence=%s", result.label, result.confidence)
        return result
