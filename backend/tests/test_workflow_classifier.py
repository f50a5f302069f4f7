import json

import pytest
from openai import OpenAIError

from app.services.llm.classifier import (
    GOOGLE_BUCKET_SCRAPER,
    RADMAPPING_PLUS,
    WorkflowClassifier,
    parse_classifier_output,
)
from app.services.llm.client import LLMUnavailableError
from app.services.metrics import get_event_counters


def _output(label, confidence="high", rationale="lookup"):
    return json.dumps({"label": label, "confidence": confidence, "rationale": rationale})


@pytest.mark.anyio
async def test_radmapping_toggle_wins_without_model_call(fake_llm_factory):
    llm = fake_llm_factory(has_api_key=False)

    result = await WorkflowClassifier(llm=llm).classify("anything", radmapping=True, rag=True)

    assert result.label == RADMAPPING_PLUS
    assert result.source == "toggle"
    assert llm.calls == []


@pytest.mark.anyio
async def test_rag_toggle_routes_to_bucket_scraper(fake_llm_factory):
    llm = fake_llm_factory(has_api_key=False)

    result = await WorkflowClassifier(llm=llm).classify("anything", rag=True)

    assert result.label == GOOGLE_BUCKET_SCRAPER
    assert result.source == "toggle"


@pytest.mark.anyio
async def test_missing_api_key_raises(fake_llm_factory):
    classifier = WorkflowClassifier(llm=fake_llm_factory(has_api_key=False))

    with pytest.raises(LLMUnavailableError):
        await classifier.classify("How many CTs yesterday?")


@pytest.mark.anyio
async def test_model_label_is_returned(fake_llm_factory):
    llm = fake_llm_factory([_output(RADMAPPING_PLUS)])
    classifier = WorkflowClassifier(llm=llm, guidelines="RADMAPPING_PLUS: CPT lookups")

    result = await classifier.classify("CPT for head CT?")

    assert result.to_dict() == {
        "label": RADMAPPING_PLUS,
        "confidence": "high",
        "rationale": "lookup",
        "source": "llm",
    }
    call = llm.calls[0]
    assert "RADMAPPING_PLUS: CPT lookups" in call["system"]
    assert call["user"] == "User message: CPT for head CT?"
    assert call["schema"]["properties"]["label"]["enum"] == [
        GOOGLE_BUCKET_SCRAPER,
        RADMAPPING_PLUS,
    ]


@pytest.mark.anyio
@pytest.mark.parametrize("output", ["", "nope", _output("SOMETHING_ELSE")])
async def test_unusable_output_falls_back_to_default(fake_llm_factory, output):
    result = await WorkflowClassifier(llm=fake_llm_factory([output])).classify("q")

    assert result.label == GOOGLE_BUCKET_SCRAPER
    assert result.source == "fallback"
    assert get_event_counters()["classifier_fallback"] == 1


@pytest.mark.anyio
async def test_openai_error_falls_back_to_default(fake_llm_factory):
    llm = fake_llm_factory(error=OpenAIError("rate limited"))

    result = await WorkflowClassifier(llm=llm).classify("q")

    assert result.label == GOOGLE_BUCKET_SCRAPER
    assert result.source == "fallback"


def test_parse_classifier_output():
    assert parse_classifier_output(None) is None
    assert parse_classifier_output("[]") is None
    parsed = parse_classifier_output(_output(GOOGLE_BUCKET_SCRAPER, confidence="low"))
    assert parsed.label == GOOGLE_BUCKET_SCRAPER
    assert parsed.confidence == "low"
