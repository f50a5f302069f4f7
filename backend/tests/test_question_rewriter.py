import json

import pytest

from app.services.llm.rewriter import (
    QuestionRewriter,
    extract_temporal_phrases,
    preserves_temporal_phrases,
)
from app.services.metrics import get_event_counters

HISTORY = [
    {"role": "user", "content": "How many MRIs were read at Site A?"},
    {"role": "assistant", "content": "42 MRIs were read at Site A."},
]


def _rewrite_output(question: str, needs_rewrite: bool = True, rationale: str = "pronoun"):
    return json.dumps(
        {
            "rewritten_question": question,
            "needs_rewrite": needs_rewrite,
            "rationale": rationale,
        }
    )


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Show CTs from the last 3 days", ["last 3 days"]),
        ("What about yesterday's studies?", ["yesterday"]),
        ("Volume on March 5, 2024 at 10:30 am", ["March 5, 2024", "10:30 am"]),
        ("Compare this week with last month", ["this week", "last month"]),
        ("Reads since 2024-01-31 and 1/15", ["2024-01-31", "1/15"]),
        ("Turnaround YTD vs. 2 weeks ago", ["YTD", "2 weeks ago"]),
        ("Studies on Monday at 9pm", ["Monday", "9pm"]),
        ("May I see the mapping for CPT 70450?", []),
    ],
)
def test_extract_temporal_phrases(text, expected):
    assert extract_temporal_phrases(text) == expected


def test_preserves_temporal_phrases_is_case_and_space_insensitive():
    assert preserves_temporal_phrases("What about Last  Week?", "MRIs at Site A last week")
    assert not preserves_temporal_phrases("What about last week?", "MRIs at Site A this week")
    assert preserves_temporal_phrases("What about that site?", "What about Site A?")


@pytest.mark.anyio
async def test_rewrite_skipped_without_history(fake_llm_factory):
    llm = fake_llm_factory()
    rewriter = QuestionRewriter(llm=llm, enabled=True)

    result = await rewriter.rewrite("What about it?", [])

    assert result.skipped_reason == "no-history"
    assert result.effective_question == "What about it?"
    assert llm.calls == []


@pytest.mark.anyio
async def test_rewrite_skipped_when_disabled(fake_llm_factory):
    llm = fake_llm_factory()
    rewriter = QuestionRewriter(llm=llm, enabled=False)

    result = await rewriter.rewrite("What about it?", HISTORY)

    assert result.skipped_reason == "disabled"
    assert llm.calls == []


@pytest.mark.anyio
async def test_rewrite_applied_when_dates_are_kept(fake_llm_factory):
    llm = fake_llm_factory([_rewrite_output("How many MRIs were read at Site A last week?")])
    rewriter = QuestionRewriter(llm=llm, enabled=True)

    result = await rewriter.rewrite("And last week?", HISTORY)

    assert result.applied is True
    assert result.effective_question == "How many MRIs were read at Site A last week?"
    assert result.rationale == "pronoun"
    assert get_event_counters()["rewrite_applied"] == 1
    prompt = llm.calls[0]["user"]
    assert "assistant: 42 MRIs were read at Site A." in prompt
    assert prompt.endswith("Latest question: And last week?")


@pytest.mark.anyio
async def test_rewrite_rejected_when_dates_change(fake_llm_factory):
    llm = fake_llm_factory([_rewrite_output("How many MRIs were read at Site A this month?")])
    rewriter = QuestionRewriter(llm=llm, enabled=True)

    result = await rewriter.rewrite("And yesterday?", HISTORY)

    assert result.applied is False
    assert result.skipped_reason == "temporal-mismatch"
    assert result.rewritten_question == "How many MRIs were read at Site A this month?"
    assert result.effective_question == "And yesterday?"
    assert get_event_counters()["rewrite_rejected_temporal"] == 1


@pytest.mark.anyio
async def test_rewrite_not_needed(fake_llm_factory):
    llm = fake_llm_factory([_rewrite_output("List CPT codes for head CT", needs_rewrite=False)])
    rewriter = QuestionRewriter(llm=llm, enabled=True)

    result = await rewriter.rewrite("List CPT codes for head CT", HISTORY)

    assert result.applied is False
    assert result.skipped_reason is None
    assert get_event_counters()["rewrite_not_needed"] == 1


@pytest.mark.anyio
@pytest.mark.parametrize("output", ["not json", "[1, 2]"])
async def test_rewrite_falls_back_on_bad_output(fake_llm_factory, output):
    rewriter = QuestionRewriter(llm=fake_llm_factory([output]), enabled=True)

    result = await rewriter.rewrite("And that one?", HISTORY)

    assert result.skipped_reason == "error"
    assert result.effective_question == "And that one?"
    assert get_event_counters()["rewrite_failed"] == 1


@pytest.mark.anyio
async def test_rewrite_falls_back_when_model_errors(fake_llm_factory):
    rewriter = QuestionRewriter(llm=fake_llm_factory(error=RuntimeError("down")), enabled=True)

    result = await rewriter.rewrite("And that one?", HISTORY)

    assert result.skipped_reason == "error"
    assert result.applied is False


@pytest.mark.anyio
async def test_rewrite_only_sends_recent_history(fake_llm_factory):
    llm = fake_llm_factory([_rewrite_output("x", needs_rewrite=False)])
    history = [{"role": "user", "content": f"turn {i}"} for i in range(10)]
    rewriter = QuestionRewriter(llm=llm, enabled=True, history_limit=2)

    await rewriter.rewrite("and then?", history)

    prompt = llm.calls[0]["user"]
    assert "turn 7" not in prompt
    assert "turn 8" in prompt and "turn 9" in prompt
