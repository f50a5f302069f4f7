import json

import pytest

from app.services.visualization import (
    PALETTE,
    VisualizationService,
    enrich_chart_spec,
    is_numeric,
    normalize_chart_specs,
    normalize_sankey,
    prepare_chart_specs,
    stringify_for_prompt,
    to_number,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(3, True), ("4.5", True), (" 7 ", True), (True, False), ("1_000", False), ("", False),
     ("abc", False), (float("nan"), False), (None, False)],
)
def test_is_numeric(value, expected):
    assert is_numeric(value) is expected


def test_to_number_prefers_integers():
    assert to_number("12") == 12
    assert isinstance(to_number("12.0"), int)
    assert to_number("2.5") == 2.5
    assert to_number(3.25) == 3.25


def test_bar_chart_is_normalized_and_enriched():
    raw = [
        {
            "type": "bar",
            "title": "Reads by site",
            "data": [{"site": "A", "reads": "42"}, {"site": "B", "reads": 17}],
        }
    ]

    charts = prepare_chart_specs(raw)

    assert len(charts) == 1
    chart = charts[0]
    assert chart["id"] == "chart-1"
    assert chart["data"] == [{"site": "A", "reads": 42}, {"site": "B", "reads": 17}]
    assert chart["xKey"] == "site"
    assert chart["yKeys"] == [{"key": "reads", "label": "reads", "color": PALETTE[0]}]


def test_unknown_type_defaults_to_bar_and_snake_case_keys_are_read():
    charts = normalize_chart_specs(
        [{"type": "radar", "data": [{"d": "x", "v": 1}], "x_key": "d", "y_keys": ["v"]}]
    )

    assert charts[0]["type"] == "bar"
    assert charts[0]["xKey"] == "d"
    assert charts[0]["yKeys"] == [{"key": "v", "label": None, "color": PALETTE[0]}]


def test_charts_without_data_are_dropped():
    assert normalize_chart_specs([{"type": "line", "data": []}, "junk", {"type": "pie"}]) == []
    assert normalize_chart_specs({"type": "bar"}) == []


def test_pie_chart_infers_category_and_value():
    chart = enrich_chart_spec(
        normalize_chart_specs([{"type": "pie", "data": [{"modality": "CT", "count": 5}]}])[0]
    )

    assert chart["categoryKey"] == "modality"
    assert chart["valueKey"] == "count"


def test_sankey_keeps_valid_nodes_and_links():
    flow = normalize_sankey(
        {
            "nodes": [
                {"id": "intake", "name": "Intake"},
                {"id": "read", "description": "2024-03-01"},
                {"id": "intake", "name": "Duplicate"},
                {"name": "missing id"},
            ],
            "links": [
                {"source": "intake", "target": "read", "value": "12"},
                {"source": "intake", "target": "ghost", "value": 3},
                {"source": "read", "target": "intake", "value": "many"},
            ],
        }
    )

    assert [node["id"] for node in flow["nodes"]] == ["intake", "read"]
    assert flow["nodes"][1]["name"] == "read"
    assert flow["links"] == [
        {"source": "intake", "target": "read", "value": 12, "color": None}
    ]


def test_sankey_without_links_is_dropped():
    raw = [{"type": "sankey", "nodes": [{"id": "a"}, {"id": "b"}], "links": []}]

    assert prepare_chart_specs(raw) == []


def test_stringify_for_prompt_truncates():
    assert stringify_for_prompt(None) == ""
    assert stringify_for_prompt({"a": 1}) == '{"a": 1}'
    assert stringify_for_prompt("x" * 20, limit=10) == "x" * 10 + "..."


@pytest.mark.anyio
async def test_classify_detects_chart_intent(fake_llm_factory):
    llm = fake_llm_factory(["Yes"])

    result = await VisualizationService(llm=llm).classify("Trend of CT reads by week")

    assert result == {"should_visualize": True, "raw": "yes"}
    assert llm.calls[0]["max_tokens"] == 5
    assert llm.calls[0]["temperature"] == 0


@pytest.mark.anyio
async def test_classify_reasons(fake_llm_factory):
    service = VisualizationService(llm=fake_llm_factory(has_api_key=False))
    assert await service.classify("  ") == {
        "should_visualize": False,
        "reason": "missing-question",
    }
    assert (await service.classify("q"))["reason"] == "missing-api-key"

    failing = VisualizationService(llm=fake_llm_factory(error=RuntimeError("down")))
    assert (await failing.classify("q"))["reason"] == "error"


@pytest.mark.anyio
async def test_classify_no_answer(fake_llm_factory):
    result = await VisualizationService(llm=fake_llm_factory(["no"])).classify("CPT for MRI?")

    assert result["should_visualize"] is False


@pytest.mark.anyio
async def test_generate_returns_prepared_charts(fake_llm_factory):
    content = json.dumps(
        {"charts": [{"type": "line", "data": [{"week": "W1", "reads": 10}]}]}
    )
    llm = fake_llm_factory([content])

    result = await VisualizationService(llm=llm).generate(
        "Trend?", "Reads rose", raw={"rows": [1, 2]}
    )

    assert result["charts"][0]["xKey"] == "week"
    assert "reason" not in result
    prompt = llm.calls[0]["messages"][0]["content"]
    assert "Do not output patientId information into any chart" in prompt
    assert 'Context: {"rows": [1, 2]}' in prompt
    assert llm.calls[0]["json_mode"] is True


@pytest.mark.anyio
async def test_generate_reasons(fake_llm_factory):
    service = VisualizationService(llm=fake_llm_factory(has_api_key=False))
    assert await service.generate("q", "") == {"charts": [], "reason": "missing-context"}
    assert (await service.generate("q", "a"))["reason"] == "missing-api-key"

    failing = VisualizationService(llm=fake_llm_factory(error=RuntimeError("down")))
    assert (await failing.generate("q", "a"))["reason"] == "error"


@pytest.mark.anyio
async def test_generate_handles_unparseable_output(fake_llm_factory):
    result = await VisualizationService(llm=fake_llm_factory(["not json"])).generate("q", "a")

    assert result == {"charts": []}
