"""Chart spec preparation and LLM-driven visualization helpers.

Chart specs are stored and returned in the camelCase shape the chart
components render (``xKey``, ``yKeys``, ``categoryKey``, ``valueKey``).
"""

import json
import logging
import math
import re
from typing import Any

from app.config import settings
from app.services.llm.client import LLMService

logger = logging.getLogger("veston.visuals")

CHART_TYPES = ("line", "bar", "area", "pie", "sankey")
DEFAULT_CHART_TYPE = "bar"

PALETTE = [
    "#7C3AED",
    "#2563EB",
    "#16A34A",
    "#EA580C",
    "#0891B2",
    "#F59E0B",
    "#EC4899",
    "#6366F1",
]

VISUALIZE_PATTERN = re.compile(r"yes|chart|graph")

PROMPT_CONTEXT_LIMIT = 3000

GENERATOR_INSTRUCTIONS = [
    "You create concise JSON chart specs for Recharts with a top-level `charts` array.",
    "Do not output patientId information into any chart",
    "Each chart has id, type (line|bar|area|pie|sankey), title, description, data (array of objects), "
    "xKey, yKeys (array of {key,label,color}), categoryKey, valueKey.",
    "Sankey charts instead use nodes (array of {id,name,color,description}) and links "
    "(array of {source,target,value,color}) to describe flows.",
    "When type is sankey, do not include data/xKey/yKeys/categoryKey/valueKey; provide only nodes and links.",
    "Each sankey node needs a unique string id and name (with an optional description string shown "
    "with the label); every link must reference those ids exactly (never indexes or labels) and must "
    "include a numeric value.",
    "For sankey nodes, include the most relevant timestamp or date from the case (e.g., admission time, "
    "procedure date) in the node name or description so the flow reads like a timeline.",
    "Drop any link that points to a missing node; always return at least two nodes for a sankey chart.",
    'Example sankey:{"charts":[{"id":"accession-flow","type":"sankey","title":"Accession flow",'
    '"nodes":[{"id":"source","name":"Source"},{"id":"lab","name":"Lab"},{"id":"archive","name":"Archive"}],'
    '"links":[{"source":"source","target":"lab","value":120},{"source":"lab","target":"archive","value":95}]}]}',
    "Always provide a distinct hex color for every yKeys entry. Only include data you can derive from "
    "the provided context.",
    "Respond with strict JSON that follows this schema and contains only the `charts` key.",
]

CLASSIFIER_INSTRUCTIONS = [
    "Return a single word `yes` or `no` indicating whether the user's query facilitates a data "
    "visualization (chart/graph) in the response.",
    "This can be through any sort of graph like a pie chart, bar chart, line graph, etc.",
    "The answer should always be 'yes' if the user is asking about an accession number. "
    "Most of the time visualizations are good.",
]


# ============================================
# Chart spec preparation
# ============================================


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed or "_" in trimmed:
            return False
        try:
            return math.isfinite(float(trimmed))
        except ValueError:
            return False
    return False


def to_number(value: Any) -> int | float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    number = float(str(value).strip())
    return int(number) if number.is_integer() else number


def normalize_row(row: Any) -> dict[str, Any]:
    if not isinstance(row, dict):
        return {}
    return {key: to_number(value) if is_numeric(value) else value for key, value in row.items()}


def _string_field(obj: dict, *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _normalize_series(raw: Any) -> list[dict[str, Any]] | None:
    if not isinstance(raw, list):
        return None
    series = []
    for index, item in enumerate(raw):
        if isinstance(item, str) and item:
            item = {"key": item}
        if not isinstance(item, dict) or not isinstance(item.get("key"), str) or not item["key"]:
            continue
        series.append(
            {
                "key": item["key"],
                "label": item["label"] if isinstance(item.get("label"), str) else None,
                "color": item["color"] if isinstance(item.get("color"), str) else PALETTE[index % len(PALETTE)],
            }
        )
    return series


def normalize_sankey(obj: dict) -> dict[str, Any] | None:
    """Validate sankey nodes and links; return None when the flow is unusable."""
    nodes: list[dict[str, Any]] = []
    seen: set[str] = set()
    for node in obj.get("nodes") or []:
        if not isinstance(node, dict):
            continue
        node_id = node.get("id")
        if isinstance(node_id, (int, float)) and not isinstance(node_id, bool):
            node_id = str(node_id)
        if not isinstance(node_id, str) or not node_id or node_id in seen:
            continue
        seen.add(node_id)
        nodes.append(
            {
                "id": node_id,
                "name": _string_field(node, "name") or node_id,
                "color": _string_field(node, "color"),
                "description": _string_field(node, "description"),
            }
        )

    links: list[dict[str, Any]] = []
    for link in obj.get("links") or []:
        if not isinstance(link, dict):
            continue
        source = link.get("source")
        target = link.get("target")
        source = str(source) if isinstance(source, (int, float)) and not isinstance(source, bool) else source
        target = str(target) if isinstance(target, (int, float)) and not isinstance(target, bool) else target
        if source not in seen or target not in seen or not is_numeric(link.get("value")):
            continue
        links.append(
            {
                "source": source,
                "target": target,
                "value": to_number(link["value"]),
                "color": _string_field(link, "color"),
            }
        )

    if len(nodes) < 2 or not links:
        return None
    return {"nodes": nodes, "links": links}


def normalize_chart_specs(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    charts = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            continue
        chart_type = entry.get("type") if entry.get("type") in CHART_TYPES else DEFAULT_CHART_TYPE
        chart: dict[str, Any] = {
            "id": _string_field(entry, "id") or f"chart-{index + 1}",
            "type": chart_type,
            "title": entry["title"] if isinstance(entry.get("title"), str) else None,
            "description": entry["description"] if isinstance(entry.get("description"), str) else None,
        }

        if chart_type == "sankey":
            flow = normalize_sankey(entry)
            if flow is None:
                continue
            chart.update(flow)
            charts.append(chart)
            continue

        data = [normalize_row(row) for row in entry["data"]] if isinstance(entry.get("data"), list) else []
        if not data:
            continue
        chart.update(
            {
                "data": data,
                "xKey": _string_field(entry, "xKey", "x_key"),
                "yKeys": _normalize_series(entry.get("yKeys", entry.get("y_keys"))),
                "categoryKey": _string_field(entry, "categoryKey", "category_key"),
                "valueKey": _string_field(entry, "valueKey", "value_key"),
            }
        )
        charts.append(chart)
    return charts


def enrich_chart_spec(chart: dict[str, Any]) -> dict[str, Any]:
    """Infer axis and series keys from the first data row when missing."""
    if chart["type"] == "sankey":
        return chart

    first_row = chart["data"][0] if chart["data"] else {}
    keys = list(first_row.keys())
    numeric_keys = [key for key in keys if is_numeric(first_row[key])]
    text_keys = [key for key in keys if not is_numeric(first_row[key])]

    if chart["type"] == "pie":
        category_key = chart.get("categoryKey") or (text_keys[0] if text_keys else None) or (
            keys[0] if keys else None
        )
        value_key = chart.get("valueKey") or (numeric_keys[0] if numeric_keys else None)
        if not value_key and keys:
            value_key = keys[1] if len(keys) > 1 else keys[0]
        return {**chart, "categoryKey": category_key, "valueKey": value_key}

    x_key = chart.get("xKey") or (text_keys[0] if text_keys else None) or (keys[0] if keys else None)
    y_keys = chart.get("yKeys")
    if not y_keys:
        candidates = numeric_keys or [key for key in keys if key]
        y_keys = [
            {"key": key, "label": key, "color": PALETTE[index % len(PALETTE)]}
            for index, key in enumerate(candidates)
        ]
    return {**chart, "xKey": x_key, "yKeys": y_keys}


def prepare_chart_specs(raw: Any) -> list[dict[str, Any]]:
    return [enrich_chart_spec(chart) for chart in normalize_chart_specs(raw)]


def stringify_for_prompt(raw: Any, limit: int = PROMPT_CONTEXT_LIMIT) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        text = raw
    else:
        try:
            text = json.dumps(raw, default=str)
        except (TypeError, ValueError):
            return ""
    return f"{text[:limit]}..." if len(text) > limit else text


# ============================================
# LLM helpers
# ============================================


class VisualizationService:
    def __init__(self, llm: LLMService | None = None):
        self.llm = llm or LLMService.get_instance()

    async def classify(self, question: str | None) -> dict[str, Any]:
        """Decide whether a question deserves a chart; never raises."""
        if not question or not question.strip():
            return {"should_visualize": False, "reason": "missing-question"}
        if not self.llm.has_api_key:
            logger.warning("Visual classifier unavailable: missing OPENAI_API_KEY")
            return {"should_visualize": False, "reason": "missing-api-key"}

        logger.info("Classifying visualization intent for %r", question[:140])
        prompt = "\n".join([*CLASSIFIER_INSTRUCTIONS, f"Question: {question}"])
        try:
            text = await self.llm.chat_completion(
                model=settings.visual_classifier_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
                max_tokens=5,
            )
        except Exception:
            logger.exception("Visual classification failed")
            return {"should_visualize": False, "reason": "error"}

        text = text.lower()
        return {"should_visualize": bool(VISUALIZE_PATTERN.search(text)), "raw": text}

    async def generate(
        self,
        question: str | None,
        answer: str | None,
        raw: Any = None,
        preview: str | None = None,
    ) -> dict[str, Any]:
        """Ask the model for chart specs derived from the reply; never raises."""
        if not question or not answer:
            return {"charts": [], "reason": "missing-context"}
        if not self.llm.has_api_key:
            logger.warning("Visual generator unavailable: missing OPENAI_API_KEY")
            return {"charts": [], "reason": "missing-api-key"}

        prompt_context = preview or stringify_for_prompt(raw)
        prompt = "\n".join(
            [
                *GENERATOR_INSTRUCTIONS,
                f"User question: {question}",
                f"Assistant reply: {answer}",
                f"Context: {prompt_context or '(none)'}",
            ]
        )
        try:
            content = await self.llm.chat_completion(
                model=settings.visual_generator_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.2,
                json_mode=True,
            )
        except Exception:
            logger.exception("Visual generation failed")
            return {"charts": [], "reason": "error"}

        try:
            parsed = json.loads(content or "{}")
        except ValueError:
            logger.warning("Failed to parse visual generator output")
            parsed = None

        raw_charts = None
        if isinstance(parsed, dict):
            raw_charts = parsed.get("charts") or parsed.get("visualizations")
        charts = prepare_chart_specs(raw_charts)
        logger.info("Prepared %d chart specs", len(charts))
        return {"charts": charts}
