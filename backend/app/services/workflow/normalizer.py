"""Reconcile the loosely shaped webhook responses into one reply.

Workflows answer with plain text, a JSON object, an object whose ``output``
is itself JSON text, objects nested under ``data``, or n8n item arrays. This
module reduces all of them to a reply string plus optional sources and
visualizations.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

JsonRecord = dict[str, Any]


@dataclass
class Source:
    url: str
    title: Optional[str] = None
    snippet: Optional[str] = None
    score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "snippet": self.snippet,
            "score": self.score,
        }


@dataclass
class NormalizedReply:
    reply: str
    sources: list[Source] | None = None
    visualizations: Any = None
    execution_id: Optional[str] = None


def unwrap_payload(obj: JsonRecord | None) -> JsonRecord | None:
    """Follow ``output`` (JSON text or object) and then ``data`` wrappers."""
    if obj is None:
        return None
    output = obj.get("output")
    if isinstance(output, str):
        try:
            inner = json.loads(output)
        except ValueError:
            inner = None
        if isinstance(inner, dict):
            obj = inner
    output = obj.get("output")
    if isinstance(output, dict):
        obj = output
    data = obj.get("data")
    if isinstance(data, dict):
        obj = data
    return obj


def extract_reply(obj: JsonRecord | None, fallback_text: str) -> str:
    if obj:
        for key in ("reply", "message", "response"):
            value = obj.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback_text


def _coerce_score(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = float(value)
    elif isinstance(value, str):
        try:
            score = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return score if math.isfinite(score) else None


def extract_sources(obj: JsonRecord | None) -> list[Source] | None:
    """Map ``obj.sources`` to :class:`Source`; entries without a URL are dropped."""
    if not obj or not isinstance(obj.get("sources"), list):
        return None
    sources: list[Source] = []
    for entry in obj["sources"]:
        if not isinstance(entry, dict):
            continue
        url = entry.get("url") if isinstance(entry.get("url"), str) else entry.get("link")
        if not isinstance(url, str) or not url:
            continue
        sources.append(
            Source(
                url=url,
                title=entry["title"] if isinstance(entry.get("title"), str) else None,
                snippet=entry["snippet"] if isinstance(entry.get("snippet"), str) else None,
                score=_coerce_score(entry.get("score")),
            )
        )
    return sources


def extract_visualizations(obj: JsonRecord | None) -> list | None:
    if not obj:
        return None
    for key in ("visualizations", "charts"):
        if isinstance(obj.get(key), list):
            return obj[key]
    return None


def clean_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\[\s*\]", "", text)
    text = re.sub(r"\(\s*\)", "", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def strip_url_from_text(text: str, url: str) -> str:
    """Remove ``url`` from ``text`` whether bare or wrapped in [], () or <>."""
    if not text or not url:
        return text
    for variant in (url, f"[{url}]", f"({url})", f"<{url}>"):
        text = text.replace(variant, "")
    return clean_whitespace(text)


def normalize_visualizations(value: Any) -> Any:
    """Keep arrays and objects, parse JSON text, drop everything else (None)."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, (dict, list)) else None
    if isinstance(value, dict):
        return value
    return None


def extract_execution_id(header_value: str | None, *candidates: Any) -> Optional[str]:
    if header_value:
        return header_value
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        for key in ("executionId", "execution_id"):
            value = candidate.get(key)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
                return str(value)
    return None


def normalize_workflow_reply(
    text: str,
    parsed: Any,
    execution_id_header: str | None = None,
) -> NormalizedReply:
    """Reduce a webhook response to reply, sources and visualizations."""
    text = text or ""
    top = parsed if isinstance(parsed, dict) else None
    obj = unwrap_payload(top)
    sources: list[Source] | None = None
    visualizations: Any = None

    if isinstance(parsed, list):
        first = parsed[0] if parsed else None
        if isinstance(first, dict) and isinstance(first.get("message"), str) and first["message"]:
            reply = first["message"]
        elif isinstance(first, dict):
            obj = unwrap_payload(first)
            reply = extract_reply(obj, text)
        else:
            reply = text
    else:
        reply = extract_reply(obj, text)
        sources = extract_sources(obj)
        visualizations = extract_visualizations(obj)

    if sources:
        for source in sources:
            reply = strip_url_from_text(reply, source.url)

    normalized_visualizations = normalize_visualizations(visualizations)
    if normalized_visualizations is not None:
        visualizations = normalized_visualizations

    return NormalizedReply(
        reply=reply,
        sources=sources,
        visualizations=visualizations,
        execution_id=extract_execution_id(execution_id_header, top, obj),
    )
