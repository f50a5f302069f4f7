"""PHI placeholder tokenization and substitution.

Before a workflow sends patient rows through an LLM it calls ``/api/hash-pid``,
which swaps each identifier for a synthetic token such as ``patientId_0`` and
remembers the mapping for a few minutes under the workflow's execution id.
When the reply comes back, tokens found in that mapping are replaced by the
real values so the user sees the identifiers without the model ever seeing
them.
"""

import logging
import re
from typing import Any

from app.config import settings
from app.services.metrics import record_event
from app.utils.cache import CacheKeys, get_cached, purge_expired, set_cached

logger = logging.getLogger("veston.phi")

PLACEHOLDER_PATTERN = re.compile(r"\b[A-Za-z][A-Za-z0-9]*_\d+\b")


class InvalidPayloadError(ValueError):
    """Raised when the tokenization body is not a list of objects."""


def make_token(key: str, row_index: int) -> str:
    return f"{key}_{row_index}"


def tokenize_records(payload: Any) -> tuple[list[dict[str, Any]], dict[str, str]]:
    """Replace every non-empty string value with ``<key>_<row index>``.

    Returns the tokenized rows and the token -> original value table.
    """
    if not isinstance(payload, list) or not all(isinstance(entry, dict) for entry in payload):
        raise InvalidPayloadError("Body must be an array of objects")

    tokenized: list[dict[str, Any]] = []
    table: dict[str, str] = {}
    for row_index, entry in enumerate(payload):
        row: dict[str, Any] = {}
        for key, value in entry.items():
            if isinstance(value, str) and value:
                token = make_token(key, row_index)
                row[key] = token
                table[token] = value
            else:
                row[key] = value
        tokenized.append(row)
    return tokenized, table


async def store_placeholders(
    execution_id: str, table: dict[str, str], ttl_seconds: int | None = None
) -> None:
    ttl = ttl_seconds if ttl_seconds is not None else settings.phi_placeholder_ttl_seconds
    purged = await purge_expired()
    if purged:
        logger.debug("Purged %d expired cache entries", purged)
    await set_cached(CacheKeys.placeholders(execution_id), dict(table), ttl)
    logger.info("Stored %d placeholders ttl=%ds", len(table), ttl)


async def load_placeholders(execution_id: str | None) -> dict[str, str] | None:
    if not execution_id:
        return None
    return await get_cached(CacheKeys.placeholders(execution_id))


def substitute_placeholders(text: str, table: dict[str, str]) -> tuple[str, int]:
    """Replace known tokens in ``text``; unknown token-shaped words stay as they are."""
    if not text or not table:
        return text, 0
    count = 0

    def _replace(match: re.Match) -> str:
        nonlocal count
        token = match.group(0)
        if token in table:
            count += 1
            return table[token]
        return token

    return PLACEHOLDER_PATTERN.sub(_replace, text), count


async def restore_placeholders(text: str, execution_id: str | None) -> str:
    """Substitute the placeholders stored for ``execution_id`` into ``text``."""
    table = await load_placeholders(execution_id)
    if not table:
        return text
    restored, count = substitute_placeholders(text, table)
    if count:
        record_event("placeholders_substituted", count=count)
    return restored
