"""Process-wide counters for pipeline events, exposed on /metrics."""

import logging
from collections import Counter

logger = logging.getLogger("veston.metrics")

_event_counters: Counter[str] = Counter()


def record_event(event: str, **fields) -> None:
    """Track and log a pipeline event."""
    _event_counters[event] += 1
    if fields:
        detail = " ".join(f"{k}={fields[k]}" for k in sorted(fields))
        logger.info("Pipeline event=%s count=%d %s", event, _event_counters[event], detail)
    else:
        logger.info("Pipeline event=%s count=%d", event, _event_counters[event])


def get_event_counters() -> dict[str, int]:
    return dict(_event_counters)


def reset_event_counters() -> None:
    _event_counters.clear()
