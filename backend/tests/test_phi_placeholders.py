from types import SimpleNamespace

import pytest

from app.config import settings
from app.services.metrics import get_event_counters
from app.services.phi import (
    InvalidPayloadError,
    load_placeholders,
    restore_placeholders,
    store_placeholders,
    substitute_placeholders,
    tokenize_records,
)
from app.utils import cache


def test_tokenize_records_replaces_non_empty_strings():
    rows = [
        {"patientId": "MRN-001", "name": "Ada", "age": 54, "note": ""},
        {"patientId": "MRN-002", "name": None},
    ]

    tokenized, table = tokenize_records(rows)

    assert tokenized == [
        {"patientId": "patientId_0", "name": "name_0", "age": 54, "note": ""},
        {"patientId": "patientId_1", "name": None},
    ]
    assert table == {
        "patientId_0": "MRN-001",
        "name_0": "Ada",
        "patientId_1": "MRN-002",
    }
    assert rows[0]["patientId"] == "MRN-001"


@pytest.mark.parametrize("payload", [{"patientId": "x"}, ["x"], None, [{"a": 1}, 2]])
def test_tokenize_records_rejects_non_object_arrays(payload):
    with pytest.raises(InvalidPayloadError, match="Body must be an array of objects"):
        tokenize_records(payload)


def test_tokenize_records_accepts_empty_array():
    assert tokenize_records([]) == ([], {})


def test_substitute_placeholders_only_replaces_known_tokens():
    table = {"patientId_0": "MRN-001", "name_0": "Ada"}

    text, count = substitute_placeholders(
        "Study for patientId_0 (name_0) compared with patientId_7 and patientId_01.", table
    )

    assert text == "Study for MRN-001 (Ada) compared with patientId_7 and patientId_01."
    assert count == 2


def test_substitute_placeholders_without_table():
    assert substitute_placeholders("patientId_0", {}) == ("patientId_0", 0)


@pytest.mark.anyio
async def test_store_and_restore_placeholders():
    await store_placeholders("exec-1", {"patientId_0": "MRN-001"})

    restored = await restore_placeholders("Result for patientId_0", "exec-1")

    assert restored == "Result for MRN-001"
    assert get_event_counters()["placeholders_substituted"] == 1


@pytest.mark.anyio
async def test_restore_without_execution_id_is_noop():
    await store_placeholders("exec-1", {"patientId_0": "MRN-001"})

    assert await restore_placeholders("patientId_0", None) == "patientId_0"
    assert await restore_placeholders("patientId_0", "exec-other") == "patientId_0"


@pytest.mark.anyio
async def test_placeholders_expire(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(cache, "time", SimpleNamespace(monotonic=lambda: clock["now"]))

    await store_placeholders("exec-2", {"name_0": "Ada"}, ttl_seconds=5)
    assert await load_placeholders("exec-2") == {"name_0": "Ada"}

    clock["now"] += 6
    assert await load_placeholders("exec-2") is None


@pytest.mark.anyio
async def test_store_placeholders_purges_expired_entries(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(cache, "time", SimpleNamespace(monotonic=lambda: clock["now"]))

    await store_placeholders("old", {"a_0": "x"}, ttl_seconds=1)
    clock["now"] += 2
    await store_placeholders("new", {"b_0": "y"})

    assert "phi:old" not in cache._cache
    assert "phi:new" in cache._cache


@pytest.mark.anyio
async def test_store_uses_configured_ttl(monkeypatch):
    clock = {"now": 0.0}
    monkeypatch.setattr(cache, "time", SimpleNamespace(monotonic=lambda: clock["now"]))
    monkeypatch.setattr(settings, "phi_placeholder_ttl_seconds", 10)

    await store_placeholders("exec-3", {"a_0": "x"})

    clock["now"] = 9.5
    assert await load_placeholders("exec-3") == {"a_0": "x"}
    clock["now"] = 10.0
    assert await load_placeholders("exec-3") is None
