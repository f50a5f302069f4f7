"""Pydantic schemas for PHI placeholder tokenization."""

from typing import Any

from pydantic import BaseModel, Field


class HashPidResponse(BaseModel):
    """Tokenized rows, serialized with the camelCase key workflows read."""

    ok: bool = True
    tokenized_payload: list[dict[str, Any]] = Field(
        default_factory=list, serialization_alias="tokenizedPayload"
    )
    placeholders_stored: bool = Field(False, serialization_alias="placeholdersStored")
