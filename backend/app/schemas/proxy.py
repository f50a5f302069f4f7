"""Pydantic schemas for the spreadsheet preview."""

from typing import Any

from pydantic import BaseModel


class SheetPreview(BaseModel):
    name: str
    rows: list[list[Any]] = []


class XlsxPreviewResponse(BaseModel):
    filename: str
    sheets: list[SheetPreview] = []
