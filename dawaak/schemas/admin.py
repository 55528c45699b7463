from typing import Any

from pydantic import BaseModel


class ImportRequest(BaseModel):
    """Tables to replace wholesale: ``{"doctors": [...], ...}``."""
    data: dict[str, list[dict[str, Any]]]


class ImportResponse(BaseModel):
    imported: dict[str, int]


class PurgeResponse(BaseModel):
    table: str
    removed: int
