from typing import Any

from pydantic import BaseModel


class PageResponse(BaseModel):
    """Collection read envelope."""
    data: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    table: str
