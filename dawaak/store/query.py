"""Filtering, search, sorting and pagination over a list of records."""
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .errors import ValidationError
from .schema import SEARCH_FIELDS

# Query-string keys that are options, not field filters.
RESERVED_PARAMS = frozenset({"page", "limit", "offset", "sort", "search", "include_deleted"})

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Query:
    filters: dict[str, Any] = field(default_factory=dict)
    search: str | None = None
    sort: str | None = None
    offset: int = 0
    limit: int | None = None
    page: int = 1
    include_deleted: bool = False


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _matches(record_value: Any, expected: Any) -> bool:
    if isinstance(expected, Mapping):
        if "$regex" in expected:
            flags = re.IGNORECASE if "i" in (expected.get("$options") or "i") else 0
            try:
                pattern = re.compile(str(expected["$regex"]), flags)
            except re.error as e:
                raise ValidationError(f"Invalid pattern: {e}") from e
            return record_value is not None and bool(pattern.search(_as_text(record_value)))
        if "$contains" in expected:
            needle = str(expected["$contains"]).lower()
            return record_value is not None and needle in _as_text(record_value).lower()
    if record_value == expected:
        return True
    # Query strings arrive as text: "true" matches True, "42" matches 42
    if isinstance(expected, str) and record_value is not None and not isinstance(record_value, (dict, list)):
        return _as_text(record_value) == expected
    return False


def matches_filters(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(_matches(record.get(key), expected) for key, expected in filters.items())


def matches_search(record: Mapping[str, Any], term: str, fields: Iterable[str] = SEARCH_FIELDS) -> bool:
    needle = term.lower()
    return any(
        record.get(name) is not None and needle in _as_text(record.get(name)).lower()
        for name in fields
    )


def _sort_key(value: Any) -> tuple:
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, _as_text(value))


def sort_records(records: list[dict[str, Any]], sort: str) -> list[dict[str, Any]]:
    """``field`` ascending, ``-field`` descending. Order among equal keys is not guaranteed."""
    descending = sort.startswith("-")
    name = sort[1:] if descending else sort
    if not name:
        raise ValidationError("Sort field is empty.")
    return sorted(records, key=lambda r: _sort_key(r.get(name)), reverse=descending)


def _parse_int(raw: str, name: str, minimum: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be an integer.") from None
    if value < minimum:
        raise ValidationError(f"'{name}' must be >= {minimum}.")
    return value


def parse_query(params: Mapping[str, str], default_limit: int = 100, max_limit: int = 1000) -> Query:
    """
    Turns REST query parameters into a Query; unknown keys become exact-match filters.

    ``offset`` wins over ``page``. With an offset the reported ``page`` is the
    page that holds the first returned row (``offset // limit + 1``), so an
    offset that is not a multiple of ``limit`` still returns rows from ``offset``.
    """
    query = Query(limit=default_limit)
    if params.get("limit") not in (None, ""):
        query.limit = _parse_int(params["limit"], "limit", 1)
        if query.limit > max_limit:
            raise ValidationError(f"'limit' must be <= {max_limit}.")
    if params.get("offset") not in (None, ""):
        query.offset = _parse_int(params["offset"], "offset", 0)
        query.page = query.offset // query.limit + 1
    elif params.get("page") not in (None, ""):
        query.page = _parse_int(params["page"], "page", 1)
        query.offset = (query.page - 1) * query.limit
    query.sort = params.get("sort") or None
    query.search = (params.get("search") or "").strip() or None
    query.include_deleted = (params.get("include_deleted") or "").lower() in _TRUE_VALUES
    query.filters = {k: v for k, v in params.items() if k not in RESERVED_PARAMS}
    return query
