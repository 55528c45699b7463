"""REST mapping of the record store: /tables/{table}[/{id}]."""
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status

from dawaak.api.deps import get_actor, get_optional_user, get_store
from dawaak.core.config import settings
from dawaak.schemas import PageResponse
from dawaak.services.accounts import with_password_hash
from dawaak.store import AuditContext, RecordStore, ValidationError, parse_query
from dawaak.store.schema import AUDIT_TABLE, ERROR_TABLE, PRIVATE_FIELDS

router = APIRouter(prefix="/tables", tags=["tables"])

# Admin only, reads included
ADMIN_TABLES = frozenset({"sessions", AUDIT_TABLE, ERROR_TABLE})
# Writes need an admin
ADMIN_WRITE_TABLES = ADMIN_TABLES | {"users", "settings"}
# Account state a user may not change on their own record
PROTECTED_USER_FIELDS = frozenset(
    {"user_type", "is_active", "is_locked", "login_attempts", "locked_until", "password", "password_hash"}
)

User = dict[str, Any] | None


def _is_admin(user: User) -> bool:
    return bool(user) and user.get("user_type") == "admin"


def _require_admin(user: User) -> None:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not _is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")


def _check_read(table: str, record_id: str | None, user: User) -> None:
    if table in ADMIN_TABLES:
        _require_admin(user)
    elif table == "users" and not (user and record_id == user["id"]):
        # The user list and other people's profiles
        _require_admin(user)


def _check_write(
    table: str,
    user: User,
    record_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    """``record_id`` and ``payload`` are given only for a PATCH, the one write a user may make on their own record."""
    if _is_admin(user):
        return
    if table == "users" and user and record_id == user["id"]:
        blocked = sorted(PROTECTED_USER_FIELDS & set(payload or {}))
        if blocked:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only an admin can change: {', '.join(blocked)}.",
            )
        return
    if table in ADMIN_WRITE_TABLES:
        _require_admin(user)


def _prepare(table: str, payload: dict[str, Any]) -> dict[str, Any]:
    if table == "users":
        return with_password_hash(payload)
    return payload


@router.get("/{table}", response_model=PageResponse)
def list_records(
    table: str,
    request: Request,
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
):
    _check_read(table, None, user)
    query = parse_query(request.query_params, settings.default_page_limit, settings.max_page_limit)
    sort_field = (query.sort or "").lstrip("-")
    if PRIVATE_FIELDS & (set(query.filters) | {sort_field}):
        raise ValidationError("Private fields cannot be used for filtering or sorting.")
    result = store.find_query(table, query)
    return PageResponse(
        data=[store.redact(r) for r in result.data],
        total=result.total,
        page=query.page,
        limit=query.limit,
        table=table,
    )


@router.get("/{table}/{record_id}")
def get_record(
    table: str,
    record_id: str,
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
):
    _check_read(table, record_id, user)
    return store.redact(store.get(table, record_id))


@router.post("/{table}", status_code=status.HTTP_201_CREATED)
def create_record(
    table: str,
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
    actor: AuditContext = Depends(get_actor),
):
    _check_write(table, user)
    return store.redact(store.insert(table, _prepare(table, payload), actor=actor))


@router.put("/{table}/{record_id}")
def replace_record(
    table: str,
    record_id: str,
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
    actor: AuditContext = Depends(get_actor),
):
    _check_write(table, user)
    body = _prepare(table, payload)
    if table == "users" and "password_hash" not in body:
        # A full replace keeps the credential unless a new password is sent
        body["password_hash"] = store.get(table, record_id).get("password_hash")
    return store.redact(store.replace(table, record_id, body, actor=actor))


@router.patch("/{table}/{record_id}")
def update_record(
    table: str,
    record_id: str,
    payload: dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
    actor: AuditContext = Depends(get_actor),
):
    _check_write(table, user, record_id, payload)
    return store.redact(store.update(table, record_id, _prepare(table, payload), actor=actor))


@router.delete("/{table}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(
    table: str,
    record_id: str,
    store: RecordStore = Depends(get_store),
    user: User = Depends(get_optional_user),
    actor: AuditContext = Depends(get_actor),
):
    _check_write(table, user)
    store.delete(table, record_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
