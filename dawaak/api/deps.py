from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dawaak.core.rate_limit import client_ip
from dawaak.services.accounts import resolve_session
from dawaak.store import AuditContext, RecordStore

security = HTTPBearer(auto_error=False)


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_optional_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    store: RecordStore = Depends(get_store),
) -> tuple[dict[str, Any], dict[str, Any]] | None:
    if not credentials:
        return None
    return resolve_session(store, credentials.credentials)


def get_optional_user(
    resolved: tuple[dict[str, Any], dict[str, Any]] | None = Depends(get_optional_session),
) -> dict[str, Any] | None:
    return resolved[1] if resolved else None


def get_current_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    resolved: tuple[dict[str, Any], dict[str, Any]] | None = Depends(get_optional_session),
) -> tuple[dict[str, Any], dict[str, Any]]:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session.",
        )
    return resolved


def get_current_user(
    resolved: tuple[dict[str, Any], dict[str, Any]] = Depends(get_current_session),
) -> dict[str, Any]:
    return resolved[1]


def require_admin(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    if user.get("user_type") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")
    return user


def get_actor(
    request: Request,
    resolved: tuple[dict[str, Any], dict[str, Any]] | None = Depends(get_optional_session),
) -> AuditContext:
    """Audit identity of the caller: bearer user when present, always IP and User-Agent."""
    return AuditContext(
        user_id=resolved[1]["id"] if resolved else None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
