import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from dawaak.api.deps import get_actor, get_current_session, get_current_user, get_store
from dawaak.core.config import settings
from dawaak.core.rate_limit import limiter
from dawaak.core.security import verify_dummy_password, verify_password
from dawaak.schemas import LoginRequest, RegisterRequest, TokenResponse
from dawaak.services.accounts import close_session, open_session, public_user, with_password_hash
from dawaak.store import AuditContext, RecordStore
from dawaak.store.timestamps import parse_iso, to_iso, utc_now

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
_AUTH_LIMIT = f"{settings.rate_limit_per_minute}/minute"
_LOGIN_LIMIT = f"{settings.rate_limit_login_per_minute}/minute"

_BAD_CREDENTIALS = "اسم المستخدم أو كلمة المرور غير صحيحة"


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(_AUTH_LIMIT)
def register(
    request: Request,
    body: RegisterRequest,
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    # Duplicate username/email is rejected by the store's unique check (409)
    user = store.insert(
        "users",
        with_password_hash(
            {
                **body.model_dump(),
                "email": str(body.email),
                "user_type": "user",
                "is_active": True,
                "last_login": None,
                "login_attempts": 0,
                "is_locked": False,
            }
        ),
        actor=actor,
    )
    log.info("User registered: %s", user["id"])
    return public_user(user)


def _register_failure(store: RecordStore, user: dict[str, Any], actor: AuditContext) -> None:
    # An expired lock starts a fresh count
    previous = 0 if user.get("is_locked") else int(user.get("login_attempts") or 0)
    attempts = previous + 1
    patch: dict[str, Any] = {"login_attempts": attempts}
    if attempts >= settings.max_login_attempts:
        patch["is_locked"] = True
        patch["locked_until"] = to_iso(utc_now() + timedelta(minutes=settings.lockout_minutes))
        log.warning("Account %s locked after %d failed logins", user["id"], attempts)
    store.update("users", user["id"], patch, actor=actor)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(_LOGIN_LIMIT)
def login(
    request: Request,
    body: LoginRequest,
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    user = store.find_one("users", {"username": body.username.strip()})
    if not user or user.get("is_active") is False:
        verify_dummy_password(body.password)
        raise HTTPException(status_code=401, detail=_BAD_CREDENTIALS)

    locked_until = parse_iso(user.get("locked_until"))
    if user.get("is_locked") and locked_until and locked_until > utc_now():
        minutes = max(1, int((locked_until - utc_now()).total_seconds() // 60) + 1)
        raise HTTPException(status_code=403, detail=f"الحساب مقفل لمدة {minutes} دقيقة أخرى")

    if not verify_password(body.password, user.get("password_hash")):
        _register_failure(store, user, actor)
        raise HTTPException(status_code=401, detail=_BAD_CREDENTIALS)

    user = store.update(
        "users",
        user["id"],
        {"login_attempts": 0, "is_locked": False, "locked_until": None, "last_login": to_iso(utc_now())},
        actor=AuditContext(user["id"], actor.ip_address, actor.user_agent),
    )
    session, token = open_session(store, user, AuditContext(user["id"], actor.ip_address, actor.user_agent))
    return TokenResponse(access_token=token, expires_at=session["expires_at"], user=public_user(user))


@router.post("/logout")
def logout(
    resolved: tuple[dict[str, Any], dict[str, Any]] = Depends(get_current_session),
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    session, _user = resolved
    close_session(store, session["id"], actor=actor)
    return {"success": True}


@router.get("/me")
def me(user: dict[str, Any] = Depends(get_current_user)):
    return public_user(user)
