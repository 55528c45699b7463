"""User credentials and sessions kept as ordinary record-store tables."""
import logging
from datetime import timedelta
from typing import Any, Mapping

from dawaak.core.config import settings
from dawaak.core.security import create_access_token, decode_access_token, hash_password
from dawaak.store import AuditContext, RecordStore, ValidationError
from dawaak.store.timestamps import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)


def public_user(user: Mapping[str, Any] | None) -> dict[str, Any] | None:
    return RecordStore.redact(user)


def with_password_hash(data: Mapping[str, Any]) -> dict[str, Any]:
    """Replaces a plain ``password`` field with its bcrypt ``password_hash``."""
    out = dict(data)
    if "password_hash" in out:
        raise ValidationError("'password_hash' cannot be set directly; send 'password'.")
    if "password" in out:
        password = out.pop("password")
        if not isinstance(password, str) or len(password) < 6:
            raise ValidationError("Password must be at least 6 characters.")
        out["password_hash"] = hash_password(password)
    return out


def open_session(
    store: RecordStore,
    user: Mapping[str, Any],
    actor: AuditContext | None = None,
) -> tuple[dict[str, Any], str]:
    """Creates a ``sessions`` record and the JWT that points at it."""
    expires_at = utc_now() + timedelta(hours=settings.session_ttl_hours)
    session = store.insert(
        "sessions",
        {
            "user_id": user["id"],
            "ip_address": actor.ip_address if actor else None,
            "user_agent": actor.user_agent if actor else None,
            "expires_at": to_iso(expires_at),
            "is_active": True,
        },
        actor=actor,
    )
    token = create_access_token(
        {"sub": user["id"], "sid": session["id"], "type": user.get("user_type", "user")},
        expires_at,
    )
    return session, token


def resolve_session(store: RecordStore, token: str) -> tuple[dict[str, Any], dict[str, Any]] | None:
    """(session, user) for a valid token; None when the token, session or user is no longer usable."""
    payload = decode_access_token(token)
    if not payload or "sid" not in payload or "sub" not in payload:
        return None
    session = store.find_one("sessions", {"id": payload["sid"]})
    if not session or not session.get("is_active"):
        return None
    expires_at = parse_iso(session.get("expires_at"))
    if expires_at is None or expires_at <= utc_now():
        logger.info("Session %s expired", session["id"])
        return None
    user = store.find_one("users", {"id": payload["sub"]})
    if not user or user["id"] != session.get("user_id") or user.get("is_active") is False:
        return None
    return session, user


def close_session(store: RecordStore, session_id: str, actor: AuditContext | None = None) -> dict[str, Any]:
    return store.update(
        "sessions",
        session_id,
        {"is_active": False, "ended_at": to_iso(utc_now())},
        actor=actor,
    )
