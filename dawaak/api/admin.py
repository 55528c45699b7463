"""Admin API: bearer token of an admin user. Stats, export/import, purge, reset."""
import json
import time
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from dawaak.api.deps import get_actor, get_store, require_admin
from dawaak.core.config import settings
from dawaak.schemas import ImportRequest, ImportResponse, PurgeResponse
from dawaak.services.seed import seed_defaults
from dawaak.store import AuditContext, RecordStore
from dawaak.store.timestamps import to_iso, utc_now

router = APIRouter(prefix="/admin", tags=["admin"])

EXPORT_VERSION = "1.0.0"


@router.get("/stats")
def stats(
    request: Request,
    _admin: dict[str, Any] = Depends(require_admin),
    store: RecordStore = Depends(get_store),
):
    counts = store.stats()
    return {
        "tables": counts,
        "total_records": sum(counts.values()),
        "storage": store.persistence.name,
        "last_save": store.last_save_at,
        "uptime_seconds": round(time.monotonic() - request.app.state.started_at, 1),
    }


@router.get("/export")
def export(
    admin: dict[str, Any] = Depends(require_admin),
    store: RecordStore = Depends(get_store),
):
    # Full backup: soft-deleted records and password hashes included so an import restores logins
    body = {
        "platform": settings.platform_name,
        "exported_at": to_iso(utc_now()),
        "exported_by": admin["id"],
        "version": EXPORT_VERSION,
        "data": store.export(),
    }
    return Response(
        content=json.dumps(body, ensure_ascii=False, default=str),
        media_type="application/json",
        headers={"Content-Disposition": "attachment; filename=dawaak-backup.json"},
    )


@router.post("/import", response_model=ImportResponse)
def import_tables(
    body: ImportRequest,
    _admin: dict[str, Any] = Depends(require_admin),
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    return ImportResponse(imported=store.import_tables(body.data, actor=actor))


@router.post("/tables/{table}/purge", response_model=PurgeResponse)
def purge(
    table: str,
    _admin: dict[str, Any] = Depends(require_admin),
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    return PurgeResponse(table=table, removed=store.purge(table, actor=actor))


@router.post("/reset")
def reset(
    _admin: dict[str, Any] = Depends(require_admin),
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    """Empties every table (audit trail kept) and restores the default content."""
    store.reset(actor=actor)
    seed_defaults(store, settings)
    return {"success": True, "tables": store.stats()}
