import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, Request

from dawaak.api.deps import get_actor, get_current_user, get_store
from dawaak.core.config import settings
from dawaak.core.rate_limit import limiter
from dawaak.schemas import ConsultRequest, ConsultResponse
from dawaak.services import ai_consult
from dawaak.store import AuditContext, RecordStore
from dawaak.store.timestamps import to_iso, utc_now

log = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/consult", response_model=ConsultResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
def consult(
    request: Request,
    body: ConsultRequest,
    user: dict[str, Any] = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
    actor: AuditContext = Depends(get_actor),
):
    t0 = time.perf_counter()
    answer, usage = ai_consult.run_consultation(body.query, body.lang)
    latency_ms = round((time.perf_counter() - t0) * 1000, 2)
    record = store.insert(
        "ai_consultations",
        {
            "user_id": user["id"],
            "query": body.query,
            "ai_response": answer,
            "response_time": to_iso(utc_now()),
            "latency_ms": latency_ms,
            "model": settings.openai_model,
            "usage": usage,
            "is_reviewed": False,
        },
        actor=actor,
    )
    log.info("AI consultation %s stored (%.0f ms)", record["id"], latency_ms)
    return ConsultResponse(response=answer, consultation_id=record["id"])
