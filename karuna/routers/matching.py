# karuna/routers/matching.py
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from karuna.core.config import Settings, get_settings
from karuna.core.errors import StoreUnavailable
from karuna.deps import get_event_sink, get_repo
from karuna.schemas import MatchRunOut, MatchTrigger
from karuna.services.matching import run_matching_pass

router = APIRouter(prefix="/api", tags=["matching"])

log = logging.getLogger("karuna.matching")


@router.post("/match-engine", response_model=MatchRunOut)
async def match_engine(
    payload: Optional[MatchTrigger] = Body(None),
    repo=Depends(get_repo),
    events=Depends(get_event_sink),
    settings: Settings = Depends(get_settings),
):
    payload = payload or MatchTrigger()
    try:
        result = await run_matching_pass(
            repo,
            payload.trigger,
            payload.report_id,
            payload.donation_id,
            logger=log,
            events=events,
            settings=settings,
        )
    except StoreUnavailable as ex:
        log.error("matching pass aborted: %s", ex)
        return JSONResponse({"error": "Store unavailable"}, status_code=500)
    except Exception:
        log.exception("unexpected error in matching pass")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    return {"success": True, **result}
