# karuna/services/trigger.py
import logging
from typing import Optional

import httpx

from karuna.core.config import Settings
from karuna.core.errors import KarunaError
from karuna.services.matching import run_matching_pass

log = logging.getLogger("karuna.trigger")


async def fire_matching(
    repo,
    settings: Settings,
    trigger: str,
    report_id: Optional[int] = None,
    donation_id: Optional[int] = None,
    events=None,
) -> None:
    """
    At-most-once notification to the matching engine. Runs after the
    submission response has been sent; every failure is logged and dropped.
    """
    body = {"trigger": trigger}
    if report_id is not None:
        body["report_id"] = report_id
    if donation_id is not None:
        body["donation_id"] = donation_id

    if settings.match_engine_url:
        try:
            async with httpx.AsyncClient(timeout=20) as c:
                r = await c.post(settings.match_engine_url, json=body)
                r.raise_for_status()
        except httpx.HTTPError as ex:
            log.error("failed to trigger matching engine: %s", ex)
        return

    try:
        await run_matching_pass(repo, trigger, report_id, donation_id,
                                logger=log, events=events, settings=settings)
    except KarunaError as ex:
        log.error("matching pass after %s failed: %s", trigger, ex)
    except Exception:
        log.exception("matching pass after %s failed", trigger)
