# karuna/routers/missions.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from karuna.core.security import require_role
from karuna.deps import get_repo
from karuna.schemas import MissionOut, MissionStatus

router = APIRouter(prefix="/api/missions", tags=["missions"])


@router.get("", response_model=List[MissionOut])
async def list_missions(
    status: MissionStatus = "unassigned",
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    user=Depends(require_role("facilitator")),
    repo=Depends(get_repo),
):
    missions = await repo.list_missions(status)
    if lat is None or lng is None:
        return missions

    # closest pickup first
    here = {"lat": lat, "lng": lng}
    out = []
    for m in missions:
        donation = await repo.get_donation(m["donation_id"])
        if donation and donation.get("pickup_location"):
            m["distance_to_pickup"] = await repo.distance_m(here, donation["pickup_location"])
        out.append(m)
    out.sort(key=lambda m: m.get("distance_to_pickup", float("inf")))
    return out
