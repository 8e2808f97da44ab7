# karuna/routers/donations.py
from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse

from karuna.core.config import Settings, get_settings
from karuna.core.errors import KarunaError
from karuna.core.security import get_current_user
from karuna.deps import get_event_sink, get_repo
from karuna.schemas import DonationIn, SubmissionOut
from karuna.services.trigger import fire_matching

router = APIRouter(prefix="/api/donations", tags=["donations"])


@router.post("", response_model=SubmissionOut)
async def log_donation(
    payload: DonationIn,
    background: BackgroundTasks,
    user=Depends(get_current_user),
    repo=Depends(get_repo),
    events=Depends(get_event_sink),
    settings: Settings = Depends(get_settings),
):
    doc = payload.model_dump(exclude={"pickup_location"})
    doc.update({
        "donor_id": user["id"],
        "pickup_location": {
            "lat": payload.pickup_location.latitude,
            "lng": payload.pickup_location.longitude,
        },
        "notes": payload.notes or None,
        "status": "available",
    })
    try:
        saved = await repo.insert_donation(doc)
    except KarunaError:
        return JSONResponse({"error": "Failed to log donation"}, status_code=500)

    background.add_task(fire_matching, repo, settings, "new_donation", donation_id=saved["id"], events=events)
    return {"success": True, "donation_id": saved["id"], "message": "Donation logged successfully"}


@router.get("/{donation_id}")
async def get_donation(donation_id: int, user=Depends(get_current_user), repo=Depends(get_repo)):
    doc = await repo.get_donation(donation_id)
    if not doc:
        return JSONResponse({"error": "Donation not found"}, status_code=404)
    # donor or facilitators only
    if doc.get("donor_id") != user["id"] and user.get("role") != "facilitator":
        return JSONResponse({"error": "Access denied"}, status_code=403)
    return doc
