# karuna/routers/reports.py
from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse

from karuna.core.config import Settings, get_settings
from karuna.core.errors import KarunaError
from karuna.core.security import get_current_user
from karuna.deps import get_event_sink, get_repo
from karuna.schemas import ReportIn, SubmissionOut
from karuna.services.trigger import fire_matching

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.post("", response_model=SubmissionOut)
async def submit_report(
    payload: ReportIn,
    background: BackgroundTasks,
    user=Depends(get_current_user),
    repo=Depends(get_repo),
    events=Depends(get_event_sink),
    settings: Settings = Depends(get_settings),
):
    doc = {
        "reporter_id": user["id"],
        "location": {"lat": payload.location.latitude, "lng": payload.location.longitude},
        "description": payload.description or None,
        "people_in_need": payload.people_in_need,
        "video_url": payload.video_url,
        "status": "pending_match",
    }
    try:
        saved = await repo.insert_report(doc)
    except KarunaError:
        return JSONResponse({"error": "Failed to create report"}, status_code=500)

    background.add_task(fire_matching, repo, settings, "new_report", report_id=saved["id"], events=events)
    return {"success": True, "report_id": saved["id"], "message": "Report submitted successfully"}


@router.get("/{report_id}")
async def get_report(report_id: int, user=Depends(get_current_user), repo=Depends(get_repo)):
    doc = await repo.get_report(report_id)
    if not doc:
        return JSONResponse({"error": "Report not found"}, status_code=404)
    # reporter or facilitators only
    if doc.get("reporter_id") != user["id"] and user.get("role") != "facilitator":
        return JSONResponse({"error": "Access denied"}, status_code=403)
    return doc
