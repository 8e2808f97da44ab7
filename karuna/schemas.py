from typing import Optional, List, Literal
from pydantic import BaseModel, Field
from datetime import datetime

# --------------------------
# Shared Submodels
# --------------------------
class LatLon(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

class LatLng(BaseModel):
    lat: float
    lng: float

# --------------------------
# Reports
# --------------------------
ReportStatus = Literal["pending_match", "assigned", "fulfilled", "cancelled"]

class ReportIn(BaseModel):
    location: LatLon
    description: Optional[str] = None
    people_in_need: int = Field(gt=0)
    video_url: Optional[str] = None

class ReportOut(BaseModel):
    id: int
    reporter_id: Optional[str] = None
    location: LatLng
    description: Optional[str] = None
    people_in_need: int
    video_url: Optional[str] = None
    status: ReportStatus
    mission_id: Optional[int] = None

# --------------------------
# Donations
# --------------------------
DonationStatus = Literal["available", "assigned", "completed", "cancelled"]

class DonationIn(BaseModel):
    resource_type: str = Field(min_length=1)
    quantity: str = Field(min_length=1)
    pickup_location: LatLon
    pickup_address: str = Field(min_length=1)
    pickup_contact: str = Field(min_length=1)
    pickup_time_preference: str = Field(min_length=1)
    notes: Optional[str] = None

class SubmissionOut(BaseModel):
    success: bool = True
    message: str
    report_id: Optional[int] = None
    donation_id: Optional[int] = None

# --------------------------
# Matching
# --------------------------
# new_report | new_donation | manual; other names are logged, not rejected
Trigger = str
MissionStatus = Literal["unassigned", "accepted", "in_progress", "completed", "cancelled"]

class MatchTrigger(BaseModel):
    trigger: Trigger = "manual"
    report_id: Optional[int] = None
    donation_id: Optional[int] = None

class MatchCandidate(BaseModel):
    report_id: int
    donation_id: int
    distance: float              # meters
    compatibility_score: float

class MissionOut(BaseModel):
    id: int
    report_id: int
    donation_id: int
    status: MissionStatus
    estimated_distance: float    # km
    estimated_duration: int      # minutes
    created_at: Optional[datetime] = None
    distance_to_pickup: Optional[float] = None

class MatchRunOut(BaseModel):
    success: bool = True
    matches_found: int
    missions_created: int
    created_missions: List[MissionOut] = []
