# karuna/repos/inmemory.py
import itertools
from datetime import datetime
from typing import Dict, List, Optional

from karuna.core.errors import CommitError
from karuna.core.geo import distance_between


class InMemoryRepo:
    """
    Dict-backed store for local runs and tests. Every method is a coroutine
    with no await between check and write, so claims are atomic per row.
    """

    def __init__(self):
        self.reports: Dict[int, dict] = {}
        self.donations: Dict[int, dict] = {}
        self.missions: Dict[int, dict] = {}
        self._seq = {
            "reports": itertools.count(1),
            "donations": itertools.count(1),
            "missions": itertools.count(1),
        }

    def _table(self, kind: str) -> Dict[int, dict]:
        return {"report": self.reports, "donation": self.donations}[kind]

    # Reports
    async def insert_report(self, doc: dict) -> dict:
        doc = dict(doc)
        doc["id"] = next(self._seq["reports"])
        doc.setdefault("status", "pending_match")
        doc.setdefault("created_at", datetime.utcnow())
        self.reports[doc["id"]] = doc
        return dict(doc)

    async def get_report(self, report_id: int) -> Optional[dict]:
        doc = self.reports.get(report_id)
        return dict(doc) if doc else None

    async def list_reports(self, status: Optional[str] = None) -> List[dict]:
        vals = self.reports.values()
        return [dict(r) for r in vals if (status is None or r["status"] == status)]

    # Donations
    async def insert_donation(self, doc: dict) -> dict:
        doc = dict(doc)
        doc["id"] = next(self._seq["donations"])
        doc.setdefault("status", "available")
        doc.setdefault("created_at", datetime.utcnow())
        self.donations[doc["id"]] = doc
        return dict(doc)

    async def get_donation(self, donation_id: int) -> Optional[dict]:
        doc = self.donations.get(donation_id)
        return dict(doc) if doc else None

    async def list_donations(self, status: Optional[str] = None) -> List[dict]:
        vals = self.donations.values()
        return [dict(d) for d in vals if (status is None or d["status"] == status)]

    # Claims
    async def _claim(self, kind: str, record_id: int, expected: str, new: str) -> bool:
        doc = self._table(kind).get(record_id)
        if doc is None or doc["status"] != expected:
            return False
        doc["status"] = new
        return True

    async def claim_report(self, report_id: int, expected: str, new: str) -> bool:
        return await self._claim("report", report_id, expected, new)

    async def claim_donation(self, donation_id: int, expected: str, new: str) -> bool:
        return await self._claim("donation", donation_id, expected, new)

    async def link_mission(self, kind: str, record_id: int, mission_id: int) -> None:
        doc = self._table(kind).get(record_id)
        if doc is not None:
            doc["mission_id"] = mission_id

    # Missions
    async def insert_mission(self, doc: dict) -> dict:
        for m in self.missions.values():
            if m["report_id"] == doc["report_id"] or m["donation_id"] == doc["donation_id"]:
                raise CommitError("report or donation already has a mission")
        doc = dict(doc)
        doc["id"] = next(self._seq["missions"])
        doc.setdefault("created_at", datetime.utcnow())
        self.missions[doc["id"]] = doc
        return dict(doc)

    async def list_missions(self, status: Optional[str] = None) -> List[dict]:
        vals = sorted(self.missions.values(), key=lambda m: m["created_at"])
        return [dict(m) for m in vals if (status is None or m["status"] == status)]

    # Geo
    async def distance_m(self, a: dict, b: dict) -> float:
        return distance_between(a, b)
