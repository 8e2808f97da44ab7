# karuna/repos/mongo.py
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from pymongo import ASCENDING, GEOSPHERE, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from karuna.core.errors import CommitError, StoreUnavailable
from karuna.core.geo import distance_between, latlng, to_geojson

# collection holding the point for each record kind
_GEO_FIELD = {"reports": "location", "donations": "pickup_location"}


@asynccontextmanager
async def _reading(what: str):
    try:
        yield
    except PyMongoError as ex:
        raise StoreUnavailable(f"{what}: {ex}") from ex


@asynccontextmanager
async def _writing(what: str):
    try:
        yield
    except ConnectionFailure as ex:
        raise StoreUnavailable(f"{what}: {ex}") from ex
    except PyMongoError as ex:
        raise CommitError(f"{what}: {ex}") from ex


def _out(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    doc.pop("geo", None)
    return doc


class MongoRepo:
    """
    Motor-backed store. Records use integer _id values allocated from the
    `counters` collection; points are kept both as {lat,lng} and as a
    GeoJSON `geo` field for the 2dsphere indexes.
    """

    def __init__(self, db):
        self.db = db

    async def ensure_indexes(self):
        async def ensure_index(col, keys, name: str, **kwargs):
            existing = [ix["name"] async for ix in col.list_indexes()]
            if name in existing:
                return
            await col.create_index(keys, name=name, **kwargs)

        async with _reading("ensure_indexes"):
            await ensure_index(self.db.reports, [("status", ASCENDING)], "status_1")
            await ensure_index(self.db.donations, [("status", ASCENDING)], "status_1")
            await ensure_index(self.db.reports, [("geo", GEOSPHERE)], "geo_2dsphere")
            await ensure_index(self.db.donations, [("geo", GEOSPHERE)], "geo_2dsphere")
            await ensure_index(self.db.missions, [("status", ASCENDING)], "status_1")
            # one mission per report and per donation
            await ensure_index(self.db.missions, [("report_id", ASCENDING)], "report_id_1", unique=True)
            await ensure_index(self.db.missions, [("donation_id", ASCENDING)], "donation_id_1", unique=True)

    async def _next_id(self, name: str) -> int:
        doc = await self.db.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    async def _insert(self, col_name: str, doc: dict) -> dict:
        doc = dict(doc)
        geo_field = _GEO_FIELD.get(col_name)
        if geo_field and doc.get(geo_field):
            lat, lng = latlng(doc[geo_field])
            doc[geo_field] = {"lat": lat, "lng": lng}
            doc["geo"] = to_geojson(lat, lng)
        doc.setdefault("created_at", datetime.utcnow())
        doc["_id"] = await self._next_id(col_name)
        await self.db[col_name].insert_one(doc)
        return _out(doc)

    async def _list(self, col_name: str, status: Optional[str]) -> List[dict]:
        query = {} if status is None else {"status": status}
        cur = self.db[col_name].find(query).sort("_id", ASCENDING)
        return [_out(d) async for d in cur]

    # Reports
    async def insert_report(self, doc: Dict) -> dict:
        doc = dict(doc)
        doc.setdefault("status", "pending_match")
        async with _writing("insert_report"):
            return await self._insert("reports", doc)

    async def get_report(self, report_id: int) -> Optional[dict]:
        async with _reading("get_report"):
            return _out(await self.db.reports.find_one({"_id": report_id}))

    async def list_reports(self, status: Optional[str] = None) -> List[dict]:
        async with _reading("list_reports"):
            return await self._list("reports", status)

    # Donations
    async def insert_donation(self, doc: Dict) -> dict:
        doc = dict(doc)
        doc.setdefault("status", "available")
        async with _writing("insert_donation"):
            return await self._insert("donations", doc)

    async def get_donation(self, donation_id: int) -> Optional[dict]:
        async with _reading("get_donation"):
            return _out(await self.db.donations.find_one({"_id": donation_id}))

    async def list_donations(self, status: Optional[str] = None) -> List[dict]:
        async with _reading("list_donations"):
            return await self._list("donations", status)

    # Claims: only flip when the row still has the expected status
    async def _claim(self, col_name: str, record_id: int, expected: str, new: str) -> bool:
        async with _writing(f"claim {col_name}/{record_id}"):
            res = await self.db[col_name].update_one(
                {"_id": record_id, "status": expected},
                {"$set": {"status": new, "updated_at": datetime.utcnow()}},
            )
        return res.modified_count == 1

    async def claim_report(self, report_id: int, expected: str, new: str) -> bool:
        return await self._claim("reports", report_id, expected, new)

    async def claim_donation(self, donation_id: int, expected: str, new: str) -> bool:
        return await self._claim("donations", donation_id, expected, new)

    async def link_mission(self, kind: str, record_id: int, mission_id: int) -> None:
        col_name = {"report": "reports", "donation": "donations"}[kind]
        async with _writing(f"link {col_name}/{record_id}"):
            await self.db[col_name].update_one({"_id": record_id}, {"$set": {"mission_id": mission_id}})

    # Missions
    async def insert_mission(self, doc: Dict) -> dict:
        try:
            async with _writing("insert_mission"):
                return await self._insert("missions", doc)
        except CommitError as ex:
            if isinstance(ex.__cause__, DuplicateKeyError):
                raise CommitError("report or donation already has a mission") from ex.__cause__
            raise

    async def list_missions(self, status: Optional[str] = None) -> List[dict]:
        query = {} if status is None else {"status": status}
        async with _reading("list_missions"):
            cur = self.db.missions.find(query).sort("created_at", ASCENDING)
            return [_out(m) async for m in cur]

    # Geo
    async def distance_m(self, a: dict, b: dict) -> float:
        return distance_between(a, b)
