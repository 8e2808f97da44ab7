from datetime import datetime
from typing import Any, Dict, List


class MemoryEventSink:
    """Collects events in a list; one instance per pass or per test."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def emit(self, type_: str, data: Dict[str, Any]):
        self.events.append({"type": type_, "data": data, "created_at": datetime.utcnow()})

    def of_type(self, type_: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == type_]


class MongoEventSink:
    def __init__(self, db):
        self.db = db

    async def emit(self, type_: str, data: Dict[str, Any]):
        evt = {
            "type": type_,
            "data": data,
            "created_at": datetime.utcnow(),
        }
        await self.db.events.insert_one(evt)
