from functools import lru_cache

from fastapi import Depends

from karuna.core.config import get_settings
from karuna.core.events import MemoryEventSink, MongoEventSink
from karuna.repos.inmemory import InMemoryRepo
from karuna.repos.mongo import MongoRepo


@lru_cache(maxsize=1)
def _repo_singleton():
    settings = get_settings()
    if settings.use_mongo:
        from karuna.core.db import get_db
        return MongoRepo(get_db())
    return InMemoryRepo()

def get_repo():
    return _repo_singleton()

def get_event_sink(repo=Depends(get_repo)):
    # a fresh sink per request; nothing is buffered across passes
    if isinstance(repo, MongoRepo):
        return MongoEventSink(repo.db)
    return MemoryEventSink()
