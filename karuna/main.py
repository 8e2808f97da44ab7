# karuna/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from karuna.core.config import get_settings
from karuna.core.logging_config import setup_logging
from karuna.deps import get_repo
from karuna.repos.mongo import MongoRepo
from karuna.routers import donations as donations_router
from karuna.routers import matching as matching_router
from karuna.routers import missions as missions_router
from karuna.routers import reports as reports_router

log = setup_logging(get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    repo = app.dependency_overrides.get(get_repo, get_repo)()
    if isinstance(repo, MongoRepo):
        await repo.ensure_indexes()
        log.info("mongo indexes ensured")
    yield
    if isinstance(repo, MongoRepo):
        repo.db.client.close()


app = FastAPI(lifespan=lifespan, title="Karuna API")

# CORS (answers OPTIONS preflight for every route)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse({"error": f"{field}: {msg}" if field else msg}, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


# ---------------- Include routers ----------------
app.include_router(reports_router.router)       # /api/reports
app.include_router(donations_router.router)     # /api/donations
app.include_router(matching_router.router)      # /api/match-engine
app.include_router(missions_router.router)      # /api/missions


# Health
@app.get("/health")
def health():
    return {"ok": True}
