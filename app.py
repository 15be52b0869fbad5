"""
FastAPI application — REST API for Flagpole.

Endpoints:
  GET   /health                    — Health check
  GET   /api/features              — List features with per-environment status
  GET   /api/features/{name}       — Get one feature
  POST  /api/features              — Create a feature
  PATCH /api/features/{name}       — Rename a feature and/or set its status
  GET   /api/environments          — List environments
  GET   /api/environments/{name}   — Get one environment
  POST  /api/environments          — Create an environment
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictBool

import config
from features.toggles import FeatureService, LogNotifier, MemoryStore, NotificationDispatcher, SlackNotifier
from features.toggles.errors import FlagpoleError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

service: FeatureService | None = None
store_backend = "memory"


def _build_store():
    global store_backend
    if config.DATABASE_URL:
        from features.toggles.db import PostgresStore

        store = PostgresStore(config.DATABASE_URL)
        try:
            store.init_db()
            store_backend = "postgres"
            log.info("Postgres database initialized")
            return store
        except FlagpoleError as e:
            log.warning("Could not connect to Postgres: %s (toggles will be in-memory only)", e)
    store_backend = "memory"
    return MemoryStore()


def _build_notifier():
    if config.SLACK_WEBHOOK_URL:
        log.info("Notifying status changes to Slack")
        return SlackNotifier(config.SLACK_WEBHOOK_URL, timeout=config.SLACK_TIMEOUT)
    log.info("No SLACK_WEBHOOK_URL set, status changes will only be logged")
    return LogNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global service
    notifier = _build_notifier()
    store = _build_store()
    dispatcher = NotificationDispatcher(
        notifier,
        max_workers=config.NOTIFY_MAX_WORKERS,
        retries=config.NOTIFY_RETRIES,
        backoff=config.NOTIFY_BACKOFF,
    )
    service = FeatureService(
        store,
        dispatcher,
        strict_updates=config.STRICT_UPDATE_NOTIFICATIONS,
        max_cas_attempts=config.MAX_CAS_ATTEMPTS,
    )
    try:
        yield
    finally:
        service = None
        dispatcher.shutdown(wait=True)
        # pending notifications are drained before their client goes away
        for resource in (notifier, store):
            if hasattr(resource, "close"):
                resource.close()
        log.info("Shut down notifier and %s store", store_backend)


app = FastAPI(
    title="Flagpole",
    description="Per-environment feature toggles with change notifications",
    version="1.0.0",
    lifespan=lifespan,
)


def get_service() -> FeatureService:
    if service is None:
        raise FlagpoleError("Service not initialized")
    return service


@app.exception_handler(FlagpoleError)
async def flagpole_error_handler(request: Request, exc: FlagpoleError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


class FeatureIn(BaseModel):
    name: str | None = None
    status: dict[str, StrictBool] | None = None


class FeatureOut(BaseModel):
    id: int
    created_at: datetime | None = None
    name: str | None = None
    status: dict[str, bool] | None = None


class EnvironmentIn(BaseModel):
    name: str | None = None


class EnvironmentOut(BaseModel):
    id: int
    created_at: datetime | None = None
    name: str | None = None


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "flagpole",
        "store": store_backend,
    }


# ── Features ──────────────────────────────────────────────────────────

@app.get("/api/features", response_model=list[FeatureOut], response_model_exclude_none=True)
def list_features(svc: FeatureService = Depends(get_service)):
    """List every feature with its status in every environment."""
    return [FeatureOut(**vars(view)) for view in svc.list_features()]


@app.get("/api/features/{name}", response_model=FeatureOut, response_model_exclude_none=True)
def get_feature(name: str, svc: FeatureService = Depends(get_service)):
    """Get a feature with its status in every environment."""
    return FeatureOut(**vars(svc.get(name)))


@app.post("/api/features", status_code=201, response_model=FeatureOut, response_model_exclude_none=True)
def create_feature(req: FeatureIn, svc: FeatureService = Depends(get_service)):
    """Create a feature; it starts disabled everywhere."""
    feature = svc.create(req.name)
    return FeatureOut(id=feature.id, created_at=feature.created_at, name=feature.name)


@app.patch("/api/features/{name}", response_model=FeatureOut, response_model_exclude_none=True)
def update_feature(name: str, req: FeatureIn, svc: FeatureService = Depends(get_service)):
    """Apply the desired status map (missing environments mean disabled)."""
    view = svc.update(name, req.status, new_name=req.name)
    return FeatureOut(**vars(view))


# ── Environments ──────────────────────────────────────────────────────

@app.get("/api/environments", response_model=list[EnvironmentOut], response_model_exclude_none=True)
def list_environments(svc: FeatureService = Depends(get_service)):
    return [EnvironmentOut(**vars(env)) for env in svc.list_environments()]


@app.get("/api/environments/{name}", response_model=EnvironmentOut, response_model_exclude_none=True)
def get_environment(name: str, svc: FeatureService = Depends(get_service)):
    return EnvironmentOut(**vars(svc.get_environment(name)))


@app.post("/api/environments", status_code=201, response_model=EnvironmentOut, response_model_exclude_none=True)
def create_environment(req: EnvironmentIn, svc: FeatureService = Depends(get_service)):
    return EnvironmentOut(**vars(svc.create_environment(req.name)))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
