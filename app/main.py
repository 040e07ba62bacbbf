"""FastAPI entrypoint for the code judge."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.features.execution.endpoints import router as judge_router
from app.features.execution.languages import SERVICE_PRIORITY
from app.features.execution.service import judge_service

_settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("request")

app = FastAPI(title=_settings.app_name)
_START_TIME = datetime.now(timezone.utc)

# The judge is called from a browser frontend; no cookies are involved.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.rstrip("/") for o in _settings.allow_origins],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-Id"],
    expose_headers=["X-Request-Id"],
)


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    t0 = perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = req_id
    logger.info(
        "%s %s %s %dms [%s]",
        request.method,
        request.url.path,
        response.status_code,
        int((perf_counter() - t0) * 1000),
        req_id,
    )
    return response


app.include_router(judge_router)


@app.get("/", tags=["meta"], summary="API Root")
async def root():
    return {
        "name": _settings.app_name,
        "status": "ok",
        "docs": "/docs",
        "health": "/healthz",
    }


@app.get("/healthz", tags=["meta"], summary="Liveness / readiness probe")
async def healthz() -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    external = judge_service.external_engine.clients
    return {
        "status": "ok",
        "time_utc": now.isoformat(),
        "uptime_seconds": round((now - _START_TIME).total_seconds(), 2),
        "version": os.getenv("APP_VERSION", "dev"),
        "environment": "debug" if _settings.debug else "prod",
        "mode": judge_service.mode,
        "components": {
            target.value: "configured" if target in external else "disabled"
            for target in SERVICE_PRIORITY
        },
    }
