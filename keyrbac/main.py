from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from keyrbac.api.routers import keys
from keyrbac.infra.background import BackgroundTaskRegistry
from keyrbac.infra.cache import check_redis_ready
from keyrbac.infra.db import check_db_ready
from keyrbac.infra.log import configure_logging

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.background = BackgroundTaskRegistry()
    yield
    app.state.background.shutdown(timeout=30.0)


app = FastAPI(
    title="key-rbac",
    description="Desired-state reconciliation of permissions and roles bound to API keys.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(keys.router, prefix="/api/keys", tags=["keys"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
