from fastapi import APIRouter

from account_lifecycle.api.v1 import account, jobs
from account_lifecycle.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(account.router)
api_router.include_router(jobs.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
