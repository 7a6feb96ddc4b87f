from __future__ import annotations

from fastapi import APIRouter

from account_api.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Reports the environment and storage backend so a misconfigured
    deployment (e.g. in-memory storage in production) is visible.
    """

    return {
        "status": "ok",
        "environment": settings.app_env,
        "storage_backend": settings.app.storage_backend,
    }
