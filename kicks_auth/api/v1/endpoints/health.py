"""Liveness check."""

from fastapi import APIRouter

from kicks_auth.core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": settings.VERSION}
