from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from saveit.db import get_session

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request, session: Session = Depends(get_session)):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    embedding_status: dict = {"status": "not_configured"}
    embedding_service = getattr(request.app.state, "embedding_service", None)
    if embedding_service is not None:
        embedding_status = {
            "status": "configured",
            "model": embedding_service.model,
            "fallback": "configured" if embedding_service.has_fallback else "not_configured",
        }

    cache_status = "enabled" if getattr(request.app.state, "search_cache", None) else "disabled"

    return {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "service": "saveit-search",
        "version": "0.1.0",
        "checks": {
            "database": db_status,
            "embedding": embedding_status,
            "search_cache": cache_status,
        },
    }


@router.get("/health/ready")
async def readiness(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": "saveit-search",
                "error": str(exc),
            },
        )

    return {
        "status": "ready",
        "service": "saveit-search",
    }
