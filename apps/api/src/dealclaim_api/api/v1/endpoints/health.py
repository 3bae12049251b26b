from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.core.settings import settings
from dealclaim_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as error:
        logger.error("Database readiness probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail=str(error))
        status = "error"

    if settings.stripe_secret_key:
        components["stripe_connect"] = ComponentStatus(status="ready")
    else:
        components["stripe_connect"] = ComponentStatus(
            status="disabled",
            detail="Stripe secret key not configured; integrated deposits unavailable",
        )
        if status == "ready":
            status = "degraded"

    return ReadinessPayload(status=status, components=components)
