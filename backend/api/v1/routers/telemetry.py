"""
Cold-Chain Router — temperature readings from cold storage sensors.

Facilities post readings; buyers, sellers and the holding facility read
them back per order.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import User
from fulfillment import telemetry as telemetry_service

router = APIRouter(prefix="/api/v1/coldchain", tags=["coldchain"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ReadingCreate(BaseModel):
    device: str = Field(..., min_length=1, max_length=100)
    temperature: float
    humidity: float
    order_id: UUID | None = None
    recorded_at: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None


class ReadingResponse(BaseModel):
    reading_id: UUID
    coldstorage_id: UUID
    order_id: UUID | None
    device: str
    temperature: float
    humidity: float
    latitude: float | None
    longitude: float | None
    breach: bool
    recorded_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/readings", response_model=ReadingResponse, status_code=201)
async def record_reading(
    body: ReadingCreate,
    db: AsyncSession = Depends(get_db),
    facility: User = Depends(require_roles(Role.COLDSTORAGE)),
):
    return await telemetry_service.record_reading(db, facility, **body.model_dump())


@router.get("/readings", response_model=list[ReadingResponse])
async def list_device_readings(
    device: str | None = None,
    breaches_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    facility: User = Depends(require_roles(Role.COLDSTORAGE)),
):
    """The calling facility's own sensor history."""
    return await telemetry_service.list_device_readings(
        db, facility, device=device, breaches_only=breaches_only, limit=limit
    )


@router.get("/latest", response_model=list[ReadingResponse])
async def latest_per_order(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Latest reading for each of the caller's orders."""
    return await telemetry_service.latest_readings_for(db, user)


@router.get("/orders/{order_id}/readings", response_model=list[ReadingResponse])
async def list_order_readings(
    order_id: UUID,
    since: datetime | None = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await telemetry_service.list_readings(db, order_id, user, since=since, limit=limit)


@router.get("/orders/{order_id}/readings/latest", response_model=ReadingResponse)
async def latest_order_reading(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await telemetry_service.latest_reading(db, order_id, user)
