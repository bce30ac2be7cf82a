"""
Fleet Router — logistics vehicles, drivers and batched dispatch.

  1. Logistics registers vehicles → status='available'
  2. A free driver is assigned → status='assigned'
  3. Orders the provider holds are loaded → status='loaded'
  4. Dispatch sends every loaded order on and frees the vehicle
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from api.v1.routers.orders import OrderResponse
from core.roles import Role
from db.models import User
from fulfillment import fleet as fleet_service
from fulfillment.fleet import VehicleStatus

router = APIRouter(prefix="/api/v1/fleet", tags=["fleet"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class VehicleCreate(BaseModel):
    vehicle_number: str = Field(..., min_length=1, max_length=30)
    vehicle_type: str = Field(..., min_length=1, max_length=50)
    capacity: int = Field(..., gt=0)
    current_location: str | None = Field(None, max_length=255)


class VehicleUpdate(BaseModel):
    vehicle_type: str | None = Field(None, min_length=1, max_length=50)
    capacity: int | None = Field(None, gt=0)
    current_location: str | None = Field(None, max_length=255)


class DriverAssignRequest(BaseModel):
    driver_id: UUID


class LoadOrderRequest(BaseModel):
    order_id: UUID
    coldstorage_id: UUID | None = None


class DispatchRequest(BaseModel):
    notes: str | None = None


class VehicleResponse(BaseModel):
    vehicle_id: UUID
    logistics_id: UUID
    vehicle_number: str
    vehicle_type: str
    capacity: int
    status: str
    current_location: str | None
    driver_id: UUID | None
    assigned_at: datetime | None
    last_dispatched_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    user_id: UUID
    name: str
    phone: str | None

    model_config = {"from_attributes": True}


# ─── Vehicles ───────────────────────────────────────────────────────────────


@router.post("/vehicles", response_model=VehicleResponse, status_code=201)
async def create_vehicle(
    body: VehicleCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    return await fleet_service.create_vehicle(
        db, user, body.vehicle_number, body.vehicle_type, body.capacity, body.current_location
    )


@router.get("/vehicles", response_model=list[VehicleResponse])
async def list_vehicles(
    status: VehicleStatus | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS, Role.ADMIN)),
):
    return await fleet_service.list_vehicles(db, user, status=status.value if status else None)


@router.get("/vehicles/available", response_model=list[VehicleResponse])
async def list_available_vehicles(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    """Vehicles still waiting for a driver."""
    return await fleet_service.list_available_vehicles(db, user)


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await fleet_service.get_vehicle_for(db, vehicle_id, user)


@router.patch("/vehicles/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: UUID,
    body: VehicleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    return await fleet_service.update_vehicle(db, vehicle_id, user, **body.model_dump(exclude_unset=True))


@router.delete("/vehicles/{vehicle_id}", status_code=204)
async def delete_vehicle(
    vehicle_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    await fleet_service.delete_vehicle(db, vehicle_id, user)


# ─── Drivers ────────────────────────────────────────────────────────────────


@router.post("/vehicles/{vehicle_id}/driver", response_model=VehicleResponse)
async def assign_driver(
    vehicle_id: UUID,
    body: DriverAssignRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    return await fleet_service.assign_driver(db, vehicle_id, user, body.driver_id)


@router.delete("/vehicles/{vehicle_id}/driver", response_model=VehicleResponse)
async def unassign_driver(
    vehicle_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    return await fleet_service.unassign_driver(db, vehicle_id, user)


@router.get("/drivers/available", response_model=list[DriverResponse])
async def list_available_drivers(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS, Role.ADMIN)),
):
    return await fleet_service.list_available_drivers(db, user)


@router.get("/my-vehicle", response_model=VehicleResponse)
async def my_vehicle(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.DRIVER)),
):
    return await fleet_service.driver_vehicle(db, user)


# ─── Loading and dispatch ───────────────────────────────────────────────────


@router.get("/vehicles/{vehicle_id}/orders", response_model=list[OrderResponse])
async def list_vehicle_orders(
    vehicle_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await fleet_service.list_vehicle_orders(db, vehicle_id, user)


@router.post("/vehicles/{vehicle_id}/orders", response_model=OrderResponse)
async def load_order(
    vehicle_id: UUID,
    body: LoadOrderRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    """Load an order the caller holds; cold-storage-bound orders name their facility."""
    return await fleet_service.load_order(db, vehicle_id, body.order_id, user, coldstorage_id=body.coldstorage_id)


@router.delete("/vehicles/{vehicle_id}/orders/{order_id}", response_model=OrderResponse)
async def unload_order(
    vehicle_id: UUID,
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    return await fleet_service.unload_order(db, vehicle_id, order_id, user)


@router.post("/vehicles/{vehicle_id}/dispatch", response_model=list[OrderResponse])
async def dispatch_vehicle(
    vehicle_id: UUID,
    body: DispatchRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles(Role.LOGISTICS)),
):
    """Send every loaded order on its way and release the vehicle."""
    return await fleet_service.dispatch_vehicle(db, vehicle_id, user, notes=body.notes)
