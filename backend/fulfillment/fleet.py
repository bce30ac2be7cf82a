"""
Logistics Fleet — vehicles, driver assignment and batched dispatch.

Vehicle lifecycle:
  available ─(assign driver)─► assigned ─(load order)─► loaded
  assigned  ─(unassign driver)─► available
  loaded    ─(unload last order)─► assigned
  loaded    ─(dispatch)─► available, driver released

Only orders a logistics provider already holds (dispatched_to_logistics)
can be loaded. Dispatching a vehicle walks every loaded order through the
normal status graph in one unit of work: customer-bound orders go out with
the vehicle's driver, cold-storage-bound orders go to the facility chosen
at loading time. Either every order leaves with the vehicle or none does.
"""

import uuid
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DuplicateOperation, Forbidden, InvalidStateTransition, NotFound, ValidationError
from core.roles import Role
from db.models import Order, User, Vehicle
from db.session import unit_of_work
from fulfillment.orders import _get_order, _require_user, _transition
from fulfillment.transitions import DeliveryDestination, OrderStatus, check_transition

logger = structlog.get_logger()


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    LOADED = "loaded"


def _require_logistics(actor: User) -> None:
    if actor.role != Role.LOGISTICS.value:
        raise Forbidden("Only logistics providers manage vehicles")


async def _get_vehicle(db: AsyncSession, vehicle_id: uuid.UUID) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFound(f"Vehicle {vehicle_id} not found")
    return vehicle


async def _owned_vehicle(db: AsyncSession, vehicle_id: uuid.UUID, actor: User) -> Vehicle:
    _require_logistics(actor)
    vehicle = await _get_vehicle(db, vehicle_id)
    if vehicle.logistics_id != actor.user_id:
        raise Forbidden("Vehicle belongs to another logistics provider")
    return vehicle


async def _loaded_units(db: AsyncSession, vehicle_id: uuid.UUID) -> int:
    total = await db.scalar(
        select(func.coalesce(func.sum(Order.quantity), 0)).where(Order.vehicle_id == vehicle_id)
    )
    return int(total or 0)


async def _loaded_orders(db: AsyncSession, vehicle_id: uuid.UUID) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(
            Order.vehicle_id == vehicle_id,
            Order.status == OrderStatus.DISPATCHED_TO_LOGISTICS.value,
        )
        .order_by(Order.dispatched_to_logistics_at.asc())
    )
    return list(result.scalars().all())


# ─── Vehicles ──────────────────────────────────────────────────────────────


async def create_vehicle(
    db: AsyncSession,
    actor: User,
    vehicle_number: str,
    vehicle_type: str,
    capacity: int,
    current_location: str | None = None,
) -> Vehicle:
    """Register a vehicle. Registration numbers are unique across the platform."""
    _require_logistics(actor)
    number = vehicle_number.strip().upper()
    if not number:
        raise ValidationError("Vehicle number is required")
    if capacity <= 0:
        raise ValidationError("Capacity must be at least 1 unit")

    async with unit_of_work(db):
        existing = await db.execute(select(Vehicle.vehicle_id).where(Vehicle.vehicle_number == number))
        if existing.first() is not None:
            raise DuplicateOperation(f"Vehicle {number} is already registered")

        vehicle = Vehicle(
            vehicle_id=uuid.uuid4(),
            logistics_id=actor.user_id,
            vehicle_number=number,
            vehicle_type=vehicle_type,
            capacity=capacity,
            status=VehicleStatus.AVAILABLE.value,
            current_location=current_location,
        )
        db.add(vehicle)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise DuplicateOperation(f"Vehicle {number} is already registered") from exc

    logger.info(
        "fleet.vehicle_created",
        vehicle_id=str(vehicle.vehicle_id),
        vehicle_number=number,
        logistics_id=str(actor.user_id),
    )
    return vehicle


async def list_vehicles(db: AsyncSession, actor: User, status: str | None = None) -> list[Vehicle]:
    """A provider's own fleet; admins see every vehicle."""
    query = select(Vehicle)
    if actor.role != Role.ADMIN.value:
        _require_logistics(actor)
        query = query.where(Vehicle.logistics_id == actor.user_id)
    if status:
        query = query.where(Vehicle.status == status)
    result = await db.execute(query.order_by(Vehicle.vehicle_number.asc()))
    return list(result.scalars().all())


async def get_vehicle_for(db: AsyncSession, vehicle_id: uuid.UUID, actor: User) -> Vehicle:
    vehicle = await _get_vehicle(db, vehicle_id)
    if actor.role == Role.ADMIN.value:
        return vehicle
    if actor.user_id not in (vehicle.logistics_id, vehicle.driver_id):
        raise Forbidden("You do not have permission to view this vehicle")
    return vehicle


async def update_vehicle(
    db: AsyncSession,
    vehicle_id: uuid.UUID,
    actor: User,
    *,
    vehicle_type: str | None = None,
    capacity: int | None = None,
    current_location: str | None = None,
) -> Vehicle:
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        if capacity is not None:
            if capacity <= 0:
                raise ValidationError("Capacity must be at least 1 unit")
            loaded = await _loaded_units(db, vehicle.vehicle_id)
            if capacity < loaded:
                raise ValidationError(f"Vehicle already carries {loaded} units")
            vehicle.capacity = capacity
        if vehicle_type is not None:
            vehicle.vehicle_type = vehicle_type
        if current_location is not None:
            vehicle.current_location = current_location
        await db.flush()
    return vehicle


async def delete_vehicle(db: AsyncSession, vehicle_id: uuid.UUID, actor: User) -> None:
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        if vehicle.status != VehicleStatus.AVAILABLE.value or vehicle.driver_id is not None:
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} is in use and cannot be removed")
        await db.delete(vehicle)

    logger.info("fleet.vehicle_removed", vehicle_id=str(vehicle_id), logistics_id=str(actor.user_id))


# ─── Drivers ───────────────────────────────────────────────────────────────


async def assign_driver(db: AsyncSession, vehicle_id: uuid.UUID, actor: User, driver_id: uuid.UUID) -> Vehicle:
    """Put a free driver on an available vehicle."""
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        driver = await _require_user(db, driver_id, Role.DRIVER, "driver_id")

        busy = await db.execute(select(Vehicle.vehicle_number).where(Vehicle.driver_id == driver.user_id))
        if busy.first() is not None:
            raise InvalidStateTransition(f"Driver {driver.name} is already assigned to a vehicle")

        try:
            result = await db.execute(
                update(Vehicle)
                .where(
                    Vehicle.vehicle_id == vehicle.vehicle_id,
                    Vehicle.status == VehicleStatus.AVAILABLE.value,
                    Vehicle.driver_id.is_(None),
                )
                .values(
                    driver_id=driver.user_id,
                    status=VehicleStatus.ASSIGNED.value,
                    assigned_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session="evaluate")
            )
        except IntegrityError as exc:
            raise InvalidStateTransition(f"Driver {driver.name} is already assigned to a vehicle") from exc
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} already has a driver")
        await db.refresh(vehicle)

    logger.info(
        "fleet.driver_assigned",
        vehicle_id=str(vehicle.vehicle_id),
        driver_id=str(driver.user_id),
    )
    return vehicle


async def unassign_driver(db: AsyncSession, vehicle_id: uuid.UUID, actor: User) -> Vehicle:
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        result = await db.execute(
            update(Vehicle)
            .where(
                Vehicle.vehicle_id == vehicle.vehicle_id,
                Vehicle.status == VehicleStatus.ASSIGNED.value,
            )
            .values(driver_id=None, status=VehicleStatus.AVAILABLE.value, assigned_at=None)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            if vehicle.status == VehicleStatus.LOADED.value:
                raise InvalidStateTransition("Unload or dispatch the vehicle's orders before removing its driver")
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} has no driver")
        await db.refresh(vehicle)

    logger.info("fleet.driver_unassigned", vehicle_id=str(vehicle.vehicle_id))
    return vehicle


async def list_available_drivers(db: AsyncSession, actor: User) -> list[User]:
    """Active drivers not currently on any vehicle."""
    if actor.role != Role.ADMIN.value:
        _require_logistics(actor)
    on_vehicle = select(Vehicle.driver_id).where(Vehicle.driver_id.is_not(None))
    result = await db.execute(
        select(User)
        .where(
            User.role == Role.DRIVER.value,
            User.is_active.is_(True),
            User.user_id.not_in(on_vehicle),
        )
        .order_by(User.name.asc())
    )
    return list(result.scalars().all())


async def list_available_vehicles(db: AsyncSession, actor: User) -> list[Vehicle]:
    """The provider's vehicles waiting for a driver."""
    _require_logistics(actor)
    result = await db.execute(
        select(Vehicle)
        .where(
            Vehicle.logistics_id == actor.user_id,
            Vehicle.status == VehicleStatus.AVAILABLE.value,
            Vehicle.driver_id.is_(None),
        )
        .order_by(Vehicle.vehicle_number.asc())
    )
    return list(result.scalars().all())


async def driver_vehicle(db: AsyncSession, driver: User) -> Vehicle:
    if driver.role != Role.DRIVER.value:
        raise Forbidden("Only drivers have an assigned vehicle")
    result = await db.execute(select(Vehicle).where(Vehicle.driver_id == driver.user_id))
    vehicle = result.scalar_one_or_none()
    if vehicle is None:
        raise NotFound("You are not assigned to a vehicle")
    return vehicle


# ─── Loading and dispatch ──────────────────────────────────────────────────


async def load_order(
    db: AsyncSession,
    vehicle_id: uuid.UUID,
    order_id: uuid.UUID,
    actor: User,
    coldstorage_id: uuid.UUID | None = None,
) -> Order:
    """
    Put an order the provider holds onto one of its vehicles.

    Cold-storage-bound orders name their destination facility here; it is
    recorded on the order and used when the vehicle is dispatched.
    """
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        if vehicle.driver_id is None:
            raise InvalidStateTransition(f"Assign a driver to vehicle {vehicle.vehicle_number} before loading it")

        order = await _get_order(db, order_id)
        if order.logistics_id != actor.user_id:
            raise Forbidden(f"Order {order_id} is not assigned to this logistics provider")
        if order.status != OrderStatus.DISPATCHED_TO_LOGISTICS.value:
            raise InvalidStateTransition(f"Order {order_id} is '{order.status}', not awaiting logistics")
        if order.vehicle_id is not None:
            raise InvalidStateTransition(f"Order {order_id} is already loaded on a vehicle")

        loaded = await _loaded_units(db, vehicle.vehicle_id)
        if loaded + order.quantity > vehicle.capacity:
            raise ValidationError(
                f"Vehicle {vehicle.vehicle_number} has room for {vehicle.capacity - loaded} more units"
            )

        values: dict = {"vehicle_id": vehicle.vehicle_id}
        if order.delivery_destination == DeliveryDestination.COLDSTORAGE.value:
            facility = await _require_user(db, coldstorage_id, Role.COLDSTORAGE, "coldstorage_id")
            values["coldstorage_id"] = facility.user_id

        result = await db.execute(
            update(Order)
            .where(
                Order.order_id == order.order_id,
                Order.status == OrderStatus.DISPATCHED_TO_LOGISTICS.value,
                Order.vehicle_id.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Order {order_id} changed while loading")

        result = await db.execute(
            update(Vehicle)
            .where(
                Vehicle.vehicle_id == vehicle.vehicle_id,
                Vehicle.driver_id == vehicle.driver_id,
                Vehicle.status.in_([VehicleStatus.ASSIGNED.value, VehicleStatus.LOADED.value]),
            )
            .values(status=VehicleStatus.LOADED.value)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} changed while loading")
        await db.refresh(vehicle)
        await db.refresh(order)

    logger.info(
        "fleet.order_loaded",
        vehicle_id=str(vehicle.vehicle_id),
        order_id=str(order.order_id),
        units=order.quantity,
    )
    return order


async def unload_order(db: AsyncSession, vehicle_id: uuid.UUID, order_id: uuid.UUID, actor: User) -> Order:
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        order = await _get_order(db, order_id)
        if order.vehicle_id != vehicle.vehicle_id:
            raise InvalidStateTransition(f"Order {order_id} is not loaded on vehicle {vehicle.vehicle_number}")

        values: dict = {"vehicle_id": None}
        if order.delivery_destination == DeliveryDestination.COLDSTORAGE.value:
            values["coldstorage_id"] = None
        result = await db.execute(
            update(Order)
            .where(
                Order.order_id == order.order_id,
                Order.vehicle_id == vehicle.vehicle_id,
                Order.status == OrderStatus.DISPATCHED_TO_LOGISTICS.value,
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Order {order_id} has already left with the vehicle")

        if await _loaded_units(db, vehicle.vehicle_id) == 0:
            await db.execute(
                update(Vehicle)
                .where(
                    Vehicle.vehicle_id == vehicle.vehicle_id,
                    Vehicle.status == VehicleStatus.LOADED.value,
                )
                .values(status=VehicleStatus.ASSIGNED.value)
                .execution_options(synchronize_session="evaluate")
            )
        await db.refresh(vehicle)
        await db.refresh(order)

    logger.info("fleet.order_unloaded", vehicle_id=str(vehicle.vehicle_id), order_id=str(order.order_id))
    return order


async def list_vehicle_orders(db: AsyncSession, vehicle_id: uuid.UUID, actor: User) -> list[Order]:
    vehicle = await get_vehicle_for(db, vehicle_id, actor)
    return await _loaded_orders(db, vehicle.vehicle_id)


async def dispatch_vehicle(
    db: AsyncSession,
    vehicle_id: uuid.UUID,
    actor: User,
    notes: str | None = None,
) -> list[Order]:
    """
    Send a loaded vehicle on its way.

    Every loaded order moves on (to the customer with the vehicle's driver,
    or to its cold-storage facility), then the vehicle is released: status
    back to available and the driver freed for another assignment.
    """
    async with unit_of_work(db):
        vehicle = await _owned_vehicle(db, vehicle_id, actor)
        if vehicle.status != VehicleStatus.LOADED.value:
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} has no orders loaded")

        orders = await _loaded_orders(db, vehicle.vehicle_id)
        driver_id = vehicle.driver_id
        note = notes or f"Dispatched on vehicle {vehicle.vehicle_number}"
        for order in orders:
            values: dict = {"vehicle_id": None}
            if order.delivery_destination == DeliveryDestination.COLDSTORAGE.value:
                target = OrderStatus.DISPATCHED_TO_COLDSTORAGE
            else:
                target = OrderStatus.DISPATCHED_TO_CUSTOMER
                values["driver_id"] = driver_id
            check_transition(OrderStatus(order.status), target, Role.LOGISTICS)
            await _transition(db, order, target, actor, values=values, notes=note)

        result = await db.execute(
            update(Vehicle)
            .where(
                Vehicle.vehicle_id == vehicle.vehicle_id,
                Vehicle.status == VehicleStatus.LOADED.value,
            )
            .values(
                status=VehicleStatus.AVAILABLE.value,
                driver_id=None,
                assigned_at=None,
                last_dispatched_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Vehicle {vehicle.vehicle_number} changed while dispatching")
        await db.refresh(vehicle)

    logger.info(
        "fleet.vehicle_dispatched",
        vehicle_id=str(vehicle.vehicle_id),
        driver_id=str(driver_id),
        order_count=len(orders),
    )
    return orders
