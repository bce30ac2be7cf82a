"""
Cold-Chain Telemetry — temperature and humidity readings from storage sensors.

A cold-storage facility posts readings from its devices, either for the
facility as a whole or against an order it is holding. Readings outside
the configured safe band are stored with `breach` set and logged as a
warning so the seller and buyer can see when the cold chain was broken.
"""

import uuid
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import Forbidden, InvalidStateTransition, NotFound, ValidationError
from core.roles import Role
from db.models import Order, TemperatureReading, User
from db.session import unit_of_work
from fulfillment.orders import PARTY_COLUMNS, _get_order, get_order_for
from fulfillment.transitions import OrderStatus

logger = structlog.get_logger()

# Orders a facility may report on: inbound or already stored
STORED_STATUSES = frozenset({OrderStatus.DISPATCHED_TO_COLDSTORAGE.value, OrderStatus.IN_COLDSTORAGE.value})

SENSOR_RANGE_CELSIUS = (-50.0, 60.0)
CLOCK_SKEW = timedelta(minutes=5)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_breach(temperature: float) -> bool:
    settings = get_settings()
    return not settings.cold_chain_min_celsius <= temperature <= settings.cold_chain_max_celsius


async def record_reading(
    db: AsyncSession,
    facility: User,
    *,
    device: str,
    temperature: float,
    humidity: float,
    order_id: uuid.UUID | None = None,
    recorded_at: datetime | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> TemperatureReading:
    """Store one sensor reading for the facility, optionally tied to an order it holds."""
    if facility.role != Role.COLDSTORAGE.value:
        raise Forbidden("Only cold storage facilities report temperature readings")
    device = device.strip()
    if not device:
        raise ValidationError("Device identifier is required")
    low, high = SENSOR_RANGE_CELSIUS
    if not low <= temperature <= high:
        raise ValidationError(f"Temperature {temperature} is outside the sensor range {low} to {high}")
    if not 0 <= humidity <= 100:
        raise ValidationError("Humidity must be between 0 and 100 percent")
    if latitude is not None and not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90")
    if longitude is not None and not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180")

    now = datetime.utcnow()
    recorded_at = _as_utc(recorded_at) if recorded_at else now
    if recorded_at > now + CLOCK_SKEW:
        raise ValidationError("Reading timestamp is in the future")

    async with unit_of_work(db):
        if order_id is not None:
            order = await _get_order(db, order_id)
            if order.coldstorage_id != facility.user_id:
                raise Forbidden(f"Order {order_id} is not assigned to this cold storage")
            if order.status not in STORED_STATUSES:
                raise InvalidStateTransition(f"Order {order_id} is '{order.status}', not in cold storage")

        reading = TemperatureReading(
            reading_id=uuid.uuid4(),
            coldstorage_id=facility.user_id,
            order_id=order_id,
            device=device,
            temperature=temperature,
            humidity=humidity,
            latitude=latitude,
            longitude=longitude,
            breach=is_breach(temperature),
            recorded_at=recorded_at,
            created_at=now,
        )
        db.add(reading)
        await db.flush()

    if reading.breach:
        logger.warning(
            "telemetry.temperature_breach",
            reading_id=str(reading.reading_id),
            coldstorage_id=str(facility.user_id),
            order_id=str(order_id) if order_id else None,
            device=device,
            temperature=temperature,
        )
    return reading


async def list_readings(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor: User,
    since: datetime | None = None,
    limit: int = 100,
) -> list[TemperatureReading]:
    """Readings for an order, newest first. Visible to anyone who can see the order."""
    await get_order_for(db, order_id, actor)
    query = select(TemperatureReading).where(TemperatureReading.order_id == order_id)
    if since is not None:
        query = query.where(TemperatureReading.recorded_at >= _as_utc(since))
    result = await db.execute(query.order_by(TemperatureReading.recorded_at.desc()).limit(limit))
    return list(result.scalars().all())


async def latest_reading(db: AsyncSession, order_id: uuid.UUID, actor: User) -> TemperatureReading:
    readings = await list_readings(db, order_id, actor, limit=1)
    if not readings:
        raise NotFound(f"No temperature readings for order {order_id}")
    return readings[0]


async def latest_readings_for(db: AsyncSession, actor: User) -> list[TemperatureReading]:
    """
    The most recent reading of every order the actor is a party to.

    Buyers and sellers see their orders, facilities the orders they hold,
    admins everything.
    """
    role = Role(actor.role)
    if role not in (Role.BUYER, Role.SELLER, Role.COLDSTORAGE, Role.ADMIN):
        raise Forbidden(f"Role '{role.value}' has no cold-chain readings")

    newest = (
        select(
            TemperatureReading.order_id,
            func.max(TemperatureReading.recorded_at).label("recorded_at"),
        )
        .where(TemperatureReading.order_id.is_not(None))
        .group_by(TemperatureReading.order_id)
        .subquery()
    )
    query = (
        select(TemperatureReading)
        .join(
            newest,
            and_(
                TemperatureReading.order_id == newest.c.order_id,
                TemperatureReading.recorded_at == newest.c.recorded_at,
            ),
        )
        .join(Order, Order.order_id == TemperatureReading.order_id)
    )
    if role != Role.ADMIN:
        query = query.where(PARTY_COLUMNS[role] == actor.user_id)
    result = await db.execute(query.order_by(TemperatureReading.recorded_at.desc()))

    # two readings sharing a timestamp would both match the join
    latest: dict[uuid.UUID, TemperatureReading] = {}
    for reading in result.scalars().all():
        latest.setdefault(reading.order_id, reading)
    return list(latest.values())


async def list_device_readings(
    db: AsyncSession,
    facility: User,
    device: str | None = None,
    breaches_only: bool = False,
    limit: int = 100,
) -> list[TemperatureReading]:
    """A facility's own sensor history, newest first."""
    if facility.role != Role.COLDSTORAGE.value:
        raise Forbidden("Only cold storage facilities have sensor history")
    query = select(TemperatureReading).where(TemperatureReading.coldstorage_id == facility.user_id)
    if device:
        query = query.where(TemperatureReading.device == device)
    if breaches_only:
        query = query.where(TemperatureReading.breach.is_(True))
    result = await db.execute(query.order_by(TemperatureReading.recorded_at.desc()).limit(limit))
    return list(result.scalars().all())
