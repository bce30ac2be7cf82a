"""
Tests for the logistics fleet: vehicles, driver assignment, loading and dispatch.
"""

import uuid

import pytest

from core.errors import DuplicateOperation, Forbidden, InvalidStateTransition, ValidationError
from core.roles import Role
from db.models import Vehicle
from fulfillment.fleet import (
    assign_driver,
    create_vehicle,
    delete_vehicle,
    dispatch_vehicle,
    driver_vehicle,
    list_available_drivers,
    list_available_vehicles,
    list_vehicle_orders,
    list_vehicles,
    load_order,
    unassign_driver,
    unload_order,
    update_vehicle,
)
from fulfillment.orders import advance_status, place_order
from fulfillment.transitions import DeliveryDestination, OrderStatus


@pytest.fixture
def held_order(test_db, marketplace):
    """Factory: an order the marketplace's logistics provider has just received."""

    async def _hold(quantity: int = 1, via_coldstorage: bool = False):
        m = marketplace
        order = await place_order(test_db, m["buyer"], m["product"].product_id, quantity)
        await advance_status(test_db, order.order_id, OrderStatus.CONFIRMED, m["seller"])
        return await advance_status(
            test_db,
            order.order_id,
            OrderStatus.DISPATCHED_TO_LOGISTICS,
            m["seller"],
            logistics_id=m["logistics"].user_id,
            delivery_destination=DeliveryDestination.COLDSTORAGE if via_coldstorage else DeliveryDestination.CUSTOMER,
        )

    return _hold


@pytest.fixture
def truck(test_db, marketplace):
    async def _make(capacity: int = 10, with_driver: bool = True) -> Vehicle:
        m = marketplace
        vehicle = await create_vehicle(test_db, m["logistics"], f"KA-01-{uuid.uuid4().hex[:4]}", "truck", capacity)
        if with_driver:
            vehicle = await assign_driver(test_db, vehicle.vehicle_id, m["logistics"], m["driver"].user_id)
        return vehicle

    return _make


@pytest.mark.asyncio
class TestVehicles:
    async def test_register_vehicle(self, test_db, marketplace):
        vehicle = await create_vehicle(test_db, marketplace["logistics"], " ka-05-mn-2211 ", "reefer truck", 40)

        assert vehicle.vehicle_number == "KA-05-MN-2211"
        assert vehicle.status == "available"
        assert vehicle.driver_id is None
        assert [v.vehicle_id for v in await list_vehicles(test_db, marketplace["logistics"])] == [vehicle.vehicle_id]

    async def test_registration_number_is_unique(self, test_db, marketplace):
        await create_vehicle(test_db, marketplace["logistics"], "KA-05-MN-2211", "truck", 40)
        with pytest.raises(DuplicateOperation):
            await create_vehicle(test_db, marketplace["logistics"], "ka-05-mn-2211", "van", 10)

    async def test_only_logistics_registers_vehicles(self, test_db, marketplace):
        with pytest.raises(Forbidden):
            await create_vehicle(test_db, marketplace["seller"], "KA-05-MN-2211", "truck", 40)

    async def test_zero_capacity_rejected(self, test_db, marketplace):
        with pytest.raises(ValidationError):
            await create_vehicle(test_db, marketplace["logistics"], "KA-05-MN-2211", "truck", 0)

    async def test_other_provider_cannot_edit(self, test_db, marketplace, make_user, truck):
        vehicle = await truck(with_driver=False)
        rival = await make_user(Role.LOGISTICS)
        with pytest.raises(Forbidden):
            await update_vehicle(test_db, vehicle.vehicle_id, rival, current_location="Hubli")

    async def test_capacity_cannot_drop_below_load(self, test_db, marketplace, truck, held_order):
        vehicle = await truck(capacity=5)
        order = await held_order(quantity=2)
        await load_order(test_db, vehicle.vehicle_id, order.order_id, marketplace["logistics"])

        updated = await update_vehicle(test_db, vehicle.vehicle_id, marketplace["logistics"], capacity=2)
        assert updated.capacity == 2
        with pytest.raises(ValidationError, match="already carries 2 units"):
            await update_vehicle(test_db, vehicle.vehicle_id, marketplace["logistics"], capacity=1)

    async def test_delete_idle_vehicle(self, test_db, marketplace, truck):
        vehicle = await truck(with_driver=False)
        vehicle_id = vehicle.vehicle_id
        await delete_vehicle(test_db, vehicle_id, marketplace["logistics"])
        assert await test_db.get(Vehicle, vehicle_id) is None

    async def test_vehicle_with_driver_cannot_be_deleted(self, test_db, marketplace, truck):
        vehicle = await truck()
        with pytest.raises(InvalidStateTransition):
            await delete_vehicle(test_db, vehicle.vehicle_id, marketplace["logistics"])


@pytest.mark.asyncio
class TestDrivers:
    async def test_assign_driver(self, test_db, marketplace, truck):
        m = marketplace
        vehicle = await truck()

        assert vehicle.status == "assigned"
        assert vehicle.driver_id == m["driver"].user_id
        assert vehicle.assigned_at is not None
        assert await list_available_drivers(test_db, m["logistics"]) == []
        assert await list_available_vehicles(test_db, m["logistics"]) == []
        assert (await driver_vehicle(test_db, m["driver"])).vehicle_id == vehicle.vehicle_id

    async def test_driver_holds_one_vehicle_at_a_time(self, test_db, marketplace, truck):
        await truck()
        second = await truck(with_driver=False)
        with pytest.raises(InvalidStateTransition, match="already assigned"):
            await assign_driver(test_db, second.vehicle_id, marketplace["logistics"], marketplace["driver"].user_id)

    async def test_assignee_must_be_a_driver(self, test_db, marketplace, truck):
        vehicle = await truck(with_driver=False)
        with pytest.raises(ValidationError):
            await assign_driver(test_db, vehicle.vehicle_id, marketplace["logistics"], marketplace["buyer"].user_id)

    async def test_unassign_frees_driver(self, test_db, marketplace, truck):
        m = marketplace
        vehicle = await truck()
        vehicle = await unassign_driver(test_db, vehicle.vehicle_id, m["logistics"])

        assert vehicle.status == "available"
        assert vehicle.driver_id is None
        assert [d.user_id for d in await list_available_drivers(test_db, m["logistics"])] == [m["driver"].user_id]
        assert [v.vehicle_id for v in await list_available_vehicles(test_db, m["logistics"])] == [vehicle.vehicle_id]

    async def test_loaded_vehicle_keeps_its_driver(self, test_db, marketplace, truck, held_order):
        vehicle = await truck()
        order = await held_order()
        await load_order(test_db, vehicle.vehicle_id, order.order_id, marketplace["logistics"])
        with pytest.raises(InvalidStateTransition, match="Unload or dispatch"):
            await unassign_driver(test_db, vehicle.vehicle_id, marketplace["logistics"])


@pytest.mark.asyncio
class TestLoadAndDispatch:
    async def test_vehicle_needs_a_driver_before_loading(self, test_db, marketplace, truck, held_order):
        vehicle = await truck(with_driver=False)
        order = await held_order()
        with pytest.raises(InvalidStateTransition, match="Assign a driver"):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, marketplace["logistics"])

    async def test_order_not_handed_to_provider_cannot_load(self, test_db, marketplace, truck):
        m = marketplace
        vehicle = await truck()
        order = await place_order(test_db, m["buyer"], m["product"].product_id, 1)
        with pytest.raises(Forbidden):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])

    async def test_order_already_on_the_road_cannot_load(self, test_db, marketplace, truck, held_order):
        m = marketplace
        vehicle = await truck()
        order = await held_order()
        await advance_status(
            test_db,
            order.order_id,
            OrderStatus.DISPATCHED_TO_CUSTOMER,
            m["logistics"],
            driver_id=m["driver"].user_id,
        )
        with pytest.raises(InvalidStateTransition, match="not awaiting logistics"):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])

    async def test_capacity_is_enforced(self, test_db, marketplace, truck, held_order):
        vehicle = await truck(capacity=1)
        order = await held_order(quantity=2)
        with pytest.raises(ValidationError, match="room for 1 more units"):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, marketplace["logistics"])

    async def test_loaded_order_leaves_only_with_its_vehicle(self, test_db, marketplace, truck, held_order):
        m = marketplace
        vehicle = await truck()
        order = await held_order()
        order = await load_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])
        assert order.vehicle_id == vehicle.vehicle_id

        with pytest.raises(InvalidStateTransition, match="dispatch the vehicle"):
            await advance_status(
                test_db,
                order.order_id,
                OrderStatus.DISPATCHED_TO_CUSTOMER,
                m["logistics"],
                driver_id=m["driver"].user_id,
            )

    async def test_dispatch_sends_orders_with_the_driver(self, test_db, marketplace, truck, held_order):
        m = marketplace
        vehicle = await truck()
        first = await held_order()
        second = await held_order()
        for order in (first, second):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])
        await test_db.refresh(vehicle)
        assert vehicle.status == "loaded"
        assert len(await list_vehicle_orders(test_db, vehicle.vehicle_id, m["driver"])) == 2

        dispatched = await dispatch_vehicle(test_db, vehicle.vehicle_id, m["logistics"])

        assert {o.order_id for o in dispatched} == {first.order_id, second.order_id}
        for order in dispatched:
            assert order.status == "dispatched_to_customer"
            assert order.driver_id == m["driver"].user_id
            assert order.vehicle_id is None
        await test_db.refresh(vehicle)
        assert vehicle.status == "available"
        assert vehicle.driver_id is None
        assert vehicle.last_dispatched_at is not None

        delivered = await advance_status(test_db, first.order_id, OrderStatus.DELIVERED, m["driver"])
        assert delivered.status == "delivered"

    async def test_cold_storage_orders_go_to_their_facility(self, test_db, marketplace, truck, held_order):
        m = marketplace
        vehicle = await truck()
        order = await held_order(via_coldstorage=True)
        await load_order(
            test_db, vehicle.vehicle_id, order.order_id, m["logistics"], coldstorage_id=m["coldstorage"].user_id
        )

        [dispatched] = await dispatch_vehicle(test_db, vehicle.vehicle_id, m["logistics"])

        assert dispatched.status == "dispatched_to_coldstorage"
        assert dispatched.coldstorage_id == m["coldstorage"].user_id
        assert dispatched.driver_id is None

    async def test_cold_storage_orders_need_a_facility(self, test_db, marketplace, truck, held_order):
        vehicle = await truck()
        order = await held_order(via_coldstorage=True)
        with pytest.raises(ValidationError, match="coldstorage_id"):
            await load_order(test_db, vehicle.vehicle_id, order.order_id, marketplace["logistics"])

    async def test_unloading_last_order_returns_vehicle_to_assigned(self, test_db, marketplace, truck, held_order):
        m = marketplace
        vehicle = await truck()
        order = await held_order()
        await load_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])

        order = await unload_order(test_db, vehicle.vehicle_id, order.order_id, m["logistics"])

        assert order.vehicle_id is None
        assert vehicle.status == "assigned"
        # back in the pool for manual handling
        moved = await advance_status(
            test_db,
            order.order_id,
            OrderStatus.DISPATCHED_TO_CUSTOMER,
            m["logistics"],
            driver_id=m["driver"].user_id,
        )
        assert moved.status == "dispatched_to_customer"

    async def test_empty_vehicle_cannot_dispatch(self, test_db, marketplace, truck):
        vehicle = await truck()
        with pytest.raises(InvalidStateTransition, match="no orders loaded"):
            await dispatch_vehicle(test_db, vehicle.vehicle_id, marketplace["logistics"])
