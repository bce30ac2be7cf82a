"""
API Integration Tests — fleet dispatch and cold-chain readings.
"""

import pytest
from httpx import AsyncClient

from conftest import auth_headers


async def _order_with_logistics(client, m, destination="customer"):
    order = (
        await client.post(
            "/api/v1/orders/",
            json={"product_id": str(m["product"].product_id), "quantity": 1},
            headers=auth_headers(m["buyer"]),
        )
    ).json()
    url = f"/api/v1/orders/{order['order_id']}/status"
    seller = auth_headers(m["seller"])
    assert (await client.post(url, json={"status": "confirmed"}, headers=seller)).status_code == 200
    handed = await client.post(
        url,
        json={
            "status": "dispatched_to_logistics",
            "logistics_id": str(m["logistics"].user_id),
            "delivery_destination": destination,
        },
        headers=seller,
    )
    assert handed.status_code == 200
    return order["order_id"]


async def _vehicle_with_driver(client, m, number="MH-12-AB-0042"):
    headers = auth_headers(m["logistics"])
    created = await client.post(
        "/api/v1/fleet/vehicles",
        json={"vehicle_number": number, "vehicle_type": "reefer truck", "capacity": 20},
        headers=headers,
    )
    assert created.status_code == 201
    vehicle_id = created.json()["vehicle_id"]
    assigned = await client.post(
        f"/api/v1/fleet/vehicles/{vehicle_id}/driver",
        json={"driver_id": str(m["driver"].user_id)},
        headers=headers,
    )
    assert assigned.status_code == 200
    return vehicle_id


@pytest.mark.asyncio
class TestFleetAPI:
    async def test_load_dispatch_deliver(self, client: AsyncClient, marketplace):
        m = marketplace
        logistics = auth_headers(m["logistics"])
        driver = auth_headers(m["driver"])
        vehicle_id = await _vehicle_with_driver(client, m)
        order_id = await _order_with_logistics(client, m)

        loaded = await client.post(
            f"/api/v1/fleet/vehicles/{vehicle_id}/orders", json={"order_id": order_id}, headers=logistics
        )
        assert loaded.status_code == 200
        assert loaded.json()["vehicle_id"] == vehicle_id

        mine = await client.get("/api/v1/fleet/my-vehicle", headers=driver)
        assert mine.json()["status"] == "loaded"

        dispatched = await client.post(f"/api/v1/fleet/vehicles/{vehicle_id}/dispatch", json={}, headers=logistics)
        assert dispatched.status_code == 200
        assert [o["status"] for o in dispatched.json()] == ["dispatched_to_customer"]

        drivers = await client.get("/api/v1/fleet/drivers/available", headers=logistics)
        assert [d["name"] for d in drivers.json()] == ["Vikram"]

        delivered = await client.post(
            f"/api/v1/orders/{order_id}/status", json={"status": "delivered"}, headers=driver
        )
        assert delivered.status_code == 200

    async def test_duplicate_registration_is_409(self, client: AsyncClient, marketplace):
        await _vehicle_with_driver(client, marketplace)
        response = await client.post(
            "/api/v1/fleet/vehicles",
            json={"vehicle_number": "mh-12-ab-0042", "vehicle_type": "van", "capacity": 5},
            headers=auth_headers(marketplace["logistics"]),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_operation"

    async def test_buyers_cannot_register_vehicles(self, client: AsyncClient, marketplace):
        response = await client.post(
            "/api/v1/fleet/vehicles",
            json={"vehicle_number": "MH-12-AB-0042", "vehicle_type": "van", "capacity": 5},
            headers=auth_headers(marketplace["buyer"]),
        )
        assert response.status_code == 403

    async def test_remove_driver_then_vehicle(self, client: AsyncClient, marketplace):
        headers = auth_headers(marketplace["logistics"])
        vehicle_id = await _vehicle_with_driver(client, marketplace)

        busy = await client.delete(f"/api/v1/fleet/vehicles/{vehicle_id}", headers=headers)
        assert busy.status_code == 409

        freed = await client.delete(f"/api/v1/fleet/vehicles/{vehicle_id}/driver", headers=headers)
        assert freed.json()["status"] == "available"
        removed = await client.delete(f"/api/v1/fleet/vehicles/{vehicle_id}", headers=headers)
        assert removed.status_code == 204

        listing = await client.get("/api/v1/fleet/vehicles", headers=headers)
        assert listing.json() == []


@pytest.mark.asyncio
class TestColdChainAPI:
    async def test_readings_reach_buyer(self, client: AsyncClient, marketplace):
        m = marketplace
        logistics = auth_headers(m["logistics"])
        facility = auth_headers(m["coldstorage"])
        vehicle_id = await _vehicle_with_driver(client, m)
        order_id = await _order_with_logistics(client, m, destination="coldstorage")

        await client.post(
            f"/api/v1/fleet/vehicles/{vehicle_id}/orders",
            json={"order_id": order_id, "coldstorage_id": str(m["coldstorage"].user_id)},
            headers=logistics,
        )
        await client.post(f"/api/v1/fleet/vehicles/{vehicle_id}/dispatch", json={}, headers=logistics)
        stored = await client.post(
            f"/api/v1/orders/{order_id}/status", json={"status": "in_coldstorage"}, headers=facility
        )
        assert stored.status_code == 200

        posted = await client.post(
            "/api/v1/coldchain/readings",
            json={"device": "bay-2", "temperature": 12.0, "humidity": 90.0, "order_id": order_id},
            headers=facility,
        )
        assert posted.status_code == 201
        assert posted.json()["breach"] is True

        latest = await client.get(
            f"/api/v1/coldchain/orders/{order_id}/readings/latest", headers=auth_headers(m["buyer"])
        )
        assert latest.status_code == 200
        assert latest.json()["temperature"] == 12.0

        overview = await client.get("/api/v1/coldchain/latest", headers=auth_headers(m["seller"]))
        assert [r["order_id"] for r in overview.json()] == [order_id]

    async def test_only_facilities_post_readings(self, client: AsyncClient, marketplace):
        response = await client.post(
            "/api/v1/coldchain/readings",
            json={"device": "bay-2", "temperature": 4.0, "humidity": 50.0},
            headers=auth_headers(marketplace["buyer"]),
        )
        assert response.status_code == 403

    async def test_bad_humidity_is_422(self, client: AsyncClient, marketplace):
        response = await client.post(
            "/api/v1/coldchain/readings",
            json={"device": "bay-2", "temperature": 4.0, "humidity": 140.0},
            headers=auth_headers(marketplace["coldstorage"]),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_no_readings_yet_is_404(self, client: AsyncClient, marketplace):
        order_id = await _order_with_logistics(client, marketplace)
        response = await client.get(
            f"/api/v1/coldchain/orders/{order_id}/readings/latest", headers=auth_headers(marketplace["buyer"])
        )
        assert response.status_code == 404
