"""
API Integration Tests — seller catalog.
"""

import pytest
from httpx import AsyncClient

from conftest import auth_headers
from core.roles import Role


@pytest.mark.asyncio
class TestProductsAPI:
    async def test_list_products(self, client: AsyncClient, marketplace):
        resp = await client.get("/api/v1/products/", headers=auth_headers(marketplace["buyer"]))
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 1
        assert data[0]["name"] == "Basmati Rice"
        assert data[0]["price"] == 200.0

    async def test_get_product_not_found(self, client: AsyncClient, marketplace):
        resp = await client.get(
            "/api/v1/products/00000000-0000-0000-0000-000000000000",
            headers=auth_headers(marketplace["buyer"]),
        )
        assert resp.status_code == 404

    async def test_seller_lists_new_product(self, client: AsyncClient, marketplace):
        headers = auth_headers(marketplace["seller"])
        resp = await client.post(
            "/api/v1/products/",
            json={"name": "Alphonso Mango", "category": "fruit", "price": 90.5, "quantity": 40},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json()["seller_id"] == str(marketplace["seller"].user_id)

        mine = await client.get("/api/v1/products/mine", headers=headers)
        assert {p["name"] for p in mine.json()} == {"Basmati Rice", "Alphonso Mango"}

    async def test_buyers_cannot_list_products(self, client: AsyncClient, marketplace):
        resp = await client.post(
            "/api/v1/products/",
            json={"name": "Wheat", "category": "grains", "price": 30, "quantity": 5},
            headers=auth_headers(marketplace["buyer"]),
        )
        assert resp.status_code == 403

    async def test_inactive_products_are_hidden(self, client: AsyncClient, marketplace):
        product_id = str(marketplace["product"].product_id)
        resp = await client.patch(
            f"/api/v1/products/{product_id}",
            json={"status": "inactive"},
            headers=auth_headers(marketplace["seller"]),
        )
        assert resp.status_code == 200

        listing = await client.get("/api/v1/products/", headers=auth_headers(marketplace["buyer"]))
        assert listing.json() == []

    async def test_only_owner_can_edit(self, client: AsyncClient, marketplace, make_user):
        other = await make_user(Role.SELLER)
        resp = await client.patch(
            f"/api/v1/products/{marketplace['product'].product_id}",
            json={"price": 1.0},
            headers=auth_headers(other),
        )
        assert resp.status_code == 403
