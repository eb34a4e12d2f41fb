"""HTTP endpoints over the cart and checkout services."""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from storefront import app
from storefront.core.dependencies import get_db

GUEST = {"X-Session-Id": "browser-1"}
API = "/api/v1"


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestCartEndpoints:

    async def test_identity_header_required(self, client) -> None:
        response = await client.get(f"{API}/cart/")
        assert response.status_code == 400

    async def test_add_and_read(self, client, make_product) -> None:
        product = await make_product(price=Decimal("30.00"))

        response = await client.post(f"{API}/cart/items", json={"product_id": product.id, "quantity": 2}, headers=GUEST)
        assert response.status_code == 200

        body = (await client.get(f"{API}/cart/", headers=GUEST)).json()
        assert body["item_count"] == 2
        assert Decimal(body["total"]) == Decimal("69.80")
        assert body["formatted_total"] == "$69.80"

    async def test_inventory_error_mapped(self, client, make_product) -> None:
        product = await make_product(track_inventory=True, inventory_quantity=1)

        response = await client.post(f"{API}/cart/items", json={"product_id": product.id, "quantity": 3}, headers=GUEST)

        assert response.status_code == 409
        assert response.json()["reason"] == "insufficient_inventory"
        assert response.json()["max_addable"] == 1

    async def test_inactive_product_mapped(self, client, make_product) -> None:
        product = await make_product(is_active=False)
        response = await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        assert response.status_code == 422
        assert response.json()["reason"] == "product_unavailable"

    async def test_update_and_remove(self, client, make_product) -> None:
        product = await make_product()
        added = await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        item_id = added.json()["items"][0]["id"]

        updated = await client.patch(f"{API}/cart/items/{item_id}", json={"quantity": 3}, headers=GUEST)
        assert updated.json()["items"][0]["quantity"] == 3

        removed = await client.delete(f"{API}/cart/items/{item_id}", headers=GUEST)
        assert removed.json()["items"] == []

    async def test_rejected_coupon_is_not_an_error(self, client) -> None:
        response = await client.post(f"{API}/cart/coupon", json={"code": "NOPE"}, headers=GUEST)
        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["reason"] == "not_found"


class TestCheckoutEndpoints:

    async def test_full_flow(self, client, make_product, make_shipping_method, address_data) -> None:
        product = await make_product(price=Decimal("30.00"))
        method = await make_shipping_method(base_cost=Decimal("7.50"))
        await client.post(f"{API}/cart/items", json={"product_id": product.id, "quantity": 2}, headers=GUEST)

        started = await client.post(f"{API}/checkout/", headers=GUEST)
        assert started.status_code == 201
        checkout_id = started.json()["id"]

        await client.post(f"{API}/checkout/{checkout_id}/shipping/begin", headers=GUEST)
        shipping = await client.post(
            f"{API}/checkout/{checkout_id}/shipping",
            json={"address": address_data, "shipping_method_id": method.id},
            headers=GUEST,
        )
        assert shipping.status_code == 200
        assert shipping.json()["checkout"]["status"] == "payment_info"

        payment = await client.post(f"{API}/checkout/{checkout_id}/payment", json={"payment_method": "card"}, headers=GUEST)
        assert payment.json()["checkout"]["status"] == "review"

        completed = await client.post(f"{API}/checkout/{checkout_id}/complete", headers=GUEST)
        assert completed.status_code == 201
        order = completed.json()
        assert order["order_number"].startswith("ORD-")
        assert Decimal(order["total"]) == Decimal("72.30")

        fetched = await client.get(f"{API}/checkout/{checkout_id}/order", headers=GUEST)
        assert fetched.json()["id"] == order["id"]

    async def test_empty_cart(self, client) -> None:
        response = await client.post(f"{API}/checkout/", headers=GUEST)
        assert response.status_code == 400
        assert response.json()["reason"] == "empty_cart"

    async def test_field_errors_returned(self, client, make_product, make_shipping_method) -> None:
        product = await make_product()
        method = await make_shipping_method()
        await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        checkout_id = (await client.post(f"{API}/checkout/", headers=GUEST)).json()["id"]

        await client.post(f"{API}/checkout/{checkout_id}/shipping/begin", headers=GUEST)
        response = await client.post(
            f"{API}/checkout/{checkout_id}/shipping",
            json={"address": {"city": "Springfield"}, "shipping_method_id": method.id},
            headers=GUEST,
        )

        assert response.status_code == 422
        assert response.json()["success"] is False
        assert "address.first_name" in response.json()["errors"]
        assert response.json()["checkout"]["status"] == "shipping_info"

    async def test_complete_out_of_order(self, client, make_product) -> None:
        product = await make_product()
        await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        checkout_id = (await client.post(f"{API}/checkout/", headers=GUEST)).json()["id"]

        response = await client.post(f"{API}/checkout/{checkout_id}/complete", headers=GUEST)

        assert response.status_code == 409
        assert response.json()["reason"] == "invalid_state"
        assert response.json()["current"] == "started"

    async def test_other_session_cannot_see_checkout(self, client, make_product) -> None:
        product = await make_product()
        await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        checkout_id = (await client.post(f"{API}/checkout/", headers=GUEST)).json()["id"]

        response = await client.get(f"{API}/checkout/{checkout_id}", headers={"X-Session-Id": "browser-2"})
        assert response.status_code == 404

    async def test_shipping_before_shipping_step(self, client, make_product, make_shipping_method, address_data) -> None:
        product = await make_product()
        method = await make_shipping_method()
        await client.post(f"{API}/cart/items", json={"product_id": product.id}, headers=GUEST)
        checkout_id = (await client.post(f"{API}/checkout/", headers=GUEST)).json()["id"]

        response = await client.post(
            f"{API}/checkout/{checkout_id}/shipping",
            json={"address": address_data, "shipping_method_id": method.id},
            headers=GUEST,
        )

        assert response.status_code == 409
        assert response.json()["expected"] == "shipping_info"
