"""HTTP-level tests: routing, authentication and the JSON error contract."""

from datetime import timedelta

from shared.timeutils import utc_now
from services.order_service.service import OrderService
from services.order_service.state_machine import OrderStatus

API_KEY_HEADERS = {"X-Internal-API-Key": "test-internal-key"}


def order_body(product_id, quantity=1, payment_method="cash_on_delivery", promo_code=None):
    return {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "delivery_info": {
            "customer_name": "Rahim Uddin",
            "customer_phone": "01700000000",
            "address": "House 12, Road 5, Dhanmondi, Dhaka",
        },
        "payment_method": payment_method,
        "promo_code": promo_code,
    }


def coupon_body(code="SAVE10", **overrides):
    now = utc_now()
    body = {
        "code": code,
        "seller_id": "seller-1",
        "name": "Ten percent off",
        "discount_type": "percentage",
        "discount_value": "10",
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_until": (now + timedelta(days=30)).isoformat(),
    }
    body.update(overrides)
    return body


class TestAuthentication:
    async def test_operator_endpoints_need_api_key(self, client):
        resp = await client.get("/orders/")
        assert resp.status_code == 403

        resp = await client.post("/sales/recalculate", headers={"X-Internal-API-Key": "wrong"})
        assert resp.status_code == 403

    async def test_checkout_needs_customer_token(self, client, products):
        resp = await client.post("/orders/", json=order_body(products["mug"].id))
        assert resp.status_code == 401

        resp = await client.post(
            "/orders/",
            json=order_body(products["mug"].id),
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert resp.status_code == 401

    async def test_callback_is_public(self, client, make_order, products):
        order = await make_order([(products["mug"], 1)], payment_method="card")
        resp = await client.post(
            "/payments/callback",
            json={"order_id": order.id, "outcome": "success", "transaction_id": "TXN-API-1"},
        )
        assert resp.status_code == 200


class TestCatalogueAndPromotions:
    async def test_create_and_fetch_product(self, client):
        resp = await client.post(
            "/products/",
            json={"name": "Hoodie", "category": "hoodies", "price": "1200.00", "sizes": ["L"]},
            headers=API_KEY_HEADERS,
        )
        assert resp.status_code == 201
        product = resp.json()
        assert product["sales_count"] == 0

        resp = await client.get(f"/products/{product['id']}", headers=API_KEY_HEADERS)
        assert resp.json()["name"] == "Hoodie"

    async def test_create_coupon_normalizes_code(self, client):
        resp = await client.post("/promotions/coupons", json=coupon_body("save10"), headers=API_KEY_HEADERS)
        assert resp.status_code == 201
        assert resp.json()["code"] == "SAVE10"
        assert resp.json()["kind"] == "coupon"

        resp = await client.post("/promotions/coupons", json=coupon_body("SAVE10"), headers=API_KEY_HEADERS)
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    async def test_percentage_over_hundred_rejected(self, client):
        resp = await client.post(
            "/promotions/coupons", json=coupon_body(discount_value="150"), headers=API_KEY_HEADERS
        )
        assert resp.status_code == 422

    async def test_validate_reports_usage_limit(self, client, db, make_order, make_coupon, products, customer_headers):
        await make_coupon("ONCE", max_uses_per_customer=1)
        order = await make_order([(products["mug"], 2)], promo_code="ONCE", customer_id="customer-1")
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.READY_TO_SHIP,
                       OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            await OrderService.transition_order_status(db, order.id, status)

        resp = await client.post(
            "/promotions/validate",
            json={"code": "once", "items": [{"product_id": products["mug"].id, "quantity": 1, "line_total": "250"}]},
            headers=customer_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is False
        assert "usage limit" in body["reason"]

    async def test_validate_computes_discount(self, client, make_coupon, products, customer_headers):
        await make_coupon("SAVE10")
        resp = await client.post(
            "/promotions/validate",
            json={"code": "SAVE10", "items": [
                {"product_id": products["mug"].id, "quantity": 4, "line_total": "1000"},
            ]},
            headers=customer_headers,
        )
        assert resp.json()["valid"] is True
        assert float(resp.json()["discount"]) == 100.0


class TestOrderLifecycle:
    async def test_create_order_prices_on_server(self, client, products, make_coupon, customer_headers):
        await make_coupon("SAVE10")
        body = order_body(products["shirt"].id, quantity=2, promo_code="save10")
        body["items"][0]["unit_price"] = "1.00"

        resp = await client.post("/orders/", json=body, headers=customer_headers)

        assert resp.status_code == 201
        order = resp.json()
        assert order["customer_id"] == "customer-1"
        assert float(order["subtotal"]) == 1000.0
        assert float(order["discount_amount"]) == 100.0
        assert float(order["total_amount"]) == 900.0 + float(order["delivery_charge"])
        assert order["status"] == "pending"
        assert order["sales_counted"] is False

    async def test_illegal_transition_returns_conflict(self, client, make_order, products):
        order = await make_order([(products["mug"], 1)])
        resp = await client.put(
            f"/orders/{order.id}/status", json={"status": "cancelled"}, headers=API_KEY_HEADERS
        )
        assert resp.status_code == 200

        resp = await client.put(
            f"/orders/{order.id}/status", json={"status": "shipped"}, headers=API_KEY_HEADERS
        )

        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "invalid_transition"
        assert body["current"] == "cancelled"
        assert body["requested"] == "shipped"

        resp = await client.get(f"/orders/{order.id}", headers=API_KEY_HEADERS)
        assert resp.json()["status"] == "cancelled"

    async def test_unknown_status_is_rejected_by_schema(self, client, make_order, products):
        order = await make_order([(products["mug"], 1)])
        resp = await client.put(
            f"/orders/{order.id}/status", json={"status": "teleported"}, headers=API_KEY_HEADERS
        )
        assert resp.status_code == 422

    async def test_delivery_counts_and_history_is_listed(self, client, make_order, products):
        order = await make_order([(products["mug"], 3)])
        for status in ("confirmed", "processing", "ready_to_ship", "shipped", "delivered"):
            resp = await client.put(
                f"/orders/{order.id}/status",
                json={"status": status, "tracking_number": "TRK-1" if status == "shipped" else None},
                headers=API_KEY_HEADERS,
            )
            assert resp.status_code == 200

        body = resp.json()
        assert body["sales_counted"] is True
        assert body["payment_status"] == "paid"
        assert body["tracking_number"] == "TRK-1"

        resp = await client.get("/sales/products", headers=API_KEY_HEADERS)
        counts = {p["product_id"]: p["sales_count"] for p in resp.json()}
        assert counts[products["mug"].id] == 3

        resp = await client.get("/products/", params={"sort": "best_selling"}, headers=API_KEY_HEADERS)
        assert resp.json()[0]["id"] == products["mug"].id

        resp = await client.get(f"/orders/{order.id}/history", headers=API_KEY_HEADERS)
        assert [h["status"] for h in resp.json()] == [
            "pending", "confirmed", "processing", "ready_to_ship", "shipped", "delivered",
        ]

    async def test_purge_refuses_counted_order(self, client, db, make_order, products):
        order = await make_order([(products["mug"], 1)])
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.READY_TO_SHIP,
                       OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            await OrderService.transition_order_status(db, order.id, status)

        resp = await client.delete(f"/orders/{order.id}", headers=API_KEY_HEADERS)

        assert resp.status_code == 422
        assert "counted in sales" in resp.json()["message"]

    async def test_not_found_shape(self, client):
        resp = await client.get("/orders/999999", headers=API_KEY_HEADERS)
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "not_found", "message": "Order not found: 999999"}


class TestPaymentsAndLedger:
    async def test_duplicate_callback_is_replayed(self, client, make_order, products):
        order = await make_order([(products["mug"], 2)], payment_method="card")
        callback = {"order_id": order.id, "outcome": "success", "transaction_id": "TXN-API-2"}

        first = await client.post("/payments/callback", json=callback)
        second = await client.post("/payments/callback", json=callback)

        assert first.json()["disposition"] == "applied"
        assert second.json()["disposition"] == "replayed"
        assert second.json()["accepted"] is True

        resp = await client.get(f"/payments/{order.id}/callbacks", headers=API_KEY_HEADERS)
        assert [c["disposition"] for c in resp.json()] == ["applied", "replayed"]

        resp = await client.get("/sales/products", headers=API_KEY_HEADERS)
        counts = {p["product_id"]: p["sales_count"] for p in resp.json()}
        assert counts[products["mug"].id] == 2

    async def test_callback_for_unknown_order(self, client):
        resp = await client.post(
            "/payments/callback", json={"order_id": 424242, "outcome": "failure"}
        )
        assert resp.status_code == 404

    async def test_callback_missing_identity_is_rejected(self, client):
        resp = await client.post("/payments/callback", json={"outcome": "failure"})
        assert resp.status_code == 422

    async def test_refund_endpoint(self, client, make_order, products):
        order = await make_order([(products["mug"], 1)], payment_method="card")
        await client.post(
            "/payments/callback",
            json={"order_id": order.id, "outcome": "success", "transaction_id": "TXN-API-3"},
        )

        resp = await client.post(
            f"/payments/{order.id}/refund", json={"reason": "Changed mind"}, headers=API_KEY_HEADERS
        )

        assert resp.status_code == 200
        assert resp.json()["payment_status"] == "refunded"

    async def test_recalculate_endpoint(self, client, make_order, products):
        await make_order([(products["mug"], 1)])
        resp = await client.post("/sales/recalculate", headers=API_KEY_HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {
            "products_updated": 0,
            "orders_scanned": 0,
            "promotions_updated": 0,
            "drift_detected": 0,
        }


class TestCheckout:
    async def test_online_checkout_opens_payment(self, client, products, customer_headers):
        resp = await client.post(
            "/checkout/", json=order_body(products["mug"].id, payment_method="card"), headers=customer_headers
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["payment"]["gateway_payment_id"].startswith("SIM-")
        assert body["payment"]["payment_status"] == "processing"
        assert body["order"]["payment_status"] == "processing"

    async def test_cod_checkout_has_no_payment(self, client, products, customer_headers):
        resp = await client.post("/checkout/", json=order_body(products["mug"].id), headers=customer_headers)
        assert resp.status_code == 201
        assert resp.json()["payment"] is None
