"""Tests for the order HTTP routes."""

from conftest import auth_headers, make_token

ORDER_BODY = {
    "customerName": "Asha Rao",
    "customerEmail": "asha@example.com",
    "customerPhone": "9876543210",
    "shippingAddress": {"line1": "12 MG Road", "city": "Bengaluru", "state": "KA", "pincode": "560001"},
    "cartItems": [{"productId": "p-100", "quantity": 2, "price": 1}],
    "paymentMethod": "cod",
}


def place(client, body=None, headers=None):
    return client.post("/orders", json=body or ORDER_BODY, headers=headers or auth_headers())


class TestCreateOrder:
    def test_created(self, client, published):
        response = place(client)
        assert response.status_code == 201
        data = response.json()
        assert data["totalAmount"] == 259.0
        assert data["orderStatus"] == "pending"
        assert data["paymentMethod"] == "cod"
        assert data["orderNumber"].startswith("ORD-")
        assert data["deliveryEstimate"]
        assert [e["order_number"] for e in published] == [data["orderNumber"]]

    def test_requires_authentication(self, client):
        response = client.post("/orders", json=ORDER_BODY)
        assert response.status_code == 401

    def test_refresh_token_rejected(self, client):
        token = make_token(token_type="refresh")
        response = place(client, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_unknown_product(self, client, published):
        body = dict(ORDER_BODY, cartItems=[{"productId": "ghost", "quantity": 1}])
        response = place(client, body)
        assert response.status_code == 404
        assert response.json() == {"detail": "Product not found: ghost", "error": "ProductNotFound"}
        assert published == []

    def test_missing_fields(self, client):
        body = {k: v for k, v in ORDER_BODY.items() if k != "customerPhone"}
        response = place(client, body)
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_malformed_email(self, client):
        response = place(client, dict(ORDER_BODY, customerEmail="not-an-email"))
        assert response.status_code == 422

    def test_rejected_coupon(self, client, make_coupon):
        make_coupon(min_order_amount=1000)
        response = place(client, dict(ORDER_BODY, couponCode="SAVE10"))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "CouponBelowMinimumOrder"
        assert body["reason"] == "below_minimum_order"


class TestReadOrders:
    def test_by_number_and_id(self, client):
        created = place(client).json()
        by_number = client.get(f"/orders/{created['orderNumber']}")
        assert by_number.status_code == 200
        data = by_number.json()
        assert data["orderId"] == created["orderId"]
        assert data["items"][0]["name"] == "Cotton Tee"
        assert data["items"][0]["price"] == 100.0
        assert data["shippingAddress"]["country"] == "India"

        by_id = client.get(f"/orders/id/{created['orderId']}", headers={"X-Verify-Email": "ASHA@example.com"})
        assert by_id.status_code == 200

    def test_email_verification_failure(self, client):
        created = place(client).json()
        response = client.get(f"/orders/{created['orderNumber']}", headers={"X-Verify-Email": "eve@example.com"})
        assert response.status_code == 403

    def test_unknown_order(self, client):
        response = client.get("/orders/ORD-NOPE-000000")
        assert response.status_code == 404
        assert response.json()["detail"] == "Order not found"

    def test_list_own_orders(self, client):
        place(client)
        place(client)
        response = client.get("/orders/users/user-1", headers=auth_headers())
        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_admin_lists_orders_by_email(self, client):
        place(client)
        place(client, dict(ORDER_BODY, customerEmail="someone@example.com"))
        response = client.get("/orders", params={"email": "ASHA@example.com"},
                              headers=auth_headers("admin-1", role="admin"))
        assert response.status_code == 200
        assert [o["customerEmail"] for o in response.json()] == ["asha@example.com"]

    def test_email_lookup_is_admin_only(self, client):
        response = client.get("/orders", params={"email": "asha@example.com"}, headers=auth_headers())
        assert response.status_code == 403

    def test_email_lookup_needs_email(self, client):
        response = client.get("/orders", headers=auth_headers("admin-1", role="admin"))
        assert response.status_code == 400

    def test_cannot_list_other_users_orders(self, client):
        response = client.get("/orders/users/user-2", headers=auth_headers("user-1"))
        assert response.status_code == 403


class TestOrderLifecycle:
    def test_status_update_is_admin_only(self, client):
        order_id = place(client).json()["orderId"]
        body = {"orderStatus": "confirmed"}
        assert client.put(f"/orders/{order_id}/status", json=body, headers=auth_headers()).status_code == 403

        response = client.put(f"/orders/{order_id}/status", json={"orderStatus": "shipped", "trackingNumber": "AWB1"},
                              headers=auth_headers("admin-1", role="admin"))
        assert response.status_code == 200
        assert response.json()["trackingNumber"] == "AWB1"

    def test_cancel(self, client):
        order_id = place(client).json()["orderId"]
        response = client.post(f"/orders/{order_id}/cancel", json={"reason": "duplicate"}, headers=auth_headers())
        assert response.status_code == 200
        assert response.json()["orderStatus"] == "cancelled"
        assert response.json()["cancellationReason"] == "duplicate"

        again = client.post(f"/orders/{order_id}/cancel", headers=auth_headers())
        assert again.status_code == 400
        assert again.json()["error"] == "BusinessRuleViolation"

    def test_cancel_by_stranger(self, client):
        order_id = place(client).json()["orderId"]
        response = client.post(f"/orders/{order_id}/cancel", headers=auth_headers("user-2"))
        assert response.status_code == 403


class TestServiceEndpoints:
    def test_health_and_info(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/v1/_info").json()["service"] == "storefront"

    def test_metrics_exposed(self, client):
        assert client.get("/metrics").status_code == 200
