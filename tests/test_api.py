import pytest

ADMIN = {"x-api-key": "test-admin-key"}


@pytest.fixture
def seeded(fake_ref):
    fake_ref.child("products").set({
        "p1": {"name": "Boot", "price": 100},
        "p2": {"name": "Sock", "price": 50},
    })
    fake_ref.child("promotions").set({
        "promo-20": {
            "name": "20 off boots", "type": "percentage", "discountPercentage": 20,
            "specificProducts": ["p1"], "isActive": True,
        },
        "promo-2x1": {
            "name": "Socks 2x1", "type": "buy_x_get_y", "buyQuantity": 2, "getQuantity": 1,
            "specificProducts": ["p2"], "startDate": "2025-06-01T00:00:00Z", "endDate": "2025-06-30T00:00:00Z",
        },
        "expired": {
            "name": "Old", "type": "percentage", "discountPercentage": 90,
            "specificProducts": ["p1"], "endDate": "2025-01-01T00:00:00Z",
        },
        "broken": {"name": "Broken", "type": "percentage", "discountPercentage": 400, "specificProducts": ["p1"]},
    })
    fake_ref.child("coupons").child("SAVE10").set({"discountPercentage": 10, "usesLeft": 5, "isActive": True})
    return fake_ref


def add(client, session_id, product_id, quantity):
    resp = client.post(f"/api/cart/{session_id}/items", json={"productId": product_id, "quantity": quantity})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_active_promotions_skip_expired_and_broken(client, seeded):
    resp = client.get("/api/promotions/active")
    assert resp.status_code == 200
    assert sorted(p["id"] for p in resp.json()) == ["promo-20", "promo-2x1"]


def test_create_promotion_requires_admin(client, fake_ref):
    body = {"name": "Ten", "type": "percentage", "discountPercentage": 10, "specificProducts": ["p1"]}
    assert client.post("/api/promotions", json=body, headers={"x-api-key": "wrong"}).status_code == 401

    resp = client.post("/api/promotions", json=body, headers=ADMIN)
    assert resp.status_code == 200
    created = resp.json()
    assert created["kind"] == "percentage"
    assert created["discountPercentage"] == 10
    assert created["id"] in fake_ref.child("promotions").get()


def test_create_promotion_rejects_bad_parameters(client, fake_ref):
    body = {"name": "Too much", "type": "percentage", "discountPercentage": 150, "specificProducts": ["p1"]}
    resp = client.post("/api/promotions", json=body, headers=ADMIN)
    assert resp.status_code == 400
    assert fake_ref.child("promotions").get() is None

    body = {"name": "Free ship", "type": "free_shipping", "specificProducts": ["p1"]}
    assert client.post("/api/promotions", json=body, headers=ADMIN).status_code == 400


def test_promotion_price_for_card(client, seeded):
    resp = client.post("/api/promotions/price", json={"productId": "p2", "basePrice": 50})
    assert resp.json()["badge"] == "2x1"
    assert resp.json()["appliedQuantity"] == 2

    resp = client.post("/api/promotions/price", json={"productId": "p1", "basePrice": 100})
    assert resp.json()["finalUnitPrice"] == 80

    assert client.post("/api/promotions/price", json={"productId": "zzz", "basePrice": 10}).json() is None


def test_coupon_lifecycle(client, fake_ref):
    body = {"code": "welcome", "discountPercentage": 15, "uses": 1}
    assert client.post("/api/coupons", json=body, headers=ADMIN).status_code == 200
    assert client.post("/api/coupons", json=body, headers=ADMIN).status_code == 409

    resp = client.post("/api/coupons/validate", json={"code": "Welcome", "sessionId": "s1"})
    assert resp.json()["valid"] is True
    assert resp.json()["discountPercentage"] == 15
    assert resp.json()["usageRemaining"] == 1

    assert client.post("/api/coupons/WELCOME/redeem", params={"sessionId": "s1"}).json()["success"] is True
    assert client.post("/api/coupons/WELCOME/redeem", params={"sessionId": "s1"}).json()["success"] is False

    resp = client.post("/api/coupons/validate", json={"code": "WELCOME", "sessionId": "s2"})
    assert resp.json() == {
        "valid": False, "code": "WELCOME", "discountPercentage": None, "usageRemaining": None,
        "reason": "usage_exceeded", "message": "Coupon usage limit reached",
    }


def test_cart_crud_keeps_price_snapshot(client, seeded):
    first = add(client, "s1", "p1", 1)
    assert first["unitPrice"] == 100

    # catalog price changes after the item is in the cart
    seeded.child("products").child("p1").child("price").set(130)
    merged = add(client, "s1", "p1", 2)
    assert merged["lineId"] == first["lineId"]
    assert merged["quantity"] == 3
    assert merged["unitPrice"] == 100

    resp = client.patch(f"/api/cart/s1/items/{first['lineId']}", json={"quantity": 5})
    assert resp.json()["quantity"] == 5
    assert client.patch(f"/api/cart/s1/items/{first['lineId']}", json={"quantity": 0}).status_code == 422

    assert len(client.get("/api/cart/s1").json()) == 1
    assert client.delete(f"/api/cart/s1/items/{first['lineId']}").status_code == 200
    assert client.get("/api/cart/s1").json() == []
    assert client.delete("/api/cart/s1/items/nope").status_code == 404
    assert client.post("/api/cart/s1/items", json={"productId": "ghost"}).status_code == 404


def test_cart_summary(client, seeded):
    add(client, "s1", "p1", 3)
    add(client, "s1", "p2", 6)

    resp = client.post("/api/cart/s1/summary", json={"couponCode": "save10", "shippingCost": 10})
    assert resp.status_code == 200
    summary = resp.json()
    # boots 300 - 60, socks 300 - 100, coupon 10% of 600
    assert summary["subtotal"] == 600
    assert summary["promotionDiscount"] == 160
    assert summary["couponDiscount"] == 60
    assert summary["totalDiscount"] == 220
    assert summary["shipping"] == 10
    assert summary["finalTotal"] == 390
    assert {d["promotionId"] for d in summary["discounts"]} == {"promo-20", "promo-2x1"}


def test_summary_with_bad_coupon_still_computes(client, seeded):
    add(client, "s1", "p1", 3)
    resp = client.post("/api/cart/s1/summary", json={"couponCode": "NOPE", "shippingCost": 0})
    assert resp.json()["couponDiscount"] == 0
    assert resp.json()["finalTotal"] == 240


def test_order_recomputes_and_redeems(client, seeded):
    add(client, "s1", "p1", 3)

    resp = client.post("/api/orders", json={
        "sessionId": "s1", "couponCode": "SAVE10", "shippingCost": 10, "clientTotal": 220,
    })
    assert resp.status_code == 200, resp.text
    order = resp.json()
    assert order["status"] == "pending"
    assert order["summary"]["finalTotal"] == 220
    assert order["priceChanged"] is False

    stored = seeded.child("orders").child(order["orderId"]).get()
    assert stored["summary"]["finalTotal"] == 220
    assert seeded.child("coupons").child("SAVE10").child("usesLeft").get() == 4
    assert seeded.child("couponUsage").child("s1").get()["coupon"] == "SAVE10"
    assert seeded.child("carts").child("s1").get() is None


def test_order_flags_stale_client_total(client, seeded):
    add(client, "s1", "p1", 1)
    resp = client.post("/api/orders", json={"sessionId": "s1", "clientTotal": 100})
    assert resp.json()["priceChanged"] is True
    assert resp.json()["summary"]["finalTotal"] == 80


def test_order_with_empty_cart(client, seeded):
    assert client.post("/api/orders", json={"sessionId": "nobody"}).status_code == 400
