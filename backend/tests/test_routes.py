from datetime import timedelta

from tillpoint.extensions import db
from tillpoint.models import Sale
from tillpoint.time_utils import utcnow

from conftest import CASHIER_ID, MANAGER_ID, actor_headers


def _checkout(client, product_id, quantity=1, payment_method="card", **extra):
    body = {"items": [{"product_id": product_id, "quantity": quantity}], "payment_method": payment_method}
    body.update(extra)
    return client.post("/api/sales/checkout", json=body, headers=actor_headers())


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json["checks"]["database"]["status"] == "healthy"


def test_actor_header_is_required(client, product_a):
    response = client.post("/api/sales/checkout", json={"items": [], "payment_method": "card"})
    assert response.status_code == 401

    response = client.get("/api/sales", headers={"X-Actor-Id": "abc"})
    assert response.status_code == 400


def test_checkout_route(client, product_a):
    response = _checkout(client, product_a.id, quantity=2)

    assert response.status_code == 201
    sale = response.json["sale"]
    assert sale["total_cents"] == 2200
    assert sale["user_id"] == CASHIER_ID
    assert sale["location"] == "Main POS"


def test_checkout_insufficient_stock_is_409(client, product_a):
    response = _checkout(client, product_a.id, quantity=11)

    assert response.status_code == 409
    assert response.json["details"]["shortfall"] == 1
    assert response.json["details"]["stage"] == "validating"


def test_checkout_validation_errors_are_400(client, product_a):
    assert _checkout(client, product_a.id, quantity=0).status_code == 400
    assert _checkout(client, product_a.id, payment_method="barter").status_code == 400
    assert _checkout(client, product_a.id, discount_cents="1.5").status_code == 400


def test_cash_checkout_without_drawer_is_409(client, product_a):
    response = _checkout(client, product_a.id, payment_method="cash")
    assert response.status_code == 409


def test_get_list_and_receipt(client, product_a):
    sale_id = _checkout(client, product_a.id).json["sale"]["id"]

    response = client.get(f"/api/sales/{sale_id}", headers=actor_headers())
    assert response.status_code == 200
    assert response.json["sale"]["id"] == sale_id

    assert client.get("/api/sales/999999", headers=actor_headers()).status_code == 404

    listing = client.get("/api/sales?status=completed&limit=10", headers=actor_headers())
    assert listing.status_code == 200
    assert listing.json["total"] == 1

    receipt = client.get(f"/api/sales/{sale_id}/receipt", headers=actor_headers())
    assert receipt.status_code == 200
    assert receipt.json["receipt"]["items"][0]["sku"] == "PROD-A"

    stats = client.get("/api/sales/statistics", headers=actor_headers())
    assert stats.json["today_cents"] == 1100


def test_cancel_route(client, product_a):
    sale_id = _checkout(client, product_a.id, quantity=3).json["sale"]["id"]

    missing_reason = client.post(f"/api/sales/{sale_id}/cancel", json={}, headers=actor_headers(MANAGER_ID))
    assert missing_reason.status_code == 400

    response = client.post(
        f"/api/sales/{sale_id}/cancel", json={"reason": "duplicate"}, headers=actor_headers(MANAGER_ID)
    )
    assert response.status_code == 200
    assert response.json["sale"]["status"] == "cancelled"


def test_cancel_outside_window_is_409(client, product_a):
    sale_id = _checkout(client, product_a.id).json["sale"]["id"]
    sale = db.session.get(Sale, sale_id)
    sale.created_at = utcnow() - timedelta(days=2)
    db.session.commit()

    response = client.post(f"/api/sales/{sale_id}/cancel", json={"reason": "late"}, headers=actor_headers())
    assert response.status_code == 409


def test_drawer_routes(client, product_a):
    opened = client.post("/api/drawers/open", json={"opening_balance_cents": 10000}, headers=actor_headers())
    assert opened.status_code == 201

    again = client.post("/api/drawers/open", json={"opening_balance_cents": 0}, headers=actor_headers())
    assert again.status_code == 409

    _checkout(client, product_a.id, quantity=2, payment_method="cash")

    status = client.get("/api/drawers/status", headers=actor_headers())
    assert status.json["is_open"] is True
    assert status.json["expected_balance_cents"] == 12200

    closed = client.post("/api/drawers/close", json={"closing_balance_cents": 12000}, headers=actor_headers())
    assert closed.status_code == 200
    assert closed.json["difference_cents"] == -200

    assert client.post("/api/drawers/close", json={"closing_balance_cents": 0}, headers=actor_headers()).status_code == 404


def test_inventory_routes(client, product_a):
    headers = actor_headers(MANAGER_ID)

    entry = client.post(
        f"/api/inventory/{product_a.id}/movements",
        json={"movement_type": "entry", "quantity_delta": 5},
        headers=headers,
    )
    assert entry.status_code == 201
    assert entry.json["movement"]["new_quantity"] == 15

    bad_sign = client.post(
        f"/api/inventory/{product_a.id}/movements",
        json={"movement_type": "withdrawal", "quantity_delta": 5},
        headers=headers,
    )
    assert bad_sign.status_code == 400

    transfer = client.post(
        f"/api/inventory/{product_a.id}/transfer",
        json={"quantity": 3, "to_location": "Front"},
        headers=headers,
    )
    assert transfer.status_code == 201
    assert transfer.json["movement"]["quantity_delta"] == 0

    count = client.post(f"/api/inventory/{product_a.id}/count", json={"counted_quantity": 12}, headers=headers)
    assert count.status_code == 200
    assert count.json["movement"]["quantity_delta"] == -3

    history = client.get(f"/api/inventory/{product_a.id}/history", headers=headers)
    assert len(history.json["movements"]) == 4

    verify = client.get(f"/api/inventory/{product_a.id}/verify", headers=headers)
    assert verify.json["consistent"] is True

    summary = client.get("/api/inventory/summary?movement_type=entry", headers=headers)
    assert summary.json["total_movements"] == 1

    assert client.get("/api/inventory/summary?start=yesterday", headers=headers).status_code == 400

    low = client.get("/api/inventory/low-stock", headers=headers)
    assert low.status_code == 200
    assert low.json["products"] == []

    assert client.get("/api/inventory/999999/history", headers=headers).status_code == 404
