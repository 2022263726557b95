"""Integration tests for the HTTP and WebSocket surface via TestClient (in-memory backends)."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from dispatch.main import app

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
BUSINESS = {"X-User-Id": "biz-1", "X-User-Role": "business"}
OTHER_BUSINESS = {"X-User-Id": "biz-2", "X-User-Role": "business"}


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def _rider_headers(rider_id):
    return {"X-User-Id": rider_id, "X-User-Role": "rider"}


def _create_rider(client, name="Rider One"):
    response = client.post("/admin/riders", json={"name": name, "phone": "+15550001"}, headers=ADMIN)
    assert response.status_code == 201
    return response.json()["rider"]["id"]


def _create_order(client, headers=BUSINESS):
    response = client.post(
        "/orders",
        json={
            "pickup_address": "A",
            "pickup_lat": 6.9,
            "pickup_lng": 79.8,
            "dropoff_address": "B",
            "delivery_date": "2026-10-20",
            "delivery_time": "14:00-16:00",
            "customer_name": "Ana",
            "customer_phone": "+15550002",
            "product_description": "Documents",
            "product_weight": 0.5,
        },
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["order"]


def _assign(client, order_id, rider_id):
    return client.post(f"/admin/orders/{order_id}/assign", json={"rider_id": rider_id}, headers=ADMIN)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_metrics_endpoint(client):
    _create_order(client)
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "orders_created_total" in response.text


def test_create_order(client):
    order = _create_order(client)
    assert order["status"] == "pending"
    assert order["business"] == "biz-1"
    assert order["pickup_location"]["coordinates"] == {"latitude": 6.9, "longitude": 79.8}
    assert order["dropoff_location"]["coordinates"] is None
    assert len(order["timeline"]) == 1


def test_missing_identity_headers_is_rejected(client):
    assert client.get("/orders").status_code == 422


def test_role_errors_map_to_403(client):
    response = client.post("/admin/riders", json={"name": "X", "phone": "1"}, headers=BUSINESS)
    assert response.status_code == 403
    assert response.json() == {"detail": "Only administrators can manage riders"}


def test_delivery_flow(client):
    rider_id = _create_rider(client)
    order = _create_order(client)

    response = _assign(client, order["id"], rider_id)
    assert response.status_code == 200
    assert response.json()["order"]["status"] == "assigned"

    second = _create_order(client)
    response = _assign(client, second["id"], rider_id)
    assert response.status_code == 409
    assert response.json()["detail"] == "Rider already has an active order"

    for status in ("picked_up", "in_transit", "delivered"):
        response = client.patch(
            f"/orders/{order['id']}/status",
            json={"status": status, "notes": f"now {status}", "latitude": 6.91, "longitude": 79.86},
            headers=_rider_headers(rider_id),
        )
        assert response.status_code == 200
        assert response.json()["order"]["status"] == status

    delivered = client.get(f"/orders/{order['id']}", headers=BUSINESS).json()["order"]
    assert delivered["actual_delivery_time"] is not None
    assert [e["status"] for e in delivered["timeline"]] == [
        "pending", "assigned", "picked_up", "in_transit", "delivered",
    ]
    assert _assign(client, second["id"], rider_id).status_code == 200


def test_invalid_and_unknown_status(client):
    rider_id = _create_rider(client)
    order = _create_order(client)
    _assign(client, order["id"], rider_id)
    url = f"/orders/{order['id']}/status"
    assert client.patch(url, json={"status": "delivered"}, headers=_rider_headers(rider_id)).status_code == 400
    assert client.patch(url, json={"status": "warp"}, headers=_rider_headers(rider_id)).status_code == 400
    assert client.patch(url, json={"status": "picked_up"}, headers=_rider_headers("someone")).status_code == 404


def test_rider_fail_and_location(client):
    rider_id = _create_rider(client)
    order = _create_order(client)
    _assign(client, order["id"], rider_id)
    headers = _rider_headers(rider_id)

    response = client.post("/rider/location", json={"latitude": 6.92, "longitude": 79.85}, headers=headers)
    assert response.status_code == 200
    location = response.json()["location"]
    assert location["is_online"] is True
    assert location["current_order"] == order["id"]

    response = client.post(f"/rider/orders/{order['id']}/fail", json={"reason": "customer unreachable"}, headers=headers)
    assert response.status_code == 200
    failed = response.json()["order"]
    assert failed["status"] == "failed"
    assert failed["failure_reason"] == "customer unreachable"

    response = client.post("/rider/location", json={"latitude": 6.92, "longitude": 79.85}, headers=headers)
    assert response.json()["location"]["current_order"] is None


def test_toggle_online(client):
    rider_id = _create_rider(client)
    response = client.post("/rider/toggle-online", headers=_rider_headers(rider_id))
    assert response.json() == {"message": "Status updated to online", "is_online": True}
    assert client.post("/rider/toggle-online", headers=_rider_headers("ghost")).status_code == 404


def test_order_visibility_and_listing(client):
    order = _create_order(client)
    _create_order(client, headers=OTHER_BUSINESS)
    assert client.get(f"/orders/{order['id']}", headers=OTHER_BUSINESS).status_code == 403
    assert client.get("/orders/missing", headers=ADMIN).status_code == 404

    body = client.get("/orders", headers=BUSINESS).json()
    assert body["pagination"] == {"current": 1, "pages": 1, "total": 1}
    assert client.get("/orders?status=pending", headers=ADMIN).json()["pagination"]["total"] == 2


def test_order_listing_by_creation_date(client):
    _create_order(client)

    def total(**params):
        response = client.get("/orders", params=params, headers=BUSINESS)
        assert response.status_code == 200
        return response.json()["pagination"]["total"]

    assert total(date_from="2020-01-01T00:00:00Z") == 1
    assert total(date_from="2020-01-01T00:00:00Z", date_to="2020-12-31T23:59:59Z") == 0
    assert total(date_to="2999-01-01T00:00:00") == 1

    response = client.get(
        "/orders",
        params={"date_from": "2021-01-01T00:00:00Z", "date_to": "2020-01-01T00:00:00Z"},
        headers=BUSINESS,
    )
    assert response.status_code == 400
    assert client.get("/orders", params={"date_from": "yesterday"}, headers=BUSINESS).status_code == 422


def test_cancel(client):
    order = _create_order(client)
    response = client.post(f"/orders/{order['id']}/cancel", json={"reason": "duplicate"}, headers=BUSINESS)
    assert response.status_code == 200
    assert response.json()["order"]["status"] == "cancelled"
    again = client.post(f"/orders/{order['id']}/cancel", headers=BUSINESS)
    assert again.status_code == 400


def test_admin_rider_listing_and_toggle(client):
    rider_id = _create_rider(client)
    response = client.patch(f"/admin/riders/{rider_id}/toggle-status", headers=ADMIN)
    assert response.json()["rider"]["is_active"] is False
    body = client.get("/admin/riders?status=inactive", headers=ADMIN).json()
    assert [r["rider"]["id"] for r in body["riders"]] == [rider_id]
    assert body["riders"][0]["has_active_order"] is False

    order = _create_order(client)
    assert _assign(client, order["id"], rider_id).status_code == 404


def test_websocket_streams_order_events(client):
    rider_id = _create_rider(client)
    order = _create_order(client)
    with client.websocket_connect(f"/ws/orders/{order['id']}", headers=BUSINESS) as ws:
        assert ws.receive_json() == {"event": "subscribed", "order_id": order["id"]}
        _assign(client, order["id"], rider_id)
        event = ws.receive_json()
        assert event["event"] == "status-update"
        assert event["status"] == "assigned"

        client.post("/rider/location", json={"latitude": 1, "longitude": 2}, headers=_rider_headers(rider_id))
        event = ws.receive_json()
        assert event["event"] == "location-update"
        assert event["location"] == {"latitude": 1.0, "longitude": 2.0}


def test_websocket_rejects_outsiders(client):
    order = _create_order(client)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws/orders/{order['id']}", headers=OTHER_BUSINESS) as ws:
            ws.receive_json()
    assert exc.value.code == 4403
