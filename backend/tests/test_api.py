import io
import json

import pandas as pd
import pytest

from core.dependencies import get_realtime_hub
from services.realtime import RealtimeHub, leader_room, user_room


XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def create(client, headers, payload):
    response = client.post("/api/orders", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


# =============================================================================
# AUTH AND ERRORS
# =============================================================================

def test_requires_bearer_token(client):
    response = client.get("/api/orders")
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "UNAUTHORIZED"


def test_invalid_token_rejected(client):
    response = client.get("/api/orders", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_error_envelope(client, auth_headers):
    response = client.get("/api/orders/9999", headers=auth_headers("member"))
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Order with identifier '9999' not found",
        "error_code": "RESOURCE_NOT_FOUND",
        "status_code": 404,
    }


def test_validation_error_lists_details(client, auth_headers, order_payload):
    order_payload["products"] = [{"productType": "Panel", "qty": 0, "unitPrice": 100, "gst": "18"}]
    response = client.post("/api/orders", json=order_payload, headers=auth_headers("member"))
    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "INVALID_PRODUCT"
    assert body["field"] == "products[0].qty"
    assert body["details"][0]["details"] == {"index": 0}


def test_non_object_json_rejected(client, auth_headers):
    response = client.post("/api/orders", json=[1, 2], headers=auth_headers("member"))
    assert response.status_code == 400
    assert response.json()["error"] == "Request body must be a JSON object"


# =============================================================================
# ORDERS
# =============================================================================

class TestCreate:
    def test_json_body(self, client, auth_headers, order_payload, hub, users):
        order = create(client, auth_headers("member"), order_payload)

        assert order["orderId"].startswith("PMTO")
        assert order["total"] == 306.0
        assert order["paymentDue"] == 306.0
        assert order["createdByUser"]["username"] == "member"
        assert order["sostatus"] == "Pending for Approval"

        [event] = hub.events("newOrder")
        assert user_room(users["member"].id) in event["rooms"]
        assert event["data"]["orderId"] == order["orderId"]

    def test_multipart_with_purchase_order(self, client, auth_headers, order_payload):
        form = {key: str(value) for key, value in order_payload.items() if key != "products"}
        form["products"] = json.dumps(order_payload["products"])
        response = client.post(
            "/api/orders",
            data=form,
            files={"poFile": ("po.pdf", b"%PDF-1.4 purchase order", "application/pdf")},
            headers=auth_headers("member"),
        )

        assert response.status_code == 201, response.text
        order = response.json()["data"]
        assert order["poFilePath"].startswith("/uploads/")
        assert order["poFilePath"].endswith(".pdf")
        assert order["total"] == 306.0

    def test_rejects_disallowed_upload(self, client, auth_headers, order_payload):
        form = {key: str(value) for key, value in order_payload.items() if key != "products"}
        form["products"] = json.dumps(order_payload["products"])
        response = client.post(
            "/api/orders",
            data=form,
            files={"poFile": ("po.exe", b"MZ", "application/octet-stream")},
            headers=auth_headers("member"),
        )
        assert response.status_code == 400


class TestRead:
    def test_list_is_scoped(self, client, auth_headers, users, make_order):
        own = make_order(users["member"])
        make_order(users["outsider"])

        response = client.get("/api/orders", headers=auth_headers("member"))
        assert response.status_code == 200
        assert [o["id"] for o in response.json()["data"]] == [own.id]

        response = client.get("/api/orders", headers=auth_headers("admin"))
        assert len(response.json()["data"]) == 2

    def test_get_outside_scope_is_forbidden(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"]).id
        assert client.get(f"/api/orders/{order_id}", headers=auth_headers("leader")).status_code == 200
        response = client.get(f"/api/orders/{order_id}", headers=auth_headers("outsider"))
        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    def test_paginated(self, client, auth_headers, users, make_order):
        for city in ("Patna", "Ranchi", "Patna"):
            make_order(users["member"], city=city)

        response = client.get("/api/orders/paginated?page=1&limit=2", headers=auth_headers("member"))
        data = response.json()["data"]
        assert data["total"] == 3
        assert data["pages"] == 2
        assert data["has_next"] is True
        assert len(data["items"]) == 2

        response = client.get("/api/orders/paginated?search=Ranchi", headers=auth_headers("member"))
        assert response.json()["data"]["total"] == 1

    def test_dashboard_counts(self, client, auth_headers, users, make_order):
        make_order(users["member"], dispatch_status="Delivered", installation_status="Pending")
        make_order(users["member"], fulfilling_status="Fulfilled")
        make_order(users["member"], dispatch_status="Order Cancelled")

        counts = client.get("/api/orders/dashboard-counts", headers=auth_headers("member")).json()["data"]
        assert counts["all"] == 2
        assert counts["installation"] == 1
        assert counts["dispatch"] == 1

    def test_workflow_queue(self, client, auth_headers, users, make_order):
        billable = make_order(users["member"], sostatus="Approved")
        make_order(users["member"])

        response = client.get("/api/orders/queues/bill", headers=auth_headers("member"))
        assert [o["id"] for o in response.json()["data"]] == [billable.id]

        response = client.get("/api/orders/queues/shipping", headers=auth_headers("member"))
        assert response.status_code == 404


class TestEdit:
    def test_approval_sends_mail_and_update(self, client, auth_headers, users, make_order, hub, mailer):
        order = make_order(users["member"])
        order_id, order_ref = order.id, order.order_id

        response = client.put(f"/api/orders/{order_id}", json={"sostatus": "Approved"}, headers=auth_headers("admin"))

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["sostatus"] == "Approved"
        assert data["approvalTimestamp"] is not None
        assert [m["kind"] for m in mailer.sent] == ["approved"]
        assert mailer.sent[0]["order_id"] == order_ref
        assert len(hub.events("orderUpdate")) == 1

    def test_products_sent_as_form_string(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"]).id
        products = [{"productType": "IFPD", "qty": 3, "unitPrice": 100, "gst": "18", "brand": "Promark",
                     "modelNos": ["PM-65"]}]

        response = client.put(
            f"/api/orders/{order_id}",
            data={"products": json.dumps(products)},
            headers=auth_headers("member"),
        )
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["products"][0]["qty"] == 3
        assert data["productsEditTimestamp"] is not None

    def test_installation_file_is_linked(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"]).id
        response = client.put(
            f"/api/orders/{order_id}",
            data={"installationStatus": "Completed"},
            files={"installationFile": ("report.pdf", b"%PDF-1.4 report", "application/pdf")},
            headers=auth_headers("member"),
        )
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["installationStatus"] == "Completed"
        assert data["installationFile"].startswith("/uploads/")

    @pytest.mark.parametrize("products", [[1], [None]])
    def test_non_object_products_are_rejected(self, client, auth_headers, users, make_order, products):
        order_id = make_order(users["member"]).id
        response = client.put(f"/api/orders/{order_id}", json={"products": products}, headers=auth_headers("member"))

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "INVALID_PRODUCTS_FORMAT"
        assert body["field"] == "products"

    def test_outsider_cannot_edit(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"]).id
        response = client.put(f"/api/orders/{order_id}", json={"remarks": "x"}, headers=auth_headers("outsider"))
        assert response.status_code == 403


class TestDelete:
    def test_creator_deletes(self, client, auth_headers, users, make_order, hub):
        order = make_order(users["member"])
        order_id, order_ref = order.id, order.order_id

        response = client.delete(f"/api/orders/{order_id}", headers=auth_headers("member"))
        assert response.status_code == 200
        assert response.json()["data"]["orderId"] == order_ref
        assert client.get(f"/api/orders/{order_id}", headers=auth_headers("admin")).status_code == 404
        assert len(hub.events("deleteOrder")) == 1

    def test_leader_cannot_delete_member_order(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"]).id
        response = client.delete(f"/api/orders/{order_id}", headers=auth_headers("leader"))
        assert response.status_code == 403
        assert response.json()["error"] == "You can only delete your own orders"


class TestBulk:
    def test_upload(self, client, auth_headers, hub):
        rows = [{
            "Customer Name": "Sunrise Academy",
            "Customer Email": "office@sunrise.example",
            "Order Type": "B2B",
            "Payment Terms": "Credit",
            "Dispatch From": "Lucknow",
            "Product Type": "Panel",
            "Quantity": 1,
            "Unit Price": 500,
            "GST": 18,
        }]
        buffer = io.BytesIO()
        pd.DataFrame(rows).to_excel(buffer, index=False)

        response = client.post(
            "/api/orders/bulk",
            files={"file": ("orders.xlsx", buffer.getvalue(), XLSX)},
            headers=auth_headers("member"),
        )
        assert response.status_code == 201, response.text
        [order] = response.json()["data"]
        assert order["total"] == 590.0
        assert len(hub.events("newOrder")) == 1

    def test_bad_row_reported(self, client, auth_headers):
        buffer = io.BytesIO()
        pd.DataFrame([{"Customer Name": "No Terms", "Product Type": "Panel", "Quantity": 1,
                       "Unit Price": 10}]).to_excel(buffer, index=False)

        response = client.post(
            "/api/orders/bulk",
            files={"file": ("orders.xlsx", buffer.getvalue(), XLSX)},
            headers=auth_headers("member"),
        )
        assert response.status_code == 400
        [detail] = response.json()["details"]
        assert detail["details"]["row_number"] == 2

    def test_export(self, client, auth_headers, users, make_order):
        make_order(users["member"])
        response = client.get("/api/orders/export", headers=auth_headers("member"))

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX
        assert "attachment; filename=orders_" in response.headers["content-disposition"]
        frame = pd.read_excel(io.BytesIO(response.content), sheet_name="Orders")
        assert frame.iloc[0]["Customer Name"] == "Acme Schools"


class TestInstallationMail:
    def test_sends_customer_and_internal_copy(self, client, auth_headers, users, make_order, mailer):
        order_id = make_order(users["member"]).id
        response = client.post(f"/api/orders/{order_id}/installation-mail", headers=auth_headers("member"))

        assert response.status_code == 200
        assert [m["recipient"] for m in mailer.sent] == ["buyer@acme.example", "member@example.com"]
        assert mailer.sent[1]["subject"].startswith("[Internal] Installation Assigned")

    def test_missing_customer_email(self, client, auth_headers, users, make_order):
        order_id = make_order(users["member"], customer_email=None).id
        response = client.post(f"/api/orders/{order_id}/installation-mail", headers=auth_headers("member"))
        assert response.status_code == 400
        assert response.json()["error"] == "Customer email not available"


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def test_notification_lifecycle(client, auth_headers, order_payload):
    headers = auth_headers("member")
    order = create(client, headers, order_payload)

    notifications = client.get("/api/notifications", headers=headers).json()["data"]
    assert len(notifications) == 1
    assert notifications[0]["orderId"] == order["orderId"]
    assert notifications[0]["isRead"] is False

    assert client.post("/api/notifications/mark-read", headers=headers).json()["updated"] == 1
    assert client.get("/api/notifications", headers=headers).json()["data"][0]["isRead"] is True

    assert client.delete("/api/notifications/clear", headers=headers).json()["deleted"] == 1
    assert client.get("/api/notifications", headers=headers).json()["data"] == []


# =============================================================================
# TEAMS
# =============================================================================

class TestTeams:
    def test_assign_and_unassign(self, client, auth_headers, users, hub):
        leader_id, outsider_id = users["leader"].id, users["outsider"].id
        headers = auth_headers("leader")

        response = client.post("/api/teams/assign", json={"userId": outsider_id}, headers=headers)
        assert response.status_code == 200, response.text
        assert response.json()["data"]["assignedToLeader"] == leader_id

        team = client.get("/api/teams/my-team", headers=headers).json()["data"]
        assert {m["username"] for m in team} == {"member", "outsider"}
        assert {m["leaderUsername"] for m in team} == {"leader"}

        response = client.post("/api/teams/unassign", json={"userId": outsider_id}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["assignedToLeader"] is None

        assert hub.broadcasts == [
            {"event": "teamUpdate", "data": {"userId": outsider_id, "leaderId": leader_id, "action": "assign"}},
            {"event": "teamUpdate", "data": {"userId": outsider_id, "leaderId": leader_id, "action": "unassign"}},
        ]

    @pytest.mark.parametrize("actor, target, status, error", [
        ("leader", "leader", 400, "Cannot assign yourself"),
        ("outsider", "member", 400, "User already assigned to a team"),
        ("member", "outsider", 400, "Team members cannot lead a team"),
    ])
    def test_assign_rejections(self, client, auth_headers, users, actor, target, status, error):
        response = client.post("/api/teams/assign", json={"userId": users[target].id}, headers=auth_headers(actor))
        assert response.status_code == status
        assert response.json()["error"] == error

    def test_assign_unknown_user(self, client, auth_headers):
        response = client.post("/api/teams/assign", json={"userId": 4242}, headers=auth_headers("leader"))
        assert response.status_code == 404

    def test_only_leader_unassigns(self, client, auth_headers, users):
        response = client.post("/api/teams/unassign", json={"userId": users["member"].id},
                               headers=auth_headers("outsider"))
        assert response.status_code == 403

    def test_available_users(self, client, auth_headers):
        users = client.get("/api/teams/available-users", headers=auth_headers("leader")).json()["data"]
        assert {u["username"] for u in users} == {"admin", "outsider"}

    def test_current_user(self, client, auth_headers, users):
        data = client.get("/api/teams/current-user", headers=auth_headers("member")).json()["data"]
        assert data["username"] == "member"
        assert data["assignedToLeader"] == users["leader"].id


# =============================================================================
# REALTIME AND HEALTH
# =============================================================================

def test_websocket_join(client, users):
    from main import app

    hub = RealtimeHub()
    app.dependency_overrides[get_realtime_hub] = lambda: hub
    member_id, leader_id = users["member"].id, users["leader"].id

    with client.websocket_connect("/ws") as websocket:
        websocket.send_text(json.dumps({"event": "join", "data": {"userId": member_id}}))
        joined = websocket.receive_json()
        assert joined["event"] == "joined"
        assert joined["data"]["rooms"] == sorted([user_room(member_id), leader_room(leader_id)])

        websocket.send_text(json.dumps({"event": "join", "data": {"userId": 4242}}))
        assert websocket.receive_json()["event"] == "error"

        websocket.send_text(json.dumps({"event": "ping", "data": {"n": 1}}))
        assert websocket.receive_json() == {"event": "pong", "data": {"n": 1}}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "connected"
    assert "X-Request-Id" in response.headers
