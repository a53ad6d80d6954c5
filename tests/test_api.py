"""
Tests for the HTTP adapter.
"""

import uuid

from tests.conftest import auth_headers


class TestOrderEndpoints:

    async def test_create_order_end_to_end(self, client, actor, customer, product, price_list, batch):
        headers = auth_headers(actor)
        response = await client.post(
            "/api/v1/orders",
            json={
                "customer_id": str(customer.id),
                "lines": [{"product_id": str(product.id), "quantity": 10}],
            },
            headers=headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["order_number"].startswith("ORD-")
        assert body["has_oversell_warning"] is False

        detail = await client.get(f"/api/v1/orders/{body['order_id']}", headers=headers)
        assert detail.status_code == 200
        order = detail.json()["order"]
        assert float(order["subtotal_ex_vat"]) == 50.0
        assert float(order["total_inc_vat"]) == 56.75
        assert float(order["items"][0]["unit_price_ex_vat"]) == 5.0
        assert detail.json()["reserved_quantity"] == 10

        recent = await client.get(f"/api/v1/customers/{customer.id}/recent-orders", headers=headers)
        assert recent.status_code == 200
        assert recent.json()[0]["order_number"] == body["order_number"]
        assert recent.json()[0]["line_count"] == 1

    async def test_malformed_customer_id(self, client, actor):
        response = await client.post(
            "/api/v1/orders",
            json={"customer_id": "garden-centre", "lines": [{"variety": "Box", "size": "3L", "quantity": 1}]},
            headers=auth_headers(actor),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "Invalid form data"
        assert response.json()["details"]

    async def test_missing_identity(self, client, customer, product):
        response = await client.post(
            "/api/v1/orders",
            json={"customer_id": str(customer.id), "lines": [{"product_id": str(product.id), "quantity": 1}]},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    async def test_unknown_order(self, client, actor, org):
        response = await client.get(f"/api/v1/orders/{uuid.uuid4()}", headers=auth_headers(actor))

        assert response.status_code == 404
        assert response.json()["error"] == "Order not found"

    async def test_cancel_order(self, client, actor, confirmed_order):
        response = await client.post(
            f"/api/v1/orders/{confirmed_order['order_id']}/cancel",
            json={"reason": "Duplicate"},
            headers=auth_headers(actor),
        )

        assert response.status_code == 200
        assert response.json()["order"]["status"] == "cancelled"

    async def test_start_picking(self, client, actor, confirmed_order):
        response = await client.post(
            f"/api/v1/orders/{confirmed_order['order_id']}/start-picking",
            headers=auth_headers(actor),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "picking"
        assert body["pending_batch_selections"][0]["quantity"] == 10


class TestAllocationEndpoints:

    async def test_select_batch_and_list(self, client, actor, confirmed_order, batch):
        headers = auth_headers(actor)
        order_id = confirmed_order["order_id"]

        allocations = (await client.get(f"/api/v1/orders/{order_id}/allocations", headers=headers)).json()
        tier1 = allocations[0]
        assert tier1["tier"] == "product"

        response = await client.post(
            f"/api/v1/allocations/{tier1['id']}/select-batch",
            json={"batch_id": str(batch.id), "quantity": 4, "idempotency_key": "scan-1"},
            headers=headers,
        )
        assert response.status_code == 201
        assert response.json()["quantity"] == 4

        status = (await client.get(f"/api/v1/products/{tier1['product_id']}/stock-status", headers=headers)).json()
        assert status["batch_reserved"] == 4
        assert status["tier1_reserved"] == 6

    async def test_over_allocation_is_conflict(self, client, actor, confirmed_order, batch):
        headers = auth_headers(actor)
        tier1 = (await client.get(f"/api/v1/orders/{confirmed_order['order_id']}/allocations", headers=headers)).json()[0]

        response = await client.post(
            f"/api/v1/allocations/{tier1['id']}/select-batch",
            json={"batch_id": str(batch.id), "quantity": 50},
            headers=headers,
        )

        assert response.status_code == 409

    async def test_allocation_events_for_order(self, client, actor, confirmed_order, batch):
        headers = auth_headers(actor)
        order_id = confirmed_order["order_id"]
        tier1 = (await client.get(f"/api/v1/orders/{order_id}/allocations", headers=headers)).json()[0]
        await client.post(
            f"/api/v1/allocations/{tier1['id']}/select-batch",
            json={"batch_id": str(batch.id), "quantity": 4},
            headers=headers,
        )

        response = await client.get("/api/v1/allocation-events", params={"order_id": str(order_id)}, headers=headers)

        assert response.status_code == 200
        assert [(e["event_type"], e["quantity_change"]) for e in response.json()] == [("batch_allocated", 4)]

    async def test_allocation_events_need_a_filter(self, client, actor, org):
        response = await client.get("/api/v1/allocation-events", headers=auth_headers(actor))

        assert response.status_code == 422


class TestDispatchEndpoints:

    async def test_load_lifecycle(self, client, actor, confirmed_order):
        headers = auth_headers(actor)
        order_id = confirmed_order["order_id"]

        created = await client.post(
            "/api/v1/loads",
            json={"run_date": "2024-05-20", "load_name": "Dublin North", "order_ids": [str(order_id)]},
            headers=headers,
        )
        assert created.status_code == 201
        load_id = created.json()["load"]["id"]
        assert len(created.json()["items"]) == 1

        dispatched = await client.post(f"/api/v1/loads/{load_id}/dispatch", headers=headers)
        assert dispatched.status_code == 200
        assert dispatched.json()["load"]["status"] == "in_transit"

        recalled = await client.post(f"/api/v1/loads/{load_id}/recall", headers=headers)
        assert recalled.json()["load"]["status"] == "planned"
        assert recalled.json()["items"][0]["status"] == "pending"

        again = await client.post(f"/api/v1/loads/{load_id}/recall", headers=headers)
        assert again.status_code == 409
        assert again.json()["error"] == "Only in-transit loads can be recalled"

        blocked = await client.delete(f"/api/v1/loads/{load_id}", headers=headers)
        assert blocked.status_code == 409
        assert blocked.json()["error"] == "Cannot delete load with assigned orders. Remove all orders first."

        removed = await client.delete(f"/api/v1/orders/{order_id}/load", headers=headers)
        assert removed.json()["removed_items"] == 1

        deleted = await client.delete(f"/api/v1/loads/{load_id}", headers=headers)
        assert deleted.status_code == 204

    async def test_bulk_dispatch(self, client, actor, confirmed_order):
        response = await client.post(
            "/api/v1/dispatch/orders",
            json={"order_ids": [str(confirmed_order["order_id"])], "run_date": "2024-05-20"},
            headers=auth_headers(actor),
        )

        assert response.status_code == 200
        assert response.json()["warning"] is None
        assert response.json()["assigned_order_ids"] == [str(confirmed_order["order_id"])]

    async def test_move_delivery_date(self, client, actor, confirmed_order):
        response = await client.post(
            f"/api/v1/orders/{confirmed_order['order_id']}/delivery-date",
            json={"requested_delivery_date": "2024-06-01"},
            headers=auth_headers(actor),
        )

        assert response.status_code == 200
        assert response.json()["order"]["requested_delivery_date"] == "2024-06-01"


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "connected"

