"""Tests for the table order endpoints."""

from decimal import Decimal

import pytest

from tabsettle.core.security import create_access_token

ORDERS = "/api/v1/orders"


@pytest.fixture
def open_buffet(client, auth_headers, test_table, buffet_package, test_employee):
    response = client.post(
        ORDERS,
        json={
            "table_id": test_table.id,
            "kind": "buffet",
            "buffet_package_id": buffet_package.id,
            "buffet_quantity": 2,
            "employee_id": test_employee.id,
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestOpenOrder:
    def test_open(self, open_buffet, buffet_package):
        assert open_buffet["status"] == "pending"
        assert open_buffet["buffet_quantity"] == 2
        assert open_buffet["buffet_package_id"] == buffet_package.id
        assert Decimal(open_buffet["total_amount"]) == Decimal("398000")
        assert open_buffet["version"] == 1

    def test_table_already_open(self, client, auth_headers, open_buffet, test_table):
        response = client.post(ORDERS, json={"table_id": test_table.id}, headers=auth_headers)

        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "table_already_open"
        assert data["existing_order_id"] == open_buffet["id"]

    def test_unknown_table(self, client, auth_headers):
        response = client.post(ORDERS, json={"table_id": 999}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["code"] == "unknown_table"

    def test_requires_token(self, client, test_table):
        response = client.post(ORDERS, json={"table_id": test_table.id})
        assert response.status_code == 401

    def test_rejects_foreign_token(self, client, test_table, settings):
        forged = settings.model_copy(update={"secret_key": "another-secret-key-of-sufficient-length"})
        token = create_access_token({"sub": "1", "role": "staff"}, settings=forged)
        response = client.post(
            ORDERS, json={"table_id": test_table.id}, headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


class TestEditOrder:
    def test_replace_items_twice(self, client, auth_headers, open_buffet, coke, beer):
        url = f"{ORDERS}/{open_buffet['id']}"
        client.put(url, json={"items": [{"food_item_id": coke.id, "quantity": 1}]}, headers=auth_headers)
        response = client.put(
            url,
            json={"items": [
                {"food_item_id": coke.id, "quantity": 1},
                {"food_item_id": beer.id, "quantity": 2},
            ]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        items = sorted((i["food_item_id"], i["quantity"]) for i in response.json()["items"])
        assert items == [(coke.id, 1), (beer.id, 2)]

    def test_stale_version(self, client, auth_headers, open_buffet, coke):
        url = f"{ORDERS}/{open_buffet['id']}"
        client.put(url, json={"notes": "vip"}, headers=auth_headers)
        response = client.put(
            url,
            json={"items": [{"food_item_id": coke.id}], "version": open_buffet["version"]},
            headers=auth_headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "stale_version"

    def test_item_changes(self, client, auth_headers, open_buffet, coke):
        response = client.post(
            f"{ORDERS}/{open_buffet['id']}/items/changes",
            json={"changes": [
                {"action": "add", "food_item_id": coke.id, "quantity": 2},
                {"action": "set_quantity", "food_item_id": coke.id, "quantity": 3},
            ]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert [(i["food_item_id"], i["quantity"]) for i in data["items"]] == [(coke.id, 3)]
        assert Decimal(data["subtotal"]) == Decimal("443000")

    def test_empty_change_list_rejected(self, client, auth_headers, open_buffet):
        response = client.post(
            f"{ORDERS}/{open_buffet['id']}/items/changes",
            json={"changes": []},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_ticket_top_up(self, client, auth_headers, open_buffet, buffet_package):
        response = client.post(
            f"{ORDERS}/{open_buffet['id']}/tickets",
            json={"buffet_package_id": buffet_package.id, "quantity": 3},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["buffet_quantity"] == 5

        ledger = client.get(f"{ORDERS}/{open_buffet['id']}/tickets", headers=auth_headers).json()
        assert ledger["total_tickets"] == 5
        assert len(ledger["entries"]) == 2
        assert len(ledger["blocks"]) == 1
        assert Decimal(ledger["ticket_revenue"]) == Decimal("995000")

    def test_ticket_top_up_other_package(self, client, auth_headers, open_buffet, premium_package):
        response = client.post(
            f"{ORDERS}/{open_buffet['id']}/tickets",
            json={"buffet_package_id": premium_package.id, "quantity": 1},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "package_mismatch"

    def test_zero_tickets_rejected(self, client, auth_headers, open_buffet, buffet_package):
        response = client.post(
            f"{ORDERS}/{open_buffet['id']}/tickets",
            json={"buffet_package_id": buffet_package.id, "quantity": 0},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_quantity"

    def test_ticket_entries_record_the_caller(self, client, auth_headers, open_buffet, test_employee):
        ledger = client.get(f"{ORDERS}/{open_buffet['id']}/tickets", headers=auth_headers).json()
        assert ledger["entries"][0]["recorded_by"] == test_employee.id


class TestSettleOrder:
    def test_settle_then_repeat(self, client, auth_headers, open_buffet, coke):
        url = f"{ORDERS}/{open_buffet['id']}"
        client.put(url, json={"items": [{"food_item_id": coke.id, "quantity": 3}]}, headers=auth_headers)

        first = client.post(f"{url}/settle", json={"payment_method": "cash"}, headers=auth_headers)
        assert first.status_code == 201
        invoice = first.json()["invoice"]
        assert first.json()["already_settled"] is False
        assert Decimal(invoice["total_amount"]) == Decimal("443000")
        assert len(invoice["items"]) == 2

        second = client.post(f"{url}/settle", headers=auth_headers)
        assert second.status_code == 200
        assert second.json()["already_settled"] is True
        assert second.json()["invoice"]["id"] == invoice["id"]

    def test_put_paid_settles(self, client, auth_headers, open_buffet, coke):
        url = f"{ORDERS}/{open_buffet['id']}"
        response = client.put(
            url,
            json={
                "items": [{"food_item_id": coke.id, "quantity": 3}],
                "status": "paid",
                "payment_method": "card",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "paid"
        assert data["payment_method"] == "card"
        assert Decimal(data["total_amount"]) == Decimal("443000")

        invoices = client.get("/api/v1/invoices", headers=auth_headers).json()
        assert invoices["total"] == 1

    def test_repeated_put_paid_returns_settled_order(
        self, client, auth_headers, open_buffet, buffet_package, coke, test_employee
    ):
        url = f"{ORDERS}/{open_buffet['id']}"
        body = {
            "items": [{"food_item_id": coke.id, "quantity": 3}],
            "employee_id": test_employee.id,
            "buffet_package_id": buffet_package.id,
            "buffet_quantity": 1,
            "status": "paid",
        }

        first = client.put(url, json=body, headers=auth_headers)
        second = client.put(url, json=body, headers=auth_headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["status"] == "paid"
        assert second.json()["buffet_quantity"] == 3
        assert second.json()["total_amount"] == first.json()["total_amount"]
        assert second.json()["version"] == first.json()["version"]

        invoices = client.get("/api/v1/invoices", headers=auth_headers).json()
        assert invoices["total"] == 1

    def test_failed_put_paid_keeps_the_tab(self, client, auth_headers, test_table, coke):
        order = client.post(
            ORDERS,
            json={"table_id": test_table.id, "items": [{"food_item_id": coke.id, "quantity": 3}]},
            headers=auth_headers,
        ).json()
        url = f"{ORDERS}/{order['id']}"

        response = client.put(url, json={"status": "paid", "items": []}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["code"] == "empty_order"

        after = client.get(url, headers=auth_headers).json()
        assert after["status"] == "pending"
        assert after["version"] == order["version"]
        assert Decimal(after["total_amount"]) == Decimal("45000")
        assert [(i["food_item_id"], i["quantity"]) for i in after["items"]] == [(coke.id, 3)]

    def test_paid_order_is_read_only(self, client, auth_headers, open_buffet, coke):
        url = f"{ORDERS}/{open_buffet['id']}"
        client.post(f"{url}/settle", headers=auth_headers)

        response = client.put(url, json={"items": [{"food_item_id": coke.id}]}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "order_closed"

    def test_settle_empty_order(self, client, auth_headers, test_table):
        order = client.post(ORDERS, json={"table_id": test_table.id}, headers=auth_headers).json()
        response = client.post(f"{ORDERS}/{order['id']}/settle", headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["code"] == "empty_order"

    def test_settle_missing_order(self, client, auth_headers):
        response = client.post(f"{ORDERS}/999/settle", headers=auth_headers)
        assert response.status_code == 404


class TestListOrders:
    def test_filters(self, client, auth_headers, open_buffet, other_table):
        client.post(ORDERS, json={"table_id": other_table.id}, headers=auth_headers)
        client.post(f"{ORDERS}/{open_buffet['id']}/settle", headers=auth_headers)

        pending = client.get(f"{ORDERS}?status=pending", headers=auth_headers).json()
        assert pending["total"] == 1
        assert pending["items"][0]["table_id"] == other_table.id

        everything = client.get(ORDERS, headers=auth_headers).json()
        assert everything["total"] == 2

    def test_get_missing(self, client, auth_headers):
        response = client.get(f"{ORDERS}/999", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "order_not_found"


class TestApplication:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.json()["checks"]["database"] == "healthy"

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_metrics_for_managers(self, client, auth_headers, manager_headers, open_buffet, test_table):
        client.post(ORDERS, json={"table_id": test_table.id}, headers=auth_headers)

        assert client.get("/metrics", headers=auth_headers).status_code == 403
        response = client.get("/metrics", headers=manager_headers)
        assert response.status_code == 200
        assert 'order_conflicts_total{kind="table_already_open"}' in response.text
