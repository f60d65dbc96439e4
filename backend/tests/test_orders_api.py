"""
Orders API tests.

Verifies:
- Checkout over HTTP returns the order with frozen lines
- Checkout failures carry machine-readable codes
- Listing and detail are filtered by role
- Status updates are limited to staff roles and follow the state machine
"""

import uuid

import pytest

from conftest import add_to_cart, auth_headers, make_franchise, make_franchise_product, make_product, make_user, token_for
from grabbi.extensions import db
from grabbi.models import FranchiseProduct, Order, Product
from grabbi.models.auth import ROLE_FRANCHISE_STAFF
from grabbi.services import order_service


ADDRESS = {"delivery_address": "221B Baker Street, London"}


def checkout(user, **fields):
    return order_service.place_order(user, order_service.parse_checkout({**ADDRESS, **fields}))


class TestCreateOrder:

    def test_checkout(self, client, customer, customer_headers, category):
        product = make_product(category, item_name="Olive Oil", retail_price=6.5)
        add_to_cart(customer, product, 2)

        resp = client.post("/api/orders", json={**ADDRESS, "payment_method": "card"}, headers=customer_headers)

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["status"] == "pending"
        assert order["order_number"].startswith("ORD")
        assert order["subtotal"] == 13.0
        assert order["delivery_fee"] == 3.75
        assert order["total"] == 16.75
        assert order["points_earned"] == 13
        assert order["payment_method"] == "card"
        [line] = order["items"]
        assert (line["product_name"], line["quantity"], line["price"]) == ("Olive Oil", 2, 6.5)

    def test_empty_cart(self, client, customer_headers):
        resp = client.post("/api/orders", json=ADDRESS, headers=customer_headers)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "empty_cart"

    def test_insufficient_stock_details(self, client, customer, customer_headers, category):
        product = make_product(category, item_name="Saffron", stock_quantity=1)
        add_to_cart(customer, product, 3)

        resp = client.post("/api/orders", json=ADDRESS, headers=customer_headers)

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "insufficient_stock"
        assert body["details"]["item_name"] == "Saffron"
        assert (body["details"]["requested"], body["details"]["available"]) == (3, 1)

    def test_no_franchise_in_range(self, client, customer, customer_headers, category, franchise):
        add_to_cart(customer, make_product(category), 1)

        resp = client.post("/api/orders", json={**ADDRESS, "customer_lat": -33.86, "customer_lng": 151.2},
                           headers=customer_headers)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "no_franchise_serves_location"

    @pytest.mark.parametrize("body", [
        {},
        {"delivery_address": "   "},
        {**ADDRESS, "customer_lat": 51.5},
        {**ADDRESS, "customer_lat": 95, "customer_lng": 0},
        {**ADDRESS, "franchise_id": "not-a-uuid"},
    ])
    def test_invalid_body(self, client, customer_headers, body):
        resp = client.post("/api/orders", json=body, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_requires_auth(self, client, db_session):
        assert client.post("/api/orders", json=ADDRESS).status_code == 401


class TestReadOrders:

    def test_roles_see_their_slice(self, client, customer, franchise, owner_headers, staff_headers, admin_headers,
                                   customer_headers, category):
        product = make_product(category)
        make_franchise_product(franchise, product, stock_quantity=10)
        add_to_cart(customer, product, 1)
        mine = checkout(customer, franchise_id=str(franchise.id))

        other_owner = make_user("owner2@example.com")
        other_franchise = make_franchise(other_owner, name="Grabbi Camden")
        stranger = make_user("stranger@example.com")
        add_to_cart(stranger, product, 1)
        checkout(stranger, franchise_id=str(other_franchise.id))

        def numbers(headers):
            data = client.get("/api/orders", headers=headers).get_json()
            return data["total"], {o["order_number"] for o in data["orders"]}

        assert numbers(customer_headers) == (1, {mine.order_number})
        assert numbers(owner_headers) == (1, {mine.order_number})
        assert numbers(staff_headers) == (1, {mine.order_number})
        assert numbers(admin_headers)[0] == 2

        filtered = client.get(f"/api/orders?franchise_id={other_franchise.id}", headers=admin_headers).get_json()
        assert filtered["total"] == 1
        assert filtered["orders"][0]["franchise_id"] == str(other_franchise.id)

    def test_status_filter(self, client, customer, customer_headers, category):
        add_to_cart(customer, make_product(category), 1)
        checkout(customer)

        assert client.get("/api/orders?status=pending", headers=customer_headers).get_json()["total"] == 1
        assert client.get("/api/orders?status=delivered", headers=customer_headers).get_json()["total"] == 0
        assert client.get("/api/orders?status=lost", headers=customer_headers).status_code == 400

    def test_detail(self, client, customer, customer_headers, category):
        add_to_cart(customer, make_product(category), 1)
        order = checkout(customer)

        resp = client.get(f"/api/orders/{order.id}", headers=customer_headers)

        assert resp.status_code == 200
        assert resp.get_json()["order"]["id"] == str(order.id)

    def test_other_customers_order_is_not_found(self, client, customer_headers, category):
        stranger = make_user("stranger@example.com")
        add_to_cart(stranger, make_product(category), 1)
        order = checkout(stranger)

        resp = client.get(f"/api/orders/{order.id}", headers=customer_headers)

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "order_not_found"

    def test_unknown_order(self, client, customer_headers):
        resp = client.get(f"/api/orders/{uuid.uuid4()}", headers=customer_headers)
        assert resp.status_code == 404


class TestStatusEndpoint:

    @pytest.fixture
    def order(self, customer, franchise, category):
        product = make_product(category, stock_quantity=20)
        make_franchise_product(franchise, product, stock_quantity=8)
        add_to_cart(customer, product, 3)
        return checkout(customer, franchise_id=str(franchise.id))

    def test_customer_cannot_update(self, client, order, customer_headers):
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "confirmed"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_confirm(self, client, order, staff_headers):
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "confirmed"}, headers=staff_headers)

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "confirmed"

    def test_full_lifecycle(self, client, order, owner_headers):
        for status in ("confirmed", "preparing", "out_for_delivery", "delivered"):
            resp = client.put(f"/api/orders/{order.id}/status", json={"status": status}, headers=owner_headers)
            assert resp.status_code == 200, status

        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "cancelled"}, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_transition"

    def test_skip_is_rejected(self, client, order, admin_headers):
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "delivered"}, headers=admin_headers)

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "invalid_transition"
        assert body["details"] == {"from": "pending", "to": "delivered"}

    def test_unknown_status(self, client, order, admin_headers):
        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "lost"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_status"

    def test_missing_status(self, client, order, admin_headers):
        assert client.put(f"/api/orders/{order.id}/status", json={}, headers=admin_headers).status_code == 400

    def test_cancel_restores_franchise_stock(self, client, order, franchise, admin_headers):
        link = db.session.query(FranchiseProduct).filter_by(franchise_id=franchise.id).one()
        assert link.stock_quantity == 5

        resp = client.put(f"/api/orders/{order.id}/status", json={"status": "cancelled"}, headers=admin_headers)

        assert resp.status_code == 200
        db.session.refresh(link)
        assert link.stock_quantity == 8
        master = db.session.get(Product, link.product_id)
        assert master.stock_quantity == 20

    def test_other_franchise_staff_get_404(self, client, order):
        rival_owner = make_user("rival@example.com")
        rival = make_franchise(rival_owner, name="Grabbi Rival")
        rival_staff = make_user("rival-staff@example.com", role=ROLE_FRANCHISE_STAFF, franchise_id=rival.id)

        resp = client.put(
            f"/api/orders/{order.id}/status",
            json={"status": "confirmed"},
            headers=auth_headers(token_for(rival_staff)),
        )

        assert resp.status_code == 404
        assert db.session.get(Order, order.id).status == "pending"
