"""
Checkout pipeline and status update tests.

Verifies:
- Totals, delivery fee and loyalty points for the franchise-less path
- Franchise resolution by id and by customer location
- Override pricing and override stock rows
- Insufficient stock rolls everything back
- Cancellation restores exactly the row that was decremented
- Concurrent checkouts of the last unit never oversell
"""

import math
import threading

import pytest

from conftest import (
    add_to_cart,
    days_from_now,
    make_franchise,
    make_franchise_product,
    make_image,
    make_product,
    make_user,
)
from grabbi.extensions import db
from grabbi.models import CartItem, FranchiseProduct, LoyaltyHistory, Order, Product, User
from grabbi.services import order_service
from grabbi.services.order_service import OrderError
from grabbi.services.order_status import CANCELLED, CONFIRMED, DELIVERED


LONDON = {"customer_lat": 51.5074, "customer_lng": -0.1278}


def checkout(user, **body):
    body.setdefault("delivery_address", "1 Test Street, London")
    return order_service.place_order(user, order_service.parse_checkout(body))


def assert_totals_law(order):
    assert order.total == pytest.approx(order.subtotal + order.delivery_fee)
    assert order.points_earned == math.floor(order.subtotal)


# =============================================================================
# CHECKOUT WITHOUT A FRANCHISE
# =============================================================================


class TestLegacyCheckout:

    def test_free_delivery_over_threshold(self, db_session, customer, category):
        milk = make_product(category, item_name="Milk", retail_price=10.0)
        bread = make_product(category, item_name="Bread", retail_price=5.0)
        add_to_cart(customer, milk, 2)
        add_to_cart(customer, bread, 1)

        order = checkout(customer)

        assert order.franchise_id is None
        assert order.subtotal == 25.0
        assert order.delivery_fee == 0.0
        assert order.total == 25.0
        assert order.points_earned == 25
        assert order.status == "pending"
        assert_totals_law(order)
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 0
        assert db_session.get(User, customer.id).loyalty_points == 25

    def test_default_delivery_fee_below_threshold(self, db_session, customer, category):
        product = make_product(category, retail_price=8.0)
        add_to_cart(customer, product, 1)

        order = checkout(customer)

        assert order.subtotal == 8.0
        assert order.delivery_fee == 3.75
        assert order.total == 11.75
        assert order.points_earned == 8
        assert_totals_law(order)

    def test_master_stock_decremented(self, db_session, customer, category):
        product = make_product(category, stock_quantity=5)
        add_to_cart(customer, product, 3)

        checkout(customer)

        assert db_session.get(Product, product.id).stock_quantity == 2

    def test_items_freeze_price_name_and_image(self, db_session, customer, category):
        product = make_product(category, item_name="Oat Milk", retail_price=2.5)
        make_image(product, "https://storage.googleapis.com/test-bucket/products/oat.jpg")
        add_to_cart(customer, product, 4)

        order = checkout(customer, payment_method="card")

        [item] = order.items
        assert item.price == 2.5
        assert item.quantity == 4
        assert item.product_name == "Oat Milk"
        assert item.product_sku == product.sku
        assert item.image_url == "https://storage.googleapis.com/test-bucket/products/oat.jpg"
        assert order.payment_method == "card"
        assert order.order_number.startswith("ORD")

    def test_loyalty_history_records_points(self, db_session, customer, category):
        add_to_cart(customer, make_product(category, retail_price=12.4), 1)
        order = checkout(customer)

        [entry] = db_session.query(LoyaltyHistory).filter_by(user_id=customer.id).all()
        assert entry.points == 12
        assert entry.type == "earned"
        assert entry.order_id == order.id

    def test_active_promotion_price_applies(self, db_session, customer, category):
        product = make_product(
            category,
            retail_price=10.0,
            promotion_price=6.0,
            promotion_start=days_from_now(-1),
            promotion_end=days_from_now(1),
        )
        add_to_cart(customer, product, 1)
        assert checkout(customer).subtotal == 6.0

    def test_undated_promotion_always_applies(self, db_session, customer, category):
        product = make_product(category, retail_price=5.0, promotion_price=3.0)
        add_to_cart(customer, product, 1)
        assert checkout(customer).subtotal == 3.0

    def test_expired_promotion_is_ignored(self, db_session, customer, category):
        product = make_product(
            category,
            retail_price=10.0,
            promotion_price=6.0,
            promotion_start=days_from_now(-10),
            promotion_end=days_from_now(-1),
        )
        add_to_cart(customer, product, 1)
        assert checkout(customer).subtotal == 10.0

    def test_empty_cart(self, db_session, customer):
        with pytest.raises(OrderError) as exc:
            checkout(customer)
        assert exc.value.code == "empty_cart"

    def test_inactive_product_in_cart(self, db_session, customer, category):
        product = make_product(category, status="inactive")
        add_to_cart(customer, product, 1)
        with pytest.raises(OrderError) as exc:
            checkout(customer)
        assert exc.value.code == "product_unavailable"
        assert db_session.query(Order).count() == 0


# =============================================================================
# FRANCHISE RESOLUTION AND OVERRIDES
# =============================================================================


class TestFranchiseCheckout:

    def test_resolves_nearest_franchise_from_location(self, db_session, customer, category):
        near = make_franchise(make_user(), name="Near", latitude=51.5254, longitude=-0.1278)
        make_franchise(make_user(), name="Further", latitude=51.5434, longitude=-0.1278)
        add_to_cart(customer, make_product(category, retail_price=30.0), 1)

        order = checkout(customer, **LONDON)

        assert order.franchise_id == near.id
        assert order.customer_lat == 51.5074

    def test_no_franchise_serves_location(self, db_session, customer, category):
        make_franchise(make_user(), name="Far", latitude=51.5614, longitude=-0.1278, delivery_radius=5)
        product = make_product(category, stock_quantity=5)
        add_to_cart(customer, product, 1)

        with pytest.raises(OrderError) as exc:
            checkout(customer, **LONDON)

        assert exc.value.code == "no_franchise_serves_location"
        assert exc.value.status == 400
        assert db_session.get(Product, product.id).stock_quantity == 5
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 1

    def test_unknown_franchise_id(self, db_session, customer, category):
        add_to_cart(customer, make_product(category), 1)
        with pytest.raises(OrderError) as exc:
            checkout(customer, franchise_id="00000000-0000-0000-0000-000000000001")
        assert exc.value.code == "franchise_not_found"
        assert exc.value.status == 404

    def test_franchise_fees_apply(self, db_session, customer, category, franchise):
        franchise.delivery_fee = 2.5
        franchise.free_delivery_min = 40.0
        db_session.commit()
        add_to_cart(customer, make_product(category, retail_price=30.0), 1)

        order = checkout(customer, franchise_id=str(franchise.id))

        assert order.delivery_fee == 2.5
        assert order.total == 32.5
        assert_totals_law(order)

    def test_override_price_and_stock_row(self, db_session, customer, category, franchise):
        product = make_product(category, retail_price=10.0, stock_quantity=50)
        override = make_franchise_product(franchise, product, stock_quantity=4, retail_price_override=9.99)
        add_to_cart(customer, product, 3)

        order = checkout(customer, franchise_id=str(franchise.id))

        assert order.subtotal == 29.97
        assert order.items[0].price == 9.99
        assert db_session.get(FranchiseProduct, override.id).stock_quantity == 1
        # never both rows
        assert db_session.get(Product, product.id).stock_quantity == 50

    def test_missing_override_falls_back_to_master_stock(self, db_session, customer, category, franchise):
        product = make_product(category, stock_quantity=7)
        add_to_cart(customer, product, 2)

        checkout(customer, franchise_id=str(franchise.id))

        assert db_session.get(Product, product.id).stock_quantity == 5

    def test_insufficient_override_stock_rolls_back(self, db_session, customer, category, franchise):
        product = make_product(category, stock_quantity=50)
        override = make_franchise_product(franchise, product, stock_quantity=1, retail_price_override=9.99)
        other = make_product(category, item_name="Eggs", stock_quantity=10)
        add_to_cart(customer, product, 2)
        add_to_cart(customer, other, 1)

        with pytest.raises(OrderError) as exc:
            checkout(customer, franchise_id=str(franchise.id))

        assert exc.value.code == "insufficient_stock"
        assert exc.value.details["requested"] == 2
        assert exc.value.details["available"] == 1
        assert db_session.get(FranchiseProduct, override.id).stock_quantity == 1
        assert db_session.get(Product, other.id).stock_quantity == 10
        assert db_session.query(Order).count() == 0
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 2
        assert db_session.get(User, customer.id).loyalty_points == 0


# =============================================================================
# STATUS UPDATES AND COMPENSATION
# =============================================================================


class TestStatusUpdates:

    def test_rejects_non_adjacent_transition(self, db_session, customer, category):
        add_to_cart(customer, make_product(category), 1)
        order = checkout(customer)

        with pytest.raises(OrderError) as exc:
            order_service.update_status(order.id, DELIVERED)

        assert exc.value.code == "invalid_transition"
        assert db_session.get(Order, order.id).status == "pending"

    def test_cancel_restores_override_row(self, db_session, customer, category, franchise):
        product = make_product(category, stock_quantity=50)
        override = make_franchise_product(franchise, product, stock_quantity=6)
        add_to_cart(customer, product, 4)
        order = checkout(customer, franchise_id=str(franchise.id))
        assert db_session.get(FranchiseProduct, override.id).stock_quantity == 2

        order_service.update_status(order.id, CONFIRMED)
        order_service.update_status(order.id, CANCELLED)

        assert db_session.get(FranchiseProduct, override.id).stock_quantity == 6
        assert db_session.get(Product, product.id).stock_quantity == 50

    def test_cancel_restores_master_row(self, db_session, customer, category):
        product = make_product(category, stock_quantity=9)
        add_to_cart(customer, product, 9)
        order = checkout(customer)
        assert db_session.get(Product, product.id).stock_quantity == 0

        order_service.update_status(order.id, CANCELLED)

        assert db_session.get(Product, product.id).stock_quantity == 9

    def test_second_cancel_is_rejected_without_double_restore(self, db_session, customer, category):
        product = make_product(category, stock_quantity=5)
        add_to_cart(customer, product, 2)
        order = checkout(customer)
        order_service.update_status(order.id, CANCELLED)

        with pytest.raises(OrderError):
            order_service.update_status(order.id, CANCELLED)

        assert db_session.get(Product, product.id).stock_quantity == 5

    def test_franchise_staff_cannot_touch_other_franchise_orders(self, db_session, customer, category, franchise):
        other = make_franchise(make_user(), name="Other")
        add_to_cart(customer, make_product(category), 1)
        order = checkout(customer, franchise_id=str(other.id))
        staff = make_user(role="franchise_staff", franchise_id=franchise.id)

        with pytest.raises(OrderError) as exc:
            order_service.update_status(order.id, CONFIRMED, actor=staff)

        assert exc.value.code == "order_not_found"


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestConcurrentCheckout:

    def test_last_unit_is_sold_once(self, app, db_session, category):
        product = make_product(category, stock_quantity=1)
        buyers = [make_user(f"buyer{i}@example.com") for i in range(2)]
        for buyer in buyers:
            add_to_cart(buyer, product, 1)
        buyer_ids = [b.id for b in buyers]

        results = []
        lock = threading.Lock()
        start = threading.Barrier(len(buyer_ids))

        def _buy(user_id):
            with app.app_context():
                user = db.session.get(User, user_id)
                start.wait()
                try:
                    checkout(user)
                    outcome = "ok"
                except OrderError as exc:
                    outcome = exc.code
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)

        threads = [threading.Thread(target=_buy, args=(uid,)) for uid in buyer_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(results) == ["insufficient_stock", "ok"]
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 0
        assert db_session.query(Order).count() == 1
