"""
Catalog service tests.

Verifies:
- Effective price and stock resolution with franchise overrides
- Promotion window rules
- Storefront listing filters
- SKU reservation
- Image and product deletion never remove order-referenced objects
"""

from datetime import datetime

import pytest

from conftest import (
    add_to_cart,
    days_from_now,
    make_franchise_product,
    make_image,
    make_product,
)
from grabbi.extensions import db
from grabbi.models import CartItem, Order, OrderItem, Product, ProductImage
from grabbi.services import catalog_service, product_service
from grabbi.time_utils import end_of_day
from grabbi.validation import NotFoundError


NOW = datetime(2026, 6, 1, 12, 0, 0)


def freeze_order_line(user, product, image_url):
    order = Order(
        user_id=user.id,
        order_number=f"ORD-REF-{product.sku}",
        subtotal=product.retail_price,
        total=product.retail_price,
        delivery_address="1 Test Street",
    )
    order.items = [OrderItem(product_id=product.id, image_url=image_url, quantity=1, price=product.retail_price)]
    db.session.add(order)
    db.session.commit()


# =============================================================================
# PROMOTION WINDOW
# =============================================================================


class TestPromotionWindow:

    @pytest.mark.parametrize("start,end,active", [
        (datetime(2026, 5, 1), datetime(2026, 7, 1), True),
        (datetime(2026, 5, 1), None, True),
        (None, datetime(2026, 7, 1), True),
        (datetime(2026, 7, 1), None, False),
        (None, datetime(2026, 5, 1), False),
        (None, None, True),
        (None, end_of_day(NOW), True),
    ])
    def test_window(self, start, end, active):
        assert catalog_service.is_promotion_active(1.5, start, end, NOW) is active

    def test_needs_a_price(self):
        assert catalog_service.is_promotion_active(None, datetime(2026, 5, 1), None, NOW) is False


# =============================================================================
# EFFECTIVE VALUES
# =============================================================================


class TestEffectiveValues:

    def test_master_only(self, category):
        product = make_product(
            category,
            retail_price=4.0,
            promotion_price=3.0,
            promotion_start=datetime(2026, 5, 1),
            promotion_end=datetime(2026, 7, 1),
            stock_quantity=12,
        )

        eff = catalog_service.effective_values(product, None, NOW)

        assert eff["current_price"] == 3.0
        assert eff["promotion_active"] is True
        assert eff["stock_quantity"] == 12
        assert eff["has_override"] is False

    def test_override_price_and_stock(self, category, franchise):
        product = make_product(category, retail_price=4.0, stock_quantity=12, shelf_location="A1")
        override = make_franchise_product(franchise, product, stock_quantity=3, retail_price_override=3.49)

        eff = catalog_service.effective_values(product, override, NOW)

        assert eff["retail_price"] == 3.49
        assert eff["current_price"] == 3.49
        assert eff["stock_quantity"] == 3
        assert eff["reorder_level"] == 5
        assert eff["shelf_location"] == "A1"
        assert eff["has_override"] is True

    def test_override_window_replaces_master_window(self, category, franchise):
        product = make_product(
            category,
            retail_price=4.0,
            promotion_price=3.0,
            promotion_start=datetime(2026, 5, 1),
            promotion_end=datetime(2026, 7, 1),
        )
        override = make_franchise_product(
            franchise,
            product,
            promotion_price_override=2.5,
            promotion_start_override=datetime(2026, 7, 1),
        )

        eff = catalog_service.effective_values(product, override, NOW)

        assert eff["promotion_price"] == 2.5
        assert eff["promotion_active"] is False
        assert eff["current_price"] == 4.0

    def test_override_price_with_master_window(self, category, franchise):
        product = make_product(
            category,
            retail_price=4.0,
            promotion_price=3.0,
            promotion_start=datetime(2026, 5, 1),
        )
        override = make_franchise_product(franchise, product, promotion_price_override=2.5)

        eff = catalog_service.effective_values(product, override, NOW)

        assert eff["promotion_active"] is True
        assert eff["current_price"] == 2.5


# =============================================================================
# STOREFRONT LISTING
# =============================================================================


class TestListProducts:

    def test_filters_status_and_visibility(self, category):
        make_product(category, item_name="Apples")
        make_product(category, item_name="Hidden Pears", online_visible=False)
        make_product(category, item_name="Retired Plums", status="inactive")

        visible = [p["item_name"] for p in catalog_service.list_products()]
        everything = [p["item_name"] for p in catalog_service.list_products(show_all=True)]

        assert visible == ["Apples"]
        assert everything == ["Apples", "Hidden Pears"]

    def test_search_is_case_insensitive(self, category):
        make_product(category, item_name="Semi Skimmed Milk")
        make_product(category, item_name="Bread")

        names = [p["item_name"] for p in catalog_service.list_products(search="milk")]
        assert names == ["Semi Skimmed Milk"]

    def test_deleted_products_are_hidden(self, category):
        product = make_product(category)
        product.deleted_at = days_from_now(-1)
        db.session.commit()
        assert catalog_service.list_products() == []

    def test_franchise_merge_and_unavailable(self, category, franchise):
        apples = make_product(category, item_name="Apples", retail_price=2.0)
        pears = make_product(category, item_name="Pears", retail_price=2.0)
        make_franchise_product(franchise, apples, retail_price_override=1.75, stock_quantity=4)
        make_franchise_product(franchise, pears, is_available=False)

        listing = catalog_service.list_products(franchise_id=franchise.id)

        assert [p["item_name"] for p in listing] == ["Apples"]
        assert listing[0]["current_price"] == 1.75
        assert listing[0]["stock_quantity"] == 4

    def test_primary_image_first(self, category):
        product = make_product(category)
        make_image(product, "https://storage.googleapis.com/test-bucket/products/2.jpg", is_primary=False, position=0)
        make_image(product, "https://storage.googleapis.com/test-bucket/products/1.jpg", is_primary=True, position=1)

        [item] = catalog_service.list_products()
        assert item["image_url"].endswith("/1.jpg")


# =============================================================================
# SKU RESERVATION
# =============================================================================


class TestLookups:

    def test_find_by_sku_hides_deleted(self, category):
        product = make_product(category, sku="GRB-LOOKUP")
        assert catalog_service.find_by_sku("GRB-LOOKUP").id == product.id

        product.deleted_at = days_from_now(-1)
        db.session.commit()

        assert catalog_service.find_by_sku("GRB-LOOKUP") is None
        assert catalog_service.find_by_sku("GRB-LOOKUP", include_deleted=True).id == product.id
        assert catalog_service.find_by_sku("") is None


class TestSkuReservation:

    def test_sequential(self, db_session):
        first = catalog_service.reserve_skus(3)
        second = catalog_service.reserve_skus(2)

        assert first == ["GRB-000001", "GRB-000002", "GRB-000003"]
        assert second == ["GRB-000004", "GRB-000005"]

    def test_skips_taken(self, category):
        make_product(category, sku="GRB-000001")
        skus = catalog_service.reserve_skus(2)

        assert "GRB-000001" not in skus
        assert skus[1] == "GRB-000002"
        assert len(set(skus)) == 2

    def test_zero(self, db_session):
        assert catalog_service.reserve_skus(0) == []


# =============================================================================
# DELETION
# =============================================================================


class TestImageDeletion:

    def test_delete_image_removes_object(self, fake_storage, category):
        product = make_product(category)
        url = fake_storage.put("products/one.jpg")
        image = make_image(product, url)

        product_service.delete_image(product.id, image.id, fake_storage)

        assert fake_storage.deleted == ["products/one.jpg"]
        assert db.session.get(ProductImage, image.id).deleted_at is not None

    def test_order_referenced_object_survives(self, fake_storage, category, customer):
        product = make_product(category)
        url = fake_storage.put("products/ordered.jpg")
        image = make_image(product, url)
        freeze_order_line(customer, product, url)

        assert catalog_service.image_is_order_referenced(url) == 1
        product_service.delete_image(product.id, image.id, fake_storage)

        assert fake_storage.deleted == []
        assert "products/ordered.jpg" in fake_storage.objects
        assert db.session.get(ProductImage, image.id).deleted_at is not None

    def test_next_image_promoted(self, fake_storage, category):
        product = make_product(category)
        first = make_image(product, fake_storage.put("products/1.jpg"), is_primary=True, position=0)
        second = make_image(product, fake_storage.put("products/2.jpg"), is_primary=False, position=1)

        product_service.delete_image(product.id, first.id, fake_storage)

        assert db.session.get(ProductImage, second.id).is_primary is True

    def test_store_failure_still_deletes_row(self, fake_storage, category):
        product = make_product(category)
        image = make_image(product, fake_storage.put("products/stuck.jpg"))
        fake_storage.fail_deletes.add("products/stuck.jpg")

        product_service.delete_image(product.id, image.id, fake_storage)

        assert db.session.get(ProductImage, image.id).deleted_at is not None

    def test_unknown_image(self, fake_storage, category):
        product = make_product(category)
        with pytest.raises(NotFoundError):
            product_service.delete_image(product.id, product.id, fake_storage)


class TestProductCascade:

    def test_cascade(self, fake_storage, category, customer):
        product = make_product(category)
        kept_url = fake_storage.put("products/kept.jpg")
        gone_url = fake_storage.put("products/gone.jpg")
        make_image(product, kept_url, is_primary=True, position=0)
        make_image(product, gone_url, is_primary=False, position=1)
        freeze_order_line(customer, product, kept_url)
        other = make_product(category, item_name="Other")
        add_to_cart(customer, product, 2)
        add_to_cart(customer, other, 1)

        count = catalog_service.delete_products_cascade([product], fake_storage, deleted_by="admin@example.com")
        db.session.commit()

        assert count == 1
        refreshed = db.session.get(Product, product.id)
        assert refreshed.deleted_at is not None
        assert refreshed.deleted_by == "admin@example.com"
        assert fake_storage.deleted == ["products/gone.jpg"]
        live = db.session.query(ProductImage).filter_by(product_id=product.id, deleted_at=None).count()
        assert live == 0
        assert [c.product_id for c in db.session.query(CartItem).all()] == [other.id]

    def test_empty(self, fake_storage):
        assert catalog_service.delete_products_cascade([], fake_storage) == 0

    def test_delete_product_hides_it(self, fake_storage, category):
        product = make_product(category)
        product_service.delete_product(product.id, fake_storage)

        assert catalog_service.find_product_by_id(product.id) is None
        assert catalog_service.find_product_by_id(product.id, include_deleted=True) is not None
