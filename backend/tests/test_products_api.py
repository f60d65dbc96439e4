"""
Product API tests: public storefront, admin master catalog and marketing banners.

Verifies:
- Storefront reads hide inactive products and merge franchise overrides
- Admin create assigns a sequence SKU and links franchises
- Admin updates validate prices and uniqueness
- Admin routes reject anonymous and non-admin callers
"""

import io
import uuid
from datetime import timedelta

import pytest

from conftest import make_franchise_product, make_image, make_product
from grabbi.extensions import db
from grabbi.models import FranchiseProduct, Product, ProductImage, Promotion
from grabbi.time_utils import utcnow


# =============================================================================
# STOREFRONT
# =============================================================================


class TestStorefront:

    def test_list(self, client, category):
        make_product(category, item_name="Bananas", retail_price=1.2)
        make_product(category, item_name="Hidden", online_visible=False)

        data = client.get("/api/products").get_json()

        assert data["count"] == 1
        item = data["products"][0]
        assert item["item_name"] == "Bananas"
        assert item["current_price"] == 1.2
        assert item["promotion_active"] is False

    def test_show_all(self, client, category):
        make_product(category, item_name="Hidden", online_visible=False)
        assert client.get("/api/products?show_all=true").get_json()["count"] == 1

    def test_category_filter(self, client, category):
        make_product(category, item_name="Milk")
        assert client.get(f"/api/products?category_id={uuid.uuid4()}").get_json()["count"] == 0
        assert client.get(f"/api/products?category_id={category.id}").get_json()["count"] == 1
        assert client.get("/api/products?category_id=dairy").status_code == 400

    def test_detail_with_franchise(self, client, category, franchise):
        product = make_product(category, retail_price=3.0, stock_quantity=40)
        make_franchise_product(franchise, product, retail_price_override=2.8, stock_quantity=2)
        make_image(product, "https://storage.googleapis.com/test-bucket/products/x.jpg")

        master = client.get(f"/api/products/{product.id}").get_json()["product"]
        local = client.get(f"/api/products/{product.id}?franchise_id={franchise.id}").get_json()["product"]

        assert (master["current_price"], master["stock_quantity"]) == (3.0, 40)
        assert (local["current_price"], local["stock_quantity"]) == (2.8, 2)
        assert local["image_url"].endswith("/x.jpg")
        assert len(local["images"]) == 1

    def test_inactive_detail_is_404(self, client, category):
        product = make_product(category, status="inactive")
        assert client.get(f"/api/products/{product.id}").status_code == 404

    def test_franchise_storefront(self, client, category, franchise):
        kept = make_product(category, item_name="Kept")
        hidden = make_product(category, item_name="Pulled")
        make_franchise_product(franchise, hidden, is_available=False)

        data = client.get(f"/api/franchises/{franchise.id}/products").get_json()

        assert [p["id"] for p in data["products"]] == [str(kept.id)]


# =============================================================================
# ADMIN CATALOG
# =============================================================================


class TestAdminAccess:

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/admin/products"),
        ("post", "/api/admin/products"),
        ("get", "/api/admin/products/export"),
        ("get", "/api/admin/dashboard"),
    ])
    def test_anonymous_is_401(self, client, db_session, method, path):
        assert getattr(client, method)(path).status_code == 401

    def test_customer_is_403(self, client, customer_headers):
        resp = client.get("/api/admin/products", headers=customer_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["admin"]

    def test_franchise_owner_is_403(self, client, owner_headers):
        assert client.get("/api/admin/products", headers=owner_headers).status_code == 403


class TestAdminProducts:

    def test_create_with_generated_sku(self, client, admin_headers, category, franchise):
        resp = client.post("/api/admin/products", json={
            "item_name": "Granola 500g",
            "retail_price": "3.49",
            "cost_price": 1.8,
            "category_id": str(category.id),
            "stock_quantity": 12,
            "promotion_start": "2026-03-01",
            "franchise_ids": [str(franchise.id)],
        }, headers=admin_headers)

        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["sku"] == "GRB-000001"
        assert product["retail_price"] == 3.49
        assert product["promotion_start"] == "2026-03-01"
        link = db.session.query(FranchiseProduct).one()
        assert link.stock_quantity == 12

    def test_create_missing_fields(self, client, admin_headers):
        resp = client.post("/api/admin/products", json={"item_name": "Nameless"}, headers=admin_headers)
        assert resp.status_code == 400
        assert "Missing required fields" in resp.get_json()["error"]

    def test_create_unknown_category(self, client, admin_headers):
        resp = client.post("/api/admin/products", json={
            "item_name": "Lost",
            "retail_price": 1,
            "category_id": str(uuid.uuid4()),
        }, headers=admin_headers)
        assert resp.status_code == 404

    def test_create_duplicate_sku(self, client, admin_headers, category):
        make_product(category, sku="DUP-1")
        resp = client.post("/api/admin/products", json={
            "sku": "DUP-1",
            "item_name": "Copy",
            "retail_price": 1,
            "category_id": str(category.id),
        }, headers=admin_headers)
        assert resp.status_code == 409

    def test_promotion_runs_through_its_end_date(self, client, admin_headers, category):
        today = utcnow().date()
        resp = client.post("/api/admin/products", json={
            "item_name": "Blueberries 150g",
            "retail_price": 5.0,
            "cost_price": 2.0,
            "category_id": str(category.id),
            "promotion_price": 3.0,
            "promotion_start": (today - timedelta(days=3)).isoformat(),
            "promotion_end": today.isoformat(),
        }, headers=admin_headers)

        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["promotion_end"] == today.isoformat()

        data = client.get(f"/api/products/{product['id']}").get_json()["product"]
        assert data["promotion_active"] is True
        assert data["current_price"] == 3.0

    @pytest.mark.parametrize("patch", [
        {"retail_price": 0},
        {"cost_price": -1},
        {"stock_quantity": -5},
        {"status": "archived"},
        {"sku": ""},
        {"promotion_start": "2026-05-02", "promotion_end": "2026-05-01"},
        {"version_id": 7},
    ])
    def test_update_rejects(self, client, admin_headers, category, patch):
        product = make_product(category)
        resp = client.put(f"/api/admin/products/{product.id}", json=patch, headers=admin_headers)
        assert resp.status_code == 400

    def test_update(self, client, admin_headers, category):
        product = make_product(category, retail_price=2.0)

        resp = client.put(f"/api/admin/products/{product.id}", json={
            "retail_price": 2.25,
            "online_visible": "false",
            "barcode": "5012345678900",
        }, headers=admin_headers)

        assert resp.status_code == 200
        data = resp.get_json()["product"]
        assert data["retail_price"] == 2.25
        assert data["online_visible"] is False
        assert data["barcode"] == "5012345678900"

    def test_list_and_search(self, client, admin_headers, category):
        make_product(category, item_name="Hidden", online_visible=False, sku="ABC-1")
        make_product(category, item_name="Retired", status="inactive")

        everything = client.get("/api/admin/products", headers=admin_headers).get_json()
        by_sku = client.get("/api/admin/products?search=abc", headers=admin_headers).get_json()

        assert everything["total"] == 2
        assert [p["item_name"] for p in by_sku["products"]] == ["Hidden"]

    def test_delete(self, client, admin_headers, admin_user, fake_storage, category):
        product = make_product(category)
        make_image(product, fake_storage.put("products/del.jpg"))

        resp = client.delete(f"/api/admin/products/{product.id}", headers=admin_headers)

        assert resp.status_code == 200
        deleted = db.session.get(Product, product.id)
        assert deleted.deleted_at is not None
        assert deleted.deleted_by == admin_user.email
        assert fake_storage.deleted == ["products/del.jpg"]
        assert client.get(f"/api/admin/products/{product.id}", headers=admin_headers).status_code == 404

    def test_upload_images(self, client, admin_headers, fake_storage, category):
        product = make_product(category)

        resp = client.post(
            f"/api/admin/products/{product.id}/images",
            data={"images": [(io.BytesIO(b"one"), "one.jpg", "image/jpeg"), (io.BytesIO(b"two"), "two.png", "image/png")]},
            headers=admin_headers,
            content_type="multipart/form-data",
        )

        assert resp.status_code == 201
        images = resp.get_json()["images"]
        assert [img["is_primary"] for img in images] == [True, False]
        assert images[0]["image_url"].endswith("_one.jpg")
        assert len(fake_storage.objects) == 2

    def test_upload_rejects_non_image(self, client, admin_headers, category):
        product = make_product(category)

        resp = client.post(
            f"/api/admin/products/{product.id}/images",
            data={"images": [(io.BytesIO(b"%PDF"), "doc.pdf", "application/pdf")]},
            headers=admin_headers,
            content_type="multipart/form-data",
        )

        assert resp.status_code == 400
        assert db.session.query(ProductImage).count() == 0

    def test_delete_image_endpoint(self, client, admin_headers, fake_storage, category):
        product = make_product(category)
        image = make_image(product, fake_storage.put("products/a.jpg"))

        resp = client.delete(f"/api/admin/products/{product.id}/images/{image.id}", headers=admin_headers)

        assert resp.status_code == 200
        assert fake_storage.deleted == ["products/a.jpg"]

    def test_export(self, client, admin_headers, category):
        product = make_product(category, item_name="Exported")
        make_image(product, "https://storage.googleapis.com/test-bucket/products/e.jpg")

        data = client.get("/api/admin/products/export", headers=admin_headers).get_json()

        assert data["count"] == 1
        row = data["products"][0]
        assert row["sku"] == product.sku
        assert row["image_urls"] == ["https://storage.googleapis.com/test-bucket/products/e.jpg"]
        assert row["images_provided"] is True


# =============================================================================
# MARKETING BANNERS
# =============================================================================


class TestPromotionBanners:

    def test_public_list_only_active(self, client, db_session):
        db.session.add_all([Promotion(title="Summer"), Promotion(title="Old", is_active=False)])
        db.session.commit()

        data = client.get("/api/promotions").get_json()
        assert [p["title"] for p in data["promotions"]] == ["Summer"]

    def test_admin_crud(self, client, admin_headers):
        resp = client.post("/api/promotions", json={"title": "Half price fruit"}, headers=admin_headers)
        assert resp.status_code == 201
        promo_id = resp.get_json()["promotion"]["id"]

        resp = client.put(f"/api/promotions/{promo_id}", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/promotions/{promo_id}").status_code == 404

        assert client.delete(f"/api/promotions/{promo_id}", headers=admin_headers).status_code == 200

    def test_customer_cannot_create(self, client, customer_headers):
        assert client.post("/api/promotions", json={"title": "x"}, headers=customer_headers).status_code == 403
