"""
Category API tests.

Verifies:
- Public reads list live categories with their subcategories
- Admin CRUD for categories and subcategories
- Deletion is refused while products or subcategories remain
"""

import uuid

from conftest import make_category, make_product, make_subcategory
from grabbi.extensions import db
from grabbi.models import Category, Subcategory
from grabbi.services import category_service


class TestPublicReads:

    def test_list_with_subcategories(self, client, db_session):
        dairy = make_category("Dairy & Eggs")
        make_subcategory(dairy, "Milk")
        make_subcategory(dairy, "Cheese")
        make_category("Bakery")

        data = client.get("/api/categories").get_json()["categories"]

        assert [c["name"] for c in data] == ["Bakery", "Dairy & Eggs"]
        assert [s["name"] for s in data[1]["subcategories"]] == ["Cheese", "Milk"]

    def test_deleted_are_hidden(self, client, db_session):
        gone = make_category("Gone")
        gone.deleted_at = gone.created_at
        db.session.commit()

        assert client.get("/api/categories").get_json()["categories"] == []
        assert client.get(f"/api/categories/{gone.id}").status_code == 404

    def test_detail_and_subcategories(self, client, category):
        make_subcategory(category, "Eggs")

        detail = client.get(f"/api/categories/{category.id}").get_json()["category"]
        subs = client.get(f"/api/categories/{category.id}/subcategories").get_json()["subcategories"]

        assert detail["name"] == category.name
        assert [s["name"] for s in subs] == ["Eggs"]

    def test_unknown(self, client, db_session):
        assert client.get(f"/api/categories/{uuid.uuid4()}/subcategories").status_code == 404


class TestAdminCategories:

    def test_create_update_delete(self, client, admin_headers):
        resp = client.post("/api/admin/categories", json={"name": "Frozen"}, headers=admin_headers)
        assert resp.status_code == 201
        category_id = resp.get_json()["category"]["id"]

        resp = client.put(f"/api/admin/categories/{category_id}", json={"description": "Ice cold"}, headers=admin_headers)
        assert resp.get_json()["category"]["description"] == "Ice cold"

        assert client.delete(f"/api/admin/categories/{category_id}", headers=admin_headers).status_code == 200
        assert db.session.get(Category, uuid.UUID(category_id)).deleted_at is not None

    def test_name_required(self, client, admin_headers):
        assert client.post("/api/admin/categories", json={}, headers=admin_headers).status_code == 400

    def test_unknown_field(self, client, admin_headers):
        resp = client.post("/api/admin/categories", json={"name": "X", "owner": "me"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_refuses_delete_with_products(self, client, admin_headers, category):
        make_product(category)

        resp = client.delete(f"/api/admin/categories/{category.id}", headers=admin_headers)

        assert resp.status_code == 400
        assert "products" in resp.get_json()["error"]
        assert category_service.get_category(category.id) is not None

    def test_refuses_delete_with_subcategories(self, client, admin_headers, category):
        make_subcategory(category)

        resp = client.delete(f"/api/admin/categories/{category.id}", headers=admin_headers)

        assert resp.status_code == 400
        assert "subcategories" in resp.get_json()["error"]

    def test_deleted_products_do_not_block(self, client, admin_headers, category):
        product = make_product(category)
        product.deleted_at = product.created_at
        db.session.commit()

        assert client.delete(f"/api/admin/categories/{category.id}", headers=admin_headers).status_code == 200

    def test_requires_admin(self, client, customer_headers):
        assert client.post("/api/admin/categories", json={"name": "X"}, headers=customer_headers).status_code == 403


class TestAdminSubcategories:

    def test_create_and_move(self, client, admin_headers, category):
        other = make_category("Bakery")
        resp = client.post("/api/admin/subcategories", json={
            "category_id": str(category.id),
            "name": "Butter",
        }, headers=admin_headers)
        assert resp.status_code == 201
        sub_id = resp.get_json()["subcategory"]["id"]

        resp = client.put(f"/api/admin/subcategories/{sub_id}", json={"category_id": str(other.id)}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.get_json()["subcategory"]["category_id"] == str(other.id)

    def test_unknown_parent(self, client, admin_headers):
        resp = client.post("/api/admin/subcategories", json={
            "category_id": str(uuid.uuid4()),
            "name": "Orphan",
        }, headers=admin_headers)
        assert resp.status_code == 404

    def test_refuses_delete_with_products(self, client, admin_headers, category):
        sub = make_subcategory(category)
        make_product(category, subcategory_id=sub.id)

        resp = client.delete(f"/api/admin/subcategories/{sub.id}", headers=admin_headers)

        assert resp.status_code == 400
        assert db.session.get(Subcategory, sub.id).deleted_at is None


class TestSeed:

    def test_seed_is_idempotent(self, db_session):
        first = category_service.seed_default_categories()
        second = category_service.seed_default_categories()

        assert first > 0
        assert second == 0
        names = {c["name"] for c in category_service.list_categories()}
        assert "Dairy & Eggs" in names
