"""
Pytest fixtures for Grabbi backend tests.

Provides the application on a file-backed sqlite database (import jobs and
stock checks run on other threads, which need their own connections), a
per-test clean database, an in-memory object store and entity factories.
"""

import threading
import uuid
from datetime import timedelta

import pytest

from grabbi import create_app
from grabbi import decorators
from grabbi.extensions import db
from grabbi.models import (
    Category,
    Franchise,
    FranchiseProduct,
    Product,
    ProductImage,
    Subcategory,
    User,
)
from grabbi.models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_FRANCHISE_OWNER, ROLE_FRANCHISE_STAFF
from grabbi.services import auth_service, session_service
from grabbi.services.job_registry import JobRegistry
from grabbi.services.storage_service import (
    PUBLIC_HOST,
    ImageDownloadError,
    StorageError,
    extract_object_path,
    sanitize_filename,
)
from grabbi.time_utils import utcnow


PASSWORD = "Password123!"


class FakeStorage:
    """Thread-safe in-memory stand-in for ObjectStorage."""

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        self.objects = {}
        self.deleted = []
        self.downloads = []
        self.fail_downloads = set()
        self.fail_deletes = set()

    def public_url(self, object_path):
        return f"{PUBLIC_HOST}/{self.bucket}/{object_path}"

    def is_managed_url(self, url):
        return url.startswith(f"{PUBLIC_HOST}/{self.bucket}/")

    def upload(self, stream, filename, content_type, *, folder="products"):
        object_path = f"{folder}/{uuid.uuid4().hex[:8]}_{sanitize_filename(filename)}"
        with self._lock:
            self.objects[object_path] = stream.read()
        return self.public_url(object_path)

    def delete(self, object_path):
        if object_path in self.fail_deletes:
            raise StorageError(f"failed to delete object {object_path}")
        with self._lock:
            self.deleted.append(object_path)
            self.objects.pop(object_path, None)

    def delete_url(self, url):
        self.delete(extract_object_path(url))

    def download_and_upload(self, source_url, product_id):
        with self._lock:
            self.downloads.append(source_url)
        if source_url in self.fail_downloads:
            raise ImageDownloadError(f"failed to download image from {source_url}")
        object_path = f"products/{product_id}_{uuid.uuid4().hex[:8]}.jpg"
        with self._lock:
            self.objects[object_path] = b"image"
        return self.public_url(object_path)

    def put(self, object_path, body=b"image"):
        """Seed an object directly; returns its public URL."""
        with self._lock:
            self.objects[object_path] = body
        return self.public_url(object_path)


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "grabbi-test.sqlite3"
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
        "RESEND_API_KEY": None,
        "STORAGE_BUCKET": "test-bucket",
    })
    app.extensions["object_storage"] = FakeStorage("test-bucket")
    app.extensions["job_registry"] = JobRegistry(ttl_seconds=3600)

    # full bcrypt cost makes every factory user take a quarter second
    auth_service.BCRYPT_ROUNDS = 4

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope="function")
def db_session(app):
    """Clear every table, the job registry, the fake store and the rate limiter."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    app.extensions["job_registry"].clear()
    app.extensions["object_storage"].reset()
    decorators.limiter.reset()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope="function")
def fake_storage(app, db_session):
    return app.extensions["object_storage"]


@pytest.fixture(scope="function")
def registry(app, db_session):
    return app.extensions["job_registry"]


# =============================================================================
# FACTORIES
# =============================================================================

def make_user(email=None, *, role=ROLE_CUSTOMER, franchise_id=None, name="Test User", password=PASSWORD, **extra):
    user = User(
        email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
        password_hash=auth_service.hash_password(password),
        name=name,
        role=role,
        franchise_id=franchise_id,
        **extra,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_category(name="Dairy & Eggs"):
    category = Category(name=name)
    db.session.add(category)
    db.session.commit()
    return category


def make_subcategory(category, name="Milk"):
    sub = Subcategory(category_id=category.id, name=name)
    db.session.add(sub)
    db.session.commit()
    return sub


def make_product(category, *, sku=None, item_name="Whole Milk 1L", retail_price=10.0, stock_quantity=50, **extra):
    product = Product(
        sku=sku or f"TEST-{uuid.uuid4().hex[:8].upper()}",
        item_name=item_name,
        cost_price=round(retail_price / 2, 2),
        retail_price=retail_price,
        stock_quantity=stock_quantity,
        category_id=category.id,
        **extra,
    )
    db.session.add(product)
    db.session.commit()
    return product


def make_image(product, url, *, is_primary=True, position=0):
    image = ProductImage(product_id=product.id, image_url=url, is_primary=is_primary, position=position)
    db.session.add(image)
    db.session.commit()
    return image


def make_franchise(owner, *, name="Grabbi Soho", latitude=51.5136, longitude=-0.1365, delivery_radius=5.0, **extra):
    franchise = Franchise(
        name=name,
        slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
        owner_id=owner.id,
        latitude=latitude,
        longitude=longitude,
        delivery_radius=delivery_radius,
        **extra,
    )
    db.session.add(franchise)
    db.session.flush()
    owner.role = ROLE_FRANCHISE_OWNER
    owner.franchise_id = franchise.id
    db.session.commit()
    return franchise


def make_franchise_product(franchise, product, *, stock_quantity=10, **extra):
    row = FranchiseProduct(franchise_id=franchise.id, product_id=product.id, stock_quantity=stock_quantity, **extra)
    db.session.add(row)
    db.session.commit()
    return row


def add_to_cart(user, product, quantity=1):
    from grabbi.models import CartItem
    item = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
    db.session.add(item)
    db.session.commit()
    return item


def token_for(user) -> str:
    return session_service.issue_token_pair(user)["access_token"]


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {"Authorization": f"Bearer {token}"}


def days_from_now(days: int):
    return utcnow() + timedelta(days=days)


# =============================================================================
# COMMON ENTITIES
# =============================================================================

@pytest.fixture(scope="function")
def customer(db_session):
    return make_user("customer@example.com", name="Casey Customer")


@pytest.fixture(scope="function")
def admin_user(db_session):
    return make_user("admin@example.com", role=ROLE_ADMIN, name="Ada Admin")


@pytest.fixture(scope="function")
def owner(db_session):
    return make_user("owner@example.com", name="Olive Owner")


@pytest.fixture(scope="function")
def category(db_session):
    return make_category()


@pytest.fixture(scope="function")
def franchise(db_session, owner):
    return make_franchise(owner)


@pytest.fixture(scope="function")
def staff_user(db_session, franchise):
    return make_user("staff@example.com", role=ROLE_FRANCHISE_STAFF, franchise_id=franchise.id, name="Sam Staff")


@pytest.fixture(scope="function")
def customer_headers(customer):
    return auth_headers(token_for(customer))


@pytest.fixture(scope="function")
def admin_headers(admin_user):
    return auth_headers(token_for(admin_user))


@pytest.fixture(scope="function")
def owner_headers(owner, franchise):
    return auth_headers(token_for(owner))


@pytest.fixture(scope="function")
def staff_headers(staff_user):
    return auth_headers(token_for(staff_user))
