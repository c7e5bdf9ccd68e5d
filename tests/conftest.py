"""Pytest fixtures for storefront tests."""

import os

# settings are read at import time
os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

from datetime import timedelta
from decimal import Decimal

import fakeredis
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.core.utils import now_utc
from storefront.db.models import Coupon
from storefront.db.session import Base
from storefront.schemas import CartLineIn, OrderCreate, ShippingAddress
from storefront.services.catalog import Product


class FakeCatalog:
    """In-memory stand-in for the catalog service."""

    def __init__(self, products=None):
        self.products = dict(products or {})
        self.lookups = []

    def add(self, product_id, name, price, image=None):
        self.products[str(product_id)] = Product(id=str(product_id), name=name, price=Decimal(str(price)), image=image)

    def find_product(self, product_id):
        self.lookups.append(str(product_id))
        return self.products.get(str(product_id))


@pytest.fixture
def session_factory(tmp_path):
    """A fresh SQLite database per test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog():
    cat = FakeCatalog()
    cat.add("p-100", "Cotton Tee", "100.00", image="tee.png")
    cat.add("p-150", "Denim Shirt", "150.00")
    cat.add("p-40", "Socks", "40.00")
    return cat


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def make_coupon(db):
    """Insert a coupon that is valid right now unless told otherwise."""

    def _make(code="SAVE10", **overrides):
        now = now_utc()
        fields = dict(
            code=code,
            description=f"{code} coupon",
            discount_type="percentage",
            discount_value=Decimal("10"),
            min_order_amount=Decimal("0"),
            max_discount=None,
            usage_limit=None,
            per_user_limit=1,
            used_count=0,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
            is_active=True,
        )
        fields.update(overrides)
        coupon = Coupon(**fields)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make


def order_payload(lines=None, coupon_code=None, **overrides):
    data = dict(
        customer_name="Asha Rao",
        customer_email="Asha@Example.com",
        customer_phone="9876543210",
        shipping_address=ShippingAddress(line1="12 MG Road", city="Bengaluru", state="KA", pincode="560001"),
        cart_items=[CartLineIn(**line) for line in (lines or [{"product_id": "p-100", "quantity": 2}])],
        coupon_code=coupon_code,
        payment_method="cod",
    )
    data.update(overrides)
    return OrderCreate(**data)


def make_token(sub="user-1", role="customer", token_type="access"):
    return jwt.encode({"sub": sub, "role": role, "type": token_type}, "test-secret", algorithm="HS256")


def auth_headers(sub="user-1", role="customer"):
    return {"Authorization": f"Bearer {make_token(sub, role)}"}


@pytest.fixture
def published():
    return []


@pytest.fixture
def client(session_factory, catalog, redis_client, published):
    from storefront.api import deps
    from storefront.main import app

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = _db
    app.dependency_overrides[deps.get_catalog] = lambda: catalog
    app.dependency_overrides[deps.get_redis] = lambda: redis_client
    app.dependency_overrides[deps.get_publisher] = lambda: published.append
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
