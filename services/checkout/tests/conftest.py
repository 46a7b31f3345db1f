import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SKIP_MIGRATIONS"] = "1"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_context
from app.auth_local import create_access_token
from app.context import CheckoutContext
from app.core_settings import get_settings
from app.domain.models import Base, Coupon
from app.domain.pricing import ProductSnapshot
from app.infrastructure.db import get_db
from app.main import app

CATALOG = {
    "p1": {"name": "Planter", "price": 10, "weight": 2},
    "p2": {"name": "Bench", "price": 100, "onSale": True, "salePrice": 80, "weight": 40},
    "tee": {"name": "Tee", "price": 22, "weight": 0.5},
}


class FakeCatalog:
    def __init__(self, products=None):
        self.products = dict(CATALOG if products is None else products)
        self.calls = []

    async def fetch_product(self, product_id):
        self.calls.append(product_id)
        doc = self.products.get(product_id)
        return ProductSnapshot.from_document(product_id, doc) if doc else None


class FakeCustomers:
    def __init__(self, created=None):
        self.created = dict(created or {})

    async def fetch_created_at(self, user_id):
        return self.created.get(user_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def customers():
    now = datetime.now(timezone.utc)
    return FakeCustomers({
        "new-user": now - timedelta(days=10),
        "old-user": now - timedelta(days=400),
    })


@pytest.fixture
def context(catalog, customers):
    return CheckoutContext(settings=get_settings(), catalog=catalog, customers=customers)


@pytest.fixture
def client(session_factory, context):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def make(user_id="old-user", role="CUSTOMER", email=None, name=None):
        token = create_access_token(user_id, role=role, email=email, name=name)
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers("admin-1", role="ADMIN")


@pytest.fixture
def add_coupon(db_session):
    def make(code, percentage, **fields):
        fields.setdefault("max_uses", 1)
        coupon = Coupon(code=code, percentage=percentage, **fields)
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return make
