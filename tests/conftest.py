"""Shared pytest fixtures for order_service tests."""

import os
import tempfile

# Must run before order_service.config is imported anywhere.
_DB_DIR = tempfile.mkdtemp(prefix="order-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/app.db"
os.environ["PUBLISH_EVENTS"] = "false"
os.environ["CONSUME_PAYMENT_EVENTS"] = "false"
os.environ["ALLOW_IMMEDIATE_PAYMENT"] = "false"
os.environ["CHECKOUT_RETRY_DELAY"] = "0"

from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from order_service import config, messaging
from order_service.database import init_db, make_engine
from order_service.models import Order, Product
from order_service.schemas import ShippingAddress


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def add_product(session_factory):
    """Insert a product and return its id."""

    def _add(name="Widget", price="10.00", stock=5, image=None) -> int:
        with session_factory() as s:
            product = Product(
                name=name,
                price=Decimal(price),
                count_in_stock=stock,
                image=image or f"/images/{name.lower()}.jpg",
            )
            s.add(product)
            s.commit()
            return product.id

    return _add


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id: int) -> int:
        with session_factory() as s:
            return s.get(Product, product_id).count_in_stock

    return _stock


@pytest.fixture
def order_count(session_factory):
    def _count() -> int:
        with session_factory() as s:
            return s.query(Order).count()

    return _count


@pytest.fixture
def published(monkeypatch):
    """Capture events instead of talking to RabbitMQ."""
    events = []
    monkeypatch.setattr(config, "PUBLISH_EVENTS", True)
    monkeypatch.setattr(messaging, "publish_event", lambda key, payload: events.append((key, payload)))
    return events


@pytest.fixture
def address():
    return ShippingAddress(street="12 MG Road", city="Pune", state="MH", zip_code="411001")
