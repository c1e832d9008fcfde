from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from models.address import Address
from models.enums import Role
from models.product import Product
from models.profile import BuyerProfile, DriverProfile, SellerProfile
from models.user import User
from _helpers import Line, as_caller
from services import checkout
from services import email as email_service


@pytest.fixture()
def db():
    """Fresh in-memory database per test, shared with the app through get_db."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()

    def _get_db():
        yield session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role, available: bool = True, **fields) -> User:
        counter["n"] += 1
        user = User(
            first_name=fields.pop("first_name", role.value.title()),
            last_name=fields.pop("last_name", str(counter["n"])),
            email=fields.pop("email", f"{role.value.lower()}{counter['n']}@example.com"),
            password_hash=fields.pop("password_hash", "not-a-real-hash"),
            role=role,
            **fields,
        )
        if role is Role.SELLER:
            user.seller_profile = SellerProfile(business_name=f"Shop {counter['n']}")
        elif role is Role.DRIVER:
            user.driver_profile = DriverProfile(vehicle_type="van", is_available=available)
        elif role is Role.BUYER:
            user.buyer_profile = BuyerProfile()
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture()
def seller(make_user):
    return make_user(Role.SELLER)


@pytest.fixture()
def other_seller(make_user):
    return make_user(Role.SELLER)


@pytest.fixture()
def buyer(make_user):
    return make_user(Role.BUYER, first_name="Bea")


@pytest.fixture()
def driver(make_user):
    return make_user(Role.DRIVER)


@pytest.fixture()
def other_driver(make_user):
    return make_user(Role.DRIVER)


@pytest.fixture()
def address(db, buyer):
    addr = Address(user_id=buyer.id, street="1 Main St", city="Springfield", postal_code="12345", country="US")
    db.add(addr)
    db.commit()
    db.refresh(addr)
    return addr


@pytest.fixture()
def product(db, seller):
    item = Product(seller_id=seller.id, name="Headphones", price=Decimal("49.99"), stock=10, is_active=True)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture()
def place_order(db, buyer, address, product):
    """Checkout helper: defaults to two units of the seller's product."""

    def _place(lines=None):
        lines = lines or [(product.id, 2)]
        return checkout.place_order(
            db, as_caller(buyer), [Line(pid, qty) for pid, qty in lines], address.id
        )

    return _place


@pytest.fixture()
def order(place_order):
    return place_order()
