import os
from datetime import datetime, timedelta

# Settings are read on import, so they must be in place before the app loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EMAIL_PROVIDER"] = "mock"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ADMIN_EMAIL"] = "ops@carmarket.test"
os.environ["SUPPORT_EMAIL"] = "support@carmarket.test"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from carmarket import email_service
from carmarket.auth import generate_token
from carmarket.database import Base, SessionLocal, engine
from carmarket.main import app
from carmarket.models import Agency, Booking, Car, User
from carmarket.utils import hash_password, make_reference

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    email_service.outbox.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="customer", email=None, name="Test User", agency=None, password=PASSWORD, **fields):
        counter["n"] += 1
        values = {
            "email": email or f"user{counter['n']}@example.com",
            "password_hash": hash_password(password),
            "full_name": name,
            "role": role,
            "agency_id": agency.id if agency else None,
            "is_active": True,
        }
        values.update(fields)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_agency(db, make_user):
    """Agency plus its owner account; returns (agency, owner)."""
    def _make(status="approved", name="Atlas Cars", city="Casablanca"):
        agency = Agency(
            name=name,
            slug=name.lower().replace(" ", "-"),
            email=f"{name.lower().replace(' ', '.')}@agency.test",
            address="1 Boulevard Test",
            city=city,
            description="Test agency",
            status=status,
        )
        db.add(agency)
        db.commit()
        db.refresh(agency)
        owner = make_user(role="agency_owner", name=f"{name} Owner", agency=agency)
        return agency, owner

    return _make


@pytest.fixture
def make_car(db):
    def _make(agency, price=300.0, category="economy", status="available", **fields):
        values = {
            "agency_id": agency.id,
            "make": "Dacia",
            "model": "Logan",
            "year": 2022,
            "category": category,
            "price_per_day": price,
            "status": status,
            "is_active": True,
            "location": agency.city,
            "images": [],
            "features": [],
            "specifications": {},
        }
        values.update(fields)
        car = Car(**values)
        db.add(car)
        db.commit()
        db.refresh(car)
        return car

    return _make


@pytest.fixture
def make_booking(db):
    def _make(car, customer=None, status="pending", start_in_days=3, days=2, total=720.0, **fields):
        pickup = datetime.utcnow().replace(hour=10, minute=0, second=0, microsecond=0) + timedelta(days=start_in_days)
        values = {
            "booking_reference": make_reference("VB"),
            "car_id": car.id,
            "agency_id": car.agency_id,
            "customer_id": customer.id if customer else None,
            "customer_name": customer.full_name if customer else "Guest",
            "customer_email": customer.email if customer else "guest@example.com",
            "pickup_datetime": pickup,
            "dropoff_datetime": pickup + timedelta(days=days),
            "base_price": car.price_per_day * days,
            "total_price": total,
            "status": status,
            "payment_method": "card",
            "payment_status": "pending",
        }
        values.update(fields)
        booking = Booking(**values)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_token(user)}"}

    return _headers


@pytest.fixture
def outbox():
    return email_service.outbox
