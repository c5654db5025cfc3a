from types import SimpleNamespace

import pytest
import stripe

from carmarket import stripe_api
from carmarket.config import config
from carmarket.models import Booking


@pytest.fixture
def fake_stripe(monkeypatch):
    """Replace the Stripe wrapper with in-memory fakes; returns the recorded calls."""
    calls = {"customers": [], "intents": []}

    def create_customer(email, name=None, metadata=None):
        calls["customers"].append(email)
        return SimpleNamespace(id="cus_test")

    def create_payment_intent(amount, currency=None, metadata=None, customer_id=None):
        calls["intents"].append({"amount": amount, "currency": currency, "metadata": metadata, "customer": customer_id})
        return SimpleNamespace(id="pi_test", client_secret="pi_test_secret")

    monkeypatch.setattr(stripe_api, "find_customer_by_email", lambda email: None)
    monkeypatch.setattr(stripe_api, "create_customer", create_customer)
    monkeypatch.setattr(stripe_api, "create_payment_intent", create_payment_intent)
    return calls


@pytest.fixture
def booked(make_agency, make_car, make_user, make_booking):
    agency, owner = make_agency()
    customer = make_user(email="rider@example.com")
    booking = make_booking(make_car(agency), customer=customer, total=1200)
    return SimpleNamespace(agency=agency, owner=owner, customer=customer, booking=booking)


def test_create_intent(client, db, booked, auth_headers, fake_stripe):
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": 1200,
    })
    assert r.status_code == 200
    assert r.json() == {"clientSecret": "pi_test_secret", "paymentIntentId": "pi_test"}

    assert fake_stripe["customers"] == ["rider@example.com"]
    intent = fake_stripe["intents"][0]
    assert intent["amount"] == 1200
    assert intent["customer"] == "cus_test"
    assert intent["metadata"]["bookingReference"] == booked.booking.booking_reference

    db.expire_all()
    booking = db.get(Booking, booked.booking.id)
    assert booking.payment_intent_id == "pi_test"
    assert booking.payment_status == "pending"


def test_create_intent_guards(client, make_user, booked, auth_headers, fake_stripe):
    headers = auth_headers(booked.customer)
    assert client.post("/api/payments/create-intent", headers=headers, json={"bookingId": booked.booking.id}).status_code == 400
    assert client.post("/api/payments/create-intent", headers=headers, json={"bookingId": 9999, "amount": 10}).status_code == 404

    r = client.post("/api/payments/create-intent", headers=auth_headers(make_user()), json={
        "bookingId": booked.booking.id, "amount": 1200,
    })
    assert r.status_code == 403
    assert fake_stripe["intents"] == []


@pytest.mark.parametrize("amount", [1, 1199.99, 5000, -1200])
def test_create_intent_rejects_amount_other_than_booking_total(client, db, booked, auth_headers, fake_stripe, amount):
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": amount,
    })
    assert r.status_code == 400
    assert r.json() == {"error": "Amount does not match the booking total"}
    assert fake_stripe["intents"] == []
    db.expire_all()
    assert db.get(Booking, booked.booking.id).payment_intent_id is None


def test_create_intent_charges_stored_total(client, booked, auth_headers, fake_stripe):
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": "1200.00",
    })
    assert r.status_code == 200
    assert fake_stripe["intents"][0]["amount"] == booked.booking.total_price


def test_create_intent_for_paid_booking(client, db, booked, auth_headers, fake_stripe):
    booked.booking.payment_status = "completed"
    db.commit()
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": 1200,
    })
    assert r.status_code == 400


def test_create_intent_without_stripe_key(client, booked, auth_headers):
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": 1200,
    })
    assert r.status_code == 500
    assert r.json() == {"error": "Payment provider is not configured"}


def test_create_intent_provider_error(client, booked, auth_headers, fake_stripe, monkeypatch):
    def boom(*args, **kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe_api, "create_payment_intent", boom)
    r = client.post("/api/payments/create-intent", headers=auth_headers(booked.customer), json={
        "bookingId": booked.booking.id, "amount": 1200,
    })
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to create payment intent"}


def test_confirm_payment(client, db, booked, auth_headers, monkeypatch, outbox):
    booked.booking.payment_intent_id = "pi_test"
    db.commit()
    monkeypatch.setattr(
        stripe_api, "retrieve_payment_intent",
        lambda pid: SimpleNamespace(id=pid, status="succeeded"),
    )

    r = client.post("/api/payments/confirm", headers=auth_headers(booked.customer), json={"paymentIntentId": "pi_test"})
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["booking"]["status"] == "confirmed"
    assert data["booking"]["paymentStatus"] == "completed"

    db.expire_all()
    booking = db.get(Booking, booked.booking.id)
    assert booking.paid_at is not None
    assert booking.payment_reference == "pi_test"

    # Receipt to the customer, alert to the agency
    recipients = [m["to"][0] for m in outbox]
    assert "rider@example.com" in recipients
    assert booked.agency.email in recipients


def test_confirm_unsuccessful_payment(client, db, booked, auth_headers, monkeypatch):
    booked.booking.payment_intent_id = "pi_test"
    db.commit()
    monkeypatch.setattr(
        stripe_api, "retrieve_payment_intent",
        lambda pid: SimpleNamespace(id=pid, status="requires_payment_method"),
    )

    r = client.post("/api/payments/confirm", headers=auth_headers(booked.customer), json={"paymentIntentId": "pi_test"})
    assert r.status_code == 400
    assert r.json() == {"error": "Payment not successful", "status": "requires_payment_method"}

    db.expire_all()
    assert db.get(Booking, booked.booking.id).payment_status == "pending"


def test_confirm_someone_elses_booking(client, db, booked, make_user, auth_headers, monkeypatch):
    booked.booking.payment_intent_id = "pi_test"
    db.commit()
    monkeypatch.setattr(
        stripe_api, "retrieve_payment_intent",
        lambda pid: SimpleNamespace(id=pid, status="succeeded"),
    )
    r = client.post("/api/payments/confirm", headers=auth_headers(make_user()), json={"paymentIntentId": "pi_test"})
    assert r.status_code == 403


def test_webhook_disabled_without_secret(client):
    assert client.post("/api/payments/webhook", content=b"{}").status_code == 404


def test_webhook_marks_booking_paid(client, db, booked, monkeypatch):
    booked.booking.payment_intent_id = "pi_hook"
    db.commit()
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(stripe_api, "construct_webhook_event", lambda body, sig: {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_hook", "metadata": {}}},
    })

    r = client.post("/api/payments/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"})
    assert r.status_code == 200
    assert r.json() == {"received": True}

    db.expire_all()
    booking = db.get(Booking, booked.booking.id)
    assert booking.status == "confirmed"
    assert booking.payment_status == "completed"


def test_webhook_bad_signature(client, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_test")

    def reject(body, sig):
        raise stripe.SignatureVerificationError("bad signature", sig)

    monkeypatch.setattr(stripe_api, "construct_webhook_event", reject)
    r = client.post("/api/payments/webhook", content=b"{}", headers={"stripe-signature": "forged"})
    assert r.status_code == 400


def test_stripe_wrapper_helpers(monkeypatch):
    assert stripe_api.to_minor_units(19.99) == 1999
    assert stripe_api.to_minor_units(450) == 45000
    assert stripe_api.calculate_platform_fee(1000) == 50

    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "pk_test_wrong_kind")
    with pytest.raises(stripe_api.PaymentConfigError):
        stripe_api.retrieve_payment_intent("pi_x")


def test_find_customer_by_email(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    customer = SimpleNamespace(id="cus_1")
    monkeypatch.setattr(stripe.Customer, "list", lambda **kw: SimpleNamespace(data=[customer]))
    assert stripe_api.find_customer_by_email("a@example.com") is customer

    monkeypatch.setattr(stripe.Customer, "list", lambda **kw: SimpleNamespace(data=[]))
    assert stripe_api.find_customer_by_email("b@example.com") is None
