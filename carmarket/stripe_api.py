# carmarket/stripe_api.py
from typing import Optional

import stripe

from .config import config

PLATFORM_FEE_RATE = 0.05


class PaymentConfigError(RuntimeError):
    """Raised when the Stripe secret key is missing or malformed."""


def _set_api_key() -> None:
    key = config.STRIPE_SECRET_KEY
    if not (key.startswith("sk_test_") or key.startswith("sk_live_")):
        raise PaymentConfigError("STRIPE_SECRET_KEY missing/invalid (must start with sk_test_ or sk_live_)")
    stripe.api_key = key


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def create_payment_intent(amount: float, currency: Optional[str] = None, metadata: Optional[dict] = None,
                          customer_id: Optional[str] = None):
    """``amount`` is in major units (e.g. 450.00 MAD); Stripe receives cents."""
    _set_api_key()
    params = {
        "amount": to_minor_units(amount),
        "currency": (currency or config.PAYMENT_CURRENCY).lower(),
        "metadata": {k: str(v) for k, v in (metadata or {}).items()},
        "automatic_payment_methods": {"enabled": True},
    }
    if customer_id:
        params["customer"] = customer_id
    return stripe.PaymentIntent.create(**params)


def retrieve_payment_intent(payment_intent_id: str):
    _set_api_key()
    return stripe.PaymentIntent.retrieve(payment_intent_id)


def create_customer(email: str, name: Optional[str] = None, metadata: Optional[dict] = None):
    _set_api_key()
    return stripe.Customer.create(
        email=email,
        name=name or None,
        metadata={k: str(v) for k, v in (metadata or {}).items()},
    )


def find_customer_by_email(email: str):
    _set_api_key()
    res = stripe.Customer.list(email=email, limit=1)
    data = getattr(res, "data", None) or []
    return data[0] if data else None


def calculate_platform_fee(amount: float) -> float:
    return round(float(amount or 0) * PLATFORM_FEE_RATE, 2)


def construct_webhook_event(payload: bytes, sig_header: str):
    """Verify a webhook body against STRIPE_WEBHOOK_SECRET."""
    return stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET)
