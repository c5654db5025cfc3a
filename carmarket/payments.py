# carmarket/payments.py
import logging
from datetime import datetime

import stripe
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from . import stripe_api
from .auth import Principal, require_principal
from .config import config
from .database import get_db
from .models import Booking
from .notifications import send_agency_new_booking_alert, send_booking_confirmation
from .utils import as_text, to_float, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _owned_booking(db: Session, booking: Booking, principal: Principal) -> Booking:
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.customer_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Unauthorized to access this booking")
    return booking


def mark_booking_paid(db: Session, booking: Booking, payment_intent_id: str) -> Booking:
    """Record a succeeded intent on the booking, then notify customer and agency."""
    booking.payment_status = "completed"
    booking.status = "confirmed"
    booking.paid_at = datetime.utcnow()
    booking.payment_reference = payment_intent_id
    booking.payment_intent_id = payment_intent_id
    db.commit()
    db.refresh(booking)
    logger.info("booking %s paid (intent %s)", booking.booking_reference, payment_intent_id)

    # Emails are best effort; the booking stays confirmed whatever happens here
    send_booking_confirmation(booking)
    send_agency_new_booking_alert(booking)
    return booking


@router.post("/create-intent")
def create_intent(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    booking_id = to_int(payload.get("bookingId"))
    amount = to_float(payload.get("amount"))
    if not booking_id or not amount:
        raise HTTPException(status_code=400, detail="Booking ID and amount are required")

    booking = _owned_booking(db, db.get(Booking, booking_id), principal)
    if booking.payment_status == "completed":
        raise HTTPException(status_code=400, detail="Booking is already paid")
    # The charge is always the stored booking total
    if stripe_api.to_minor_units(amount) != stripe_api.to_minor_units(booking.total_price or 0):
        raise HTTPException(status_code=400, detail="Amount does not match the booking total")

    try:
        customer = stripe_api.find_customer_by_email(booking.customer_email)
        if not customer:
            customer = stripe_api.create_customer(
                booking.customer_email,
                booking.customer_name,
                {"userId": principal.user_id, "bookingId": booking.id},
            )
        intent = stripe_api.create_payment_intent(
            booking.total_price,
            config.PAYMENT_CURRENCY,
            {
                "bookingId": booking.id,
                "customerId": principal.user_id,
                "carId": booking.car_id,
                "agencyId": booking.agency_id,
                "bookingReference": booking.booking_reference,
            },
            customer_id=customer.id if customer else None,
        )
    except stripe_api.PaymentConfigError as e:
        logger.error("payments disabled: %s", e)
        raise HTTPException(status_code=500, detail="Payment provider is not configured")
    except stripe.StripeError as e:
        logger.error("create payment intent failed for booking id=%s: %s", booking.id, e)
        raise HTTPException(status_code=500, detail="Failed to create payment intent")

    booking.payment_intent_id = intent.id
    booking.payment_status = "pending"
    db.commit()

    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}


@router.post("/confirm")
def confirm_payment(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    payment_intent_id = as_text(payload.get("paymentIntentId"), "paymentIntentId")
    if not payment_intent_id:
        raise HTTPException(status_code=400, detail="Payment Intent ID is required")

    try:
        intent = stripe_api.retrieve_payment_intent(payment_intent_id)
    except stripe_api.PaymentConfigError as e:
        logger.error("payments disabled: %s", e)
        raise HTTPException(status_code=500, detail="Payment provider is not configured")
    except stripe.StripeError as e:
        logger.error("retrieve payment intent %s failed: %s", payment_intent_id, e)
        raise HTTPException(status_code=500, detail="Failed to confirm payment")

    if intent.status != "succeeded":
        raise HTTPException(
            status_code=400,
            detail={"error": "Payment not successful", "status": intent.status},
        )

    booking = db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()
    booking = _owned_booking(db, booking, principal)

    if booking.payment_status != "completed":
        booking = mark_booking_paid(db, booking, intent.id)

    return {
        "success": True,
        "booking": {
            "id": booking.id,
            "reference": booking.booking_reference,
            "status": booking.status,
            "paymentStatus": booking.payment_status,
        },
    }


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Provider-side confirmation. Only active when STRIPE_WEBHOOK_SECRET is set;
    it applies the same update as /confirm for bookings that are not paid yet.
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=404, detail="Not found")

    body = await request.body()
    try:
        event = stripe_api.construct_webhook_event(body, request.headers.get("stripe-signature", ""))
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    logger.info("webhook received: %s", event["type"])
    if event["type"] == "payment_intent.succeeded":
        intent = event["data"]["object"]
        booking = db.query(Booking).filter(Booking.payment_intent_id == intent["id"]).first()
        if booking is None:
            booking_id = to_int((intent.get("metadata") or {}).get("bookingId"))
            booking = db.get(Booking, booking_id) if booking_id else None
        if booking is None:
            logger.warning("webhook intent %s matches no booking", intent["id"])
        elif booking.payment_status != "completed":
            mark_booking_paid(db, booking, intent["id"])

    return {"received": True}
