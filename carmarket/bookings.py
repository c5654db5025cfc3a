# carmarket/bookings.py
import logging
from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from .auth import Principal, require_principal
from .database import get_db
from .models import Booking, Car, User
from .notifications import send_booking_cancelled, send_booking_received
from .utils import as_dict, as_list, as_text, make_reference, money, parse_datetime, to_float, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

TAX_RATE = 0.20
DEPOSIT_RATE = 0.30

# Flat price per rental
BOOKING_EXTRAS = {
    "gps": {"name": "GPS Navigation", "price": 50},
    "child_seat": {"name": "Child Seat", "price": 80},
    "extra_driver": {"name": "Additional Driver", "price": 120},
    "wifi": {"name": "Mobile WiFi", "price": 100},
    "insurance_full": {"name": "Full Insurance", "price": 200},
    "delivery": {"name": "Car Delivery", "price": 150},
}
PAYMENT_METHODS = ("card", "cash")
CANCELLABLE_STATUSES = ("pending", "confirmed")


def rental_days(pickup: datetime, dropoff: datetime) -> int:
    """Started days count as full days, minimum one."""
    delta = dropoff - pickup
    return max(1, delta.days + (1 if delta.seconds else 0))


def _client_amount(value, field: str):
    """Optional amount sent by the client: absent stays None, anything else must be a finite number >= 0."""
    if value is None or value == "":
        return None
    amount = to_float(value)
    if amount is None or amount < 0:
        raise HTTPException(status_code=400, detail=f"Invalid {field}")
    return amount


def price_booking(car: Car, pickup: datetime, dropoff: datetime, extras, insurance=None, tax=None, deposit=None) -> dict:
    days = rental_days(pickup, dropoff)
    base = car.price_per_day * days
    extras_price = sum(BOOKING_EXTRAS[e]["price"] for e in extras if e in BOOKING_EXTRAS)
    insurance_price = _client_amount(insurance, "insurancePrice") or 0.0
    tax_amount = _client_amount(tax, "taxAmount")
    if tax_amount is None:
        tax_amount = (base + extras_price + insurance_price) * TAX_RATE
    security_deposit = _client_amount(deposit, "securityDeposit")
    if security_deposit is None:
        security_deposit = base * DEPOSIT_RATE
    return {
        "days": days,
        "base_price": money(base),
        "extras_price": money(extras_price),
        "insurance_price": money(insurance_price),
        "tax_amount": money(tax_amount),
        "security_deposit": money(security_deposit),
        "total_price": money(base + extras_price + insurance_price + tax_amount),
    }


def has_overlap(db: Session, car_id: int, pickup: datetime, dropoff: datetime) -> bool:
    return (
        db.query(Booking.id)
        .filter(
            Booking.car_id == car_id,
            Booking.status != "cancelled",
            Booking.pickup_datetime < dropoff,
            Booking.dropoff_datetime > pickup,
        )
        .first()
        is not None
    )


def booking_detail(b: Booking) -> dict:
    data = b.to_dict()
    car = b.car
    if car:
        data["car"] = {
            "id": car.id,
            "make": car.make,
            "model": car.model,
            "year": car.year,
            "category": car.category,
            "images": car.images or [],
            "agency": {"id": car.agency.id, "name": car.agency.name} if car.agency else None,
        }
    data["selectedExtras"] = b.selected_extras or []
    return data


def can_view_booking(principal: Principal, b: Booking) -> bool:
    if principal.is_admin:
        return True
    if b.customer_id and b.customer_id == principal.user_id:
        return True
    return bool(principal.agency_id) and principal.agency_id == b.agency_id


@router.post("", status_code=201)
def create_booking(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    car_id = to_int(payload.get("carId"))
    pickup = parse_datetime(payload.get("pickupDate"))
    dropoff = parse_datetime(payload.get("returnDate"))
    if not car_id or not pickup or not dropoff:
        raise HTTPException(status_code=400, detail="carId, pickupDate and returnDate are required")
    if dropoff <= pickup:
        raise HTTPException(status_code=400, detail="Return date must be after pickup date")
    if pickup.date() < datetime.utcnow().date():
        raise HTTPException(status_code=400, detail="Pickup date cannot be in the past")

    payment_method = payload.get("paymentMethod") or "card"
    if payment_method not in PAYMENT_METHODS:
        raise HTTPException(status_code=400, detail="Invalid payment method")

    car = db.get(Car, car_id)
    if not car or not car.is_active:
        raise HTTPException(status_code=404, detail="Car not found")
    if car.status != "available" or not car.agency or car.agency.status != "approved":
        raise HTTPException(status_code=400, detail="Car is not available for booking")
    if has_overlap(db, car.id, pickup, dropoff):
        raise HTTPException(status_code=409, detail="Car is already booked for these dates")

    user = db.get(User, principal.user_id)
    contact = as_dict(payload.get("contactDetails"), "contactDetails")
    extras = [e for e in as_list(payload.get("selectedExtras"), "selectedExtras") if isinstance(e, str) and e in BOOKING_EXTRAS]
    pickup_location = as_text(payload.get("pickupLocation"), "pickupLocation") or car.location
    prices = price_booking(
        car, pickup, dropoff, extras,
        insurance=payload.get("insurancePrice"),
        tax=payload.get("taxAmount"),
        deposit=payload.get("securityDeposit"),
    )

    booking = Booking(
        booking_reference=make_reference("VB"),
        car_id=car.id,
        agency_id=car.agency_id,
        customer_id=user.id if user else None,
        customer_name=as_text(contact.get("name"), "name") or (user.full_name if user else None) or None,
        customer_email=(as_text(contact.get("email"), "email") or (user.email if user else "")).lower() or None,
        customer_phone=as_text(contact.get("phone"), "phone") or (user.phone if user else None) or None,
        pickup_datetime=pickup,
        dropoff_datetime=dropoff,
        pickup_location=pickup_location or None,
        dropoff_location=as_text(payload.get("dropoffLocation"), "dropoffLocation") or pickup_location or None,
        base_price=prices["base_price"],
        extras_price=prices["extras_price"],
        insurance_price=prices["insurance_price"],
        tax_amount=prices["tax_amount"],
        security_deposit=prices["security_deposit"],
        total_price=prices["total_price"],
        selected_extras=extras,
        special_requests=as_text(contact.get("additionalRequests"), "additionalRequests") or None,
        status="pending",
        payment_method=payment_method,
        payment_status="pending",
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info("booking %s created for car id=%s", booking.booking_reference, car.id)

    send_booking_received(booking)
    return {"success": True, "bookingId": booking.id, "booking": booking_detail(booking)}


@router.get("")
def my_bookings(principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    bookings = (
        db.query(Booking)
        .filter(Booking.customer_id == principal.user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )
    return {"bookings": [booking_detail(b) for b in bookings]}


@router.get("/{booking_id}")
def get_booking(booking_id: int, principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    b = db.get(Booking, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Booking not found")
    if not can_view_booking(principal, b):
        raise HTTPException(status_code=403, detail="Access denied")
    return {"booking": booking_detail(b)}


@router.post("/{booking_id}/cancel")
def cancel_booking(booking_id: int, principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    b = db.get(Booking, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Booking not found")
    if b.customer_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    if b.status not in CANCELLABLE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Booking cannot be cancelled while {b.status}")

    b.status = "cancelled"
    db.commit()
    logger.info("booking %s cancelled by customer id=%s", b.booking_reference, principal.user_id)

    send_booking_cancelled(b)
    return {"success": True, "booking": b.to_dict()}
