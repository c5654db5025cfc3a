# carmarket/agency.py
"""Read-side helpers for agency dashboards plus the one write they need."""
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import (
    Agency, Booking, Car, Review, User,
    BOOKING_STATUSES, REVENUE_BOOKING_STATUSES,
)
from .utils import iso, money

ACTIVE_BOOKING_STATUSES = ("confirmed", "in_progress", "active")


def get_agency_by_user_id(db: Session, user_id: int) -> Optional[Agency]:
    user = db.get(User, user_id)
    if not user or not user.agency_id:
        return None
    return db.get(Agency, user.agency_id)


def get_agency_stats(db: Session, agency_id: int) -> dict:
    total_cars = (
        db.query(func.count(Car.id)).filter(Car.agency_id == agency_id).scalar() or 0
    )
    active_bookings = (
        db.query(func.count(Booking.id))
        .filter(Booking.agency_id == agency_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        .scalar() or 0
    )
    completed_bookings = (
        db.query(func.count(Booking.id))
        .filter(Booking.agency_id == agency_id, Booking.status == "completed")
        .scalar() or 0
    )
    pending_bookings = (
        db.query(func.count(Booking.id))
        .filter(Booking.agency_id == agency_id, Booking.status == "pending")
        .scalar() or 0
    )
    total_revenue = (
        db.query(func.coalesce(func.sum(Booking.total_price), 0.0))
        .filter(Booking.agency_id == agency_id, Booking.status.in_(REVENUE_BOOKING_STATUSES))
        .scalar() or 0.0
    )
    avg_rating = (
        db.query(func.avg(Review.rating)).filter(Review.agency_id == agency_id).scalar()
    )

    return {
        "totalCars": int(total_cars),
        "activeBookings": int(active_bookings),
        "completedBookings": int(completed_bookings),
        "pendingBookings": int(pending_bookings),
        "totalRevenue": money(total_revenue),
        "averageRating": round(float(avg_rating), 1) if avg_rating is not None else 0,
    }


def get_agency_bookings(db: Session, agency_id: int, limit: Optional[int] = None) -> List[dict]:
    q = (
        db.query(Booking)
        .filter(Booking.agency_id == agency_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    if limit:
        q = q.limit(limit)

    out = []
    for b in q.all():
        customer = b.customer
        car = b.car
        row = b.to_dict()
        row.update({
            # Registered customer first, captured guest contact otherwise
            "customerName": (customer.full_name if customer else None) or b.customer_name,
            "customerEmail": (customer.email if customer else None) or b.customer_email,
            "customerPhone": (customer.phone if customer else None) or b.customer_phone,
            "car": {
                "id": car.id,
                "make": car.make,
                "model": car.model,
                "year": car.year,
                "images": car.images or [],
            } if car else None,
        })
        out.append(row)
    return out


def get_agency_cars(db: Session, agency_id: int) -> List[dict]:
    cars = (
        db.query(Car)
        .filter(Car.agency_id == agency_id)
        .order_by(Car.created_at.desc(), Car.id.desc())
        .all()
    )
    if not cars:
        return []
    ids = [c.id for c in cars]

    counts = dict(
        db.query(Booking.car_id, func.count(Booking.id))
        .filter(Booking.car_id.in_(ids))
        .group_by(Booking.car_id)
        .all()
    )
    revenue = dict(
        db.query(Booking.car_id, func.sum(Booking.total_price))
        .filter(Booking.car_id.in_(ids), Booking.status.in_(REVENUE_BOOKING_STATUSES))
        .group_by(Booking.car_id)
        .all()
    )
    ratings = dict(
        db.query(Review.car_id, func.avg(Review.rating))
        .filter(Review.car_id.in_(ids))
        .group_by(Review.car_id)
        .all()
    )

    out = []
    for c in cars:
        avg = ratings.get(c.id)
        out.append({
            "id": c.id,
            "make": c.make,
            "model": c.model,
            "year": c.year,
            "category": c.category,
            "pricePerDay": c.price_per_day,
            "status": c.status,
            "isActive": bool(c.is_active),
            "location": c.location,
            "images": c.images or [],
            "features": c.features or [],
            "specifications": c.specifications or {},
            "createdAt": iso(c.created_at),
            "totalBookings": int(counts.get(c.id, 0)),
            "totalRevenue": money(revenue.get(c.id)),
            "averageRating": round(float(avg), 1) if avg is not None else 0,
        })
    return out


def update_booking_status(db: Session, booking_id: int, agency_id: int, status: str) -> Tuple[bool, Optional[str]]:
    """
    Overwrite the status of one of the agency's bookings.
    Any known status may replace any other; there is no transition table.
    """
    if status not in BOOKING_STATUSES:
        return False, "Invalid status"
    booking = (
        db.query(Booking)
        .filter(Booking.id == booking_id, Booking.agency_id == agency_id)
        .first()
    )
    if not booking:
        return False, "Booking not found or access denied"
    booking.status = status
    db.commit()
    return True, None
