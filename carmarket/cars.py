# carmarket/cars.py
import calendar
import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import get_db
from .models import (
    Agency, Booking, Car, Review, SupportTicket,
    CAR_CATEGORIES, CAR_STATUSES, OPEN_BOOKING_STATUSES, REVENUE_BOOKING_STATUSES,
)
from .routes_agency import require_approved_agency
from .utils import as_dict, as_list, as_text, iso, money, to_float, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cars", tags=["cars"])

REQUIRED_CAR_FIELDS = ("make", "model", "year", "category", "pricePerDay")


def car_to_dict(car: Car, **extra) -> dict:
    agency = car.agency
    data = {
        "id": car.id,
        "agencyId": car.agency_id,
        "make": car.make,
        "model": car.model,
        "year": car.year,
        "category": car.category,
        "pricePerDay": car.price_per_day,
        "images": car.images or [],
        "features": car.features or [],
        "specifications": car.specifications or {},
        "location": car.location or "",
        "description": car.description or "",
        "status": car.status,
        "isActive": bool(car.is_active),
        "agency": {"id": agency.id, "name": agency.name, "slug": agency.slug} if agency else None,
        "createdAt": iso(car.created_at),
        "updatedAt": iso(car.updated_at),
    }
    data.update(extra)
    return data


def _validate_choice(value, choices, field):
    if value not in choices:
        raise HTTPException(status_code=400, detail=f"Invalid {field}")
    return value


def _apply_car_fields(car: Car, payload: dict) -> None:
    """Copy the editable fields present in ``payload`` onto ``car``."""
    if "make" in payload:
        car.make = as_text(payload.get("make"), "make") or car.make
    if "model" in payload:
        car.model = as_text(payload.get("model"), "model") or car.model
    if "year" in payload:
        year = to_int(payload.get("year"))
        if not year or year < 1950 or year > date.today().year + 1:
            raise HTTPException(status_code=400, detail="Invalid year")
        car.year = year
    if "category" in payload:
        car.category = _validate_choice(payload.get("category"), CAR_CATEGORIES, "category")
    if "pricePerDay" in payload:
        price = to_float(payload.get("pricePerDay"))
        if price is None or price <= 0:
            raise HTTPException(status_code=400, detail="Invalid pricePerDay")
        car.price_per_day = price
    if "status" in payload:
        car.status = _validate_choice(payload.get("status"), CAR_STATUSES, "status")
    if "isActive" in payload:
        car.is_active = bool(payload.get("isActive"))
    if "location" in payload:
        car.location = as_text(payload.get("location"), "location") or None
    if "description" in payload:
        car.description = as_text(payload.get("description"), "description")
    if "images" in payload:
        car.images = as_list(payload.get("images"), "images")
    if "features" in payload:
        car.features = as_list(payload.get("features"), "features")
    if "specifications" in payload:
        car.specifications = as_dict(payload.get("specifications"), "specifications")


# =========================
# Catalog
# =========================
@router.get("")
def list_cars(
    agencyId: str = Query(None),
    city: str = Query(None),
    category: str = Query(None),
    available: str = Query(None),
    limit: str = Query(None),
    db: Session = Depends(get_db),
):
    q = db.query(Car).filter(Car.is_active.is_(True))
    if agencyId:
        q = q.filter(Car.agency_id == to_int(agencyId, 0))
    if city:
        q = q.filter(Car.location.ilike(f"%{city}%"))
    if category:
        q = q.filter(Car.category == category)
    if available == "true":
        q = q.filter(Car.status == "available")
    q = q.order_by(Car.created_at.desc(), Car.id.desc())
    n = to_int(limit)
    if n:
        q = q.limit(n)
    cars = q.all()
    if not cars:
        return []

    ids = [c.id for c in cars]
    counts = dict(
        db.query(Booking.car_id, func.count(Booking.id))
        .filter(Booking.car_id.in_(ids))
        .group_by(Booking.car_id)
        .all()
    )
    ratings = dict(
        db.query(Review.car_id, func.avg(Review.rating))
        .filter(Review.car_id.in_(ids))
        .group_by(Review.car_id)
        .all()
    )
    return [
        car_to_dict(
            c,
            totalBookings=int(counts.get(c.id, 0)),
            averageRating=round(float(ratings[c.id]), 1) if ratings.get(c.id) is not None else 0,
        )
        for c in cars
    ]


@router.post("", status_code=201)
def create_car(
    payload: dict = Body(default=None),
    agency: Agency = Depends(require_approved_agency),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    for field in REQUIRED_CAR_FIELDS:
        if not payload.get(field):
            raise HTTPException(status_code=400, detail=f"Missing required field: {field}")

    car = Car(agency_id=agency.id, status="available", is_active=True)
    _apply_car_fields(car, payload)
    if not car.location:
        car.location = agency.city
    car.images = car.images or []
    car.features = car.features or []
    car.specifications = car.specifications or {}

    db.add(car)
    db.commit()
    db.refresh(car)
    logger.info("car id=%s created by agency id=%s", car.id, agency.id)
    return {"success": True, "car": car_to_dict(car)}


@router.get("/{car_id}")
def get_car(car_id: int, db: Session = Depends(get_db)):
    car = db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")

    reviews = (
        db.query(Review)
        .filter(Review.car_id == car.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(10)
        .all()
    )
    avg = db.query(func.avg(Review.rating)).filter(Review.car_id == car.id).scalar()
    revenue = (
        db.query(func.coalesce(func.sum(Booking.total_price), 0.0))
        .filter(Booking.car_id == car.id, Booking.status.in_(REVENUE_BOOKING_STATUSES))
        .scalar()
    )
    bookings = db.query(func.count(Booking.id)).filter(Booking.car_id == car.id).scalar() or 0

    data = car_to_dict(
        car,
        totalBookings=int(bookings),
        averageRating=round(float(avg), 1) if avg is not None else 0,
        totalRevenue=money(revenue),
        reviews=[r.to_dict() for r in reviews],
    )
    if car.agency:
        data["agency"].update({"email": car.agency.email, "phone": car.agency.phone, "city": car.agency.city})
    return data


def _owned_car(db: Session, car_id: int, agency: Agency) -> Car:
    car = db.query(Car).filter(Car.id == car_id, Car.agency_id == agency.id).first()
    if not car:
        raise HTTPException(status_code=404, detail="Car not found or access denied")
    return car


@router.put("/{car_id}")
def update_car(
    car_id: int,
    payload: dict = Body(default=None),
    agency: Agency = Depends(require_approved_agency),
    db: Session = Depends(get_db),
):
    car = _owned_car(db, car_id, agency)
    _apply_car_fields(car, payload or {})
    db.commit()
    db.refresh(car)
    return {"success": True, "car": car_to_dict(car)}


@router.delete("/{car_id}")
def delete_car(
    car_id: int,
    agency: Agency = Depends(require_approved_agency),
    db: Session = Depends(get_db),
):
    car = _owned_car(db, car_id, agency)

    open_bookings = (
        db.query(func.count(Booking.id))
        .filter(Booking.car_id == car.id, Booking.status.in_(OPEN_BOOKING_STATUSES))
        .scalar() or 0
    )
    if open_bookings:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete car with active bookings. Please complete or cancel all bookings first.",
        )

    # Terminal bookings go with the car; tickets keep their history without the link
    booking_ids = [b.id for b in car.bookings]
    if booking_ids:
        (
            db.query(SupportTicket)
            .filter(SupportTicket.related_booking_id.in_(booking_ids))
            .update({SupportTicket.related_booking_id: None}, synchronize_session=False)
        )
    db.delete(car)
    db.commit()
    logger.info("car id=%s deleted by agency id=%s", car_id, agency.id)
    return {"success": True}


# =========================
# Calendar
# =========================
@router.get("/{car_id}/availability")
def car_availability(car_id: int, month: str = Query(None), db: Session = Depends(get_db)):
    """Booked ranges of a car and a per-day map for one calendar month (YYYY-MM)."""
    car = db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")

    today = date.today()
    try:
        year, mon = (int(x) for x in month.split("-")) if month else (today.year, today.month)
        first = date(year, mon, 1)
    except ValueError:
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")
    last = date(year, mon, calendar.monthrange(year, mon)[1])

    window_start = datetime.combine(first, datetime.min.time())
    window_end = datetime.combine(last, datetime.max.time())
    bookings = (
        db.query(Booking)
        .filter(
            Booking.car_id == car.id,
            Booking.status != "cancelled",
            Booking.pickup_datetime <= window_end,
            Booking.dropoff_datetime >= window_start,
        )
        .order_by(Booking.pickup_datetime)
        .all()
    )

    booked_days = set()
    for b in bookings:
        d = max(b.pickup_datetime.date(), first)
        stop = min(b.dropoff_datetime.date(), last)
        while d <= stop:
            booked_days.add(d)
            d += timedelta(days=1)

    days = []
    d = first
    while d <= last:
        days.append({"date": d.isoformat(), "booked": d in booked_days, "past": d < today})
        d += timedelta(days=1)

    return {
        "carId": car.id,
        "month": first.strftime("%Y-%m"),
        "ranges": [
            {"start": iso(b.pickup_datetime), "end": iso(b.dropoff_datetime), "status": b.status}
            for b in bookings
        ],
        "days": days,
    }
