# carmarket/financial_reports.py
"""
Platform finance reports for the admin dashboard.

Each report takes an inclusive ``[start, end]`` window on booking creation
time. Queries pull the relevant rows and the grouping/summing happens in
Python, so large windows mean large result sets.
"""
import calendar
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Agency, Booking, Car, Review
from .utils import money

COMMISSION_RATE = 0.05
DEFAULT_PERIOD_DAYS = 30


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0


def _shift_months(d: datetime, months: int) -> datetime:
    month_index = d.year * 12 + d.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    # Clamp the day for shorter months (31 Mar - 1 month -> 28/29 Feb)
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def resolve_period(period: Optional[str], now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Map a ``period`` query value to a window ending at the end of today.
    Accepts ``month``, ``year`` or a number of days (7, 30, 90, 365, ...).
    """
    now = now or datetime.utcnow()
    end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "month":
        return _shift_months(today, 1), end
    if period == "year":
        return _shift_months(today, 12), end
    try:
        days = int(period) if period else DEFAULT_PERIOD_DAYS
    except ValueError:
        days = DEFAULT_PERIOD_DAYS
    if days <= 0:
        days = DEFAULT_PERIOD_DAYS
    return today - timedelta(days=days), end


def _bookings_in_range(db: Session, start: datetime, end: datetime):
    return db.query(Booking).filter(Booking.created_at >= start, Booking.created_at <= end)


# =========================
# Summary
# =========================
def get_financial_summary(db: Session, start: datetime, end: datetime) -> dict:
    bookings = _bookings_in_range(db, start, end).all()
    total = len(bookings)
    billable = [b for b in bookings if b.status != "cancelled"]
    completed = sum(1 for b in bookings if b.status == "completed")
    cancelled = total - len(billable)

    revenue = sum(b.total_price or 0 for b in billable)
    active_agencies = (
        db.query(func.count(Agency.id)).filter(Agency.status == "approved").scalar() or 0
    )
    available_cars = (
        db.query(func.count(Car.id))
        .filter(Car.status == "available", Car.is_active.is_(True))
        .scalar() or 0
    )

    return {
        "totalRevenue": money(revenue),
        "totalCommission": money(revenue * COMMISSION_RATE),
        "totalBookings": len(billable),
        "averageBookingValue": money(revenue / len(billable)) if billable else 0,
        "activeAgencies": int(active_agencies),
        "activeCars": int(available_cars),
        "completionRate": _pct(completed, total),
        "cancellationRate": _pct(cancelled, total),
    }


# =========================
# Time series
# =========================
def _bucket_key(d: datetime, group_by: str) -> str:
    if group_by == "week":
        # Weeks start on Sunday
        start = d - timedelta(days=(d.weekday() + 1) % 7)
        return start.strftime("%Y-%m-%d")
    if group_by == "month":
        return d.strftime("%Y-%m")
    return d.strftime("%Y-%m-%d")


def get_time_series(db: Session, start: datetime, end: datetime, group_by: str = "day") -> List[dict]:
    if group_by not in ("day", "week", "month"):
        group_by = "day"

    buckets: Dict[str, dict] = {}
    customers: Dict[str, set] = defaultdict(set)

    # One bucket per calendar day; week/month keys collapse onto the same entry
    cursor = start.replace(hour=0, minute=0, second=0, microsecond=0)
    while cursor <= end:
        key = _bucket_key(cursor, group_by)
        buckets.setdefault(key, {
            "date": key,
            "revenue": 0.0,
            "bookings": 0,
            "commission": 0.0,
            "newAgencies": 0,
            "newCustomers": 0,
        })
        cursor += timedelta(days=1)

    # Every booking created in range counts, cancelled ones included
    for b in _bookings_in_range(db, start, end).all():
        bucket = buckets.get(_bucket_key(b.created_at, group_by))
        if bucket is None:
            continue
        amount = b.total_price or 0
        bucket["revenue"] += amount
        bucket["bookings"] += 1
        bucket["commission"] += amount * COMMISSION_RATE
        customers[bucket["date"]].add(b.customer_id or b.customer_email)

    agencies = (
        db.query(Agency.created_at)
        .filter(Agency.created_at >= start, Agency.created_at <= end)
        .all()
    )
    for (created_at,) in agencies:
        bucket = buckets.get(_bucket_key(created_at, group_by))
        if bucket is not None:
            bucket["newAgencies"] += 1

    out = []
    for key in sorted(buckets):
        bucket = buckets[key]
        bucket["revenue"] = money(bucket["revenue"])
        bucket["commission"] = money(bucket["commission"])
        bucket["newCustomers"] = len(customers.get(key, ()))
        out.append(bucket)
    return out


# =========================
# Agencies / locations
# =========================
def get_agency_metrics(db: Session, start: datetime, end: datetime, limit: int = 10) -> List[dict]:
    agencies = db.query(Agency).filter(Agency.status == "approved").all()
    if not agencies:
        return []

    per_agency: Dict[int, list] = defaultdict(list)
    for b in _bookings_in_range(db, start, end).filter(Booking.status != "cancelled").all():
        per_agency[b.agency_id].append(b.total_price or 0)

    ratings = dict(
        db.query(Review.agency_id, func.avg(Review.rating)).group_by(Review.agency_id).all()
    )
    total_cars = dict(
        db.query(Car.agency_id, func.count(Car.id)).group_by(Car.agency_id).all()
    )
    available_cars = dict(
        db.query(Car.agency_id, func.count(Car.id))
        .filter(Car.status == "available")
        .group_by(Car.agency_id)
        .all()
    )

    rows = []
    for a in agencies:
        amounts = per_agency.get(a.id, [])
        revenue = sum(amounts)
        avg = ratings.get(a.id)
        rows.append({
            "agencyId": a.id,
            "agencyName": a.name,
            "city": a.city,
            "totalRevenue": money(revenue),
            "totalBookings": len(amounts),
            "averageBookingValue": money(revenue / len(amounts)) if amounts else 0,
            "commission": money(revenue * COMMISSION_RATE),
            "averageRating": round(float(avg), 1) if avg is not None else 0,
            "totalCars": int(total_cars.get(a.id, 0)),
            "activeCars": int(available_cars.get(a.id, 0)),
        })

    rows.sort(key=lambda r: r["totalRevenue"], reverse=True)
    return rows[:limit] if limit else rows


def get_revenue_by_location(db: Session, start: datetime, end: datetime) -> List[dict]:
    grouped: Dict[str, dict] = {}
    rows = (
        db.query(Agency.city, Booking.total_price)
        .select_from(Booking)
        .join(Agency, Agency.id == Booking.agency_id)
        .filter(
            Booking.created_at >= start,
            Booking.created_at <= end,
            Booking.status != "cancelled",
        )
        .all()
    )
    for city, amount in rows:
        key = city or "Unknown"
        g = grouped.setdefault(key, {"city": key, "revenue": 0.0, "bookings": 0})
        g["revenue"] += amount or 0
        g["bookings"] += 1

    out = sorted(grouped.values(), key=lambda g: g["revenue"], reverse=True)
    for g in out:
        g["revenue"] = money(g["revenue"])
    return out


# =========================
# Distributions
# =========================
def get_booking_status_distribution(db: Session, start: datetime, end: datetime) -> List[dict]:
    rows = (
        db.query(Booking.status, func.count(Booking.id))
        .filter(Booking.created_at >= start, Booking.created_at <= end)
        .group_by(Booking.status)
        .all()
    )
    total = sum(n for _, n in rows)
    out = [
        {"status": status, "count": int(n), "percentage": _pct(n, total)}
        for status, n in rows
    ]
    out.sort(key=lambda r: r["count"], reverse=True)
    return out


def get_popular_car_categories(db: Session, start: datetime, end: datetime) -> List[dict]:
    rows = (
        db.query(Car.category, Booking.total_price)
        .select_from(Booking)
        .join(Car, Car.id == Booking.car_id)
        .filter(
            Booking.created_at >= start,
            Booking.created_at <= end,
            Booking.status != "cancelled",
        )
        .all()
    )
    grouped: Dict[str, dict] = {}
    for category, amount in rows:
        g = grouped.setdefault(category, {"category": category, "bookings": 0, "revenue": 0.0})
        g["bookings"] += 1
        g["revenue"] += amount or 0

    out = sorted(grouped.values(), key=lambda g: g["bookings"], reverse=True)
    for g in out:
        g["revenue"] = money(g["revenue"])
    return out
