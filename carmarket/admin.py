# carmarket/admin.py
import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import financial_reports as fr
from .auth import Principal, require_admin
from .database import get_db
from .models import Agency, Booking, Car, User, AGENCY_STATUSES, REVENUE_BOOKING_STATUSES
from .notifications import send_agency_approved, send_agency_rejected
from .utils import as_text, iso, money, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

REPORT_TYPES = (
    "summary", "timeseries", "agencies", "locations", "bookings", "categories", "comprehensive",
)


@router.get("/stats")
def admin_stats(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    now = datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def _revenue(*filters) -> float:
        return (
            db.query(func.coalesce(func.sum(Booking.total_price), 0.0))
            .filter(Booking.status.in_(REVENUE_BOOKING_STATUSES), *filters)
            .scalar() or 0.0
        )

    return {
        "totalUsers": db.query(func.count(User.id)).scalar() or 0,
        "totalAgencies": db.query(func.count(User.id)).filter(User.role == "agency_owner").scalar() or 0,
        "totalCars": db.query(func.count(Car.id)).scalar() or 0,
        "totalBookings": db.query(func.count(Booking.id)).scalar() or 0,
        "totalRevenue": money(_revenue()),
        "monthlyRevenue": money(_revenue(Booking.created_at >= month_start)),
        "activeUsers": (
            db.query(func.count(User.id))
            .filter(User.last_login_at >= now - timedelta(days=30))
            .scalar() or 0
        ),
        "pendingApprovals": (
            db.query(func.count(Agency.id)).filter(Agency.status == "pending").scalar() or 0
        ),
    }


@router.get("/reports")
def admin_reports(
    type: str = Query("summary"),
    period: str = Query("30"),
    groupBy: str = Query("day"),
    limit: str = Query("10"),
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if type not in REPORT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid report type")

    start, end = fr.resolve_period(period)
    n = to_int(limit, 10) or 10

    if type == "summary":
        data = fr.get_financial_summary(db, start, end)
    elif type == "timeseries":
        data = fr.get_time_series(db, start, end, groupBy)
    elif type == "agencies":
        data = fr.get_agency_metrics(db, start, end, n)
    elif type == "locations":
        data = fr.get_revenue_by_location(db, start, end)
    elif type == "bookings":
        data = fr.get_booking_status_distribution(db, start, end)
    elif type == "categories":
        data = fr.get_popular_car_categories(db, start, end)
    else:
        data = {
            "summary": fr.get_financial_summary(db, start, end),
            "timeSeries": fr.get_time_series(db, start, end, groupBy),
            "topAgencies": fr.get_agency_metrics(db, start, end, 5),
            "locationRevenue": fr.get_revenue_by_location(db, start, end),
            "bookingStatus": fr.get_booking_status_distribution(db, start, end),
            "popularCategories": fr.get_popular_car_categories(db, start, end),
        }

    return {
        "success": True,
        "data": data,
        "period": {"startDate": iso(start), "endDate": iso(end)},
    }


# =========================
# Agency approval
# =========================
def _agency_row(a: Agency) -> dict:
    owner = next((m for m in a.members if m.role == "agency_owner"), None)
    row = a.to_summary()
    row.update({
        "address": a.address,
        "licenseNumber": a.license_number,
        "description": a.description,
        "createdAt": iso(a.created_at),
        "approvedAt": iso(a.approved_at),
        "rejectedAt": iso(a.rejected_at),
        "owner": {"id": owner.id, "name": owner.full_name, "email": owner.email} if owner else None,
        "carCount": len(a.cars),
    })
    return row


@router.get("/agencies")
def list_agencies(
    status: str = Query(None),
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    q = db.query(Agency)
    if status:
        if status not in AGENCY_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        q = q.filter(Agency.status == status)
    agencies = q.order_by(Agency.created_at.desc(), Agency.id.desc()).all()
    return {"agencies": [_agency_row(a) for a in agencies]}


@router.post("/agencies/{agency_id}/approve")
def approve_agency(agency_id: int, _: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    agency = db.get(Agency, agency_id)
    if not agency:
        raise HTTPException(status_code=404, detail="Agency not found")
    agency.status = "approved"
    agency.approved_at = datetime.utcnow()
    agency.rejected_at = None
    agency.rejection_reason = None
    db.commit()
    logger.info("agency id=%s approved", agency.id)

    send_agency_approved(agency)
    return {"success": True, "agency": _agency_row(agency)}


@router.post("/agencies/{agency_id}/reject")
def reject_agency(
    agency_id: int,
    payload: dict = Body(default=None),
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    agency = db.get(Agency, agency_id)
    if not agency:
        raise HTTPException(status_code=404, detail="Agency not found")
    agency.status = "rejected"
    agency.rejected_at = datetime.utcnow()
    agency.rejection_reason = as_text((payload or {}).get("reason"), "reason") or None
    db.commit()
    logger.info("agency id=%s rejected", agency.id)

    send_agency_rejected(agency)
    return {"success": True, "agency": _agency_row(agency)}
