# carmarket/routes_agency.py
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .agency import (
    get_agency_bookings, get_agency_by_user_id, get_agency_cars, get_agency_stats,
    update_booking_status,
)
from .auth import Principal, generate_token, require_principal
from .database import get_db
from .models import Agency, Booking, User
from .notifications import send_admin_new_agency_alert, send_booking_status_update
from .utils import as_text, slugify, to_int

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agency"])

REQUIRED_AGENCY_FIELDS = ("name", "email", "address", "city", "description")


def require_approved_agency(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> Agency:
    """The caller's agency, only once an admin approved it."""
    agency = get_agency_by_user_id(db, principal.user_id)
    if not agency:
        raise HTTPException(status_code=403, detail="No agency associated with this account")
    if agency.status != "approved":
        raise HTTPException(
            status_code=403,
            detail={"error": "Agency not approved", "agencyStatus": agency.status},
        )
    return agency


@router.post("/api/agencies/register")
def register_agency(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    for field in REQUIRED_AGENCY_FIELDS:
        if not as_text(payload.get(field), field):
            raise HTTPException(status_code=400, detail=f"Missing required field: {field}")

    user = db.get(User, principal.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.agency_id:
        raise HTTPException(status_code=400, detail="User already belongs to an agency")

    name = as_text(payload["name"], "name")
    slug = slugify(name)
    if db.query(Agency).filter(Agency.slug == slug).first():
        raise HTTPException(status_code=400, detail="Agency name already taken")

    agency = Agency(
        name=name,
        slug=slug,
        email=as_text(payload["email"], "email").lower(),
        phone=as_text(payload.get("phone"), "phone") or None,
        address=as_text(payload["address"], "address"),
        city=as_text(payload["city"], "city"),
        description=as_text(payload["description"], "description"),
        license_number=as_text(payload.get("licenseNumber"), "licenseNumber") or None,
        website_url=as_text(payload.get("websiteUrl"), "websiteUrl") or None,
        status="pending",
    )
    db.add(agency)
    db.flush()

    user.agency_id = agency.id
    user.role = "agency_owner"
    db.commit()
    db.refresh(agency)
    db.refresh(user)
    logger.info("agency %s registered by user id=%s (pending)", agency.slug, user.id)

    send_admin_new_agency_alert(agency)

    return {
        "success": True,
        "agencyId": agency.id,
        "message": "Agency registered. It will be visible once approved.",
        # Fresh token so the client sees the new role and agency id
        "token": generate_token(user),
    }


@router.get("/api/agency/dashboard")
def agency_dashboard(
    type: str = Query("all"),
    limit: str = Query(None),
    agency: Agency = Depends(require_approved_agency),
    db: Session = Depends(get_db),
):
    n = to_int(limit)
    if type == "stats":
        return {"stats": get_agency_stats(db, agency.id)}
    if type == "bookings":
        return {"bookings": get_agency_bookings(db, agency.id, n)}
    if type == "cars":
        return {"cars": get_agency_cars(db, agency.id)}
    if type != "all":
        raise HTTPException(status_code=400, detail="Invalid type")

    return {
        "agency": agency.to_summary(),
        "stats": get_agency_stats(db, agency.id),
        "recentBookings": get_agency_bookings(db, agency.id, n or 10),
        "cars": get_agency_cars(db, agency.id),
    }


@router.put("/api/agency/dashboard")
def agency_update_booking(
    payload: dict = Body(default=None),
    agency: Agency = Depends(require_approved_agency),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    booking_id = to_int(payload.get("bookingId"))
    status = as_text(payload.get("status"), "status")
    if not booking_id or not status:
        raise HTTPException(status_code=400, detail="bookingId and status are required")

    ok, error = update_booking_status(db, booking_id, agency.id, status)
    if not ok:
        raise HTTPException(status_code=400, detail=error)

    booking = db.get(Booking, booking_id)
    send_booking_status_update(booking)
    return {"success": True, "booking": booking.to_dict()}
