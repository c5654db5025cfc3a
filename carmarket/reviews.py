# carmarket/reviews.py
import logging
from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .auth import Principal, require_principal
from .database import get_db
from .models import Booking, Review
from .utils import as_text, clamp_rating, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])

CONTENT_FIELDS = ("rating", "title", "comment", "cleanlinessRating", "serviceRating", "valueRating")


def _optional_rating(v):
    """Sub-ratings are optional: empty stays None, anything else is clamped to 1..5."""
    if v in (None, "", 0, "0"):
        return None
    return clamp_rating(v)


def _text(v, field):
    return as_text(v, field) or None


def review_detail(r: Review) -> dict:
    data = r.to_dict()
    data["customerName"] = data["customerName"] or "Anonymous"
    car = r.car
    data["car"] = {
        "make": car.make, "model": car.model, "year": car.year, "category": car.category,
    } if car else None
    data["updatedAt"] = r.updated_at.isoformat() if r.updated_at else None
    return data


def _avg(values) -> float:
    values = [v for v in values if v]
    return round(sum(values) / len(values), 1) if values else 0


@router.post("", status_code=201)
def create_review(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    if principal.role != "customer":
        raise HTTPException(status_code=403, detail="Only customers can create reviews")

    booking_id = to_int(payload.get("bookingId"))
    raw_rating = payload.get("rating")
    if not booking_id or raw_rating in (None, ""):
        raise HTTPException(status_code=400, detail="Booking ID and rating are required")
    if to_int(raw_rating) is None:
        raise HTTPException(status_code=400, detail="Rating must be a number")

    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.customer_id != principal.user_id:
        raise HTTPException(status_code=403, detail="You can only review your own bookings")
    if booking.status != "completed":
        raise HTTPException(status_code=400, detail="You can only review completed bookings")

    existing = (
        db.query(Review)
        .filter(Review.booking_id == booking.id, Review.customer_id == principal.user_id)
        .first()
    )
    if existing:
        raise HTTPException(status_code=400, detail="You have already reviewed this booking")

    review = Review(
        booking_id=booking.id,
        customer_id=principal.user_id,
        agency_id=booking.agency_id,
        car_id=booking.car_id,
        rating=clamp_rating(raw_rating),
        title=_text(payload.get("title"), "title"),
        comment=_text(payload.get("comment"), "comment"),
        cleanliness_rating=_optional_rating(payload.get("cleanlinessRating")),
        service_rating=_optional_rating(payload.get("serviceRating")),
        value_rating=_optional_rating(payload.get("valueRating")),
        # Tied to a real completed booking
        is_verified=True,
    )
    db.add(review)
    db.commit()
    db.refresh(review)
    logger.info("review id=%s created for booking id=%s", review.id, booking.id)
    return {"success": True, "review": review_detail(review)}


@router.get("")
def list_reviews(
    carId: str = Query(None),
    agencyId: str = Query(None),
    customerId: str = Query(None),
    limit: str = Query("10"),
    offset: str = Query("0"),
    db: Session = Depends(get_db),
):
    n = max(1, min(100, to_int(limit, 10) or 10))
    skip = max(0, to_int(offset, 0) or 0)

    q = db.query(Review).filter(Review.is_verified.is_(True))
    if carId:
        q = q.filter(Review.car_id == to_int(carId, 0))
    if agencyId:
        q = q.filter(Review.agency_id == to_int(agencyId, 0))
    if customerId:
        q = q.filter(Review.customer_id == to_int(customerId, 0))

    total = q.count()
    reviews = (
        q.order_by(Review.is_featured.desc(), Review.created_at.desc(), Review.id.desc())
        .offset(skip)
        .limit(n)
        .all()
    )

    return {
        "reviews": [review_detail(r) for r in reviews],
        "pagination": {
            "total": total,
            "limit": n,
            "offset": skip,
            "hasMore": skip + n < total,
        },
        "stats": {
            "averageRating": _avg(r.rating for r in reviews),
            "averageCleanlinessRating": _avg(r.cleanliness_rating for r in reviews),
            "averageServiceRating": _avg(r.service_rating for r in reviews),
            "averageValueRating": _avg(r.value_rating for r in reviews),
            "totalReviews": total,
        },
    }


@router.get("/{review_id}")
def get_review(review_id: int, db: Session = Depends(get_db)):
    review = db.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review_detail(review)


@router.put("/{review_id}")
def update_review(
    review_id: int,
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    review = db.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    touches_content = any(f in payload for f in CONTENT_FIELDS)
    if principal.role == "customer":
        if review.customer_id != principal.user_id:
            raise HTTPException(status_code=403, detail="You can only edit your own reviews")
        if "agencyResponse" in payload:
            raise HTTPException(status_code=403, detail="Customers cannot add agency responses")
    elif principal.role == "agency_owner":
        if review.agency_id != principal.agency_id:
            raise HTTPException(status_code=403, detail="You can only respond to reviews for your cars")
        if touches_content:
            raise HTTPException(status_code=403, detail="Agencies can only add responses, not edit review content")
    elif principal.role != "admin":
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    if principal.role in ("customer", "admin"):
        if "rating" in payload:
            review.rating = clamp_rating(payload.get("rating"), review.rating)
        if "title" in payload:
            review.title = _text(payload.get("title"), "title")
        if "comment" in payload:
            review.comment = _text(payload.get("comment"), "comment")
        if "cleanlinessRating" in payload:
            review.cleanliness_rating = _optional_rating(payload.get("cleanlinessRating"))
        if "serviceRating" in payload:
            review.service_rating = _optional_rating(payload.get("serviceRating"))
        if "valueRating" in payload:
            review.value_rating = _optional_rating(payload.get("valueRating"))

    if principal.role in ("agency_owner", "admin") and "agencyResponse" in payload:
        response = _text(payload.get("agencyResponse"), "agencyResponse")
        review.agency_response = response
        review.agency_response_date = datetime.utcnow() if response else None

    if principal.role == "admin" and "isFeatured" in payload:
        review.is_featured = bool(payload.get("isFeatured"))

    db.commit()
    db.refresh(review)
    return {"success": True, "review": review_detail(review)}


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    review = db.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    if principal.role == "customer":
        if review.customer_id != principal.user_id:
            raise HTTPException(status_code=403, detail="You can only delete your own reviews")
    elif principal.role in ("agency_owner", "agency_staff"):
        raise HTTPException(status_code=403, detail="Agencies cannot delete customer reviews")
    elif principal.role != "admin":
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    db.delete(review)
    db.commit()
    logger.info("review id=%s deleted by user id=%s", review_id, principal.user_id)
    return {"success": True, "message": "Review deleted successfully"}
