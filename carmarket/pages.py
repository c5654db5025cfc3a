# carmarket/pages.py
"""HTML shells. Data is loaded client-side from the JSON API with the stored bearer token."""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from .bookings import BOOKING_EXTRAS
from .config import config
from .database import get_db
from .models import Car, CAR_CATEGORIES, TICKET_CATEGORIES, TICKET_PRIORITIES

router = APIRouter(include_in_schema=False)


def render(request: Request, template: str, title: str, **ctx):
    ctx.update({
        "title": title,
        "brand": config.FROM_NAME,
        "currency": config.PAYMENT_CURRENCY.upper(),
    })
    return request.app.templates.TemplateResponse(request, template, ctx)


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    return render(request, "home.html", "Rent a car", categories=CAR_CATEGORIES)


@router.get("/cars", response_class=HTMLResponse)
def cars_page(request: Request):
    return render(request, "cars.html", "Browse cars", categories=CAR_CATEGORIES)


@router.get("/cars/{car_id}", response_class=HTMLResponse)
def car_page(car_id: int, request: Request, db: Session = Depends(get_db)):
    car = db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    return render(request, "car_detail.html", car.title, car_id=car.id)


@router.get("/cars/{car_id}/book", response_class=HTMLResponse)
def book_page(car_id: int, request: Request, db: Session = Depends(get_db)):
    car = db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    return render(
        request, "book.html", f"Book {car.title}",
        car_id=car.id,
        extras=BOOKING_EXTRAS,
        stripe_key=config.STRIPE_PUBLISHABLE_KEY,
        maps_enabled=bool(config.GOOGLE_MAPS_API_KEY),
    )


@router.get("/bookings/{booking_id}", response_class=HTMLResponse)
def booking_page(booking_id: int, request: Request):
    return render(request, "booking.html", "Your booking", booking_id=booking_id)


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    return render(request, "login.html", "Sign in")


@router.get("/register", response_class=HTMLResponse)
def register_page(request: Request):
    return render(request, "register.html", "Create an account")


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_page(request: Request):
    return render(request, "forgot_password.html", "Forgot password")


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_page(request: Request, token: str = ""):
    return render(request, "reset_password.html", "Choose a new password", token=token)


@router.get("/profile", response_class=HTMLResponse)
def profile_page(request: Request):
    return render(request, "profile.html", "My profile")


@router.get("/support", response_class=HTMLResponse)
def support_list_page(request: Request):
    return render(request, "support_list.html", "Support")


@router.get("/support/new", response_class=HTMLResponse)
def support_new_page(request: Request):
    return render(
        request, "support_new.html", "Contact support",
        categories=TICKET_CATEGORIES, priorities=TICKET_PRIORITIES,
    )


@router.get("/support/{ticket_id}", response_class=HTMLResponse)
def support_ticket_page(ticket_id: int, request: Request):
    return render(request, "support_ticket.html", "Support ticket", ticket_id=ticket_id)


@router.get("/agency/register", response_class=HTMLResponse)
def agency_register_page(request: Request):
    return render(request, "agency_register.html", "Register your agency")


@router.get("/agency/dashboard", response_class=HTMLResponse)
def agency_dashboard_page(request: Request):
    return render(request, "agency_dashboard.html", "Agency dashboard", categories=CAR_CATEGORIES)


@router.get("/admin", response_class=HTMLResponse)
def admin_dashboard_page(request: Request):
    return render(request, "admin_dashboard.html", "Admin dashboard")
