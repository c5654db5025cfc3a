# carmarket/notifications.py
"""
Templated transactional emails.

Every helper renders a Jinja template from ``templates/email`` and hands it to
:func:`email_service.send_email`. They return ``True``/``False`` and never raise:
a failed notification must not undo the request that triggered it.
"""
import logging
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from . import email_service
from .config import config

logger = logging.getLogger(__name__)

_TPL_DIR = Path(__file__).parent / "templates" / "email"
_env = Environment(
    loader=FileSystemLoader(str(_TPL_DIR)),
    autoescape=select_autoescape(["html"]),
)


def _money(v) -> str:
    return f"{float(v or 0):,.2f} {config.PAYMENT_CURRENCY.upper()}"


def _date(v) -> str:
    return v.strftime("%d %b %Y %H:%M") if v else "-"


_env.filters["money"] = _money
_env.filters["dt"] = _date


def _deliver(to: Optional[str], subject: str, template: str, text_body: str, **ctx) -> bool:
    if not to:
        logger.warning("notification %s skipped: no recipient", template)
        return False
    try:
        html = _env.get_template(template).render(
            subject=subject, base_url=config.BASE_URL, brand=config.FROM_NAME, **ctx
        )
        return email_service.send_email(to, subject, html, text_body)
    except Exception:
        logger.exception("notification %s to %s failed", template, to)
        return False


# =========================
# Account
# =========================
def send_password_reset_email(to: str, name: str, reset_url: str) -> bool:
    return _deliver(
        to,
        "Reset your password",
        "password_reset.html",
        f"Hello {name},\n\nReset your password within 24 hours:\n{reset_url}\n\n"
        "If you did not request this, you can ignore this email.",
        name=name,
        reset_url=reset_url,
    )


# =========================
# Bookings
# =========================
def _booking_text(booking, intro: str) -> str:
    car = booking.car
    return (
        f"{intro}\n\n"
        f"Reference: {booking.booking_reference}\n"
        f"Car: {car.title if car else '-'}\n"
        f"Pickup: {_date(booking.pickup_datetime)} ({booking.pickup_location or '-'})\n"
        f"Return: {_date(booking.dropoff_datetime)} ({booking.dropoff_location or '-'})\n"
        f"Total: {_money(booking.total_price)}\n"
    )


def send_booking_received(booking) -> bool:
    return _deliver(
        booking.customer_email,
        f"Booking request received - {booking.booking_reference}",
        "booking_received.html",
        _booking_text(booking, "We received your booking request."),
        booking=booking,
    )


def send_booking_confirmation(booking) -> bool:
    """Payment receipt + confirmation for the customer."""
    return _deliver(
        booking.customer_email,
        f"Booking confirmed - {booking.booking_reference}",
        "booking_confirmed.html",
        _booking_text(booking, "Your payment was received and your booking is confirmed."),
        booking=booking,
    )


def send_booking_status_update(booking) -> bool:
    return _deliver(
        booking.customer_email,
        f"Booking {booking.booking_reference} is now {booking.status.replace('_', ' ')}",
        "booking_status.html",
        _booking_text(booking, f"Your booking status changed to: {booking.status}."),
        booking=booking,
    )


def send_booking_cancelled(booking) -> bool:
    return _deliver(
        booking.customer_email,
        f"Booking cancelled - {booking.booking_reference}",
        "booking_cancelled.html",
        _booking_text(booking, "Your booking has been cancelled."),
        booking=booking,
    )


def send_agency_new_booking_alert(booking) -> bool:
    agency = booking.agency
    return _deliver(
        agency.email if agency else None,
        f"New paid booking - {booking.booking_reference}",
        "agency_new_booking.html",
        _booking_text(booking, f"A new booking was paid by {booking.customer_name or 'a customer'}."),
        booking=booking,
        agency=agency,
    )


# =========================
# Agencies
# =========================
def send_admin_new_agency_alert(agency) -> bool:
    return _deliver(
        config.ADMIN_EMAIL,
        f"New agency awaiting approval: {agency.name}",
        "admin_new_agency.html",
        f"{agency.name} ({agency.city or '-'}) registered and awaits approval.\n"
        f"Contact: {agency.email}",
        agency=agency,
    )


def send_agency_approved(agency) -> bool:
    return _deliver(
        agency.email,
        "Your agency has been approved",
        "agency_approved.html",
        f"Good news: {agency.name} is approved. You can now publish cars.",
        agency=agency,
    )


def send_agency_rejected(agency) -> bool:
    return _deliver(
        agency.email,
        "Your agency application",
        "agency_rejected.html",
        f"We could not approve {agency.name}.\n{agency.rejection_reason or ''}",
        agency=agency,
    )


# =========================
# Support
# =========================
def send_support_ticket_alert(ticket) -> bool:
    return _deliver(
        config.SUPPORT_EMAIL or config.ADMIN_EMAIL,
        f"[{ticket.priority.upper()}] New support ticket {ticket.ticket_number}",
        "support_new_ticket.html",
        f"{ticket.subject}\n\n{ticket.description}",
        ticket=ticket,
    )
