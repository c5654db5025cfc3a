# carmarket/models.py
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean, Float, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


# =========================
# Enumerations (stored as plain strings)
# =========================
USER_ROLES = ("customer", "agency_owner", "agency_staff", "admin")
AGENCY_ROLES = ("agency_owner", "agency_staff")

AGENCY_STATUSES = ("pending", "approved", "rejected", "suspended")

CAR_CATEGORIES = ("economy", "compact", "midsize", "luxury", "suv", "van", "convertible", "sports")
CAR_STATUSES = ("available", "rented", "maintenance", "inactive")

BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "active", "completed", "cancelled")
# A car with a booking in one of these cannot be deleted
OPEN_BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "active")
# Bookings that count towards agency revenue
REVENUE_BOOKING_STATUSES = ("confirmed", "completed")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")

TICKET_CATEGORIES = (
    "booking_issue", "payment_problem", "car_problem", "website_bug",
    "account_issue", "general_inquiry", "technical_support", "other",
)
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "waiting_customer", "resolved", "closed")


# =========================
# Users
# =========================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(200), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="customer")
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Profile
    date_of_birth = Column(Date, nullable=True)
    driving_license_number = Column(String(100), nullable=True)
    driving_license_expiry = Column(Date, nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Password reset
    reset_token = Column(String(128), nullable=True, index=True)
    reset_token_expiry = Column(DateTime, nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agency = relationship("Agency", back_populates="members", foreign_keys=[agency_id])
    bookings = relationship("Booking", back_populates="customer", foreign_keys="Booking.customer_id")

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "agencyId": self.agency_id,
            "isActive": bool(self.is_active),
            "dateOfBirth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "drivingLicenseNumber": self.driving_license_number,
            "drivingLicenseExpiry": self.driving_license_expiry.isoformat() if self.driving_license_expiry else None,
            "avatarUrl": self.avatar_url,
            "lastLoginAt": self.last_login_at.isoformat() if self.last_login_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# =========================
# Agencies
# =========================
class Agency(Base):
    __tablename__ = "agencies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, nullable=False, index=True)
    email = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    address = Column(String(300), nullable=True)
    city = Column(String(120), nullable=True, index=True)
    license_number = Column(String(120), nullable=True)
    description = Column(Text, nullable=True)
    website_url = Column(String(300), nullable=True)
    logo_url = Column(String(500), nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("User", back_populates="agency", foreign_keys="User.agency_id")
    cars = relationship("Car", back_populates="agency", cascade="all, delete-orphan")

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "city": self.city,
            "status": self.status,
            "email": self.email,
            "phone": self.phone,
        }


# =========================
# Cars
# =========================
class Car(Base):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    make = Column(String(80), nullable=False)
    model = Column(String(80), nullable=False)
    year = Column(Integer, nullable=False)
    category = Column(String(30), nullable=False, index=True)
    price_per_day = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="available")
    is_active = Column(Boolean, nullable=False, default=True)
    location = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)

    # Free-form JSON blobs
    specifications = Column(JSON, nullable=True)
    features = Column(JSON, nullable=True)
    images = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    agency = relationship("Agency", back_populates="cars")
    bookings = relationship("Booking", back_populates="car", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="car", cascade="all, delete-orphan")

    @property
    def title(self) -> str:
        return f"{self.make} {self.model} {self.year}"


# =========================
# Bookings
# =========================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(40), unique=True, nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Contact captured at booking time (guests have no customer_id)
    customer_name = Column(String(200), nullable=True)
    customer_email = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    pickup_datetime = Column(DateTime, nullable=False)
    dropoff_datetime = Column(DateTime, nullable=False)
    pickup_location = Column(String(300), nullable=True)
    dropoff_location = Column(String(300), nullable=True)

    # Price breakdown
    base_price = Column(Float, nullable=False, default=0.0)
    extras_price = Column(Float, nullable=False, default=0.0)
    insurance_price = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    security_deposit = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)
    selected_extras = Column(JSON, nullable=True)
    special_requests = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)

    # Payment
    payment_method = Column(String(20), nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_intent_id = Column(String(120), nullable=True, index=True)
    payment_reference = Column(String(120), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    car = relationship("Car", back_populates="bookings")
    agency = relationship("Agency")
    customer = relationship("User", back_populates="bookings", foreign_keys=[customer_id])
    reviews = relationship("Review", back_populates="booking", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bookingReference": self.booking_reference,
            "carId": self.car_id,
            "agencyId": self.agency_id,
            "customerId": self.customer_id,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "pickupDate": self.pickup_datetime.isoformat() if self.pickup_datetime else None,
            "returnDate": self.dropoff_datetime.isoformat() if self.dropoff_datetime else None,
            "pickupLocation": self.pickup_location,
            "dropoffLocation": self.dropoff_location,
            "basePrice": self.base_price,
            "extrasPrice": self.extras_price,
            "insurancePrice": self.insurance_price,
            "taxAmount": self.tax_amount,
            "securityDeposit": self.security_deposit,
            "totalPrice": self.total_price,
            "status": self.status,
            "paymentMethod": self.payment_method,
            "paymentStatus": self.payment_status,
            "paymentIntentId": self.payment_intent_id,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "specialRequests": self.special_requests,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# =========================
# Reviews
# =========================
class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("booking_id", "customer_id", name="uq_review_booking_customer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    title = Column(String(200), nullable=True)
    comment = Column(Text, nullable=True)
    cleanliness_rating = Column(Integer, nullable=True)
    service_rating = Column(Integer, nullable=True)
    value_rating = Column(Integer, nullable=True)

    is_verified = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    agency_response = Column(Text, nullable=True)
    agency_response_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    booking = relationship("Booking", back_populates="reviews")
    customer = relationship("User")
    car = relationship("Car", back_populates="reviews")
    agency = relationship("Agency")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bookingId": self.booking_id,
            "customerId": self.customer_id,
            "customerName": self.customer.full_name if self.customer else None,
            "agencyId": self.agency_id,
            "carId": self.car_id,
            "rating": self.rating,
            "title": self.title,
            "comment": self.comment,
            "cleanlinessRating": self.cleanliness_rating,
            "serviceRating": self.service_rating,
            "valueRating": self.value_rating,
            "isVerified": bool(self.is_verified),
            "isFeatured": bool(self.is_featured),
            "agencyResponse": self.agency_response,
            "agencyResponseDate": self.agency_response_date.isoformat() if self.agency_response_date else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# =========================
# Support
# =========================
class SupportTicket(Base):
    __tablename__ = "support_tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(40), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category = Column(String(40), nullable=False)
    priority = Column(String(20), nullable=False, default="medium")
    subject = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(30), nullable=False, default="open", index=True)

    related_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    internal_notes = Column(Text, nullable=True)
    customer_satisfaction = Column(Integer, nullable=True)
    attachments = Column(JSON, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", foreign_keys=[user_id])
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    related_booking = relationship("Booking")
    messages = relationship(
        "SupportMessage",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="SupportMessage.created_at",
    )


class SupportMessage(Base):
    __tablename__ = "support_messages"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("support_tickets.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=True)
    is_internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    ticket = relationship("SupportTicket", back_populates="messages")
    user = relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "userId": self.user_id,
            "authorName": self.user.full_name if self.user else None,
            "authorRole": self.user.role if self.user else None,
            "message": self.message,
            "attachments": self.attachments or [],
            "isInternal": bool(self.is_internal),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
