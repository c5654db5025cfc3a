# carmarket/auth.py
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from .config import config
from .database import get_db
from .models import User
from .notifications import send_password_reset_email
from .utils import (
    MIN_PASSWORD_LENGTH, as_text, hash_password, parse_date, verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

TOKEN_MAX_AGE = 7 * 24 * 3600          # 7 days
RESET_TOKEN_TTL = timedelta(hours=24)
SELF_SERVICE_ROLES = ("customer", "agency_owner")

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUEST_MESSAGE = "If an account with that email exists, a password reset link has been sent."


# =========================
# Tokens
# =========================
@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: str
    agency_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _signer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=config.SECRET_KEY, salt="auth-token-v1")


def generate_token(user: User) -> str:
    return _signer().dumps({
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "agencyId": user.agency_id,
    })


def verify_token(token: str) -> Optional[Principal]:
    """Return the principal carried by a token, or None if it is forged or older than 7 days."""
    if not token:
        return None
    try:
        data = _signer().loads(token, max_age=TOKEN_MAX_AGE)
    except BadSignature:
        return None
    if not isinstance(data, dict) or not data.get("userId"):
        return None
    return Principal(
        user_id=int(data["userId"]),
        email=data.get("email") or "",
        role=data.get("role") or "customer",
        agency_id=data.get("agencyId"),
    )


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    if not header.lower().startswith("bearer "):
        return None
    return header[7:].strip() or None


# =========================
# Dependencies
# =========================
def get_principal(request: Request) -> Optional[Principal]:
    return verify_token(_bearer(request))


def require_principal(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return principal


def require_role(*roles: str):
    def _dep(principal: Principal = Depends(require_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal
    return _dep


require_admin = require_role("admin")


def auth_payload(user: User) -> dict:
    return {"user": user.to_public(), "token": generate_token(user)}


# =========================
# Routes
# =========================
@router.post("/register")
def register(payload: dict = Body(default=None), db: Session = Depends(get_db)):
    payload = payload or {}
    email = as_text(payload.get("email"), "email").lower()
    password = as_text(payload.get("password"), "password", strip=False)
    name = as_text(payload.get("name"), "name")
    phone = as_text(payload.get("phone"), "phone") or None
    role = as_text(payload.get("role"), "role") or "customer"

    if not email or not password or not name:
        raise HTTPException(status_code=400, detail="Email, password and name are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=name,
        phone=phone,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("registered user id=%s role=%s", user.id, user.role)
    return auth_payload(user)


@router.post("/login")
def login(payload: dict = Body(default=None), db: Session = Depends(get_db)):
    payload = payload or {}
    email = as_text(payload.get("email"), "email").lower()
    password = as_text(payload.get("password"), "password", strip=False)
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = db.query(User).filter(User.email == email).first()
    # Same answer for unknown email, disabled account and wrong password
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return auth_payload(user)


@router.get("/me")
def me(principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    user = db.get(User, principal.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_public()}


@router.put("/profile")
def update_profile(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    user = db.get(User, principal.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if "name" in payload:
        name = as_text(payload.get("name"), "name")
        if not name:
            raise HTTPException(status_code=400, detail="Name cannot be empty")
        user.full_name = name
    if "phone" in payload:
        user.phone = as_text(payload.get("phone"), "phone") or None
    if "dateOfBirth" in payload:
        user.date_of_birth = parse_date(payload.get("dateOfBirth"))
    if "drivingLicenseNumber" in payload:
        user.driving_license_number = as_text(payload.get("drivingLicenseNumber"), "drivingLicenseNumber") or None
    if "drivingLicenseExpiry" in payload:
        user.driving_license_expiry = parse_date(payload.get("drivingLicenseExpiry"))
    if "avatarUrl" in payload:
        user.avatar_url = as_text(payload.get("avatarUrl"), "avatarUrl") or None

    db.commit()
    db.refresh(user)
    return {"success": True, "user": user.to_public()}


@router.post("/change-password")
def change_password(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    current = as_text(payload.get("currentPassword"), "currentPassword", strip=False)
    new = as_text(payload.get("newPassword"), "newPassword", strip=False)
    if not current or not new:
        raise HTTPException(status_code=400, detail="Current and new password are required")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    user = db.get(User, principal.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(current, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.password_hash = hash_password(new)
    db.commit()
    return {"success": True, "message": "Password updated successfully"}


@router.post("/forgot-password")
def forgot_password(payload: dict = Body(default=None), db: Session = Depends(get_db)):
    payload = payload or {}
    email = as_text(payload.get("email"), "email").lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")

    user = db.query(User).filter(User.email == email).first()
    if user and user.is_active:
        user.reset_token = secrets.token_hex(32)
        user.reset_token_expiry = datetime.utcnow() + RESET_TOKEN_TTL
        db.commit()
        reset_url = f"{config.BASE_URL}/reset-password?token={user.reset_token}"
        send_password_reset_email(user.email, user.full_name, reset_url)
    else:
        logger.info("password reset requested for unknown or inactive email")

    return {"success": True, "message": RESET_REQUEST_MESSAGE}


def _user_by_reset_token(db: Session, token: str) -> User:
    user = None
    if token:
        user = (
            db.query(User)
            .filter(User.reset_token == token, User.reset_token_expiry > datetime.utcnow())
            .first()
        )
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    return user


@router.get("/reset-password")
def check_reset_token(token: str = Query(""), db: Session = Depends(get_db)):
    user = _user_by_reset_token(db, token)
    return {"valid": True, "email": user.email, "name": user.full_name}


@router.post("/reset-password")
def reset_password(payload: dict = Body(default=None), db: Session = Depends(get_db)):
    payload = payload or {}
    token = as_text(payload.get("token"), "token")
    password = as_text(payload.get("password"), "password", strip=False)
    if not token or not password:
        raise HTTPException(status_code=400, detail="Token and password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    user = _user_by_reset_token(db, token)
    user.password_hash = hash_password(password)
    user.reset_token = None
    user.reset_token_expiry = None
    db.commit()
    logger.info("password reset completed for user id=%s", user.id)
    return {"success": True, "message": "Password has been reset successfully"}
