# carmarket/utils.py
import math
import re
import secrets
import string
import time
import unicodedata
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException
from passlib.context import CryptContext

# Support multiple schemes so verify can handle legacy hashes
# Default to bcrypt_sha256 (automatically avoids the 72-byte limit)
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt", "pbkdf2_sha256"],
    default="bcrypt_sha256",
    deprecated="auto",
)

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    return pwd_context.hash(password or "")


def verify_password(plain: str, hashed: str) -> bool:
    """
    Verification automatically supports bcrypt_sha256, bcrypt, and pbkdf2_sha256.
    Malformed or empty hashes simply fail verification.
    """
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain or "", hashed)
    except ValueError:
        return False


# ===== Numbers =====
def to_int(v: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError, OverflowError):
        return default


def to_float(v: Any, default: Optional[float] = None) -> Optional[float]:
    """Finite floats only; NaN and infinities fall back to the default."""
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    return f if math.isfinite(f) else default


def clamp_rating(v: Any, default: int = 5) -> int:
    """Coerce a rating into the 1..5 range."""
    return max(1, min(5, to_int(v, default)))


# ===== Request payload fields =====
# JSON bodies are plain dicts; a field of the wrong JSON type is a 400, not a crash.
def as_text(v: Any, field: str, strip: bool = True) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        raise HTTPException(status_code=400, detail=f"Invalid {field}")
    if isinstance(v, (int, float)):
        return str(v)
    if not isinstance(v, str):
        raise HTTPException(status_code=400, detail=f"Invalid {field}")
    return v.strip() if strip else v


def as_list(v: Any, field: str) -> list:
    if v is None:
        return []
    if not isinstance(v, list):
        raise HTTPException(status_code=400, detail=f"{field} must be a list")
    return list(v)


def as_dict(v: Any, field: str) -> dict:
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise HTTPException(status_code=400, detail=f"{field} must be an object")
    return dict(v)


# ===== Dates =====
def parse_date(v: Any) -> Optional[date]:
    if not v:
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    try:
        return datetime.fromisoformat(str(v).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_datetime(v: Any) -> Optional[datetime]:
    """Parse an ISO date or datetime string into a naive UTC datetime."""
    if not v:
        return None
    if isinstance(v, datetime):
        return v
    try:
        dt = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def iso(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v else None


# ===== Identifiers =====
_BASE36 = string.digits + string.ascii_uppercase


def base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def make_reference(prefix: str, random_len: int = 5) -> str:
    """Human readable reference like VB-LX2K9Q1A-7F3QZ."""
    stamp = base36(int(time.time() * 1000))
    tail = "".join(secrets.choice(_BASE36) for _ in range(random_len))
    return f"{prefix}-{stamp}-{tail}"


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-").lower()
    return value or "agency"


def money(v: Optional[float]) -> float:
    return round(float(v or 0), 2)
