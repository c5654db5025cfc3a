# carmarket/main.py

# 1) Load .env as early as possible (config does it on import)
from .config import config

# 2) General settings
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import SessionLocal, init_db
from .models import User
from .utils import hash_password

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger("carmarket")

# 3) Routers
from .auth import router as auth_router
from .routes_agency import router as agency_router
from .cars import router as cars_router
from .bookings import router as bookings_router
from .payments import router as payments_router
from .reviews import router as reviews_router
from .support import router as support_router
from .admin import router as admin_router
from .routes_geo import router as geo_router
from .uploads import router as uploads_router
from .pages import router as pages_router


# -----------------------------------------------------------------------------
# Create the app
# -----------------------------------------------------------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

app = FastAPI(title="CarMarket")
app.mount("/static", StaticFiles(directory=os.path.join(BASE_DIR, "static")), name="static")

templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))
app.templates = templates


def _money_filter(v) -> str:
    try:
        return f"{float(v):,.2f}"
    except (TypeError, ValueError):
        return "0.00"


templates.env.filters["money"] = _money_filter


# -----------------------------------------------------------------------------
# Error handling: every API failure is {"error": ...}
# -----------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    body = dict(detail) if isinstance(detail, dict) else {"error": detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = first.get("msg") or "Invalid request"
    return JSONResponse({"error": f"{field}: {message}" if field else message}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# -----------------------------------------------------------------------------
# Routers
# -----------------------------------------------------------------------------
app.include_router(auth_router)
app.include_router(agency_router)
app.include_router(cars_router)
app.include_router(bookings_router)
app.include_router(payments_router)
app.include_router(reviews_router)
app.include_router(support_router)
app.include_router(admin_router)
app.include_router(geo_router)
app.include_router(uploads_router)
app.include_router(pages_router)


@app.get("/healthz")
def healthz():
    return {"ok": True}


# -----------------------------------------------------------------------------
# Startup: create tables + seed the admin account
# -----------------------------------------------------------------------------
def seed_admin() -> None:
    if not (config.ADMIN_SEED_EMAIL and config.ADMIN_SEED_PASSWORD):
        return
    email = config.ADMIN_SEED_EMAIL.strip().lower()
    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.email == email).first()
        if admin:
            if admin.role != "admin":
                admin.role = "admin"
                db.commit()
            return
        db.add(User(
            email=email,
            password_hash=hash_password(config.ADMIN_SEED_PASSWORD),
            full_name="Platform Admin",
            role="admin",
            is_active=True,
        ))
        db.commit()
        logger.info("seeded admin account %s", email)
    finally:
        db.close()


@app.on_event("startup")
def on_startup():
    init_db()
    seed_admin()
