import logging
import os
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import database
import events
import storage
import users
import vendors
from errors import AppError, NotFoundError
from schemas import (
    CreateEventRequest,
    EventStatusRequest,
    ForgotPasswordRequest,
    LoginRequest,
    NotificationPreferences,
    OnboardingRequest,
    RegisterVendorRequest,
    ResetPasswordRequest,
    SendOTPRequest,
    VendorProfileRequest,
    VerifyOTPRequest,
)
from security import get_current_user, require_roles

APP_NAME = "Vendor Marketplace"
APP_VERSION = "1.0.5"
APP_ENV = os.getenv("APP_ENV", "development")
REQUIRED_ENV = ("DATABASE_URL", "JWT_SECRET")
MAX_PACKAGE_IMAGES = 5

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
    database.init_db(os.getenv("DATABASE_URL"), os.getenv("DATABASE_NAME"))
    yield
    database.close_db()


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Helpers


def to_public(value):
    """Mongo document(s) to JSON: _id -> id, camelCase keys, ISO dates, no password hashes."""
    if isinstance(value, list):
        return [to_public(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "password_hash":
                continue
            if k == "_id":
                out["id"] = str(v)
                continue
            out[to_camel(k)] = to_public(v)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def upload(file: UploadFile, folder: str, user: dict) -> str:
    content = file.file.read()
    path = storage.object_key(folder, str(user["_id"]))
    return storage.upload_file(content, path, file.content_type or "application/octet-stream")


def require_file(file: Optional[UploadFile]) -> UploadFile:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="File is required")
    return file


# Error responses


def _debug(exc: Optional[BaseException]):
    if APP_ENV == "production":
        return "See server logs"
    if exc is None:
        return None
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_response(request: Request, status_code: int, message, exc: Optional[BaseException] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
            "message": message,
            "debug": _debug(exc),
        },
    )


def _validation_messages(errors) -> List[str]:
    messages = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        field = ".".join(loc)
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return messages


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Status: %s Error: %s Path: %s", exc.status_code, exc.message, request.url.path, exc_info=exc)
    return error_response(request, exc.status_code, exc.message, exc)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(request, exc.status_code, exc.detail, exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(request, 422, _validation_messages(exc.errors()), exc)


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return error_response(request, 422, _validation_messages(exc.errors()), exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(request, 500, "Internal server error", exc)


@app.get("/")
def root():
    return {"message": f"{APP_NAME} API running"}


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


# Auth & OTP


@app.post("/api/auth/send-otp")
def send_otp(body: SendOTPRequest, background_tasks: BackgroundTasks):
    auth.send_otp(body.phone, background_tasks)
    return {"message": "OTP sent successfully", "success": True}


@app.post("/api/auth/verify")
def verify_otp(body: VerifyOTPRequest):
    return to_public(auth.verify_otp_and_login(body.phone, body.otp, body.role))


@app.post("/api/auth/login")
def login(body: LoginRequest):
    if body.email and body.password:
        return to_public(auth.login_with_password(body.email, body.password))
    return to_public(auth.verify_otp_and_login(body.phone, body.otp, body.role))


@app.post("/api/auth/register-vendor", status_code=201)
def register_vendor(body: RegisterVendorRequest):
    return to_public(auth.register_vendor(body))


@app.post("/api/auth/forgot-password")
def forgot_password(body: ForgotPasswordRequest, background_tasks: BackgroundTasks):
    auth.forgot_password(body.email, background_tasks)
    return {"message": "If the email is registered, a reset code has been sent.", "success": True}


@app.post("/api/auth/reset-password")
def reset_password(body: ResetPasswordRequest):
    auth.reset_password(body.email, body.code, body.new_password)
    return {"message": "Password reset successfully.", "success": True}


# Users


@app.get("/api/users/me")
def me(user=Depends(get_current_user)):
    return to_public(users.public_user(user))


@app.post("/api/users/onboarding")
def onboarding(body: OnboardingRequest, user=Depends(require_roles("user"))):
    updated = users.update_user(user["_id"], body.model_dump(exclude_none=True))
    return to_public(users.public_user(updated))


@app.patch("/api/users/me/notifications")
def update_notifications(body: NotificationPreferences, user=Depends(get_current_user)):
    updated = users.update_user(user["_id"], {"notification_preferences": body.model_dump()})
    return to_public(users.public_user(updated))


# Vendor profile


@app.post("/api/vendors/profile")
def create_or_update_profile(body: VendorProfileRequest, user=Depends(require_roles("vendor", "user"))):
    return to_public(vendors.create_or_update_profile(user, body))


@app.get("/api/vendors/profile")
def get_profile(user=Depends(require_roles("vendor"))):
    profile = vendors.get_profile(user)
    if not profile:
        raise NotFoundError("Vendor profile not found")
    return to_public(profile)


@app.delete("/api/vendors/profile")
def delete_profile(user=Depends(require_roles("vendor"))):
    if not vendors.delete_profile(user):
        raise NotFoundError("Vendor profile not found")
    return {"ok": True}


@app.get("/api/vendors/public")
def list_public_vendors():
    return to_public(vendors.get_public_vendors())


@app.get("/api/vendors/public/{vendor_id}")
def get_public_vendor(vendor_id: str):
    profile = vendors.get_profile_by_id(vendor_id)
    if not profile:
        raise NotFoundError("Vendor profile not found")
    return to_public(profile)


@app.get("/api/vendors/saved")
def list_saved_vendors(user=Depends(require_roles("user"))):
    return to_public(vendors.get_saved_vendors(user))


# Media


@app.post("/api/vendors/upload-logo")
def upload_logo(file: Optional[UploadFile] = File(None), user=Depends(require_roles("vendor"))):
    file = require_file(file)
    vendors.require_profile(user)
    url = upload(file, "logos", user)
    return to_public(vendors.update_profile(user, {"logo_url": url}))


@app.post("/api/vendors/upload-banner")
def upload_banner(file: Optional[UploadFile] = File(None), user=Depends(require_roles("vendor"))):
    file = require_file(file)
    vendors.require_profile(user)
    url = upload(file, "banners", user)
    return to_public(vendors.update_profile(user, {"banner_url": url}))


@app.post("/api/vendors/gallery", status_code=201)
def add_gallery_item(file: Optional[UploadFile] = File(None), user=Depends(require_roles("vendor"))):
    file = require_file(file)
    vendors.require_profile(user)
    media_type = "video" if (file.content_type or "").startswith("video") else "image"
    url = upload(file, "gallery", user)
    return to_public(vendors.add_gallery_item(user, url, media_type))


@app.delete("/api/vendors/gallery/{item_id}")
def delete_gallery_item(item_id: str, user=Depends(require_roles("vendor"))):
    vendors.delete_gallery_item(user, item_id)
    return {"ok": True}


# Packages


def _upload_images(images: Optional[List[UploadFile]], user: dict, kept: int = 0) -> List[str]:
    files = [f for f in (images or []) if f.filename]
    if kept + len(files) > MAX_PACKAGE_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_PACKAGE_IMAGES} images per package")
    return [upload(f, "packages", user) for f in files]


@app.get("/api/vendors/packages")
def list_packages(user=Depends(require_roles("vendor"))):
    return to_public(vendors.list_packages(user))


@app.post("/api/vendors/packages", status_code=201)
def add_package(
    name: str = Form(...),
    price: float = Form(..., ge=0),
    description: str = Form(""),
    features: Optional[List[str]] = Form(None),
    category: Optional[str] = Form(None),
    tier: Optional[str] = Form(None),
    active: bool = Form(True),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(require_roles("vendor")),
):
    vendors.require_profile(user)
    fields = {
        "name": name,
        "price": price,
        "description": description,
        "features": vendors.normalize_features(features),
        "category": category,
        "tier": tier,
        "active": active,
        "images": _upload_images(images, user),
    }
    return to_public(vendors.add_package(user, fields))


@app.patch("/api/vendors/packages/{package_id}")
def update_package(
    package_id: str,
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    description: Optional[str] = Form(None),
    features: Optional[List[str]] = Form(None),
    category: Optional[str] = Form(None),
    tier: Optional[str] = Form(None),
    active: Optional[bool] = Form(None),
    existing_images: Optional[List[str]] = Form(None, alias="existingImages"),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(require_roles("vendor")),
):
    current = vendors.get_owned_package(user, package_id)
    fields = {
        "name": name,
        "price": price,
        "description": description,
        "category": category,
        "tier": tier,
        "active": active,
    }
    fields = {k: v for k, v in fields.items() if v is not None}
    if features is not None:
        fields["features"] = vendors.normalize_features(features)
    # the client sends the images it keeps, a subset of the stored ones; new uploads are appended
    stored = current.get("images", [])
    kept = stored if existing_images is None else [url for url in existing_images if url in stored]
    new_images = _upload_images(images, user, kept=len(kept))
    if existing_images is not None or new_images:
        fields["images"] = kept + new_images
    return to_public(vendors.update_package(user, package_id, fields))


@app.delete("/api/vendors/packages/{package_id}")
def delete_package(package_id: str, user=Depends(require_roles("vendor"))):
    vendors.delete_package(user, package_id)
    return {"ok": True}


# Saved vendors


@app.post("/api/vendors/{vendor_id}/save")
def save_vendor(vendor_id: str, user=Depends(require_roles("user"))):
    return to_public(vendors.save_vendor(user, vendor_id))


@app.delete("/api/vendors/{vendor_id}/save")
def unsave_vendor(vendor_id: str, user=Depends(require_roles("user"))):
    return {"deleted": vendors.unsave_vendor(user, vendor_id)}


# Events / bookings


@app.post("/api/events", status_code=201)
def create_event(body: CreateEventRequest, user=Depends(require_roles("user"))):
    return to_public(events.create_event(user, body))


@app.get("/api/events/my-events")
def my_events(user=Depends(get_current_user)):
    return to_public(events.list_my_events(user))


@app.patch("/api/events/{event_id}/status")
def update_event_status(event_id: str, body: EventStatusRequest, user=Depends(require_roles("vendor"))):
    return to_public(events.update_status(user, event_id, body.status))


# Diagnostics


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = database.get_db()
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
