"""
Authentication workflows: OTP login, vendor self-registration, password
login and password reset.
"""
import logging

from fastapi import BackgroundTasks
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

import database
import otp
import security
import users
import vendors
from errors import AppError, BadRequestError, ConflictError, RegistrationError, UnauthorizedError, duplicate_key_field
from schemas import RegisterVendorRequest, User

logger = logging.getLogger(__name__)

SELF_ASSERTABLE_ROLES = ("user", "vendor")


def send_otp(phone: str, background_tasks: BackgroundTasks):
    code = otp.issue(phone, "login")
    background_tasks.add_task(otp.send_sms, phone, code)


def login(phone: str, role: str) -> dict:
    """
    Log a phone-verified caller in under the requested persona.

    The first login creates the principal. Later logins switch the active
    persona and add it to the granted set, so one phone number can act as
    both user and vendor. Admin is never self-asserted.
    """
    user = users.find_by_phone(phone)
    if role not in SELF_ASSERTABLE_ROLES and (not user or role not in user.get("roles", [])):
        raise UnauthorizedError()
    if not user:
        user_id = users.create_user(User(phone=phone, role=role, roles=[role], is_verified=True))
        user = users.find_by_id(user_id)
    elif user.get("role") != role or role not in user.get("roles", []):
        user = users.grant_role(user["_id"], role)
    return {"access_token": security.generate_token(user), "user": users.public_user(user)}


def verify_otp_and_login(phone: str, code: str, role: str) -> dict:
    if not otp.verify(phone, code, "login"):
        raise UnauthorizedError("Invalid or expired OTP")
    return login(phone, role)


def _redact(message: str, secret: str) -> str:
    return message.replace(secret, "***") if secret else message


def register_vendor(body: RegisterVendorRequest) -> dict:
    """
    Create a vendor principal and its profile in one transaction.

    Nothing is left behind when any step fails. Conflicts and validation
    errors propagate unchanged; anything else becomes RegistrationError.
    """
    email = str(body.email).lower()
    try:
        with database.transaction() as uow:
            if uow.find_one("users", {"email": email}):
                raise ConflictError("Email already registered")
            if uow.find_one("users", {"phone": body.phone}):
                raise ConflictError("Phone already registered")

            password_hash = security.hash_password(body.password)
            user = User(
                phone=body.phone,
                email=email,
                password_hash=password_hash,
                role="vendor",
                roles=["vendor"],
                is_verified=True,
                first_name=body.first_name,
                last_name=body.last_name,
                city=body.city,
            )
            user_id = uow.insert("users", user)
            uow.insert("vendor_profiles", vendors.registration_profile(user_id, body))
    except (AppError, ValidationError):
        raise
    except DuplicateKeyError as exc:
        field = duplicate_key_field(exc) or "account"
        raise ConflictError(f"{field.capitalize()} already registered")
    except Exception as exc:
        logger.exception("Vendor registration rolled back")
        raise RegistrationError(f"Registration failed: {_redact(str(exc), body.password)}")

    vendor = users.find_by_id(user_id)
    logger.info("Registered vendor %s", user_id)
    return {"access_token": security.generate_token(vendor), "vendor": users.public_user(vendor)}


def login_with_password(email: str, password: str) -> dict:
    user = users.find_by_email(email)
    if not user or "vendor" not in user.get("roles", []):
        raise UnauthorizedError("Invalid credentials")
    if not security.verify_password(password, user.get("password_hash")):
        raise UnauthorizedError("Invalid credentials")
    if user.get("role") != "vendor":
        user = users.grant_role(user["_id"], "vendor")
    return {"access_token": security.generate_token(user), "user": users.public_user(user)}


def forgot_password(email: str, background_tasks: BackgroundTasks):
    user = users.find_by_email(email)
    if not user:
        return
    code = otp.issue(user["email"], "password_reset")
    background_tasks.add_task(otp.send_email, user["email"], code)


def reset_password(email: str, code: str, new_password: str):
    user = users.find_by_email(email)
    if not user or not otp.verify(user["email"], code, "password_reset"):
        raise BadRequestError("Invalid or expired reset code")
    users.update_user(user["_id"], {"password_hash": security.hash_password(new_password)})
    logger.info("Password reset for user %s", user["_id"])
