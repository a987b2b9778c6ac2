import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

import users
from errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

JWT_ALGO = "HS256"
TOKEN_EXPIRE_MINUTES = 60

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def signing_key() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET is not set")
    return secret


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def generate_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign {sub, phone, role} for the principal's active persona."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user["_id"]),
        "phone": user.get("phone"),
        "role": user.get("role", "user"),
        "exp": expire,
    }
    return jwt.encode(payload, signing_key(), algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    return jwt.decode(token, signing_key(), algorithms=[JWT_ALGO])


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
    """Resolve the bearer token to the live principal record."""
    if not token:
        raise UnauthorizedError()
    try:
        payload = decode_token(token)
    except jwt.PyJWTError:
        raise UnauthorizedError()
    user = users.find_by_id(payload.get("sub"))
    if not user:
        logger.info("Token subject %s no longer exists", payload.get("sub"))
        raise UnauthorizedError()
    return user


def require_roles(*roles: str):
    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise ForbiddenError()
        return user

    return dependency
