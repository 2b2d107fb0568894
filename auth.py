import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    BCRYPT_ROUNDS,
    COOKIE_SECURE,
    JWT_ALGO,
    JWT_SECRET,
    TOKEN_TTL_DAYS,
)
from database import db, create_document
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

COOKIE_NAME = "token"
COOKIE_MAX_AGE = TOKEN_TTL_DAYS * 24 * 60 * 60

# Cookie is the primary carrier; a bearer header is accepted for API clients.
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_token(user: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=TOKEN_TTL_DAYS)
    payload = {
        "sub": str(user["_id"]),
        "email": user["email"],
        "username": user["username"],
        "role": user.get("role", "user"),
        "exp": exp,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "username": user["username"],
        "role": user.get("role", "user"),
    }


def session_from_payload(payload: dict) -> dict:
    return {
        "id": payload.get("sub"),
        "email": payload.get("email"),
        "username": payload.get("username"),
        "role": payload.get("role") or "user",
    }


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(COOKIE_NAME, httponly=True, samesite="lax", secure=COOKIE_SECURE)


def _raw_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


async def get_optional_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    """Session for read endpoints: any verification failure means "logged out"."""
    token = _raw_token(request, credentials)
    if not token:
        return None
    try:
        payload = decode_token(token)
    except HTTPException:
        return None
    return session_from_payload(payload)


async def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    token = _raw_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_token(token)
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return session_from_payload(payload)


async def require_admin(session: dict = Depends(require_auth)) -> dict:
    if session["role"] != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return session


async def require_customer(session: dict = Depends(require_auth)) -> dict:
    if session["role"] == "admin":
        raise HTTPException(status_code=403, detail="Admin accounts cannot shop")
    return session


def ensure_admin_account(email: str = ADMIN_EMAIL, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD) -> str:
    """Create the seeded administrator, or refresh its credentials if it exists.

    Raises RuntimeError if a shopper account already holds the admin email.
    """
    existing = db["user"].find_one({"email": email})
    if existing and existing.get("role") != "admin":
        raise RuntimeError(f"Admin email {email} belongs to a non-admin account; refusing to promote it")
    if existing:
        update = {"updated_at": datetime.now(timezone.utc)}
        if not verify_password(password, existing.get("password_hash")):
            update["password_hash"] = hash_password(password)
        db["user"].update_one({"_id": existing["_id"]}, {"$set": update})
        return str(existing["_id"])
    admin = UserSchema(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role="admin",
    )
    admin_id = create_document("user", admin)
    logger.info("Seeded admin account %s", email)
    return admin_id
