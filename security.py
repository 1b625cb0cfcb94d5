import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from cache import REVOKED_TOKEN_PREFIX, get_cache, set_cache
from config import COOKIE_NAME, JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET
from database import db
from errors import AppError

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=JWT_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "user"),
        "exp": expire,
    }
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AppError("Authentication token has expired", 401)
    except JWTError:
        raise AppError("Invalid authentication token", 401)


def token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def is_revoked(token: str) -> bool:
    return get_cache(REVOKED_TOKEN_PREFIX + hash_token(token)) == "revoked"


def revoke_token(token: str) -> None:
    """Deny-list a token until the moment it would have expired anyway."""
    try:
        claims = jwt.get_unverified_claims(token)
        ttl = int(claims.get("exp", 0) - datetime.now(timezone.utc).timestamp())
    except JWTError:
        ttl = JWT_EXPIRE_MINUTES * 60
    if ttl > 0:
        set_cache(REVOKED_TOKEN_PREFIX + hash_token(token), "revoked", ttl)
        logger.info("token_revoked", ttl=ttl)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    address = user.get("address") or {}
    return {
        "id": str(user["_id"]),
        "_id": str(user["_id"]),
        "email": user.get("email"),
        "firstname": user.get("firstname"),
        "lastname": user.get("lastname"),
        "phone": user.get("phone"),
        "role": user.get("role", "user"),
        "address": {
            "street": address.get("street"),
            "city": address.get("city"),
            "state": address.get("state"),
            "zipCode": address.get("zipCode"),
        },
    }


# Dependencies

def get_current_token(request: Request) -> str:
    token = token_from_request(request)
    if not token:
        raise AppError("Authentication token is missing", 401)
    if is_revoked(token):
        raise AppError("Authentication token has been revoked", 401)
    return token


def get_current_user(token: str = Depends(get_current_token)) -> Dict[str, Any]:
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AppError("Invalid authentication token", 401)
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AppError("User not found, this token is invalid!", 404)
    return user


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        raise AppError("You are not authorized to access this resource", 403)
    return current_user
