import secrets
from urllib.parse import quote

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, Query, Response
from pymongo.errors import DuplicateKeyError

from cache import RESET_TOKEN_PREFIX, delete_cache, get_cache, rate_limit, set_cache
from config import CLIENT_URL, COOKIE_NAME, COOKIE_SECURE, JWT_EXPIRE_MINUTES, RESET_TOKEN_TTL
from database import create_document, db, now
from errors import AppError
from helpers import sanitize, validate_email, validate_password, validate_phone
from jobs import enqueue_email
from mailer import reset_password_html, reset_password_text
from reviews import delete_reviews_for_user
from schemas import (AccountUpdate, ForgotPasswordInput, LoginInput, RegisterInput, ResetPasswordInput,
                     User as UserSchema)
from security import (create_access_token, get_current_token, get_current_user, hash_password, hash_token,
                      public_user, revoke_token, verify_password)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth/user", tags=["auth"])


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="strict",
        max_age=JWT_EXPIRE_MINUTES * 60,
    )


@router.post("/register", status_code=201)
def register(payload: RegisterInput, response: Response):
    firstname, lastname = sanitize(payload.firstname), sanitize(payload.lastname)
    email = payload.email.strip().lower()
    phone = payload.phone.strip()

    if not firstname or not lastname:
        raise AppError("First name and last name are required", 400)
    if not validate_email(email):
        raise AppError("Invalid email address", 400)
    if not validate_password(payload.password):
        raise AppError("Invalid password", 400)
    if payload.password != payload.confirm_password:
        raise AppError("Passwords do not match", 400)
    if not validate_phone(phone):
        raise AppError("Invalid phone number", 400)

    if db["user"].find_one({"email": email}):
        raise AppError("User already exists with this email", 400)
    if db["user"].find_one({"phone": phone}):
        raise AppError("User already exists with this phone number", 400)

    user_model = UserSchema(
        firstname=firstname,
        lastname=lastname,
        email=email,
        password=hash_password(payload.password),
        phone=phone,
    )
    try:
        user_id = create_document("user", user_model.to_document())
    except DuplicateKeyError:
        raise AppError("User already exists with this email", 400)

    user = db["user"].find_one({"email": email})
    set_auth_cookie(response, create_access_token(user))
    logger.info("user_registered", user_id=user_id)
    return {"status": "success", "message": "User created successfully", "data": public_user(user)}


@router.post("/login", dependencies=[Depends(rate_limit)])
def login(payload: LoginInput, response: Response):
    user = db["user"].find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise AppError("Invalid email or password", 401)
    set_auth_cookie(response, create_access_token(user))
    logger.info("user_logged_in", user_id=str(user["_id"]))
    return {"status": "success", "message": "Login successful", "data": public_user(user)}


@router.post("/logout")
def logout(response: Response, token: str = Depends(get_current_token)):
    revoke_token(token)
    response.delete_cookie(COOKIE_NAME)
    return {"status": "success", "message": "Logout successful", "data": None}


@router.get("/verify")
def verify(current_user: dict = Depends(get_current_user)):
    return {"status": "success", "message": "User verified", "data": public_user(current_user)}


@router.put("/account/update")
def update_account(payload: AccountUpdate, current_user: dict = Depends(get_current_user)):
    update = {}
    for field in ("firstname", "lastname"):
        value = getattr(payload, field)
        if value is not None:
            if not sanitize(value):
                raise AppError(f"{field} cannot be empty", 400)
            update[field] = sanitize(value)
    if payload.phone is not None:
        phone = payload.phone.strip()
        if not validate_phone(phone):
            raise AppError("Invalid phone number", 400)
        if db["user"].find_one({"phone": phone, "_id": {"$ne": current_user["_id"]}}):
            raise AppError("User already exists with this phone number", 400)
        update["phone"] = phone
    if payload.address is not None:
        address = payload.address.to_document()
        update["address"] = {k: sanitize(v) for k, v in address.items()}
    if not update:
        raise AppError("No update data provided", 400)

    update["updated_at"] = now()
    db["user"].update_one({"_id": current_user["_id"]}, {"$set": update})
    user = db["user"].find_one({"_id": current_user["_id"]})
    return {"status": "success", "message": "Account updated successfully", "data": public_user(user)}


@router.delete("/account/delete")
def delete_account(response: Response, token: str = Depends(get_current_token),
                   current_user: dict = Depends(get_current_user)):
    removed_reviews = delete_reviews_for_user(current_user["_id"])
    db["user"].delete_one({"_id": current_user["_id"]})
    revoke_token(token)
    response.delete_cookie(COOKIE_NAME)
    logger.info("user_deleted", user_id=str(current_user["_id"]), reviews_removed=removed_reviews)
    return {"status": "success", "message": "Account deleted successfully", "data": None}


@router.post("/password/forgot", dependencies=[Depends(rate_limit)])
def forgot_password(payload: ForgotPasswordInput):
    message = "If an account exists for this email, a password reset link has been sent"
    email = payload.email.strip().lower()
    user = db["user"].find_one({"email": email}) if validate_email(email) else None
    if user:
        token = secrets.token_urlsafe(32)
        set_cache(RESET_TOKEN_PREFIX + hash_token(token), {"userId": str(user["_id"])}, RESET_TOKEN_TTL)
        reset_url = f"{CLIENT_URL}/reset-password?token={quote(token)}"
        enqueue_email(
            user["email"],
            "Reset your password",
            reset_password_html(reset_url, user.get("firstname") or "dear"),
            reset_password_text(reset_url, user.get("firstname") or "dear"),
        )
        logger.info("password_reset_requested", user_id=str(user["_id"]))
    return {"status": "success", "message": message, "data": None}


@router.put("/password/reset")
def reset_password(payload: ResetPasswordInput, token: str = Query(..., min_length=1)):
    key = RESET_TOKEN_PREFIX + hash_token(token)
    entry = get_cache(key)
    user_id = entry.get("userId") if isinstance(entry, dict) else None
    if not user_id or not ObjectId.is_valid(user_id):
        raise AppError("Invalid or expired reset token", 400)
    if not validate_password(payload.password):
        raise AppError("Invalid password", 400)
    if payload.password != payload.confirm_password:
        raise AppError("Passwords do not match", 400)

    result = db["user"].update_one(
        {"_id": ObjectId(user_id)},
        {"$set": {"password": hash_password(payload.password), "updated_at": now()}},
    )
    delete_cache(key)
    if result.matched_count == 0:
        raise AppError("User not found", 404)
    logger.info("password_reset", user_id=user_id)
    return {"status": "success", "message": "Password reset successfully", "data": None}
