"""
Credential store: registration, login, password reset and the
self-service profile/wishlist operations on the ``user`` collection.
"""
import logging
from typing import List, Optional
from urllib.parse import quote

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, now, parse_object_id, serialize_doc
from errors import Conflict, Forbidden, InternalError, InvalidCredentials, InvalidOrExpiredToken, NotFound, ValidationError
from mailer import Mailer
from schemas import (
    AdminUserUpdateBody,
    ProfileUpdateBody,
    RegisterAdminBody,
    RegisterBody,
    User,
)
from security import TokenService, generate_reset_token, hash_password, hash_reset_token, public_user, safe_user, verify_password
from settings import Settings

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _insert_user(db: Database, user: User) -> str:
    try:
        return create_document(db, "user", user.model_dump(exclude_none=True))
    except DuplicateKeyError:
        raise Conflict("User already exists")


def _get_user_doc(db: Database, user_id) -> dict:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "User")})
    if not user:
        raise NotFound("User not found")
    return user


# ----------------------- Registration / login -----------------------
def register(db: Database, tokens: TokenService, settings: Settings, body: RegisterBody) -> dict:
    if db["user"].find_one({"email": body.email}):
        raise Conflict("User already exists")
    user = User(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password, settings.bcrypt_rounds),
    )
    user_id = _insert_user(db, user)
    doc = {"id": user_id, "name": user.name, "email": user.email, "role": user.role}
    logger.info("Registered user %s", user_id)
    return {"token": tokens.issue(doc, "register"), "user": public_user(doc)}


def register_admin(db: Database, tokens: TokenService, settings: Settings, body: RegisterAdminBody) -> dict:
    if not settings.admin_registration_key:
        logger.error("ADMIN_REGISTRATION_KEY is not set in environment variables")
        raise InternalError("Server configuration error")
    if body.admin_key != settings.admin_registration_key:
        raise ValidationError("Invalid admin key")
    if db["user"].find_one({"email": body.email}):
        raise Conflict("User already exists")
    user = User(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password, settings.bcrypt_rounds),
        role="admin",
        is_verified=True,
    )
    user_id = _insert_user(db, user)
    doc = {"id": user_id, "name": user.name, "email": user.email, "role": user.role}
    logger.info("Registered admin %s", user_id)
    return {"token": tokens.issue(doc, "register_admin"), "user": public_user(doc)}


def login(db: Database, tokens: TokenService, email: str, password: str, expect_admin: bool = False) -> dict:
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("password_hash")):
        raise InvalidCredentials()
    if expect_admin and user.get("role") != "admin":
        raise Forbidden("Access denied. Admin only.")
    flow = "admin_login" if expect_admin else "login"
    return {"token": tokens.issue(user, flow), "user": public_user(user)}


def refresh(tokens: TokenService, user: dict) -> dict:
    return {"token": tokens.issue(user, "refresh")}


# ----------------------- Password reset -----------------------
def request_password_reset(db: Database, settings: Settings, mailer: Mailer, email: str) -> str:
    """Start a reset. The returned message is identical whether or not the account exists."""
    user = db["user"].find_one({"email": email})
    if not user:
        return RESET_REQUESTED_MESSAGE

    token, token_hash = generate_reset_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": token_hash,
            "reset_password_expire": now() + settings.reset_token_ttl,
            "updated_at": now(),
        }},
    )
    reset_url = f"{settings.frontend_url}/reset-password/{token}?email={quote(email)}"
    sent, error = mailer.send_password_reset(email, reset_url)
    if not sent:
        logger.warning("Password reset mail not sent to user %s: %s", user["_id"], error)
        if settings.is_development:
            logger.info("Password reset link: %s", reset_url)
    return RESET_REQUESTED_MESSAGE


def _reset_filter(token: str, email: Optional[str] = None) -> dict:
    filt = {
        "reset_password_token": hash_reset_token(token),
        "reset_password_expire": {"$gt": now()},
    }
    if email is not None:
        filt["email"] = email
    return filt


def validate_reset_token(db: Database, token: str) -> bool:
    if not db["user"].find_one(_reset_filter(token)):
        raise InvalidOrExpiredToken()
    return True


def reset_password(db: Database, settings: Settings, token: str, email: str, new_password: str) -> str:
    # Matching on the token hash inside the update makes the token single-use.
    user = db["user"].find_one_and_update(
        _reset_filter(token, email),
        {
            "$set": {
                "password_hash": hash_password(new_password, settings.bcrypt_rounds),
                "updated_at": now(),
            },
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise InvalidOrExpiredToken()
    logger.info("Password reset for user %s", user["_id"])
    return "Password reset successful"


# ----------------------- Self service -----------------------
def change_password(db: Database, settings: Settings, user_id: str, current_password: str, new_password: str) -> str:
    user = _get_user_doc(db, user_id)
    if not verify_password(current_password, user.get("password_hash")):
        raise ValidationError("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password, settings.bcrypt_rounds), "updated_at": now()}},
    )
    return "Password updated successfully"


def format_profile(user: dict) -> dict:
    address = user.get("address") or {}
    profile = safe_user(user)
    profile.update({
        "address": address.get("street") or "",
        "city": address.get("city") or "",
        "state": address.get("state") or "",
        "postal_code": address.get("zip_code") or "",
        "country": address.get("country") or "India",
        "phone_number": user.get("phone") or "",
    })
    return profile


def get_profile(db: Database, user_id: str) -> dict:
    return format_profile(_get_user_doc(db, user_id))


def update_profile(db: Database, user_id: str, body: ProfileUpdateBody) -> dict:
    user = _get_user_doc(db, user_id)
    update = {}
    if body.email and body.email != user.get("email"):
        if db["user"].find_one({"email": body.email}):
            raise Conflict("Email already in use")
        update["email"] = body.email
    if body.name:
        update["name"] = body.name.strip()
    if body.phone_number:
        update["phone"] = body.phone_number.strip()

    current = user.get("address") or {}
    update["address"] = {
        "street": body.address or current.get("street"),
        "city": body.city or current.get("city"),
        "state": body.state or current.get("state"),
        "zip_code": body.postal_code or current.get("zip_code"),
        "country": body.country or current.get("country") or "India",
    }
    update["updated_at"] = now()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("Email already in use")
    return get_profile(db, user_id)


def delete_account(db: Database, user_id: str) -> str:
    user = _get_user_doc(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("Deleted account %s", user["_id"])
    return "Account deleted successfully"


# ----------------------- Wishlist -----------------------
def add_to_wishlist(db: Database, user_id: str, product_id: str) -> List[str]:
    user = _get_user_doc(db, user_id)
    if not db["product"].find_one({"_id": parse_object_id(product_id, "Product")}, {"_id": 1}):
        raise NotFound("Product not found")
    res = db["user"].update_one(
        {"_id": user["_id"], "wishlist": {"$ne": product_id}},
        {"$push": {"wishlist": product_id}, "$set": {"updated_at": now()}},
    )
    if res.matched_count == 0:
        raise ValidationError("Product already in wishlist")
    return _get_user_doc(db, user_id).get("wishlist", [])


def remove_from_wishlist(db: Database, user_id: str, product_id: str) -> List[str]:
    user = _get_user_doc(db, user_id)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$pull": {"wishlist": product_id}, "$set": {"updated_at": now()}},
    )
    return _get_user_doc(db, user_id).get("wishlist", [])


def get_wishlist(db: Database, user_id: str) -> List[dict]:
    ids = _get_user_doc(db, user_id).get("wishlist", [])
    oids = []
    for pid in ids:
        try:
            oids.append(parse_object_id(pid, "Product"))
        except NotFound:
            continue
    found = {
        str(p["_id"]): p
        for p in db["product"].find({"_id": {"$in": oids}}, {"name": 1, "price": 1, "images": 1})
    }
    return [serialize_doc(found[pid]) for pid in ids if pid in found]


# ----------------------- Admin -----------------------
def list_users(db: Database) -> List[dict]:
    return [safe_user(u) for u in db["user"].find().sort("created_at", -1)]


def get_user(db: Database, user_id: str) -> dict:
    return safe_user(_get_user_doc(db, user_id))


def admin_update_user(db: Database, user_id: str, body: AdminUserUpdateBody) -> dict:
    user = _get_user_doc(db, user_id)
    update = body.model_dump(exclude_none=True)
    if "email" in update and update["email"] != user.get("email"):
        if db["user"].find_one({"email": update["email"]}):
            raise Conflict("Email already in use")
    update["updated_at"] = now()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return get_user(db, user_id)


def delete_user(db: Database, user_id: str) -> str:
    user = _get_user_doc(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("Admin deleted user %s", user["_id"])
    return "User deleted successfully"
