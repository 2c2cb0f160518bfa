import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from database import get_db, parse_object_id, serialize_doc
from errors import Forbidden, NotFound, Unauthorized
from settings import Settings

logger = logging.getLogger(__name__)

JWT_ALGO = "HS256"
SECRET_FIELDS = ("password_hash", "reset_password_token", "reset_password_expire")

# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72

security = HTTPBearer(auto_error=False)


# ----------------------- Passwords -----------------------
def hash_password(password: str, rounds: int = 12) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# ----------------------- Reset tokens -----------------------
def generate_reset_token() -> Tuple[str, str]:
    """Return ``(token, token_hash)``. Only the hash is ever persisted."""
    token = secrets.token_hex(32)
    return token, hash_reset_token(token)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ----------------------- Session tokens -----------------------
class TokenService:
    """Issues and verifies signed session tokens.

    Expiry is looked up per entry point (``register``, ``login``,
    ``admin_login``...) in the settings' expiry table.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.secret = settings.jwt_secret

    def issue(self, user: dict, flow: str = "login") -> str:
        user_id = user.get("id") or user.get("_id")
        exp = datetime.now(timezone.utc) + self.settings.expiry_for(flow)
        payload = {
            "id": str(user_id),
            "role": user.get("role", "customer"),
            "email": user.get("email"),
            "exp": exp,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGO)

    def decode(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.secret, algorithms=[JWT_ALGO])
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except jwt.InvalidTokenError:
            raise Unauthorized("Invalid token")


def public_user(user: dict) -> dict:
    user_id = user.get("id") or user.get("_id")
    return {
        "id": str(user_id),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "customer"),
    }


def safe_user(user: dict) -> dict:
    """Serialized user without password and reset-token fields."""
    doc = {k: v for k, v in user.items() if k not in SECRET_FIELDS}
    return serialize_doc(doc)


def verify_session(db: Database, tokens: TokenService, token: Optional[str]) -> dict:
    if not token:
        raise Unauthorized("Authentication required")
    payload = tokens.decode(token)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    try:
        oid = parse_object_id(user_id, "User")
    except NotFound:
        raise Unauthorized("Invalid token")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise Unauthorized("Invalid token")
    return safe_user(user)


def require_role(user: dict, role: str) -> None:
    if user.get("role") != role:
        raise Forbidden("Access denied. Admin privileges required" if role == "admin" else "Not authorized")


# ----------------------- Dependencies -----------------------
def get_tokens(request: Request) -> TokenService:
    return request.app.state.tokens


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_tokens),
) -> dict:
    token = credentials.credentials if credentials else None
    return verify_session(db, tokens, token)


def get_admin_user(user: dict = Depends(get_current_user)) -> dict:
    require_role(user, "admin")
    return user
