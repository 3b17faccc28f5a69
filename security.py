import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from database import USER_COLLECTION, Database, get_db, parse_object_id
from errors import AuthError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes our 401 instead of FastAPI's default
security = HTTPBearer(auto_error=False)

# Never leaves the store except for credential checks
PRIVATE_FIELDS = {"password": 0}


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def create_access_token(sub: str, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "exp": now + timedelta(days=settings.token_expire_days),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_access_token(token: str, settings: Settings) -> str:
    """Return the user id carried by a token, or raise AuthError."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Not authorized, invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Not authorized, invalid token")
    return user_id


def _load_user(db: Database, token: str, settings: Settings) -> Dict[str, Any]:
    user_id = decode_access_token(token, settings)
    try:
        oid = parse_object_id(user_id, "User")
    except NotFoundError:
        raise AuthError("Not authorized, invalid token")
    user_doc = db[USER_COLLECTION].find_one({"_id": oid}, PRIVATE_FIELDS)
    if not user_doc:
        raise AuthError("User not found")
    return user_doc


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthError("Not authorized, no token")
    return _load_user(db, credentials.credentials, settings)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[Dict[str, Any]]:
    """Resolve the viewer on public routes; a bad token just means anonymous."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return _load_user(db, credentials.credentials, settings)
    except AuthError:
        return None


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        logger.info("Admin route refused for user %s", current_user["_id"])
        raise ForbiddenError("Access denied, admin role required")
    return current_user
