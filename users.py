"""Identity store: accounts, credentials, profile and movie lists."""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import USER_COLLECTION, Database, create_document, parse_object_id, utcnow
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from schemas import User as UserSchema
from security import PRIVATE_FIELDS, hash_password, verify_password

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "email", "avatar", "bio", "role", "favoriteMovies", "watchlist", "watched")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def public_profile(user_doc: Dict[str, Any]) -> Dict[str, Any]:
    profile = {"_id": str(user_doc["_id"])}
    for key in PROFILE_FIELDS:
        if key in user_doc:
            profile[key] = user_doc[key]
    if "createdAt" in user_doc:
        profile["createdAt"] = user_doc["createdAt"]
    return profile


def register_user(db: Database, name: str, email: str, password: str) -> Dict[str, Any]:
    email = normalize_email(email)
    if db[USER_COLLECTION].find_one({"email": email}):
        raise ConflictError("User already exists")
    user = UserSchema(
        name=name.strip(),
        email=email,
        password=hash_password(password),
    )
    data = user.model_dump()
    # EmailStr only normalizes the domain part
    data["email"] = email
    try:
        user_id = create_document(db, USER_COLLECTION, data)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    logger.info("Registered user %s", user_id)
    return get_user(db, user_id)


def authenticate(db: Database, email: str, password: str) -> Dict[str, Any]:
    user_doc = db[USER_COLLECTION].find_one({"email": normalize_email(email)})
    # Same error for unknown email and wrong password
    if not user_doc or not verify_password(password, user_doc.get("password", "")):
        raise AuthError("Invalid email or password")
    user_doc.pop("password", None)
    return user_doc


def get_user(db: Database, user_id) -> Dict[str, Any]:
    oid = parse_object_id(user_id, "User")
    user_doc = db[USER_COLLECTION].find_one({"_id": oid}, PRIVATE_FIELDS)
    if not user_doc:
        raise NotFoundError("User not found")
    return user_doc


def avatar_size_mb(avatar: str) -> float:
    """Approximate decoded size of a base64 data URI."""
    return (len(avatar) * 0.75) / (1024 * 1024)


def update_profile(
    db: Database,
    user: Dict[str, Any],
    name: Optional[str] = None,
    email: Optional[str] = None,
    bio: Optional[str] = None,
    avatar: Optional[str] = None,
    max_avatar_mb: float = 8.0,
) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}

    if avatar:
        if avatar.startswith("data:image"):
            size = avatar_size_mb(avatar)
            logger.debug("Inline avatar for %s is %.2f MB", user["_id"], size)
            if size > max_avatar_mb:
                raise ValidationError(
                    f"The avatar image is too large ({size:.2f} MB). Please use a smaller or compressed image."
                )
        changes["avatar"] = avatar

    if name:
        name = name.strip()
        if len(name) < 3:
            raise ValidationError("Name must be at least 3 characters")
        changes["name"] = name

    if bio is not None:
        changes["bio"] = bio

    if email:
        email = normalize_email(email)
        if email != user.get("email"):
            taken = db[USER_COLLECTION].find_one({"email": email, "_id": {"$ne": user["_id"]}})
            if taken:
                raise ConflictError("Email already in use")
            changes["email"] = email

    if changes:
        changes["updatedAt"] = utcnow()
        try:
            db[USER_COLLECTION].update_one({"_id": user["_id"]}, {"$set": changes})
        except DuplicateKeyError:
            raise ConflictError("Email already in use")
    return get_user(db, user["_id"])


def _update_list(db: Database, user_id: ObjectId, update: Dict[str, Any], field: str) -> List[Any]:
    doc = db[USER_COLLECTION].find_one_and_update(
        {"_id": user_id},
        update,
        projection={field: 1},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFoundError("User not found")
    return doc.get(field, [])


def add_favorite(db: Database, user: Dict[str, Any], movie_id: int) -> List[int]:
    return _update_list(db, user["_id"], {"$addToSet": {"favoriteMovies": movie_id}}, "favoriteMovies")


def remove_favorite(db: Database, user: Dict[str, Any], movie_id: int) -> List[int]:
    return _update_list(db, user["_id"], {"$pull": {"favoriteMovies": movie_id}}, "favoriteMovies")


def add_to_watchlist(db: Database, user: Dict[str, Any], movie_id: int) -> List[int]:
    return _update_list(db, user["_id"], {"$addToSet": {"watchlist": movie_id}}, "watchlist")


def remove_from_watchlist(db: Database, user: Dict[str, Any], movie_id: int) -> List[int]:
    return _update_list(db, user["_id"], {"$pull": {"watchlist": movie_id}}, "watchlist")


def mark_watched(db: Database, user: Dict[str, Any], movie_id: int) -> List[Dict[str, Any]]:
    users = db[USER_COLLECTION]
    # Only push when the movie is not already recorded
    users.update_one(
        {"_id": user["_id"], "watched.movieId": {"$ne": movie_id}},
        {"$push": {"watched": {"movieId": movie_id, "watchedAt": utcnow()}}},
    )
    return get_user(db, user["_id"]).get("watched", [])


def unmark_watched(db: Database, user: Dict[str, Any], movie_id: int) -> List[Dict[str, Any]]:
    return _update_list(db, user["_id"], {"$pull": {"watched": {"movieId": movie_id}}}, "watched")
