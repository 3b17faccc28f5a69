"""
Review engine

Reviews and replies live in one collection; a reply is a review whose
parentReview points at a top-level review. Engagement (likes/dislikes) is kept
as two arrays of user ids on the review document. Each toggle is a single
conditional update, so the arrays never share a user id and concurrent toggles
from one user cannot both win.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import (
    REVIEW_COLLECTION,
    USER_COLLECTION,
    Database,
    create_document,
    get_documents,
    parse_object_id,
    utcnow,
)
from errors import ForbiddenError, InternalError, NotFoundError, ValidationError
from schemas import Review as ReviewSchema

logger = logging.getLogger(__name__)

LIKE = "like"
DISLIKE = "dislike"

# field holding the engagement, and the field it excludes
_ENGAGEMENT_FIELDS = {
    LIKE: ("likes", "dislikes"),
    DISLIKE: ("dislikes", "likes"),
}

# A toggle only needs another pass when a concurrent toggle by the same user
# changed membership between our two conditional updates.
MAX_TOGGLE_ATTEMPTS = 5

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]
OLDEST_FIRST = [("createdAt", ASCENDING), ("_id", ASCENDING)]


# -------------------- Serialization --------------------

def user_action(review: Dict[str, Any], viewer_id: Optional[ObjectId]) -> Optional[str]:
    if viewer_id is None:
        return None
    if viewer_id in review.get("likes", []):
        return LIKE
    if viewer_id in review.get("dislikes", []):
        return DISLIKE
    return None


def engagement(review: Dict[str, Any], viewer_id: Optional[ObjectId]) -> Dict[str, Any]:
    return {
        "likesCount": len(review.get("likes", [])),
        "dislikesCount": len(review.get("dislikes", [])),
        "userAction": user_action(review, viewer_id),
    }


def _load_authors(db: Database, reviews: Iterable[Dict[str, Any]]) -> Dict[ObjectId, Dict[str, Any]]:
    ids = list({r["user"] for r in reviews if r.get("user") is not None})
    if not ids:
        return {}
    cursor = db[USER_COLLECTION].find({"_id": {"$in": ids}}, {"name": 1, "avatar": 1})
    return {doc["_id"]: doc for doc in cursor}


def serialize_review(review: Dict[str, Any], authors: Dict[ObjectId, Dict[str, Any]]) -> Dict[str, Any]:
    author = authors.get(review.get("user"))
    parent = review.get("parentReview")
    return {
        "_id": str(review["_id"]),
        "user": {
            "_id": str(author["_id"]),
            "name": author.get("name"),
            "avatar": author.get("avatar"),
        } if author else None,
        "movieId": review["movieId"],
        "movieTitle": review["movieTitle"],
        "rating": review["rating"],
        "comment": review["comment"],
        "likes": [str(uid) for uid in review.get("likes", [])],
        "dislikes": [str(uid) for uid in review.get("dislikes", [])],
        "parentReview": str(parent) if parent is not None else None,
        "isEdited": review.get("isEdited", False),
        "isApproved": review.get("isApproved", True),
        "createdAt": review.get("createdAt"),
        "updatedAt": review.get("updatedAt"),
    }


def _populated(db: Database, review: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_review(review, _load_authors(db, [review]))


# -------------------- Lookups --------------------

def get_review(db: Database, review_id) -> Dict[str, Any]:
    oid = parse_object_id(review_id, "Review")
    review = db[REVIEW_COLLECTION].find_one({"_id": oid})
    if not review:
        raise NotFoundError("Review not found")
    return review


def _is_owner(review: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return review.get("user") == user["_id"]


# -------------------- Create --------------------

def create_review(db: Database, user: Dict[str, Any], movie_id: int, movie_title: str, rating: float, comment: str) -> Dict[str, Any]:
    review = ReviewSchema(
        user=user["_id"],
        movieId=movie_id,
        movieTitle=movie_title,
        rating=rating,
        comment=comment,
    )
    review_id = create_document(db, REVIEW_COLLECTION, review)
    logger.info("Review %s created by %s for movie %s", review_id, user["_id"], movie_id)
    return _populated(db, get_review(db, review_id))


def create_reply(db: Database, user: Dict[str, Any], parent_id, comment: Optional[str]) -> Dict[str, Any]:
    parent = get_review(db, parent_id)
    if not comment or not comment.strip():
        raise ValidationError("Comment is required")
    if parent.get("parentReview") is not None:
        raise ValidationError("Replies cannot be nested; reply to the original review instead")
    reply = ReviewSchema(
        user=user["_id"],
        movieId=parent["movieId"],
        movieTitle=parent["movieTitle"],
        rating=0,
        comment=comment,
        parentReview=parent["_id"],
    )
    reply_id = create_document(db, REVIEW_COLLECTION, reply)
    logger.info("Reply %s to review %s created by %s", reply_id, parent["_id"], user["_id"])
    return _populated(db, get_review(db, reply_id))


# -------------------- Read --------------------

def list_movie_reviews(db: Database, movie_id: int, viewer_id: Optional[ObjectId] = None) -> List[Dict[str, Any]]:
    top_level = get_documents(
        db,
        REVIEW_COLLECTION,
        {"movieId": movie_id, "isApproved": True, "parentReview": None},
        sort=NEWEST_FIRST,
    )
    if not top_level:
        return []

    replies_by_parent: Dict[ObjectId, List[Dict[str, Any]]] = {r["_id"]: [] for r in top_level}
    replies = get_documents(
        db,
        REVIEW_COLLECTION,
        {"parentReview": {"$in": list(replies_by_parent)}, "isApproved": True},
        sort=OLDEST_FIRST,
    )
    for reply in replies:
        replies_by_parent[reply["parentReview"]].append(reply)

    authors = _load_authors(db, top_level + replies)
    results = []
    for review in top_level:
        thread = [
            {**serialize_review(reply, authors), **engagement(reply, viewer_id)}
            for reply in replies_by_parent[review["_id"]]
        ]
        item = serialize_review(review, authors)
        item.update(engagement(review, viewer_id))
        item["replies"] = thread
        item["repliesCount"] = len(thread)
        results.append(item)
    return results


def list_user_reviews(db: Database, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    reviews = get_documents(db, REVIEW_COLLECTION, {"user": user["_id"]}, sort=NEWEST_FIRST)
    authors = _load_authors(db, reviews)
    return [{**serialize_review(r, authors), **engagement(r, user["_id"])} for r in reviews]


# -------------------- Update / delete --------------------

def update_review(db: Database, user: Dict[str, Any], review_id, rating: Optional[float] = None, comment: Optional[str] = None) -> Dict[str, Any]:
    review = get_review(db, review_id)
    if not _is_owner(review, user):
        raise ForbiddenError("Not authorized to update this review")

    is_reply = review.get("parentReview") is not None
    merged = ReviewSchema(
        user=review["user"],
        movieId=review["movieId"],
        movieTitle=review["movieTitle"],
        rating=review["rating"] if rating is None or is_reply else rating,
        comment=review["comment"] if comment is None else comment,
        parentReview=review.get("parentReview"),
    )
    db[REVIEW_COLLECTION].update_one(
        {"_id": review["_id"]},
        {"$set": {
            "rating": merged.rating,
            "comment": merged.comment,
            "isEdited": True,
            "updatedAt": utcnow(),
        }},
    )
    return _populated(db, get_review(db, review["_id"]))


def delete_review(db: Database, user: Dict[str, Any], review_id) -> int:
    """Delete a review and its replies; returns the number of documents removed."""
    review = get_review(db, review_id)
    if not _is_owner(review, user) and user.get("role") != "admin":
        raise ForbiddenError("Not authorized to delete this review")
    collection = db[REVIEW_COLLECTION]
    removed = collection.delete_many({"parentReview": review["_id"]}).deleted_count
    collection.delete_one({"_id": review["_id"]})
    logger.info("Review %s deleted by %s with %d replies", review["_id"], user["_id"], removed)
    return removed + 1


def set_approval(db: Database, review_id, approved: bool) -> Dict[str, Any]:
    oid = parse_object_id(review_id, "Review")
    review = db[REVIEW_COLLECTION].find_one_and_update(
        {"_id": oid},
        {"$set": {"isApproved": approved, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if review is None:
        raise NotFoundError("Review not found")
    logger.info("Review %s approval set to %s", oid, approved)
    return _populated(db, review)


# -------------------- Engagement --------------------

def _toggle(db: Database, review_id, user_id: ObjectId, kind: str) -> Dict[str, Any]:
    field, opposite = _ENGAGEMENT_FIELDS[kind]
    oid = parse_object_id(review_id, "Review")
    collection = db[REVIEW_COLLECTION]

    for _ in range(MAX_TOGGLE_ATTEMPTS):
        # Already engaged this way: toggle off
        review = collection.find_one_and_update(
            {"_id": oid, field: user_id},
            {"$pull": {field: user_id}},
            return_document=ReturnDocument.AFTER,
        )
        if review is not None:
            return engagement(review, user_id)

        # Not engaged this way: switch on and drop the opposite in the same write
        review = collection.find_one_and_update(
            {"_id": oid, field: {"$ne": user_id}},
            {"$addToSet": {field: user_id}, "$pull": {opposite: user_id}},
            return_document=ReturnDocument.AFTER,
        )
        if review is not None:
            return engagement(review, user_id)

        if collection.find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFoundError("Review not found")

    raise InternalError("Could not update review engagement, please retry")


def toggle_like(db: Database, review_id, user_id: ObjectId) -> Dict[str, Any]:
    return _toggle(db, review_id, user_id, LIKE)


def toggle_dislike(db: Database, review_id, user_id: ObjectId) -> Dict[str, Any]:
    return _toggle(db, review_id, user_id, DISLIKE)


def clear_engagement(db: Database, review_id, user_id: ObjectId, kind: str) -> Dict[str, Any]:
    field, _ = _ENGAGEMENT_FIELDS[kind]
    oid = parse_object_id(review_id, "Review")
    review = db[REVIEW_COLLECTION].find_one_and_update(
        {"_id": oid},
        {"$pull": {field: user_id}},
        return_document=ReturnDocument.AFTER,
    )
    if review is None:
        raise NotFoundError("Review not found")
    return engagement(review, user_id)
