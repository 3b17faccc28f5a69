"""
Database Schemas for CineTalk

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name (e.g., User -> "user").
"""
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

DEFAULT_AVATAR = "https://via.placeholder.com/150"

COMMENT_MIN_LENGTH = 10
COMMENT_MAX_LENGTH = 1000


class WatchedMovie(BaseModel):
    movieId: int
    watchedAt: datetime


class User(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., description="Hashed password (bcrypt)")
    avatar: str = Field(DEFAULT_AVATAR, description="URL or data:image URI")
    bio: str = ""
    favoriteMovies: List[int] = Field(default_factory=list)
    watchlist: List[int] = Field(default_factory=list)
    watched: List[WatchedMovie] = Field(default_factory=list)
    role: str = Field("user", pattern="^(user|admin)$", description="user | admin")


class Review(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId = Field(..., description="Owning user")
    movieId: int
    movieTitle: str = Field(..., min_length=1, description="Snapshot of the catalog title")
    rating: float = Field(..., ge=0, le=10)
    comment: str = Field(..., min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)
    likes: List[ObjectId] = Field(default_factory=list)
    dislikes: List[ObjectId] = Field(default_factory=list)
    # None marks a top-level review
    parentReview: Optional[ObjectId] = None
    isEdited: bool = False
    isApproved: bool = True
