import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic import ValidationError as SchemaValidationError
from pymongo.errors import PyMongoError
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

import reviews
import translation
import users
from catalog import CatalogClient, get_catalog
from config import Settings, get_settings
from database import Database, get_db
from errors import AppError, ValidationError
from schemas import COMMENT_MAX_LENGTH, COMMENT_MIN_LENGTH
from security import create_access_token, get_current_user, get_optional_user, require_admin

logger = logging.getLogger("cinetalk")

PAYLOAD_TOO_LARGE_MESSAGE = "The request is too large. Please use a smaller image."


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# -------------------- Models --------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode()) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return value


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None


class ReviewCreate(BaseModel):
    movieId: int
    movieTitle: str = Field(..., min_length=1)
    rating: float = Field(..., ge=0, le=10)
    comment: str = Field(..., min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)


class ReviewUpdate(BaseModel):
    rating: Optional[float] = Field(None, ge=0, le=10)
    comment: Optional[str] = Field(None, min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)


class ReplyCreate(BaseModel):
    comment: Optional[str] = None


class ApprovalUpdate(BaseModel):
    isApproved: bool


class TranslateRequest(BaseModel):
    text: Optional[str] = None
    targetLang: Optional[str] = None


class TranslateFieldsRequest(BaseModel):
    obj: Optional[Dict[str, Any]] = Field(None, alias="object")
    fields: Optional[List[str]] = None
    targetLang: Optional[str] = None


# -------------------- Helpers --------------------

def _language(request: Request, language: Optional[str]) -> Optional[str]:
    if language:
        return language
    accept = request.headers.get("accept-language")
    if accept:
        return accept.split(",")[0].split(";")[0].strip() or None
    return None


def _require_query(q: Optional[str]) -> str:
    if not q or not q.strip():
        raise ValidationError("A search term is required")
    return q.strip()


def _auth_response(user_doc, settings: Settings, include_role: bool = False) -> dict:
    body = {
        "_id": str(user_doc["_id"]),
        "name": user_doc["name"],
        "email": user_doc["email"],
        "avatar": user_doc.get("avatar"),
    }
    if include_role:
        body["role"] = user_doc.get("role", "user")
    body["token"] = create_access_token(str(user_doc["_id"]), settings)
    return body


def _validation_message(errors) -> str:
    if not errors:
        return "Invalid data"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid data")


def _validation_errors(errors) -> list:
    return [
        {
            "field": ".".join(str(p) for p in e.get("loc", ()) if p not in ("body", "query", "path")),
            "message": e.get("msg"),
        }
        for e in errors
    ]


# -------------------- Middleware --------------------

class BodySizeLimitMiddleware:
    """Reject request bodies over ``max_bytes`` with 413.

    The declared Content-Length is checked first; bodies without one
    (chunked uploads) are counted as they arrive and buffered for the app.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            await self._reject(scope, receive, send, length)
            return

        messages = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await self._reject(scope, receive, send, f"more than {self.max_bytes}")
                return
            more_body = message.get("more_body", False)

        async def replay() -> Message:
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size) -> None:
        logger.warning("%s %s rejected: body of %s bytes", scope["method"], scope["path"], size)
        response = JSONResponse(
            status_code=413,
            content={"message": PAYLOAD_TOO_LARGE_MESSAGE, "error": "PayloadTooLarge"},
        )
        await response(scope, receive, send)


# -------------------- App --------------------

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    catalog: Optional[CatalogClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.database.connect()
        logger.info("CineTalk API started (%s)", settings.app_env)
        try:
            yield
        finally:
            await app.state.catalog.aclose()
            app.state.database.close()

    app = FastAPI(title="CineTalk API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(settings.database_url, settings.database_name)
    app.state.catalog = catalog or CatalogClient(settings)

    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    register_error_handlers(app, settings)
    register_routes(app)
    return app


def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        body = {"message": exc.message}
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
            if settings.is_development and exc.detail is not None:
                body["error"] = exc.detail
        else:
            logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.info("%s %s -> 400 %s", request.method, request.url.path, _validation_message(errors))
        return JSONResponse(
            status_code=400,
            content={"message": _validation_message(errors), "errors": _validation_errors(errors)},
        )

    @app.exception_handler(SchemaValidationError)
    async def schema_validation_handler(request: Request, exc: SchemaValidationError):
        errors = exc.errors()
        return JSONResponse(
            status_code=400,
            content={"message": _validation_message(errors), "errors": _validation_errors(errors)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"message": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = {"message": "Server error"}
        if settings.is_development:
            body["error"] = str(exc)
        return JSONResponse(status_code=500, content=body)


def register_routes(app: FastAPI) -> None:
    # -------------------- Health --------------------
    @app.get("/")
    def root():
        return {
            "name": "CineTalk API",
            "status": "ok",
            "endpoints": {
                "auth": "/api/auth",
                "movies": "/api/movies",
                "tv": "/api/tv",
                "users": "/api/users",
                "reviews": "/api/reviews",
                "translate": "/api/translate",
            },
        }

    @app.get("/api/health")
    def health(db: Database = Depends(get_db)):
        response = {"backend": "running", "database": "unavailable"}
        try:
            if db.ping():
                response["database"] = "connected"
        except PyMongoError as e:
            logger.error("Database ping failed: %s", e)
            response["database"] = "error"
        return response

    # -------------------- Auth --------------------
    @app.post("/api/auth/register", status_code=201)
    def register(payload: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        user_doc = users.register_user(db, payload.name, payload.email, payload.password)
        return _auth_response(user_doc, settings)

    @app.post("/api/auth/login")
    def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        user_doc = users.authenticate(db, payload.email, payload.password)
        return _auth_response(user_doc, settings, include_role=True)

    @app.get("/api/auth/me")
    def me(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        return users.public_profile(users.get_user(db, current_user["_id"]))

    # -------------------- Users --------------------
    @app.get("/api/users/profile")
    def get_profile(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        return users.public_profile(users.get_user(db, current_user["_id"]))

    @app.put("/api/users/profile")
    def update_profile(
        payload: ProfileUpdate,
        current_user=Depends(get_current_user),
        db: Database = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        updated = users.update_profile(
            db,
            current_user,
            name=payload.name,
            email=payload.email,
            bio=payload.bio,
            avatar=payload.avatar,
            max_avatar_mb=settings.max_avatar_mb,
        )
        return users.public_profile(updated)

    @app.get("/api/users/favorites")
    async def list_favorites(
        request: Request,
        language: Optional[str] = None,
        current_user=Depends(get_current_user),
        catalog: CatalogClient = Depends(get_catalog),
    ):
        movie_ids = current_user.get("favoriteMovies", [])
        if not movie_ids:
            return []
        return await catalog.movies_by_ids(movie_ids, _language(request, language))

    @app.post("/api/users/favorites/{movie_id}")
    def add_favorite(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        favorites = users.add_favorite(db, current_user, movie_id)
        return {"message": "Movie added to favorites", "favoriteMovies": favorites}

    @app.delete("/api/users/favorites/{movie_id}")
    def remove_favorite(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        favorites = users.remove_favorite(db, current_user, movie_id)
        return {"message": "Movie removed from favorites", "favoriteMovies": favorites}

    @app.get("/api/users/watchlist")
    async def list_watchlist(
        request: Request,
        language: Optional[str] = None,
        current_user=Depends(get_current_user),
        catalog: CatalogClient = Depends(get_catalog),
    ):
        movie_ids = current_user.get("watchlist", [])
        if not movie_ids:
            return []
        return await catalog.movies_by_ids(movie_ids, _language(request, language))

    @app.post("/api/users/watchlist/{movie_id}")
    def add_to_watchlist(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        watchlist = users.add_to_watchlist(db, current_user, movie_id)
        return {"message": "Movie added to watchlist", "watchlist": watchlist}

    @app.delete("/api/users/watchlist/{movie_id}")
    def remove_from_watchlist(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        watchlist = users.remove_from_watchlist(db, current_user, movie_id)
        return {"message": "Movie removed from watchlist", "watchlist": watchlist}

    @app.get("/api/users/watched")
    def list_watched(current_user=Depends(get_current_user)):
        return current_user.get("watched", [])

    @app.post("/api/users/watched/{movie_id}")
    def mark_watched(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        watched = users.mark_watched(db, current_user, movie_id)
        return {"message": "Movie marked as watched", "watched": watched}

    @app.delete("/api/users/watched/{movie_id}")
    def unmark_watched(movie_id: int, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        watched = users.unmark_watched(db, current_user, movie_id)
        return {"message": "Movie removed from watched", "watched": watched}

    # -------------------- Reviews --------------------
    @app.get("/api/reviews/movie/{movie_id}")
    def movie_reviews(movie_id: int, viewer=Depends(get_optional_user), db: Database = Depends(get_db)):
        viewer_id = viewer["_id"] if viewer else None
        return reviews.list_movie_reviews(db, movie_id, viewer_id)

    @app.post("/api/reviews", status_code=201)
    def add_review(payload: ReviewCreate, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        return reviews.create_review(
            db,
            current_user,
            movie_id=payload.movieId,
            movie_title=payload.movieTitle,
            rating=payload.rating,
            comment=payload.comment,
        )

    @app.get("/api/reviews/my-reviews")
    def my_reviews(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        return reviews.list_user_reviews(db, current_user)

    @app.put("/api/reviews/{review_id}")
    def update_review(
        review_id: str,
        payload: ReviewUpdate,
        current_user=Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        return reviews.update_review(db, current_user, review_id, rating=payload.rating, comment=payload.comment)

    @app.delete("/api/reviews/{review_id}")
    def delete_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        removed = reviews.delete_review(db, current_user, review_id)
        return {"message": "Review deleted", "deleted": removed}

    @app.post("/api/reviews/{review_id}/like")
    def like_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        state = reviews.toggle_like(db, review_id, current_user["_id"])
        message = "Like added" if state["userAction"] == reviews.LIKE else "Like removed"
        return {"message": message, **state}

    @app.delete("/api/reviews/{review_id}/like")
    def unlike_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        state = reviews.clear_engagement(db, review_id, current_user["_id"], reviews.LIKE)
        return {"message": "Like removed", **state}

    @app.post("/api/reviews/{review_id}/dislike")
    def dislike_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        state = reviews.toggle_dislike(db, review_id, current_user["_id"])
        message = "Dislike added" if state["userAction"] == reviews.DISLIKE else "Dislike removed"
        return {"message": message, **state}

    @app.delete("/api/reviews/{review_id}/dislike")
    def undislike_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
        state = reviews.clear_engagement(db, review_id, current_user["_id"], reviews.DISLIKE)
        return {"message": "Dislike removed", **state}

    @app.post("/api/reviews/{review_id}/reply", status_code=201)
    def reply_to_review(
        review_id: str,
        payload: ReplyCreate,
        current_user=Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        return reviews.create_reply(db, current_user, review_id, payload.comment)

    @app.put("/api/reviews/{review_id}/approval", dependencies=[Depends(require_admin)])
    def moderate_review(review_id: str, payload: ApprovalUpdate, db: Database = Depends(get_db)):
        return reviews.set_approval(db, review_id, payload.isApproved)

    # -------------------- Movies --------------------
    @app.get("/api/movies/popular")
    async def popular_movies(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.popular_movies(page, _language(request, language))

    @app.get("/api/movies/trending")
    async def trending_movies(request: Request, timeWindow: str = Query("week", pattern="^(day|week)$"), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.trending_movies(timeWindow, _language(request, language))

    @app.get("/api/movies/top-rated")
    async def top_rated_movies(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.top_rated_movies(page, _language(request, language))

    @app.get("/api/movies/upcoming")
    async def upcoming_movies(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.upcoming_movies(page, _language(request, language))

    @app.get("/api/movies/now-playing")
    async def now_playing_movies(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.now_playing_movies(page, _language(request, language))

    @app.get("/api/movies/genres")
    async def movie_genres(request: Request, language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.movie_genres(_language(request, language))

    @app.get("/api/movies/search")
    async def search_movies(request: Request, q: Optional[str] = None, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.search_movies(_require_query(q), page, _language(request, language))

    @app.get("/api/movies/genre/{genre_id}")
    async def movies_by_genre(genre_id: int, request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.movies_by_genre(genre_id, page, _language(request, language))

    @app.get("/api/movies/{movie_id}")
    async def movie_details(movie_id: int, request: Request, language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.movie_details(movie_id, _language(request, language))

    # -------------------- TV --------------------
    @app.get("/api/tv/popular")
    async def popular_shows(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.popular_shows(page, _language(request, language))

    @app.get("/api/tv/trending")
    async def trending_shows(request: Request, timeWindow: str = Query("week", pattern="^(day|week)$"), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.trending_shows(timeWindow, _language(request, language))

    @app.get("/api/tv/top-rated")
    async def top_rated_shows(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.top_rated_shows(page, _language(request, language))

    @app.get("/api/tv/on-the-air")
    async def on_the_air_shows(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.on_the_air_shows(page, _language(request, language))

    @app.get("/api/tv/airing-today")
    async def airing_today_shows(request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.airing_today_shows(page, _language(request, language))

    @app.get("/api/tv/genres")
    async def show_genres(request: Request, language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.show_genres(_language(request, language))

    @app.get("/api/tv/search")
    async def search_shows(request: Request, q: Optional[str] = None, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.search_shows(_require_query(q), page, _language(request, language))

    @app.get("/api/tv/genre/{genre_id}")
    async def shows_by_genre(genre_id: int, request: Request, page: int = Query(1, ge=1, le=500), language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.shows_by_genre(genre_id, page, _language(request, language))

    @app.get("/api/tv/{show_id}")
    async def show_details(show_id: int, request: Request, language: Optional[str] = None, catalog: CatalogClient = Depends(get_catalog)):
        return await catalog.show_details(show_id, _language(request, language))

    # -------------------- Translation --------------------
    @app.post("/api/translate")
    def translate_text(payload: TranslateRequest):
        if not payload.text:
            raise ValidationError("Text is required")
        target = payload.targetLang or translation.DEFAULT_TARGET
        return {"translatedText": translation.translate_text(payload.text, target)}

    @app.post("/api/translate/fields")
    def translate_fields(payload: TranslateFieldsRequest):
        if payload.obj is None or payload.fields is None:
            raise ValidationError("Object and fields are required")
        target = payload.targetLang or translation.DEFAULT_TARGET
        return translation.translate_fields(payload.obj, payload.fields, target)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
