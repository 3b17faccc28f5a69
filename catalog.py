import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request

from config import Settings
from errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en-US"

# UI language codes -> TMDb locale tags
LANGUAGE_MAP = {
    "es": "es-ES",
    "en": "en-US",
    "pt": "pt-BR",
}

DETAIL_APPENDS = "credits,videos,images,similar,recommendations"


def tmdb_language(lang: Optional[str] = None) -> str:
    if not lang:
        return DEFAULT_LANGUAGE
    lang = lang.strip()
    return LANGUAGE_MAP.get(lang) or LANGUAGE_MAP.get(lang.split("-")[0].lower()) or DEFAULT_LANGUAGE


def image_url(path: Optional[str], base: str) -> Optional[str]:
    if not path:
        return None
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base}{path}"


def format_movie(item: Dict[str, Any], image_base: str) -> Dict[str, Any]:
    return {
        **item,
        "poster_path": image_url(item.get("poster_path"), image_base),
        "backdrop_path": image_url(item.get("backdrop_path"), image_base),
    }


def format_show(item: Dict[str, Any], image_base: str) -> Dict[str, Any]:
    """Put a TV show on the movie-shaped schema the clients expect."""
    show = format_movie(item, image_base)
    show["title"] = item.get("title") or item.get("name")
    show["release_date"] = item.get("release_date") or item.get("first_air_date")
    return show


class CatalogClient:
    """Read-only TMDb client. Every failure surfaces as UpstreamError."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.image_base = settings.tmdb_image_base
        self.api_key = settings.tmdb_api_key
        headers = {"Content-Type": "application/json"}
        if settings.tmdb_access_token:
            headers["Authorization"] = f"Bearer {settings.tmdb_access_token}"
        self._client = httpx.AsyncClient(
            base_url=settings.tmdb_base_url,
            headers=headers,
            timeout=settings.tmdb_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, what: str = "catalog data") -> Dict[str, Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        if self.api_key and "Authorization" not in self._client.headers:
            params["api_key"] = self.api_key
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("TMDb request %s failed: %s", path, exc)
            raise UpstreamError(f"Error fetching {what}", detail=str(exc))

    def _movies(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {**data, "results": [format_movie(m, self.image_base) for m in data.get("results", [])]}

    def _shows(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {**data, "results": [format_show(s, self.image_base) for s in data.get("results", [])]}

    # ----- movies -----
    async def popular_movies(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/movie/popular", {"page": page, "language": tmdb_language(language)}, "popular movies")
        return self._movies(data)

    async def trending_movies(self, time_window: str = "week", language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(f"/trending/movie/{time_window}", {"language": tmdb_language(language)}, "trending movies")
        return self._movies(data)

    async def top_rated_movies(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/movie/top_rated", {"page": page, "language": tmdb_language(language)}, "top rated movies")
        return self._movies(data)

    async def upcoming_movies(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/movie/upcoming", {"page": page, "language": tmdb_language(language)}, "upcoming movies")
        return self._movies(data)

    async def now_playing_movies(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/movie/now_playing", {"page": page, "language": tmdb_language(language)}, "now playing movies")
        return self._movies(data)

    async def movie_details(self, movie_id: int, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(
            f"/movie/{movie_id}",
            {"append_to_response": DETAIL_APPENDS, "language": tmdb_language(language)},
            "movie details",
        )
        return format_movie(data, self.image_base)

    async def search_movies(self, query: str, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/search/movie", {"query": query, "page": page, "language": tmdb_language(language)}, "search results")
        return self._movies(data)

    async def movies_by_genre(self, genre_id: int, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(
            "/discover/movie",
            {"with_genres": genre_id, "page": page, "language": tmdb_language(language)},
            "movies by genre",
        )
        return self._movies(data)

    async def movie_genres(self, language: Optional[str] = None) -> Dict[str, Any]:
        return await self._get("/genre/movie/list", {"language": tmdb_language(language)}, "genres")

    async def movies_by_ids(self, movie_ids: List[int], language: Optional[str] = None) -> List[Dict[str, Any]]:
        return list(await asyncio.gather(*(self.movie_details(mid, language) for mid in movie_ids)))

    # ----- tv -----
    async def popular_shows(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/tv/popular", {"page": page, "language": tmdb_language(language)}, "popular TV shows")
        return self._shows(data)

    async def trending_shows(self, time_window: str = "week", language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(f"/trending/tv/{time_window}", {"language": tmdb_language(language)}, "trending TV shows")
        return self._shows(data)

    async def top_rated_shows(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/tv/top_rated", {"page": page, "language": tmdb_language(language)}, "top rated TV shows")
        return self._shows(data)

    async def on_the_air_shows(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/tv/on_the_air", {"page": page, "language": tmdb_language(language)}, "on the air TV shows")
        return self._shows(data)

    async def airing_today_shows(self, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/tv/airing_today", {"page": page, "language": tmdb_language(language)}, "TV shows airing today")
        return self._shows(data)

    async def show_details(self, show_id: int, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(
            f"/tv/{show_id}",
            {"append_to_response": DETAIL_APPENDS, "language": tmdb_language(language)},
            "TV show details",
        )
        return format_show(data, self.image_base)

    async def search_shows(self, query: str, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get("/search/tv", {"query": query, "page": page, "language": tmdb_language(language)}, "TV search results")
        return self._shows(data)

    async def shows_by_genre(self, genre_id: int, page: int = 1, language: Optional[str] = None) -> Dict[str, Any]:
        data = await self._get(
            "/discover/tv",
            {"with_genres": genre_id, "page": page, "language": tmdb_language(language)},
            "TV shows by genre",
        )
        return self._shows(data)

    async def show_genres(self, language: Optional[str] = None) -> Dict[str, Any]:
        return await self._get("/genre/tv/list", {"language": tmdb_language(language)}, "TV genres")


def get_catalog(request: Request) -> CatalogClient:
    return request.app.state.catalog
