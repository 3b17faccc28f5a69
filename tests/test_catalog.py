import json

import httpx
import pytest
from fastapi.testclient import TestClient

from catalog import CatalogClient, format_show, image_url, tmdb_language
from config import Settings
from database import USER_COLLECTION
from main import PAYLOAD_TOO_LARGE_MESSAGE, create_app

IMAGE_BASE = "https://image.tmdb.org/t/p/original"


@pytest.mark.parametrize(
    "lang,expected",
    [(None, "en-US"), ("", "en-US"), ("es", "es-ES"), ("pt", "pt-BR"), ("pt-PT", "pt-BR"), ("fr", "en-US"), ("es-MX", "es-ES")],
)
def test_tmdb_language(lang, expected):
    assert tmdb_language(lang) == expected


def test_annotations_are_evaluated():
    assert tmdb_language.__annotations__["return"] is str


def test_image_url():
    assert image_url("/abc.jpg", IMAGE_BASE) == f"{IMAGE_BASE}/abc.jpg"
    assert image_url(None, IMAGE_BASE) is None
    assert image_url("https://elsewhere/x.jpg", IMAGE_BASE) == "https://elsewhere/x.jpg"


def test_format_show_maps_onto_movie_fields():
    show = format_show({"id": 1, "name": "Dark", "first_air_date": "2017-12-01", "poster_path": "/d.jpg"}, IMAGE_BASE)
    assert show["title"] == "Dark"
    assert show["release_date"] == "2017-12-01"
    assert show["poster_path"] == f"{IMAGE_BASE}/d.jpg"
    assert show["backdrop_path"] is None
    assert show["name"] == "Dark"


def test_popular_movies_rewrites_images(client, tmdb_calls):
    resp = client.get("/api/movies/popular?page=2")
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert results[0]["poster_path"] == f"{IMAGE_BASE}/poster.jpg"
    assert results[1]["poster_path"] is None
    call = tmdb_calls[-1]
    assert call.url.params["page"] == "2"
    assert call.url.params["language"] == "en-US"
    assert call.headers["Authorization"] == "Bearer tmdb-test-token"


def test_language_from_query_or_header(client, tmdb_calls):
    client.get("/api/movies/top-rated?language=pt")
    assert tmdb_calls[-1].url.params["language"] == "pt-BR"
    client.get("/api/movies/top-rated", headers={"Accept-Language": "es-AR,es;q=0.9"})
    assert tmdb_calls[-1].url.params["language"] == "es-ES"


@pytest.mark.parametrize(
    "route",
    [
        "/api/movies/upcoming",
        "/api/movies/now-playing",
        "/api/movies/trending",
        "/api/movies/trending?timeWindow=day",
        "/api/movies/genre/18",
        "/api/movies/search?q=fight",
    ],
)
def test_movie_listings(client, route):
    resp = client.get(route)
    assert resp.status_code == 200
    assert resp.json()["results"]


def test_movie_details_and_genres(client, tmdb_calls):
    details = client.get("/api/movies/550").json()
    assert details["title"] == "Fight Club"
    assert tmdb_calls[-1].url.params["append_to_response"] == "credits,videos,images,similar,recommendations"
    assert client.get("/api/movies/genres").json()["genres"][0]["name"] == "Drama"


@pytest.mark.parametrize(
    "route",
    [
        "/api/tv/popular",
        "/api/tv/top-rated",
        "/api/tv/trending",
        "/api/tv/on-the-air",
        "/api/tv/airing-today",
        "/api/tv/search?q=breaking",
        "/api/tv/genre/18",
    ],
)
def test_tv_listings_are_movie_shaped(client, route):
    resp = client.get(route)
    assert resp.status_code == 200
    show = resp.json()["results"][0]
    assert show["title"] == "Breaking Bad"
    assert show["release_date"] == "2008-01-20"
    assert show["poster_path"] == f"{IMAGE_BASE}/show.jpg"


def test_tv_details_and_genres(client):
    assert client.get("/api/tv/1396").json()["title"] == "Breaking Bad"
    assert client.get("/api/tv/genres").status_code == 200


def test_search_requires_query(client, tmdb_calls):
    resp = client.get("/api/movies/search")
    assert resp.status_code == 400
    assert resp.json() == {"message": "A search term is required"}
    assert client.get("/api/tv/search?q=%20").status_code == 400
    assert tmdb_calls == []


def test_invalid_ids_and_params(client):
    assert client.get("/api/movies/abc").status_code == 400
    assert client.get("/api/movies/popular?page=0").status_code == 400
    assert client.get("/api/movies/trending?timeWindow=month").status_code == 400


def test_upstream_failure_maps_to_500(client):
    resp = client.get("/api/movies/999")
    assert resp.status_code == 500
    assert resp.json() == {"message": "Error fetching movie details"}


def test_upstream_detail_only_in_development(tmdb_transport, db):
    settings = Settings(app_env="development", jwt_secret="x", database_name="cinetalk_test")
    app = create_app(settings, database=db, catalog=CatalogClient(settings, transport=tmdb_transport))
    with TestClient(app) as c:
        body = c.get("/api/movies/999").json()
    assert body["message"] == "Error fetching movie details"
    assert "404" in body["error"]


def test_api_key_fallback(db):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"genres": []})

    settings = Settings(app_env="test", tmdb_api_key="v3-key", database_name="cinetalk_test")
    app = create_app(settings, database=db, catalog=CatalogClient(settings, transport=httpx.MockTransport(handler)))
    with TestClient(app) as c:
        assert c.get("/api/movies/genres").status_code == 200
    assert seen[0].url.params["api_key"] == "v3-key"
    assert "Authorization" not in seen[0].headers


def test_oversized_body_is_rejected(tmdb_transport, db):
    settings = Settings(app_env="test", max_body_bytes=512, database_name="cinetalk_test")
    app = create_app(settings, database=db, catalog=CatalogClient(settings, transport=tmdb_transport))
    with TestClient(app) as c:
        resp = c.put("/api/users/profile", json={"avatar": "data:image/png;base64," + "A" * 2048})
    assert resp.status_code == 413
    assert resp.json()["message"] == PAYLOAD_TOO_LARGE_MESSAGE


def _chunks(payload, size=256):
    data = json.dumps(payload).encode()
    for start in range(0, len(data), size):
        yield data[start:start + size]


def test_oversized_chunked_body_is_rejected(tmdb_transport, db):
    settings = Settings(app_env="test", jwt_secret="x", max_body_bytes=512, database_name="cinetalk_test")
    app = create_app(settings, database=db, catalog=CatalogClient(settings, transport=tmdb_transport))
    payload = {"name": "Chunky", "email": "chunky@example.com", "password": "secret123", "bio": "x" * 4096}
    with TestClient(app) as c:
        resp = c.post(
            "/api/auth/register",
            content=_chunks(payload),
            headers={"Content-Type": "application/json"},
        )
        assert db[USER_COLLECTION].find_one({"email": "chunky@example.com"}) is None
    assert resp.status_code == 413
    assert resp.json()["message"] == PAYLOAD_TOO_LARGE_MESSAGE


def test_small_chunked_body_is_accepted(tmdb_transport, db):
    settings = Settings(app_env="test", jwt_secret="x", max_body_bytes=512, database_name="cinetalk_test")
    app = create_app(settings, database=db, catalog=CatalogClient(settings, transport=tmdb_transport))
    payload = {"name": "Chunky", "email": "chunky@example.com", "password": "secret123"}
    with TestClient(app) as c:
        resp = c.post(
            "/api/auth/register",
            content=_chunks(payload, size=16),
            headers={"Content-Type": "application/json"},
        )
    assert resp.status_code == 201
    assert resp.json()["email"] == "chunky@example.com"


def test_payload_message_has_no_fixed_size():
    assert "MB" not in PAYLOAD_TOO_LARGE_MESSAGE


def test_unknown_route_envelope(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Route not found"}


def test_root_banner(client):
    body = client.get("/").json()
    assert body["status"] == "ok"
    assert body["endpoints"]["reviews"] == "/api/reviews"
