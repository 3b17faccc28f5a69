import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import CatalogClient
from config import Settings
from database import USER_COLLECTION, Database
from main import create_app

TEST_SETTINGS = dict(
    app_env="test",
    jwt_secret="test-secret",
    tmdb_access_token="tmdb-test-token",
    database_name="cinetalk_test",
)


def _movie(movie_id, title, poster="/poster.jpg"):
    return {
        "id": movie_id,
        "title": title,
        "poster_path": poster,
        "backdrop_path": None,
        "vote_average": 8.4,
    }


def _show(show_id, name):
    return {
        "id": show_id,
        "name": name,
        "first_air_date": "2008-01-20",
        "poster_path": "/show.jpg",
        "backdrop_path": "/show_bg.jpg",
    }


def _page(results):
    return {"page": 1, "results": results, "total_pages": 1, "total_results": len(results)}


TMDB_RESPONSES = {
    "/movie/popular": _page([_movie(550, "Fight Club"), _movie(13, "Forrest Gump", poster=None)]),
    "/movie/top_rated": _page([_movie(238, "The Godfather")]),
    "/movie/upcoming": _page([_movie(1, "Upcoming")]),
    "/movie/now_playing": _page([_movie(2, "Now Playing")]),
    "/trending/movie/week": _page([_movie(550, "Fight Club")]),
    "/trending/movie/day": _page([_movie(13, "Forrest Gump")]),
    "/search/movie": _page([_movie(550, "Fight Club")]),
    "/discover/movie": _page([_movie(550, "Fight Club")]),
    "/genre/movie/list": {"genres": [{"id": 18, "name": "Drama"}]},
    "/movie/550": _movie(550, "Fight Club"),
    "/movie/13": _movie(13, "Forrest Gump"),
    "/tv/popular": _page([_show(1396, "Breaking Bad")]),
    "/tv/top_rated": _page([_show(1396, "Breaking Bad")]),
    "/tv/on_the_air": _page([_show(1396, "Breaking Bad")]),
    "/tv/airing_today": _page([_show(1396, "Breaking Bad")]),
    "/trending/tv/week": _page([_show(1396, "Breaking Bad")]),
    "/search/tv": _page([_show(1396, "Breaking Bad")]),
    "/discover/tv": _page([_show(1396, "Breaking Bad")]),
    "/genre/tv/list": {"genres": [{"id": 18, "name": "Drama"}]},
    "/tv/1396": _show(1396, "Breaking Bad"),
}


@pytest.fixture
def tmdb_calls():
    return []


@pytest.fixture
def tmdb_transport(tmdb_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        tmdb_calls.append(request)
        path = request.url.path
        if path.startswith("/3"):
            path = path[len("/3"):]
        if path in TMDB_RESPONSES:
            return httpx.Response(200, json=TMDB_RESPONSES[path])
        return httpx.Response(404, json={"status_message": "The resource you requested could not be found."})

    return httpx.MockTransport(handler)


@pytest.fixture
def settings():
    return Settings(**TEST_SETTINGS)


@pytest.fixture
def db():
    return Database(client=mongomock.MongoClient(), name="cinetalk_test").connect()


@pytest.fixture
def app(settings, db, tmdb_transport):
    return create_app(settings, database=db, catalog=CatalogClient(settings, transport=tmdb_transport))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, name, email, password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    body["headers"] = {"Authorization": f"Bearer {body['token']}"}
    return body


@pytest.fixture
def alice(client):
    return register(client, "Alice", "alice@example.com")


@pytest.fixture
def bob(client):
    return register(client, "Bob Smith", "bob@example.com")


@pytest.fixture
def admin(client, db):
    account = register(client, "Admin", "admin@example.com")
    db[USER_COLLECTION].update_one({"email": "admin@example.com"}, {"$set": {"role": "admin"}})
    return account


@pytest.fixture
def fight_club_review():
    return {
        "movieId": 550,
        "movieTitle": "Fight Club",
        "rating": 9,
        "comment": "Excellent movie, really made me think.",
    }
