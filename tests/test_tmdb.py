import pytest
import requests

from shelf_core import TMDB_BASE, TMDBClient, TmdbChoice


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


@pytest.fixture
def fake_get(monkeypatch):
    monkeypatch.setenv("TMDB_TOKEN", "secret")
    calls = []
    responses = {}

    def _get(url, headers=None, params=None, timeout=None):
        calls.append((url, headers, params, timeout))
        return responses[url]

    monkeypatch.setattr(requests, "get", _get)
    _get.calls = calls
    _get.responses = responses
    return _get


def test_missing_token(monkeypatch):
    monkeypatch.delenv("TMDB_TOKEN", raising=False)
    with pytest.raises(RuntimeError, match="TMDB_TOKEN"):
        TMDBClient().search_movie("Heat")


def test_search_choices_orders_by_popularity(fake_get):
    fake_get.responses[f"{TMDB_BASE}/search/movie"] = FakeResponse(
        {
            "results": [
                {"id": 1, "title": "Heat", "release_date": "1972-01-01", "popularity": 1.0},
                {"id": 949, "title": "Heat", "release_date": "1995-12-15", "popularity": 40.0, "overview": "LA crime"},
                {"title": "no id"},
                {"id": 2, "title": "Heat", "release_date": "", "popularity": 5.0},
            ]
        }
    )

    choices = TMDBClient().search_choices("Heat", limit=2)

    assert choices == [
        TmdbChoice(id=949, title="Heat", year=1995, overview="LA crime"),
        TmdbChoice(id=2, title="Heat", year=None, overview=""),
    ]
    url, headers, params, timeout = fake_get.calls[0]
    assert headers["Authorization"] == "Bearer secret"
    assert params["query"] == "Heat"
    assert timeout == 15


def test_details_become_item_fields(fake_get):
    fake_get.responses[f"{TMDB_BASE}/movie/27205"] = FakeResponse(
        {
            "title": "Inception",
            "release_date": "2010-07-15",
            "imdb_id": "tt1375666",
            "genres": [{"name": "Action"}, {"name": "Science Fiction"}],
            "poster_path": "/abc.jpg",
        }
    )

    fields = TMDBClient().fetch_details_as_item_fields(TmdbChoice(id=27205, title="Inception", year=None, overview=""))

    assert fields == {
        "title": "Inception",
        "year": 2010,
        "imdb_id": "tt1375666",
        "genre": "Action, Science Fiction",
        "poster_url": "https://image.tmdb.org/t/p/w500/abc.jpg",
    }


def test_http_errors_propagate(fake_get):
    fake_get.responses[f"{TMDB_BASE}/movie/1"] = FakeResponse({}, status=404)
    with pytest.raises(requests.HTTPError):
        TMDBClient().movie_details(1)
