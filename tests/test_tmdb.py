import httpx
import pytest

from vibe_rec.errors import ExternalServiceError, InvalidInputError
from vibe_rec.tmdb import TMDBClient, details_to_entry, genre_names

DETAILS = {
    "id": 496243,
    "title": "Parasite",
    "release_date": "2019-05-30",
    "genres": [{"id": 35, "name": "Comedy"}, {"id": 53, "name": "Thriller"}, {"id": 18, "name": "Drama"}],
    "overview": "All unemployed, Ki-taek's family takes peculiar interest in the wealthy Parks.",
    "poster_path": "/poster.jpg",
    "backdrop_path": "/backdrop.jpg",
    "runtime": 133,
    "vote_average": 8.5,
    "credits": {
        "cast": [{"name": f"Actor {i}"} for i in range(8)],
        "crew": [
            {"name": "Jung Jae-il", "job": "Original Music Composer"},
            {"name": "Bong Joon-ho", "job": "Screenplay"},
            {"name": "Bong Joon-ho", "job": "Director"},
        ],
    },
    "reviews": {
        "total_results": 2,
        "results": [{"content": "<p>A <em>sharp</em> dark comedy.</p>"}, {"content": "Tense and twisty."}],
    },
}


def make_client(handler, **kwargs):
    return TMDBClient(
        access_token=kwargs.pop("access_token", "token-123"),
        base_url="https://api.test/3",
        transport=httpx.MockTransport(handler),
        retry_delay=0,
        **kwargs,
    )


def test_search_sends_bearer_token_and_normalizes():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        seen["query"] = request.url.params.get("query")
        return httpx.Response(200, json={"results": [
            {"id": 1, "title": "Heat", "release_date": "1995-12-15", "genre_ids": [80, 18], "vote_average": 7.9},
        ]})

    with make_client(handler) as client:
        results = client.search("  heat ")

    assert seen == {"auth": "Bearer token-123", "path": "/3/search/movie", "query": "heat"}
    assert results[0]["title"] == "Heat"
    assert results[0]["genre_ids"] == [80, 18]
    assert results[0]["poster_path"] is None


def test_search_without_token_still_requests():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(401, json={"status_message": "Invalid API key"})

    with make_client(handler, access_token=None) as client:
        with pytest.raises(ExternalServiceError) as excinfo:
            client.search("heat")

    assert seen["auth"] is None
    assert excinfo.value.status_code == 401


def test_empty_query_rejected_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    with make_client(handler) as client:
        with pytest.raises(InvalidInputError):
            client.search("   ")


def test_details_not_found_carries_status():
    with make_client(lambda request: httpx.Response(404)) as client:
        with pytest.raises(ExternalServiceError) as excinfo:
            client.details(999)
    assert excinfo.value.status_code == 404


def test_details_flattens_credits_and_reviews():
    def handler(request):
        assert request.url.path == "/3/movie/496243"
        assert request.url.params["append_to_response"] == "credits,reviews"
        return httpx.Response(200, json=DETAILS)

    with make_client(handler) as client:
        details = client.details(496243)

    assert details["genres"] == ["Comedy", "Thriller", "Drama"]
    assert details["genre_ids"] == [35, 53, 18]
    assert details["credits"]["cast"][0] == "Actor 0"
    assert {"name": "Bong Joon-ho", "job": "Director"} in details["credits"]["crew"]
    assert details["review_count"] == 2
    assert len(details["reviews"]) == 2


def test_transport_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"results": []})

    with make_client(handler, max_retries=3) as client:
        assert client.search("heat") == []
    assert len(calls) == 3


def test_transport_errors_exhausted():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with make_client(handler, max_retries=2) as client:
        with pytest.raises(ExternalServiceError) as excinfo:
            client.search("heat")
    assert excinfo.value.status_code is None


def test_invalid_json_is_service_error():
    with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
        with pytest.raises(ExternalServiceError):
            client.search("heat")


def test_details_to_entry():
    def handler(request):
        return httpx.Response(200, json=DETAILS)

    with make_client(handler) as client:
        entry = details_to_entry(client.details(496243))

    assert entry["id"] == "tmdb-496243"
    assert entry["external_id"] == 496243
    assert entry["year"] == 2019
    assert entry["director"] == "Bong Joon-ho"
    assert entry["writer"] == "Bong Joon-ho"
    assert len(entry["cast"]) == 5
    assert entry["poster_url"].endswith("/poster.jpg")
    assert entry["reviews"][0] == "A sharp dark comedy."
    assert entry["review_count"] == 2
    assert entry["url"] == "https://www.themoviedb.org/movie/496243"


def test_same_title_films_get_distinct_ids():
    first = details_to_entry({"id": 841, "title": "Dune", "release_date": "1984-12-14"})
    second = details_to_entry({"id": 438631, "title": "Dune", "release_date": "2021-09-15"})
    assert first["id"] == "tmdb-841"
    assert second["id"] == "tmdb-438631"


def test_details_to_entry_sparse_payload():
    entry = details_to_entry({"title": "Untitled Project", "genre_ids": [27, 12345]})
    assert entry["id"] == "untitled-project"
    assert entry["genres"] == ["Horror"]
    assert entry["year"] is None
    assert entry["director"] is None
    assert entry["poster_url"] == ""
    assert "review_count" not in entry

    with pytest.raises(InvalidInputError):
        details_to_entry({"title": "  "})


def test_genre_names():
    assert genre_names([28, 878, 1]) == ["Action", "Science Fiction"]
    assert genre_names(None) == []
