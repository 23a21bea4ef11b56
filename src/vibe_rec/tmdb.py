"""
Client for the external film metadata service (TMDB v3).

Search returns normalized candidates; details adds credits and review
texts. details_to_entry turns a details payload into a catalog entry the
populator can synthesize.
"""
import logging

import httpx

from .catalog import film_id_for
from .config import (
    TMDB_ACCESS_TOKEN,
    TMDB_BASE_URL,
    TMDB_IMAGE_BASE,
    TMDB_BACKDROP_BASE,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    MAX_REVIEW_TEXTS,
)
from .errors import ExternalServiceError, InvalidInputError
from .synthesis import strip_html
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

GENRE_MAP = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

WRITER_JOBS = ("Writer", "Screenplay", "Story")
MAX_CAST = 5

CANDIDATE_FIELDS = (
    "id", "title", "release_date", "genre_ids", "overview",
    "poster_path", "backdrop_path", "runtime", "vote_average",
)


def genre_names(genre_ids) -> list[str]:
    """Known genre names for TMDB ids, unknown ids dropped."""
    return [GENRE_MAP[g] for g in genre_ids or [] if g in GENRE_MAP]


def _candidate(movie: dict) -> dict:
    candidate = {key: movie.get(key) for key in CANDIDATE_FIELDS}
    if candidate["genre_ids"] is None:
        candidate["genre_ids"] = [g["id"] for g in movie.get("genres") or [] if "id" in g]
    return candidate


class TMDBClient:
    """Bearer-token client; an empty token still issues the request."""

    def __init__(
        self,
        access_token: str | None = TMDB_ACCESS_TOKEN,
        base_url: str = TMDB_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        max_retries: int = MAX_HTTP_RETRIES,
        retry_delay: float = 1.0,
    ):
        headers = {}
        if access_token:
            headers = {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json;charset=utf-8",
            }
        else:
            logger.warning("No TMDB access token configured; requests will likely be rejected")

        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            follow_redirects=True,
            timeout=timeout,
            transport=transport,
        )
        self._send = retry_with_backoff(
            max_retries=max(1, max_retries),
            initial_delay=retry_delay,
            exceptions=(httpx.TransportError,),
        )(self.client.get)

    def _get(self, path: str, params: dict | None = None) -> dict:
        try:
            resp = self._send(path, params=params)
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Request to {path} failed: {e}") from e

        if not resp.is_success:
            logger.error(f"TMDB error {resp.status_code} on {path}")
            raise ExternalServiceError(
                f"Metadata service returned {resp.status_code} for {path}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalServiceError(f"Invalid JSON from {path}: {e}", status_code=resp.status_code) from e

    def search(self, query: str) -> list[dict]:
        query = (query or "").strip()
        if not query:
            raise InvalidInputError("Search query must not be empty")

        data = self._get("/search/movie", params={
            "query": query,
            "include_adult": "false",
            "language": "en-US",
            "page": 1,
        })
        results = [_candidate(m) for m in data.get("results") or []]
        logger.debug(f"Search {query!r}: {len(results)} results")
        return results

    def details(self, movie_id) -> dict:
        if movie_id is None or str(movie_id).strip() == "":
            raise InvalidInputError("Movie id must not be empty")

        data = self._get(f"/movie/{movie_id}", params={"append_to_response": "credits,reviews"})
        credits = data.get("credits") or {}
        reviews = data.get("reviews") or {}
        details = _candidate(data)
        details.update(
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            credits={
                "cast": [c.get("name") for c in credits.get("cast") or [] if c.get("name")],
                "crew": [
                    {"name": c.get("name"), "job": c.get("job")}
                    for c in credits.get("crew") or [] if c.get("name")
                ],
            },
            reviews=[r.get("content") or "" for r in reviews.get("results") or []],
            review_count=reviews.get("total_results"),
        )
        return details

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _crew_member(crew: list[dict], jobs) -> str | None:
    for member in crew:
        if member.get("job") in jobs:
            return member.get("name")
    return None


def details_to_entry(details: dict) -> dict:
    """Catalog entry (film fields plus synthesis signals) from a details payload."""
    title = (details.get("title") or "").strip()
    if not title:
        raise InvalidInputError("Details payload has no title")

    release = details.get("release_date") or ""
    year = int(release[:4]) if release[:4].isdigit() else None
    genres = details.get("genres") or genre_names(details.get("genre_ids"))
    credits = details.get("credits") or {}
    crew = credits.get("crew") or []
    reviews = [strip_html(text) for text in details.get("reviews") or [] if text]

    entry = {
        "id": f"tmdb-{details['id']}" if details.get("id") is not None else film_id_for(title, year),
        "external_id": details.get("id"),
        "title": title,
        "year": year,
        "genres": list(genres),
        "director": _crew_member(crew, ("Director",)),
        "writer": _crew_member(crew, WRITER_JOBS),
        "runtime": details.get("runtime") or None,
        "logline": details.get("overview") or "",
        "cast": list(credits.get("cast") or [])[:MAX_CAST],
        "poster_url": f"{TMDB_IMAGE_BASE}{details['poster_path']}" if details.get("poster_path") else "",
        "backdrop_url": f"{TMDB_BACKDROP_BASE}{details['backdrop_path']}" if details.get("backdrop_path") else None,
        "external_rating": details.get("vote_average") or None,
        "url": f"https://www.themoviedb.org/movie/{details['id']}" if details.get("id") is not None else None,
        "reviews": reviews[:MAX_REVIEW_TEXTS],
    }
    if details.get("review_count"):
        entry["review_count"] = details["review_count"]
    return entry
