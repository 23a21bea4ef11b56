import argparse
import json
import logging
import signal
from pathlib import Path

from tqdm import tqdm

from .catalog import CancellationToken, load_seed_entries
from .config import DB_PATH, DEFAULT_LIMIT, DEFAULT_JITTER, SEED_FILMS_PATH
from .dimensions import DIMENSIONS, display_name, levels, parse_assignments, scale
from .errors import OperationCancelled, VibeRecError
from .onboarding import OnboardingSession, personality, select_seed_films
from .service import VibeSession
from .storage import CATALOG_KEY, SQLiteStorage
from .tmdb import TMDBClient, details_to_entry, genre_names

logger = logging.getLogger(__name__)

SKIP_ANSWERS = ("s", "skip")


def _open_session(args: argparse.Namespace) -> VibeSession:
    return VibeSession(storage=SQLiteStorage(Path(args.db)))


def _ready_session(args: argparse.Namespace) -> VibeSession:
    """Session with the catalog loaded (populated from the bundled seed list on first use)."""
    session = _open_session(args)
    session.initialize_catalog()
    return session


def _load_user(session: VibeSession, user_id: str):
    profile = session.load_user(user_id)
    if profile is None:
        logger.debug(f"No stored profile for {user_id}")
    return profile


def _fetch_tmdb_entries(titles: list[str]) -> list[dict]:
    entries = []
    with TMDBClient() as client:
        for title in tqdm(titles, desc="TMDB"):
            results = client.search(title)
            if not results:
                logger.warning(f"No TMDB match for {title!r}")
                continue
            entries.append(details_to_entry(client.details(results[0]["id"])))
    return entries


def cmd_populate(args: argparse.Namespace) -> None:
    """Synthesize films into the catalog, keeping what is already stored."""
    session = _open_session(args)
    try:
        existing = session.storage.load(CATALOG_KEY)
        if existing and not args.replace:
            session.catalog.load_document(existing)

        if args.tmdb:
            entries = _fetch_tmdb_entries(args.tmdb)
        else:
            entries = load_seed_entries(Path(args.seed_file))

        token = CancellationToken()
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
        with tqdm(total=len(entries), desc="Synthesizing") as pbar:
            def _progress(done: int, total: int, titles: str):
                pbar.update(done - pbar.n)
                pbar.set_postfix_str(titles[:40])

            try:
                summary = session.initialize_catalog(entries, cancel_token=token, progress=_progress, refresh=True)
            finally:
                signal.signal(signal.SIGINT, previous_handler)

        logger.info(f"\nCatalog: {len(session.catalog)} films")
        logger.info(f"  Synthesized this run: {summary['count']} (avg confidence {summary['avg_confidence']:.0%})")
        if summary["top_dimensions"]:
            logger.info(f"  Strongest dimensions: {', '.join(display_name(d) for d in summary['top_dimensions'])}")
    finally:
        session.close()


def cmd_dimensions(args: argparse.Namespace) -> None:
    names = [args.dimension] if args.dimension else list(DIMENSIONS)
    for name in names:
        info = scale(name)
        logger.info(f"\n{info.icon} {info.title} ({name})")
        logger.info(f"  {info.description}")
        for lvl in levels(name):
            example = f" e.g. {', '.join(lvl.examples[:2])}" if lvl.examples else ""
            logger.info(f"  {lvl.value}. {lvl.label}: {lvl.description}{example}")


def cmd_vibe(args: argparse.Namespace) -> None:
    """Recommendations for a vibe given as dim=value pairs (unset dimensions are neutral)."""
    session = _ready_session(args)
    try:
        vibe = parse_assignments(args.assignments)
        if args.user:
            _load_user(session, args.user)
        recs = session.recommend(vibe, user_id=args.user, limit=args.limit, jitter=args.jitter)

        if args.format == "json":
            logger.info(json.dumps([r.to_dict() for r in recs], indent=2))
            return

        logger.info(f"\nTop {len(recs)} films for this vibe:")
        for i, r in enumerate(recs, 1):
            year = f" ({r.year})" if r.year else ""
            logger.info(f"{i}. {r.title}{year} - Score: {r.score:.1f}")
            if r.reasons:
                logger.info(f"   Why: {', '.join(r.reasons)}")
            for warning in r.warnings:
                logger.info(f"   Note: {warning}")
    finally:
        session.close()


def cmd_rate(args: argparse.Namespace) -> None:
    session = _ready_session(args)
    try:
        _load_user(session, args.user)
        vector = parse_assignments(args.assignments)
        outcome = session.rate_film(args.user, args.film_id, vector, args.overall, args.notes or "")
        logger.info(f"Rated {args.film_id} {outcome.rating.overall}/5 for {args.user}")
        logger.info(f"  {outcome.learning_update}")
        if not outcome.saved:
            logger.warning("  Rating kept in memory only; storage is unavailable")
    finally:
        session.close()


def _manual_entry(args: argparse.Namespace) -> dict:
    if not args.title:
        raise VibeRecError("Either --title or --tmdb-id is required")
    return {
        "title": args.title,
        "year": args.year,
        "genres": [g.strip() for g in (args.genres or "").split(",") if g.strip()],
        "director": args.director,
        "runtime": args.runtime,
        "external_rating": args.external_rating,
        "reviews": args.review or [],
    }


def cmd_add(args: argparse.Namespace) -> None:
    session = _ready_session(args)
    try:
        if args.tmdb_id:
            with TMDBClient() as client:
                entry = details_to_entry(client.details(args.tmdb_id))
        else:
            entry = _manual_entry(args)

        if args.user:
            _load_user(session, args.user)
        rating = parse_assignments(args.rate) if args.rate else None
        outcome = session.add_film(entry, user_id=args.user, rating=rating, overall=args.overall)

        logger.info(f"Added {outcome.film.title} ({outcome.film.id})")
        logger.info(f"  Predicted ({outcome.prediction.method}, confidence {outcome.prediction.confidence:.0%}):")
        for dim in DIMENSIONS:
            logger.info(f"    {display_name(dim)}: {outcome.prediction.attributes[dim]:.1f}")
        if outcome.feedback:
            logger.info(f"  {outcome.feedback.message}")
    finally:
        session.close()


def cmd_search(args: argparse.Namespace) -> None:
    with TMDBClient() as client:
        results = client.search(args.query)
    if not results:
        logger.info(f"No results for {args.query!r}")
        return
    for r in results[:args.limit]:
        year = (r.get("release_date") or "")[:4] or "?"
        genres = ", ".join(genre_names(r.get("genre_ids")))
        logger.info(f"{r['id']}: {r['title']} ({year}) {genres}")


def _ask_level(prompt: str) -> int | None:
    """Read 1-5 from stdin; None means skip the film."""
    while True:
        answer = input(prompt).strip().lower()
        if answer in SKIP_ANSWERS:
            return None
        if answer.isdigit() and 1 <= int(answer) <= 5:
            return int(answer)
        print("Enter a number from 1 to 5, or 's' to skip this film.")


def _rate_seed_film(onboarding: OnboardingSession) -> None:
    seed = onboarding.current_film
    film = seed.film
    print(f"\n{film.title} ({film.year or '?'}) - {seed.why_selected}")
    while not onboarding.awaiting_overall:
        dim = onboarding.current_dimension
        value = _ask_level(f"  [{onboarding.dimension_index}/{len(DIMENSIONS)}] {display_name(dim)} (1-5): ")
        if value is None:
            onboarding.skip(film.id)
            return
        onboarding.submit(film.id, dim, value)
    overall = _ask_level("  Overall (1-5): ")
    if overall is None:
        onboarding.skip(film.id)
        return
    onboarding.submit_overall(film.id, overall)


def cmd_onboard(args: argparse.Namespace) -> None:
    """Interactive ten-film calibration."""
    session = _ready_session(args)
    try:
        _load_user(session, args.user)
        onboarding = OnboardingSession(select_seed_films(session.catalog))
        onboarding.start()
        print("Rate each film on the ten dimensions (1-5). Enter 's' to skip a film you have not seen.")
        while not onboarding.is_complete:
            _rate_seed_film(onboarding)

        if not onboarding.ratings:
            logger.warning("No films rated; nothing to analyze")
            return

        result = session.complete_onboarding(args.user, onboarding.ratings)
        taste = result.taste_profile
        logger.info(f"\n{personality(taste.average).icon} {taste.personality_type}")
        logger.info(f"  Confidence: {taste.accuracy_confidence:.0%}")
        for dim, value in taste.top_dimensions:
            logger.info(f"  {display_name(dim)}: {value:.1f}")
        for sentence in taste.movie_preferences:
            logger.info(f"  - {sentence}")
        logger.info("\nStart with:")
        for i, r in enumerate(result.recommendations, 1):
            logger.info(f"{i}. {r.title} - Score: {r.score:.1f}")
    finally:
        session.close()


def cmd_insights(args: argparse.Namespace) -> None:
    session = _open_session(args)
    try:
        _load_user(session, args.user)
        report = session.insights(args.user)
        logger.info(f"\nInsights for {args.user}")
        logger.info(f"  Personality: {report['personality_type']}")
        logger.info(f"  Ratings: {report['ratings_count']} (accuracy: {report['recommendation_accuracy']})")
        for dim, value in report["top_dimensions"]:
            logger.info(f"  {display_name(dim)}: {value:.1f}")
        logger.info(f"  {report['learning_update']}")
        for tip in report["improvement_tips"]:
            logger.info(f"  Tip: {tip}")
        if not report.get("onboarding_completed"):
            logger.info("  Run `vibe-rec onboard` to calibrate your taste profile")
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vibe-based movie recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--db", default=str(DB_PATH), help="SQLite database path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    populate_parser = subparsers.add_parser("populate", help="Synthesize films into the catalog")
    populate_parser.add_argument("--seed-file", default=str(SEED_FILMS_PATH), help="JSON list of film entries")
    populate_parser.add_argument("--tmdb", nargs="+", metavar="TITLE", help="Fetch these titles from TMDB instead")
    populate_parser.add_argument("--replace", action="store_true", help="Discard the stored catalog first")
    populate_parser.set_defaults(func=cmd_populate)

    dims_parser = subparsers.add_parser("dimensions", help="Show the ten dimensions and their levels")
    dims_parser.add_argument("dimension", nargs="?", choices=DIMENSIONS)
    dims_parser.set_defaults(func=cmd_dimensions)

    vibe_parser = subparsers.add_parser("vibe", help="Recommend films for a vibe")
    vibe_parser.add_argument("assignments", nargs="*", metavar="DIM=VALUE")
    vibe_parser.add_argument("--user", help="Personalize for this user")
    vibe_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    vibe_parser.add_argument("--jitter", type=float, default=DEFAULT_JITTER)
    vibe_parser.add_argument("--format", choices=["text", "json"], default="text")
    vibe_parser.set_defaults(func=cmd_vibe)

    rate_parser = subparsers.add_parser("rate", help="Rate a catalog film")
    rate_parser.add_argument("user")
    rate_parser.add_argument("film_id")
    rate_parser.add_argument("assignments", nargs="*", metavar="DIM=VALUE")
    rate_parser.add_argument("--overall", type=int, required=True)
    rate_parser.add_argument("--notes")
    rate_parser.set_defaults(func=cmd_rate)

    add_parser = subparsers.add_parser("add", help="Add a film to the catalog")
    add_parser.add_argument("--tmdb-id", help="Fetch metadata from TMDB")
    add_parser.add_argument("--title")
    add_parser.add_argument("--year", type=int)
    add_parser.add_argument("--genres", help="Comma-separated genres")
    add_parser.add_argument("--director")
    add_parser.add_argument("--runtime", type=int)
    add_parser.add_argument("--external-rating", type=float, help="0-10 rating")
    add_parser.add_argument("--review", action="append", help="Review text (repeatable)")
    add_parser.add_argument("--user", help="User adding the film")
    add_parser.add_argument("--rate", nargs="+", metavar="DIM=VALUE", help="Your rating of the film")
    add_parser.add_argument("--overall", type=int, default=3)
    add_parser.set_defaults(func=cmd_add)

    search_parser = subparsers.add_parser("search", help="Search TMDB")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=10)
    search_parser.set_defaults(func=cmd_search)

    onboard_parser = subparsers.add_parser("onboard", help="Interactive taste calibration")
    onboard_parser.add_argument("user")
    onboard_parser.set_defaults(func=cmd_onboard)

    insights_parser = subparsers.add_parser("insights", help="Show a user's taste insights")
    insights_parser.add_argument("user")
    insights_parser.set_defaults(func=cmd_insights)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except OperationCancelled:
        logger.warning("Cancelled; catalog left unchanged")
        return 130
    except VibeRecError as e:
        logger.error(str(e))
        return 1
    return 0
