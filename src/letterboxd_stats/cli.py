import argparse
import asyncio
import json
import logging
import sys

import httpx

from . import stats
from .config import (
    DIARY_HEADER_SHORTCUT,
    DIARY_YEAR_PAGES,
    FILMS_PAGES,
    RATINGS_PAGES,
    RUNTIME_CONCURRENCY,
    TIMELINE_PAGES,
    WATCHTIME_PAGES,
)
from .fetcher import Fetcher, FetchError
from .utils import normalize_username, clamp_int

logger = logging.getLogger(__name__)


def _validate_username(username: str) -> str:
    """
    argparse type: normalize a Letterboxd username or reject it.
    """
    normalized = normalize_username(username)
    if normalized is None:
        raise argparse.ArgumentTypeError(f"invalid Letterboxd username: '{username}'")
    if normalized != username:
        logger.debug(f"Username '{username}' normalized to '{normalized}'")
    return normalized


def _pages(args: argparse.Namespace, limits: tuple[int, int]) -> int:
    default, maximum = limits
    return clamp_int(args.max_pages, default, 1, maximum)


async def _run_pipeline(args: argparse.Namespace) -> dict:
    async with Fetcher() as fetcher:
        if args.command == "avatar":
            return await stats.fetch_avatar(fetcher, args.username)
        if args.command == "diary":
            return await stats.diary_year_counts(
                fetcher,
                args.username,
                from_year=args.from_year,
                to_year=args.to_year,
                max_pages=_pages(args, DIARY_YEAR_PAGES),
                header_shortcut=not args.no_header_shortcut and DIARY_HEADER_SHORTCUT,
            )
        if args.command == "timeline":
            return await stats.ratings_timeline(fetcher, args.username, max_pages=_pages(args, TIMELINE_PAGES))
        if args.command == "ratings":
            return await stats.ratings_list(fetcher, args.username, max_pages=_pages(args, RATINGS_PAGES))
        if args.command == "watchtime":
            return await stats.watch_time(
                fetcher,
                args.username,
                max_pages=_pages(args, WATCHTIME_PAGES),
                concurrency=args.concurrency,
                progress=True,
            )
        if args.command == "films":
            return await stats.watched_films(fetcher, args.username, max_pages=_pages(args, FILMS_PAGES))
    raise ValueError(f"Unknown command: {args.command}")


def cmd_scrape(args: argparse.Namespace) -> int:
    """Run one pipeline and print its JSON payload."""
    try:
        payload = asyncio.run(_run_pipeline(args))
    except FetchError as exc:
        logger.error(str(exc))
        return 1
    except httpx.HTTPError as exc:
        logger.error(f"Request error: {type(exc).__name__}: {exc}")
        return 1

    print(json.dumps(payload, indent=2 if args.pretty else None, ensure_ascii=False))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from .app import create_app

    app = create_app()
    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Letterboxd profile stats")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the JSON API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve_parser.add_argument("--debug", action="store_true", help="Flask debug mode")
    serve_parser.set_defaults(func=cmd_serve)

    def add_scrape_command(name: str, help_text: str, limits: tuple[int, int] | None) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("username", type=_validate_username, help="Letterboxd username")
        if limits:
            sub.add_argument("--max-pages", type=int, default=limits[0],
                             help=f"Page cap (default: {limits[0]}, max: {limits[1]})")
        sub.add_argument("--pretty", action="store_true", help="Indent the JSON output")
        sub.set_defaults(func=cmd_scrape)
        return sub

    add_scrape_command("avatar", "Print the profile avatar URL", None)

    diary_parser = add_scrape_command("diary", "Count diary entries per year", DIARY_YEAR_PAGES)
    diary_parser.add_argument("--from", dest="from_year", type=int, help="First year (clamped to the diary span)")
    diary_parser.add_argument("--to", dest="to_year", type=int, help="Last year (clamped to the diary span)")
    diary_parser.add_argument("--no-header-shortcut", action="store_true",
                              help="Always paginate each year instead of trusting the summary sentence")

    add_scrape_command("timeline", "Cumulative rating histogram over time", TIMELINE_PAGES)
    add_scrape_command("ratings", "List rated films", RATINGS_PAGES)

    watchtime_parser = add_scrape_command("watchtime", "Total watch time from diary runtimes", WATCHTIME_PAGES)
    watchtime_parser.add_argument("--concurrency", type=int, default=RUNTIME_CONCURRENCY,
                                  help=f"Concurrent runtime lookups (default: {RUNTIME_CONCURRENCY})")

    add_scrape_command("films", "List watched films (title, year)", FILMS_PAGES)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not hasattr(args, "max_pages"):
        args.max_pages = None

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
