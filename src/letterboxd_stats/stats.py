"""
Endpoint pipelines: paginate, parse, aggregate, and shape the JSON payloads.

Every function takes an open Fetcher and an already-normalized username.
"""
import httpx
import logging
from datetime import date

from .config import (
    BASE_URL,
    DIARY_HEADER_SHORTCUT,
    DIARY_YEAR_PAGES,
    FALLBACK_FIRST_YEAR,
    FALLBACK_LAST_YEAR,
    FILMS_PAGES,
    RATINGS_PAGES,
    RUNTIME_CONCURRENCY,
    TIMELINE_PAGES,
    WATCHTIME_PAGES,
)
from .fetcher import BlockedError, Fetcher, FetchError
from .paginator import collect
from .parsing import (
    parse_avatar,
    parse_diary_page,
    parse_diary_years,
    parse_films_page,
    parse_header_count,
    parse_ratings_page,
)
from .aggregator import (
    RATING_BINS,
    RuntimeResolver,
    build_histogram_frames,
    count_years,
    merge_header_count,
    rewatch_counts,
    total_minutes,
)

logger = logging.getLogger(__name__)


def _diary_url(user: str) -> str:
    return f"{BASE_URL}/{user}/films/diary/"


def _diary_year_url(user: str, year: int) -> str:
    return f"{BASE_URL}/{user}/films/diary/for/{year}/"


async def fetch_avatar(fetcher: Fetcher, user: str) -> dict:
    """Single shot: block and HTTP errors propagate to the caller."""
    html = await fetcher.fetch(f"{BASE_URL}/{user}/")
    return {"avatar": parse_avatar(html)}


# --- diary year counts ----------------------------------------------------------

def _parse_year_bound(raw) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


async def discover_diary_years(fetcher: Fetcher, user: str) -> list[int]:
    """
    Years the user's diary archive links to; empty when the page is blocked
    or unreachable. A non-2xx answer (unknown user) propagates as HttpError.
    """
    try:
        html = await fetcher.fetch(_diary_url(user))
    except (BlockedError, httpx.TransportError) as exc:
        logger.warning(f"Could not read diary archive for {user} ({exc}), using fallback years")
        return []
    return parse_diary_years(html)


async def resolve_year_range(fetcher: Fetcher, user: str, from_year=None, to_year=None) -> tuple[int, int]:
    """
    Clamp the requested [from, to] to the diary span the site shows for this
    user, or to the static fallback span when it can't be discovered.
    Reversed bounds are swapped.
    """
    years = await discover_diary_years(fetcher, user)
    low = years[0] if years else FALLBACK_FIRST_YEAR
    high = years[-1] if years else max(FALLBACK_LAST_YEAR, date.today().year)

    start = _parse_year_bound(from_year)
    end = _parse_year_bound(to_year)
    start = low if start is None else start
    end = high if end is None else end
    if start > end:
        start, end = end, start

    start = max(low, min(start, high))
    end = max(low, min(end, high))
    return start, end


async def count_diary_year(
    fetcher: Fetcher,
    user: str,
    year: int,
    max_pages: int = DIARY_YEAR_PAGES[0],
    header_shortcut: bool = DIARY_HEADER_SHORTCUT,
) -> int:
    """
    Number of diary entries logged in `year`.

    Page 1 is read once for both the summary sentence and its rows. With the
    shortcut on, a header count at least as large as page 1's tally is
    accepted without fetching further pages. Otherwise every page is walked
    and the larger of header and paginated counts wins.
    """
    base = _diary_year_url(user, year)

    def rows_in_year(html: str):
        return [e for e in parse_diary_page(html) if e.watched_date.year == year]

    first_html = await fetcher.fetch(base)
    header = parse_header_count(first_html, year)
    first_rows = rows_in_year(first_html)

    if header is not None and header_shortcut and header >= len(first_rows):
        logger.debug(f"  {user}/{year}: header count {header} accepted")
        return header
    if not first_rows:
        return merge_header_count(0, header)

    run = await collect(fetcher, base, rows_in_year, max_pages, first_html=first_html)
    paginated = count_years(run.records).get(year, 0)
    return merge_header_count(paginated, header)


async def diary_year_counts(
    fetcher: Fetcher,
    user: str,
    from_year=None,
    to_year=None,
    max_pages: int = DIARY_YEAR_PAGES[0],
    header_shortcut: bool = DIARY_HEADER_SHORTCUT,
) -> dict:
    """{user, years: {"YYYY": count}}; a year that fails entirely records 0."""
    start, end = await resolve_year_range(fetcher, user, from_year, to_year)
    logger.info(f"Counting diary entries for {user}, {start}-{end}")

    years = {}
    for year in range(start, end + 1):
        try:
            years[str(year)] = await count_diary_year(fetcher, user, year, max_pages, header_shortcut)
        except (FetchError, httpx.HTTPError) as exc:
            logger.warning(f"Diary count for {user}/{year} failed ({exc}), recording 0")
            years[str(year)] = 0
        if year < end:
            await fetcher.pause()

    return {"user": user, "years": years}


# --- ratings ----------------------------------------------------------------------

async def ratings_timeline(fetcher: Fetcher, user: str, max_pages: int = TIMELINE_PAGES[0]) -> dict:
    """Cumulative rating histogram frames over the user's diary, oldest first."""
    run = await collect(fetcher, _diary_url(user), parse_diary_page, max_pages)
    frames = build_histogram_frames(run.records)
    logger.info(f"Timeline for {user}: {len(frames)} rated entries over {run.pages_scanned} pages")
    return {"user": user, "bins": RATING_BINS, "frames": frames}


async def ratings_list(fetcher: Fetcher, user: str, max_pages: int = RATINGS_PAGES[0]) -> dict:
    """Flat list of rated films, no de-duplication."""
    run = await collect(fetcher, f"{BASE_URL}/{user}/films/ratings/", parse_ratings_page, max_pages)
    logger.info(f"Ratings for {user}: {len(run.records)} items over {run.pages_scanned} pages")
    return {
        "user": user,
        "count": len(run.records),
        "pagesScanned": run.pages_scanned,
        "items": [item.to_dict() for item in run.records],
    }


# --- watch time ---------------------------------------------------------------------

async def watch_time(
    fetcher: Fetcher,
    user: str,
    max_pages: int = WATCHTIME_PAGES[0],
    concurrency: int = RUNTIME_CONCURRENCY,
    runtime_cache: dict[str, int] | None = None,
    progress: bool = False,
) -> dict:
    """Total minutes watched: each distinct film's runtime times its diary logs."""
    run = await collect(fetcher, _diary_url(user), parse_diary_page, max_pages)
    counts = rewatch_counts(run.records)

    resolver = RuntimeResolver(fetcher, concurrency=concurrency, cache=runtime_cache)
    runtimes = await resolver.resolve(counts, progress=progress)
    minutes = total_minutes(counts, runtimes)

    logger.info(f"Watch time for {user}: {len(run.records)} logs, {len(counts)} films, {minutes} minutes")
    return {
        "user": user,
        "logs": len(run.records),
        "minutes": minutes,
        "hours": round(minutes / 60, 2),
    }


# --- watched films ---------------------------------------------------------------------

async def watched_films(fetcher: Fetcher, user: str, max_pages: int = FILMS_PAGES[0]) -> dict:
    """Watched films as (title, year), de-duplicated across pages."""
    run = await collect(fetcher, f"{BASE_URL}/{user}/films/", parse_films_page, max_pages)

    seen = set()
    items = []
    for film in run.records:
        key = (film.title, film.year)
        if key in seen:
            continue
        seen.add(key)
        items.append({"title": film.title, "year": film.year})

    return {"user": user, "count": len(items), "pagesScanned": run.pages_scanned, "items": items}
