"""
Configuration constants for the Letterboxd stats service.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables; everything here is
evaluated once at import time and treated as read-only afterwards.
"""
import os
import re
import logging
from datetime import date

logger = logging.getLogger(__name__)


def _env_number(key: str, default, min_val, cast):
    """
    Read a numeric override from the environment.

    Unset keys give `default`; unparseable values warn and give `default`;
    values under `min_val` warn and are raised to it.
    """
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        val = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {key}='{raw}', using default {default}")
        return default
    if val < min_val:
        logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
        return min_val
    return val


def _get_float_env(key: str, default: float, min_val: float = 0.0) -> float:
    return _env_number(key, default, min_val, float)


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    return _env_number(key, default, min_val, int)



BASE_URL = "https://letterboxd.com"

# Optional session cookie (raw "Cookie" header) for authenticated scraping
LETTERBOXD_COOKIE = os.environ.get("LETTERBOXD_COOKIE") or os.environ.get("LB_COOKIE", "")

# HTTP
HTTP_TIMEOUT = _get_float_env("LETTERBOXD_HTTP_TIMEOUT", 30.0, min_val=1.0)
SCRAPER_HTTP2 = True

# Anti-bot block handling
MAX_BLOCK_RETRIES = _get_int_env("LETTERBOXD_BLOCK_RETRIES", 3, min_val=0)
BLOCK_BACKOFF_BASE = _get_float_env("LETTERBOXD_BACKOFF_BASE", 0.8, min_val=0.0)
BLOCK_BACKOFF_FACTOR = _get_float_env("LETTERBOXD_BACKOFF_FACTOR", 1.5, min_val=1.0)
BLOCK_BACKOFF_JITTER = _get_float_env("LETTERBOXD_BACKOFF_JITTER", 0.4, min_val=0.0)

# Politeness delay between sequential page fetches (seconds)
PAGE_DELAY_MIN = _get_float_env("LETTERBOXD_PAGE_DELAY_MIN", 0.15, min_val=0.0)
PAGE_DELAY_MAX = max(PAGE_DELAY_MIN, _get_float_env("LETTERBOXD_PAGE_DELAY_MAX", 0.4, min_val=0.0))

# Per-film runtime lookups fan out with this many requests in flight
RUNTIME_CONCURRENCY = _get_int_env("LETTERBOXD_RUNTIME_CONCURRENCY", 10, min_val=1)

# 1: a header count >= the first page's tally ends that year without paginating.
# 0: always paginate and keep the larger of header and paginated counts.
DIARY_HEADER_SHORTCUT = _get_int_env("LETTERBOXD_DIARY_HEADER_SHORTCUT", 1, min_val=0) > 0

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123 Safari/537.36",
)

# Interstitial / challenge page phrases
BLOCK_PATTERN = re.compile(
    r"just a moment|attention required|please enable cookies|checking your browser|verify you are human",
    re.IGNORECASE,
)

# Page caps per endpoint: (default, maximum)
DIARY_YEAR_PAGES = (60, 60)
TIMELINE_PAGES = (80, 80)
RATINGS_PAGES = (50, 200)
WATCHTIME_PAGES = (200, 200)
FILMS_PAGES = (100, 500)

# Static diary span used when the archive page cannot be read
FALLBACK_FIRST_YEAR = 2011
FALLBACK_LAST_YEAR = date.today().year

# Cache-Control hints
CACHE_AVATAR = "public, max-age=86400, stale-while-revalidate=86400"
CACHE_TIMELINE = "public, max-age=900"
CACHE_WATCHTIME = "public, max-age=1800"
CACHE_NONE = "no-store"
