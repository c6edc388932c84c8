"""Utility functions and decorators for letterboxd_stats."""

import re
import random
import logging
import asyncio
from functools import wraps
from typing import TypeVar, Callable, Any, Awaitable, Iterable

from tqdm import tqdm

logger = logging.getLogger(__name__)

T = TypeVar('T')

USERNAME_RE = re.compile(r'^[a-z0-9_-]{1,30}$')
PROFILE_URL_RE = re.compile(r'^(?:https?://)?(?:www\.)?letterboxd\.com/', re.IGNORECASE)


class InvalidUsername(ValueError):
    """Raised when a username is missing or cannot be sanitized."""


def normalize_username(raw: str | None) -> str | None:
    """
    Normalize a Letterboxd username.

    Strips whitespace, a leading '@', a pasted profile URL prefix and trailing
    slashes, then lowercases. Returns None unless the result matches
    [a-z0-9_-]{1,30}.
    """
    if not raw:
        return None

    cleaned = str(raw).strip()
    cleaned = PROFILE_URL_RE.sub('', cleaned)
    cleaned = cleaned.strip('/').lstrip('@').lower()

    if not USERNAME_RE.match(cleaned):
        return None
    return cleaned


def require_username(raw: str | None) -> str:
    """normalize_username() that raises InvalidUsername instead of returning None."""
    user = normalize_username(raw)
    if user is None:
        raise InvalidUsername("Missing or invalid ?user=<letterboxd username>")
    return user


def clamp_int(raw: Any, default: int, low: int, high: int) -> int:
    """Parse an optional integer parameter, falling back to default, clamped to [low, high]."""
    try:
        val = int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        val = default
    return max(low, min(high, val))


def _parse_cookie_header(cookie_header: str | None) -> dict[str, str]:
    """
    Convert a raw Cookie header string into a dict for httpx.

    Accepts the full "key=value; key2=value2" header; ignores malformed pairs.
    """
    if not cookie_header:
        return {}

    cookie_jar: dict[str, str] = {}
    for part in cookie_header.split(";"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        value = value.strip()
        if name:
            cookie_jar[name] = value
    return cookie_jar


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.0,
    exceptions: tuple = (Exception,)
):
    """
    Async decorator that retries a coroutine with exponential backoff on failure.

    Args:
        max_retries: Number of retries after the first attempt
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries (exponential backoff)
        jitter: Upper bound of a random extra delay added to every wait
        exceptions: Tuple of exception types to catch and retry

    Example:
        @async_retry_with_backoff(max_retries=3, initial_delay=0.8, jitter=0.4)
        async def fetch_data():
            # ... async code that might fail
            pass
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempts = max_retries + 1
            delay = initial_delay
            last_exception = None

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < attempts - 1:
                        wait = delay + random.uniform(0, jitter)
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{attempts}): {e}. "
                            f"Retrying in {wait:.1f}s..."
                        )
                        await asyncio.sleep(wait)
                        delay *= backoff_factor
                    else:
                        logger.error(
                            f"{func.__name__} failed after {attempts} attempts: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator


async def gather_bounded(
    items: Iterable[Any],
    worker: Callable[[Any], Awaitable[T]],
    limit: int,
    desc: str | None = None,
    progress: bool = False,
) -> list[T | BaseException]:
    """
    Run worker(item) for every item with at most `limit` calls in flight.

    Returns one entry per input, in input order: the worker's result, or the
    exception it raised. A failing item never cancels its siblings.
    """
    items = list(items)
    semaphore = asyncio.Semaphore(max(1, limit))

    with tqdm(total=len(items), desc=desc, disable=not progress) as bar:
        async def run(item):
            async with semaphore:
                try:
                    return await worker(item)
                finally:
                    bar.update(1)

        return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
