import httpx
import random
import logging
import asyncio
from .config import (
    HTTP_TIMEOUT,
    SCRAPER_HTTP2,
    LETTERBOXD_COOKIE,
    MAX_BLOCK_RETRIES,
    BLOCK_BACKOFF_BASE,
    BLOCK_BACKOFF_FACTOR,
    BLOCK_BACKOFF_JITTER,
    PAGE_DELAY_MIN,
    PAGE_DELAY_MAX,
    USER_AGENTS,
    BLOCK_PATTERN,
)
from .utils import _parse_cookie_header, async_retry_with_backoff

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Base class for upstream fetch failures."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class BlockedError(FetchError):
    """The upstream answered with an anti-bot interstitial instead of content."""

    def __init__(self, url: str):
        super().__init__(url, f"Blocked by anti-bot interstitial on {url}")


class HttpError(FetchError):
    """The upstream answered with a non-2xx status."""

    def __init__(self, url: str, status: int):
        super().__init__(url, f"HTTP {status} for {url}")
        self.status = status


def is_blocked(html: str) -> bool:
    """True when the body looks like a challenge page (Cloudflare and friends)."""
    return bool(html) and BLOCK_PATTERN.search(html) is not None


def pick_user_agent() -> str:
    return random.choice(USER_AGENTS)


def page_url(base: str, page: int) -> str:
    """Letterboxd paginates as <base>page/N/; page 1 is the bare base URL."""
    return base if page <= 1 else f"{base}page/{page}/"


class Fetcher:
    """
    Async HTML fetcher with block detection and bounded retry.

    Use as an async context manager; one instance owns one httpx.AsyncClient.
    Every request gets a freshly picked browser identity.
    """

    def __init__(
        self,
        cookie: str | None = None,
        max_retries: int = MAX_BLOCK_RETRIES,
        backoff_base: float = BLOCK_BACKOFF_BASE,
        backoff_factor: float = BLOCK_BACKOFF_FACTOR,
        backoff_jitter: float = BLOCK_BACKOFF_JITTER,
        page_delay: tuple[float, float] = (PAGE_DELAY_MIN, PAGE_DELAY_MAX),
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cookies = _parse_cookie_header(LETTERBOXD_COOKIE if cookie is None else cookie)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.backoff_jitter = backoff_jitter
        self.page_delay = page_delay
        self.timeout = timeout
        self.transport = transport
        self.client = None

    async def __aenter__(self):
        """Async context manager entry."""
        options = {}
        if self.transport is not None:
            options["transport"] = self.transport
        else:
            options["http2"] = SCRAPER_HTTP2
        self.client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            cookies=self.cookies or None,
            **options,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.client:
            await self.client.aclose()
            self.client = None
        return False

    @staticmethod
    def _headers() -> dict[str, str]:
        return {
            "User-Agent": pick_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.8",
            "Cache-Control": "no-cache",
        }

    async def _get_once(self, url: str) -> str:
        if not self.client:
            raise RuntimeError("Fetcher must be used as an async context manager")

        resp = await self.client.get(url, headers=self._headers())
        html = resp.text
        if is_blocked(html):
            raise BlockedError(url)
        if not resp.is_success:
            raise HttpError(url, resp.status_code)
        return html

    async def fetch(self, url: str, http_retries: int = 0) -> str:
        """
        GET a page and return its HTML.

        Block pages are retried up to max_retries times with backoff and
        jitter. Non-2xx answers raise HttpError immediately unless the caller
        allows http_retries extra attempts for them.
        """
        get_unblocked = async_retry_with_backoff(
            max_retries=self.max_retries,
            initial_delay=self.backoff_base,
            backoff_factor=self.backoff_factor,
            jitter=self.backoff_jitter,
            exceptions=(BlockedError,),
        )(self._get_once)

        for attempt in range(http_retries + 1):
            try:
                return await get_unblocked(url)
            except HttpError as exc:
                if attempt >= http_retries:
                    raise
                logger.warning(f"{exc}, retrying (attempt {attempt + 1}/{http_retries + 1})")
                await asyncio.sleep(self.backoff_base)

        raise RuntimeError("unreachable")

    async def pause(self):
        """Politeness delay between sequential page fetches."""
        low, high = self.page_delay
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))
