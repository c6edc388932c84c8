import httpx
import pytest

from letterboxd_stats import config
from letterboxd_stats.fetcher import BlockedError, Fetcher, HttpError, is_blocked, page_url
from conftest import BLOCK_HTML

URL = "https://letterboxd.com/alice/"


def _sequence(*responses):
    """Answer successive requests with the given (status, html) pairs."""
    remaining = list(responses)

    def respond(_request):
        status, text = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(status, text=text)

    return respond


def test_page_url():
    base = "https://letterboxd.com/alice/films/ratings/"
    assert page_url(base, 1) == base
    assert page_url(base, 3) == base + "page/3/"


def test_is_blocked():
    assert is_blocked(BLOCK_HTML)
    assert is_blocked("<h1>Verify you are human</h1>")
    assert not is_blocked("<h1>alice's diary</h1>")
    assert not is_blocked("")


@pytest.mark.asyncio
async def test_block_then_success(site, fetcher_options):
    site[URL] = _sequence((200, BLOCK_HTML), (200, "<p>profile</p>"))

    async with Fetcher(**fetcher_options) as fetcher:
        html = await fetcher.fetch(URL)

    assert html == "<p>profile</p>"
    assert site.count(URL) == 2


@pytest.mark.asyncio
async def test_block_retries_are_bounded(site, fetcher_options):
    site[URL] = BLOCK_HTML

    async with Fetcher(**fetcher_options) as fetcher:
        with pytest.raises(BlockedError) as excinfo:
            await fetcher.fetch(URL)

    assert excinfo.value.url == URL
    assert site.count(URL) == fetcher_options["max_retries"] + 1


@pytest.mark.asyncio
async def test_blocked_status_page_counts_as_block(site, fetcher_options):
    site[URL] = (403, BLOCK_HTML)

    async with Fetcher(**fetcher_options) as fetcher:
        with pytest.raises(BlockedError):
            await fetcher.fetch(URL)


@pytest.mark.asyncio
async def test_http_error_is_not_retried_by_default(site, fetcher_options):
    async with Fetcher(**fetcher_options) as fetcher:
        with pytest.raises(HttpError) as excinfo:
            await fetcher.fetch(URL)

    assert excinfo.value.status == 404
    assert site.count(URL) == 1


@pytest.mark.asyncio
async def test_http_retries_allow_one_more_attempt(site, fetcher_options):
    site[URL] = _sequence((503, "<p>busy</p>"), (200, "<p>film</p>"))

    async with Fetcher(**fetcher_options) as fetcher:
        html = await fetcher.fetch(URL, http_retries=1)

    assert html == "<p>film</p>"
    assert site.count(URL) == 2


@pytest.mark.asyncio
async def test_requests_carry_browser_identity_and_cookie(site, fetcher_options):
    site[URL] = "<p>ok</p>"
    fetcher_options["cookie"] = "letterboxd.user.CURRENT=abc; csrf=xyz"

    async with Fetcher(**fetcher_options) as fetcher:
        await fetcher.fetch(URL)
        await fetcher.fetch(URL)

    for request in site.requests:
        assert request.headers["User-Agent"] in config.USER_AGENTS
        assert request.headers["Accept-Language"].startswith("en-US")
        assert "letterboxd.user.CURRENT=abc" in request.headers["Cookie"]
        assert "csrf=xyz" in request.headers["Cookie"]


@pytest.mark.asyncio
async def test_fetch_outside_context_manager_fails():
    fetcher = Fetcher(cookie="")
    with pytest.raises(RuntimeError):
        await fetcher.fetch(URL)


@pytest.mark.asyncio
async def test_pause_without_delay_returns_immediately(fetcher_options):
    fetcher = Fetcher(**fetcher_options)
    await fetcher.pause()
