import sys
from pathlib import Path

import httpx
import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

BLOCK_HTML = "<html><head><title>Just a moment...</title></head><body>Checking your browser</body></html>"
EMPTY_DIARY = "<html><body><table><tbody></tbody></table></body></html>"


class FakeSite:
    """
    In-memory Letterboxd: maps absolute URLs to HTML, (status, HTML) tuples,
    or callables taking the request. Unknown URLs answer 404.
    """

    def __init__(self):
        self.pages = {}
        self.requests = []

    def __setitem__(self, url, response):
        self.pages[url] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(request)
        response = self.pages.get(url)
        if response is None:
            return httpx.Response(404, text="<html><body>Sorry, we can't find the page you've requested.</body></html>")
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        if isinstance(response, tuple):
            status, text = response
            return httpx.Response(status, text=text)
        return httpx.Response(200, text=response)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    @property
    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


def diary_row(day: str, slug: str | None = None, stars: str = "") -> str:
    link = f'<a href="/alice/film/{slug}/">{slug}</a>' if slug else ""
    return (
        '<tr class="diary-entry-row">'
        f'<td class="td-day"><time datetime="{day}T12:00:00Z">{day}</time></td>'
        f'<td class="td-film-details">{link}</td>'
        f'<td class="td-rating"><span class="rating">{stars}</span></td>'
        '</tr>'
    )


def diary_page(*rows: str, prefix: str = "") -> str:
    return f"<html><body>{prefix}<table><tbody>{''.join(rows)}</tbody></table></body></html>"


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def fetcher_options(site):
    """Fetcher kwargs wired to the fake site with every delay zeroed."""
    return {
        "transport": site.transport(),
        "cookie": "",
        "max_retries": 2,
        "backoff_base": 0.0,
        "backoff_jitter": 0.0,
        "page_delay": (0.0, 0.0),
    }
