import httpx
import logging
from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from . import stats
from .config import (
    CACHE_AVATAR,
    CACHE_NONE,
    CACHE_TIMELINE,
    CACHE_WATCHTIME,
    DIARY_HEADER_SHORTCUT,
    DIARY_YEAR_PAGES,
    FILMS_PAGES,
    RATINGS_PAGES,
    RUNTIME_CONCURRENCY,
    TIMELINE_PAGES,
    WATCHTIME_PAGES,
)
from .fetcher import BlockedError, Fetcher, HttpError
from .utils import InvalidUsername, clamp_int, require_username

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__)


def _json(payload: dict, cache_control: str, status: int = 200):
    resp = jsonify(payload)
    resp.status_code = status
    resp.headers["Cache-Control"] = cache_control
    return resp


def _fetcher() -> Fetcher:
    return Fetcher(**current_app.config["FETCHER_OPTIONS"])


def _max_pages(limits: tuple[int, int]) -> int:
    default, maximum = limits
    return clamp_int(request.args.get("maxPages"), default, 1, maximum)


@api.route("/")
def index():
    return jsonify({
        "message": "Letterboxd profile stats",
        "endpoints": {
            "/api/avatar?user=": "Profile avatar URL",
            "/api/diary?user=&from=&to=": "Diary entries per year",
            "/api/ratings-timeline?user=&maxPages=": "Cumulative rating histogram frames",
            "/api/ratings?user=&maxPages=": "Rated films",
            "/api/watchtime?user=&maxPages=": "Total watch time from diary runtimes",
            "/api/films?user=&maxPages=": "Watched films (title, year)",
        },
    })


@api.route("/api/avatar")
async def avatar():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.fetch_avatar(fetcher, user)
    return _json(payload, CACHE_AVATAR)


@api.route("/api/diary")
async def diary():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.diary_year_counts(
            fetcher,
            user,
            from_year=request.args.get("from"),
            to_year=request.args.get("to"),
            max_pages=_max_pages(DIARY_YEAR_PAGES),
            header_shortcut=current_app.config["DIARY_HEADER_SHORTCUT"],
        )
    return _json(payload, CACHE_NONE)


@api.route("/api/ratings-timeline")
async def ratings_timeline():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.ratings_timeline(fetcher, user, max_pages=_max_pages(TIMELINE_PAGES))
    return _json(payload, CACHE_TIMELINE)


@api.route("/api/ratings")
async def ratings():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.ratings_list(fetcher, user, max_pages=_max_pages(RATINGS_PAGES))
    return _json(payload, CACHE_NONE)


@api.route("/api/watchtime")
async def watchtime():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.watch_time(
            fetcher,
            user,
            max_pages=_max_pages(WATCHTIME_PAGES),
            concurrency=current_app.config["RUNTIME_CONCURRENCY"],
        )
    return _json(payload, CACHE_WATCHTIME)


@api.route("/api/films")
async def films():
    user = require_username(request.args.get("user"))
    async with _fetcher() as fetcher:
        payload = await stats.watched_films(fetcher, user, max_pages=_max_pages(FILMS_PAGES))
    return _json(payload, CACHE_NONE)


@api.app_errorhandler(InvalidUsername)
def handle_invalid_username(exc):
    return _json({"error": str(exc)}, CACHE_NONE, 400)


@api.app_errorhandler(BlockedError)
def handle_blocked(exc):
    logger.warning(f"Upstream blocked: {exc}")
    return _json({"error": str(exc)}, CACHE_NONE, 502)


@api.app_errorhandler(HttpError)
def handle_upstream_status(exc):
    # Forward the upstream status verbatim when it is a real error status
    status = exc.status if 400 <= exc.status < 600 else 502
    return _json({"error": f"Fetch failed for {exc.url}", "status": exc.status}, CACHE_NONE, status)


@api.app_errorhandler(httpx.HTTPError)
def handle_transport_error(exc):
    logger.error(f"Upstream request error: {type(exc).__name__}: {exc}")
    return _json({"error": str(exc) or type(exc).__name__}, CACHE_NONE, 502)


@api.app_errorhandler(Exception)
def handle_unexpected(exc):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error")
    return _json({"error": str(exc) or type(exc).__name__}, CACHE_NONE, 500)


def create_app(overrides: dict | None = None) -> Flask:
    """
    Application factory.

    FETCHER_OPTIONS is passed straight to Fetcher(), which lets tests inject
    an httpx.MockTransport and zero delays.
    """
    app = Flask(__name__)
    app.config.update(
        FETCHER_OPTIONS={},
        DIARY_HEADER_SHORTCUT=DIARY_HEADER_SHORTCUT,
        RUNTIME_CONCURRENCY=RUNTIME_CONCURRENCY,
    )
    if overrides:
        app.config.update(overrides)
    app.register_blueprint(api)
    return app
