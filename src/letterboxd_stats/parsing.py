"""
HTML parsing for Letterboxd pages.

Letterboxd markup drifts between layouts (poster grids, diary tables, older
card lists), so every field is resolved through an ordered chain of small
extraction strategies: structured attributes first, alternate selectors
second, free-text patterns last. Parsers never raise on bad markup; a record
missing a required field is skipped on its own.
"""
import re
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence
from selectolax.parser import HTMLParser, Node

from .config import BASE_URL

logger = logging.getLogger(__name__)

FULL_STAR = "★"
HALF_STAR = "½"

STAR_RUN_RE = re.compile(r"[★½]+")
ISO_DATE_RE = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)")
DIARY_DAY_RE = re.compile(r"/for/(\d{4})/(\d{2})/(\d{2})/")
DIARY_YEAR_RE = re.compile(r"/for/(\d{4})/")
FILM_HREF_RE = re.compile(r"/film/([^/?#]+)")
YEAR_RE = re.compile(r"\b(?:18|19|20|21)\d{2}\b")
TITLE_YEAR_RE = re.compile(r"^(.*?)\s*\((\d{4})\)\s*$")
SLUG_YEAR_RE = re.compile(r"-(\d{4})$")
ISO_DURATION_RE = re.compile(r"^PT?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$", re.IGNORECASE)
MINUTES_RE = re.compile(r"\b(\d[\d,]*)\s*(?:mins?|minutes)\b", re.IGNORECASE)
HOURS_RE = re.compile(r"\b(\d+)\s*h(?:\s*(\d+)\s*m)?\b", re.IGNORECASE)

DIARY_ROW_SELECTOR = "tr.diary-entry-row, li.diary-entry, article.diary-entry"
POSTER_TILE_SELECTOR = "li.griditem, li.poster-container"
RATING_CONTAINERS = ("p.poster-viewingdata", "span[class*=rating]", ".rating", ".diary-entry-rating")

Strategy = Callable[[Node], object]


@dataclass(frozen=True)
class DiaryEntry:
    watched_date: date
    film_slug: str | None
    film_title: str | None
    rating: float | None = None


@dataclass(frozen=True)
class RatingEntry:
    title: str
    stars_text: str
    rating: float
    slug: str | None
    url: str | None
    year: int | None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "starsText": self.stars_text,
            "rating": self.rating,
            "slug": self.slug,
            "url": self.url,
            "year": self.year,
        }


@dataclass(frozen=True)
class WatchedFilm:
    title: str
    year: int


def first_match(strategies: Sequence[Strategy], node: Node):
    """Apply strategies in order; the first non-None value wins."""
    for strategy in strategies:
        value = strategy(node)
        if value is not None:
            return value
    return None


def _attr(node: Node, name: str) -> str | None:
    """Attribute value from the node itself or its first descendant carrying it."""
    value = node.attributes.get(name)
    if not value:
        el = node.css_first(f"[{name}]")
        value = el.attributes.get(name) if el else None
    value = (value or "").strip()
    return value or None


def _text(node: Node | None) -> str:
    if node is None:
        return ""
    return re.sub(r"\s+", " ", node.text(separator=" ")).strip()


def _page_text(tree: HTMLParser) -> str:
    return _text(tree.body or tree.root)


def validate_slug(slug: str | None) -> str | None:
    """
    Validate film slug format to prevent injection or malformed data.

    Returns cleaned slug or None if invalid.
    Letterboxd slugs are lowercase alphanumeric with hyphens.
    """
    if not slug:
        return None

    cleaned = slug.strip().lower()
    if not re.match(r'^[a-z0-9-]+$', cleaned):
        logger.debug(f"Invalid slug format (contains disallowed characters): '{slug}'")
        return None

    # Letterboxd slugs are typically < 100 chars
    if len(cleaned) > 200:
        logger.debug(f"Slug exceeds maximum length: '{slug[:50]}...'")
        return None

    return cleaned


def film_url(slug: str | None) -> str | None:
    """Canonical film URL (not the per-user diary URL)."""
    return f"{BASE_URL}/film/{slug}/" if slug else None


# --- stars ------------------------------------------------------------------

def decode_stars(text: str | None) -> float | None:
    """
    Decode a star-glyph run: one point per full star, plus 0.5 for a half star.

    Returns None for an empty run or anything outside 0.5-5.0.
    """
    if not text:
        return None
    value = text.count(FULL_STAR) + (0.5 if HALF_STAR in text else 0.0)
    if 0.5 <= value <= 5.0:
        return value
    return None


def stars_text(value: float) -> str:
    """Render a half-star rating back into glyphs (4.5 -> '★★★★½')."""
    full = int(value)
    return FULL_STAR * full + (HALF_STAR if value - full >= 0.5 else "")


def rating_from_class(span: Node) -> float | None:
    """
    Parse a rating from an element with a class like 'rated-8' (4.0 stars).
    """
    classes = span.attributes.get("class") or ""
    for cls in classes.split():
        if cls.startswith("rated-"):
            try:
                val = int(cls.replace("rated-", "")) / 2
                if 0.5 <= val <= 5.0:
                    return val
                logger.debug(f"Rating value outside range [0.5-5.0]: {val} from class '{cls}'")
                return None
            except ValueError as exc:
                logger.debug(f"Unexpected rating format in class '{cls}': {exc}")
                return None
    return None


# --- date strategies ----------------------------------------------------------

def _parse_iso_date(raw: str | None) -> date | None:
    if not raw:
        return None
    m = ISO_DATE_RE.search(raw)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def _date_from_time_tag(node: Node) -> date | None:
    el = node.css_first("time[datetime]")
    return _parse_iso_date(el.attributes.get("datetime")) if el else None


def _date_from_viewing_attr(node: Node) -> date | None:
    for name in ("data-viewing-date", "data-date"):
        value = _parse_iso_date(_attr(node, name))
        if value:
            return value
    return None


def _date_from_day_link(node: Node) -> date | None:
    # Table layout: the day cell links to /<user>/films/diary/for/YYYY/MM/DD/
    for a in node.css("a[href*='/films/diary/for/']"):
        m = DIARY_DAY_RE.search(a.attributes.get("href") or "")
        if m:
            try:
                return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            except ValueError:
                continue
    return None


def _date_from_text(node: Node) -> date | None:
    return _parse_iso_date(node.html or "")


DATE_STRATEGIES = (_date_from_time_tag, _date_from_viewing_attr, _date_from_day_link, _date_from_text)


# --- slug strategies ----------------------------------------------------------

def _slug_from_data_attr(node: Node) -> str | None:
    for name in ("data-film-slug", "data-item-slug"):
        slug = validate_slug(_attr(node, name))
        if slug:
            return slug
    return None


def _slug_from_film_href(node: Node) -> str | None:
    for a in node.css("a[href*='/film/']"):
        m = FILM_HREF_RE.search(a.attributes.get("href") or "")
        if m:
            slug = validate_slug(m.group(1))
            if slug:
                return slug
    return None


def _slug_from_link_attr(node: Node) -> str | None:
    for name in ("data-target-link", "data-film-link", "data-item-link"):
        m = FILM_HREF_RE.search(_attr(node, name) or "")
        if m:
            slug = validate_slug(m.group(1))
            if slug:
                return slug
    return None


SLUG_STRATEGIES = (_slug_from_data_attr, _slug_from_film_href, _slug_from_link_attr)


# --- title strategies ---------------------------------------------------------

def _title_from_data_attr(node: Node) -> str | None:
    return _attr(node, "data-film-name") or _attr(node, "data-item-name")


def _title_from_img_alt(node: Node) -> str | None:
    el = node.css_first("img[alt]")
    alt = (el.attributes.get("alt") or "").strip() if el else ""
    return alt or None


def _title_from_headline(node: Node) -> str | None:
    el = node.css_first("h3 a, h2 a, .headline-3 a, td.td-film-details a")
    return _text(el) or None


TITLE_STRATEGIES = (_title_from_data_attr, _title_from_img_alt, _title_from_headline)


def split_title_year(raw: str | None) -> tuple[str | None, int | None]:
    """'Barbie (2023)' -> ('Barbie', 2023); titles without a suffix pass through."""
    if not raw:
        return None, None
    m = TITLE_YEAR_RE.match(raw)
    if m and m.group(1):
        return m.group(1), int(m.group(2))
    return raw, None


# --- year strategies ----------------------------------------------------------

def _year_from_data_attr(node: Node) -> int | None:
    for name in ("data-film-year", "data-film-release-year"):
        value = _attr(node, name)
        if value and re.fullmatch(r"\d{4}", value):
            return int(value)
    return None


def _year_from_metadata_text(node: Node) -> int | None:
    el = node.css_first(".year, .metadata, small")
    m = YEAR_RE.search(_text(el))
    return int(m.group(0)) if m else None


def _year_from_title_suffix(node: Node) -> int | None:
    return split_title_year(first_match(TITLE_STRATEGIES, node))[1]


def _year_from_slug_suffix(node: Node) -> int | None:
    # e.g. "weapons-2025"
    m = SLUG_YEAR_RE.search(first_match(SLUG_STRATEGIES, node) or "")
    return int(m.group(1)) if m else None


YEAR_STRATEGIES = (_year_from_data_attr, _year_from_metadata_text, _year_from_title_suffix, _year_from_slug_suffix)


# --- rating strategies --------------------------------------------------------

def _rating_from_rated_class(node: Node) -> float | None:
    for span in node.css("[class*='rated-']"):
        value = rating_from_class(span)
        if value is not None:
            return value
    return None


def _rating_from_star_containers(node: Node) -> float | None:
    for selector in RATING_CONTAINERS:
        m = STAR_RUN_RE.search(_text(node.css_first(selector)))
        if m:
            return decode_stars(m.group(0))
    return None


def _rating_from_text(node: Node) -> float | None:
    m = STAR_RUN_RE.search(_text(node))
    return decode_stars(m.group(0)) if m else None


RATING_STRATEGIES = (_rating_from_rated_class, _rating_from_star_containers, _rating_from_text)


# --- page parsers -------------------------------------------------------------

def parse_diary_page(html: str) -> list[DiaryEntry]:
    """Diary rows in document order. Date is required; rating is optional."""
    tree = HTMLParser(html or "")
    entries = []
    for row in tree.css(DIARY_ROW_SELECTOR):
        watched = first_match(DATE_STRATEGIES, row)
        if watched is None:
            logger.debug("Skipping diary row without a watched date")
            continue
        title, _ = split_title_year(first_match(TITLE_STRATEGIES, row))
        entries.append(DiaryEntry(
            watched_date=watched,
            film_slug=first_match(SLUG_STRATEGIES, row),
            film_title=title,
            rating=first_match(RATING_STRATEGIES, row),
        ))
    return entries


def parse_ratings_page(html: str) -> list[RatingEntry]:
    """
    Rated poster tiles from /<user>/films/ratings/.

    Title and rating are required. Identical titles are all kept: they may be
    different films or repeat listings.
    """
    tree = HTMLParser(html or "")
    tiles = tree.css(POSTER_TILE_SELECTOR) or tree.css("li")
    items = []
    for tile in tiles:
        title, _ = split_title_year(first_match(TITLE_STRATEGIES, tile))
        if not title:
            continue
        rating = first_match(RATING_STRATEGIES, tile)
        if rating is None:
            logger.debug(f"Skipping '{title}': no rating")
            continue
        slug = first_match(SLUG_STRATEGIES, tile)
        year = first_match(YEAR_STRATEGIES, tile)
        items.append(RatingEntry(
            title=title,
            stars_text=stars_text(rating),
            rating=rating,
            slug=slug,
            url=film_url(slug),
            year=year,
        ))
    return items


def parse_header_count(html: str, year: int) -> int | None:
    """
    Read the diary summary sentence, e.g.
    "Gage has logged 124 entries for films during 2025."
    """
    text = _page_text(HTMLParser(html or ""))
    m = re.search(
        rf"logged\s+([\d,]+)\s+entr(?:y|ies)\b.{{0,40}}?\bduring\s+{year}\b",
        text,
        re.IGNORECASE,
    )
    return int(m.group(1).replace(",", "")) if m else None


def parse_diary_years(html: str) -> list[int]:
    """Years the diary archive links to, ascending."""
    tree = HTMLParser(html or "")
    years = set()
    for a in tree.css("a[href*='/films/diary/for/']"):
        m = DIARY_YEAR_RE.search(a.attributes.get("href") or "")
        if m:
            years.add(int(m.group(1)))
    return sorted(years)


def _iso_duration_minutes(raw: str | None) -> int | None:
    """PT2H14M -> 134, PT95M -> 95; bare digits are seconds."""
    raw = (raw or "").strip()
    if raw.isdigit():
        return round(int(raw) / 60)
    m = ISO_DURATION_RE.match(raw)
    if not m or not any(m.groups()):
        return None
    hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
    return hours * 60 + minutes + round(seconds / 60)


def parse_runtime_minutes(html: str) -> int | None:
    """Film runtime in minutes from a film detail page, or None."""
    tree = HTMLParser(html or "")

    # 1) schema.org / Open Graph duration
    for selector in ("[itemprop='duration']", "meta[property='video:duration']"):
        el = tree.css_first(selector)
        if el:
            minutes = _iso_duration_minutes(el.attributes.get("content") or el.attributes.get("datetime"))
            if minutes is not None:
                return minutes

    # 2) Film page footer: "134 mins   More at IMDb TMDB"
    footer = tree.css_first("p.text-link.text-footer")
    m = MINUTES_RE.search(_text(footer))
    if m:
        return int(m.group(1).replace(",", ""))

    # 3) Free text
    tree.strip_tags(["script", "style"])
    text = _page_text(tree)
    m = MINUTES_RE.search(text)
    if m:
        return int(m.group(1).replace(",", ""))
    m = HOURS_RE.search(text)
    if m:
        return int(m.group(1)) * 60 + (int(m.group(2)) if m.group(2) else 0)
    return None


def parse_avatar(html: str) -> str | None:
    """Absolute avatar URL from a profile page."""
    tree = HTMLParser(html or "")
    candidates = (
        ("#avatar-large", "src"),
        (".profile-avatar img", "src"),
        ("img.avatar", "src"),
        ("meta[property='og:image']", "content"),
    )
    for selector, attr in candidates:
        el = tree.css_first(selector)
        src = (el.attributes.get(attr) or "").strip() if el else ""
        if not src:
            continue
        if src.startswith("//"):
            return "https:" + src
        if src.startswith("/"):
            return BASE_URL + src
        return src
    return None


# --- watched films grid (page-level layout fallback) -----------------------------

def _films_from_data_attrs(tree: HTMLParser) -> list[WatchedFilm]:
    films = []
    for el in tree.css("[data-film-name]"):
        title = (el.attributes.get("data-film-name") or "").strip()
        year = el.attributes.get("data-film-release-year") or el.attributes.get("data-film-year") or ""
        if title and re.fullmatch(r"\d{4}", year):
            films.append(WatchedFilm(title, int(year)))
    return films


def _films_from_suffixed_attr(tree: HTMLParser, selector: str, attr: str) -> list[WatchedFilm]:
    films = []
    for el in tree.css(selector):
        title, year = split_title_year(el.attributes.get(attr))
        if title and year:
            films.append(WatchedFilm(title, year))
    return films


FILM_LIST_STRATEGIES = (
    _films_from_data_attrs,
    lambda tree: _films_from_suffixed_attr(tree, "[data-item-name]", "data-item-name"),
    lambda tree: _films_from_suffixed_attr(tree, "[data-original-title]", "data-original-title"),
    lambda tree: _films_from_suffixed_attr(tree, "img[alt]", "alt"),
)


def parse_films_page(html: str) -> list[WatchedFilm]:
    """Watched films (title, release year) from /<user>/films/page/N/."""
    tree = HTMLParser(html or "")
    for strategy in FILM_LIST_STRATEGIES:
        films = strategy(tree)
        if films:
            return films
    return []
