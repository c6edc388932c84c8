from datetime import date

import pytest
from selectolax.parser import HTMLParser

from letterboxd_stats import parsing
from conftest import diary_page, diary_row


def _node(html: str, selector: str = "li"):
    return HTMLParser(html).css_first(selector)


def test_decode_stars():
    assert [parsing.decode_stars(s) for s in ["★★★", "★★½", ""]] == [3.0, 2.5, None]
    assert parsing.decode_stars("½") == 0.5
    assert parsing.decode_stars("★★★★★★") is None
    assert parsing.decode_stars(None) is None


def test_stars_text_inverts_decode():
    assert parsing.stars_text(4.5) == "★★★★½"
    assert parsing.stars_text(0.5) == "½"
    assert parsing.decode_stars(parsing.stars_text(3.0)) == 3.0


def test_rating_from_class_handles_outliers_and_bad_formats():
    assert parsing.rating_from_class(_node("<span class='rating rated-8'></span>", "span")) == 4.0
    assert parsing.rating_from_class(_node("<span class='rating rated-12'></span>", "span")) is None
    assert parsing.rating_from_class(_node("<span class='rating rated-xx'></span>", "span")) is None
    assert parsing.rating_from_class(_node("<span class='rating other'></span>", "span")) is None


def test_validate_slug():
    assert parsing.validate_slug("The-Matrix") == "the-matrix"
    assert parsing.validate_slug("the matrix") is None
    assert parsing.validate_slug("x" * 300) is None
    assert parsing.validate_slug(None) is None


def test_first_match_uses_order():
    calls = []

    def a(_node):
        calls.append("a")
        return None

    def b(_node):
        calls.append("b")
        return "b-value"

    def c(_node):
        calls.append("c")
        return "c-value"

    assert parsing.first_match((a, b, c), None) == "b-value"
    assert calls == ["a", "b"]


# --- individual strategies ---------------------------------------------------------

def test_date_strategies_each_work_alone():
    time_tag = _node("<li><time datetime='2024-03-15T10:00:00Z'></time></li>")
    viewing = _node("<li><div data-viewing-date='2023-07-01'></div></li>")
    day_link = _node("<li><a href='/alice/films/diary/for/2022/12/31/'>31</a></li>")
    free_text = _node("<li><span>Watched 2021-05-09</span></li>")

    assert parsing._date_from_time_tag(time_tag) == date(2024, 3, 15)
    assert parsing._date_from_viewing_attr(viewing) == date(2023, 7, 1)
    assert parsing._date_from_day_link(day_link) == date(2022, 12, 31)
    assert parsing._date_from_text(free_text) == date(2021, 5, 9)

    assert parsing._date_from_time_tag(free_text) is None
    assert parsing._date_from_day_link(_node("<li><a href='/alice/films/diary/for/2022/13/40/'>x</a></li>")) is None


def test_slug_strategies_each_work_alone():
    data_attr = _node("<li><div class='react-component' data-item-slug='perfect-blue'></div></li>")
    href = _node("<li><a href='/alice/film/the-thing/'>The Thing</a></li>")
    link_attr = _node("<li><div data-target-link='/film/weapons-2025/'></div></li>")

    assert parsing._slug_from_data_attr(data_attr) == "perfect-blue"
    assert parsing._slug_from_film_href(href) == "the-thing"
    assert parsing._slug_from_link_attr(link_attr) == "weapons-2025"
    assert parsing._slug_from_film_href(_node("<li><a href='/alice/films/diary/'>diary</a></li>")) is None


def test_title_and_year_strategies():
    tile = _node("<li><div data-item-name='Barbie (2023)'></div></li>")
    assert parsing.split_title_year(parsing.first_match(parsing.TITLE_STRATEGIES, tile)) == ("Barbie", 2023)

    assert parsing._year_from_data_attr(_node("<li><div data-film-release-year='1999'></div></li>")) == 1999
    assert parsing._year_from_metadata_text(_node("<li><small class='metadata'>Released 1984</small></li>")) == 1984
    assert parsing._year_from_slug_suffix(_node("<li><a href='/film/weapons-2025/'>x</a></li>")) == 2025
    assert parsing._title_from_img_alt(_node("<li><img alt='Alien'></li>")) == "Alien"


def test_year_from_title_suffix_and_chain_order():
    suffixed = _node("<li><img alt='Stalker (1979)'><a href='/film/stalker-2099/'>x</a></li>")
    assert parsing._year_from_title_suffix(suffixed) == 1979
    assert parsing._year_from_title_suffix(_node("<li><img alt='Stalker'></li>")) is None

    # title suffix outranks the slug suffix; explicit attributes outrank both
    assert parsing.first_match(parsing.YEAR_STRATEGIES, suffixed) == 1979
    attributed = _node("<li><div data-film-year='1980' data-item-name='Stalker (1979)'></div></li>")
    assert parsing.first_match(parsing.YEAR_STRATEGIES, attributed) == 1980


def test_rating_strategies_each_work_alone():
    by_class = _node("<li><span class='rating rated-7'></span></li>")
    by_container = _node("<li><p class='poster-viewingdata'>★★★★</p></li>")
    by_text = _node("<li><div>Rated ★½ by alice</div></li>")

    assert parsing._rating_from_rated_class(by_class) == 3.5
    assert parsing._rating_from_star_containers(by_container) == 4.0
    assert parsing._rating_from_text(by_text) == 1.5
    assert parsing.first_match(parsing.RATING_STRATEGIES, _node("<li>no stars</li>")) is None


# --- page parsers ----------------------------------------------------------------

def test_parse_diary_page_time_tag_layout():
    html = diary_page(
        diary_row("2024-01-02", "film-a", "★★★"),
        diary_row("2024-01-05", "film-b"),
    )
    entries = parsing.parse_diary_page(html)

    assert [e.watched_date for e in entries] == [date(2024, 1, 2), date(2024, 1, 5)]
    assert [e.film_slug for e in entries] == ["film-a", "film-b"]
    assert entries[0].rating == 3.0
    assert entries[1].rating is None


def test_parse_diary_page_table_layout_without_time_tags():
    html = """
    <html><body><table><tbody>
      <tr class="diary-entry-row">
        <td class="td-day"><a href="/alice/films/diary/for/2023/11/20/">20</a></td>
        <td class="td-film-details">
          <div class="react-component" data-item-slug="past-lives" data-item-name="Past Lives (2023)"></div>
        </td>
        <td class="td-rating"><span class="rating rated-9"></span></td>
      </tr>
    </tbody></table></body></html>
    """
    [entry] = parsing.parse_diary_page(html)

    assert entry.watched_date == date(2023, 11, 20)
    assert entry.film_slug == "past-lives"
    assert entry.film_title == "Past Lives"
    assert entry.rating == 4.5


def test_parse_diary_page_skips_rows_without_date():
    html = diary_page(
        '<tr class="diary-entry-row"><td><a href="/alice/film/undated/">x</a></td></tr>',
        diary_row("2020-02-02", "dated"),
    )
    entries = parsing.parse_diary_page(html)
    assert [e.film_slug for e in entries] == ["dated"]


def test_parse_diary_page_card_layout():
    html = """
    <ul>
      <li class="diary-entry"><time datetime="2019-06-01"></time><a href="/film/jaws/">Jaws</a> ★★★★★</li>
    </ul>
    <article class="diary-entry"><span data-viewing-date="2019-06-02"></span><img alt="Heat"></article>
    """
    entries = parsing.parse_diary_page(html)

    assert [(e.watched_date, e.film_slug) for e in entries] == [
        (date(2019, 6, 1), "jaws"),
        (date(2019, 6, 2), None),
    ]
    assert entries[0].rating == 5.0
    assert entries[1].film_title == "Heat"


@pytest.mark.parametrize("html", ["<html", "<<<>>>", "<table><tr class='diary-entry-row'>"])
def test_parsers_never_raise_on_malformed_markup(html):
    assert parsing.parse_diary_page(html) == []
    assert parsing.parse_ratings_page(html) == []
    assert parsing.parse_films_page(html) == []
    assert parsing.parse_runtime_minutes(html) is None
    assert parsing.parse_avatar(html) is None


def test_parse_ratings_page_keeps_duplicates_and_resolves_fields():
    html = """
    <ul class="poster-list">
      <li class="griditem">
        <div class="react-component" data-item-slug="hamlet" data-item-name="Hamlet (1948)"></div>
        <p class="poster-viewingdata"><span class="rating rated-8">★★★★</span></p>
      </li>
      <li class="griditem">
        <div class="react-component" data-item-slug="hamlet-1996" data-item-name="Hamlet"></div>
        <p class="poster-viewingdata"><span class="rating">★★½</span></p>
      </li>
      <li class="griditem">
        <div class="react-component" data-item-slug="unrated" data-item-name="Unrated"></div>
      </li>
    </ul>
    """
    items = parsing.parse_ratings_page(html)

    assert [i.title for i in items] == ["Hamlet", "Hamlet"]
    assert items[0].rating == 4.0
    assert items[0].stars_text == "★★★★"
    assert items[0].year == 1948
    assert items[0].url == "https://letterboxd.com/film/hamlet/"
    assert items[1].rating == 2.5
    assert items[1].year == 1996
    assert items[1].to_dict()["starsText"] == "★★½"


def test_parse_ratings_page_falls_back_to_plain_list_items():
    html = """
    <ul>
      <li><div data-film-name="Alien" data-film-slug="alien" data-film-year="1979"></div>★★★★½</li>
    </ul>
    """
    [item] = parsing.parse_ratings_page(html)
    assert (item.title, item.slug, item.year, item.rating) == ("Alien", "alien", 1979, 4.5)


def test_parse_header_count():
    html = "<html><body><p>Gage has logged 1,124 entries for films during 2025.</p></body></html>"
    assert parsing.parse_header_count(html, 2025) == 1124
    assert parsing.parse_header_count(html, 2024) is None
    assert parsing.parse_header_count("<p>nothing here</p>", 2025) is None


def test_parse_diary_years():
    html = """
    <a href="/alice/films/diary/for/2021/">2021</a>
    <a href="/alice/films/diary/for/2019/">2019</a>
    <a href="/alice/films/diary/for/2021/">again</a>
    <a href="/alice/films/">films</a>
    """
    assert parsing.parse_diary_years(html) == [2019, 2021]


@pytest.mark.parametrize("html, minutes", [
    ("<meta itemprop='duration' content='PT2H14M'>", 134),
    ("<meta itemprop='duration' content='PT95M'>", 95),
    ("<meta property='video:duration' content='5400'>", 90),
    ("<p class='text-link text-footer'>117&nbsp;mins &nbsp; More at IMDb</p>", 117),
    ("<body><div>Runtime: 88 minutes</div></body>", 88),
    ("<body><span>1h 45m</span></body>", 105),
    ("<body><span>2h</span></body>", 120),
    ("<body><p>No runtime listed</p></body>", None),
])
def test_parse_runtime_minutes(html, minutes):
    assert parsing.parse_runtime_minutes(html) == minutes


def test_parse_runtime_ignores_script_text():
    html = "<body><script>var x = '99 mins';</script><p>nothing</p></body>"
    assert parsing.parse_runtime_minutes(html) is None


@pytest.mark.parametrize("html, expected", [
    ("<img id='avatar-large' src='//a.ltrbxd.com/avatar.jpg'>", "https://a.ltrbxd.com/avatar.jpg"),
    ("<div class='profile-avatar'><img src='/static/default.png'></div>", "https://letterboxd.com/static/default.png"),
    ("<meta property='og:image' content='https://a.ltrbxd.com/og.jpg'>", "https://a.ltrbxd.com/og.jpg"),
    ("<p>no avatar</p>", None),
])
def test_parse_avatar(html, expected):
    assert parsing.parse_avatar(html) == expected


def test_parse_films_page_layout_fallbacks():
    by_attrs = "<div data-film-name='Heat' data-film-release-year='1995'></div>"
    by_item_name = "<div class='react-component' data-item-name='Ran (1985)'></div>"
    by_tooltip = "<a data-original-title='Stalker (1979)'></a>"
    by_alt = "<img alt='Tampopo (1985)'><img alt='no year'>"

    assert parsing.parse_films_page(by_attrs) == [parsing.WatchedFilm("Heat", 1995)]
    assert parsing.parse_films_page(by_item_name) == [parsing.WatchedFilm("Ran", 1985)]
    assert parsing.parse_films_page(by_tooltip) == [parsing.WatchedFilm("Stalker", 1979)]
    assert parsing.parse_films_page(by_alt) == [parsing.WatchedFilm("Tampopo", 1985)]
