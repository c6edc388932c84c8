import httpx
import logging
from collections import Counter
from typing import Iterable, Sequence

from .config import RUNTIME_CONCURRENCY
from .fetcher import Fetcher, FetchError
from .parsing import DiaryEntry, film_url, parse_runtime_minutes
from .utils import gather_bounded

logger = logging.getLogger(__name__)

# 0.5, 1.0, ..., 5.0
RATING_BINS = [b / 2 for b in range(1, 11)]


def count_years(entries: Iterable[DiaryEntry]) -> dict[int, int]:
    """Fold diary entries into {year: count}. Years without entries are absent."""
    return dict(Counter(e.watched_date.year for e in entries))


def merge_header_count(paginated: int, header: int | None) -> int:
    """
    Combine a paginated tally with the diary's summary-sentence count.

    The header only wins when it is larger: never trust a smaller header
    over entries we actually observed.
    """
    if header is None:
        return paginated
    if header != paginated:
        logger.debug(f"Header count {header} vs paginated {paginated}; keeping {max(header, paginated)}")
    return max(header, paginated)


def bin_for(rating: float) -> float:
    """Round to the nearest half star."""
    return round(rating * 2) / 2


def build_histogram_frames(entries: Sequence[DiaryEntry]) -> list[dict]:
    """
    One cumulative frame per rated entry, oldest first.

    Each frame's counts equal the previous frame's with exactly one bin
    incremented, so every bin is non-decreasing across frames.
    """
    # sorted() is stable: same-day entries keep page order
    ordered = sorted((e for e in entries if e.rating is not None), key=lambda e: e.watched_date)

    index = {b: i for i, b in enumerate(RATING_BINS)}
    counts = [0] * len(RATING_BINS)
    frames = []
    for entry in ordered:
        rating = bin_for(entry.rating)
        if rating not in index:
            continue
        counts[index[rating]] += 1
        frames.append({
            "dateTime": entry.watched_date.isoformat(),
            "rating": rating,
            "counts": list(counts),
        })
    return frames


def rewatch_counts(entries: Iterable[DiaryEntry]) -> dict[str, int]:
    """{film slug: number of diary logs}. Entries without a slug are left out."""
    return dict(Counter(e.film_slug for e in entries if e.film_slug))


def total_minutes(counts: dict[str, int], runtimes: dict[str, int]) -> int:
    return sum(runtimes.get(slug, 0) * n for slug, n in counts.items())


class RuntimeResolver:
    """
    Resolve film runtimes with a bounded number of concurrent page fetches.

    The cache is keyed by slug and may be shared between resolvers. Two
    workers racing on the same slug both write the same value, so the
    check-then-write is harmless.
    """

    def __init__(self, fetcher: Fetcher, concurrency: int = RUNTIME_CONCURRENCY, cache: dict[str, int] | None = None):
        self.fetcher = fetcher
        self.concurrency = concurrency
        self.cache = cache if cache is not None else {}

    async def runtime(self, slug: str) -> int:
        """Minutes for one film; 0 when the page can't be fetched or parsed."""
        if slug in self.cache:
            return self.cache[slug]

        try:
            html = await self.fetcher.fetch(film_url(slug), http_retries=1)
            minutes = parse_runtime_minutes(html)
        except (FetchError, httpx.HTTPError) as exc:
            logger.warning(f"Runtime lookup failed for {slug}: {exc}")
            minutes = None

        if minutes is None:
            logger.debug(f"No runtime found for {slug}, counting 0 minutes")
            minutes = 0

        self.cache[slug] = minutes
        return minutes

    async def resolve(self, slugs: Iterable[str], progress: bool = False) -> dict[str, int]:
        """Each distinct slug is looked up once; failures record 0 minutes."""
        distinct = list(dict.fromkeys(slugs))
        results = await gather_bounded(distinct, self.runtime, self.concurrency, desc="Runtimes", progress=progress)

        runtimes = {}
        failed = 0
        for slug, result in zip(distinct, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to resolve runtime for {slug}: {type(result).__name__}: {result}")
                failed += 1
                result = 0
            runtimes[slug] = result

        if failed:
            logger.warning(f"Runtimes: {len(distinct) - failed}/{len(distinct)} resolved, {failed} failed")
        else:
            logger.info(f"Runtimes: {len(distinct)}/{len(distinct)} resolved")
        return runtimes
