import httpx
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .fetcher import Fetcher, FetchError, BlockedError, page_url

logger = logging.getLogger(__name__)


@dataclass
class PageRun:
    records: list = field(default_factory=list)
    pages_scanned: int = 0
    stop_reason: str = "empty"


async def collect(
    fetcher: Fetcher,
    base_url: str,
    parse: Callable[[str], Sequence],
    max_pages: int,
    first_html: str | None = None,
) -> PageRun:
    """
    Walk base_url, base_url/page/2/, ... strictly in order.

    Stops at the first page that parses to zero records, at max_pages, or
    when a fetch fails after page 1 (partial results are kept). A failure on
    page 1 propagates: there is nothing to degrade to.

    Callers that already hold page 1 pass it as first_html to skip refetching.
    """
    run = PageRun()

    for page in range(1, max_pages + 1):
        url = page_url(base_url, page)
        try:
            if page == 1 and first_html is not None:
                html = first_html
            else:
                html = await fetcher.fetch(url)
        except (FetchError, httpx.HTTPError) as exc:
            if page == 1:
                raise
            run.stop_reason = "blocked" if isinstance(exc, BlockedError) else "http_error"
            logger.warning(f"Stopping at page {page} ({exc}); keeping {len(run.records)} records from {run.pages_scanned} pages")
            return run

        records = parse(html)
        if not records:
            run.stop_reason = "empty"
            logger.debug(f"  Page {page} of {base_url} is empty, done")
            return run

        run.records.extend(records)
        run.pages_scanned = page
        logger.debug(f"  Page {page} of {base_url}: {len(records)} records")

        if page < max_pages:
            await fetcher.pause()

    run.stop_reason = "page_cap"
    logger.info(f"Hit page cap ({max_pages}) for {base_url}")
    return run
