"""
The spider abstraction.

A spider only has to know how to scrape one URL. Fanning out over its
subroutes with bounded concurrency, pacing, failure isolation and dedup is
shared by every spider in ``Spider.scrape_all``.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import soupsieve
import tqdm
from bs4 import BeautifulSoup

from ..errors import ExtractionError, InvalidSelector, NoDataExtracted, SpiderError, format_error_chain
from ..extractors import AttributeExtractor, Extractor
from ..records import Record, dedupe_records

logger = logging.getLogger(__name__)


def compile_selector(selector: str):
    try:
        return soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError:
        raise InvalidSelector(selector) from None


class Pacer:
    """
    Spaces successive launches by at least ``delay`` seconds.

    The first launch goes through immediately. This limits the rate at
    which requests start; requests already in flight may still overlap.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._lock = asyncio.Lock()
        self._last_launch: Optional[float] = None

    async def wait(self):
        async with self._lock:
            loop = asyncio.get_event_loop()
            if self._last_launch is not None:
                remaining = self._last_launch + self.delay - loop.time()
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_launch = loop.time()


class Spider(ABC):
    """
    A crawl unit for one site: base URL, subroutes, product node selector
    and the extractor that turns a node into a record.
    """

    def __init__(self,
                 name: str,
                 base_url: str,
                 subroutes: Sequence[str],
                 selector: str,
                 extractor: Optional[Extractor] = None,
                 delay: float = 0.0,
                 show_progress: bool = True):
        """
        Args:
            name: Spider name, also used for the output file
            base_url: URL every subroute is appended to
            subroutes: Category paths to scrape
            selector: CSS selector matching one product node
            extractor: Node to record mapping, ``data-*`` attributes by default
            delay: Seconds between the launch of two subroute scrapes
            show_progress: Show a progress bar over the subroutes
        """
        self.name = name
        self.base_url = base_url
        self.subroutes = tuple(subroutes)
        self.selector = selector
        self._compiled_selector = compile_selector(selector)
        self.extractor = extractor or AttributeExtractor()
        self.delay = delay
        self.show_progress = show_progress

    def __str__(self):
        return f"{self.name} (url={self.base_url}, subroutes={len(self.subroutes)})"

    def url_for(self, subroute: str) -> str:
        return f"{self.base_url.rstrip('/')}/{subroute.lstrip('/')}"

    async def open(self):
        """Acquire the page source. Raises SessionError on failure."""

    async def close(self):
        """Release the page source."""

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @abstractmethod
    async def scrape(self, url: str) -> List[Record]:
        """
        Scrape a single page.

        Raises:
            ScrapeError: if the page could not be obtained
        """

    def parse(self, markup: str, url: str) -> List[Record]:
        """Extract the records of every product node in ``markup``."""
        soup = BeautifulSoup(markup, 'html.parser')
        records = []
        for node in self._compiled_selector.select(soup):
            try:
                records.append(self.extractor.extract(node, url))
            except NoDataExtracted as e:
                logger.debug(f"Skipping node: {e}")
            except ExtractionError as e:
                logger.error(f"Error reading item on {url}: {format_error_chain(e)}")
        return dedupe_records(records)

    async def parse_async(self, markup: str, url: str) -> List[Record]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.parse, markup, url)

    async def scrape_all(self, buffer_size: int, failures: Optional[List[str]] = None) -> List[Record]:
        """
        Scrape every subroute and return the deduplicated records.

        At most ``buffer_size`` subroutes are scraped at once. A failing
        subroute is logged and contributes nothing; its URL is appended to
        ``failures`` when given. The order of the result is not meaningful.
        """
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        semaphore = asyncio.Semaphore(buffer_size)
        pacer = Pacer(self.delay)
        progress = tqdm.tqdm(
            total=len(self.subroutes),
            desc=f"Scraping {self.name}",
            unit="pages",
            disable=not self.show_progress,
        )

        async def scrape_subroute(subroute: str) -> List[Record]:
            url = self.url_for(subroute)
            async with semaphore:
                await pacer.wait()
                try:
                    return await self.scrape(url)
                except SpiderError as e:
                    logger.error(f"Failed to scrape subroute {url}: {format_error_chain(e)}")
                except Exception:
                    logger.exception(f"Unexpected error while scraping subroute {url}")
                finally:
                    progress.update(1)
            if failures is not None:
                failures.append(url)
            return []

        try:
            results = await asyncio.gather(*(scrape_subroute(s) for s in self.subroutes))
        finally:
            progress.close()

        records = dedupe_records(itertools.chain.from_iterable(results))
        logger.info(f"{self.name}: {len(records)} unique records from {len(self.subroutes)} subroutes")
        return records
