"""
Crawl orchestration.

The Crawler runs many spiders at once (bounded by ``crawlers_buffer_size``),
each of which scrapes its subroutes (bounded by ``spiders_buffer_size``),
and hands the deduplicated records of every spider to a sink.
"""

import asyncio
import csv
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from .errors import CrawlerError, OutputPathError, SpiderError, format_error_chain
from .records import Record, column_names
from .spiders import Spider

logger = logging.getLogger(__name__)

PERU_TZ = timezone(timedelta(hours=-5))


def get_peru_date() -> str:
    """Current date in Peru (UTC-5) as YYYYMMDD."""
    return datetime.now(PERU_TZ).strftime("%Y%m%d")


class CsvSink:
    """Writes the records of one spider to ``{out_path}/{name}_{date}.csv``."""

    def __init__(self, out_path: Path):
        self.out_path = Path(out_path)

    def path_for(self, spider_name: str, date_stamp: str) -> Path:
        return self.out_path / f"{spider_name}_{date_stamp}.csv"

    def _write(self, path: Path, records: Sequence[Record]):
        with open(path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=column_names())
            writer.writeheader()
            for record in records:
                writer.writerow(record.as_row())

    async def write(self, spider_name: str, date_stamp: str, records: Sequence[Record]) -> Path:
        path = self.path_for(spider_name, date_stamp)
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self._write, path, list(records))
        except OSError as e:
            raise CrawlerError(f"Failed to write {path}") from e
        logger.info(f"Results saved to {path}")
        return path


@dataclass
class CrawlOutcome:
    counts: Dict[str, int] = field(default_factory=dict)
    failed_subroutes: Dict[str, List[str]] = field(default_factory=dict)
    failed_spiders: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class Crawler:
    """
    Runs a set of spiders and saves their results.

    A failing spider is logged and counted as zero records, and so is a
    spider whose output directory cannot be created. Only an output path that
    exists and is not a directory stops the crawl, and that is checked once
    before any spider starts.
    """

    def __init__(self,
                 spiders: Iterable[Spider],
                 out_path: Path,
                 crawlers_buffer_size: int = 2,
                 spiders_buffer_size: int = 4,
                 sink=None):
        """
        Args:
            spiders: Spiders to run, each with a unique name
            out_path: Directory for the output files
            crawlers_buffer_size: Maximum number of spiders running at once
            spiders_buffer_size: Maximum number of subroutes in flight per spider
            sink: Object with an async ``write(name, date, records)``, a
                CsvSink on ``out_path`` by default
        """
        if crawlers_buffer_size < 1 or spiders_buffer_size < 1:
            raise ValueError("Buffer sizes must be at least 1")
        self.spiders = list(spiders)
        self.out_path = Path(out_path)
        self.crawlers_buffer_size = crawlers_buffer_size
        self.spiders_buffer_size = spiders_buffer_size
        self.sink = sink or CsvSink(self.out_path)

    @classmethod
    def from_settings(cls, spiders: Iterable[Spider], settings, sink=None) -> "Crawler":
        return cls(
            spiders,
            settings.out_path,
            crawlers_buffer_size=settings.crawlers_buffer_size,
            spiders_buffer_size=settings.spiders_buffer_size,
            sink=sink,
        )

    def check_out_path(self):
        """
        Raises:
            OutputPathError: if the path exists and is not a directory
        """
        if self.out_path.exists() and not self.out_path.is_dir():
            raise OutputPathError(self.out_path)

    def ensure_out_path(self):
        """
        Create the output directory if it is missing.

        Raises:
            CrawlerError: if the directory cannot be created
        """
        if self.out_path.is_dir():
            return
        try:
            self.out_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CrawlerError(f"Failed to create dir for `out_path`: {self.out_path}") from e
        logger.info(f"Created output directory {self.out_path}")

    async def crawl(self) -> CrawlOutcome:
        """
        Run every spider and return per spider record counts.

        Raises:
            OutputPathError: if the output path exists and is not a directory
        """
        self.check_out_path()
        logger.info(f"Starting crawl of {len(self.spiders)} spiders")
        start_time = time.monotonic()
        outcome = CrawlOutcome()
        date = get_peru_date()
        semaphore = asyncio.Semaphore(self.crawlers_buffer_size)

        async def run(spider: Spider):
            async with semaphore:
                failures: List[str] = []
                try:
                    n = await self._process_spider(spider, date, failures)
                except (SpiderError, CrawlerError) as e:
                    logger.error(f"Failed to process spider {spider.name}: {format_error_chain(e)}")
                    outcome.failed_spiders.append(spider.name)
                    n = 0
                except Exception:
                    logger.exception(f"Unexpected error while processing spider {spider.name}")
                    outcome.failed_spiders.append(spider.name)
                    n = 0
                outcome.counts[spider.name] = n
                if failures:
                    outcome.failed_subroutes[spider.name] = failures

        await asyncio.gather(*(run(spider) for spider in self.spiders))

        outcome.elapsed = time.monotonic() - start_time
        logger.info(f"Crawl completed in {outcome.elapsed:.2f} seconds")
        logger.info(f"Scraped {outcome.total} items")
        return outcome

    async def _process_spider(self, spider: Spider, date: str, failures: List[str]) -> int:
        """Scrape one spider and save its records; returns the number saved."""
        logger.info(f"Start scraping {spider}")
        start_time = time.monotonic()
        self.ensure_out_path()
        async with spider:
            records = await spider.scrape_all(self.spiders_buffer_size, failures)
        await self.sink.write(spider.name, date, records)
        n = len(records)
        logger.info(f"Scraped {n} elements for {spider.name} in {time.monotonic() - start_time:.2f} seconds")
        return n
