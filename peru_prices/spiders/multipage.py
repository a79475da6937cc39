import logging
from typing import List, Optional, Sequence

from ..errors import NavigationError
from ..extractors import Extractor, build_extractor
from ..records import Record
from ..sources import FETCH_ERRORS, HttpPageSource
from .base import Spider

logger = logging.getLogger(__name__)


class MultipageSpider(Spider):
    """Spider for server rendered category pages fetched over plain HTTP."""

    def __init__(self,
                 name: str,
                 base_url: str,
                 subroutes: Sequence[str],
                 selector: str,
                 source: Optional[HttpPageSource] = None,
                 extractor: Optional[Extractor] = None,
                 delay: float = 0.0,
                 show_progress: bool = True):
        super().__init__(name, base_url, subroutes, selector, extractor, delay, show_progress)
        self.source = source or HttpPageSource()

    @classmethod
    def from_settings(cls, spider_settings, settings) -> "MultipageSpider":
        http = settings.http
        source = HttpPageSource(
            timeout=http.timeout_secs,
            max_retries=http.max_retries,
            backoff_min=http.backoff_min_secs,
            backoff_max=http.backoff_max_secs,
            user_agent=http.user_agent,
            impersonate=spider_settings.impersonate,
        )
        delay_milis = spider_settings.delay_milis
        if delay_milis is None:
            delay_milis = settings.delay_milis
        return cls(
            spider_settings.name,
            spider_settings.base_url,
            spider_settings.subroutes,
            spider_settings.selector,
            source=source,
            extractor=build_extractor(spider_settings.extractor, spider_settings.fields or None),
            delay=delay_milis / 1000,
            show_progress=settings.show_progress,
        )

    async def open(self):
        await self.source.open()

    async def close(self):
        await self.source.close()

    async def scrape(self, url: str) -> List[Record]:
        try:
            document = await self.source.fetch(url)
        except FETCH_ERRORS as e:
            raise NavigationError(f"Failed to send request to {url}") from e
        records = await self.parse_async(document, url)
        logger.info(f"Found {len(records)} elements on {url}")
        return records
