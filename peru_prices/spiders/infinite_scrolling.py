import asyncio
import functools
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from ..errors import MarkupError, NavigationError, ScrapeTimeoutError, ScrollError, SessionError, format_error_chain
from ..extractors import Extractor, build_extractor
from ..records import Record
from ..scrolling import ConvergencePoller
from ..sources import BrowserSession
from .base import Spider

logger = logging.getLogger(__name__)


class InfiniteScrollingSpider(Spider):
    """
    Spider for JavaScript rendered category pages that load more products
    while scrolling (VTEX stores such as Metro and Wong).

    All subroutes share one browser session. It is locked from navigation
    until the markup has been read; parsing happens outside the lock.
    """

    def __init__(self,
                 name: str,
                 base_url: str,
                 subroutes: Sequence[str],
                 selector: str,
                 session_factory: Callable[[], Awaitable],
                 poller: Optional[ConvergencePoller] = None,
                 extractor: Optional[Extractor] = None,
                 delay: float = 0.0,
                 wait_timeout: float = 5.0,
                 show_progress: bool = True):
        """
        Args:
            session_factory: Coroutine function returning a connected
                session (``BrowserSession.headless`` for instance)
            poller: Scroll convergence settings
            wait_timeout: Seconds to wait for the first product node
        """
        super().__init__(name, base_url, subroutes, selector, extractor, delay, show_progress)
        self.session_factory = session_factory
        self.poller = poller or ConvergencePoller(scroll_delay=1.0, scroll_checks=3)
        self.wait_timeout = wait_timeout
        self._session = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, spider_settings, settings) -> "InfiniteScrollingSpider":
        scrolling = settings.infinite_scrolling
        launch = BrowserSession.headless if settings.headless else BrowserSession.visible
        session_factory = functools.partial(
            launch,
            cdp_url=scrolling.cdp_url,
            user_agent=settings.http.user_agent,
            navigation_timeout=settings.http.timeout_secs,
        )
        delay_milis = spider_settings.delay_milis
        if delay_milis is None:
            delay_milis = settings.delay_milis
        return cls(
            spider_settings.name,
            spider_settings.base_url,
            spider_settings.subroutes,
            spider_settings.selector,
            session_factory=session_factory,
            poller=ConvergencePoller(
                scroll_delay=scrolling.scroll_delay_milis / 1000,
                scroll_checks=scrolling.scroll_checks,
                max_scrolls=scrolling.max_scrolls,
            ),
            extractor=build_extractor(spider_settings.extractor, spider_settings.fields or None),
            delay=delay_milis / 1000,
            wait_timeout=scrolling.wait_timeout_secs,
            show_progress=settings.show_progress,
        )

    async def open(self):
        if self._session is not None:
            return
        try:
            self._session = await self.session_factory()
        except SessionError:
            raise
        except Exception as e:
            raise SessionError(f"Error connecting to browser for {self.name}") from e

    async def close(self):
        if self._session is None:
            return
        session, self._session = self._session, None
        await session.close()

    async def scrape(self, url: str) -> List[Record]:
        if self._session is None:
            raise SessionError(f"Browser session of {self.name} is not open")

        async with self._lock:
            session = self._session
            try:
                await session.navigate(url)
            except Exception as e:
                raise NavigationError(f"Failed to go to {url}") from e
            try:
                await session.wait_for(self.selector, self.wait_timeout)
            except Exception as e:
                raise ScrapeTimeoutError(
                    f"No element matching {self.selector!r} on {url} after {self.wait_timeout}s"
                ) from e
            try:
                await self.poller.scroll_to_end(session)
            except ScrollError as e:
                logger.error(f"Failed to scroll to end of {url}: {format_error_chain(e)}")
            try:
                document = await session.current_markup()
            except Exception as e:
                raise MarkupError(f"Failed to obtain html content of {url}") from e

        records = await self.parse_async(document, url)
        logger.info(f"Found {len(records)} elements on {url}")
        return records
