"""
Page sources: turn a URL into markup.

HttpPageSource fetches static documents with aiohttp (or curl_cffi when a
site needs browser impersonation) and retries transient failures with
exponential backoff. BrowserSession drives one Playwright page and is what
infinite scrolling spiders use to render JavaScript.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp
from curl_cffi import CurlError
from curl_cffi import requests as curl_requests
from playwright.async_api import async_playwright
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import SessionError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'es-PE,es;q=0.9,en;q=0.8',
}

TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HTTPStatusError(Exception):
    """Non-200 response."""

    def __init__(self, url: str, status: int):
        self.url = url
        self.status = status
        super().__init__(f"Failed to fetch {url}, status: {status}")

    @property
    def transient(self) -> bool:
        return self.status in TRANSIENT_STATUSES


def is_transient(exc: BaseException) -> bool:
    """Whether a failed request is worth retrying."""
    if isinstance(exc, HTTPStatusError):
        return exc.transient
    return isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientConnectionError,
                            aiohttp.ClientPayloadError, CurlError))


# Everything fetch() can raise once retries are exhausted
FETCH_ERRORS = (HTTPStatusError, asyncio.TimeoutError, aiohttp.ClientError, CurlError,
                UnicodeDecodeError)


class HttpPageSource:
    """
    Static document source shared by every subroute of a spider.

    The underlying aiohttp session pools connections and is safe to use from
    many tasks at once, so there is no lock here.
    """

    def __init__(self,
                 timeout: float = 30,
                 max_retries: int = 3,
                 backoff_min: float = 1.0,
                 backoff_max: float = 10.0,
                 user_agent: Optional[str] = None,
                 impersonate: Optional[str] = None):
        """
        Args:
            timeout: Total timeout of one request in seconds
            max_retries: Retries after the first attempt for transient failures
            backoff_min: Base of the exponential backoff in seconds
            backoff_max: Upper bound for a single backoff in seconds
            user_agent: User agent to send, a desktop Chrome one by default
            impersonate: curl_cffi browser profile (e.g. "chrome120") for
                sites with anti-bot measures; aiohttp is used when unset
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.impersonate = impersonate
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self):
        if self._session is not None and not self._session.closed:
            return
        headers = {'User-Agent': self.user_agent, **DEFAULT_HEADERS}
        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str) -> str:
        """GET ``url`` and return its body, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if self.impersonate:
                    return await self._get_impersonated(url)
                return await self._get(url)

    async def _get(self, url: str) -> str:
        if self._session is None:
            raise SessionError("HTTP session is not open")
        async with self._session.get(url, allow_redirects=True) as response:
            if response.status != 200:
                self._log_status(url, response.status)
                raise HTTPStatusError(url, response.status)
            return await response.text()

    async def _get_impersonated(self, url: str) -> str:
        loop = asyncio.get_event_loop()

        # curl_cffi is blocking, keep it off the event loop
        response = await loop.run_in_executor(
            None,
            lambda: curl_requests.get(
                url,
                impersonate=self.impersonate,
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent, **DEFAULT_HEADERS},
            )
        )
        if response.status_code != 200:
            self._log_status(url, response.status_code)
            raise HTTPStatusError(url, response.status_code)
        return response.text

    @staticmethod
    def _log_status(url: str, status: int):
        if status == 403:
            logger.error(f"Access forbidden (403) for {url} - might be blocked by bot protection")
        elif status == 429:
            logger.error(f"Rate limited (429) for {url} - need to slow down")
        else:
            logger.warning(f"Failed to fetch {url}, status: {status}")


class BrowserSession:
    """
    One rendering browser page.

    A session is a single logical browser connection: callers must not
    navigate it from two tasks at once.
    """

    LAUNCH_ARGS = ["--disable-gpu", "--disable-dev-shm-usage"]

    def __init__(self, playwright, browser, page, navigation_timeout: float = 30):
        self._playwright = playwright
        self._browser = browser
        self.page = page
        self.navigation_timeout = navigation_timeout

    @classmethod
    async def launch(cls,
                     headless: bool = True,
                     cdp_url: Optional[str] = None,
                     user_agent: Optional[str] = None,
                     navigation_timeout: float = 30) -> "BrowserSession":
        """
        Start a Chromium page, or attach to a running browser when
        ``cdp_url`` is given.

        Raises:
            SessionError: if the browser cannot be started or reached
        """
        playwright = await async_playwright().start()
        try:
            if cdp_url:
                browser = await playwright.chromium.connect_over_cdp(cdp_url)
            else:
                browser = await playwright.chromium.launch(headless=headless, args=cls.LAUNCH_ARGS)
            context = await browser.new_context(user_agent=user_agent or DEFAULT_USER_AGENT)
            page = await context.new_page()
        except Exception as e:
            await playwright.stop()
            raise SessionError("Error connecting to browser") from e
        logger.debug(f"Browser session ready (headless={headless}, cdp_url={cdp_url})")
        return cls(playwright, browser, page, navigation_timeout)

    @classmethod
    async def headless(cls, **kwargs) -> "BrowserSession":
        return await cls.launch(headless=True, **kwargs)

    @classmethod
    async def visible(cls, **kwargs) -> "BrowserSession":
        return await cls.launch(headless=False, **kwargs)

    async def navigate(self, url: str):
        await self.page.goto(url, wait_until="domcontentloaded",
                             timeout=self.navigation_timeout * 1000)

    async def wait_for(self, selector: str, timeout: float):
        await self.page.wait_for_selector(selector, state="attached", timeout=timeout * 1000)

    async def execute(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def current_markup(self) -> str:
        return await self.page.content()

    async def close(self):
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()
