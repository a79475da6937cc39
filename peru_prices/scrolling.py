"""
Infinite scroll termination.

The poller keeps scrolling a rendered page to the bottom until its height
stops growing for ``scroll_checks`` consecutive readings. A single unchanged
reading is not enough: a slow batch can look like a plateau.
"""

import asyncio
import logging
from typing import Optional

from .errors import ScrollError

logger = logging.getLogger(__name__)

HEIGHT_SCRIPT = "document.body.scrollHeight"
SCROLL_SCRIPT = "window.scrollTo(0, document.body.scrollHeight)"


class ConvergencePoller:
    """
    Scroll, wait, measure until the page height converges.

    Without ``max_scrolls`` the loop does not end on a page that grows
    forever.
    """

    def __init__(self, scroll_delay: float, scroll_checks: int, max_scrolls: Optional[int] = None):
        """
        Args:
            scroll_delay: Seconds to wait after each scroll before measuring
            scroll_checks: Consecutive no-growth readings needed to stop
            max_scrolls: Optional cap on the number of scroll commands
        """
        if scroll_checks < 1:
            raise ValueError("scroll_checks must be at least 1")
        self.scroll_delay = scroll_delay
        self.scroll_checks = scroll_checks
        self.max_scrolls = max_scrolls

    async def read_height(self, session) -> int:
        try:
            value = await session.execute(HEIGHT_SCRIPT)
        except Exception as e:
            raise ScrollError("Failed to get height") from e
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ScrollError(f"No number found: {value!r}")
        return int(value)

    async def scroll_down(self, session):
        logger.debug("Scrolling down")
        try:
            await session.execute(SCROLL_SCRIPT)
        except Exception as e:
            raise ScrollError("Failed to scroll down") from e

    async def scroll_to_end(self, session) -> int:
        """
        Scroll ``session`` until its content height is stable.

        Returns:
            Number of scroll commands issued

        Raises:
            ScrollError: if scrolling or reading the height fails
        """
        height = await self.read_height(session)
        logger.debug(f"height={height}")
        stable = 0
        scrolls = 0
        while True:
            if self.max_scrolls is not None and scrolls >= self.max_scrolls:
                logger.warning(f"Stopped scrolling after {scrolls} scrolls without converging")
                return scrolls
            await self.scroll_down(session)
            scrolls += 1
            await asyncio.sleep(self.scroll_delay)
            new_height = await self.read_height(session)
            logger.debug(f"new_height={new_height}")
            if new_height == height:
                stable += 1
            else:
                stable = 0
                height = new_height
            if stable >= self.scroll_checks:
                logger.debug(f"scroll_checks={stable} scrolls={scrolls}")
                return scrolls
