"""
Error types shared by the crawler.

Node-level errors (ExtractionError) are dropped by the spider, subroute-level
errors (ScrapeError) are dropped by ``Spider.scrape_all`` and spider-level
errors are dropped by the crawler. Only ConfigurationError and
OutputPathError stop a run before it starts.
"""

from typing import List, Optional


class PeruPricesError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(PeruPricesError):
    """Invalid or missing configuration."""


class CrawlerError(PeruPricesError):
    """Failure while processing a spider inside the crawler."""


class OutputPathError(CrawlerError):
    """The output path is unusable for the whole crawl."""

    def __init__(self, path, reason: str = "Provided out_path is not a directory"):
        self.path = path
        super().__init__(f"{reason}: {path}")


class SpiderError(PeruPricesError):
    """Failure raised by a spider."""


class InvalidSelector(SpiderError):
    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"Invalid selector: {selector}")


class SessionError(SpiderError):
    """The spider could not get its page source (browser or HTTP session)."""


class ScrapeError(SpiderError):
    """A single subroute could not be scraped."""


class NavigationError(ScrapeError):
    pass


class ScrapeTimeoutError(ScrapeError):
    pass


class MarkupError(ScrapeError):
    pass


class ScrollError(SpiderError):
    """Scrolling stopped early; whatever loaded so far is still usable."""


class ExtractionError(SpiderError):
    """A single HTML node could not be turned into a record."""


class NoDataExtracted(ExtractionError):
    def __init__(self, attributes):
        self.attributes = attributes
        super().__init__(f"No data found to be extracted: {attributes!r}")


class MissingIdentity(ExtractionError):
    def __init__(self, attributes):
        self.attributes = attributes
        super().__init__(f"Failed to obtain item id: {attributes!r}")


class PriceParseError(ExtractionError):
    def __init__(self, value):
        self.value = value
        super().__init__(f"Failed to parse price from: {value!r}")


def error_causes(exc: BaseException) -> List[BaseException]:
    """Return the underlying causes of ``exc``, nearest first."""
    causes = []
    seen = {id(exc)}
    current: Optional[BaseException] = exc.__cause__ or exc.__context__
    while current is not None and id(current) not in seen:
        causes.append(current)
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return causes


def format_error_chain(exc: BaseException) -> str:
    """Format an error followed by all of its causes."""
    lines = [f"{exc}\n"]
    for cause in error_causes(exc):
        message = str(cause) or type(cause).__name__
        lines.append(f"Caused by:\n\t{message}")
    return "\n".join(lines)
