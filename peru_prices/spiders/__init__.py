from .base import Pacer, Spider
from .infinite_scrolling import InfiniteScrollingSpider
from .multipage import MultipageSpider

SPIDER_CLASSES = {
    "infinite_scrolling": InfiniteScrollingSpider,
    "multipage": MultipageSpider,
}


def build_spider(spider_settings, settings) -> Spider:
    """Build the spider described by one ``spiders`` entry of the configuration."""
    return SPIDER_CLASSES[spider_settings.kind].from_settings(spider_settings, settings)


__all__ = [
    "InfiniteScrollingSpider",
    "MultipageSpider",
    "Pacer",
    "Spider",
    "build_spider",
]
