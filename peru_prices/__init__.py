"""
Peruvian supermarket price crawler.

Scrapes the product listings of a fixed set of catalog sites, one spider per
site, and saves the deduplicated records of each spider to a CSV file.
"""

from .crawler import Crawler, CrawlOutcome, CsvSink
from .records import Record, dedupe_records, parse_price
from .spiders import InfiniteScrollingSpider, MultipageSpider, Spider

__version__ = "0.1.0"

__all__ = [
    "Crawler",
    "CrawlOutcome",
    "CsvSink",
    "InfiniteScrollingSpider",
    "MultipageSpider",
    "Record",
    "Spider",
    "dedupe_records",
    "parse_price",
]
