"""
Command line entry point.

    python -m peru_prices --environment production --spider metro wong
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .configuration import Settings, get_configuration
from .crawler import Crawler, CrawlOutcome
from .errors import ConfigurationError, OutputPathError, SpiderError, format_error_chain
from .spiders import Spider, build_spider

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_spiders(settings: Settings, names: Optional[Sequence[str]] = None) -> List[Spider]:
    """Build the configured spiders, or only those in ``names``."""
    selected = [settings.spider(name) for name in names] if names else settings.spiders
    spiders = []
    for spider_settings in selected:
        try:
            spiders.append(build_spider(spider_settings, settings))
        except SpiderError as e:
            raise ConfigurationError(f"Invalid spider `{spider_settings.name}`") from e
    return spiders


async def run(settings: Settings, names: Optional[Sequence[str]] = None) -> CrawlOutcome:
    spiders = build_spiders(settings, names)
    crawler = Crawler.from_settings(spiders, settings)
    return await crawler.crawl()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main function to run the crawler from command line."""
    parser = argparse.ArgumentParser(description='Peruvian supermarket price crawler')
    parser.add_argument('--config-dir', type=Path, default=None,
                        help='Directory with base.yaml and the environment files (default: ./configuration)')
    parser.add_argument('--environment', choices=['local', 'production'], default=None,
                        help='Configuration environment (default: $APP_ENVIRONMENT or local)')
    parser.add_argument('--spider', nargs='+', default=None,
                        help='Only run the spiders with these names')
    parser.add_argument('--out-path', type=Path, default=None,
                        help='Override the output directory')
    parser.add_argument('--headless', action=argparse.BooleanOptionalAction, default=None,
                        help='Run the browser without a window')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)
    setup_logging(args.debug)

    try:
        settings = get_configuration(args.config_dir, args.environment)
        if args.out_path is not None:
            settings.out_path = args.out_path
        if args.headless is not None:
            settings.headless = args.headless
        logger.info("Initializing scrapers...")
        logger.debug(f"{settings}")
        outcome = asyncio.run(run(settings, args.spider))
    except (ConfigurationError, OutputPathError) as e:
        logger.error(f"Could not start crawl: {format_error_chain(e)}")
        return 1

    for name, count in outcome.counts.items():
        failed = outcome.failed_subroutes.get(name, [])
        logger.info(f"- {name}: {count} items, {len(failed)} failed subroutes")
    if outcome.failed_spiders:
        logger.warning(f"Spiders that produced nothing: {', '.join(outcome.failed_spiders)}")
    logger.info(f"Finished in {outcome.elapsed:.2f} seconds ({outcome.total} items)")
    return 0
