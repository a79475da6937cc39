#!/usr/bin/env python3
"""
Helper script to run every configured spider and print a summary.
"""

import asyncio

from peru_prices.cli import run, setup_logging
from peru_prices.configuration import get_configuration


async def main():
    setup_logging()
    settings = get_configuration()

    # Run the crawler
    outcome = await run(settings)

    # Print summary
    print("\n=== Crawl Summary ===")
    print(f"Total spiders run: {len(outcome.counts)}")
    print(f"Total items scraped: {outcome.total}")
    print(f"Elapsed: {outcome.elapsed:.2f} seconds")

    for name, count in outcome.counts.items():
        failed = outcome.failed_subroutes.get(name, [])
        print(f"- {name}: {count} items")
        for url in failed:
            print(f"    failed: {url}")

if __name__ == "__main__":
    asyncio.run(main())
