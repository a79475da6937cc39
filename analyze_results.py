#!/usr/bin/env python3
"""
Helper script to analyze the CSV files written by a crawl.
"""

import argparse
import csv
from collections import Counter
from pathlib import Path


def summarize_file(file_path):
    """Summarize one spider's CSV file."""
    with open(file_path, newline='', encoding='utf-8') as f:
        rows = list(csv.DictReader(f))

    ids = Counter(row['id'] for row in rows)
    prices = []
    invalid_prices = 0
    for row in rows:
        if row.get('price'):
            try:
                prices.append(float(row['price']))
            except ValueError:
                invalid_prices += 1

    return {
        "records": len(rows),
        "duplicated_ids": sum(1 for count in ids.values() if count > 1),
        "priced": len(prices),
        "invalid_prices": invalid_prices,
        "min_price": min(prices) if prices else None,
        "max_price": max(prices) if prices else None,
        "mean_price": sum(prices) / len(prices) if prices else None,
        "brands": Counter(row['brand'] for row in rows if row.get('brand')),
        "categories": Counter(row['category'] for row in rows if row.get('category')),
    }


def analyze_results(out_path, date=None):
    """Analyze the crawl results found in ``out_path``."""
    pattern = f"*_{date}.csv" if date else "*.csv"
    files = sorted(Path(out_path).glob(pattern))

    print("=== Supermarket Price Analysis ===\n")
    print(f"Total files: {len(files)}")

    for file_path in files:
        summary = summarize_file(file_path)
        print(f"\nFile: {file_path.name}")
        print(f"Number of records: {summary['records']}")
        print(f"Duplicated ids: {summary['duplicated_ids']}")

        if summary['priced']:
            print(f"Prices: {summary['priced']} records, "
                  f"min S/ {summary['min_price']:.2f}, "
                  f"max S/ {summary['max_price']:.2f}, "
                  f"mean S/ {summary['mean_price']:.2f}")
        if summary['invalid_prices']:
            print(f"Unreadable prices: {summary['invalid_prices']}")

        print("\nTop brands:")
        for brand, count in summary['brands'].most_common(5):
            print(f"  {brand}: {count} records ({count/summary['records']*100:.1f}%)")

        print("\nTop categories:")
        for category, count in summary['categories'].most_common(5):
            print(f"  {category}: {count} records")

        print("\n" + "-"*50)

def main():
    parser = argparse.ArgumentParser(description='Analyze crawler results')
    parser.add_argument('--out-path', default='data',
                      help='Directory with the CSV files (default: data)')
    parser.add_argument('--date',
                      help='Only files of this date stamp (YYYYMMDD)')

    args = parser.parse_args()
    analyze_results(args.out_path, args.date)

if __name__ == "__main__":
    main()
