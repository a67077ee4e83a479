"""
Browser-driven scrapers for providers without a usable historical API.
"""

from .coinmarketcap_scraper import (
    CoinMarketCapScraper,
    ScrapedRow,
    ScrapeError,
    is_valid_row,
    parse_date,
    parse_number,
)

__all__ = [
    "CoinMarketCapScraper",
    "ScrapedRow",
    "ScrapeError",
    "is_valid_row",
    "parse_date",
    "parse_number",
]
