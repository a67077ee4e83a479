"""
Crypto market data collector

One invocation runs a single sequential pass:
- Historical daily backfill from CoinGecko (first run only)
- Current snapshots from CoinGecko and CoinMarketCap
- Daily OHLC history scraped from CoinMarketCap pages (once)

Everything is appended to CSV files under DATA_ROOT.
"""

__version__ = "0.1.0"
