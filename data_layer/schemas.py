"""
Canonical record schemas for the three CSV outputs.

Every row carries a ``source`` tag naming the provider and endpoint that
produced it:
- coingecko_historical: CoinGecko market_chart (daily history)
- coingecko_current: CoinGecko coins/markets snapshot
- coinmarketcap: CoinMarketCap quotes/latest snapshot
- coinmarketcap_scrape: CoinMarketCap historical-data web table

Numeric fields use None for "absent upstream"; they are written as empty cells,
never as zero.
"""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Source(str, Enum):
    """Provenance tag written on every record."""
    COINGECKO_HISTORICAL = "coingecko_historical"
    COINGECKO_CURRENT = "coingecko_current"
    COINMARKETCAP = "coinmarketcap"
    COINMARKETCAP_SCRAPE = "coinmarketcap_scrape"


class OutputKind(str, Enum):
    """The three output files; each has a fixed header."""
    MARKET = "market"
    QUOTES = "quotes"
    OHLC = "ohlc"


# ===== Output file A: CoinGecko historical + current =====

MARKET_COLUMNS: Tuple[str, ...] = (
    "timestamp", "date", "token_id", "symbol", "name",
    "price", "market_cap", "total_volume",
    "high_24h", "low_24h", "price_change_24h", "price_change_percentage_24h",
    "circulating_supply", "total_supply", "ath", "ath_date", "source",
)

# ===== Output file B: CoinMarketCap quotes =====

QUOTE_COLUMNS: Tuple[str, ...] = (
    "timestamp", "date", "symbol", "name", "slug",
    "price", "volume_24h", "volume_change_24h",
    "percent_change_1h", "percent_change_24h", "percent_change_7d",
    "market_cap", "market_cap_dominance",
    "circulating_supply", "total_supply", "max_supply",
    "last_updated", "source",
)

# ===== Output file C: scraped OHLC =====

OHLC_COLUMNS: Tuple[str, ...] = (
    "date", "token_symbol", "token_name",
    "open", "high", "low", "close", "volume", "market_cap", "source",
)

COLUMNS_BY_KIND: Dict[OutputKind, Tuple[str, ...]] = {
    OutputKind.MARKET: MARKET_COLUMNS,
    OutputKind.QUOTES: QUOTE_COLUMNS,
    OutputKind.OHLC: OHLC_COLUMNS,
}

# printf-style formats applied per column when writing; columns not listed
# are written as-is.
PRICE_FMT = "%.8f"
AMOUNT_FMT = "%.2f"
PCT_FMT = "%.4f"

COLUMN_FORMATS: Dict[str, str] = {
    "price": PRICE_FMT,
    "high_24h": PRICE_FMT,
    "low_24h": PRICE_FMT,
    "price_change_24h": PRICE_FMT,
    "ath": PRICE_FMT,
    "open": PRICE_FMT,
    "high": PRICE_FMT,
    "low": PRICE_FMT,
    "close": PRICE_FMT,
    "market_cap": AMOUNT_FMT,
    "total_volume": AMOUNT_FMT,
    "volume_24h": AMOUNT_FMT,
    "volume": AMOUNT_FMT,
    "circulating_supply": AMOUNT_FMT,
    "total_supply": AMOUNT_FMT,
    "max_supply": AMOUNT_FMT,
    "price_change_percentage_24h": PCT_FMT,
    "volume_change_24h": PCT_FMT,
    "percent_change_1h": PCT_FMT,
    "percent_change_24h": PCT_FMT,
    "percent_change_7d": PCT_FMT,
    "market_cap_dominance": PCT_FMT,
}


def format_cell(column: str, value) -> str:
    """Render one value for the CSV; None/NaN become an empty cell."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    fmt = COLUMN_FORMATS.get(column)
    if fmt and isinstance(value, (int, float)) and not isinstance(value, bool):
        return fmt % value
    return str(value)


def utc_date(epoch_seconds: int) -> str:
    """Calendar date (YYYY-MM-DD, UTC) for an epoch timestamp."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class MarketRecord:
    """Row of output file A (CoinGecko shape)."""
    observed_at: int
    observation_date: str
    token_id: str
    token_symbol: str
    token_name: str
    price: Optional[float]
    market_cap: Optional[float]
    volume_24h: Optional[float]
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_pct_24h: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    all_time_high: Optional[float] = None
    all_time_high_date: str = ""
    source: Source = Source.COINGECKO_HISTORICAL

    kind = OutputKind.MARKET

    def to_row(self) -> List[str]:
        # Field order matches MARKET_COLUMNS one-to-one
        return [format_cell(col, val) for col, val in zip(MARKET_COLUMNS, astuple(self))]


@dataclass(frozen=True)
class QuoteRecord:
    """Row of output file B (CoinMarketCap quote shape)."""
    observed_at: int
    observation_date: str
    symbol: str
    name: str
    slug: str
    price: Optional[float]
    volume_24h: Optional[float]
    volume_change_24h: Optional[float]
    percent_change_1h: Optional[float]
    percent_change_24h: Optional[float]
    percent_change_7d: Optional[float]
    market_cap: Optional[float]
    market_cap_dominance: Optional[float]
    circulating_supply: Optional[float]
    total_supply: Optional[float]
    max_supply: Optional[float]
    last_updated: str
    source: Source = Source.COINMARKETCAP

    kind = OutputKind.QUOTES

    def to_row(self) -> List[str]:
        return [format_cell(col, val) for col, val in zip(QUOTE_COLUMNS, astuple(self))]


@dataclass(frozen=True)
class OhlcRecord:
    """Row of output file C (scraped daily OHLC)."""
    date: str
    token_symbol: str
    token_name: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    market_cap: float
    source: Source = Source.COINMARKETCAP_SCRAPE

    kind = OutputKind.OHLC

    def to_row(self) -> List[str]:
        return [format_cell(col, val) for col, val in zip(OHLC_COLUMNS, astuple(self))]


def columns_for(kind: OutputKind) -> Tuple[str, ...]:
    """Header for an output kind."""
    return COLUMNS_BY_KIND[kind]
