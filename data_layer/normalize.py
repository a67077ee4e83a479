"""
Normalizers: provider payloads -> canonical records.

Each provider-and-endpoint pairing is a tagged ``RawPayload`` variant and has
exactly one decode function; ``normalize`` dispatches on the tag. These are
pure functions: no I/O, no clock reads (the observation time of a snapshot is
passed in through the payload context).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .connectors.base import PayloadDecodeError
from .schemas import MarketRecord, OhlcRecord, QuoteRecord, Source, utc_date


@dataclass(frozen=True)
class RawPayload:
    """A decoded-but-unnormalized provider response tagged with its source."""
    source: Source
    payload: Any
    context: Mapping[str, Any] = field(default_factory=dict)


def _to_float(value: Any) -> Optional[float]:
    """Float or None; absent and non-numeric upstream values stay absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out):
        return None
    return out


def _series_value(series: Sequence, idx: int) -> Optional[float]:
    """Value at position idx of a [[ts_ms, value], ...] series, None past the end."""
    if idx >= len(series):
        return None
    point = series[idx]
    if not isinstance(point, (list, tuple)) or len(point) < 2:
        return None
    return _to_float(point[1])


def _series(payload: Mapping, key: str, token_id: str) -> Sequence:
    """Optional parallel series; absent is empty, any other non-list shape is a decode error."""
    series = payload.get(key)
    if series is None:
        return []
    if not isinstance(series, list):
        raise PayloadDecodeError(f"{token_id}: '{key}' is {type(series).__name__}, expected list")
    return series


def _observation_date(epoch_seconds: Any, label: str) -> str:
    try:
        return utc_date(epoch_seconds)
    except (OverflowError, OSError, ValueError, TypeError) as e:
        raise PayloadDecodeError(f"{label}: timestamp {epoch_seconds!r} out of range: {e}") from e


def _require(context: Mapping[str, Any], key: str, source: Source) -> Any:
    try:
        return context[key]
    except KeyError:
        raise PayloadDecodeError(f"{source.value}: normalizer context missing {key!r}") from None


def normalize_coingecko_historical(payload: Any, token_id: str) -> List[MarketRecord]:
    """
    Align the parallel ``prices``/``market_caps``/``total_volumes`` series.

    The price series drives the row count; shorter market-cap or volume series
    leave the trailing rows' fields empty.
    """
    if not isinstance(payload, Mapping):
        raise PayloadDecodeError(f"{token_id}: expected object, got {type(payload).__name__}")
    prices = payload.get("prices")
    if not isinstance(prices, list):
        raise PayloadDecodeError(f"{token_id}: payload has no 'prices' series")
    market_caps = _series(payload, "market_caps", token_id)
    volumes = _series(payload, "total_volumes", token_id)

    records = []
    for i, point in enumerate(prices):
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            raise PayloadDecodeError(f"{token_id}: malformed price point at index {i}: {point!r}")
        ts_ms = _to_float(point[0])
        if ts_ms is None:
            raise PayloadDecodeError(f"{token_id}: non-numeric timestamp at index {i}")
        try:
            observed_at = int(ts_ms // 1000)
        except (OverflowError, ValueError) as e:
            raise PayloadDecodeError(f"{token_id}: timestamp at index {i} out of range") from e
        records.append(
            MarketRecord(
                observed_at=observed_at,
                observation_date=_observation_date(observed_at, token_id),
                token_id=token_id,
                token_symbol="",
                token_name="",
                price=_to_float(point[1]),
                market_cap=_series_value(market_caps, i),
                volume_24h=_series_value(volumes, i),
                source=Source.COINGECKO_HISTORICAL,
            )
        )
    return records


def normalize_coingecko_current(payload: Any, observed_at: int) -> List[MarketRecord]:
    """One record per coin object of a coins/markets response."""
    if not isinstance(payload, list):
        raise PayloadDecodeError(f"coins/markets: expected list, got {type(payload).__name__}")

    date_str = _observation_date(observed_at, "coins/markets")
    records = []
    for coin in payload:
        if not isinstance(coin, Mapping) or not coin.get("id"):
            raise PayloadDecodeError(f"coins/markets: malformed entry {coin!r}")
        records.append(
            MarketRecord(
                observed_at=observed_at,
                observation_date=date_str,
                token_id=str(coin["id"]),
                token_symbol=str(coin.get("symbol") or ""),
                token_name=str(coin.get("name") or ""),
                price=_to_float(coin.get("current_price")),
                market_cap=_to_float(coin.get("market_cap")),
                volume_24h=_to_float(coin.get("total_volume")),
                high_24h=_to_float(coin.get("high_24h")),
                low_24h=_to_float(coin.get("low_24h")),
                price_change_24h=_to_float(coin.get("price_change_24h")),
                price_change_pct_24h=_to_float(coin.get("price_change_percentage_24h")),
                circulating_supply=_to_float(coin.get("circulating_supply")),
                total_supply=_to_float(coin.get("total_supply")),
                all_time_high=_to_float(coin.get("ath")),
                all_time_high_date=str(coin.get("ath_date") or ""),
                source=Source.COINGECKO_CURRENT,
            )
        )
    return records


def normalize_cmc_quotes(payload: Any, observed_at: int, convert: str = "USD") -> List[QuoteRecord]:
    """
    One record per symbol of a quotes/latest ``data`` map.

    A symbol shared by several listings comes back as a list; the first
    (highest ranked) listing is used.
    """
    if not isinstance(payload, Mapping):
        raise PayloadDecodeError(f"quotes/latest: expected symbol map, got {type(payload).__name__}")

    date_str = _observation_date(observed_at, "quotes/latest")
    records = []
    for symbol, coin in payload.items():
        if isinstance(coin, list):
            if not coin:
                continue
            coin = coin[0]
        if not isinstance(coin, Mapping):
            raise PayloadDecodeError(f"quotes/latest: malformed entry for {symbol}")
        quotes = coin.get("quote")
        if not isinstance(quotes, Mapping):
            raise PayloadDecodeError(f"quotes/latest: {symbol} quote block is {type(quotes).__name__}, expected object")
        quote = quotes.get(convert)
        if not isinstance(quote, Mapping):
            raise PayloadDecodeError(f"quotes/latest: {symbol} has no {convert} quote")
        records.append(
            QuoteRecord(
                observed_at=observed_at,
                observation_date=date_str,
                symbol=str(coin.get("symbol") or symbol),
                name=str(coin.get("name") or ""),
                slug=str(coin.get("slug") or ""),
                price=_to_float(quote.get("price")),
                volume_24h=_to_float(quote.get("volume_24h")),
                volume_change_24h=_to_float(quote.get("volume_change_24h")),
                percent_change_1h=_to_float(quote.get("percent_change_1h")),
                percent_change_24h=_to_float(quote.get("percent_change_24h")),
                percent_change_7d=_to_float(quote.get("percent_change_7d")),
                market_cap=_to_float(quote.get("market_cap")),
                market_cap_dominance=_to_float(quote.get("market_cap_dominance")),
                circulating_supply=_to_float(coin.get("circulating_supply")),
                total_supply=_to_float(coin.get("total_supply")),
                max_supply=_to_float(coin.get("max_supply")),
                last_updated=str(quote.get("last_updated") or ""),
                source=Source.COINMARKETCAP,
            )
        )
    return records


def normalize_scraped_rows(rows: Iterable[Any], symbol: str, name: str = "") -> List[OhlcRecord]:
    """Tag already-parsed scraped table rows with the token identity."""
    return [
        OhlcRecord(
            date=row.date,
            token_symbol=symbol.upper(),
            token_name=name,
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
            market_cap=row.market_cap,
            source=Source.COINMARKETCAP_SCRAPE,
        )
        for row in rows
    ]


_NORMALIZERS: Dict[Source, Callable[[RawPayload], list]] = {
    Source.COINGECKO_HISTORICAL: lambda raw: normalize_coingecko_historical(
        raw.payload, _require(raw.context, "token_id", raw.source)
    ),
    Source.COINGECKO_CURRENT: lambda raw: normalize_coingecko_current(
        raw.payload, _require(raw.context, "observed_at", raw.source)
    ),
    Source.COINMARKETCAP: lambda raw: normalize_cmc_quotes(
        raw.payload,
        _require(raw.context, "observed_at", raw.source),
        raw.context.get("convert", "USD"),
    ),
    Source.COINMARKETCAP_SCRAPE: lambda raw: normalize_scraped_rows(
        raw.payload,
        _require(raw.context, "symbol", raw.source),
        raw.context.get("name", ""),
    ),
}


def normalize(raw: RawPayload) -> list:
    """Dispatch a tagged payload to its decoder."""
    try:
        decoder = _NORMALIZERS[Source(raw.source)]
    except (KeyError, ValueError):
        raise PayloadDecodeError(f"No normalizer registered for source {raw.source!r}") from None
    return decoder(raw)
