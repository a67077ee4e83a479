from types import SimpleNamespace

import pytest

from data_layer.connectors.base import PayloadDecodeError
from data_layer.normalize import (
    RawPayload,
    normalize,
    normalize_cmc_quotes,
    normalize_coingecko_current,
    normalize_coingecko_historical,
    normalize_scraped_rows,
)
from data_layer.schemas import MARKET_COLUMNS, QUOTE_COLUMNS, Source


def test_historical_price_series_drives_row_count():
    """10 prices with only 8 market caps -> 10 rows, last two without market cap."""
    day_ms = 86_400_000
    start = 1704067200000  # 2024-01-01T00:00:00Z
    payload = {
        "prices": [[start + i * day_ms, 100.0 + i] for i in range(10)],
        "market_caps": [[start + i * day_ms, 1e9 + i] for i in range(8)],
        "total_volumes": [[start + i * day_ms, 5e6] for i in range(10)],
    }

    records = normalize_coingecko_historical(payload, "bitcoin")

    assert len(records) == 10
    assert [r.market_cap is None for r in records] == [False] * 8 + [True] * 2
    assert all(r.volume_24h == 5e6 for r in records)
    first = records[0]
    assert first.observed_at == 1704067200
    assert first.observation_date == "2024-01-01"
    assert first.token_id == "bitcoin"
    assert first.source is Source.COINGECKO_HISTORICAL
    assert records[-1].observation_date == "2024-01-10"

    row = records[-1].to_row()
    assert row[MARKET_COLUMNS.index("market_cap")] == ""
    assert row[MARKET_COLUMNS.index("price")] == "109.00000000"
    assert row[MARKET_COLUMNS.index("source")] == "coingecko_historical"


def test_historical_missing_volume_series_is_absent_not_zero():
    payload = {"prices": [[1704067200000, 1.5]]}

    (record,) = normalize_coingecko_historical(payload, "cardano")

    assert record.volume_24h is None
    assert record.market_cap is None
    assert record.to_row()[MARKET_COLUMNS.index("total_volume")] == ""


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"market_caps": []},
        {"prices": [[1704067200000]]},
        {"prices": [["not-a-ts", 1.0]]},
    ],
)
def test_historical_bad_shape_raises(payload):
    with pytest.raises(PayloadDecodeError):
        normalize_coingecko_historical(payload, "bitcoin")


def test_current_snapshot_maps_every_field(vendor_payloads):
    payload = [vendor_payloads.coin_market("bitcoin", "btc", 42000.0)]

    (record,) = normalize_coingecko_current(payload, observed_at=1704110400)

    assert record.observation_date == "2024-01-01"
    assert record.token_symbol == "btc"
    assert record.price == 42000.0
    assert record.high_24h == pytest.approx(44100.0)
    assert record.total_supply is None
    assert record.all_time_high_date == "2021-11-10T14:24:11.849Z"
    assert record.source is Source.COINGECKO_CURRENT

    row = dict(zip(MARKET_COLUMNS, record.to_row()))
    assert row["timestamp"] == "1704110400"
    assert row["price_change_percentage_24h"] == "1.0000"
    assert row["market_cap"] == "42000000000.00"
    assert row["total_supply"] == ""


def test_current_snapshot_rejects_non_list():
    with pytest.raises(PayloadDecodeError):
        normalize_coingecko_current({"error": "rate limited"}, observed_at=0)


def test_cmc_quotes_one_record_per_symbol(vendor_payloads):
    payload = {
        "BTC": vendor_payloads.cmc_quote("BTC", 42000.0),
        "ETH": [vendor_payloads.cmc_quote("ETH", 2200.0), vendor_payloads.cmc_quote("ETH", 0.01)],
    }

    records = normalize_cmc_quotes(payload, observed_at=1704110400)

    assert [r.symbol for r in records] == ["BTC", "ETH"]
    assert records[1].price == 2200.0  # first listing wins
    assert records[0].max_supply is None
    assert records[0].source is Source.COINMARKETCAP

    row = dict(zip(QUOTE_COLUMNS, records[0].to_row()))
    assert row["market_cap_dominance"] == "12.3456"
    assert row["max_supply"] == ""
    assert row["last_updated"] == "2024-01-01T00:00:00.000Z"
    assert row["source"] == "coinmarketcap"


def test_cmc_quotes_missing_convert_block_raises(vendor_payloads):
    coin = vendor_payloads.cmc_quote("BTC", 1.0)
    coin["quote"] = {"EUR": coin["quote"]["USD"]}
    with pytest.raises(PayloadDecodeError):
        normalize_cmc_quotes({"BTC": coin}, observed_at=0)


def test_scraped_rows_are_tagged_with_identity():
    rows = [SimpleNamespace(date="2024-01-02", open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0, market_cap=99.0)]

    (record,) = normalize_scraped_rows(rows, symbol="btc", name="Bitcoin")

    assert record.token_symbol == "BTC"
    assert record.token_name == "Bitcoin"
    assert record.to_row() == [
        "2024-01-02", "BTC", "Bitcoin",
        "1.00000000", "2.00000000", "0.50000000", "1.50000000",
        "10.00", "99.00", "coinmarketcap_scrape",
    ]


def test_normalize_dispatches_on_source_tag(vendor_payloads):
    hist = normalize(RawPayload(Source.COINGECKO_HISTORICAL, vendor_payloads.market_chart(3), {"token_id": "solana"}))
    assert len(hist) == 3 and hist[0].token_id == "solana"

    current = normalize(
        RawPayload(Source.COINGECKO_CURRENT, [vendor_payloads.coin_market("solana", "sol", 90.0)], {"observed_at": 1})
    )
    assert current[0].source is Source.COINGECKO_CURRENT


def test_normalize_missing_context_raises(vendor_payloads):
    with pytest.raises(PayloadDecodeError):
        normalize(RawPayload(Source.COINGECKO_HISTORICAL, vendor_payloads.market_chart(1), {}))


@pytest.mark.parametrize(
    "payload",
    [
        {"prices": [[1704067200000, 1.0]], "market_caps": {"x": 1}},
        {"prices": [[1704067200000, 1.0]], "total_volumes": "5e6"},
        {"prices": [[1e30, 1.0]]},
        {"prices": [[float("inf"), 1.0]]},
    ],
)
def test_historical_wrong_series_shape_or_timestamp_is_decode_error(payload):
    with pytest.raises(PayloadDecodeError):
        normalize_coingecko_historical(payload, "ethereum")


def test_cmc_quote_block_of_wrong_type_is_decode_error(vendor_payloads):
    coin = vendor_payloads.cmc_quote("ETH", 2200.0)
    coin["quote"] = [coin["quote"]]
    with pytest.raises(PayloadDecodeError):
        normalize_cmc_quotes({"ETH": coin}, observed_at=0)


def test_snapshot_observation_time_out_of_range_is_decode_error(vendor_payloads):
    with pytest.raises(PayloadDecodeError):
        normalize_coingecko_current([vendor_payloads.coin_market("bitcoin", "btc", 1.0)], observed_at=10**20)
