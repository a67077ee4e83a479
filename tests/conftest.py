from __future__ import annotations

import json
import shutil
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) in sys.path:
    sys.path.remove(str(_REPO_ROOT))
sys.path.insert(0, str(_REPO_ROOT))

import pytest
from unittest.mock import MagicMock
from selenium import webdriver

from collector.config import CollectorConfig, OutputPaths, ScrapeSettings, SourceSettings
from data_layer.catalog import TokenCatalog


@pytest.fixture(autouse=True)
def _no_request_pacing(monkeypatch):
    """Pacers built during tests never sleep."""
    monkeypatch.setenv("REQUEST_PACING_ENABLED", "false")
    monkeypatch.delenv("REQUEST_PACING_JITTER_MS", raising=False)
    monkeypatch.delenv("CMC_API_KEY", raising=False)
    monkeypatch.delenv("COINGECKO_API_KEY", raising=False)
    monkeypatch.delenv("COLLECTOR_SCRAPE_ENABLED", raising=False)
    monkeypatch.delenv("COLLECTOR_DAYS_HISTORICAL", raising=False)


@pytest.fixture()
def temp_data_root(tmp_path, monkeypatch):
    """
    Isolated DATA_ROOT for tests (keeps CSV/state files away from the repo).
    Cleans up on teardown.
    """
    data_root = tmp_path / "data_root"
    data_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    yield data_root
    shutil.rmtree(data_root, ignore_errors=True)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """
    Records GET calls and answers them from a handler.

    The handler receives (url, params) and returns a FakeResponse or raises.
    """

    def __init__(self, handler: Callable[[str, Dict], FakeResponse]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {}), "timeout": timeout})
        return self.handler(url, params or {})

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_session():
    """Factory: fake_session(handler) -> FakeSession."""
    return FakeSession


def market_chart_payload(days: int, start_ms: int = 1704067200000, price: float = 100.0) -> Dict[str, List]:
    """CoinGecko market_chart body with ``days`` daily points."""
    day_ms = 86_400_000
    return {
        "prices": [[start_ms + i * day_ms, price + i] for i in range(days)],
        "market_caps": [[start_ms + i * day_ms, (price + i) * 1e6] for i in range(days)],
        "total_volumes": [[start_ms + i * day_ms, (price + i) * 1e4] for i in range(days)],
    }


def coin_market(token_id: str, symbol: str, price: float) -> Dict[str, Any]:
    """One CoinGecko coins/markets entry."""
    return {
        "id": token_id,
        "symbol": symbol,
        "name": token_id.title(),
        "current_price": price,
        "market_cap": price * 1e6,
        "total_volume": price * 1e4,
        "high_24h": price * 1.05,
        "low_24h": price * 0.95,
        "price_change_24h": price * 0.01,
        "price_change_percentage_24h": 1.0,
        "circulating_supply": 1e6,
        "total_supply": None,
        "ath": price * 2,
        "ath_date": "2021-11-10T14:24:11.849Z",
    }


def cmc_quote(symbol: str, price: float) -> Dict[str, Any]:
    """One CoinMarketCap quotes/latest ``data`` entry."""
    return {
        "symbol": symbol,
        "name": symbol.title(),
        "slug": symbol.lower(),
        "circulating_supply": 1e6,
        "total_supply": 2e6,
        "max_supply": None,
        "quote": {
            "USD": {
                "price": price,
                "volume_24h": price * 1e4,
                "volume_change_24h": -2.5,
                "percent_change_1h": 0.1,
                "percent_change_24h": 1.2,
                "percent_change_7d": -3.4,
                "market_cap": price * 1e6,
                "market_cap_dominance": 12.3456,
                "last_updated": "2024-01-01T00:00:00.000Z",
            }
        },
    }


@pytest.fixture()
def collector_config(temp_data_root) -> CollectorConfig:
    """Three-token config writing under the temp DATA_ROOT, scraping disabled."""
    catalog = TokenCatalog()
    return CollectorConfig(
        data_root=temp_data_root,
        outputs=OutputPaths.under(temp_data_root),
        catalog=catalog,
        tokens=["bitcoin", "ethereum", "solana"],
        days_historical=10,
        coingecko=SourceSettings(delay_s=7.0, batch_size=250),
        coinmarketcap=SourceSettings(delay_s=3.0, batch_size=100),
        scrape=ScrapeSettings(enabled=False, delay_s=3.0),
    )


@pytest.fixture()
def vendor_payloads():
    """Builders for realistic vendor response bodies."""
    return SimpleNamespace(
        market_chart=market_chart_payload,
        coin_market=coin_market,
        cmc_quote=cmc_quote,
    )


@pytest.fixture()
def fake_response():
    """Factory: fake_response(status, payload, text=None) -> FakeResponse."""
    return FakeResponse


@pytest.fixture()
def mock_driver():
    """Mock Selenium WebDriver whose pages are always ready and network-idle."""
    driver = MagicMock(spec=webdriver.Chrome)
    driver.current_window_handle = "base-tab"
    driver.execute_script.return_value = "complete"
    driver.get_log.return_value = []
    driver.find_elements.return_value = []
    return driver


def table_row(cells: List[str]) -> MagicMock:
    """A mocked <tr> whose <td> children carry the given texts."""
    row = MagicMock()
    tds = []
    for text in cells:
        td = MagicMock()
        td.text = text
        tds.append(td)
    row.find_elements.side_effect = lambda by, selector: tds if selector == "td" else []
    return row


@pytest.fixture()
def make_table_row():
    return table_row
