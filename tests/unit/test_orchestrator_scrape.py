import io
from datetime import date

import pytest
from rich.console import Console
from selenium.common.exceptions import WebDriverException

from collector.orchestrator import CollectionOrchestrator, Phase
from collector.ui import ProgressReporter
from data_layer.schemas import OHLC_COLUMNS
from data_layer.scrapers import ScrapedRow, ScrapeError
from data_layer.storage import RunStateMarker

NOW = 1704110400.0  # 2024-01-01T12:00:00Z


class FakeScraper:
    """Returns two rows for bitcoin, fails for ethereum, finds nothing for the rest."""

    def __init__(self):
        self.started = False
        self.closed = False
        self.requests = []

    def start(self):
        self.started = True

    def close(self):
        self.closed = True

    def scrape_historical(self, slug, start, end):
        self.requests.append((slug, start, end))
        if slug == "bitcoin":
            return [
                ScrapedRow("2024-01-01", 42000.0, 44200.0, 41900.0, 44000.0, 18.3e9, 860.0e9),
                ScrapedRow("2023-12-31", 42100.0, 42800.0, 41600.0, 42000.0, 16.0e9, 822.0e9),
            ]
        if slug == "ethereum":
            raise ScrapeError("ethereum: page load timed out after 45s")
        return []


@pytest.fixture()
def scrape_config(collector_config):
    collector_config.scrape.enabled = True
    collector_config.scrape.days_historical = 365
    return collector_config


def _orchestrator(config, scraper_factory, sleeps=None, force_scrape=False):
    return CollectionOrchestrator(
        config,
        reporter=ProgressReporter(Console(file=io.StringIO(), width=120)),
        scraper_factory=scraper_factory,
        force_scrape=force_scrape,
        clock=lambda: NOW,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
    )


def test_scrape_phase_tags_rows_and_isolates_failures(scrape_config):
    scraper = FakeScraper()

    result = _orchestrator(scrape_config, lambda: scraper).scrape_historical()

    assert (result.records, result.succeeded, result.failed) == (2, 1, 2)
    assert [slug for slug, _, _ in scraper.requests] == ["bitcoin", "ethereum", "solana"]
    assert scraper.requests[0][1:] == (date(2023, 1, 1), date(2024, 1, 1))
    assert scraper.started and scraper.closed

    lines = scrape_config.outputs.ohlc_csv.read_text().splitlines()
    assert lines[0] == ",".join(OHLC_COLUMNS)
    assert lines[1] == (
        "2024-01-01,BTC,Bitcoin,42000.00000000,44200.00000000,41900.00000000,44000.00000000,"
        "18300000000.00,860000000000.00,coinmarketcap_scrape"
    )
    assert len(lines) == 3

    state = RunStateMarker(scrape_config.outputs.state_file).load()
    assert Phase.HISTORICAL_SCRAPE.value in state.phases_completed


def test_scrape_delay_between_tokens_but_not_after_last(scrape_config, monkeypatch):
    monkeypatch.setenv("REQUEST_PACING_ENABLED", "true")
    sleeps = []

    _orchestrator(scrape_config, FakeScraper, sleeps=sleeps).scrape_historical()

    assert sleeps == [3.0, 3.0]


def test_scrape_skipped_when_ohlc_file_exists(scrape_config):
    scrape_config.outputs.ohlc_csv.write_text(",".join(OHLC_COLUMNS) + "\n")
    scraper = FakeScraper()

    result = _orchestrator(scrape_config, lambda: scraper).scrape_historical()

    assert result.skipped
    assert scraper.requests == []


def test_force_scrape_appends_even_when_file_exists(scrape_config):
    scrape_config.outputs.ohlc_csv.write_text(",".join(OHLC_COLUMNS) + "\n")

    result = _orchestrator(scrape_config, FakeScraper, force_scrape=True).scrape_historical()

    assert not result.skipped
    assert result.records == 2


def test_scrape_skipped_when_marker_says_done(scrape_config):
    RunStateMarker(scrape_config.outputs.state_file).record_phase(Phase.HISTORICAL_SCRAPE.value, records=2)

    result = _orchestrator(scrape_config, FakeScraper).scrape_historical()

    assert result.skipped
    assert "--force-scrape" in result.skip_reason


def test_scrape_disabled(collector_config):
    result = _orchestrator(collector_config, FakeScraper).scrape_historical()
    assert result.skipped
    assert not collector_config.outputs.ohlc_csv.exists()


def test_browser_launch_failure_is_not_fatal(scrape_config):
    def _no_browser():
        raise WebDriverException("chrome not reachable")

    result = _orchestrator(scrape_config, _no_browser).scrape_historical()

    assert not result.skipped
    assert result.failed == 3
    assert result.records == 0
    # no header-only file left behind to block the next run's scrape
    assert not scrape_config.outputs.ohlc_csv.exists()
