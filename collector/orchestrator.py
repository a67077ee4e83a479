"""
Collection orchestrator: one sequential pass over every source.

Phase sequence (no re-entry):
  Start
    -> HistoricalBackfill (CoinGecko market_chart)      first run, or forced
    -> CurrentSnapshot (CoinGecko coins/markets)        every run
    -> CurrentSnapshot (CoinMarketCap quotes/latest)    when a key is set
    -> HistoricalScrape (CoinMarketCap web table)       until history is scraped
  End

Each item (token or batch) goes fetch -> normalize -> append, followed by the
source's rate-limit pause whatever the outcome. Item failures are logged and
counted; only a StorageError (output directory or header cannot be created)
stops the run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from selenium.common.exceptions import WebDriverException
from urllib3.exceptions import HTTPError as DriverTransportError

from data_layer.connectors import (
    CoinGeckoConnector,
    CoinMarketCapConnector,
    ConnectorError,
    MissingCredentialError,
)
from data_layer.normalize import RawPayload, normalize
from data_layer.schemas import MARKET_COLUMNS, OHLC_COLUMNS, QUOTE_COLUMNS, Source
from data_layer.scrapers.browser import BrowserConfig
from data_layer.scrapers.coinmarketcap_scraper import CoinMarketCapScraper, ScrapeError
from data_layer.storage import CsvStore, RunMode, RunStateMarker, detect_run_mode, file_exists
from utils.batching import batch_count, chunked
from utils.pacing import FixedDelayPacer

from .config import CollectorConfig
from .ui import ProgressReporter


class Phase(str, Enum):
    HISTORICAL_BACKFILL = "coingecko_historical"
    COINGECKO_SNAPSHOT = "coingecko_current"
    COINMARKETCAP_SNAPSHOT = "coinmarketcap"
    HISTORICAL_SCRAPE = "coinmarketcap_scrape"


@dataclass
class PhaseResult:
    """Outcome of one phase."""
    name: str
    records: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False
    skip_reason: str = ""


@dataclass
class RunSummary:
    """Outcome of one invocation."""
    mode: RunMode
    phases: List[PhaseResult] = field(default_factory=list)
    elapsed_s: float = 0.0
    outputs: List[Path] = field(default_factory=list)
    output_rows: Dict[Path, int] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(p.records for p in self.phases)

    def result(self, phase: Phase) -> Optional[PhaseResult]:
        for p in self.phases:
            if p.name == phase.value:
                return p
        return None


class CollectionOrchestrator:
    """
    Sequence the collection phases for one run.

    Connectors and the scraper factory can be injected; by default they are
    built from the config when their phase starts.
    """

    def __init__(
        self,
        config: CollectorConfig,
        store: Optional[CsvStore] = None,
        reporter: Optional[ProgressReporter] = None,
        coingecko: Optional[CoinGeckoConnector] = None,
        coinmarketcap: Optional[CoinMarketCapConnector] = None,
        scraper_factory: Optional[Callable[[], CoinMarketCapScraper]] = None,
        force_scrape: bool = False,
        force_backfill: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.store = store or CsvStore()
        self.reporter = reporter or ProgressReporter()
        self.marker = RunStateMarker(config.outputs.state_file)
        self._coingecko = coingecko
        self._coinmarketcap = coinmarketcap
        self._scraper_factory = scraper_factory or self._default_scraper
        self.force_scrape = force_scrape
        self.force_backfill = force_backfill
        self._clock = clock
        self._sleep = sleep

    # ----- wiring -----

    def _default_scraper(self) -> CoinMarketCapScraper:
        settings = self.config.scrape
        return CoinMarketCapScraper(
            browser_config=BrowserConfig(
                headless=settings.headless,
                page_load_timeout_s=settings.page_load_timeout_s,
            ),
            settle_s=settings.settle_s,
            sleep=self._sleep,
        )

    def _coingecko_connector(self) -> CoinGeckoConnector:
        if self._coingecko is None:
            settings = self.config.coingecko
            self._coingecko = CoinGeckoConnector(
                api_key=self.config.coingecko_api_key,
                delay_s=settings.delay_s,
                timeout_s=settings.timeout_s,
            )
        return self._coingecko

    def _coinmarketcap_connector(self) -> CoinMarketCapConnector:
        """Raises MissingCredentialError when no key is configured."""
        if self._coinmarketcap is None:
            settings = self.config.coinmarketcap
            self._coinmarketcap = CoinMarketCapConnector(
                api_key=self.config.cmc_api_key,
                delay_s=settings.delay_s,
                timeout_s=settings.timeout_s,
            )
        return self._coinmarketcap

    def _cooldown(self, pacer: FixedDelayPacer) -> None:
        if pacer.enabled:
            self.reporter.waiting(pacer.delay_s)
        pacer.pause()

    # ----- run -----

    def run(self) -> RunSummary:
        """
        Execute every phase in order and return per-phase totals.

        Raises:
            StorageError: an output file or its directory cannot be created
        """
        started = self._clock()
        outputs = self.config.outputs
        mode = detect_run_mode([outputs.market_csv, outputs.quotes_csv], marker=self.marker)
        backfill = mode is RunMode.FIRST_RUN or self.force_backfill
        n_tokens = len(self.config.tokens)
        coingecko_calls = (n_tokens if backfill else 0) + batch_count(n_tokens, self.config.coingecko.batch_size)

        self.reporter.banner(
            "Crypto market data collector",
            [
                f"Tokens: {n_tokens}",
                f"CoinGecko output: {outputs.market_csv}",
                f"CoinMarketCap output: {outputs.quotes_csv}",
                f"Scraped OHLC output: {outputs.ohlc_csv}",
                f"Mode: {'FULL (history + snapshots)' if backfill else 'APPEND (snapshots only)'}",
                f"Rate limits: CoinGecko={self.config.coingecko.delay_s:.0f}s, "
                f"CoinMarketCap={self.config.coinmarketcap.delay_s:.0f}s",
                f"Planned calls: CoinGecko={coingecko_calls}, "
                f"CoinMarketCap={batch_count(n_tokens, self.config.coinmarketcap.batch_size)}",
            ],
        )
        logger.info(f"Run mode: {mode.value}")

        self.store.initialize(outputs.market_csv, MARKET_COLUMNS)
        self.store.initialize(outputs.quotes_csv, QUOTE_COLUMNS)

        summary = RunSummary(mode=mode, outputs=[outputs.market_csv, outputs.quotes_csv])

        if backfill:
            summary.phases.append(self.collect_historical())
        else:
            summary.phases.append(
                self._skip(
                    Phase.HISTORICAL_BACKFILL, "CoinGecko history", "already collected (recurring run)", level="INFO"
                )
            )
        summary.phases.append(self.collect_coingecko_current())
        summary.phases.append(self.collect_coinmarketcap())
        summary.phases.append(self.scrape_historical())
        if file_exists(outputs.ohlc_csv):
            summary.outputs.append(outputs.ohlc_csv)
        summary.output_rows = {path: self.store.row_count(path) for path in summary.outputs}

        summary.elapsed_s = self._clock() - started
        logger.info(
            f"Run complete in {summary.elapsed_s:.0f}s: "
            + ", ".join(f"{p.name}={p.records}" for p in summary.phases)
        )
        self.reporter.summary(summary)
        return summary

    def _skip(self, phase: Phase, title: str, reason: str, level: str = "WARNING") -> PhaseResult:
        logger.log(level, f"Skipping {phase.value}: {reason}")
        self.reporter.skipped(title, reason)
        return PhaseResult(name=phase.value, skipped=True, skip_reason=reason)

    def _append(self, path: Path, records: list, columns, result: PhaseResult, label: str) -> None:
        written = self.store.append(path, records, columns)
        if records and written == 0:
            result.failed += 1
            self.reporter.error(f"Could not write {len(records)} records for {label}")
            return
        result.succeeded += 1
        result.records += written

    # ----- phases -----

    def collect_historical(self) -> PhaseResult:
        """CoinGecko daily history, one call per token."""
        if not self.config.coingecko.enabled:
            return self._skip(Phase.HISTORICAL_BACKFILL, "CoinGecko history", "disabled in config")
        result = PhaseResult(name=Phase.HISTORICAL_BACKFILL.value)
        self.reporter.phase("PHASE 1: CoinGecko historical data")
        connector = self._coingecko_connector()
        path = self.config.outputs.market_csv
        tokens = self.config.tokens

        for i, token_id in enumerate(tokens, 1):
            self.reporter.item(i, len(tokens), f"Collecting historical data for {token_id}...")
            try:
                payload = connector.fetch_historical(token_id, days=self.config.days_historical)
                records = normalize(
                    RawPayload(Source.COINGECKO_HISTORICAL, payload, {"token_id": token_id})
                )
            except ConnectorError as e:
                logger.error(f"Historical fetch failed for {token_id}: {e.describe()}")
                self.reporter.error(str(e))
                result.failed += 1
            else:
                before = result.records
                self._append(path, records, MARKET_COLUMNS, result, token_id)
                if result.records > before:
                    self.reporter.success(f"Collected {result.records - before} historical records")
            finally:
                self._cooldown(connector.pacer)

        self.reporter.phase_total("historical records collected", result.records)
        self.marker.record_phase(Phase.HISTORICAL_BACKFILL.value, records=result.records, backfill=True)
        return result

    def collect_coingecko_current(self) -> PhaseResult:
        """CoinGecko current snapshot, one call per batch of ids."""
        if not self.config.coingecko.enabled:
            return self._skip(Phase.COINGECKO_SNAPSHOT, "CoinGecko collection", "disabled in config")
        result = PhaseResult(name=Phase.COINGECKO_SNAPSHOT.value)
        self.reporter.phase("PHASE 2: CoinGecko current market data")
        connector = self._coingecko_connector()
        path = self.config.outputs.market_csv
        batches = chunked(self.config.tokens, self.config.coingecko.batch_size)

        for n, batch in enumerate(batches, 1):
            self.reporter.item(n, len(batches), f"Fetching current data for {len(batch)} tokens...")
            try:
                payload = connector.fetch_current_batch(batch)
                observed_at = int(self._clock())
                records = normalize(
                    RawPayload(Source.COINGECKO_CURRENT, payload, {"observed_at": observed_at})
                )
            except ConnectorError as e:
                logger.error(f"CoinGecko batch {n} failed: {e.describe()}")
                self.reporter.error(str(e))
                result.failed += 1
            else:
                if len(records) < len(batch):
                    returned = {r.token_id for r in records}
                    logger.warning(f"CoinGecko returned no data for: {', '.join(t for t in batch if t not in returned)}")
                before = result.records
                self._append(path, records, MARKET_COLUMNS, result, f"batch {n}")
                if result.records > before:
                    self.reporter.success(f"Collected {result.records - before} current market records")
            finally:
                self._cooldown(connector.pacer)

        self.reporter.phase_total("current records collected", result.records)
        self.marker.record_phase(Phase.COINGECKO_SNAPSHOT.value)
        return result

    def collect_coinmarketcap(self) -> PhaseResult:
        """CoinMarketCap quotes, one call per batch of symbols; skipped without a key."""
        if not self.config.coinmarketcap.enabled:
            return self._skip(Phase.COINMARKETCAP_SNAPSHOT, "CoinMarketCap collection", "disabled in config")
        try:
            connector = self._coinmarketcap_connector()
        except MissingCredentialError as e:
            return self._skip(
                Phase.COINMARKETCAP_SNAPSHOT,
                "CoinMarketCap collection",
                f"{e} (export CMC_API_KEY='your-api-key-here')",
            )

        result = PhaseResult(name=Phase.COINMARKETCAP_SNAPSHOT.value)
        self.reporter.phase("PHASE 3: CoinMarketCap market data")
        path = self.config.outputs.quotes_csv
        batches = chunked(self.config.cmc_symbols, self.config.coinmarketcap.batch_size)

        for n, batch in enumerate(batches, 1):
            self.reporter.item(n, len(batches), f"Fetching CoinMarketCap data for {len(batch)} tokens...")
            try:
                payload = connector.fetch_quote_batch(batch)
                observed_at = int(self._clock())
                records = normalize(
                    RawPayload(Source.COINMARKETCAP, payload, {"observed_at": observed_at, "convert": connector.convert})
                )
            except ConnectorError as e:
                logger.error(f"CoinMarketCap batch {n} failed: {e.describe()}")
                self.reporter.error(str(e))
                result.failed += 1
            else:
                if len(records) < len(batch):
                    returned = {r.symbol.upper() for r in records}
                    missing = [self.config.catalog.by_cmc_symbol(s) or s for s in batch if s.upper() not in returned]
                    logger.warning(f"CoinMarketCap returned no data for: {', '.join(missing)}")
                before = result.records
                self._append(path, records, QUOTE_COLUMNS, result, f"batch {n}")
                if result.records > before:
                    self.reporter.success(f"Collected {result.records - before} CoinMarketCap records")
            finally:
                self._cooldown(connector.pacer)

        self.reporter.phase_total("CoinMarketCap records collected", result.records)
        self.marker.record_phase(Phase.COINMARKETCAP_SNAPSHOT.value)
        return result

    def _scrape_already_done(self) -> Optional[str]:
        path = self.config.outputs.ohlc_csv
        if file_exists(path):
            return f"{path} already exists"
        state = self.marker.load()
        if state is not None and Phase.HISTORICAL_SCRAPE.value in state.phases_completed:
            logger.warning(f"{path} is missing but scraping completed at "
                           f"{state.phases_completed[Phase.HISTORICAL_SCRAPE.value]}")
            return "history scraped on a previous run (output file missing; use --force-scrape)"
        return None

    def scrape_historical(self) -> PhaseResult:
        """CoinMarketCap web history, one browser tab per token."""
        settings = self.config.scrape
        if not settings.enabled:
            return self._skip(Phase.HISTORICAL_SCRAPE, "CoinMarketCap page scrape", "disabled in config")
        if not self.force_scrape:
            reason = self._scrape_already_done()
            if reason:
                return self._skip(Phase.HISTORICAL_SCRAPE, "CoinMarketCap page scrape", reason)

        result = PhaseResult(name=Phase.HISTORICAL_SCRAPE.value)
        self.reporter.phase("PHASE 4: CoinMarketCap historical page scrape")
        path = self.config.outputs.ohlc_csv

        end = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        start = end - timedelta(days=settings.days_historical)
        pacer = FixedDelayPacer(vendor="coinmarketcap_web", delay_s=settings.delay_s, sleep=self._sleep)
        tokens = self.config.tokens

        try:
            scraper = self._scraper_factory()
            scraper.start()
        except (WebDriverException, DriverTransportError, OSError, ValueError) as e:
            logger.error(f"Could not launch browser: {e}")
            self.reporter.error(f"Could not launch browser: {e}")
            result.failed = len(tokens)
            return result

        try:
            self.store.initialize(path, OHLC_COLUMNS)
            for i, token_id in enumerate(tokens, 1):
                info = self.config.catalog.get(token_id)
                slug = self.config.catalog.scrape_slug(token_id)
                self.reporter.item(i, len(tokens), f"Scraping {info.cmc_symbol} ({slug})...")
                try:
                    rows = scraper.scrape_historical(slug, start, end)
                except ScrapeError as e:
                    logger.warning(f"Scrape failed for {token_id}: {e}")
                    self.reporter.warning(str(e))
                    result.failed += 1
                else:
                    if not rows:
                        logger.warning(f"No valid rows scraped for {token_id}")
                        self.reporter.warning("No data collected")
                        result.failed += 1
                    else:
                        records = normalize(
                            RawPayload(
                                Source.COINMARKETCAP_SCRAPE,
                                rows,
                                {"symbol": info.cmc_symbol, "name": info.name},
                            )
                        )
                        before = result.records
                        self._append(path, records, OHLC_COLUMNS, result, token_id)
                        if result.records > before:
                            self.reporter.success(f"Collected {result.records - before} records")
                if i < len(tokens):
                    self._cooldown(pacer)
        finally:
            scraper.close()

        self.reporter.phase_total("scraped records collected", result.records)
        self.marker.record_phase(Phase.HISTORICAL_SCRAPE.value, records=result.records)
        return result
