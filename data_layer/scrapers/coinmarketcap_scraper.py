"""
CoinMarketCap historical-data page scraper.

CoinMarketCap exposes no free historical API, so daily OHLC rows are read from
the rendered table at /currencies/<slug>/historical-data/. The DOM is not a
stable contract: rows are located through a cascade of selectors and every cell
goes through tolerant text parsing.

Parsing rules:
- Numbers may carry a currency prefix, thousands separators and a B/M (also
  K/T) magnitude suffix. Unparseable text becomes 0.0 rather than dropping the
  row; parse_number_checked() reports whether the parse actually succeeded.
- Dates are tried against DATE_FORMATS in order; when none match the raw text
  is kept so the validity gate can still reject it downstream.
- A row is kept only with a non-empty date and a close strictly above zero.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger
from selenium.common.exceptions import (
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from urllib3.exceptions import HTTPError as DriverTransportError

from .browser import BrowserConfig, Driver, init_chrome, navigate_and_wait, open_tab

URL_TEMPLATE = "https://coinmarketcap.com/currencies/{slug}/historical-data/?start={start}&end={end}"

ROW_SELECTORS: Tuple[str, ...] = ("table tbody tr", "table tr", "[role='row']")
CELL_SELECTORS: Tuple[str, ...] = ("td", "[role='cell']")
MIN_CELLS = 7

DATE_FORMATS: Tuple[str, ...] = (
    "%b %d, %Y",   # Jan 02, 2024
    "%B %d, %Y",   # January 02, 2024
    "%d-%m-%Y",
    "%Y-%m-%d",
)

SUFFIX_MULTIPLIERS = {"k": 1e3, "m": 1e6, "b": 1e9, "t": 1e12}
_STRIP_CHARS = re.compile(r"[$,\s ]")


class ScrapeError(Exception):
    """Raised when a token's page cannot be loaded or holds no table rows."""
    pass


@dataclass(frozen=True)
class ScrapedRow:
    """One parsed row of the historical-data table."""
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    market_cap: float


def parse_number_checked(text: Optional[str]) -> Tuple[float, bool]:
    """Parse a display number; returns (value, parsed_ok). Failure yields (0.0, False)."""
    if not text:
        return 0.0, False
    cleaned = _STRIP_CHARS.sub("", text)
    multiplier = 1.0
    if cleaned and cleaned[-1].lower() in SUFFIX_MULTIPLIERS:
        multiplier = SUFFIX_MULTIPLIERS[cleaned[-1].lower()]
        cleaned = cleaned[:-1]
    try:
        return float(cleaned) * multiplier, True
    except ValueError:
        return 0.0, False


def parse_number(text: Optional[str]) -> float:
    """
    Tolerant number parser for table cells.

    >>> parse_number("$1,234.50")
    1234.5
    >>> parse_number("$2.3B")
    2300000000.0
    >>> parse_number("—")
    0.0
    """
    return parse_number_checked(text)[0]


def parse_date(text: Optional[str]) -> str:
    """Normalize a table date to YYYY-MM-DD; unknown formats come back unchanged."""
    text = (text or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return text


def is_valid_row(row: ScrapedRow) -> bool:
    """Row gate: parsed date present and close strictly positive."""
    return bool(row.date) and row.close > 0


def build_url(slug: str, start: date, end: date) -> str:
    return URL_TEMPLATE.format(slug=slug, start=start.strftime("%Y%m%d"), end=end.strftime("%Y%m%d"))


def _cell_text(cell) -> str:
    text = cell.text or cell.get_attribute("textContent") or ""
    return text.strip()


def rows_from_cell_texts(cell_rows: Sequence[Sequence[str]]) -> Tuple[List[ScrapedRow], int]:
    """
    Turn raw cell text rows into validated ScrapedRows.

    Rows shorter than MIN_CELLS (headers, decoration) are dropped. Returns the
    kept rows and the number of numeric cells that fell back to zero.
    """
    rows: List[ScrapedRow] = []
    fallbacks = 0
    for cells in cell_rows:
        if len(cells) < MIN_CELLS:
            continue
        values = []
        for text in cells[1:MIN_CELLS]:
            value, ok = parse_number_checked(text)
            fallbacks += 0 if ok else 1
            values.append(value)
        row = ScrapedRow(parse_date(cells[0]), *values)
        if is_valid_row(row):
            rows.append(row)
    return rows, fallbacks


class CoinMarketCapScraper:
    """
    Scrape daily OHLC history from CoinMarketCap pages.

    One browser session is held for the whole run (use as a context manager);
    each token gets its own tab that is closed as soon as its rows are read.
    """

    def __init__(
        self,
        browser_config: Optional[BrowserConfig] = None,
        settle_s: float = 2.0,
        driver_factory: Optional[Callable[[BrowserConfig], Driver]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.browser_config = browser_config or BrowserConfig()
        self.settle_s = settle_s
        self._driver_factory = driver_factory or init_chrome
        self._sleep = sleep
        self.driver: Optional[Driver] = None

    def __enter__(self) -> "CoinMarketCapScraper":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        if self.driver is None:
            logger.info("Launching headless browser...")
            self.driver = self._driver_factory(self.browser_config)

    def close(self) -> None:
        if self.driver is not None:
            try:
                self.driver.quit()
            except (WebDriverException, DriverTransportError, OSError) as e:
                logger.warning(f"Browser shutdown failed: {e}")
            finally:
                self.driver = None
                logger.info("Browser closed")

    def scrape_historical(self, slug: str, start: date, end: date) -> List[ScrapedRow]:
        """
        Scrape one token's historical table between start and end (inclusive).

        Raises:
            ScrapeError: page load timed out, browser failed, or no rows were found
        """
        if self.driver is None:
            raise RuntimeError("Scraper not started; use it as a context manager")

        url = build_url(slug, start, end)
        logger.debug(f"Scraping {url}")
        try:
            with open_tab(self.driver) as (driver, _):
                navigate_and_wait(
                    driver,
                    url,
                    timeout=self.browser_config.page_load_timeout_s,
                    settle=self.settle_s,
                    sleep=self._sleep,
                )
                cell_rows = self._extract_cell_rows(driver)
        except TimeoutException as e:
            raise ScrapeError(f"{slug}: page load timed out after {self.browser_config.page_load_timeout_s:.0f}s") from e
        except WebDriverException as e:
            raise ScrapeError(f"{slug}: browser error: {e.msg or e}") from e
        except (DriverTransportError, OSError) as e:
            # chromedriver gone: the HTTP link to it fails below selenium's exception layer
            raise ScrapeError(f"{slug}: lost connection to browser: {e}") from e

        if not cell_rows:
            raise ScrapeError(f"{slug}: no table rows found")

        rows, fallbacks = rows_from_cell_texts(cell_rows)
        logger.info(
            f"{slug}: {len(cell_rows)} table rows, {len(rows)} valid, "
            f"{fallbacks} numeric cells defaulted to 0"
        )
        return rows

    def _locate_rows(self, driver: Driver) -> list:
        """First selector in ROW_SELECTORS that matches anything wins."""
        for selector in ROW_SELECTORS:
            elements = driver.find_elements(By.CSS_SELECTOR, selector)
            if elements:
                logger.debug(f"Row selector {selector!r} matched {len(elements)} rows")
                return elements
        return []

    def _extract_cell_rows(self, driver: Driver) -> List[List[str]]:
        cell_rows = []
        for row in self._locate_rows(driver):
            try:
                cells = []
                for selector in CELL_SELECTORS:
                    cells = row.find_elements(By.CSS_SELECTOR, selector)
                    if cells:
                        break
                cell_rows.append([_cell_text(c) for c in cells])
            except StaleElementReferenceException:
                continue
        return cell_rows
