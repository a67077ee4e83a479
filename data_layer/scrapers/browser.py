"""
Selenium browser helpers for scraping rendered market data tables.

Provides headless Chrome setup, per-token tab scoping and a page-load wait
that combines document readiness, network quiet (from Chrome performance
logs) and a fixed settle delay for content rendered after the network idles.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Tuple

from loguru import logger
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait
from urllib3.exceptions import HTTPError as DriverTransportError
from webdriver_manager.chrome import ChromeDriverManager

Driver = webdriver.Chrome

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_PAGE_LOAD_TIMEOUT: float = 45.0
DEFAULT_SETTLE: float = 2.0
NETWORK_POLL: float = 0.5


@dataclass
class BrowserConfig:
    """Configuration settings for browser initialization."""
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    window_size: str = "1440x900"
    page_load_timeout_s: float = DEFAULT_PAGE_LOAD_TIMEOUT


def setup_chrome_options(config: BrowserConfig) -> Options:
    """Configure Chrome options with specified settings."""
    options = Options()
    options.add_argument(f"user-agent={config.user_agent}")
    options.add_argument("--disable-blink-features=AutomationControlled")
    options.add_argument(f"--window-size={config.window_size.replace('x', ',')}")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.set_capability("goog:loggingPrefs", {"performance": "ALL"})

    if config.headless:
        options.add_argument("--headless=new")

    return options


def init_chrome(config: BrowserConfig) -> Driver:
    """Launch one Chrome session; the caller owns it and must quit() it."""
    options = setup_chrome_options(config)
    driver = webdriver.Chrome(
        service=Service(ChromeDriverManager().install()),
        options=options,
    )
    driver.set_page_load_timeout(config.page_load_timeout_s)
    logger.info(f"Chrome session started (headless={config.headless})")
    return driver


def pending_network_events(driver: Driver) -> int:
    """Performance-log entries recorded since the previous call (the log drains on read)."""
    try:
        return len(driver.get_log("performance"))
    except WebDriverException:
        return 0


def wait_for_document_ready(driver: Driver, timeout: float) -> None:
    """Block until document.readyState is 'complete' or raise TimeoutException."""
    WebDriverWait(driver, timeout).until(
        lambda d: d.execute_script("return document.readyState") == "complete"
    )


def wait_for_network_idle(
    driver: Driver,
    timeout: float,
    poll: float = NETWORK_POLL,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll until one interval passes with no new network events; False on timeout."""
    end_time = time.monotonic() + timeout
    pending_network_events(driver)
    while time.monotonic() < end_time:
        sleep(poll)
        if pending_network_events(driver) == 0:
            return True
    return False


def navigate_and_wait(
    driver: Driver,
    url: str,
    timeout: float = DEFAULT_PAGE_LOAD_TIMEOUT,
    settle: float = DEFAULT_SETTLE,
    sleep: Callable[[float], None] = time.sleep,
) -> Driver:
    """
    Navigate to URL and wait for rendered content.

    Raises:
        TimeoutException: if navigation or document readiness exceeds timeout
    """
    started = time.monotonic()
    driver.get(url)
    remaining = max(1.0, timeout - (time.monotonic() - started))
    wait_for_document_ready(driver, remaining)
    remaining = max(1.0, timeout - (time.monotonic() - started))
    if not wait_for_network_idle(driver, remaining, sleep=sleep):
        logger.debug(f"Network never went idle for {url}; continuing after settle delay")
    sleep(settle)
    return driver


@contextmanager
def open_tab(driver: Driver) -> Iterator[Tuple[Driver, str]]:
    """
    Open a fresh tab for one unit of work and close it afterwards.

    Yields the driver (switched to the new tab) and the new tab's handle.
    The original tab is restored even if the work raised.
    """
    base_handle = driver.current_window_handle
    driver.switch_to.new_window("tab")
    tab_handle = driver.current_window_handle
    try:
        yield driver, tab_handle
    finally:
        try:
            driver.close()
        except (WebDriverException, DriverTransportError, OSError) as e:
            logger.debug(f"Closing tab failed: {e}")
        driver.switch_to.window(base_handle)


__all__ = [
    "BrowserConfig",
    "Driver",
    "TimeoutException",
    "WebDriverException",
    "init_chrome",
    "navigate_and_wait",
    "open_tab",
    "setup_chrome_options",
    "wait_for_network_idle",
]
