"""
Fixed-delay request pacing for rate-limited market data vendors.

Each vendor gets a pacer with a fixed pause that the caller takes after every
outbound call, whether the call succeeded or not. Delays are chosen a little
above the vendor's nominal calls-per-minute allowance to absorb clock drift.

Environment knobs:
- REQUEST_PACING_ENABLED=true|false (default true)
- REQUEST_PACING_JITTER_MS=min,max (default 0,0)
"""

from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple

from loguru import logger


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).lower() in ("1", "true", "yes", "on")


def _env_int_pair(name: str, default: Tuple[int, int]) -> Tuple[int, int]:
    v = os.getenv(name)
    if not v:
        return default
    try:
        parts = [int(x.strip()) for x in v.split(",")]
        if len(parts) == 2 and parts[0] >= 0 and parts[1] >= parts[0]:
            return (parts[0], parts[1])
    except ValueError:
        pass
    return default


def delay_for_rpm(calls_per_minute: int, headroom_s: float = 1.0) -> float:
    """Seconds between calls for a calls-per-minute limit, plus headroom.

    CoinGecko free tier (10/min) -> 7s, CoinMarketCap basic (30/min) -> 3s.
    """
    if calls_per_minute <= 0:
        raise ValueError("calls_per_minute must be positive")
    return 60.0 / calls_per_minute + headroom_s


@dataclass
class FixedDelayPacer:
    """Blocking pause taken after every call to one vendor."""

    vendor: str
    delay_s: float
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    enabled: bool = field(default_factory=lambda: _env_bool("REQUEST_PACING_ENABLED", True))
    jitter_ms_range: Tuple[int, int] = field(
        default_factory=lambda: _env_int_pair("REQUEST_PACING_JITTER_MS", (0, 0))
    )
    pauses: int = 0

    def pause(self) -> float:
        """Sleep for the vendor delay; returns the seconds actually slept."""
        self.pauses += 1
        if not self.enabled or self.delay_s <= 0:
            return 0.0
        jmin, jmax = self.jitter_ms_range
        sleep_time = self.delay_s + random.uniform(jmin / 1000.0, jmax / 1000.0)
        logger.debug(f"{self.vendor}: waiting {sleep_time:.2f}s (rate limit)")
        self.sleep(sleep_time)
        return sleep_time
