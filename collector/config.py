"""
Collector configuration.

Values come from (lowest to highest precedence):
1. Defaults below
2. Optional YAML file (configs/collector.yml or --config)
3. Environment: DATA_ROOT, COINGECKO_API_KEY, CMC_API_KEY,
   COLLECTOR_SCRAPE_ENABLED, COLLECTOR_DAYS_HISTORICAL
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from data_layer.catalog import CatalogError, TokenCatalog
from data_layer.connectors.coingecko_connector import MAX_IDS_PER_CALL
from data_layer.connectors.coinmarketcap_connector import MAX_SYMBOLS_PER_CALL
from utils.pacing import delay_for_rpm

DEFAULT_CONFIG_PATH = Path("configs/collector.yml")


class ConfigError(ValueError):
    """Invalid or inconsistent collector configuration."""
    pass


@dataclass
class SourceSettings:
    """Per-REST-source pacing and batching."""
    delay_s: float
    batch_size: int
    timeout_s: float = 30.0
    enabled: bool = True


@dataclass
class ScrapeSettings:
    """Browser scraping knobs."""
    enabled: bool = True
    delay_s: float = 3.0
    page_load_timeout_s: float = 45.0
    settle_s: float = 2.0
    headless: bool = True
    days_historical: int = 365


@dataclass
class OutputPaths:
    market_csv: Path
    quotes_csv: Path
    ohlc_csv: Path
    state_file: Path
    log_file: Path

    @classmethod
    def under(cls, root: Path, names: Optional[Dict[str, str]] = None) -> "OutputPaths":
        names = names or {}
        return cls(
            market_csv=root / names.get("market", "cg_data.csv"),
            quotes_csv=root / names.get("quotes", "cmc_data.csv"),
            ohlc_csv=root / names.get("ohlc", "cmc_historical_ohlc.csv"),
            state_file=root / names.get("state", "run_state.json"),
            log_file=root / names.get("log", "collector.log"),
        )


@dataclass
class CollectorConfig:
    """Resolved configuration for one collector run."""
    data_root: Path
    outputs: OutputPaths
    catalog: TokenCatalog
    tokens: List[str]
    days_historical: int = 365
    coingecko: SourceSettings = field(
        default_factory=lambda: SourceSettings(delay_s=delay_for_rpm(10), batch_size=MAX_IDS_PER_CALL)
    )
    coinmarketcap: SourceSettings = field(
        default_factory=lambda: SourceSettings(delay_s=delay_for_rpm(30), batch_size=MAX_SYMBOLS_PER_CALL)
    )
    scrape: ScrapeSettings = field(default_factory=ScrapeSettings)
    coingecko_api_key: Optional[str] = None
    cmc_api_key: Optional[str] = None

    def validate(self) -> None:
        """
        Raise ConfigError for settings that make a run meaningless.

        Every configured token must be in the catalog.
        """
        if not self.tokens:
            raise ConfigError("No tokens configured")
        try:
            self.catalog.validate(self.tokens)
        except CatalogError as e:
            raise ConfigError(str(e)) from e
        if len(set(self.tokens)) != len(self.tokens):
            raise ConfigError("Duplicate tokens in configuration")
        if self.days_historical < 1:
            raise ConfigError("days_historical must be >= 1")
        if not 1 <= self.coingecko.batch_size <= MAX_IDS_PER_CALL:
            raise ConfigError(f"coingecko.batch_size must be within 1..{MAX_IDS_PER_CALL}")
        if not 1 <= self.coinmarketcap.batch_size <= MAX_SYMBOLS_PER_CALL:
            raise ConfigError(f"coinmarketcap.batch_size must be within 1..{MAX_SYMBOLS_PER_CALL}")

    @property
    def cmc_symbols(self) -> List[str]:
        return self.catalog.cmc_symbols(self.tokens)


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).lower() in ("1", "true", "yes", "on")


def _coerce(value: Any, kind: type, name: str) -> Any:
    """Convert a YAML or env value, reporting the offending key as a ConfigError."""
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected {kind.__name__}, got {value!r}") from e


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = raw.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{key}: expected a mapping, got {type(section).__name__}")
    return section


def _source_settings(raw: Dict[str, Any], defaults: SourceSettings, name: str) -> SourceSettings:
    return SourceSettings(
        delay_s=_coerce(raw.get("delay_s", defaults.delay_s), float, f"{name}.delay_s"),
        batch_size=_coerce(raw.get("batch_size", defaults.batch_size), int, f"{name}.batch_size"),
        timeout_s=_coerce(raw.get("timeout_s", defaults.timeout_s), float, f"{name}.timeout_s"),
        enabled=bool(raw.get("enabled", defaults.enabled)),
    )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def load_config(config_path: Optional[Path] = None) -> CollectorConfig:
    """
    Build the run configuration.

    Args:
        config_path: YAML file; when None, configs/collector.yml is used if present

    Raises:
        ConfigError: unreadable YAML, unknown tokens or out-of-range settings
    """
    raw: Dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        raw = _read_yaml(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        raw = _read_yaml(DEFAULT_CONFIG_PATH)
        config_path = DEFAULT_CONFIG_PATH

    data_root = Path(os.getenv("DATA_ROOT") or raw.get("data_root") or "data")

    catalog = TokenCatalog()
    if raw.get("catalog"):
        try:
            catalog = TokenCatalog.from_mapping(raw["catalog"])
        except CatalogError as e:
            raise ConfigError(str(e)) from e
    tokens = raw.get("tokens") or catalog.token_ids()
    if not isinstance(tokens, list):
        raise ConfigError(f"tokens: expected a list of token ids, got {type(tokens).__name__}")
    tokens = [str(t) for t in tokens]

    base = CollectorConfig(data_root=data_root, outputs=OutputPaths.under(data_root), catalog=catalog, tokens=tokens)
    scrape_raw = _section(raw, "scrape")
    scrape = ScrapeSettings(
        enabled=_env_bool("COLLECTOR_SCRAPE_ENABLED", bool(scrape_raw.get("enabled", True))),
        delay_s=_coerce(scrape_raw.get("delay_s", 3.0), float, "scrape.delay_s"),
        page_load_timeout_s=_coerce(scrape_raw.get("page_load_timeout_s", 45.0), float, "scrape.page_load_timeout_s"),
        settle_s=_coerce(scrape_raw.get("settle_s", 2.0), float, "scrape.settle_s"),
        headless=bool(scrape_raw.get("headless", True)),
        days_historical=_coerce(scrape_raw.get("days_historical", 365), int, "scrape.days_historical"),
    )

    config = CollectorConfig(
        data_root=data_root,
        outputs=OutputPaths.under(data_root, _section(raw, "outputs")),
        catalog=catalog,
        tokens=tokens,
        days_historical=_coerce(
            os.getenv("COLLECTOR_DAYS_HISTORICAL") or raw.get("days_historical", 365), int, "days_historical"
        ),
        coingecko=_source_settings(_section(raw, "coingecko"), base.coingecko, "coingecko"),
        coinmarketcap=_source_settings(_section(raw, "coinmarketcap"), base.coinmarketcap, "coinmarketcap"),
        scrape=scrape,
        coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
        cmc_api_key=os.getenv("CMC_API_KEY") or None,
    )
    config.validate()

    if config_path is not None:
        logger.info(f"Loaded collector config from {config_path}")
    logger.debug(f"Collector config: {len(config.tokens)} tokens, data_root={config.data_root}")
    return config
