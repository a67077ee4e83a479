"""REST connectors for crypto market data vendors."""

from .base import (
    BaseConnector,
    ConnectorError,
    HTTPStatusError,
    MissingCredentialError,
    PayloadDecodeError,
    ProviderError,
)
from .coingecko_connector import CoinGeckoConnector
from .coinmarketcap_connector import CoinMarketCapConnector

__all__ = [
    "BaseConnector",
    "ConnectorError",
    "HTTPStatusError",
    "MissingCredentialError",
    "PayloadDecodeError",
    "ProviderError",
    "CoinGeckoConnector",
    "CoinMarketCapConnector",
]
