"""
CoinMarketCap Pro connector for latest quotes.

Basic plan: 30 calls/minute, 10k credits/month
API Docs: https://coinmarketcap.com/api/documentation/v1/

Supports:
- cryptocurrency/quotes/latest for a comma-joined batch of symbols

Every response carries a ``status`` block; a non-zero ``error_code`` is a
failed call even when the HTTP status is 200.
"""

import os
from typing import Any, Dict, Optional, Sequence

import requests
from loguru import logger

from .base import BaseConnector, MissingCredentialError, PayloadDecodeError, ProviderError
from utils.pacing import delay_for_rpm

MAX_SYMBOLS_PER_CALL = 100


class CoinMarketCapConnector(BaseConnector):
    """
    Connector for CoinMarketCap latest quotes.

    Requires an API key sent in the X-CMC_PRO_API_KEY header.
    """

    API_URL = "https://pro-api.coinmarketcap.com/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        delay_s: float = delay_for_rpm(30),  # 2s nominal + 1s headroom
        timeout_s: float = 30.0,
        convert: str = "USD",
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize CoinMarketCap connector.

        Args:
            api_key: CoinMarketCap key (or from environment CMC_API_KEY)
            delay_s: Pause after every call
            timeout_s: Per-request read timeout
            convert: Quote currency

        Raises:
            MissingCredentialError: if no key is available
        """
        api_key = api_key or os.getenv("CMC_API_KEY")

        if not api_key:
            raise MissingCredentialError(
                "CoinMarketCap API key not found. Set CMC_API_KEY in .env "
                "(get one from https://coinmarketcap.com/api/)"
            )

        super().__init__(
            source_name="coinmarketcap",
            api_key=api_key,
            base_url=self.API_URL,
            delay_s=delay_s,
            timeout_s=timeout_s,
            session=session,
        )
        self.convert = convert

    def _fetch_raw(self, endpoint: str, params: Dict, context: Optional[str] = None) -> Any:
        url = f"{self.API_URL}/{endpoint}"
        headers = {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}

        response = self._get(url, params=params, headers=headers, context=context)
        data = self._decode_json(response, context=context)
        data = self.validate_response(data, expected_keys=["status"], context=context)

        status = data.get("status") or {}
        error_code = status.get("error_code") or 0
        if error_code != 0:
            raise ProviderError(
                f"coinmarketcap: error {error_code}: {status.get('error_message')}",
                status_code=response.status_code,
                body=str(status)[:500],
                context=context,
            )
        return data

    def fetch_quote_batch(self, symbols: Sequence[str]) -> Dict[str, Any]:
        """
        Fetch latest quotes for a batch of symbols (one call).

        Args:
            symbols: At most MAX_SYMBOLS_PER_CALL ticker symbols

        Returns:
            Map of symbol -> coin object with nested ``quote``
        """
        if not symbols:
            return {}
        if len(symbols) > MAX_SYMBOLS_PER_CALL:
            raise ValueError(
                f"CoinMarketCap batch limited to {MAX_SYMBOLS_PER_CALL} symbols, got {len(symbols)}"
            )

        context = f"batch[{len(symbols)}]: {','.join(symbols)}"
        logger.info(f"Fetching CoinMarketCap quotes for {len(symbols)} symbols")
        params = {"symbol": ",".join(symbols), "convert": self.convert}
        data = self._fetch_raw("cryptocurrency/quotes/latest", params, context=context)

        quotes = data.get("data")
        if not isinstance(quotes, dict):
            raise PayloadDecodeError(
                "coinmarketcap: response has no 'data' map",
                body=str(data)[:500],
                context=context,
            )
        missing = [s for s in symbols if s not in quotes]
        if missing:
            logger.warning(f"CoinMarketCap returned no quote for: {', '.join(missing)}")
        return quotes
