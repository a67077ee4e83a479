"""
CoinGecko connector for daily history and current market snapshots.

Free tier: ~10-15 calls/minute (demo key optional)
API Docs: https://docs.coingecko.com/reference/introduction

Supports:
- coins/{id}/market_chart: parallel [timestamp_ms, value] series for
  prices, market caps and volumes
- coins/markets: one object per coin for a comma-joined batch of ids
"""

import os
from typing import Any, Dict, List, Optional, Sequence

import requests
from loguru import logger

from .base import BaseConnector, PayloadDecodeError
from utils.pacing import delay_for_rpm

# coins/markets returns at most 250 coins per page
MAX_IDS_PER_CALL = 250
DEFAULT_DAYS_HISTORICAL = 365


class CoinGeckoConnector(BaseConnector):
    """
    Connector for CoinGecko market data.

    Free tier provides:
    - Up to 365 days of daily history per coin
    - Batched current prices, volumes, supplies and ATH
    """

    API_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        delay_s: float = delay_for_rpm(10),  # 6s nominal + 1s headroom
        timeout_s: float = 30.0,
        vs_currency: str = "usd",
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize CoinGecko connector.

        Args:
            api_key: Demo API key (or from environment COINGECKO_API_KEY); optional
            delay_s: Pause after every call
            timeout_s: Per-request read timeout
            vs_currency: Quote currency for prices
        """
        api_key = api_key or os.getenv("COINGECKO_API_KEY") or None

        super().__init__(
            source_name="coingecko",
            api_key=api_key,
            base_url=self.API_URL,
            delay_s=delay_s,
            timeout_s=timeout_s,
            session=session,
        )
        self.vs_currency = vs_currency

        if not api_key:
            logger.info("CoinGecko: no API key set, using public rate limits")

    def _fetch_raw(self, endpoint: str, params: Dict, context: Optional[str] = None) -> Any:
        url = f"{self.API_URL}/{endpoint}"
        api_params = dict(params)
        if self.api_key:
            api_params["x_cg_demo_api_key"] = self.api_key

        response = self._get(url, params=api_params, context=context)
        return self._decode_json(response, context=context)

    def fetch_historical(self, token_id: str, days: int = DEFAULT_DAYS_HISTORICAL) -> Dict[str, List]:
        """
        Fetch daily price / market cap / volume history for one coin.

        Args:
            token_id: CoinGecko coin id (e.g. 'bitcoin')
            days: Days of history to request

        Returns:
            Dict with 'prices', 'market_caps', 'total_volumes' series
        """
        logger.info(f"Fetching {days}d history for {token_id}")
        params = {
            "vs_currency": self.vs_currency,
            "days": days,
            "interval": "daily",
        }
        data = self._fetch_raw(f"coins/{token_id}/market_chart", params, context=token_id)
        return self.validate_response(data, expected_keys=["prices"], context=token_id)

    def fetch_current_batch(self, token_ids: Sequence[str]) -> List[Dict]:
        """
        Fetch current market objects for a batch of coin ids (one call).

        Args:
            token_ids: At most MAX_IDS_PER_CALL coin ids

        Returns:
            List of coin market objects
        """
        if not token_ids:
            return []
        if len(token_ids) > MAX_IDS_PER_CALL:
            raise ValueError(f"CoinGecko accepts at most {MAX_IDS_PER_CALL} ids per call, got {len(token_ids)}")

        context = f"batch[{len(token_ids)}]: {','.join(token_ids)}"
        logger.info(f"Fetching current market data for {len(token_ids)} coins")
        params = {
            "vs_currency": self.vs_currency,
            "ids": ",".join(token_ids),
            "order": "market_cap_desc",
            "per_page": len(token_ids),
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": "1h,24h,7d",
        }
        data = self._fetch_raw("coins/markets", params, context=context)
        if not isinstance(data, list):
            raise PayloadDecodeError(
                f"coingecko: coins/markets returned {type(data).__name__}, expected list",
                body=str(data)[:500],
                context=context,
            )
        return data
