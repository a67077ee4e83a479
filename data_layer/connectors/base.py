"""
Base connector class for rate-limited REST market data vendors.

All data connectors inherit from BaseConnector and implement:
- _fetch_raw(): one HTTP call against a vendor endpoint, returning decoded JSON

Calls are never retried within a run. Network errors, non-2xx responses,
undecodable bodies and vendor-reported error codes all surface as a
ConnectorError subclass carrying the status code, a body excerpt and the
token/batch context, so the caller can log it and move on.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import requests
from loguru import logger

from utils.pacing import FixedDelayPacer

BODY_EXCERPT_CHARS = 500


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        context: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.context = context

    def describe(self) -> str:
        """One-line diagnostic with everything known about the failure."""
        parts = [str(self)]
        if self.context:
            parts.append(f"context={self.context}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.body:
            parts.append(f"body={self.body}")
        return " | ".join(parts)


class HTTPStatusError(ConnectorError):
    """Raised on a non-2xx HTTP response."""
    pass


class ProviderError(ConnectorError):
    """Raised when the vendor reports an application-level error code."""
    pass


class PayloadDecodeError(ConnectorError):
    """Raised when a payload is not valid JSON or not the expected shape."""
    pass


class MissingCredentialError(ConnectorError):
    """Raised when a vendor requiring a key is constructed without one."""
    pass


class BaseConnector(ABC):
    """
    Base class for all REST connectors.

    Provides:
    - Shared HTTP session with an explicit (connect, read) timeout
    - Typed failures for transport, status and decode errors
    - A fixed-delay pacer the caller pauses on after every call
    """

    def __init__(
        self,
        source_name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        delay_s: float = 1.0,
        timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize connector.

        Args:
            source_name: Name of data source (e.g., 'coingecko', 'coinmarketcap')
            api_key: API key for authentication
            base_url: Base URL for API
            delay_s: Pause after every call, in seconds
            timeout_s: Read timeout per request, in seconds
            session: Optional pre-built session (tests inject fakes here)
        """
        self.source_name = source_name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout: Tuple[float, float] = (min(10.0, timeout_s), timeout_s)
        self.pacer = FixedDelayPacer(vendor=source_name, delay_s=delay_s)
        self.session = session or self._create_session()

        logger.info(f"Initialized {source_name} connector (delay={delay_s}s, timeout={timeout_s}s)")

    def _create_session(self) -> requests.Session:
        """Create requests session with default headers."""
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})
        return session

    def reset_session(self):
        """Rebuild the HTTP session after network faults to force new connections."""
        try:
            self.session.close()
        except requests.RequestException:
            pass
        self.session = self._create_session()
        logger.warning(f"{self.source_name}: HTTP session reset after network failure")

    def cooldown(self) -> float:
        """Take the vendor's rate-limit pause. Callers do this after every call."""
        return self.pacer.pause()

    def _get(
        self,
        url: str,
        params: Optional[Dict] = None,
        headers: Optional[Dict] = None,
        context: Optional[str] = None,
    ) -> requests.Response:
        """
        Make one GET request.

        Args:
            url: Request URL
            params: Query parameters
            headers: Request headers
            context: Token or batch description for error messages

        Returns:
            Response object with a 2xx status

        Raises:
            ConnectorError: on transport failure
            HTTPStatusError: on non-2xx status
        """
        logger.debug(f"HTTP GET begin: {url} params={self._redact(params)}")
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            if isinstance(e, requests.exceptions.ConnectionError):
                self.reset_session()
            raise ConnectorError(f"{self.source_name}: request failed: {e}", context=context) from e

        logger.debug(f"HTTP GET status: {response.status_code} for {url}")
        if not 200 <= response.status_code < 300:
            raise HTTPStatusError(
                f"{self.source_name}: HTTP {response.status_code}",
                status_code=response.status_code,
                body=self._excerpt(response),
                context=context,
            )
        return response

    def _decode_json(self, response: requests.Response, context: Optional[str] = None) -> Any:
        """
        Decode a JSON body.

        Raises:
            PayloadDecodeError: if the body is not JSON
        """
        try:
            return response.json()
        except ValueError as e:
            raise PayloadDecodeError(
                f"{self.source_name}: invalid JSON response: {e}",
                status_code=response.status_code,
                body=self._excerpt(response),
                context=context,
            ) from e

    def validate_response(self, data: Any, expected_keys: Optional[list] = None, context: Optional[str] = None) -> Any:
        """
        Validate a decoded JSON object contains expected keys.

        Raises:
            PayloadDecodeError: if validation fails
        """
        if expected_keys:
            if not isinstance(data, dict):
                raise PayloadDecodeError(
                    f"{self.source_name}: expected JSON object, got {type(data).__name__}",
                    context=context,
                )
            missing = set(expected_keys) - set(data.keys())
            if missing:
                raise PayloadDecodeError(
                    f"{self.source_name}: response missing required keys: {sorted(missing)}",
                    body=str(data)[:BODY_EXCERPT_CHARS],
                    context=context,
                )
        return data

    @staticmethod
    def _excerpt(response: requests.Response) -> str:
        try:
            text = response.text or ""
        except (UnicodeDecodeError, AttributeError):
            return ""
        return text[:BODY_EXCERPT_CHARS]

    @staticmethod
    def _redact(params: Optional[Dict]) -> Optional[Dict]:
        if not params:
            return params
        return {k: ("***" if "key" in k.lower() else v) for k, v in params.items()}

    @abstractmethod
    def _fetch_raw(self, endpoint: str, params: Dict, context: Optional[str] = None) -> Any:
        """
        Fetch raw data from vendor API.

        Must be implemented by subclasses.

        Returns:
            Decoded JSON payload (dict or list)
        """
        pass
