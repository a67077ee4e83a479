"""
Token catalog: canonical CoinGecko id -> exchange symbol, display name and
CoinMarketCap page slug.

The orchestrator only collects tokens present here; an unmapped token is a
configuration error raised before any network call is made.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional


class CatalogError(ValueError):
    """Raised when configured tokens are missing from the catalog."""
    pass


@dataclass(frozen=True)
class TokenInfo:
    """Catalog entry for one token."""
    symbol: str
    name: str
    scrape_slug: Optional[str] = None

    @property
    def cmc_symbol(self) -> str:
        return self.symbol.upper()


DEFAULT_TOKENS: Dict[str, TokenInfo] = {
    "bitcoin": TokenInfo("btc", "Bitcoin", "bitcoin"),
    "ethereum": TokenInfo("eth", "Ethereum", "ethereum"),
    "solana": TokenInfo("sol", "Solana", "solana"),
    "cardano": TokenInfo("ada", "Cardano", "cardano"),
    "ripple": TokenInfo("xrp", "XRP", "xrp"),
    "polkadot": TokenInfo("dot", "Polkadot", "polkadot-new"),
    "dogecoin": TokenInfo("doge", "Dogecoin", "dogecoin"),
    "avalanche-2": TokenInfo("avax", "Avalanche", "avalanche"),
    "chainlink": TokenInfo("link", "Chainlink", "chainlink"),
    "polygon": TokenInfo("matic", "Polygon", "polygon"),
    "uniswap": TokenInfo("uni", "Uniswap", "uniswap"),
    "litecoin": TokenInfo("ltc", "Litecoin", "litecoin"),
    "stellar": TokenInfo("xlm", "Stellar", "stellar"),
    "cosmos": TokenInfo("atom", "Cosmos", "cosmos"),
    "monero": TokenInfo("xmr", "Monero", "monero"),
    "tron": TokenInfo("trx", "TRON", "tron"),
    "ethereum-classic": TokenInfo("etc", "Ethereum Classic", "ethereum-classic"),
    "filecoin": TokenInfo("fil", "Filecoin", "filecoin"),
    "hedera-hashgraph": TokenInfo("hbar", "Hedera", "hedera"),
    "aptos": TokenInfo("apt", "Aptos", "aptos"),
}


class TokenCatalog:
    """Fixed lookup of token metadata keyed by canonical id."""

    def __init__(self, entries: Optional[Mapping[str, TokenInfo]] = None):
        self._entries: Dict[str, TokenInfo] = dict(entries if entries is not None else DEFAULT_TOKENS)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping]) -> "TokenCatalog":
        """Build a catalog from plain dicts (e.g. a YAML ``tokens:`` block)."""
        entries = {}
        for token_id, data in raw.items():
            if not data or "symbol" not in data:
                raise CatalogError(f"Catalog entry for {token_id!r} needs a symbol")
            entries[str(token_id)] = TokenInfo(
                symbol=str(data["symbol"]),
                name=str(data.get("name", "")),
                scrape_slug=data.get("scrape_slug") or None,
            )
        return cls(entries)

    def __contains__(self, token_id: str) -> bool:
        return token_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, token_id: str) -> TokenInfo:
        try:
            return self._entries[token_id]
        except KeyError:
            raise CatalogError(f"Token {token_id!r} is not in the catalog") from None

    def token_ids(self) -> List[str]:
        return list(self._entries)

    def validate(self, token_ids: Iterable[str]) -> None:
        """Raise CatalogError naming every configured token without an entry."""
        missing = [t for t in token_ids if t not in self._entries]
        if missing:
            raise CatalogError(f"Unmapped tokens in configuration: {', '.join(missing)}")

    def cmc_symbols(self, token_ids: Iterable[str]) -> List[str]:
        """Upper-cased CoinMarketCap symbols for the given ids, order kept."""
        return [self.get(t).cmc_symbol for t in token_ids]

    def scrape_slug(self, token_id: str) -> str:
        info = self.get(token_id)
        return info.scrape_slug or token_id

    def by_cmc_symbol(self, symbol: str) -> Optional[str]:
        """Reverse lookup: canonical id for a CoinMarketCap symbol, if any."""
        symbol = symbol.upper()
        for token_id, info in self._entries.items():
            if info.cmc_symbol == symbol:
                return token_id
        return None
