import pytest

from data_layer.catalog import DEFAULT_TOKENS, CatalogError, TokenCatalog


def test_default_catalog_covers_twenty_tokens():
    catalog = TokenCatalog()
    assert len(catalog) == 20
    assert catalog.token_ids() == list(DEFAULT_TOKENS)


def test_symbols_are_upper_cased_in_order():
    catalog = TokenCatalog()
    assert catalog.cmc_symbols(["bitcoin", "avalanche-2", "hedera-hashgraph"]) == ["BTC", "AVAX", "HBAR"]


@pytest.mark.parametrize(
    "token_id,slug",
    [
        ("bitcoin", "bitcoin"),
        ("avalanche-2", "avalanche"),
        ("polkadot", "polkadot-new"),
        ("ripple", "xrp"),
        ("hedera-hashgraph", "hedera"),
    ],
)
def test_scrape_slug_overrides(token_id, slug):
    assert TokenCatalog().scrape_slug(token_id) == slug


def test_unmapped_token_is_rejected():
    catalog = TokenCatalog()
    with pytest.raises(CatalogError, match="not-a-coin"):
        catalog.validate(["bitcoin", "not-a-coin"])
    with pytest.raises(CatalogError):
        catalog.get("not-a-coin")


def test_from_mapping_and_reverse_lookup():
    catalog = TokenCatalog.from_mapping(
        {
            "wrapped-bitcoin": {"symbol": "wbtc", "name": "Wrapped Bitcoin"},
            "the-open-network": {"symbol": "ton", "name": "Toncoin", "scrape_slug": "toncoin"},
        }
    )

    assert catalog.scrape_slug("wrapped-bitcoin") == "wrapped-bitcoin"
    assert catalog.scrape_slug("the-open-network") == "toncoin"
    assert catalog.by_cmc_symbol("ton") == "the-open-network"
    assert catalog.by_cmc_symbol("BTC") is None
    assert "bitcoin" not in catalog


def test_from_mapping_requires_symbol():
    with pytest.raises(CatalogError):
        TokenCatalog.from_mapping({"bitcoin": {"name": "Bitcoin"}})
