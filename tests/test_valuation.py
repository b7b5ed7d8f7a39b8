from decimal import Decimal

from price_cache_service.pricing import Holding, PriceSnapshot, value_holdings


def test_unknown_prices_are_excluded_from_total():
    snapshot = PriceSnapshot(
        prices={"BTC": Decimal("50000"), "ETH": None, "USDC": Decimal("1")},
        last_updated=1_700_000_000_000,
    )
    holdings = [
        Holding(symbol="btc", balance=Decimal("0.5"), wallet="cold"),
        Holding(symbol="ETH", balance=Decimal("2")),
        Holding(symbol="USDC", balance=Decimal("250")),
        Holding(symbol="ETH", balance=Decimal("1"), wallet="hot"),
    ]

    valuation = value_holdings(holdings, snapshot)

    assert valuation.total_usd == Decimal("25250")
    assert valuation.unpriced_symbols == ["ETH"]
    assert valuation.priced_at == 1_700_000_000_000
    assert valuation.holdings[0].value_usd == Decimal("25000")
    assert valuation.holdings[0].wallet == "cold"
    assert valuation.holdings[1].price is None
    assert valuation.holdings[1].value_usd is None


def test_without_snapshot_everything_is_unpriced():
    valuation = value_holdings([Holding(symbol="SOL", balance=Decimal("3"))], None)

    assert valuation.total_usd == Decimal("0")
    assert valuation.unpriced_symbols == ["SOL"]
    assert valuation.priced_at is None
