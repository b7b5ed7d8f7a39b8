from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable

from .models import PriceSnapshot


@dataclass(slots=True)
class Holding:
    symbol: str
    balance: Decimal
    wallet: str | None = None


@dataclass(slots=True)
class HoldingValue:
    symbol: str
    balance: Decimal
    price: Decimal | None
    value_usd: Decimal | None
    wallet: str | None = None


@dataclass(slots=True)
class PortfolioValuation:
    holdings: list[HoldingValue] = field(default_factory=list)
    total_usd: Decimal = Decimal("0")
    unpriced_symbols: list[str] = field(default_factory=list)
    priced_at: int | None = None


def _as_decimal(value: object) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid balance: {value!r}") from exc


def value_holdings(holdings: Iterable[Holding], snapshot: PriceSnapshot | None) -> PortfolioValuation:
    """
    Price each holding with the snapshot.

    Holdings without a known price stay in the result with ``value_usd=None``
    and are left out of the total.
    """

    valuation = PortfolioValuation(priced_at=snapshot.last_updated if snapshot else None)
    for holding in holdings:
        symbol = holding.symbol.upper()
        balance = _as_decimal(holding.balance)
        price = snapshot.price(symbol) if snapshot is not None else None
        value = balance * price if price is not None else None
        valuation.holdings.append(
            HoldingValue(symbol=symbol, balance=balance, price=price, value_usd=value, wallet=holding.wallet)
        )
        if value is None:
            if symbol not in valuation.unpriced_symbols:
                valuation.unpriced_symbols.append(symbol)
        else:
            valuation.total_usd += value
    return valuation


__all__ = ["Holding", "HoldingValue", "PortfolioValuation", "value_holdings"]
