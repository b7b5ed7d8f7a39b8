from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Union


@dataclass(frozen=True, slots=True)
class KnownPrice:
    value: Decimal


class UnknownPrice:
    """Marker for a price that could not be obtained."""

    _instance: "UnknownPrice | None" = None

    def __new__(cls) -> "UnknownPrice":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        return False


UNKNOWN = UnknownPrice()

Price = Union[KnownPrice, UnknownPrice]


def parse_price(raw: Any) -> Price:
    """
    Normalize a raw provider value into a Price.

    Accepts numbers and numeric strings. None, booleans, non-numeric text,
    NaN, infinities, zero and negative values all map to UNKNOWN.
    """

    if raw is None or isinstance(raw, bool):
        return UNKNOWN
    if isinstance(raw, float) and not math.isfinite(raw):
        return UNKNOWN
    try:
        value = Decimal(str(raw).strip()) if isinstance(raw, str) else Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError):
        return UNKNOWN
    if not value.is_finite() or value <= 0:
        return UNKNOWN
    return KnownPrice(value)


@dataclass(frozen=True, slots=True)
class SourceResult:
    symbol: str
    source: str | None
    price: Price = UNKNOWN
    error: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.price, KnownPrice)

    @property
    def value(self) -> Decimal | None:
        return self.price.value if isinstance(self.price, KnownPrice) else None


class SymbolMapping(Mapping[str, str]):
    """Read-only mapping from internal symbol to a provider identifier."""

    __slots__ = ("_ids",)

    def __init__(self, ids: Mapping[str, str] | None = None) -> None:
        self._ids = MappingProxyType(
            {symbol.strip().upper(): provider_id for symbol, provider_id in (ids or {}).items() if provider_id}
        )

    def __getitem__(self, symbol: str) -> str:
        return self._ids[symbol.upper()]

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._ids

    def __iter__(self):
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"SymbolMapping({dict(self._ids)!r})"


def _now_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


@dataclass(frozen=True, slots=True)
class PriceSnapshot:
    prices: Mapping[str, Decimal | None] = field(default_factory=dict)
    last_updated: int | None = None

    def __post_init__(self) -> None:
        # Copy then freeze so callers can never mutate shared state.
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))

    @classmethod
    def empty(cls, symbols: Iterable[str] = ()) -> "PriceSnapshot":
        return cls(prices={symbol: None for symbol in symbols}, last_updated=None)

    @classmethod
    def stamped(cls, prices: Mapping[str, Decimal | None], now: datetime) -> "PriceSnapshot":
        return cls(prices=prices, last_updated=_now_ms(now))

    def price(self, symbol: str) -> Decimal | None:
        return self.prices.get(symbol.upper())

    @property
    def last_updated_at(self) -> datetime | None:
        if self.last_updated is None:
            return None
        return datetime.fromtimestamp(self.last_updated / 1000, tz=timezone.utc)

    def age_seconds(self, now: datetime) -> float | None:
        if self.last_updated is None:
            return None
        return max(0.0, (_now_ms(now) - self.last_updated) / 1000)

    def is_stale(self, now: datetime, threshold_seconds: float) -> bool:
        age = self.age_seconds(now)
        return age is None or age >= threshold_seconds

    def to_payload(self) -> dict[str, float | int | None]:
        payload: dict[str, float | int | None] = {
            symbol: (float(value) if value is not None else None) for symbol, value in self.prices.items()
        }
        payload["lastUpdated"] = self.last_updated
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PriceSnapshot":
        if not isinstance(payload, Mapping):
            raise ValueError("Snapshot payload must be a JSON object")
        last_updated = payload.get("lastUpdated")
        if last_updated is not None:
            if isinstance(last_updated, bool) or not isinstance(last_updated, (int, float)):
                raise ValueError(f"Invalid lastUpdated value: {last_updated!r}")
            last_updated = int(last_updated)
        prices: dict[str, Decimal | None] = {}
        for symbol, raw in payload.items():
            if symbol == "lastUpdated":
                continue
            parsed = parse_price(raw)
            prices[symbol.upper()] = parsed.value if isinstance(parsed, KnownPrice) else None
        return cls(prices=prices, last_updated=last_updated)


__all__ = [
    "KnownPrice",
    "Price",
    "PriceSnapshot",
    "SourceResult",
    "SymbolMapping",
    "UNKNOWN",
    "UnknownPrice",
    "parse_price",
]
