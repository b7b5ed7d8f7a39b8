from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from price_cache_service.pricing.models import (
    UNKNOWN,
    KnownPrice,
    PriceSnapshot,
    SourceResult,
    SymbolMapping,
    UnknownPrice,
    parse_price,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("51000.25", Decimal("51000.25")),
        (140.5, Decimal("140.5")),
        (3, Decimal("3")),
        (" 0.9998 ", Decimal("0.9998")),
    ],
)
def test_parse_price_accepts_positive_numbers(raw, expected):
    price = parse_price(raw)
    assert isinstance(price, KnownPrice)
    assert price.value == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "NaN", float("nan"), float("inf"), "-1", 0, "0", -5.5, True, {}])
def test_parse_price_rejects_invalid_values(raw):
    assert parse_price(raw) is UNKNOWN


def test_unknown_is_a_falsy_singleton():
    assert UnknownPrice() is UNKNOWN
    assert not UNKNOWN
    assert repr(UNKNOWN) == "UNKNOWN"


def test_source_result_exposes_value_only_when_known():
    ok = SourceResult(symbol="BTC", source="coincap", price=KnownPrice(Decimal("50000")))
    failed = SourceResult(symbol="BTC", source="coincap", error="HTTP 500")
    assert ok.ok and ok.value == Decimal("50000")
    assert not failed.ok and failed.value is None


def test_symbol_mapping_is_case_insensitive_and_read_only():
    mapping = SymbolMapping({"btc": "bitcoin", "XMR": "monero", "ETH": ""})
    assert mapping["BTC"] == "bitcoin"
    assert "btc" in mapping
    assert "ETH" not in mapping
    assert len(mapping) == 2
    with pytest.raises(TypeError):
        mapping["SOL"] = "solana"  # type: ignore[index]


def test_snapshot_is_an_immutable_copy():
    source = {"BTC": Decimal("50000")}
    snapshot = PriceSnapshot(prices=source, last_updated=1)
    source["BTC"] = Decimal("1")
    assert snapshot.price("btc") == Decimal("50000")
    with pytest.raises(TypeError):
        snapshot.prices["BTC"] = Decimal("2")  # type: ignore[index]


def test_snapshot_staleness_uses_threshold():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    snapshot = PriceSnapshot.stamped({"BTC": Decimal("1")}, now)
    assert not snapshot.is_stale(now + timedelta(minutes=4), 300)
    assert snapshot.is_stale(now + timedelta(minutes=5), 300)
    assert snapshot.age_seconds(now + timedelta(seconds=90)) == pytest.approx(90)
    assert snapshot.last_updated_at == now
    assert PriceSnapshot.empty(["BTC"]).is_stale(now, 300)


def test_snapshot_payload_shape():
    snapshot = PriceSnapshot(prices={"BTC": Decimal("50000.5"), "ETH": None}, last_updated=1_700_000_000_000)
    payload = snapshot.to_payload()
    assert payload == {"BTC": 50000.5, "ETH": None, "lastUpdated": 1_700_000_000_000}

    restored = PriceSnapshot.from_payload(payload)
    assert restored.price("BTC") == Decimal("50000.5")
    assert restored.price("ETH") is None
    assert restored.last_updated == 1_700_000_000_000


def test_snapshot_from_payload_rejects_bad_timestamp():
    with pytest.raises(ValueError):
        PriceSnapshot.from_payload({"BTC": 1, "lastUpdated": "yesterday"})
    with pytest.raises(ValueError):
        PriceSnapshot.from_payload(["BTC", 1])  # type: ignore[arg-type]
