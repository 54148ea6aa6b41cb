from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from price_feeder.models.token_price import TokenPrice
from price_feeder.services.price_delta_service import MAX_PERCENT, PriceDeltaService, calculate_delta
from price_feeder.services.price_writer_service import PriceWriterService, StagedPrice
from price_feeder.services.symbol_classifier import SymbolPair

BTC_USDT = SymbolPair("BTC", "USDT")
ETH_BTC = SymbolPair("ETH", "BTC")


def staged(pair, price, change="0", pct="0"):
    return StagedPrice(pair=pair, price=Decimal(price), change=Decimal(change), change_percent=Decimal(pct))


async def load_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(TokenPrice).order_by(TokenPrice.base_currency))
        return {(r.base_currency, r.quote_currency): r for r in result.scalars()}


def test_calculate_delta_without_prior():
    delta = calculate_delta(None, Decimal("50000"))
    assert delta.change == 0
    assert delta.change_percent == 0


def test_calculate_delta_zero_prior():
    delta = calculate_delta(Decimal("0"), Decimal("12.5"))
    assert delta.change == 0
    assert delta.change_percent == 0


def test_calculate_delta_change():
    delta = calculate_delta(Decimal("50000.00"), Decimal("51000.00"))
    assert delta.change == Decimal("1000.00")
    assert delta.change_percent == Decimal("2")


def test_calculate_delta_rounds_percent():
    delta = calculate_delta(Decimal("3"), Decimal("4"))
    assert delta.change == Decimal("1")
    assert delta.change_percent == Decimal("33.33333333")


def test_calculate_delta_clamps_huge_percent():
    delta = calculate_delta(Decimal("0.00000001"), Decimal("9" * 21))
    assert delta.change_percent == MAX_PERCENT
    assert delta.change_percent == Decimal("999999999999.99999999")


@pytest.mark.asyncio
async def test_upsert_inserts_then_updates(session_factory):
    writer = PriceWriterService(session_factory)
    now = datetime.now(timezone.utc)

    assert await writer.upsert_batch([staged(BTC_USDT, "50000.00"), staged(ETH_BTC, "0.05")], now)
    assert await writer.upsert_batch([staged(BTC_USDT, "51000.00", "1000.00", "2")], now)

    rows = await load_rows(session_factory)
    assert len(rows) == 2
    btc = rows[("BTC", "USDT")]
    assert btc.price == Decimal("51000.00")
    assert btc.price_change == Decimal("1000.00")
    assert btc.price_change_percent == Decimal("2")
    assert rows[("ETH", "BTC")].price == Decimal("0.05")


@pytest.mark.asyncio
async def test_upsert_collapses_duplicate_pairs(session_factory):
    writer = PriceWriterService(session_factory)
    ok = await writer.upsert_batch(
        [staged(BTC_USDT, "1"), staged(BTC_USDT, "2")],
        datetime.now(timezone.utc),
    )
    assert ok
    rows = await load_rows(session_factory)
    assert rows[("BTC", "USDT")].price == Decimal("2")


@pytest.mark.asyncio
async def test_upsert_empty_batch(session_factory):
    writer = PriceWriterService(session_factory)
    assert await writer.upsert_batch([], datetime.now(timezone.utc))
    assert await load_rows(session_factory) == {}


@pytest.mark.asyncio
async def test_upsert_failure_returns_false(session_factory, engine):
    async with engine.begin() as conn:
        await conn.run_sync(TokenPrice.__table__.drop)

    writer = PriceWriterService(session_factory)
    assert await writer.upsert_batch([staged(BTC_USDT, "1")], datetime.now(timezone.utc)) is False


@pytest.mark.asyncio
async def test_delta_service_reads_prior_price(session_factory):
    writer = PriceWriterService(session_factory)
    await writer.upsert_batch([staged(BTC_USDT, "50000.00")], datetime.now(timezone.utc))

    async with session_factory() as session:
        service = PriceDeltaService(session)
        assert await service.get_previous_price(ETH_BTC) is None
        delta = await service.compute_delta(BTC_USDT, Decimal("51000.00"))

    assert delta.change == Decimal("1000.00")
    assert delta.change_percent == Decimal("2")
    assert service.lookup_failures == 0


@pytest.mark.asyncio
async def test_delta_service_lookup_failure_falls_back_to_zero(session_factory, monkeypatch):
    async with session_factory() as session:
        service = PriceDeltaService(session)

        async def broken_lookup(pair):
            raise ConnectionError("database unreachable")

        monkeypatch.setattr(service, "get_previous_price", broken_lookup)
        delta = await service.compute_delta(BTC_USDT, Decimal("51000.00"))

    assert delta.change == 0
    assert delta.change_percent == 0
    assert service.lookup_failures == 1
