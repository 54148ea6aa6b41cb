import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from price_feeder.models.db import create_session_factory, ensure_tables
from price_feeder.providers.ticker_provider import TickerProvider
from tests.fakes import FakeRedis, TickerFeed

TICKER_URL = "https://ticker.test/api/v3/ticker/price"


@pytest.fixture
def ticker_feed():
    return TickerFeed()


@pytest_asyncio.fixture
async def provider(ticker_feed):
    client = httpx.AsyncClient(transport=httpx.MockTransport(ticker_feed.handler))
    yield TickerProvider(TICKER_URL, timeout=5.0, client=client)
    await client.aclose()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'prices.db'}")
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()
