"""
Shared fixtures: a temporary SQLite database, seeded entities, fake
external collaborators and a TestClient wired to the test database.
"""

import os
import tempfile

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("EVIDENCE_STORAGE_PATH", tempfile.mkdtemp(prefix="enforcement-evidence-"))
os.environ.setdefault("QUEUE_SEND_DELAY_MS", "0")
os.environ.setdefault("AI_FILTER_BATCH_DELAY_MS", "0")

from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from enforcement.database import get_db, get_session_factory
from enforcement.dependencies import get_dispatcher
from enforcement.main import app
from enforcement.models.database import Base, Infringement, Product, Profile
from enforcement.tests.fakes import RecordingDispatcher

CRON_SECRET = "test-cron-secret"


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Seeded entities
# ============================================================================


@pytest_asyncio.fixture
async def profile(session_factory):
    async with session_factory() as session:
        profile = Profile(
            id=uuid4(),
            email="owner@example.com",
            dmca_reply_email="legal@example.com",
            full_name="Jane Creator",
            company="Creator Labs LLC",
            phone="+1 555 0100",
            address="1 Main Street, Springfield",
        )
        session.add(profile)
        await session.commit()
    return profile


@pytest_asyncio.fixture
async def product(session_factory, profile):
    async with session_factory() as session:
        product = Product(
            id=uuid4(),
            user_id=profile.id,
            name="Alpha Trend Indicator",
            type="trading_indicator",
            price=199.0,
            url="https://creatorlabs.example/alpha-trend",
            description="A multi-timeframe trend indicator for MetaTrader with proprietary smoothing.",
            brand_name="Creator Labs",
            keywords=["alpha trend", "trend indicator"],
            copyright_info={"registration_number": "TX-123-456", "year": 2023},
            ai_extracted_data={
                "schema_version": 1,
                "brand_identifiers": ["AlphaTrend"],
                "unique_phrases": ["see the trend before it forms"],
            },
        )
        session.add(product)
        await session.commit()
    return product


async def _seed_infringement(session_factory, product, **overrides) -> Infringement:
    values = {
        "id": uuid4(),
        "product_id": product.id,
        "user_id": product.user_id,
        "source_url": "https://t.me/leakedindicators/42",
        "platform": "telegram",
        "status": "active",
        "severity_score": 70,
        "match_type": "exact_name",
        "evidence": {
            "schema_version": 1,
            "matched_excerpts": ["Download Alpha Trend Indicator free, full version cracked"],
            "screenshots": ["https://shots.example/1.png"],
        },
        "infrastructure": {"schema_version": 1, "hosting_provider": "Cloudflare", "country": "US"},
    }
    values.update(overrides)
    async with session_factory() as session:
        infringement = Infringement(**values)
        session.add(infringement)
        await session.commit()
    return infringement


@pytest.fixture
def make_infringement(session_factory, product):
    """Factory committing an infringement for ``product`` with field overrides."""

    async def make(**overrides) -> Infringement:
        return await _seed_infringement(session_factory, product, **overrides)

    return make


@pytest_asyncio.fixture
async def infringement(make_infringement):
    return await make_infringement()


@pytest_asyncio.fixture
async def pending_infringement(make_infringement):
    return await make_infringement(status="pending_verification", evidence={})


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(session_factory, dispatcher):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.state.dispatcher = dispatcher

    yield TestClient(app)

    app.dependency_overrides.clear()
    del app.state.dispatcher


@pytest.fixture
def auth_headers(profile):
    return {"X-User-Id": str(profile.id)}


@pytest.fixture
def cron_headers():
    return {"X-Cron-Secret": CRON_SECRET}
