"""
Pytest Configuration and Fixtures.

Each test gets its own SQLite database file under tmp_path, so tests that
open several sessions at once (concurrency, rollback checks) see real
transactions.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.cards.models import Deck
from app.cards.repository import DeckRepository
from app.cards.schemas import CardCreate, DeckCreate
from app.cards.service import SchedulingService
from app.database import Base, get_db
from app.main import app

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
OWNER_ID = "user-1"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studycards.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def deck_id(session_factory) -> str:
    """An empty deck owned by OWNER_ID, committed."""
    async with session_factory() as session:
        deck = await DeckRepository(session).create(
            DeckCreate(title="Organic Chemistry"),
            owner_id=OWNER_ID,
        )
        await session.commit()
        return deck.id


@pytest.fixture
def make_card(session_factory):
    """Create and commit a card in a deck, returning its id."""

    async def _make(deck_id: str, front: str = "Q", now: datetime = NOW) -> str:
        async with session_factory() as session:
            card = await SchedulingService(session).create_card(
                deck_id,
                CardCreate(front=front, back="A"),
                now=now,
            )
            await session.commit()
            return card.id

    return _make


@pytest.fixture
def load(session_factory):
    """Read a Deck or Card in a fresh session."""

    async def _load(model, entity_id: str):
        async with session_factory() as session:
            return await session.get(model, entity_id)

    return _load


async def assert_progress_consistent(session_factory, deck_id: str) -> Deck:
    """Counters add up to total_cards and match the cards table."""
    async with session_factory() as session:
        repo = DeckRepository(session)
        deck = await repo.get_by_id(deck_id)
        counts = await repo.count_cards_by_status(deck_id)

    assert sum(deck.study_progress.values()) == deck.total_cards
    assert deck.total_cards == sum(counts.values())
    assert deck.study_progress == {status.value: n for status, n in counts.items()}
    return deck


@pytest.fixture
async def client(session_factory):
    """HTTP client against the app, wired to the per-test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()

