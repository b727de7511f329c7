"""
Tests for SchedulingService.

Tests:
- Card creation and initial SRS state
- Review lifecycle and deck counter bookkeeping
- Rollback when the counter update fails
- Reconciliation of corrupted counters
- Concurrent reviews, creates and deletes on one deck
- Public deck listing and deck search
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, text, update

from app.cards.models import Card, Deck
from app.cards.repository import DeckRepository
from app.cards.schemas import CardBulkCreate, CardCreate, CardUpdate, DeckCreate, DeckUpdate
from app.cards.service import SchedulingService
from app.cards.srs import CardStatus
from app.core.exceptions import AggregateInconsistencyError, CardNotFoundError, DeckNotFoundError

from conftest import NOW, OWNER_ID, assert_progress_consistent


async def review(session_factory, card_id, quality, now=NOW):
    async with session_factory() as session:
        result = await SchedulingService(session).review_card(card_id, quality, now=now)
        await session.commit()
        return result


class TestDecks:
    async def test_create_and_list(self, db_session):
        service = SchedulingService(db_session)
        await service.create_deck(DeckCreate(title="Biology"), owner_id=OWNER_ID)
        await service.create_deck(DeckCreate(title="Someone else's"), owner_id="user-2")

        listing = await service.list_decks(owner_id=OWNER_ID)

        assert listing.total == 1
        assert listing.decks[0].title == "Biology"
        assert listing.decks[0].study_progress.new == 0

    async def test_update_keeps_counters(self, session_factory, deck_id, make_card):
        await make_card(deck_id)

        async with session_factory() as session:
            deck = await SchedulingService(session).update_deck(
                deck_id,
                DeckUpdate(title="Renamed", is_public=True),
            )
            await session.commit()

        assert deck.title == "Renamed"
        assert deck.is_public is True
        assert deck.total_cards == 1

    async def test_delete_removes_cards(self, session_factory, deck_id, make_card, load):
        card_id = await make_card(deck_id)

        async with session_factory() as session:
            await SchedulingService(session).delete_deck(deck_id)
            await session.commit()

        assert await load(Deck, deck_id) is None
        assert await load(Card, card_id) is None


class TestCreateCard:
    async def test_initial_state(self, session_factory, deck_id):
        async with session_factory() as session:
            card = await SchedulingService(session).create_card(
                deck_id,
                CardCreate(front="What is an ester?", back="R-COO-R'"),
                now=NOW,
            )
            await session.commit()

        assert card.status == CardStatus.NEW
        assert card.interval == 0
        assert card.ease_factor == 2.5
        assert card.repetitions == 0
        assert card.next_review_at == NOW
        assert card.last_reviewed_at is None

        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.total_cards == 1
        assert deck.study_progress == {"new": 1, "learning": 0, "mastered": 0}

    async def test_creation_order_does_not_matter(self, make_card, load, deck_id):
        first = await load(Card, await make_card(deck_id, front="A"))
        second = await load(Card, await make_card(deck_id, front="B"))

        def schedule(card):
            return (card.status, card.interval, card.ease_factor, card.next_review_at)

        assert schedule(first) == schedule(second)

    async def test_bulk_create(self, session_factory, deck_id):
        async with session_factory() as session:
            result = await SchedulingService(session).bulk_create_cards(
                deck_id,
                CardBulkCreate(cards=[CardCreate(front=f"Q{i}", back="A") for i in range(4)]),
                now=NOW,
            )
            await session.commit()

        assert result.created == 4
        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.study_progress["new"] == 4

    async def test_missing_deck(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(DeckNotFoundError):
                await SchedulingService(session).create_card("no-such-deck", CardCreate(front="Q", back="A"))

        async with session_factory() as session:
            orphans = await session.scalar(select(func.count()).select_from(Card))

        assert orphans == 0


class TestReviewLifecycle:
    async def test_first_review_moves_card_to_learning(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)

        result = await review(session_factory, card_id, 4)

        assert result.previous_status == CardStatus.NEW
        assert result.status_changed is True
        assert result.card.status == CardStatus.LEARNING
        assert result.card.interval == 1
        assert result.card.repetitions == 1
        assert result.card.last_reviewed_at == NOW
        assert result.card.next_review_at == NOW + timedelta(days=1)
        assert result.interval_display == "1 day"

        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.study_progress == {"new": 0, "learning": 1, "mastered": 0}
        assert deck.last_studied_at == NOW

    async def test_full_sequence(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)
        await make_card(deck_id, front="untouched")

        now = NOW
        expected = [
            (2, 1, CardStatus.LEARNING, {"new": 1, "learning": 1, "mastered": 0}),
            (5, 6, CardStatus.LEARNING, {"new": 1, "learning": 1, "mastered": 0}),
            (5, 14, CardStatus.LEARNING, {"new": 1, "learning": 1, "mastered": 0}),
            (5, 35, CardStatus.MASTERED, {"new": 1, "learning": 0, "mastered": 1}),
            (1, 1, CardStatus.LEARNING, {"new": 1, "learning": 1, "mastered": 0}),
        ]
        for repetitions, (quality, interval, card_status, progress) in enumerate(expected, start=1):
            result = await review(session_factory, card_id, quality, now=now)

            assert result.card.interval == interval
            assert result.card.status == card_status
            assert result.card.repetitions == repetitions

            deck = await assert_progress_consistent(session_factory, deck_id)
            assert deck.study_progress == progress
            assert deck.last_studied_at == now

            now = result.card.next_review_at

    async def test_same_status_review_only_touches_last_studied(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)
        await review(session_factory, card_id, 3)

        later = NOW + timedelta(days=1)
        result = await review(session_factory, card_id, 3, now=later)

        assert result.previous_status == CardStatus.LEARNING
        assert result.status_changed is False
        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.study_progress == {"new": 0, "learning": 1, "mastered": 0}
        assert deck.last_studied_at == later

    async def test_out_of_range_quality_is_clamped(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)

        result = await review(session_factory, card_id, 42)

        assert result.card.ease_factor == pytest.approx(2.6)
        assert result.card.interval == 1

    async def test_missing_card(self, db_session):
        with pytest.raises(CardNotFoundError):
            await SchedulingService(db_session).review_card("no-such-card", 4, now=NOW)

    async def test_update_card_keeps_schedule(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)
        reviewed = await review(session_factory, card_id, 5)

        async with session_factory() as session:
            updated = await SchedulingService(session).update_card(card_id, CardUpdate(back="New answer"))
            await session.commit()

        assert updated.back == "New answer"
        assert updated.interval == reviewed.card.interval
        assert updated.ease_factor == reviewed.card.ease_factor
        assert updated.next_review_at == reviewed.card.next_review_at
        assert updated.status == reviewed.card.status


class TestDeleteCard:
    async def test_decrements_matching_bucket(self, session_factory, deck_id, make_card):
        kept = await make_card(deck_id)
        learning = await make_card(deck_id)
        await review(session_factory, learning, 4)

        async with session_factory() as session:
            await SchedulingService(session).delete_card(learning)
            await session.commit()

        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.total_cards == 1
        assert deck.study_progress == {"new": 1, "learning": 0, "mastered": 0}

        async with session_factory() as session:
            await SchedulingService(session).delete_card(kept)
            await session.commit()

        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.total_cards == 0

    async def test_corrupt_counters_keep_the_card(self, session_factory, deck_id, make_card, load):
        card_id = await make_card(deck_id)

        async with session_factory() as session:
            await session.execute(update(Deck).where(Deck.id == deck_id).values(progress_new=0))
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(AggregateInconsistencyError):
                await SchedulingService(session).delete_card(card_id)

        assert await load(Card, card_id) is not None
        deck = await load(Deck, deck_id)
        assert deck.total_cards == 1


class TestReviewAtomicity:
    async def test_vanished_deck_leaves_card_untouched(self, session_factory, deck_id, make_card, load):
        card_id = await make_card(deck_id)

        async with session_factory() as session:
            await session.execute(text("DELETE FROM decks WHERE id = :id"), {"id": deck_id})
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(DeckNotFoundError):
                await SchedulingService(session).review_card(card_id, 5, now=NOW)

        card = await load(Card, card_id)
        assert card.status == CardStatus.NEW
        assert card.repetitions == 0
        assert card.last_reviewed_at is None
        assert card.interval == 0

    async def test_counter_failure_rolls_back_card(self, session_factory, deck_id, make_card, load, monkeypatch):
        card_id = await make_card(deck_id)

        async def broken_adjust(self, *args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(DeckRepository, "adjust_counters", broken_adjust)

        async with session_factory() as session:
            with pytest.raises(RuntimeError):
                await SchedulingService(session).review_card(card_id, 4, now=NOW)

        card = await load(Card, card_id)
        assert card.status == CardStatus.NEW
        assert card.repetitions == 0

    async def test_corrupt_counters_are_reported_then_repaired(self, session_factory, deck_id, make_card, load):
        card_id = await make_card(deck_id)

        async with session_factory() as session:
            await session.execute(update(Deck).where(Deck.id == deck_id).values(progress_new=0))
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(AggregateInconsistencyError) as exc_info:
                await SchedulingService(session).review_card(card_id, 4, now=NOW)

        assert exc_info.value.deck_id == deck_id
        card = await load(Card, card_id)
        assert card.status == CardStatus.NEW

        async with session_factory() as session:
            repaired = await SchedulingService(session).reconcile_deck_progress(deck_id)
            await session.commit()

        assert repaired.study_progress.new == 1

        await review(session_factory, card_id, 4)
        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.study_progress == {"new": 0, "learning": 1, "mastered": 0}


class TestConcurrency:
    async def test_concurrent_operations_keep_counters_consistent(self, session_factory, deck_id, make_card):
        reviewed = [await make_card(deck_id, front=f"review-{i}") for i in range(6)]
        doomed = [await make_card(deck_id, front=f"delete-{i}") for i in range(2)]

        async def create(i):
            async with session_factory() as session:
                await SchedulingService(session).create_card(deck_id, CardCreate(front=f"new-{i}", back="A"), now=NOW)
                await session.commit()

        async def remove(card_id):
            async with session_factory() as session:
                await SchedulingService(session).delete_card(card_id)
                await session.commit()

        await asyncio.gather(
            *(review(session_factory, card_id, quality) for card_id, quality in zip(reviewed, [5, 4, 3, 2, 1, 0])),
            *(create(i) for i in range(3)),
            *(remove(card_id) for card_id in doomed),
        )

        deck = await assert_progress_consistent(session_factory, deck_id)
        assert deck.total_cards == 9
        assert deck.study_progress == {"new": 3, "learning": 6, "mastered": 0}


class TestDeckProgress:
    async def test_progress_view(self, session_factory, deck_id, make_card):
        first = await make_card(deck_id)
        await make_card(deck_id)
        await review(session_factory, first, 5)

        async with session_factory() as session:
            progress = await SchedulingService(session).get_deck_progress(deck_id, now=NOW)

        assert progress.total_cards == 2
        assert progress.study_progress.learning == 1
        assert progress.study_progress.new == 1
        assert progress.due_count == 1
        assert progress.last_studied_at == NOW

    async def test_due_cards(self, session_factory, deck_id, make_card):
        first = await make_card(deck_id)
        second = await make_card(deck_id)
        await review(session_factory, first, 5)

        async with session_factory() as session:
            due_now = await SchedulingService(session).get_due_cards(deck_id, now=NOW)
            due_tomorrow = await SchedulingService(session).get_due_cards(deck_id, now=NOW + timedelta(days=1))

        assert [c.id for c in due_now.cards] == [second]
        assert due_now.total_due == 1
        assert [c.id for c in due_tomorrow.cards] == [second, first]
        assert all(c.due for c in due_tomorrow.cards)

    async def test_reviewed_card_is_flagged_not_due(self, session_factory, deck_id, make_card):
        card_id = await make_card(deck_id)

        result = await review(session_factory, card_id, 4)

        assert result.card.due is False


class TestDeckDiscovery:
    async def _deck(self, session, title, owner_id=OWNER_ID, is_public=False, tags=(), description=None, age_days=0):
        deck = await DeckRepository(session).create(
            DeckCreate(title=title, description=description, is_public=is_public, tags=list(tags)),
            owner_id=owner_id,
        )
        deck.updated_at = NOW - timedelta(days=age_days)
        await session.flush()
        return deck.id

    async def test_public_decks_newest_update_first(self, db_session):
        old = await self._deck(db_session, "Old", owner_id="user-2", is_public=True, age_days=5)
        fresh = await self._deck(db_session, "Fresh", owner_id="user-3", is_public=True, age_days=1)
        await self._deck(db_session, "Private", owner_id="user-2")

        listing = await SchedulingService(db_session).list_public_decks()

        assert [d.id for d in listing.decks] == [fresh, old]
        assert listing.total == 2

    async def test_public_decks_limit(self, db_session):
        for i in range(3):
            await self._deck(db_session, f"Deck {i}", is_public=True, age_days=i)

        listing = await SchedulingService(db_session).list_public_decks(limit=2)

        assert len(listing.decks) == 2

    async def test_search_scope_is_own_or_public(self, db_session):
        own = await self._deck(db_session, "Own chemistry")
        public = await self._deck(db_session, "Public chemistry", owner_id="user-2", is_public=True)
        await self._deck(db_session, "Hidden chemistry", owner_id="user-2")

        result = await SchedulingService(db_session).search_decks(OWNER_ID, query="chemistry")

        assert {d.id for d in result.decks} == {own, public}

    async def test_search_is_case_insensitive_on_title_and_description(self, db_session):
        by_title = await self._deck(db_session, "ORGANIC Reactions")
        by_description = await self._deck(db_session, "Week 3", description="organic synthesis drills")
        await self._deck(db_session, "Physics")

        result = await SchedulingService(db_session).search_decks(OWNER_ID, query="Organic")

        assert {d.id for d in result.decks} == {by_title, by_description}

    async def test_search_by_any_tag(self, db_session):
        bio = await self._deck(db_session, "Cells", tags=["biology", "exam"])
        chem = await self._deck(db_session, "Acids", tags=["chemistry"])
        await self._deck(db_session, "Vectors", tags=["physics"])
        await self._deck(db_session, "Near miss", tags=["biology-extra"])

        result = await SchedulingService(db_session).search_decks(OWNER_ID, tags=["biology", "chemistry"])

        assert {d.id for d in result.decks} == {bio, chem}

    async def test_search_combines_text_and_tags(self, db_session):
        match = await self._deck(db_session, "Spanish verbs", tags=["spanish"])
        await self._deck(db_session, "Spanish nouns", tags=["vocab"])
        await self._deck(db_session, "French verbs", tags=["spanish"])

        result = await SchedulingService(db_session).search_decks(OWNER_ID, query="spanish", tags=["spanish"])

        assert [d.id for d in result.decks] == [match]

    async def test_search_treats_wildcards_literally(self, db_session):
        await self._deck(db_session, "Plain title")

        result = await SchedulingService(db_session).search_decks(OWNER_ID, query="%")

        assert result.decks == []
