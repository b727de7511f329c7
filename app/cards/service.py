"""
Cards service - Business logic for deck and card management.
Includes SRS review processing and deck progress bookkeeping.

Every operation that changes a card's status runs the card write and the
deck counter adjustment in one unit of work: if either fails, the session
is rolled back and neither is committed. Ownership is checked upstream
(app.dependencies); this service trusts the ids it is given.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.cards.models import Card, Deck
from app.cards.repository import CardRepository, DeckRepository
from app.cards.schemas import (
    BulkCreateResponse,
    CardBulkCreate,
    CardCreate,
    CardList,
    CardRead,
    CardUpdate,
    DeckCreate,
    DeckList,
    DeckProgress,
    DeckRead,
    DeckUpdate,
    DueCardsResponse,
    ReviewResponse,
    StudyProgress,
)
from app.cards.srs import CardStatus, calculate_next_review, get_interval_display, is_due

logger = logging.getLogger(__name__)


class SchedulingService:
    """Service for deck/card business logic and spaced-repetition reviews."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.deck_repo = DeckRepository(db)
        self.card_repo = CardRepository(db)

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[None]:
        """Roll the whole session back if any step of an operation fails."""
        try:
            yield
        except Exception as e:
            logger.warning(f"[SchedulingService] {operation} failed, rolling back: {e}")
            await self.db.rollback()
            raise

    # ═══════════════════════════════════════════════════════════════════════
    # DECK OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def create_deck(self, deck_data: DeckCreate, owner_id: str) -> DeckRead:
        """Create a new, empty deck for a user."""
        logger.info(f"[SchedulingService] Creating deck: {deck_data.title} for user: {owner_id}")

        deck = await self.deck_repo.create(deck_data, owner_id=owner_id)
        return self._deck_to_read_dto(deck)

    async def get_deck(self, deck_id: str) -> DeckRead:
        """Get a deck with its current counters."""
        deck = await self.deck_repo.get_by_id(deck_id)
        return self._deck_to_read_dto(deck)

    async def list_decks(self, owner_id: str, skip: int = 0, limit: int = 100) -> DeckList:
        """List all decks for a user."""
        logger.info(f"[SchedulingService] Listing decks for user: {owner_id}")

        decks = await self.deck_repo.get_all(owner_id=owner_id, skip=skip, limit=limit)
        total = await self.deck_repo.count(owner_id=owner_id)

        return DeckList(
            decks=[self._deck_to_read_dto(d) for d in decks],
            total=total,
        )

    async def list_public_decks(self, limit: int = 20) -> DeckList:
        """Public decks of all users, most recently updated first."""
        decks = await self.deck_repo.get_public(limit=limit)
        return DeckList(
            decks=[self._deck_to_read_dto(d) for d in decks],
            total=len(decks),
        )

    async def search_decks(
        self,
        user_id: str,
        query: Optional[str] = None,
        tags: Optional[List[str]] = None,
        limit: int = 20,
    ) -> DeckList:
        """Search the user's own and public decks by text and tags."""
        logger.info(f"[SchedulingService] Searching decks for user: {user_id}, query={query!r}, tags={tags}")

        decks = await self.deck_repo.search(user_id, query=query, tags=tags, limit=limit)
        return DeckList(
            decks=[self._deck_to_read_dto(d) for d in decks],
            total=len(decks),
        )

    async def update_deck(self, deck_id: str, deck_data: DeckUpdate) -> DeckRead:
        """Update deck content fields."""
        logger.info(f"[SchedulingService] Updating deck: {deck_id}")

        deck = await self.deck_repo.update(deck_id, deck_data)
        return self._deck_to_read_dto(deck)

    async def delete_deck(self, deck_id: str) -> bool:
        """Delete a deck and all its cards."""
        logger.info(f"[SchedulingService] Deleting deck: {deck_id}")

        async with self._unit_of_work("delete_deck"):
            return await self.deck_repo.delete(deck_id)

    async def get_deck_progress(
        self,
        deck_id: str,
        now: Optional[datetime] = None,
    ) -> DeckProgress:
        """Deck view: counters read from the deck row, O(1) in deck size."""
        now = now or datetime.now(timezone.utc)

        deck = await self.deck_repo.get_by_id(deck_id)
        due_count = await self.card_repo.count_due_cards(deck_id, now=now)

        return DeckProgress(
            deck_id=deck.id,
            total_cards=deck.total_cards,
            study_progress=StudyProgress(**deck.study_progress),
            due_count=due_count,
            last_studied_at=deck.last_studied_at,
        )

    async def reconcile_deck_progress(self, deck_id: str) -> DeckRead:
        """
        Rebuild a deck's counters from its cards.

        Repair path for decks flagged by an AggregateInconsistencyError.
        """
        logger.info(f"[SchedulingService] Reconciling deck progress: {deck_id}")

        async with self._unit_of_work("reconcile_deck_progress"):
            before = await self.deck_repo.get_by_id(deck_id)
            previous = (before.total_cards, dict(before.study_progress))

            deck = await self.deck_repo.reconcile_progress(deck_id)

        if previous != (deck.total_cards, deck.study_progress):
            logger.warning(
                f"[SchedulingService] Deck {deck_id} counters drifted: "
                f"was total={previous[0]} {previous[1]}, "
                f"now total={deck.total_cards} {deck.study_progress}"
            )
        return self._deck_to_read_dto(deck)

    # ═══════════════════════════════════════════════════════════════════════
    # CARD OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def create_card(
        self,
        deck_id: str,
        card_data: CardCreate,
        now: Optional[datetime] = None,
    ) -> CardRead:
        """Create a card and count it as new in its deck."""
        logger.info(f"[SchedulingService] Creating card in deck: {deck_id}")

        async with self._unit_of_work("create_card"):
            await self.deck_repo.adjust_counters(
                deck_id,
                {CardStatus.NEW: 1},
                total_delta=1,
            )
            card = await self.card_repo.create(deck_id, card_data, now=now)

        return self._card_to_read_dto(card)

    async def bulk_create_cards(
        self,
        deck_id: str,
        bulk_data: CardBulkCreate,
        now: Optional[datetime] = None,
    ) -> BulkCreateResponse:
        """Create several cards with a single counter adjustment."""
        count = len(bulk_data.cards)
        logger.info(f"[SchedulingService] Bulk creating {count} cards in deck: {deck_id}")

        async with self._unit_of_work("bulk_create_cards"):
            await self.deck_repo.adjust_counters(
                deck_id,
                {CardStatus.NEW: count},
                total_delta=count,
            )
            cards = await self.card_repo.bulk_create(deck_id, bulk_data.cards, now=now)

        return BulkCreateResponse(
            created=len(cards),
            cards=[self._card_to_read_dto(c) for c in cards],
        )

    async def get_card(self, card_id: str) -> CardRead:
        card = await self.card_repo.get_by_id(card_id)
        return self._card_to_read_dto(card)

    async def list_cards(self, deck_id: str) -> CardList:
        """All cards of a deck, newest first."""
        await self.deck_repo.get_by_id(deck_id)

        cards = await self.card_repo.get_all_by_deck(deck_id)
        return CardList(
            cards=[self._card_to_read_dto(c) for c in cards],
            total=len(cards),
        )

    async def get_due_cards(
        self,
        deck_id: str,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DueCardsResponse:
        """Get cards of a deck that are due for review, soonest first."""
        logger.info(f"[SchedulingService] Getting due cards for deck: {deck_id}")

        now = now or datetime.now(timezone.utc)
        await self.deck_repo.get_by_id(deck_id)

        cards = await self.card_repo.get_due_cards(deck_id, now=now, limit=limit)
        total_due = await self.card_repo.count_due_cards(deck_id, now=now)

        return DueCardsResponse(
            cards=[self._card_to_read_dto(c, now=now) for c in cards],
            total_due=total_due,
        )

    async def update_card(self, card_id: str, card_data: CardUpdate) -> CardRead:
        """Update card content (no SRS reset)."""
        logger.info(f"[SchedulingService] Updating card: {card_id}")

        card = await self.card_repo.update(card_id, card_data)
        return self._card_to_read_dto(card)

    async def delete_card(self, card_id: str) -> bool:
        """Delete a card and remove it from its deck's counters."""
        logger.info(f"[SchedulingService] Deleting card: {card_id}")

        card = await self.card_repo.get_by_id(card_id)
        deck_id, card_status = card.deck_id, card.status

        async with self._unit_of_work("delete_card"):
            await self.card_repo.delete(card)
            await self.deck_repo.adjust_counters(
                deck_id,
                {card_status: -1},
                total_delta=-1,
            )

        return True

    async def review_card(
        self,
        card_id: str,
        quality: int,
        now: Optional[datetime] = None,
    ) -> ReviewResponse:
        """
        Process a card review and update SRS state and deck progress.

        Args:
            card_id: Card UUID
            quality: Recall quality; clamped to 0-5 by the evaluator
            now: Review time, defaults to the current UTC time

        Returns:
            ReviewResponse with the updated card

        Raises:
            CardNotFoundError: If the card does not exist
            DeckNotFoundError: If the card's deck vanished; nothing is committed
            AggregateInconsistencyError: If the deck counters are corrupt
        """
        logger.info(f"[SchedulingService] Reviewing card: {card_id}, quality: {quality}")

        now = now or datetime.now(timezone.utc)
        card = await self.card_repo.get_by_id(card_id)
        previous_status = card.status

        srs_update = calculate_next_review(
            quality=quality,
            previous_interval=card.interval,
            previous_ease_factor=card.ease_factor,
            repetitions=card.repetitions,
            now=now,
            previous_status=card.status,
        )

        status_delta = {}
        if srs_update.status != previous_status:
            status_delta = {previous_status: -1, srs_update.status: 1}

        async with self._unit_of_work("review_card"):
            card = await self.card_repo.apply_review(card, srs_update, reviewed_at=now)
            await self.deck_repo.adjust_counters(
                card.deck_id,
                status_delta,
                studied_at=now,
            )

        return ReviewResponse(
            card=self._card_to_read_dto(card, now=now),
            previous_status=previous_status,
            status_changed=bool(status_delta),
            interval_display=get_interval_display(card.interval),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # DTO TRANSFORMATIONS
    # ═══════════════════════════════════════════════════════════════════════

    def _deck_to_read_dto(self, deck: Deck) -> DeckRead:
        """Convert Deck model to DeckRead DTO."""
        return DeckRead(
            id=deck.id,
            title=deck.title,
            description=deck.description,
            owner_id=deck.owner_id,
            is_public=deck.is_public,
            tags=list(deck.tags or []),
            total_cards=deck.total_cards,
            study_progress=StudyProgress(**deck.study_progress),
            last_studied_at=deck.last_studied_at,
            created_at=deck.created_at,
            updated_at=deck.updated_at,
        )

    def _card_to_read_dto(self, card: Card, now: Optional[datetime] = None) -> CardRead:
        """Convert Card model to CardRead DTO, flagging whether it is due at ``now``."""
        dto = CardRead.model_validate(card)
        dto.due = is_due(card.last_reviewed_at, card.next_review_at, now=now)
        return dto


def get_scheduling_service(db: AsyncSession) -> SchedulingService:
    """Factory function for SchedulingService."""
    return SchedulingService(db)
