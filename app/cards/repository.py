"""
Cards repository - Data Access Layer for decks and cards.
Handles all database operations for Deck and Card entities.

Deck progress counters are only changed through DeckRepository.adjust_counters,
a single UPDATE with column increments, so concurrent reviews of different
cards in the same deck commute instead of overwriting each other.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from sqlalchemy import String, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.cards.models import Card, Deck
from app.cards.schemas import CardCreate, CardUpdate, DeckCreate, DeckUpdate
from app.cards.srs import CardStatus, SRSUpdate, calculate_progress, get_initial_srs_state
from app.core.exceptions import AggregateInconsistencyError, CardNotFoundError, DeckNotFoundError

logger = logging.getLogger(__name__)

# Deck column holding the counter for each status
PROGRESS_COLUMNS = {
    CardStatus.NEW: Deck.progress_new,
    CardStatus.LEARNING: Deck.progress_learning,
    CardStatus.MASTERED: Deck.progress_mastered,
}


class DeckRepository:
    """Repository for Deck CRUD operations and progress counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, deck_data: DeckCreate, owner_id: str) -> Deck:
        """
        Create a new, empty deck for a user.

        Args:
            deck_data: Deck creation DTO
            owner_id: Owner user ID

        Returns:
            Created Deck entity
        """
        now = datetime.now(timezone.utc)
        deck = Deck(
            id=str(uuid4()),
            title=deck_data.title,
            description=deck_data.description,
            owner_id=owner_id,
            is_public=deck_data.is_public,
            tags=list(deck_data.tags),
            total_cards=0,
            progress_new=0,
            progress_learning=0,
            progress_mastered=0,
            created_at=now,
            updated_at=now,
        )

        self.db.add(deck)
        await self.db.flush()

        logger.info(f"[DeckRepository] Created deck: {deck.id} - {deck.title} for user: {owner_id}")
        return deck

    async def get_by_id(self, deck_id: str) -> Deck:
        """
        Get a deck by its ID, always reading the current counters.

        Raises:
            DeckNotFoundError: If deck not found
        """
        stmt = (
            select(Deck)
            .where(Deck.id == deck_id)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(stmt)
        deck = result.scalar_one_or_none()

        if deck is None:
            raise DeckNotFoundError(f"Deck not found: {deck_id}")

        return deck

    async def get_all(
        self,
        owner_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[Deck]:
        """Get all decks for a user with pagination, newest first."""
        stmt = (
            select(Deck)
            .where(Deck.owner_id == owner_id)
            .order_by(Deck.created_at.desc())
            .offset(skip)
            .limit(limit)
        )

        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count(self, owner_id: str) -> int:
        """Count total number of decks for a user."""
        stmt = select(func.count()).select_from(Deck).where(Deck.owner_id == owner_id)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def get_public(self, limit: int = 20) -> Sequence[Deck]:
        """Public decks of all users, most recently updated first."""
        stmt = (
            select(Deck)
            .where(Deck.is_public.is_(True))
            .order_by(Deck.updated_at.desc(), Deck.id)
            .limit(limit)
        )

        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def search(
        self,
        user_id: str,
        query: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        limit: int = 20,
    ) -> Sequence[Deck]:
        """
        Search the decks a user can see (own or public).

        Args:
            user_id: Caller; their private decks are included
            query: Case-insensitive substring of title or description
            tags: Deck must carry at least one of these tags
            limit: Maximum decks to return

        Returns:
            Matching decks, most recently updated first
        """
        conditions = [or_(Deck.owner_id == user_id, Deck.is_public.is_(True))]

        if query:
            conditions.append(
                or_(
                    Deck.title.icontains(query, autoescape=True),
                    Deck.description.icontains(query, autoescape=True),
                )
            )

        if tags:
            # JSON lists are stored as serialized text on every backend
            tags_text = cast(Deck.tags, String)
            conditions.append(
                or_(*(tags_text.contains(json.dumps(tag), autoescape=True) for tag in tags))
            )

        stmt = (
            select(Deck)
            .where(*conditions)
            .order_by(Deck.updated_at.desc(), Deck.id)
            .limit(limit)
        )

        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def exists(self, deck_id: str) -> bool:
        stmt = select(func.count()).select_from(Deck).where(Deck.id == deck_id)
        result = await self.db.execute(stmt)
        return result.scalar_one() > 0

    async def get_owner_id(self, deck_id: str) -> Optional[str]:
        """Owner of a deck, or None if the deck does not exist."""
        result = await self.db.execute(select(Deck.owner_id).where(Deck.id == deck_id))
        return result.scalar_one_or_none()

    async def update(self, deck_id: str, deck_data: DeckUpdate) -> Deck:
        """
        Update deck content fields. Counters are never touched here.

        Returns:
            Updated Deck entity
        """
        deck = await self.get_by_id(deck_id)

        if deck_data.title is not None:
            deck.title = deck_data.title
        if deck_data.description is not None:
            # Empty string clears the description
            deck.description = deck_data.description or None
        if deck_data.is_public is not None:
            deck.is_public = deck_data.is_public
        if deck_data.tags is not None:
            deck.tags = list(deck_data.tags)

        deck.updated_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(f"[DeckRepository] Updated deck: {deck.id}")
        return deck

    async def delete(self, deck_id: str) -> bool:
        """Delete a deck and all of its cards."""
        deck = await self.get_by_id(deck_id)

        await self.db.execute(delete(Card).where(Card.deck_id == deck_id))
        await self.db.delete(deck)
        await self.db.flush()

        logger.info(f"[DeckRepository] Deleted deck: {deck_id}")
        return True

    async def adjust_counters(
        self,
        deck_id: str,
        status_delta: Mapping[CardStatus, int],
        total_delta: int = 0,
        studied_at: Optional[datetime] = None,
    ) -> None:
        """
        Atomically apply counter deltas to a deck.

        Issues one UPDATE of the form ``col = col + :delta``, guarded so that
        no counter can drop below zero.

        Args:
            deck_id: Deck UUID
            status_delta: Per-status bucket deltas (zero entries are ignored)
            total_delta: Delta for total_cards
            studied_at: New last_studied_at value, if a review happened

        Raises:
            DeckNotFoundError: If the deck no longer exists
            AggregateInconsistencyError: If a counter would become negative
        """
        values = {}
        conditions = [Deck.id == deck_id]

        if total_delta:
            values["total_cards"] = Deck.total_cards + total_delta
            if total_delta < 0:
                conditions.append(Deck.total_cards + total_delta >= 0)

        for card_status, delta in status_delta.items():
            if not delta:
                continue
            column = PROGRESS_COLUMNS[CardStatus(card_status)]
            values[column.key] = column + delta
            if delta < 0:
                conditions.append(column + delta >= 0)

        if studied_at is not None:
            values["last_studied_at"] = studied_at

        if not values:
            return

        values["updated_at"] = datetime.now(timezone.utc)

        stmt = (
            update(Deck)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            logger.debug(
                f"[DeckRepository] Adjusted counters for deck: {deck_id}, "
                f"status_delta={dict(status_delta)}, total_delta={total_delta}"
            )
            return

        if not await self.exists(deck_id):
            raise DeckNotFoundError(f"Deck not found: {deck_id}")

        logger.critical(
            f"[DeckRepository] Counter underflow on deck: {deck_id}, "
            f"status_delta={dict(status_delta)}, total_delta={total_delta}; "
            f"deck needs reconciliation"
        )
        raise AggregateInconsistencyError(
            f"Progress counters of deck {deck_id} are out of step with its cards",
            deck_id=deck_id,
        )

    async def count_cards_by_status(self, deck_id: str) -> Dict[CardStatus, int]:
        """Count a deck's cards per status straight from the cards table."""
        stmt = (
            select(Card.status, func.count(Card.id))
            .where(Card.deck_id == deck_id)
            .group_by(Card.status)
        )

        result = await self.db.execute(stmt)
        counts = {card_status: 0 for card_status in CardStatus}
        for card_status, count in result.all():
            counts[CardStatus(card_status)] = count
        return counts

    async def reconcile_progress(self, deck_id: str) -> Deck:
        """
        Recompute a deck's counters from its cards and overwrite them.

        The deck row is locked first (where the backend supports it) so
        in-flight counter increments wait for the repair to commit.

        Returns:
            Deck entity with repaired counters
        """
        lock = select(Deck.id).where(Deck.id == deck_id).with_for_update()
        if (await self.db.execute(lock)).scalar_one_or_none() is None:
            raise DeckNotFoundError(f"Deck not found: {deck_id}")

        counts = await self.count_cards_by_status(deck_id)
        total = sum(counts.values())
        progress = calculate_progress(
            total,
            counts[CardStatus.MASTERED],
            counts[CardStatus.LEARNING],
        )

        stmt = (
            update(Deck)
            .where(Deck.id == deck_id)
            .values(
                total_cards=total,
                progress_new=progress[CardStatus.NEW.value],
                progress_learning=progress[CardStatus.LEARNING.value],
                progress_mastered=progress[CardStatus.MASTERED.value],
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

        logger.info(f"[DeckRepository] Reconciled deck: {deck_id}, total={total}, progress={progress}")
        return await self.get_by_id(deck_id)


class CardRepository:
    """Repository for Card CRUD operations and due-set queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _build(self, deck_id: str, card_data: CardCreate, now: datetime) -> Card:
        initial = get_initial_srs_state(now)
        return Card(
            id=str(uuid4()),
            deck_id=deck_id,
            front=card_data.front,
            back=card_data.back,
            hints=list(card_data.hints),
            examples=list(card_data.examples),
            tags=list(card_data.tags),
            status=initial.status,
            interval=initial.interval,
            ease_factor=initial.ease_factor,
            repetitions=0,
            next_review_at=initial.next_review_at,
            last_reviewed_at=None,
            created_at=now,
            updated_at=now,
        )

    async def create(
        self,
        deck_id: str,
        card_data: CardCreate,
        now: Optional[datetime] = None,
    ) -> Card:
        """
        Create a new card in its initial SRS state (new, due now).

        Args:
            deck_id: Parent deck ID
            card_data: Card creation DTO
            now: Creation time, defaults to the current UTC time

        Returns:
            Created Card entity
        """
        card = self._build(deck_id, card_data, now or datetime.now(timezone.utc))

        self.db.add(card)
        await self.db.flush()

        logger.info(f"[CardRepository] Created card: {card.id} in deck: {deck_id}")
        return card

    async def bulk_create(
        self,
        deck_id: str,
        cards: Sequence[CardCreate],
        now: Optional[datetime] = None,
    ) -> List[Card]:
        """Bulk create cards sharing one creation time."""
        now = now or datetime.now(timezone.utc)
        created = [self._build(deck_id, card_data, now) for card_data in cards]

        self.db.add_all(created)
        await self.db.flush()

        logger.info(f"[CardRepository] Bulk created {len(created)} cards in deck: {deck_id}")
        return created

    async def get_by_id(self, card_id: str) -> Card:
        """
        Get a card by its ID.

        Raises:
            CardNotFoundError: If card not found
        """
        stmt = (
            select(Card)
            .where(Card.id == card_id)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(stmt)
        card = result.scalar_one_or_none()

        if card is None:
            raise CardNotFoundError(f"Card not found: {card_id}")

        return card

    async def get_deck_id(self, card_id: str) -> Optional[str]:
        """Deck a card belongs to, or None if the card does not exist."""
        result = await self.db.execute(select(Card.deck_id).where(Card.id == card_id))
        return result.scalar_one_or_none()

    async def get_all_by_deck(self, deck_id: str) -> Sequence[Card]:
        """All cards of a deck, newest first."""
        stmt = (
            select(Card)
            .where(Card.deck_id == deck_id)
            .order_by(Card.created_at.desc(), Card.id)
        )

        result = await self.db.execute(stmt)
        return result.scalars().all()

    def _due_filter(self, deck_id: str, now: datetime):
        return (
            Card.deck_id == deck_id,
            or_(Card.last_reviewed_at.is_(None), Card.next_review_at <= now),
        )

    async def get_due_cards(
        self,
        deck_id: str,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> Sequence[Card]:
        """
        Get cards of a deck that are due for review, soonest first.

        Uses the composite index (deck_id, next_review_at).

        Args:
            deck_id: Deck to select from
            now: Reference time, defaults to the current UTC time
            limit: Optional maximum number of cards

        Returns:
            Due Card entities ordered by next_review_at ascending
        """
        now = now or datetime.now(timezone.utc)

        stmt = (
            select(Card)
            .where(*self._due_filter(deck_id, now))
            .order_by(Card.next_review_at.asc(), Card.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count_due_cards(self, deck_id: str, now: Optional[datetime] = None) -> int:
        """Count due cards of a deck."""
        now = now or datetime.now(timezone.utc)

        stmt = (
            select(func.count())
            .select_from(Card)
            .where(*self._due_filter(deck_id, now))
        )

        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def update(self, card_id: str, card_data: CardUpdate) -> Card:
        """Update card content (no SRS reset)."""
        card = await self.get_by_id(card_id)

        for field in ("front", "back", "hints", "examples", "tags"):
            value = getattr(card_data, field)
            if value is not None:
                setattr(card, field, value)

        card.updated_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(f"[CardRepository] Updated card: {card.id}")
        return card

    async def apply_review(self, card: Card, srs_update: SRSUpdate, reviewed_at: datetime) -> Card:
        """
        Write a review outcome onto a card in place.

        Args:
            card: Card entity loaded in this session
            srs_update: Evaluator result
            reviewed_at: Review time

        Returns:
            Updated Card entity
        """
        card.interval = srs_update.interval
        card.ease_factor = srs_update.ease_factor
        card.next_review_at = srs_update.next_review_at
        card.status = srs_update.status
        card.repetitions = card.repetitions + 1
        card.last_reviewed_at = reviewed_at
        card.updated_at = reviewed_at

        await self.db.flush()

        logger.info(
            f"[CardRepository] Updated SRS for card: {card.id}, "
            f"status={srs_update.status.value}, interval={srs_update.interval}, "
            f"next_review={srs_update.next_review_at}"
        )
        return card

    async def delete(self, card: Card) -> None:
        """Delete a card entity."""
        await self.db.delete(card)
        await self.db.flush()

        logger.info(f"[CardRepository] Deleted card: {card.id}")
