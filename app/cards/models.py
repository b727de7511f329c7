"""
SQLAlchemy models for cards module.
Defines Deck and Card tables with SRS fields and deck progress counters.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.cards.srs import INITIAL_EASE_FACTOR, CardStatus
from app.database import Base, UTCDateTime


class Deck(Base):
    """
    Deck model representing an owned collection of cards.

    total_cards and the progress_* buckets are denormalized from the
    cards table and only ever changed through atomic increments.
    """

    __tablename__ = "decks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # Progress counters
    total_cards: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_new: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_learning: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_mastered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_studied_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("total_cards >= 0", name="ck_decks_total_cards_non_negative"),
        CheckConstraint(
            "progress_new >= 0 AND progress_learning >= 0 AND progress_mastered >= 0",
            name="ck_decks_progress_non_negative",
        ),
    )

    @property
    def study_progress(self) -> Dict[str, int]:
        return {
            CardStatus.NEW.value: self.progress_new,
            CardStatus.LEARNING.value: self.progress_learning,
            CardStatus.MASTERED.value: self.progress_mastered,
        }

    def __repr__(self) -> str:
        return f"<Deck(id={self.id}, title={self.title}, owner_id={self.owner_id})>"


class Card(Base):
    """
    Card model with SRS (Spaced Repetition System) fields.
    Scheduled with an SM-2 variant; status is derived from the interval.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    hints: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    examples: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # Foreign keys
    deck_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("decks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # SRS Fields
    status: Mapped[CardStatus] = mapped_column(
        Enum(
            CardStatus,
            name="card_status",
            values_callable=lambda e: [s.value for s in e],
            native_enum=False,
        ),
        default=CardStatus.NEW,
        nullable=False,
    )
    interval: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ease_factor: Mapped[float] = mapped_column(Float, default=INITIAL_EASE_FACTOR, nullable=False)
    repetitions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_review_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        # Due-set query: WHERE deck_id = ? AND next_review_at <= ? ORDER BY next_review_at
        Index("ix_cards_deck_next_review", "deck_id", "next_review_at"),
        Index("ix_cards_deck_status", "deck_id", "status"),
        CheckConstraint("ease_factor >= 1.3", name="ck_cards_ease_factor_floor"),
        CheckConstraint('"interval" >= 0 AND "interval" <= 365', name="ck_cards_interval_range"),
    )

    def __repr__(self) -> str:
        return f"<Card(id={self.id}, deck_id={self.deck_id}, status={self.status.value})>"
