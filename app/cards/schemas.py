"""
Pydantic schemas for cards module.
DTOs for API input/output validation.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.cards.srs import CardStatus


# ═══════════════════════════════════════════════════════════════════════════
# DECK SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════


class DeckCreate(BaseModel):
    """DTO for creating a new deck."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Deck title",
    )
    description: Optional[str] = Field(
        None,
        max_length=500,
        description="Optional deck description",
    )
    is_public: bool = Field(False, description="Whether other users may view the deck")
    tags: List[str] = Field(default_factory=list, description="Deck tags")

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Organic Chemistry",
                "description": "Functional groups and reactions",
                "is_public": False,
                "tags": ["chemistry"],
            }
        }
    }


class DeckUpdate(BaseModel):
    """DTO for updating a deck (content only, never counters)."""

    title: Optional[str] = Field(None, min_length=1, max_length=100, description="New title")
    description: Optional[str] = Field(None, max_length=500, description="New description")
    is_public: Optional[bool] = Field(None, description="New visibility")
    tags: Optional[List[str]] = Field(None, description="New tags")


class StudyProgress(BaseModel):
    """Number of cards per lifecycle status."""

    new: int = Field(0, ge=0)
    learning: int = Field(0, ge=0)
    mastered: int = Field(0, ge=0)


class DeckRead(BaseModel):
    """DTO for reading a deck (without cards)."""

    id: str = Field(..., description="Deck ID")
    title: str = Field(..., description="Deck title")
    description: Optional[str] = Field(None, description="Deck description")
    owner_id: str = Field(..., description="Owner user ID")
    is_public: bool = Field(False, description="Visibility")
    tags: List[str] = Field(default_factory=list, description="Deck tags")
    total_cards: int = Field(0, description="Total number of cards")
    study_progress: StudyProgress = Field(..., description="Cards per status")
    last_studied_at: Optional[datetime] = Field(None, description="Most recent review in this deck")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class DeckList(BaseModel):
    """DTO for listing decks."""

    decks: List[DeckRead] = Field(..., description="List of decks")
    total: int = Field(..., description="Total number of decks")


class DeckProgress(BaseModel):
    """Deck view: aggregate counters plus the current due count."""

    deck_id: str = Field(..., description="Deck ID")
    total_cards: int = Field(..., description="Total number of cards")
    study_progress: StudyProgress = Field(..., description="Cards per status")
    due_count: int = Field(..., description="Cards due for review now")
    last_studied_at: Optional[datetime] = Field(None, description="Most recent review in this deck")


# ═══════════════════════════════════════════════════════════════════════════
# CARD SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════


class CardCreate(BaseModel):
    """DTO for creating a single card."""

    front: str = Field(..., min_length=1, max_length=5000, description="Question/front side")
    back: str = Field(..., min_length=1, max_length=5000, description="Answer/back side")
    hints: List[str] = Field(default_factory=list, description="Optional hints")
    examples: List[str] = Field(default_factory=list, description="Optional examples")
    tags: List[str] = Field(default_factory=list, description="Optional tags")

    model_config = {
        "json_schema_extra": {
            "example": {
                "front": "What is a nucleophile?",
                "back": "An electron-pair donor.",
                "hints": ["Think Lewis bases"],
            }
        }
    }


class CardBulkCreate(BaseModel):
    """DTO for bulk creating cards in one deck."""

    cards: List[CardCreate] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="List of cards to create",
    )


class CardUpdate(BaseModel):
    """DTO for updating a card (content only, no SRS reset)."""

    front: Optional[str] = Field(None, min_length=1, max_length=5000)
    back: Optional[str] = Field(None, min_length=1, max_length=5000)
    hints: Optional[List[str]] = None
    examples: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class CardRead(BaseModel):
    """DTO for reading a card."""

    id: str = Field(..., description="Card ID")
    deck_id: str = Field(..., description="Parent deck ID")
    front: str = Field(..., description="Question/front side")
    back: str = Field(..., description="Answer/back side")
    hints: List[str] = Field(default_factory=list)
    examples: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    status: CardStatus = Field(..., description="Lifecycle status")
    interval: int = Field(..., description="Current interval in days")
    ease_factor: float = Field(..., description="Current ease factor")
    repetitions: int = Field(..., description="Total number of reviews")
    next_review_at: datetime = Field(..., description="Next scheduled review time")
    last_reviewed_at: Optional[datetime] = Field(None, description="Last review timestamp")
    due: bool = Field(False, description="Whether the card is due for review now")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    model_config = {"from_attributes": True}


class CardList(BaseModel):
    """DTO for listing cards of a deck."""

    cards: List[CardRead] = Field(..., description="Cards")
    total: int = Field(..., description="Number of cards returned")


class DueCardsResponse(BaseModel):
    """Response for due cards query."""

    cards: List[CardRead] = Field(..., description="Cards due for review, soonest first")
    total_due: int = Field(..., description="Total number of due cards")


class BulkCreateResponse(BaseModel):
    """Response for bulk card creation."""

    created: int = Field(..., description="Number of cards created")
    cards: List[CardRead] = Field(..., description="Created cards")


# ═══════════════════════════════════════════════════════════════════════════
# REVIEW SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════


class ReviewRequest(BaseModel):
    """
    DTO for submitting a card review.

    Any integer is accepted; the scheduler clamps it to 0-5.
    """

    quality: int = Field(..., description="Recall quality 0 (blackout) to 5 (perfect)")

    model_config = {
        "json_schema_extra": {
            "example": {
                "quality": 4,
            }
        }
    }


class ReviewResponse(BaseModel):
    """Response after submitting a review."""

    card: CardRead = Field(..., description="Updated card")
    previous_status: CardStatus = Field(..., description="Status before the review")
    status_changed: bool = Field(..., description="Whether the review moved the card between buckets")
    interval_display: str = Field(..., description="Human-readable interval")


# ═══════════════════════════════════════════════════════════════════════════
# ERROR SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════


class CardsError(BaseModel):
    """Error response for deck and card operations."""

    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Error code")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Card not found",
                "code": "CARD_NOT_FOUND",
            }
        }
    }
