"""
Authorization dependencies for FastAPI.

Authentication lives in the upstream gateway, which forwards the caller's
identity in the X-User-Id header. These dependencies only check that the
identified user may act on the deck or card a route targets, so the
scheduling service receives already-authorized requests.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.cards.repository import CardRepository, DeckRepository
from app.core.exceptions import CardNotFoundError, DeckNotFoundError, OwnershipViolationError, unauthorized

logger = logging.getLogger(__name__)


async def get_current_user_id(
        x_user_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Dependency to get the id of the user the gateway authenticated.

    Raises:
        HTTPException: If the header is missing
    """
    if not x_user_id:
        raise unauthorized()
    return x_user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


async def authorize_deck(
        db: AsyncSession,
        deck_id: str,
        user_id: str,
        allow_public: bool = False,
) -> None:
    """
    Check that a user may act on a deck.

    Args:
        db: Database session
        deck_id: Target deck
        user_id: Caller
        allow_public: Whether read access to public decks is enough

    Raises:
        DeckNotFoundError: If the deck does not exist
        OwnershipViolationError: If the deck belongs to someone else
    """
    repo = DeckRepository(db)
    owner_id = await repo.get_owner_id(deck_id)

    if owner_id is None:
        raise DeckNotFoundError(f"Deck not found: {deck_id}")

    if owner_id == user_id:
        return

    if allow_public:
        deck = await repo.get_by_id(deck_id)
        if deck.is_public:
            return

    logger.warning(f"[Authorization] User {user_id} denied access to deck {deck_id}")
    raise OwnershipViolationError(f"Deck {deck_id} does not belong to user {user_id}")


async def authorize_card(
        db: AsyncSession,
        card_id: str,
        user_id: str,
        allow_public: bool = False,
) -> None:
    """Check that a user may act on a card, via the deck that owns it."""
    deck_id = await CardRepository(db).get_deck_id(card_id)

    if deck_id is None:
        raise CardNotFoundError(f"Card not found: {card_id}")

    await authorize_deck(db, deck_id, user_id, allow_public=allow_public)

