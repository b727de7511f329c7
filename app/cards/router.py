"""
Cards router - API endpoints for decks, cards and reviews.
All routes require a gateway-authenticated user and check deck ownership.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from app.cards.schemas import (
    BulkCreateResponse,
    CardBulkCreate,
    CardCreate,
    CardList,
    CardRead,
    CardsError,
    CardUpdate,
    DeckCreate,
    DeckList,
    DeckProgress,
    DeckRead,
    DeckUpdate,
    DueCardsResponse,
    ReviewRequest,
    ReviewResponse,
)
from app.cards.service import get_scheduling_service
from app.config import get_settings
from app.core.dependencies import DBSession
from app.core.exceptions import CardNotFoundError, DeckNotFoundError, OwnershipViolationError, forbidden
from app.dependencies import CurrentUserId, authorize_card, authorize_deck
from app.rate_limit import limiter

logger = logging.getLogger(__name__)
settings = get_settings()


def _deck_not_found(e: DeckNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": e.message, "code": "DECK_NOT_FOUND"},
    )


def _card_not_found(e: CardNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": e.message, "code": "CARD_NOT_FOUND"},
    )


def _access_denied(what: str) -> HTTPException:
    return forbidden(f"Access denied - {what} does not belong to user")


# ═══════════════════════════════════════════════════════════════════════════
# DECK ROUTER
# ═══════════════════════════════════════════════════════════════════════════

decks_router = APIRouter(prefix="/decks", tags=["Decks"])


@decks_router.post(
    "",
    response_model=DeckRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new deck",
    responses={
        201: {"model": DeckRead, "description": "Deck created"},
        401: {"description": "Not authenticated"},
    },
)
async def create_deck(
    deck_data: DeckCreate,
    user_id: CurrentUserId,
    db: DBSession,
) -> DeckRead:
    """Create a new, empty deck."""
    logger.info(f"[DecksRouter] Creating deck: {deck_data.title}, user: {user_id}")

    service = get_scheduling_service(db)
    return await service.create_deck(deck_data, owner_id=user_id)


@decks_router.get(
    "",
    response_model=DeckList,
    summary="List all decks",
    description="Get a paginated list of all decks belonging to the authenticated user.",
)
async def list_decks(
    user_id: CurrentUserId,
    db: DBSession,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum records to return"),
) -> DeckList:
    """List all decks for the authenticated user."""
    logger.info(f"[DecksRouter] Listing decks (skip={skip}, limit={limit}), user: {user_id}")

    service = get_scheduling_service(db)
    return await service.list_decks(owner_id=user_id, skip=skip, limit=limit)


@decks_router.get(
    "/public",
    response_model=DeckList,
    summary="List public decks",
    description="Public decks of all users, most recently updated first.",
)
async def list_public_decks(
    db: DBSession,
    limit: int = Query(20, ge=1, le=100, description="Maximum decks to return"),
) -> DeckList:
    """Browse public decks; no ownership required."""
    logger.info(f"[DecksRouter] Listing public decks (limit={limit})")

    return await get_scheduling_service(db).list_public_decks(limit=limit)


@decks_router.get(
    "/search",
    response_model=DeckList,
    summary="Search decks",
    description="Search the caller's own decks and all public decks by title, description and tags.",
)
async def search_decks(
    user_id: CurrentUserId,
    db: DBSession,
    query: Optional[str] = Query(None, max_length=100, description="Text to look for in title or description"),
    tags: Optional[str] = Query(None, description="Comma-separated tags; any one must match"),
    limit: int = Query(20, ge=1, le=100, description="Maximum decks to return"),
) -> DeckList:
    """Search visible decks."""
    logger.info(f"[DecksRouter] Searching decks, query={query!r}, tags={tags!r}, user: {user_id}")

    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    return await get_scheduling_service(db).search_decks(
        user_id,
        query=query,
        tags=tag_list,
        limit=limit,
    )


@decks_router.get(
    "/{deck_id}",
    response_model=DeckRead,
    summary="Get deck by ID",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def get_deck(deck_id: str, user_id: CurrentUserId, db: DBSession) -> DeckRead:
    """Get a deck with its progress counters."""
    logger.info(f"[DecksRouter] Getting deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id, allow_public=True)
        return await get_scheduling_service(db).get_deck(deck_id)
    except DeckNotFoundError as e:
        logger.warning(f"[DecksRouter] Deck not found: {deck_id}")
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.patch(
    "/{deck_id}",
    response_model=DeckRead,
    summary="Update deck",
    description="Update a deck's title, description, tags or visibility.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def update_deck(
    deck_id: str,
    deck_data: DeckUpdate,
    user_id: CurrentUserId,
    db: DBSession,
) -> DeckRead:
    """Update a deck."""
    logger.info(f"[DecksRouter] Updating deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        return await get_scheduling_service(db).update_deck(deck_id, deck_data)
    except DeckNotFoundError as e:
        logger.warning(f"[DecksRouter] Deck not found: {deck_id}")
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.delete(
    "/{deck_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete deck",
    description="Delete a deck and all its cards.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def delete_deck(deck_id: str, user_id: CurrentUserId, db: DBSession) -> None:
    """Delete a deck and all its cards."""
    logger.info(f"[DecksRouter] Deleting deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        await get_scheduling_service(db).delete_deck(deck_id)
    except DeckNotFoundError as e:
        logger.warning(f"[DecksRouter] Deck not found: {deck_id}")
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.get(
    "/{deck_id}/progress",
    response_model=DeckProgress,
    summary="Get deck study progress",
    description="Total cards, cards per status and the current due count.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def get_deck_progress(deck_id: str, user_id: CurrentUserId, db: DBSession) -> DeckProgress:
    """Read-only deck view."""
    try:
        await authorize_deck(db, deck_id, user_id, allow_public=True)
        return await get_scheduling_service(db).get_deck_progress(deck_id)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.post(
    "/{deck_id}/reconcile",
    response_model=DeckRead,
    summary="Reconcile deck progress",
    description="Recompute the deck's progress counters from its cards.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def reconcile_deck(deck_id: str, user_id: CurrentUserId, db: DBSession) -> DeckRead:
    """Repair a deck's counters."""
    logger.info(f"[DecksRouter] Reconciling deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        return await get_scheduling_service(db).reconcile_deck_progress(deck_id)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.post(
    "/{deck_id}/cards",
    response_model=CardRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a card",
    responses={
        403: {"description": "Access denied to deck"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def create_card(
    deck_id: str,
    card_data: CardCreate,
    user_id: CurrentUserId,
    db: DBSession,
) -> CardRead:
    """Create a card in a deck; it starts as new and due now."""
    logger.info(f"[DecksRouter] Creating card in deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        return await get_scheduling_service(db).create_card(deck_id, card_data)
    except DeckNotFoundError as e:
        logger.warning(f"[DecksRouter] Deck not found: {deck_id}")
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.post(
    "/{deck_id}/cards/bulk",
    response_model=BulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk create cards",
    responses={
        403: {"description": "Access denied to deck"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def bulk_create_cards(
    deck_id: str,
    bulk_data: CardBulkCreate,
    user_id: CurrentUserId,
    db: DBSession,
) -> BulkCreateResponse:
    """Create several cards at once."""
    logger.info(f"[DecksRouter] Bulk creating {len(bulk_data.cards)} cards in deck: {deck_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        return await get_scheduling_service(db).bulk_create_cards(deck_id, bulk_data)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.get(
    "/{deck_id}/cards",
    response_model=CardList,
    summary="List cards of a deck",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def list_cards(deck_id: str, user_id: CurrentUserId, db: DBSession) -> CardList:
    """List all cards of a deck, newest first."""
    try:
        await authorize_deck(db, deck_id, user_id, allow_public=True)
        return await get_scheduling_service(db).list_cards(deck_id)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


@decks_router.get(
    "/{deck_id}/cards/due",
    response_model=DueCardsResponse,
    summary="Get cards due for review",
    description="Cards of the deck that are due now, most overdue first.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Deck not found"},
    },
)
async def get_due_cards(
    deck_id: str,
    user_id: CurrentUserId,
    db: DBSession,
    limit: Optional[int] = Query(
        settings.due_cards_default_limit,
        ge=1,
        le=settings.due_cards_max_limit,
        description="Maximum cards to return",
    ),
) -> DueCardsResponse:
    """Get cards due for review."""
    logger.info(f"[DecksRouter] Getting due cards, deck: {deck_id}, user: {user_id}")

    try:
        await authorize_deck(db, deck_id, user_id)
        return await get_scheduling_service(db).get_due_cards(deck_id, limit=limit)
    except DeckNotFoundError as e:
        logger.warning(f"[DecksRouter] Deck not found: {deck_id}")
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("deck")


# ═══════════════════════════════════════════════════════════════════════════
# CARD ROUTER
# ═══════════════════════════════════════════════════════════════════════════

cards_router = APIRouter(prefix="/cards", tags=["Cards"])


@cards_router.get(
    "/{card_id}",
    response_model=CardRead,
    summary="Get card by ID",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Card not found"},
    },
)
async def get_card(card_id: str, user_id: CurrentUserId, db: DBSession) -> CardRead:
    try:
        await authorize_card(db, card_id, user_id, allow_public=True)
        return await get_scheduling_service(db).get_card(card_id)
    except CardNotFoundError as e:
        return _card_not_found(e)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("card")


@cards_router.post(
    "/{card_id}/review",
    response_model=ReviewResponse,
    summary="Submit card review",
    description="Submit a 0-5 quality score for a card and update its SRS state. "
                "Out-of-range scores are clamped.",
    responses={
        200: {"model": ReviewResponse, "description": "Review processed"},
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Card not found"},
        429: {"description": "Too many reviews"},
    },
)
@limiter.limit(settings.review_rate_limit)
async def review_card(
    request: Request,
    card_id: str,
    review_data: ReviewRequest,
    user_id: CurrentUserId,
    db: DBSession,
) -> ReviewResponse:
    """Submit a card review."""
    logger.info(f"[CardsRouter] Reviewing card: {card_id}, quality: {review_data.quality}")

    try:
        await authorize_card(db, card_id, user_id)
        return await get_scheduling_service(db).review_card(card_id, review_data.quality)
    except CardNotFoundError as e:
        logger.warning(f"[CardsRouter] Card not found: {card_id}")
        return _card_not_found(e)
    except DeckNotFoundError as e:
        logger.warning(f"[CardsRouter] Deck of card {card_id} not found")
        return _deck_not_found(e)
    except OwnershipViolationError:
        logger.warning(f"[CardsRouter] Access denied to card {card_id}")
        raise _access_denied("card")


@cards_router.patch(
    "/{card_id}",
    response_model=CardRead,
    summary="Update card content",
    description="Update card content without touching its SRS state.",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Card not found"},
    },
)
async def update_card(
    card_id: str,
    card_data: CardUpdate,
    user_id: CurrentUserId,
    db: DBSession,
) -> CardRead:
    """Update card content (no SRS reset)."""
    logger.info(f"[CardsRouter] Updating card: {card_id}, user: {user_id}")

    try:
        await authorize_card(db, card_id, user_id)
        return await get_scheduling_service(db).update_card(card_id, card_data)
    except CardNotFoundError as e:
        return _card_not_found(e)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("card")


@cards_router.delete(
    "/{card_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete card",
    responses={
        403: {"description": "Access denied"},
        404: {"model": CardsError, "description": "Card not found"},
    },
)
async def delete_card(card_id: str, user_id: CurrentUserId, db: DBSession) -> None:
    """Delete a card and drop it from its deck's counters."""
    logger.info(f"[CardsRouter] Deleting card: {card_id}, user: {user_id}")

    try:
        await authorize_card(db, card_id, user_id)
        await get_scheduling_service(db).delete_card(card_id)
    except CardNotFoundError as e:
        return _card_not_found(e)
    except DeckNotFoundError as e:
        return _deck_not_found(e)
    except OwnershipViolationError:
        raise _access_denied("card")
