"""
Custom exceptions for the application.
"""

from fastapi import HTTPException, status


class StudyCardsException(Exception):
    """Base exception for StudyCards application."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


# ═══════════════════════════════════════════════════════════════════════════
# DECK & CARD EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class DeckNotFoundError(StudyCardsException):
    """Raised when a deck is not found."""
    pass


class CardNotFoundError(StudyCardsException):
    """Raised when a card is not found."""
    pass


class OwnershipViolationError(StudyCardsException):
    """Raised when the caller does not own the deck a request targets."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# INTEGRITY EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class AggregateInconsistencyError(StudyCardsException):
    """
    Raised when deck progress counters cannot be kept in step with a card.

    Fatal for the affected deck: the unit of work is rolled back and the
    counters must be repaired with a reconcile.
    """

    def __init__(self, message: str, deck_id: str):
        self.deck_id = deck_id
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════════════════
# HTTP EXCEPTION HELPERS
# ═══════════════════════════════════════════════════════════════════════════


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(detail: str = "Access denied") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
