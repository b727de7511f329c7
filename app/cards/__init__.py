"""
Cards module - Deck and card management with SM-2 scheduling.
"""

from app.cards.router import cards_router, decks_router

__all__ = ["cards_router", "decks_router"]
