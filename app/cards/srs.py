"""
Spaced Repetition System (SRS) algorithm - SM-2 variant.

Quality ratings:
    5 - Perfect response
    4 - Correct response after a hesitation
    3 - Correct response with serious difficulty
    2 - Incorrect response; easy mistake
    1 - Incorrect response; difficult material
    0 - Complete blackout

Everything in this module is pure: no I/O, no randomness, no clock reads
except as a default for ``now``.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3

INITIAL_INTERVAL = 0
INITIAL_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3

MAX_INTERVAL_DAYS = 365
MASTERED_INTERVAL_DAYS = 21

# Fixed steps for the first two successful reviews
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6


class CardStatus(str, Enum):
    """Card lifecycle status, derived from its scheduling parameters."""
    NEW = "new"
    LEARNING = "learning"
    MASTERED = "mastered"


@dataclass(frozen=True)
class SRSUpdate:
    """Result of an SRS calculation after a review."""
    interval: int
    ease_factor: float
    next_review_at: datetime
    status: CardStatus


@dataclass(frozen=True)
class InitialSRSState:
    """Scheduling parameters of a freshly created card."""
    interval: int
    ease_factor: float
    next_review_at: datetime
    status: CardStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_quality(quality: int) -> int:
    """Clamp a self-reported quality score into [0, 5]."""
    return min(MAX_QUALITY, max(MIN_QUALITY, int(quality)))


def next_ease_factor(previous_ease_factor: float, quality: int) -> float:
    """SM-2 ease factor update, floored at 1.3."""
    miss = MAX_QUALITY - quality
    ease = previous_ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
    return max(MIN_EASE_FACTOR, ease)


def status_for_interval(interval: int) -> CardStatus:
    """Status a reviewed card gets for a given interval."""
    if interval >= MASTERED_INTERVAL_DAYS:
        return CardStatus.MASTERED
    return CardStatus.LEARNING


def transition(
    status: CardStatus,
    quality: int,
    interval: int,
    ease_factor: float,
) -> Tuple[CardStatus, int, float]:
    """
    Apply one review to a card's scheduling state.

    (status, quality, interval, ease) -> (status, interval, ease)

    A NEW card has never been scheduled, so its stored interval is ignored
    and the first pass always gives FIRST_INTERVAL_DAYS. A failed review
    always lands in LEARNING (NEW is never re-entered), a passed review
    lands in LEARNING or MASTERED depending on the new interval.
    """
    quality = clamp_quality(quality)
    ease = next_ease_factor(ease_factor, quality)

    if status == CardStatus.NEW:
        interval = INITIAL_INTERVAL

    if quality < PASSING_QUALITY:
        return CardStatus.LEARNING, FIRST_INTERVAL_DAYS, ease

    if interval <= 0:
        new_interval = FIRST_INTERVAL_DAYS
    elif interval == 1:
        new_interval = SECOND_INTERVAL_DAYS
    else:
        new_interval = _round_half_up(interval * ease)

    new_interval = min(MAX_INTERVAL_DAYS, new_interval)
    return status_for_interval(new_interval), new_interval, ease


def calculate_next_review(
    quality: int,
    previous_interval: int,
    previous_ease_factor: float,
    repetitions: int,
    now: Optional[datetime] = None,
    previous_status: Optional[CardStatus] = None,
) -> SRSUpdate:
    """
    Calculate the next review state based on the quality score.

    Algorithm:
    - quality < 3: interval resets to 1 day, status LEARNING
    - quality >= 3: 0 -> 1 day, 1 -> 6 days, otherwise interval * ease,
      capped at 365 days; MASTERED from 21 days on

    Args:
        quality: Recall quality, clamped to 0-5
        previous_interval: Current interval in days
        previous_ease_factor: Current ease factor
        repetitions: Completed reviews so far (not used by the formula)
        now: Reference time, defaults to the current UTC time
        previous_status: Current status; inferred from the interval if omitted

    Returns:
        SRSUpdate with interval, ease_factor, next_review_at and status
    """
    now = now or _utcnow()

    if previous_status is None:
        previous_status = status_for_interval(previous_interval) if previous_interval > 0 else CardStatus.NEW

    status, interval, ease = transition(
        previous_status,
        quality,
        previous_interval,
        previous_ease_factor,
    )

    return SRSUpdate(
        interval=interval,
        ease_factor=ease,
        next_review_at=now + timedelta(days=interval),
        status=status,
    )


def get_initial_srs_state(now: Optional[datetime] = None) -> InitialSRSState:
    """Initial SRS state for a new card: due immediately."""
    return InitialSRSState(
        interval=INITIAL_INTERVAL,
        ease_factor=INITIAL_EASE_FACTOR,
        next_review_at=now or _utcnow(),
        status=CardStatus.NEW,
    )


def is_due(
    last_reviewed_at: Optional[datetime],
    next_review_at: datetime,
    now: Optional[datetime] = None,
) -> bool:
    """A card is due if it was never reviewed or its next review has passed."""
    now = now or _utcnow()
    return last_reviewed_at is None or next_review_at <= now


def calculate_progress(
    total_cards: int,
    mastered_cards: int,
    learning_cards: int,
) -> Dict[str, int]:
    """Study progress buckets; new cards are whatever is left over."""
    return {
        CardStatus.MASTERED.value: mastered_cards,
        CardStatus.LEARNING.value: learning_cards,
        CardStatus.NEW.value: total_cards - (mastered_cards + learning_cards),
    }


def get_interval_display(interval_days: int) -> str:
    """
    Convert an interval in days to human-readable format.

    Args:
        interval_days: Interval in days

    Returns:
        Human-readable string (e.g., "1 day", "2 weeks", "3 months")
    """
    if interval_days <= 0:
        return "now"
    elif interval_days < 14:
        return f"{interval_days} day{'s' if interval_days != 1 else ''}"
    elif interval_days < 60:
        weeks = interval_days // 7
        return f"{weeks} weeks"
    elif interval_days < 365:
        months = interval_days // 30
        return f"{months} months"
    else:
        return "1 year"
