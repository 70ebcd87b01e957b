"""
Dynamic pacing: how many shots a chapter of a given length should get.

The bounds are advisory; they are written into the plan instruction and the
plan generator only trims runaway lists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ShotBounds:
    """Target shot count range, lower bound inclusive, upper exclusive."""

    min_shots: int
    max_shots: int


# (exclusive word-count ceiling, bounds); the last band has no ceiling.
_PACING_BANDS: tuple[tuple[int | None, ShotBounds], ...] = (
    (300, ShotBounds(3, 6)),  # flash fiction
    (800, ShotBounds(6, 10)),  # short chapter / scene
    (1500, ShotBounds(10, 16)),  # standard chapter
    (3000, ShotBounds(16, 24)),  # long chapter
    (None, ShotBounds(24, 35)),  # novella
)


def count_words(text: str) -> int:
    return len(text.split())


def compute_shot_bounds(word_count: int) -> ShotBounds:
    for ceiling, bounds in _PACING_BANDS:
        if ceiling is None or word_count < ceiling:
            return bounds
    raise AssertionError("unreachable: last pacing band has no ceiling")


def clamp_shots(shots: Sequence[T], bounds: ShotBounds) -> list[T]:
    """Trim a shot list that overshoots the range; short lists pass through."""
    if len(shots) > bounds.max_shots:
        logger.warning(
            "plan overshot shot range count=%d max=%d; trimming",
            len(shots),
            bounds.max_shots,
        )
        return list(shots[: bounds.max_shots])
    if len(shots) < bounds.min_shots:
        logger.info("plan undershot shot range count=%d min=%d", len(shots), bounds.min_shots)
    return list(shots)
