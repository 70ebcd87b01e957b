"""Tests for word-count based shot pacing."""

import pytest
from hypothesis import given, settings, strategies as st

from storyplanner.services.pacing import ShotBounds, clamp_shots, compute_shot_bounds, count_words


@pytest.mark.parametrize(
    ("words", "expected"),
    [
        (0, ShotBounds(3, 6)),
        (299, ShotBounds(3, 6)),
        (300, ShotBounds(6, 10)),
        (799, ShotBounds(6, 10)),
        (800, ShotBounds(10, 16)),
        (1499, ShotBounds(10, 16)),
        (1500, ShotBounds(16, 24)),
        (2000, ShotBounds(16, 24)),
        (2999, ShotBounds(16, 24)),
        (3000, ShotBounds(24, 35)),
        (250_000, ShotBounds(24, 35)),
    ],
)
def test_band_boundaries(words, expected):
    assert compute_shot_bounds(words) == expected


def test_count_words_splits_on_any_whitespace():
    assert count_words("one  two\nthree\tfour ") == 4
    assert count_words("") == 0


def test_clamp_trims_overshoot_only():
    bounds = ShotBounds(3, 6)
    assert clamp_shots(list(range(10)), bounds) == [0, 1, 2, 3, 4, 5]
    assert clamp_shots([1], bounds) == [1]


@pytest.mark.property
class TestPacingProperties:
    @given(a=st.integers(min_value=0, max_value=100_000), b=st.integers(min_value=0, max_value=100_000))
    @settings(max_examples=100, deadline=None)
    def test_bounds_are_monotone(self, a, b):
        low, high = sorted((a, b))
        lo_bounds, hi_bounds = compute_shot_bounds(low), compute_shot_bounds(high)
        assert lo_bounds.min_shots <= hi_bounds.min_shots
        assert lo_bounds.max_shots <= hi_bounds.max_shots

    @given(words=st.integers(min_value=0, max_value=100_000))
    @settings(max_examples=100, deadline=None)
    def test_range_is_well_formed(self, words):
        bounds = compute_shot_bounds(words)
        assert 1 <= bounds.min_shots < bounds.max_shots
