"""Tests for Letterboxd to Trakt rating conversion."""

import math

import pytest

from letterboxd_trakt.sync.ratings import convert_rating, is_submittable_rating


@pytest.mark.parametrize("stars", [i / 2 for i in range(0, 11)])
def test_half_star_steps_double(stars):
    """Every half-star step maps to twice its value."""
    assert convert_rating(str(stars)) == round(stars * 2)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("", 0),
        (None, 0),
        ("   ", 0),
        ("5", 10),
        ("4.5", 9),
        ("0.5", 1),
        ("2.75", 6),
        ("2.25", 5),
        ("6", 12),
    ],
)
def test_convert_rating(text, expected):
    """Known values, including round-half-up and no upper clamp."""
    assert convert_rating(text) == expected


@pytest.mark.parametrize("text", ["invalid", "four", "nan", "inf", "1e308"])
def test_malformed_rating_is_nan(text):
    """Malformed ratings are NaN, not zero."""
    assert math.isnan(convert_rating(text))


def test_only_positive_finite_ratings_are_submittable():
    assert is_submittable_rating(convert_rating("4.5"))
    assert not is_submittable_rating(convert_rating(""))
    assert not is_submittable_rating(convert_rating("0"))
    assert not is_submittable_rating(convert_rating("invalid"))
