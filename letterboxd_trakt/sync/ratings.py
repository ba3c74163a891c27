"""
Rating conversion between Letterboxd (0-5 stars) and Trakt (1-10).
"""

import math
from typing import Optional, Union


def convert_rating(rating: Optional[str]) -> Union[int, float]:
    """
    Convert a Letterboxd star rating to a Trakt rating.

    Stars are doubled and rounded half up, so "4.5" becomes 9 and
    "2.75" becomes 6. No clamping is applied.

    Args:
        rating: Rating text as exported by Letterboxd

    Returns:
        Trakt rating, 0 for an empty rating and NaN for malformed input
    """
    if rating is None:
        return 0
    text = str(rating).strip()
    if not text:
        return 0

    try:
        value = float(text)
    except ValueError:
        return math.nan

    doubled = value * 2 + 0.5
    if not math.isfinite(doubled):
        return math.nan

    return math.floor(doubled)


def is_submittable_rating(value: Union[int, float]) -> bool:
    """A converted rating may be written only when it is a real, positive number."""
    return not math.isnan(value) and value > 0
