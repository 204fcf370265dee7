"""Field comparators for pairwise scoring.

Pure, deterministic functions over raw field values. Values are compared
after ``normalize_text`` so that case, accents and punctuation never
decide a match on their own.
"""

from __future__ import annotations

from typing import Any

from rapidfuzz import fuzz

from recolink.models.records import normalize_text

__all__ = [
    "exact_agreement",
    "string_similarity",
]


def exact_agreement(value_a: Any, value_b: Any) -> bool | None:
    """Compare two values for equality after normalization.

    Parameters
    ----------
    value_a : Any
        Value from the first record.
    value_b : Any
        Value from the second record.

    Returns
    -------
    bool | None
        ``None`` when either side is missing (the field does not
        participate), otherwise whether the normalized values are equal.
    """
    norm_a = normalize_text(value_a)
    norm_b = normalize_text(value_b)
    if not norm_a or not norm_b:
        return None
    return norm_a == norm_b


def string_similarity(value_a: Any, value_b: Any) -> float | None:
    """Normalized indel similarity (``rapidfuzz.fuzz.ratio`` / 100).

    Returns
    -------
    float | None
        Similarity in [0, 1], or ``None`` when either side is missing.

    Examples
    --------
    >>> string_similarity("Acme Corp", "Acme Corporation")
    0.72
    """
    norm_a = normalize_text(value_a)
    norm_b = normalize_text(value_b)
    if not norm_a or not norm_b:
        return None
    return round(fuzz.ratio(norm_a, norm_b) / 100.0, 6)

