"""Bag of Words vector normalization and similarity scores.

Score definitions follow DBoW2 so that values are comparable with
vocabularies produced by the C++ tools:

- L1:            1 - 0.5 * |v - w|_1             in [0, 1], higher is better
- L2:            1 - sqrt(1 - v . w)             in [0, 1], higher is better
- chi-square:    2 * sum(v_i w_i / (v_i + w_i))  in [0, 1], higher is better
- KL:            sum(v_i log(v_i / w_i))         >= 0, lower is better
- Bhattacharyya: sum(sqrt(v_i w_i))              in [0, 1], higher is better
- dot product:   sum(v_i w_i)                    unbounded, higher is better
"""

from __future__ import annotations

import math

from ..config import ScoringType

BowVector = dict[int, float]

# log(DBL_EPSILON), used by KL for words missing from the second vector
LOG_EPS = math.log(2.220446049250313e-16)

_L1_SCORINGS = {
    ScoringType.L1_NORM,
    ScoringType.CHI_SQUARE,
    ScoringType.KL,
    ScoringType.BHATTACHARYYA,
}


def must_normalize(scoring: ScoringType) -> bool:
    return scoring is not ScoringType.DOT_PRODUCT


def normalize(vector: BowVector, scoring: ScoringType) -> BowVector:
    """Scale a vector to unit L1 or L2 norm as the scoring requires."""
    if not must_normalize(scoring):
        return dict(vector)

    if scoring in _L1_SCORINGS:
        norm = sum(abs(value) for value in vector.values())
    else:
        norm = math.sqrt(sum(value * value for value in vector.values()))

    if norm <= 0:
        return dict(vector)
    return {word: value / norm for word, value in vector.items()}


def score(v: BowVector, w: BowVector, scoring: ScoringType) -> float:
    """Similarity between two vectors produced by the same vocabulary."""
    common = v.keys() & w.keys()

    if scoring is ScoringType.L1_NORM:
        words = v.keys() | w.keys()
        distance = sum(abs(v.get(i, 0.0) - w.get(i, 0.0)) for i in words)
        return 1.0 - 0.5 * distance

    if scoring is ScoringType.L2_NORM:
        dot = sum(v[i] * w[i] for i in common)
        if dot >= 1.0:
            return 1.0
        return 1.0 - math.sqrt(1.0 - dot)

    if scoring is ScoringType.CHI_SQUARE:
        return 2.0 * sum(v[i] * w[i] / (v[i] + w[i]) for i in common if v[i] + w[i] != 0)

    if scoring is ScoringType.KL:
        total = 0.0
        for i, value in v.items():
            if value <= 0:
                continue
            if w.get(i, 0.0) > 0:
                total += value * math.log(value / w[i])
            else:
                total += value * (math.log(value) - LOG_EPS)
        return total

    if scoring is ScoringType.BHATTACHARYYA:
        return sum(math.sqrt(v[i] * w[i]) for i in common if v[i] * w[i] > 0)

    return sum(v[i] * w[i] for i in common)
