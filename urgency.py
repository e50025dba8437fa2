"""Urgency score: a legible additive priority signal for reviewers."""

from __future__ import annotations

BASE_SCORE = 5
MAX_SCORE = 10

SEVERITY_WEIGHTS = {
    "Critical": 4,
    "High": 3,
    "Medium": 1,
    "Low": 0,
}

CATEGORY_WEIGHTS = {
    "Safety": 2,
    "Water": 1,
    "Roads": 0,
    "Sanitation": 0,
    "Lighting": 0,
}


def urgency_score(severity: str, category: str) -> int:
    """Score a report from 5 to 10. Same inputs always give the same score."""
    try:
        score = BASE_SCORE + SEVERITY_WEIGHTS[severity] + CATEGORY_WEIGHTS[category]
    except KeyError as e:
        raise ValueError(f"Unknown severity or category: {e.args[0]!r}") from e
    return min(score, MAX_SCORE)
