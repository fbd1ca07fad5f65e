"""Severity range matching.

Ranges are inclusive on both ends and may overlap. When several labels
contain a severity the primary label is the one with the lowest ``min``; ties
go to the highest ``weight``, then the lowest id. Recommendations are not
ranked: every overlapping one applies.
"""
from __future__ import annotations

from typing import Iterable, List

from ..errors import NoMatchingLabel
from ..models.entities import Label, Recommendation


def _label_priority(label: Label):
    return (label.min, -label.weight, label.id)


def classify_label(severity: float, labels: Iterable[Label]) -> Label:
    candidates = [label for label in labels if label.contains(severity)]
    if not candidates:
        raise NoMatchingLabel(severity)
    return min(candidates, key=_label_priority)


def match_recommendations(
    severity: float, recommendations: Iterable[Recommendation]
) -> List[Recommendation]:
    matched: List[Recommendation] = []
    seen = set()
    for recommendation in recommendations:
        if recommendation.id in seen or not recommendation.contains(severity):
            continue
        seen.add(recommendation.id)
        matched.append(recommendation)
    return matched
