"""
Result assembly shared by all backends: conversion, self-exclusion and ranking.
"""

from typing import Any, Callable, Iterable, Optional

from .types import RecommendationList, ScoredCandidate


def assemble(subject_id: Any, raw_candidates: Iterable[Any],
             convert: Callable[[Any], ScoredCandidate] = ScoredCandidate.from_pair,
             limit: Optional[int] = None) -> RecommendationList:
    """
    Turn raw backend candidates into a RecommendationList.

    Candidates whose id equals the subject are dropped, the rest are sorted by
    descending score. Comparison happens in the backend's canonical key space,
    so convert result ids only after assembling.

    Args:
        subject_id: Canonical key of the subject
        raw_candidates: Backend output, e.g. (id, score) pairs or Distance objects
        convert: Maps one raw candidate to a ScoredCandidate
        limit: Keep at most this many entries after ranking

    Returns:
        RecommendationList without the subject
    """
    candidates = (convert(raw) for raw in raw_candidates)
    ranked = RecommendationList(c for c in candidates if c.item_id != subject_id)
    if limit is not None:
        return ranked.truncated(limit)
    return ranked


def rank(raw_candidates: Iterable[Any],
         convert: Callable[[Any], ScoredCandidate] = ScoredCandidate.from_pair) -> RecommendationList:
    """Sort candidates without self-exclusion (generated ids, no subject)."""
    return RecommendationList(convert(raw) for raw in raw_candidates)
