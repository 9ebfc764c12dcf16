"""
Value types shared by every recommendation backend.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Generic, Iterable, Iterator, List, Sequence, Tuple, TypeVar, Union, overload

import numpy as np

K = TypeVar("K")
R = TypeVar("R")


@dataclass(frozen=True)
class ScoredCandidate(Generic[R]):
    """A recommended item and its similarity score (higher is more similar)."""

    item_id: R
    """Identifier of the recommended item"""

    score: float
    """Backend-defined similarity score; only comparable within one list"""

    @classmethod
    def from_pair(cls, pair: Tuple[Any, float]) -> "ScoredCandidate":
        item_id, score = pair
        return cls(item_id, float(score))

    @classmethod
    def from_distance(cls, distance: "Distance") -> "ScoredCandidate":
        """Convert a distance-like neighbour into a score of 1 - distance."""
        return cls(distance.item_id, 1.0 - float(distance.distance))


@dataclass(frozen=True)
class Distance(Generic[K]):
    """A neighbour reported by a navigable index."""

    item_id: K
    distance: float


@dataclass
class KeyedVector(Generic[K]):
    """The unit consumed when bulk-loading a cache or index."""

    key: K
    vector: Sequence[float]

    @classmethod
    def coerce(cls, item: Union["KeyedVector", Tuple[Any, Sequence[float]]]) -> "KeyedVector":
        if isinstance(item, KeyedVector):
            return item
        key, vector = item
        return cls(key, vector)

    def as_tuple(self) -> Tuple[K, Sequence[float]]:
        return self.key, self.vector


def _score_order(candidate: ScoredCandidate) -> Tuple[bool, float]:
    # NaN scores sort after every comparable score
    if math.isnan(candidate.score):
        return True, 0.0
    return False, -candidate.score


class RecommendationList(Generic[R]):
    """
    Ordered recommendations, sorted by descending score.

    Ties keep their input order. NaN scores are placed last.
    """

    __slots__ = ("_items",)

    def __init__(self, candidates: Iterable[Union[ScoredCandidate, Tuple[Any, float]]] = ()):
        items = [
            c if isinstance(c, ScoredCandidate) else ScoredCandidate.from_pair(c)
            for c in candidates
        ]
        self._items: List[ScoredCandidate] = sorted(items, key=_score_order)

    @overload
    def __getitem__(self, index: int) -> ScoredCandidate: ...

    @overload
    def __getitem__(self, index: slice) -> List[ScoredCandidate]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ScoredCandidate]:
        return iter(self._items)

    def __eq__(self, other) -> bool:
        if isinstance(other, RecommendationList):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"RecommendationList({self._items!r})"

    def ids(self) -> List[R]:
        return [c.item_id for c in self._items]

    def scores(self) -> np.ndarray:
        return np.array([c.score for c in self._items], dtype=np.float32)

    def truncated(self, n: int) -> "RecommendationList":
        """Return the first n entries. Order is already final."""
        truncated = RecommendationList()
        truncated._items = self._items[:max(n, 0)]
        return truncated

    def map_ids(self, converter) -> "RecommendationList":
        """Convert every item id, keeping order and scores."""
        mapped = RecommendationList()
        mapped._items = [ScoredCandidate(converter(c.item_id), c.score) for c in self._items]
        return mapped

    def to_list(self) -> List[Dict[str, Any]]:
        """Plain dicts, suitable for JSON serialization."""
        return [asdict(c) for c in self._items]
