"""
Recommendation interface, navigable-index contract and key conversion helpers.
"""

import operator
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

import numpy as np

from ..core.errors import IncompatibleIdError, NotFoundError
from util.logging import logger
from .assembly import assemble
from .types import Distance, RecommendationList, ScoredCandidate

K = TypeVar("K")
R = TypeVar("R")

U16_MAX = 2 ** 16 - 1
U32_MAX = 2 ** 32 - 1
USIZE_MAX = 2 ** 64 - 1


def _as_unsigned(value: Any, upper: int) -> int:
    if isinstance(value, (bool, np.bool_)):
        raise IncompatibleIdError(value)
    try:
        converted = operator.index(value)
    except TypeError as exc:
        raise IncompatibleIdError(value) from exc
    if converted < 0 or converted > upper:
        raise IncompatibleIdError(value, "identifier out of range")
    return converted


def as_u32(value: Any) -> int:
    """Convert an identifier to a 32-bit unsigned key."""
    return _as_unsigned(value, U32_MAX)


def as_usize(value: Any) -> int:
    """Convert an identifier to a 64-bit unsigned key."""
    return _as_unsigned(value, USIZE_MAX)


def as_is(value: Any) -> Any:
    """Use the identifier unchanged; it must be hashable."""
    try:
        hash(value)
    except TypeError as exc:
        raise IncompatibleIdError(value, "identifier is not hashable") from exc
    return value


def check_count(n_items: int) -> int:
    """Validate a requested result count (u16 range)."""
    if isinstance(n_items, bool):
        raise ValueError(f"n_items must be an integer, got {n_items!r}")
    try:
        n = operator.index(n_items)
    except TypeError as exc:
        raise ValueError(f"n_items must be an integer, got {n_items!r}") from exc
    if n < 0 or n > U16_MAX:
        raise ValueError(f"n_items must be between 0 and {U16_MAX}, got {n}")
    return n


class IRecommender(ABC, Generic[K, R]):
    """Abstract interface every backend and decorator implements."""

    @abstractmethod
    def recommend(self, item_id: K, n_items: int) -> RecommendationList:
        """
        Return up to n_items entries most similar to item_id.

        Raises:
            NotFoundError: subject cannot be resolved
            IncompatibleIdError: subject cannot be converted to the internal key
            StorageError, SearchIndexError: backend failures
        """
        pass


class NavigableIndex(ABC, Generic[K]):
    """An index that can return stored points and search around a point."""

    @abstractmethod
    def get_point(self, key: K) -> Optional[np.ndarray]:
        """Get an item's vector from the index, or None."""
        pass

    @abstractmethod
    def search(self, subject: np.ndarray, n_items: int) -> List[Distance]:
        """Return the nearest points in the space, closest first."""
        pass

    def get_neighbors(self, subject: np.ndarray, n_items: int) -> Iterator[K]:
        """Nearest keys without the distances."""
        return (distance.item_id for distance in self.search(subject, n_items))


class NavigableRecommender(IRecommender, NavigableIndex):
    """
    Recommender over a navigable index: resolve the subject's point, search
    around it and assemble the neighbours.
    """

    backend_name = "navigable"

    def __init__(self, key_converter: Callable[[Any], Any] = as_usize,
                 result_converter: Optional[Callable[[Any], Any]] = None):
        self.key_converter = key_converter
        self.result_converter = result_converter

    def to_internal(self, item_id: Any) -> Any:
        try:
            return self.key_converter(item_id)
        except IncompatibleIdError:
            raise
        except (TypeError, ValueError, OverflowError) as exc:
            raise IncompatibleIdError(item_id) from exc

    def finish(self, recommendations: RecommendationList) -> RecommendationList:
        if self.result_converter is None:
            return recommendations
        return recommendations.map_ids(self.result_converter)

    def recommend(self, item_id: Any, n_items: int) -> RecommendationList:
        n = check_count(n_items)
        key = self.to_internal(item_id)
        point = self.get_point(key)
        if point is None:
            logger.log_query(self.backend_name, item_id, n, status="not_found")
            raise NotFoundError(item_id)
        if n == 0:
            return RecommendationList()

        # One extra neighbour makes room for the subject itself
        neighbours = self.search(point, n + 1)
        recommendations = assemble(key, neighbours, ScoredCandidate.from_distance, limit=n)
        logger.log_query(self.backend_name, item_id, n, len(recommendations))
        return self.finish(recommendations)
