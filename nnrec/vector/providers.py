"""
Vector providers: one-shot, length-known sources of keyed vectors.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Sequence, Tuple, Union

import numpy as np

from ..core.errors import ValidationError
from .types import KeyedVector


class VectorProvider(ABC):
    """
    Abstract source of KeyedVector items.

    A provider reports its length and dimensionality up front and may be
    iterated exactly once.
    """

    _consumed = False

    @abstractmethod
    def __len__(self) -> int:
        """Number of items the provider will yield."""
        pass

    @abstractmethod
    def vector_dimensions(self) -> int:
        """Dimensionality shared by every vector."""
        pass

    @abstractmethod
    def _generate(self) -> Iterator[KeyedVector]:
        """Yield the provider's items."""
        pass

    def __iter__(self) -> Iterator[KeyedVector]:
        if self._consumed:
            raise ValidationError("vector provider has already been consumed")
        self._consumed = True
        for item in self._generate():
            yield KeyedVector.coerce(item)

    @property
    def consumed(self) -> bool:
        return self._consumed


class ListVectorProvider(VectorProvider):
    """Provider over an in-memory collection of (key, vector) pairs."""

    def __init__(self, items: Iterable[Union[KeyedVector, Tuple[Any, Sequence[float]]]],
                 dimensions: int = None):
        self._items = [KeyedVector.coerce(item) for item in items]
        if dimensions is None:
            if not self._items:
                raise ValueError("dimensions is required for an empty provider")
            dimensions = len(self._items[0].vector)
        self._dimensions = int(dimensions)

    def __len__(self) -> int:
        return len(self._items)

    def vector_dimensions(self) -> int:
        return self._dimensions

    def _generate(self) -> Iterator[KeyedVector]:
        return iter(self._items)


class ArrayVectorProvider(VectorProvider):
    """Provider over a (n, d) matrix and a matching key sequence."""

    def __init__(self, keys: Sequence[Any], vectors: np.ndarray):
        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2:
            raise ValueError(f"Expected a 2D matrix, got shape {vectors.shape}")
        if len(keys) != vectors.shape[0]:
            raise ValueError(f"{len(keys)} keys for {vectors.shape[0]} vectors")
        self._keys = list(keys)
        self._vectors = vectors

    def __len__(self) -> int:
        return len(self._keys)

    def vector_dimensions(self) -> int:
        return int(self._vectors.shape[1])

    def _generate(self) -> Iterator[KeyedVector]:
        for key, row in zip(self._keys, self._vectors):
            yield KeyedVector(key, row)
