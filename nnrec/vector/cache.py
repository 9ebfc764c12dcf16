"""
Dense vector cache keyed by arbitrary hashable identifiers.

Built once from a VectorProvider, then frozen and shared read-only.
"""

from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import numpy as np

from ..core.errors import IncompatibleIdError, ValidationError
from util.logging import logger
from .providers import VectorProvider


def _write_row(vectors: np.ndarray, row: int, vector: Any) -> None:
    """Write one vector into its own row of the preallocated matrix."""
    values = np.asarray(vector, dtype=np.float32)
    if values.ndim != 1 or values.shape[0] != vectors.shape[1]:
        raise ValidationError(
            f"Vector at row {row} has shape {values.shape}, expected ({vectors.shape[1]},)"
        )
    vectors[row, :] = values


class VectorCache:
    """
    n x d float32 matrix plus a key -> row mapping.

    Every key in the mapping indexes a fully written row; the structure is
    only handed out after all rows are populated.
    """

    def __init__(self, vectors: np.ndarray, key_to_row: Dict[Any, int], order: List[Any]):
        vectors.setflags(write=False)
        self._vectors = vectors
        self._key_to_row = MappingProxyType(key_to_row)
        self._order = tuple(order)

    @classmethod
    def build(cls, provider: VectorProvider,
              key_converter: Optional[Callable[[Any], Any]] = None,
              max_workers: Optional[int] = None) -> "VectorCache":
        """
        Consume a provider exactly once and materialise its vectors.

        Rows are written concurrently; each task targets a disjoint row.

        Args:
            provider: One-shot source of keyed vectors
            key_converter: Maps provider keys to the canonical key type
            max_workers: Thread count for row population (executor default if None)

        Raises:
            ValidationError: declared length or dimensionality does not match
                the items produced, a key is duplicated or cannot be converted
        """
        n_items = len(provider)
        dimensions = int(provider.vector_dimensions())
        if dimensions < 1:
            raise ValidationError(f"Vector dimensions must be positive, got {dimensions}")

        logger.debug(f"Preallocating vector cache of shape ({n_items}, {dimensions})")
        vectors = np.zeros((n_items, dimensions), dtype=np.float32)
        key_to_row: Dict[Any, int] = {}
        order: List[Any] = []

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            pending = []
            for row, keyed_vector in enumerate(provider):
                if row >= n_items:
                    raise ValidationError(
                        f"Vector provider declared {n_items} items but yielded more"
                    )
                key = keyed_vector.key
                if key_converter is not None:
                    try:
                        key = key_converter(key)
                    except (IncompatibleIdError, TypeError, ValueError, OverflowError) as exc:
                        raise ValidationError(f"Key {keyed_vector.key!r} cannot be converted") from exc
                if key in key_to_row:
                    raise ValidationError(f"Duplicate key {key!r} in vector provider")

                key_to_row[key] = row
                order.append(key)
                pending.append(pool.submit(_write_row, vectors, row, keyed_vector.vector))

            for future in pending:
                future.result()

        if len(order) != n_items:
            raise ValidationError(
                f"Vector provider declared {n_items} items but yielded {len(order)}"
            )

        logger.debug(f"Vector cache populated with {n_items} rows")
        return cls(vectors, key_to_row, order)

    def get_vector(self, key: Any) -> Optional[np.ndarray]:
        """Return a copy of the stored vector, or None if the key is absent."""
        row = self.row_of(key)
        if row is None:
            return None
        return self._vectors[row].copy()

    def row_of(self, key: Any) -> Optional[int]:
        try:
            return self._key_to_row.get(key)
        except TypeError:
            return None

    def key_at(self, row: int) -> Any:
        return self._order[row]

    @property
    def matrix(self) -> np.ndarray:
        """Read-only view of the whole matrix."""
        return self._vectors

    @property
    def dimensions(self) -> int:
        return int(self._vectors.shape[1])

    @property
    def mapping(self) -> Mapping[Any, int]:
        return self._key_to_row

    def keys(self) -> Iterator[Any]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, key: Any) -> bool:
        try:
            return key in self._key_to_row
        except TypeError:
            return False
