"""
Graph-based recommendation backend over a FAISS HNSW index.

Vectors are materialised into a VectorCache, inserted into the graph in row
order (graph labels are cache rows), then the index is frozen for search.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Mapping, Optional, Union

import numpy as np

from ..core.errors import SearchIndexError, ValidationError
from ..core.schema import GraphMetric, HnswConfig, validate_config
from util.logging import logger
from .cache import VectorCache
from .index import NavigableRecommender, as_usize
from .providers import VectorProvider
from .types import Distance


def _import_faiss():
    try:
        import faiss
    except ImportError:
        raise ImportError("FAISS not installed. Please install faiss-cpu package.")
    return faiss


def _check_rows(matrix: np.ndarray, start: int, stop: int) -> None:
    """Verify a block of rows can be handed to the index as-is."""
    block = matrix[start:stop]
    if not block.flags.c_contiguous:
        raise ValidationError(f"Rows {start}..{stop} are not contiguous")
    finite = np.isfinite(block).all(axis=1)
    if not finite.all():
        bad_row = start + int(np.argmin(finite))
        raise ValidationError(f"Row {bad_row} contains non-finite values")


class HnswGraph:
    """
    Thin wrapper over faiss.IndexHNSWFlat with an explicit build -> search
    mode transition. Once in search mode no insertions are accepted.
    """

    def __init__(self, dimensions: int, config: HnswConfig):
        faiss = _import_faiss()
        self.faiss = faiss
        self.metric = config.metric
        faiss_metric = faiss.METRIC_L2 if config.metric == GraphMetric.L2 else faiss.METRIC_INNER_PRODUCT

        self.index = faiss.IndexHNSWFlat(dimensions, config.max_connections, faiss_metric)
        self.index.hnsw.efConstruction = config.ef_construction
        self.index.hnsw.efSearch = config.search_breadth
        self.index.hnsw.search_bounded_queue = config.bounded_queue
        self._cap_levels(config.layer_count)
        self.searching = False

    def _cap_levels(self, layer_count: int) -> None:
        # Leftover level probability mass collapses onto the top allowed level
        probas = self.faiss.vector_to_array(self.index.hnsw.assign_probas)
        if len(probas) > layer_count:
            self.faiss.copy_array_to_vector(
                np.ascontiguousarray(probas[:layer_count]), self.index.hnsw.assign_probas
            )

    def prepare(self, vectors: np.ndarray) -> np.ndarray:
        """Convert vectors into the form the index stores and searches."""
        prepared = np.array(vectors, dtype=np.float32, order="C", ndmin=2)
        if self.metric == GraphMetric.COSINE:
            self.faiss.normalize_L2(prepared)
        return prepared

    def insert(self, rows: np.ndarray) -> None:
        if self.searching:
            raise SearchIndexError("Index is in search mode; insertions are not permitted")
        self.index.add(rows)

    def set_searching_mode(self) -> None:
        self.searching = True

    @property
    def ntotal(self) -> int:
        return int(self.index.ntotal)

    def to_distance(self, raw: float) -> float:
        """Express the engine's raw output as a distance (smaller is closer)."""
        if self.metric == GraphMetric.L2:
            # The engine reports squared L2
            return math.sqrt(max(float(raw), 0.0))
        return 1.0 - float(raw)

    def search(self, query: np.ndarray, k: int):
        return self.index.search(self.prepare(query), k)


class HnswRecommender(NavigableRecommender):
    """Graph-based implementation of IRecommender."""

    backend_name = "hnsw"

    def __init__(self, graph: HnswGraph, cache: VectorCache,
                 key_converter: Callable[[Any], Any] = as_usize,
                 result_converter: Optional[Callable[[Any], Any]] = None):
        super().__init__(key_converter, result_converter)
        self.graph = graph
        self.cache = cache

    @classmethod
    def build(cls, config: Union[HnswConfig, Mapping[str, Any], None] = None,
              vector_provider: Optional[VectorProvider] = None, *,
              key_converter: Callable[[Any], Any] = as_usize,
              result_converter: Optional[Callable[[Any], Any]] = None,
              max_workers: Optional[int] = None) -> "HnswRecommender":
        """
        Build a graph index from a vector provider.

        Args:
            config: HnswConfig or a mapping of its fields
            vector_provider: One-shot source of keyed vectors
            key_converter: Maps provider keys and query ids to the canonical key
            result_converter: Maps canonical keys to returned ids
            max_workers: Threads for cache population and row checks

        Returns:
            HnswRecommender in search mode

        Raises:
            ValidationError: invalid configuration, bad vectors, or insertion failure
        """
        config = validate_config(HnswConfig, config, required={"vector_provider": vector_provider})
        logger.log_build(cls.backend_name, "started", {
            "max_connections": config.max_connections,
            "layer_count": config.layer_count,
            "ef_construction": config.ef_construction,
            "metric": config.metric.value,
            "n_items": len(vector_provider)
        })
        try:
            cache = VectorCache.build(vector_provider, key_converter, max_workers)
            graph = HnswGraph(cache.dimensions, config)
            cls._insert_rows(graph, cache, config.insert_batch_size, max_workers)
        except ValidationError as e:
            logger.log_build(cls.backend_name, "failed", {"error": str(e)})
            raise

        graph.set_searching_mode()
        logger.log_build(cls.backend_name, "completed", {"n_items": graph.ntotal})
        return cls(graph, cache, key_converter, result_converter)

    @staticmethod
    def _insert_rows(graph: HnswGraph, cache: VectorCache, batch_size: int,
                     max_workers: Optional[int]) -> None:
        n_rows = len(cache)
        if n_rows == 0:
            return
        bounds = [(start, min(start + batch_size, n_rows)) for start in range(0, n_rows, batch_size)]
        matrix = cache.matrix

        # Row blocks are checked concurrently; the graph's own add is multithreaded
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            checks = [pool.submit(_check_rows, matrix, start, stop) for start, stop in bounds]
            for check in checks:
                check.result()

        for start, stop in bounds:
            logger.debug(f"Inserting rows {start}..{stop} into the index")
            try:
                graph.insert(graph.prepare(matrix[start:stop]))
            except (RuntimeError, MemoryError) as e:
                raise ValidationError(f"Couldn't insert rows {start}..{stop} into the index: {e}") from e

        if graph.ntotal != n_rows:
            raise ValidationError(f"Index holds {graph.ntotal} rows, expected {n_rows}")

    def get_point(self, key: Any) -> Optional[np.ndarray]:
        return self.cache.get_vector(key)

    def search(self, subject: np.ndarray, n_items: int) -> List[Distance]:
        k = min(int(n_items), self.graph.ntotal)
        if k <= 0:
            return []
        try:
            distances, labels = self.graph.search(subject, k)
        except (RuntimeError, ValueError) as e:
            raise SearchIndexError(f"Graph search failed: {e}") from e

        neighbours = []
        for raw, label in zip(distances[0], labels[0]):
            # Unfilled result slots are reported as -1
            if label < 0:
                continue
            neighbours.append(Distance(self.cache.key_at(int(label)), self.graph.to_distance(raw)))
        logger.debug(f"Graph search returned {len(neighbours)} results")
        return neighbours
