"""
Forest-based recommendation backend: an Annoy random-projection forest whose
items and serialized trees live in a transactional storage environment.

A build inserts every item, builds the forest and stores it in one write
transaction. Without a provider a previously built forest is reopened
read-only, no rebuild needed.
"""

import hashlib
import os
import random
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..core.db import Database, StorageEnvironment, Transaction
from ..core.errors import (
    IncompatibleIdError, NotFoundError, RecommendError, SearchIndexError, StorageError,
    ValidationError
)
from ..core.schema import ForestConfig, ForestMetric, validate_config
from util.logging import logger
from .assembly import assemble
from .index import IRecommender, NavigableIndex, as_u32, check_count
from .providers import VectorProvider
from .types import Distance, RecommendationList, ScoredCandidate

# The forest's own seed comes from OS entropy, never from the caller
_seed_source = random.SystemRandom()


def _import_annoy():
    try:
        from annoy import AnnoyIndex
    except ImportError:
        raise ImportError("Annoy not installed. Please install the annoy package.")
    return AnnoyIndex


def _digest(blob: bytes) -> str:
    return hashlib.sha256(blob).hexdigest()[:16]


def _score(metric: ForestMetric, distance: float) -> float:
    # Dot product is already a similarity; the others are distances
    if metric == ForestMetric.DOT:
        return float(distance)
    return 1.0 - float(distance)


class AnnoyRecommender(IRecommender, NavigableIndex):
    """Forest-based implementation of IRecommender."""

    backend_name = "forest"

    def __init__(self, env: StorageEnvironment, db: Database, forest, config: ForestConfig,
                 dimensions: int, digest: str,
                 key_converter: Callable[[Any], Any] = as_u32,
                 result_converter: Optional[Callable[[Any], Any]] = None):
        self.env = env
        self.db = db
        self.config = config
        self.metric = config.metric
        self.dimensions = dimensions
        self._loaded = (digest, forest)
        self._reload_lock = threading.Lock()
        self.key_converter = key_converter
        self.result_converter = result_converter

    @classmethod
    def build(cls, config: Union[ForestConfig, Mapping[str, Any], None] = None,
              vector_provider: Optional[VectorProvider] = None, *,
              key_converter: Callable[[Any], Any] = as_u32,
              result_converter: Optional[Callable[[Any], Any]] = None) -> "AnnoyRecommender":
        """
        Open or create the environment, then build a fresh forest from the
        provider or reopen the existing one when no provider is given.

        Raises:
            ValidationError: invalid configuration, environment cannot be
                opened, an insertion or the commit fails, or no prebuilt
                forest exists to reopen
        """
        config = validate_config(ForestConfig, config)
        logger.log_build(cls.backend_name, "started", {
            "path": str(config.path),
            "database": config.database_name,
            "rebuild": vector_provider is not None
        })
        try:
            env = StorageEnvironment(config.path, config.map_size, config.max_dbs)
            if vector_provider is not None:
                forest, dimensions, digest = cls._init_db(env, config, vector_provider, key_converter)
            else:
                forest, dimensions, digest = cls._open_existing_db(env, config)
        except (RecommendError, OSError, RuntimeError, MemoryError) as e:
            logger.log_build(cls.backend_name, "failed", {"error": str(e)})
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Forest construction failed at {config.path}: {e}") from e

        db = Database(config.database_name)
        logger.log_build(cls.backend_name, "completed", {"dimensions": dimensions})
        return cls(env, db, forest, config, dimensions, digest, key_converter, result_converter)

    @classmethod
    def open(cls, config: Union[ForestConfig, Mapping[str, Any], None] = None,
             **kwargs) -> "AnnoyRecommender":
        """Reopen a previously built forest without rebuilding."""
        return cls.build(config, None, **kwargs)

    @staticmethod
    def _forest_path(env: StorageEnvironment, config: ForestConfig, digest: str) -> Path:
        return env.path / f"{config.database_name}.{digest}.ann"

    @classmethod
    def _load_forest(cls, env: StorageEnvironment, config: ForestConfig, blob: bytes,
                     dimensions: int, metric: str):
        """Memory-map the forest stored in blob, writing its file first if missing."""
        AnnoyIndex = _import_annoy()
        forest_path = cls._forest_path(env, config, _digest(blob))
        if not forest_path.exists():
            fd, tmp_name = tempfile.mkstemp(suffix=".ann.tmp", dir=str(env.path))
            with os.fdopen(fd, "wb") as handle:
                handle.write(blob)
            os.replace(tmp_name, forest_path)

        forest = AnnoyIndex(int(dimensions), metric)
        forest.load(str(forest_path))
        return forest

    @classmethod
    def _init_db(cls, env: StorageEnvironment, config: ForestConfig, provider: VectorProvider,
                 key_converter: Callable[[Any], Any]):
        AnnoyIndex = _import_annoy()
        dimensions = int(provider.vector_dimensions())
        n_items = len(provider)
        if dimensions < 1:
            raise ValidationError(f"Vector dimensions must be positive, got {dimensions}")

        logger.debug(f"Initializing forest database '{config.database_name}'")
        writer = AnnoyIndex(dimensions, config.metric.value)
        writer.set_seed(_seed_source.randrange(1, 2 ** 31))
        fd, tmp_name = tempfile.mkstemp(suffix=".ann.tmp", dir=str(env.path))
        os.close(fd)
        try:
            with env.write_txn() as txn:
                db = env.create_database(txn, config.database_name)
                row = cls._load_items(txn, db, writer, provider, key_converter, dimensions)
                if row != n_items:
                    raise ValidationError(
                        f"Vector provider declared {n_items} items but yielded {row}"
                    )

                logger.debug(f"Building {config.n_trees} trees over {n_items} vectors")
                writer.build(config.n_trees, config.build_jobs)
                writer.save(tmp_name)
                blob = Path(tmp_name).read_bytes()
                digest = _digest(blob)
                db.set_meta(txn, "forest", blob)
                db.set_meta(txn, "digest", digest)
                db.set_meta(txn, "dimensions", dimensions)
                db.set_meta(txn, "metric", config.metric.value)
                db.set_meta(txn, "n_items", n_items)
                logger.debug("Committing initialize transaction")
                txn.commit()
            writer.unload()

            os.replace(tmp_name, cls._forest_path(env, config, digest))
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

        forest = cls._load_forest(env, config, blob, dimensions, config.metric.value)
        return forest, dimensions, digest

    @staticmethod
    def _load_items(txn: Transaction, db: Database, writer, provider: VectorProvider,
                    key_converter: Callable[[Any], Any], dimensions: int) -> int:
        """Insert every provider item into the database and the forest writer."""
        n_items = len(provider)
        row = 0
        batch: List[Tuple[int, int, bytes]] = []
        for keyed_vector in provider:
            if row >= n_items:
                raise ValidationError(f"Vector provider declared {n_items} items but yielded more")
            try:
                key = key_converter(keyed_vector.key)
            except (IncompatibleIdError, TypeError, ValueError, OverflowError) as e:
                raise ValidationError(f"Key {keyed_vector.key!r} cannot be converted") from e
            vector = np.asarray(keyed_vector.vector, dtype=np.float32)
            if vector.ndim != 1 or vector.shape[0] != dimensions:
                raise ValidationError(
                    f"Vector for key {key!r} has shape {vector.shape}, expected ({dimensions},)"
                )

            logger.debug(f"Inserting vector {row}/{n_items} with ID {key!r}")
            writer.add_item(row, vector.tolist())
            batch.append((key, row, vector.tobytes()))
            row += 1
            if len(batch) >= 1024:
                db.put_many(txn, batch)
                batch = []
        if batch:
            db.put_many(txn, batch)
        return row

    @classmethod
    def _open_existing_db(cls, env: StorageEnvironment, config: ForestConfig):
        with env.read_txn() as txn:
            db = env.open_database(txn, config.database_name)
            if db is None:
                raise ValidationError(f"Couldn't open existing database '{config.database_name}'")
            blob = db.get_meta(txn, "forest")
            digest = db.get_meta(txn, "digest")
            dimensions = db.get_meta(txn, "dimensions")
            metric = db.get_meta(txn, "metric")
        if blob is None or dimensions is None:
            raise ValidationError(f"Database '{config.database_name}' holds no built forest")
        if metric != config.metric.value:
            raise ValidationError(
                f"Database '{config.database_name}' was built with metric '{metric}', "
                f"not '{config.metric.value}'"
            )

        forest = cls._load_forest(env, config, blob, int(dimensions), metric)
        return forest, int(dimensions), digest or _digest(blob)

    @property
    def forest(self):
        return self._loaded[1]

    @property
    def digest(self) -> str:
        return self._loaded[0]

    def _reader(self, txn: Transaction):
        """
        Return the forest built from the items visible in txn.

        A rebuild of the same database replaces both items and forest; the
        matching forest is loaded on first use after such a rebuild.
        """
        digest = self.db.get_meta(txn, "digest")
        loaded_digest, forest = self._loaded
        if digest is not None and digest == loaded_digest:
            return forest

        blob = self.db.get_meta(txn, "forest")
        dimensions = self.db.get_meta(txn, "dimensions")
        metric = self.db.get_meta(txn, "metric")
        if blob is None or dimensions is None:
            raise StorageError(f"Database '{self.db.name}' no longer holds a built forest")
        if metric != self.metric.value:
            raise StorageError(
                f"Database '{self.db.name}' was rebuilt with metric '{metric}', "
                f"not '{self.metric.value}'"
            )
        digest = digest or _digest(blob)

        with self._reload_lock:
            if self._loaded[0] != digest:
                logger.log_storage_operation("reload", str(self.env.path), details={"digest": digest})
                try:
                    forest = self._load_forest(self.env, self.config, blob, int(dimensions), metric)
                except (OSError, RuntimeError) as e:
                    raise StorageError(f"Couldn't load rebuilt forest {digest}: {e}") from e
                self._loaded = (digest, forest)
                self.dimensions = int(dimensions)
            return self._loaded[1]

    def _to_internal(self, item_id: Any) -> int:
        try:
            return self.key_converter(item_id)
        except IncompatibleIdError:
            raise
        except (TypeError, ValueError, OverflowError) as e:
            raise IncompatibleIdError(item_id) from e

    def _lookup(self, txn: Transaction, key: int) -> Optional[np.ndarray]:
        found = self.db.get(txn, key)
        if found is None:
            return None
        return np.frombuffer(found[1], dtype=np.float32).copy()

    def _search(self, txn: Transaction, subject: np.ndarray, n_items: int) -> List[Tuple[int, float]]:
        if n_items <= 0:
            return []
        forest = self._reader(txn)
        try:
            rows, distances = forest.get_nns_by_vector(
                subject.tolist(), n_items, search_k=self.config.search_k, include_distances=True
            )
        except (RuntimeError, ValueError, IndexError) as e:
            raise SearchIndexError(f"Forest search failed: {e}") from e
        keys = self.db.keys_for_rows(txn, rows)
        return [(keys[row], distance) for row, distance in zip(rows, distances) if row in keys]

    def get_point(self, key: Any) -> Optional[np.ndarray]:
        with self.env.read_txn() as txn:
            return self._lookup(txn, key)

    def search(self, subject: np.ndarray, n_items: int) -> List[Distance]:
        with self.env.read_txn() as txn:
            found = self._search(txn, subject, n_items)
        return [Distance(key, 1.0 - _score(self.metric, raw)) for key, raw in found]

    def recommend(self, item_id: Any, n_items: int) -> RecommendationList:
        n = check_count(n_items)
        logger.debug("Traversing forest")
        key = self._to_internal(item_id)
        with self.env.read_txn() as txn:
            subject_vector = self._lookup(txn, key)
            if subject_vector is None:
                logger.log_query(self.backend_name, item_id, n, status="not_found")
                raise NotFoundError(item_id)
            # One extra neighbour makes room for the subject itself
            found = self._search(txn, subject_vector, n + 1) if n else []

        recommendations = assemble(
            key, ((k, _score(self.metric, raw)) for k, raw in found),
            ScoredCandidate.from_pair, limit=n
        )
        logger.log_query(self.backend_name, item_id, n, len(recommendations))
        if self.result_converter is not None:
            return recommendations.map_ids(self.result_converter)
        return recommendations

    def __len__(self) -> int:
        with self.env.read_txn() as txn:
            return self.db.count(txn)
