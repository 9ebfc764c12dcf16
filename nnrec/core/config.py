"""
Process configuration from environment variables.
Values are read at call time so that the environment can change between calls.
"""

import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BACKEND = "hnsw"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def get_backend_name() -> str:
    """Get the configured backend (hnsw|forest|random)."""
    return os.getenv("NNREC_BACKEND", DEFAULT_BACKEND).strip().lower()


def get_build_workers() -> Optional[int]:
    """Thread count for index construction; None means the executor default."""
    value = os.getenv("NNREC_BUILD_WORKERS")
    return int(value) if value else None


def get_hnsw_settings() -> Dict[str, Any]:
    """Graph backend settings (HnswConfig fields)."""
    return {
        "max_connections": _env_int("HNSW_MAX_CONNECTIONS", 16),
        "layer_count": _env_int("HNSW_LAYER_COUNT", 16),
        "ef_construction": _env_int("HNSW_EF_CONSTRUCTION", 200),
        "search_breadth": _env_int("HNSW_SEARCH_BREADTH", 20),
        "metric": os.getenv("HNSW_METRIC", "l2"),
        "bounded_queue": _env_bool("HNSW_BOUNDED_QUEUE", True),
    }


def get_forest_settings() -> Dict[str, Any]:
    """Forest backend settings (ForestConfig fields)."""
    return {
        "path": os.getenv("FOREST_PATH", "./data/forest"),
        "map_size": _env_int("FOREST_MAP_SIZE", 1024 ** 3),
        "max_dbs": _env_int("FOREST_MAX_DBS", 4),
        "database_name": os.getenv("FOREST_DATABASE", "listing-db"),
        "n_trees": _env_int("FOREST_TREES", 10),
        "metric": os.getenv("FOREST_METRIC", "dot"),
        "search_k": _env_int("FOREST_SEARCH_K", -1),
    }


def get_random_settings() -> Dict[str, Any]:
    """Baseline generator settings (RandomConfig fields)."""
    return {"empty_rate": float(os.getenv("RANDOM_EMPTY_RATE", "0.2"))}


def validate_recommender_config() -> List[str]:
    """Validate recommender configuration and return any issues."""
    from .registry import default_registry
    from .schema import ForestConfig, HnswConfig, RandomConfig
    from pydantic import ValidationError as PydanticValidationError

    issues = []

    backend = get_backend_name()
    if backend not in default_registry().available():
        issues.append(f"Invalid NNREC_BACKEND: {backend}")

    try:
        workers = get_build_workers()
        if workers is not None and workers < 1:
            issues.append("NNREC_BUILD_WORKERS must be >= 1")
    except ValueError:
        issues.append("NNREC_BUILD_WORKERS must be an integer")

    sections = [
        ("HNSW", HnswConfig, get_hnsw_settings),
        ("FOREST", ForestConfig, get_forest_settings),
        ("RANDOM", RandomConfig, get_random_settings),
    ]
    for prefix, model, settings in sections:
        try:
            model.model_validate(settings())
        except ValueError as e:
            if isinstance(e, PydanticValidationError):
                for error in e.errors():
                    field = ".".join(str(part) for part in error["loc"])
                    issues.append(f"Invalid {prefix} setting {field}: {error['msg']}")
            else:
                issues.append(f"Invalid {prefix} setting: {e}")

    return issues


def get_recommender(vector_provider=None, backend: Optional[str] = None, **overrides):
    """
    Build the configured recommender through the registry.

    Args:
        vector_provider: Source of vectors (required for hnsw; optional for
            forest, which reopens an existing build without one)
        backend: Backend name, defaults to NNREC_BACKEND
        **overrides: Config fields overriding the environment, plus backend
            keyword arguments such as key_converter or id_provider

    Returns:
        An IRecommender implementation
    """
    from .registry import default_registry

    backend = backend or get_backend_name()
    settings_by_backend = {
        "hnsw": get_hnsw_settings,
        "forest": get_forest_settings,
        "random": get_random_settings,
    }
    settings = settings_by_backend[backend]() if backend in settings_by_backend else {}

    kwargs = {}
    for name, value in overrides.items():
        if name in settings:
            settings[name] = value
        else:
            kwargs[name] = value

    if backend == "hnsw":
        kwargs.setdefault("max_workers", get_build_workers())
    if backend in ("hnsw", "forest"):
        kwargs["vector_provider"] = vector_provider

    return default_registry().create(backend, config=settings, **kwargs)
