"""
Recommender registry: selects among IRecommender implementations at
configuration time. Backends that are not registered are simply unavailable.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from util.logging import logger

Factory = Callable[..., Any]


class RecommenderRegistry:
    """
    Registry of named recommender factories.
    A factory takes keyword configuration and returns a built recommender.
    """

    def __init__(self):
        self.factories: Dict[str, Factory] = {}
        self.creation_log: List[Dict[str, Any]] = []

    def register(self, name: str, factory: Factory, replace: bool = False) -> None:
        """
        Register a backend factory.

        Args:
            name: Backend name, e.g. "hnsw"
            factory: Callable building the backend from keyword arguments
            replace: Allow overwriting an existing registration
        """
        if not name or not name.replace('_', '').replace('-', '').isalnum():
            raise ValueError(f"Backend name '{name}' contains invalid characters")
        if name in self.factories and not replace:
            raise ValueError(f"Backend '{name}' is already registered")
        self.factories[name] = factory

    def unregister(self, name: str) -> bool:
        """Remove a backend. Returns False if it was not registered."""
        return self.factories.pop(name, None) is not None

    def available(self) -> List[str]:
        return sorted(self.factories)

    def get_factory(self, name: str) -> Optional[Factory]:
        return self.factories.get(name)

    def create(self, name: str, **kwargs) -> Any:
        """
        Build the named backend.

        Raises:
            KeyError: the backend is not registered
        """
        factory = self.factories.get(name)
        if factory is None:
            raise KeyError(f"Unknown recommender backend '{name}'. Available: {self.available()}")

        recommender = factory(**kwargs)
        self.creation_log.append({
            'timestamp': datetime.now().isoformat(),
            'backend': name,
            'recommender_type': type(recommender).__name__
        })
        logger.log_operation("registry.create", "success", {"backend": name})
        return recommender


def _build_hnsw(**kwargs):
    from ..vector.faiss_store import HnswRecommender
    return HnswRecommender.build(**kwargs)


def _build_forest(**kwargs):
    from ..vector.forest_store import AnnoyRecommender
    return AnnoyRecommender.build(**kwargs)


def _build_random(**kwargs):
    from ..vector.baseline import RandomRecommender
    return RandomRecommender.build(**kwargs)


def default_registry() -> RecommenderRegistry:
    """Registry with the bundled backends registered."""
    registry = RecommenderRegistry()
    registry.register("hnsw", _build_hnsw)
    registry.register("forest", _build_forest)
    registry.register("random", _build_random)
    return registry
