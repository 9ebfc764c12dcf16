"""
Randomized baseline recommender, a stand-in backend for tests and for
exercising downstream handling of empty results.
"""

import random
from typing import Any, Callable, Mapping, Optional, Union

from ..core.errors import NotFoundError
from ..core.schema import RandomConfig, validate_config
from util.logging import logger
from .assembly import rank
from .index import IRecommender, check_count
from .types import RecommendationList


class RandomRecommender(IRecommender):
    """
    Returns generated ids with random scores in [0, 1).

    With probability empty_rate a call fails with NotFoundError regardless
    of the subject.
    """

    backend_name = "random"

    def __init__(self, id_provider: Callable[[], Any], empty_rate: float = 0.2,
                 rng: Optional[random.Random] = None):
        config = validate_config(RandomConfig, {"empty_rate": empty_rate})
        self.id_provider = id_provider
        self.empty_rate = config.empty_rate
        self.rng = rng or random.Random()

    @classmethod
    def build(cls, config: Union[RandomConfig, Mapping[str, Any], None] = None,
              id_provider: Optional[Callable[[], Any]] = None,
              rng: Optional[random.Random] = None) -> "RandomRecommender":
        config = validate_config(RandomConfig, config, required={"id_provider": id_provider})
        return cls(id_provider, config.empty_rate, rng)

    def recommend(self, item_id: Any, n_items: int) -> RecommendationList:
        n = check_count(n_items)
        if self.rng.random() < self.empty_rate:
            logger.log_query(self.backend_name, item_id, n, status="empty")
            raise NotFoundError(item_id)

        recommendations = rank((self.id_provider(), self.rng.random()) for _ in range(n))
        logger.log_query(self.backend_name, item_id, n, len(recommendations))
        return recommendations
