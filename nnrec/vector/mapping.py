"""
Identifier-mapping decorator: translate an external key space into the key
space of a wrapped recommender.
"""

from typing import Any, Callable, Mapping, Optional, Union

from ..core.errors import IncompatibleIdError, NotFoundError
from .index import IRecommender
from .types import RecommendationList


class IdMappingRecommender(IRecommender):
    """
    Recommender that maps ids before delegating.

    A missing mapping is reported as NotFoundError, exactly as if the subject
    were absent from the wrapped recommender.

    Args:
        mapper: Callable returning the internal key or None, or a Mapping
        recommender: The wrapped recommender
    """

    def __init__(self, mapper: Union[Callable[[Any], Optional[Any]], Mapping[Any, Any]],
                 recommender: IRecommender):
        self.mapper = mapper
        self.recommender = recommender

    def map_id(self, item_id: Any) -> Optional[Any]:
        try:
            if isinstance(self.mapper, Mapping):
                return self.mapper.get(item_id)
            return self.mapper(item_id)
        except LookupError:
            return None
        except (TypeError, ValueError, OverflowError) as e:
            raise IncompatibleIdError(item_id) from e

    def recommend(self, item_id: Any, n_items: int) -> RecommendationList:
        key = self.map_id(item_id)
        if key is None:
            raise NotFoundError(item_id)
        return self.recommender.recommend(key, n_items)
