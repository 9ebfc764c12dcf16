"""
Backend-agnostic nearest-neighbour recommendations.
"""

from .core.errors import (
    RecommendError,
    NotFoundError,
    IncompatibleIdError,
    StorageError,
    SearchIndexError,
    ValidationError
)
from .vector import (
    ScoredCandidate,
    RecommendationList,
    KeyedVector,
    IRecommender,
    VectorCache,
    ListVectorProvider,
    ArrayVectorProvider,
    IdMappingRecommender,
    RandomRecommender,
    HnswRecommender,
    AnnoyRecommender
)

__all__ = [
    'RecommendError',
    'NotFoundError',
    'IncompatibleIdError',
    'StorageError',
    'SearchIndexError',
    'ValidationError',
    'ScoredCandidate',
    'RecommendationList',
    'KeyedVector',
    'IRecommender',
    'VectorCache',
    'ListVectorProvider',
    'ArrayVectorProvider',
    'IdMappingRecommender',
    'RandomRecommender',
    'HnswRecommender',
    'AnnoyRecommender'
]
