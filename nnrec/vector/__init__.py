"""
Recommendation backends and the abstraction layer they share.
"""

# Package initialization for vector module
from .types import ScoredCandidate, RecommendationList, KeyedVector, Distance
from .assembly import assemble, rank
from .providers import VectorProvider, ListVectorProvider, ArrayVectorProvider
from .cache import VectorCache
from .index import IRecommender, NavigableIndex, NavigableRecommender, as_u32, as_usize, as_is
from .mapping import IdMappingRecommender
from .baseline import RandomRecommender
from .faiss_store import HnswRecommender
from .forest_store import AnnoyRecommender

__all__ = [
    'ScoredCandidate',
    'RecommendationList',
    'KeyedVector',
    'Distance',
    'assemble',
    'rank',
    'VectorProvider',
    'ListVectorProvider',
    'ArrayVectorProvider',
    'VectorCache',
    'IRecommender',
    'NavigableIndex',
    'NavigableRecommender',
    'as_u32',
    'as_usize',
    'as_is',
    'IdMappingRecommender',
    'RandomRecommender',
    'HnswRecommender',
    'AnnoyRecommender'
]
