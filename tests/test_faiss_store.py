"""
Test cases for the graph-based HnswRecommender.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from nnrec.core.errors import (
    IncompatibleIdError, NotFoundError, SearchIndexError, ValidationError
)
from nnrec.core.schema import HnswConfig
from nnrec.vector import HnswRecommender, ListVectorProvider, ArrayVectorProvider, as_is


@pytest.fixture
def hnsw_config():
    """Small graph configuration for tests."""
    return {
        "max_connections": 8,
        "layer_count": 4,
        "ef_construction": 40,
        "metric": "l2",
    }


@pytest.fixture
def three_points():
    """The three-point scenario: two unit axes and their sum."""
    return ListVectorProvider([(1, [1.0, 0.0]), (2, [0.0, 1.0]), (3, [1.0, 1.0])])


@pytest.fixture
def clustered():
    """200 random vectors keyed 0..199."""
    rng = np.random.default_rng(7)
    vectors = rng.normal(size=(200, 8)).astype(np.float32)
    return list(range(200)), vectors


def test_three_point_scenario(hnsw_config, three_points):
    """Test that the subject is excluded and the two axes come back."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    recs = recommender.recommend(3, 2)

    assert set(recs.ids()) == {1, 2}
    # Both axes are at distance 1 from (1, 1)
    assert list(recs.scores()) == pytest.approx([0.0, 0.0])


def test_nearest_neighbour_first(hnsw_config):
    """Test that the closest point is ranked first."""
    provider = ListVectorProvider([
        (10, [0.0, 0.0]),
        (11, [0.1, 0.0]),
        (12, [5.0, 5.0]),
        (13, [9.0, 9.0]),
    ])
    recommender = HnswRecommender.build(hnsw_config, provider)

    recs = recommender.recommend(10, 3)

    assert recs.ids() == [11, 12, 13]
    assert recs[0].score == pytest.approx(1.0 - 0.1, abs=1e-5)
    assert recs.scores()[0] >= recs.scores()[1] >= recs.scores()[2]


def test_l2_score_uses_euclidean_distance(hnsw_config):
    """Test that L2 scores are 1 - ||a - b||, not 1 - ||a - b||^2."""
    provider = ListVectorProvider([(1, [1.0, 0.0]), (2, [0.0, 1.0]), (3, [4.0, 0.0])])
    recommender = HnswRecommender.build(hnsw_config, provider)

    recs = recommender.recommend(1, 2)

    assert recs.ids() == [2, 3]
    assert recs[0].score == pytest.approx(1.0 - 2 ** 0.5, abs=1e-5)
    assert recs[1].score == pytest.approx(-2.0, abs=1e-5)


def test_subject_never_returned(hnsw_config, clustered):
    """Test that no query ever returns its subject."""
    keys, vectors = clustered
    recommender = HnswRecommender.build(hnsw_config, ArrayVectorProvider(keys, vectors))

    for key in (0, 57, 199):
        recs = recommender.recommend(key, 10)
        assert key not in recs.ids()
        assert len(recs) == 10
        assert len(set(recs.ids())) == 10


def test_count_larger_than_index(hnsw_config, three_points):
    """Test that asking for more than exists returns everyone else."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    recs = recommender.recommend(1, 50)

    assert sorted(recs.ids()) == [2, 3]


def test_single_item_has_no_neighbours(hnsw_config):
    """Test that a lone item recommends nothing."""
    recommender = HnswRecommender.build(hnsw_config, ListVectorProvider([(1, [0.3, 0.4])]))

    assert len(recommender.recommend(1, 5)) == 0


def test_zero_items_requested(hnsw_config, three_points):
    """Test that n=0 returns an empty list once the subject resolves."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    assert len(recommender.recommend(1, 0)) == 0
    with pytest.raises(NotFoundError):
        recommender.recommend(99, 0)


def test_count_out_of_range(hnsw_config, three_points):
    """Test that counts outside the u16 range are rejected."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    with pytest.raises(ValueError):
        recommender.recommend(1, 65536)
    with pytest.raises(ValueError):
        recommender.recommend(1, -1)


def test_unknown_subject(hnsw_config, three_points):
    """Test that an unknown id raises NotFoundError."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    with pytest.raises(NotFoundError) as exc_info:
        recommender.recommend(42, 2)
    assert exc_info.value.subject_id == 42


def test_incompatible_subject(hnsw_config, three_points):
    """Test that ids that cannot become usize keys are incompatible."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    with pytest.raises(IncompatibleIdError):
        recommender.recommend("three", 2)
    with pytest.raises(IncompatibleIdError):
        recommender.recommend(-3, 2)


def test_string_keys_with_as_is(hnsw_config):
    """Test building over string keys with the identity converter."""
    provider = ListVectorProvider([("a", [1.0, 0.0]), ("b", [0.9, 0.1]), ("c", [0.0, 1.0])])
    recommender = HnswRecommender.build(hnsw_config, provider, key_converter=as_is)

    recs = recommender.recommend("a", 1)

    assert recs.ids() == ["b"]


def test_result_converter(hnsw_config, three_points):
    """Test that result ids pass through the result converter."""
    recommender = HnswRecommender.build(
        hnsw_config, three_points, result_converter=lambda key: f"listing-{key}"
    )

    recs = recommender.recommend(3, 2)

    assert set(recs.ids()) == {"listing-1", "listing-2"}


def test_cosine_metric():
    """Test that cosine scores are similarities in [-1, 1]."""
    config = {"max_connections": 8, "layer_count": 4, "ef_construction": 40, "metric": "cosine"}
    provider = ListVectorProvider([
        (1, [2.0, 0.0]),
        (2, [5.0, 0.1]),
        (3, [0.0, 3.0]),
        (4, [-1.0, 0.0]),
    ])
    recommender = HnswRecommender.build(config, provider)

    recs = recommender.recommend(1, 3)

    assert recs.ids() == [2, 3, 4]
    assert recs[0].score == pytest.approx(1.0, abs=1e-3)
    assert recs[1].score == pytest.approx(0.0, abs=1e-5)
    assert recs[2].score == pytest.approx(-1.0, abs=1e-5)


def test_get_point_and_neighbours(hnsw_config, three_points):
    """Test the navigable index surface."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    point = recommender.get_point(3)
    np.testing.assert_array_equal(point, np.array([1.0, 1.0], dtype=np.float32))
    assert recommender.get_point(99) is None

    neighbours = list(recommender.get_neighbors(np.array([1.0, 0.0], dtype=np.float32), 1))
    assert neighbours == [1]


def test_index_frozen_after_build(hnsw_config, three_points):
    """Test that insertions are refused once in search mode."""
    recommender = HnswRecommender.build(hnsw_config, three_points)

    with pytest.raises(SearchIndexError):
        recommender.graph.insert(np.zeros((1, 2), dtype=np.float32))


def test_concurrent_queries(hnsw_config, clustered):
    """Test that parallel queries agree with sequential ones."""
    keys, vectors = clustered
    recommender = HnswRecommender.build(hnsw_config, ArrayVectorProvider(keys, vectors))
    expected = {key: recommender.recommend(key, 5).ids() for key in keys[:40]}

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = dict(zip(keys[:40], pool.map(lambda k: recommender.recommend(k, 5).ids(), keys[:40])))

    assert results == expected


class TestBuildValidation:
    """Construction failures are reported as ValidationError."""

    def test_missing_fields_enumerated(self, three_points):
        with pytest.raises(ValidationError) as exc_info:
            HnswRecommender.build({"metric": "l2"}, three_points)

        fields = {error["field"] for error in exc_info.value.errors}
        assert {"max_connections", "layer_count", "ef_construction"} <= fields

    def test_missing_provider_reported_with_config_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            HnswRecommender.build({"metric": "hamming"}, None)

        fields = {error["field"] for error in exc_info.value.errors}
        assert "vector_provider" in fields
        assert "metric" in fields
        assert "max_connections" in fields

    def test_missing_provider_only(self, hnsw_config):
        with pytest.raises(ValidationError) as exc_info:
            HnswRecommender.build(hnsw_config)

        assert exc_info.value.errors == [{"field": "vector_provider", "message": "Field required"}]

    def test_config_instance_accepted(self, three_points):
        config = HnswConfig(max_connections=4, layer_count=2, ef_construction=10, metric="L2")
        recommender = HnswRecommender.build(config, three_points)

        assert recommender.graph.ntotal == 3

    def test_unknown_field_rejected(self, hnsw_config, three_points):
        with pytest.raises(ValidationError):
            HnswRecommender.build({**hnsw_config, "nprobe": 3}, three_points)

    def test_non_finite_vector(self, hnsw_config):
        provider = ListVectorProvider([(1, [1.0, 0.0]), (2, [float("nan"), 1.0])])

        with pytest.raises(ValidationError, match="Row 1"):
            HnswRecommender.build(hnsw_config, provider)

    def test_dimension_mismatch(self, hnsw_config):
        provider = ListVectorProvider([(1, [1.0, 0.0]), (2, [1.0])], dimensions=2)

        with pytest.raises(ValidationError):
            HnswRecommender.build(hnsw_config, provider)

    def test_unconvertible_provider_key(self, hnsw_config):
        provider = ListVectorProvider([("x", [1.0, 0.0])])

        with pytest.raises(ValidationError, match="cannot be converted"):
            HnswRecommender.build(hnsw_config, provider)


def test_layer_cap_applied(three_points):
    """Test that the level distribution is truncated to layer_count."""
    import faiss

    config = {"max_connections": 16, "layer_count": 2, "ef_construction": 20, "metric": "l2"}
    recommender = HnswRecommender.build(config, three_points)

    probas = faiss.vector_to_array(recommender.graph.index.hnsw.assign_probas)
    assert len(probas) <= 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
