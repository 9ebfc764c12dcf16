"""
Tests for environment-driven configuration.
"""

import os
from unittest.mock import patch

import pytest

from nnrec.core import config
from nnrec.core.errors import ValidationError
from nnrec.vector import AnnoyRecommender, HnswRecommender, ListVectorProvider, RandomRecommender


def _provider():
    return ListVectorProvider([(1, [1.0, 0.0]), (2, [0.0, 1.0]), (3, [1.0, 1.0])])


def test_defaults():
    """Test default settings when nothing is set."""
    with patch.dict(os.environ, {}, clear=True):
        assert config.get_backend_name() == "hnsw"
        assert config.get_build_workers() is None
        hnsw = config.get_hnsw_settings()
        assert hnsw["max_connections"] == 16
        assert hnsw["search_breadth"] == 20
        assert hnsw["bounded_queue"] is True
        forest = config.get_forest_settings()
        assert forest["database_name"] == "listing-db"
        assert forest["metric"] == "dot"
        assert forest["map_size"] == 1024 ** 3
        assert config.get_random_settings() == {"empty_rate": 0.2}
        assert config.validate_recommender_config() == []


def test_environment_overrides():
    """Test that environment variables are read at call time."""
    env = {
        "NNREC_BACKEND": " Forest ",
        "NNREC_BUILD_WORKERS": "3",
        "HNSW_METRIC": "cosine",
        "HNSW_BOUNDED_QUEUE": "false",
        "FOREST_TREES": "25",
    }
    with patch.dict(os.environ, env, clear=True):
        assert config.get_backend_name() == "forest"
        assert config.get_build_workers() == 3
        assert config.get_hnsw_settings()["metric"] == "cosine"
        assert config.get_hnsw_settings()["bounded_queue"] is False
        assert config.get_forest_settings()["n_trees"] == 25


def test_validate_reports_every_issue():
    """Test that validation lists every bad setting."""
    env = {
        "NNREC_BACKEND": "lsh",
        "NNREC_BUILD_WORKERS": "0",
        "HNSW_MAX_CONNECTIONS": "1",
        "FOREST_METRIC": "jaccard",
        "RANDOM_EMPTY_RATE": "2",
    }
    with patch.dict(os.environ, env, clear=True):
        issues = config.validate_recommender_config()

    assert any("NNREC_BACKEND" in issue for issue in issues)
    assert any("NNREC_BUILD_WORKERS" in issue for issue in issues)
    assert any("HNSW" in issue and "max_connections" in issue for issue in issues)
    assert any("FOREST" in issue and "metric" in issue for issue in issues)
    assert any("RANDOM" in issue and "empty_rate" in issue for issue in issues)


def test_validate_non_integer_workers():
    """Test that a malformed worker count is reported, not raised."""
    with patch.dict(os.environ, {"NNREC_BUILD_WORKERS": "many"}, clear=True):
        issues = config.validate_recommender_config()

    assert "NNREC_BUILD_WORKERS must be an integer" in issues


def test_get_recommender_hnsw():
    """Test building the default backend from the environment."""
    env = {"HNSW_MAX_CONNECTIONS": "4", "HNSW_LAYER_COUNT": "2", "HNSW_EF_CONSTRUCTION": "10"}
    with patch.dict(os.environ, env, clear=True):
        recommender = config.get_recommender(_provider())

    assert isinstance(recommender, HnswRecommender)
    assert set(recommender.recommend(3, 2).ids()) == {1, 2}


def test_get_recommender_overrides():
    """Test that keyword overrides replace settings and pass backend arguments."""
    with patch.dict(os.environ, {}, clear=True):
        recommender = config.get_recommender(
            backend="random", empty_rate=0.0, id_provider=lambda: "x"
        )

    assert isinstance(recommender, RandomRecommender)
    assert recommender.empty_rate == 0.0
    assert recommender.recommend(1, 2).ids() == ["x", "x"]


def test_get_recommender_forest(tmp_path):
    """Test building then reopening the forest backend from the environment."""
    env = {"NNREC_BACKEND": "forest", "FOREST_PATH": str(tmp_path / "forest"), "FOREST_TREES": "3"}
    with patch.dict(os.environ, env, clear=True):
        built = config.get_recommender(_provider())
        reopened = config.get_recommender()

    assert isinstance(built, AnnoyRecommender)
    assert set(reopened.recommend(3, 2).ids()) == {1, 2}


def test_get_recommender_missing_provider():
    """Test that the graph backend requires a provider."""
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ValidationError):
            config.get_recommender()


def test_get_recommender_unknown_backend():
    """Test that unknown backends are unavailable."""
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(KeyError):
            config.get_recommender(backend="lsh")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
