"""
Backend configuration models.
Validated eagerly at construction entry; every invalid or missing field is reported at once.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class GraphMetric(str, Enum):
    L2 = "l2"
    INNER_PRODUCT = "inner_product"
    COSINE = "cosine"


class ForestMetric(str, Enum):
    DOT = "dot"
    ANGULAR = "angular"
    EUCLIDEAN = "euclidean"
    MANHATTAN = "manhattan"


class HnswConfig(BaseModel):
    """Graph-based backend configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_connections: int = Field(ge=2)
    layer_count: int = Field(ge=1)
    ef_construction: int = Field(ge=1)
    metric: GraphMetric
    search_breadth: int = Field(default=20, ge=1)
    bounded_queue: bool = True
    insert_batch_size: int = Field(default=4096, ge=1)

    @field_validator('metric', mode='before')
    @classmethod
    def metric_must_be_known(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            valid = [m.value for m in GraphMetric]
            if v not in valid:
                raise ValueError(f'metric must be one of: {valid}')
        return v


class ForestConfig(BaseModel):
    """Forest-based backend configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: Path
    map_size: int = Field(gt=0)
    max_dbs: int = Field(ge=1)
    database_name: str = "listing-db"
    n_trees: int = 10
    metric: ForestMetric = ForestMetric.DOT
    search_k: int = -1
    build_jobs: int = -1

    @field_validator('database_name')
    @classmethod
    def database_name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('database_name cannot be empty')
        return v

    @field_validator('n_trees')
    @classmethod
    def n_trees_must_be_valid(cls, v):
        if v < 1 and v != -1:
            raise ValueError('n_trees must be positive, or -1 for automatic')
        return v

    @field_validator('metric', mode='before')
    @classmethod
    def metric_must_be_known(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            valid = [m.value for m in ForestMetric]
            if v not in valid:
                raise ValueError(f'metric must be one of: {valid}')
        return v


class RandomConfig(BaseModel):
    """Baseline generator configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    empty_rate: float = Field(default=0.2, ge=0.0, le=1.0)


def validate_config(model: Type[ModelT], values: Union[ModelT, Mapping[str, Any], None] = None,
                    *, required: Optional[Dict[str, Any]] = None) -> ModelT:
    """
    Validate configuration values against a model.

    Args:
        model: Configuration model class
        values: An instance of the model, or a mapping of field values
        required: Extra named inputs that must not be None (e.g. vector_provider)

    Raises:
        ValidationError: listing every missing or invalid field
    """
    missing: List[Dict[str, str]] = [
        {"field": name, "message": "Field required"}
        for name, value in (required or {}).items() if value is None
    ]
    if isinstance(values, model):
        config = values
    else:
        try:
            config = model.model_validate(dict(values or {}))
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(
                exc, f"invalid {model.__name__}", extra=missing
            ) from exc
    if missing:
        raise ValidationError(f"invalid {model.__name__}", missing)
    return config
