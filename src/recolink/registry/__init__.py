"""Model registry: versioned scoring models with hot swap.

Main Components
---------------
- ModelRegistry: lock-free reads, atomic swaps, periodic refresh
- ScoringModel: parsed logistic model artifact
- init_registry / get_registry / teardown_registry: process-wide lifecycle
"""

from recolink.registry.model_registry import (
    ModelRegistry,
    get_registry,
    init_registry,
    teardown_registry,
)
from recolink.registry.models import (
    MODEL_TYPE_LOGISTIC,
    ModelMetadata,
    ScoringModel,
    parse_model,
    sigmoid,
)

__all__ = [
    "ModelRegistry",
    "init_registry",
    "get_registry",
    "teardown_registry",
    "MODEL_TYPE_LOGISTIC",
    "ModelMetadata",
    "ScoringModel",
    "parse_model",
    "sigmoid",
]
