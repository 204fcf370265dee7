"""Scoring model artifacts.

A scoring model is a logistic model over per-field similarity features::

    p = sigmoid(bias + sum(weights[f] * x[f] for f in features))

Artifacts are JSON documents::

    {"name": "scoring-v1", "version": "3", "model_type": "logistic",
     "bias": -4.0, "weights": {"name": 5.0, "tax_id": 3.0}}

Features absent from a pair contribute nothing; weights for unknown
features are ignored.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recolink.models.jobs import utcnow

__all__ = [
    "MODEL_TYPE_LOGISTIC",
    "ModelMetadata",
    "ScoringModel",
    "parse_model",
    "sigmoid",
]

MODEL_TYPE_LOGISTIC = "logistic"


def sigmoid(x: float) -> float:
    """Compute sigmoid function.

    Parameters
    ----------
    x : float
        Input value.

    Returns
    -------
    float
        Sigmoid of x (0.0-1.0).

    Notes
    -----
    sigmoid(x) = 1 / (1 + exp(-x))
    """
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    # For numerical stability with large negative x
    exp_x = math.exp(x)
    return exp_x / (1.0 + exp_x)


@dataclass(frozen=True)
class ModelMetadata:
    """Store-side description of one model version.

    Attributes
    ----------
    name : str
        Model name.
    version : str
        Version label; compared for equality only.
    digest : str
        Expected ``sha256:<hex>`` digest of the artifact bytes.
    model_type : str
        Artifact format.
    location : str | None
        Store-specific locator (file path, object key).
    """

    name: str
    version: str
    digest: str
    model_type: str = MODEL_TYPE_LOGISTIC
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "digest": self.digest,
            "model_type": self.model_type,
            "location": self.location,
        }


@dataclass(frozen=True)
class ScoringModel:
    """Loaded, immutable scoring model.

    Attributes
    ----------
    name : str
        Model name.
    version : str
        Loaded version.
    model_type : str
        Artifact format.
    bias : float
        Intercept.
    weights : Mapping[str, float]
        Feature name to weight.
    digest : str
        Verified digest of the artifact.
    loaded_at : datetime
        Time the model was parsed.
    """

    name: str
    version: str
    model_type: str
    bias: float
    weights: Mapping[str, float]
    digest: str
    loaded_at: datetime = field(default_factory=utcnow)

    def predict(self, features: Mapping[str, float]) -> float:
        """Match probability for a pair's feature vector.

        Parameters
        ----------
        features : Mapping[str, float]
            Feature name to similarity (0.0-1.0).

        Returns
        -------
        float
            Probability in [0, 1].
        """
        z = self.bias + sum(w * features[f] for f, w in self.weights.items() if f in features)
        return sigmoid(z)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "model_type": self.model_type,
            "bias": self.bias,
            "weights": dict(self.weights),
            "digest": self.digest,
            "loaded_at": self.loaded_at.isoformat(),
        }


def parse_model(payload: bytes, metadata: ModelMetadata) -> ScoringModel:
    """Parse an artifact downloaded for *metadata*.

    Parameters
    ----------
    payload : bytes
        Artifact bytes, already digest-verified.
    metadata : ModelMetadata
        Metadata the bytes were downloaded for.

    Returns
    -------
    ScoringModel
        Parsed model.

    Raises
    ------
    ValueError
        If the payload is not a valid artifact of a supported type.
    """
    try:
        doc = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Artifact is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise ValueError("Artifact must be a JSON object")

    model_type = doc.get("model_type", metadata.model_type)
    if model_type != MODEL_TYPE_LOGISTIC:
        raise ValueError(f"Unsupported model type: {model_type!r}")

    weights = doc.get("weights")
    if not isinstance(weights, dict) or not weights:
        raise ValueError("Artifact must define a non-empty 'weights' object")

    try:
        parsed_weights = {str(k): float(v) for k, v in weights.items()}
        bias = float(doc.get("bias", 0.0))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Artifact weights must be numbers: {e}") from e

    return ScoringModel(
        name=metadata.name,
        version=metadata.version,
        model_type=model_type,
        bias=bias,
        weights=parsed_weights,
        digest=metadata.digest,
    )
