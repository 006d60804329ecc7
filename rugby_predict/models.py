"""
Serialized Models

The two trained model variants and their JSON representation. A model is
immutable once trained; ``type`` tags the variant in serialized form and
``model_from_dict`` dispatches on it.

Variants:
- LogisticModel ("logit"): bias + weights over standardized features, with
  the standardization means/stds needed to apply it to raw features
- GradientBoostingModel ("gbdt"): bias, shrinkage and an ordered list of
  depth-1 stumps
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Sequence

import numpy as np

from .numeric import sigmoid, sigmoid_array


@dataclass(frozen=True)
class SerializedModel:
    """Base of the model variants."""

    type: ClassVar[str] = ""

    def predict_proba(self, features: Sequence[float]) -> float:
        """Raw (uncalibrated) home-win probability for one feature array."""
        raise NotImplementedError

    def predict_many(self, matrix: np.ndarray) -> np.ndarray:
        """Raw probabilities for every row of a feature matrix."""
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class LogisticModel(SerializedModel):
    """
    Logistic regression on standardized features.

    Attributes:
        weights: Bias followed by one weight per feature.
        means: Column means used for standardization.
        stds: Column standard deviations (zero-variance columns stored as 1).
    """

    weights: tuple[float, ...]
    means: tuple[float, ...]
    stds: tuple[float, ...]

    type: ClassVar[str] = "logit"

    def _logits(self, matrix: np.ndarray) -> np.ndarray:
        weights = np.asarray(self.weights, dtype=np.float64)
        standardized = (matrix - np.asarray(self.means)) / np.asarray(self.stds)
        return weights[0] + standardized @ weights[1:]

    def predict_proba(self, features: Sequence[float]) -> float:
        row = np.asarray(features, dtype=np.float64).reshape(1, -1)
        return sigmoid(float(self._logits(row)[0]))

    def predict_many(self, matrix: np.ndarray) -> np.ndarray:
        matrix = np.asarray(matrix, dtype=np.float64)
        if len(matrix) == 0:
            return np.zeros(0)
        return sigmoid_array(self._logits(matrix))

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "weights": list(self.weights),
            "means": list(self.means),
            "stds": list(self.stds),
        }


@dataclass(frozen=True)
class Stump:
    """Depth-1 split: ``left_value`` when ``x[feature_index] <= threshold``."""

    feature_index: int
    threshold: float
    left_value: float
    right_value: float

    def contribution(self, features: Sequence[float]) -> float:
        return self.left_value if features[self.feature_index] <= self.threshold else self.right_value


@dataclass(frozen=True)
class GradientBoostingModel(SerializedModel):
    """
    Additive ensemble of boosted stumps.

    Prediction is ``sigmoid(bias + shrinkage * sum(stump contributions))``.
    """

    bias: float
    shrinkage: float
    stumps: tuple[Stump, ...]

    type: ClassVar[str] = "gbdt"

    def predict_proba(self, features: Sequence[float]) -> float:
        logit = self.bias
        for stump in self.stumps:
            logit += self.shrinkage * stump.contribution(features)
        return sigmoid(logit)

    def predict_many(self, matrix: np.ndarray) -> np.ndarray:
        matrix = np.asarray(matrix, dtype=np.float64)
        if len(matrix) == 0:
            return np.zeros(0)
        logits = np.full(len(matrix), self.bias, dtype=np.float64)
        for stump in self.stumps:
            column = matrix[:, stump.feature_index]
            logits += self.shrinkage * np.where(
                column <= stump.threshold, stump.left_value, stump.right_value
            )
        return sigmoid_array(logits)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "bias": self.bias,
            "shrinkage": self.shrinkage,
            "stumps": [
                {
                    "feature_index": s.feature_index,
                    "threshold": s.threshold,
                    "left_value": s.left_value,
                    "right_value": s.right_value,
                }
                for s in self.stumps
            ],
        }


def model_from_dict(payload: dict) -> SerializedModel:
    """
    Rebuild a trained model from ``to_dict`` output.

    Raises:
        ValueError: For an unknown ``type`` tag.
    """
    model_type = payload.get("type")
    if model_type == LogisticModel.type:
        return LogisticModel(
            weights=tuple(float(w) for w in payload["weights"]),
            means=tuple(float(m) for m in payload["means"]),
            stds=tuple(float(s) for s in payload["stds"]),
        )
    if model_type == GradientBoostingModel.type:
        return GradientBoostingModel(
            bias=float(payload["bias"]),
            shrinkage=float(payload["shrinkage"]),
            stumps=tuple(
                Stump(
                    feature_index=int(s["feature_index"]),
                    threshold=float(s["threshold"]),
                    left_value=float(s["left_value"]),
                    right_value=float(s["right_value"]),
                )
                for s in payload["stumps"]
            ),
        )
    raise ValueError(f"Unknown model type '{model_type}'")


@dataclass(frozen=True)
class FeatureImportance:
    feature: str
    importance: float


def compute_feature_importance(
    model: SerializedModel,
    feature_order: Sequence[str],
) -> list[FeatureImportance]:
    """
    Normalized feature importance, most important first.

    - Logistic: ``|weight / std|`` per feature
    - Boosted stumps: share of stumps splitting on each feature

    Args:
        model: Trained model.
        feature_order: Feature names in matrix column order.

    Returns:
        One FeatureImportance per feature; values sum to 1 unless the model
        carries no signal at all, in which case they are all 0.
    """
    if isinstance(model, LogisticModel):
        magnitudes = [
            abs(weight / (std or 1.0)) for weight, std in zip(model.weights[1:], model.stds)
        ]
    elif isinstance(model, GradientBoostingModel):
        magnitudes = [0.0] * len(feature_order)
        for stump in model.stumps:
            magnitudes[stump.feature_index] += 1.0
    else:
        return [FeatureImportance(name, 1 / len(feature_order)) for name in feature_order]

    total = sum(magnitudes) or 1.0
    importance = [
        FeatureImportance(name, magnitude / total)
        for name, magnitude in zip(feature_order, magnitudes)
    ]
    return sorted(importance, key=lambda item: item.importance, reverse=True)
