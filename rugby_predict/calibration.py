"""
Calibration Module

Post-hoc calibration of raw model probabilities. Calibrators are fitted on the
backtest split only and are applied to model output, never to features.

Methods:
- none: probabilities are only clamped away from 0 and 1
- platt: two-parameter logistic re-fit on the logit of the raw probability
- isotonic: non-decreasing step function from pool-adjacent-violators
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence

import numpy as np

from .numeric import clamp_probabilities, clamp_probability, logit, sigmoid, sigmoid_array

logger = logging.getLogger(__name__)

MIN_PLATT_SAMPLES = 5
PLATT_MAX_ITERATIONS = 50
PLATT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class CalibrationModel:
    """Base of the calibration variants; ``method`` tags the variant."""

    method: ClassVar[str] = "none"

    def apply(self, probability: float) -> float:
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class NoCalibration(CalibrationModel):
    """Identity calibration (clamping only)."""

    method: ClassVar[str] = "none"

    def apply(self, probability: float) -> float:
        return clamp_probability(probability)

    def to_dict(self) -> dict:
        return {"method": self.method}


@dataclass(frozen=True)
class PlattCalibration(CalibrationModel):
    """``sigmoid(slope * logit(p) + intercept)``."""

    slope: float
    intercept: float

    method: ClassVar[str] = "platt"

    def apply(self, probability: float) -> float:
        return clamp_probability(sigmoid(self.slope * logit(probability) + self.intercept))

    def to_dict(self) -> dict:
        return {"method": self.method, "slope": self.slope, "intercept": self.intercept}


@dataclass(frozen=True)
class IsotonicCalibration(CalibrationModel):
    """
    Step function over ``(threshold, value)`` pairs sorted by threshold.

    A probability maps to the value of the first threshold at or above it;
    anything above the last threshold takes the last value.
    """

    mapping: tuple[tuple[float, float], ...]

    method: ClassVar[str] = "isotonic"

    def apply(self, probability: float) -> float:
        probability = clamp_probability(probability)
        if not self.mapping:
            return probability
        thresholds = [threshold for threshold, _ in self.mapping]
        index = bisect.bisect_left(thresholds, probability)
        if index >= len(self.mapping):
            index = len(self.mapping) - 1
        return clamp_probability(self.mapping[index][1])

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "mapping": [{"threshold": t, "value": v} for t, v in self.mapping],
        }


def fit_platt_scaling(
    probabilities: Sequence[float],
    labels: Sequence[float],
) -> Optional[PlattCalibration]:
    """
    Fit Platt scaling by Newton-Raphson on the logit of the raw probability.

    Starts from the identity (slope 1, intercept 0) and takes full Newton
    steps using the 2x2 Hessian of the log-loss, stopping once both parameter
    updates drop below 1e-6 or the Hessian becomes singular.

    Args:
        probabilities: Raw model probabilities on the backtest split.
        labels: Binary outcomes for the same rows.

    Returns:
        PlattCalibration, or None with fewer than 5 samples.
    """
    if len(probabilities) < MIN_PLATT_SAMPLES:
        return None

    clamped = clamp_probabilities(probabilities)
    x = np.log(clamped / (1 - clamped))
    y = np.asarray(labels, dtype=np.float64)

    slope = 1.0
    intercept = 0.0

    for _ in range(PLATT_MAX_ITERATIONS):
        calibrated = sigmoid_array(slope * x + intercept)
        error = calibrated - y

        grad_slope = float(np.sum(error * x))
        grad_intercept = float(np.sum(error))

        weight = np.maximum(calibrated * (1 - calibrated), 1e-6)
        h11 = float(np.sum(weight * x * x))
        h12 = float(np.sum(weight * x))
        h22 = float(np.sum(weight))

        det = h11 * h22 - h12 * h12
        if abs(det) < 1e-6:
            break

        delta_slope = (grad_slope * h22 - grad_intercept * h12) / det
        delta_intercept = (grad_intercept * h11 - grad_slope * h12) / det

        slope -= delta_slope
        intercept -= delta_intercept

        if abs(delta_slope) < PLATT_TOLERANCE and abs(delta_intercept) < PLATT_TOLERANCE:
            break

    return PlattCalibration(slope=slope, intercept=intercept)


@dataclass
class _Block:
    start: float
    end: float
    weight: float
    total: float

    @property
    def value(self) -> float:
        return self.total / self.weight


def fit_isotonic_regression(
    probabilities: Sequence[float],
    labels: Sequence[float],
) -> Optional[IsotonicCalibration]:
    """
    Fit a non-decreasing step function with pool-adjacent-violators.

    Pairs are sorted by probability; whenever a block's mean exceeds its right
    neighbour's, the two are merged and the scan steps back one block so a
    merge can cascade leftwards.

    Args:
        probabilities: Raw model probabilities on the backtest split.
        labels: Binary outcomes for the same rows.

    Returns:
        IsotonicCalibration, or None for empty input.
    """
    if len(probabilities) == 0:
        return None

    probs = np.asarray(probabilities, dtype=np.float64)
    ys = np.asarray(labels, dtype=np.float64)
    order = np.argsort(probs, kind="mergesort")

    blocks = [
        _Block(start=float(probs[i]), end=float(probs[i]), weight=1.0, total=float(ys[i]))
        for i in order
    ]

    i = 0
    while i < len(blocks) - 1:
        left, right = blocks[i], blocks[i + 1]
        if left.value <= right.value:
            i += 1
            continue

        blocks[i : i + 2] = [
            _Block(
                start=left.start,
                end=right.end,
                weight=left.weight + right.weight,
                total=left.total + right.total,
            )
        ]
        if i > 0:
            i -= 1

    return IsotonicCalibration(mapping=tuple((block.end, block.value) for block in blocks))


def fit_calibration(
    method: str,
    probabilities: Sequence[float],
    labels: Sequence[float],
) -> CalibrationModel:
    """
    Fit the requested calibrator, degrading to ``NoCalibration`` when the fit
    is not possible.

    Args:
        method: "platt", "isotonic" or "none".
        probabilities: Raw backtest probabilities.
        labels: Backtest outcomes.

    Returns:
        Fitted CalibrationModel.

    Raises:
        ValueError: For an unknown method.
    """
    if method == "none":
        return NoCalibration()

    if method == "platt":
        fitted = fit_platt_scaling(probabilities, labels)
    elif method == "isotonic":
        fitted = fit_isotonic_regression(probabilities, labels)
    else:
        raise ValueError(f"Unknown calibration method '{method}'")

    if fitted is None:
        logger.warning(
            "Skipping %s calibration: only %d backtest samples", method, len(probabilities)
        )
        return NoCalibration()
    return fitted


def apply_calibration(model: Optional[CalibrationModel], probability: float) -> float:
    """Calibrated probability, clamped into ``(EPSILON, 1 - EPSILON)``."""
    if model is None:
        return clamp_probability(probability)
    return model.apply(probability)


def apply_calibration_array(
    model: Optional[CalibrationModel],
    probabilities: Sequence[float],
) -> np.ndarray:
    return np.array([apply_calibration(model, float(p)) for p in probabilities], dtype=np.float64)


def calibration_from_dict(payload: dict) -> CalibrationModel:
    """
    Rebuild a calibration model from ``to_dict`` output.

    Raises:
        ValueError: For an unknown method tag.
    """
    method = payload.get("method", "none")
    if method == "none":
        return NoCalibration()
    if method == "platt":
        return PlattCalibration(slope=float(payload["slope"]), intercept=float(payload["intercept"]))
    if method == "isotonic":
        return IsotonicCalibration(
            mapping=tuple(
                (float(point["threshold"]), float(point["value"])) for point in payload["mapping"]
            )
        )
    raise ValueError(f"Unknown calibration method '{method}'")
