"""
Numerically safe helpers shared by the trainers, calibrators and evaluator.
"""

from __future__ import annotations

import math

import numpy as np

EPSILON = 1e-9


def sigmoid(x: float) -> float:
    # Branch on sign so exp never overflows.
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def sigmoid_array(x: np.ndarray) -> np.ndarray:
    """Stable element-wise sigmoid."""
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    pos = x >= 0
    neg = ~pos
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[neg])
    out[neg] = ex / (1.0 + ex)
    return out


def clamp_probability(value: float) -> float:
    """Clamp into ``[EPSILON, 1 - EPSILON]`` so logs and odds ratios stay finite."""
    if value <= EPSILON:
        return EPSILON
    if value >= 1 - EPSILON:
        return 1 - EPSILON
    return float(value)


def clamp_probabilities(values: np.ndarray) -> np.ndarray:
    return np.clip(np.asarray(values, dtype=np.float64), EPSILON, 1 - EPSILON)


def logit(p: float) -> float:
    p = clamp_probability(p)
    return math.log(p / (1 - p))
