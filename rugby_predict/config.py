"""
Configuration Module

Dataclass configuration for training jobs: algorithm choice, hyperparameters,
calibration method, holdout split and the date window of completed fixtures.

A job config can be built directly or read from the environment with
``TrainingJobConfig.from_env()``, which understands:

    MODEL_ALGO         logit | gbdt                (default: logit)
    MODEL_CALIBRATION  platt | isotonic | none     (default: platt)
    HOLDOUT_RATIO      float in (0, 1)             (default: 0.25)
    MODEL_NAME         registry name               (default: weekly-<algo>)
    MODEL_DESCRIPTION  free text
    TRAIN_START        ISO date, inclusive
    TRAIN_END          ISO date, inclusive
"""

from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Literal, Mapping, Optional

from .data_loader import to_utc_datetime

Algorithm = Literal["logit", "gbdt"]
CalibrationMethod = Literal["platt", "isotonic", "none"]

ALGORITHMS: tuple[str, ...] = ("logit", "gbdt")
CALIBRATION_METHODS: tuple[str, ...] = ("platt", "isotonic", "none")

DEFAULT_HOLDOUT_RATIO = 0.2
ENV_HOLDOUT_RATIO = 0.25


@dataclass
class LogisticHyperparameters:
    """Batch gradient descent settings for the logistic model."""

    learning_rate: float = 0.15
    iterations: int = 600
    l2: float = 0.01


@dataclass
class GradientBoostingHyperparameters:
    """Newton boosting settings for the stump ensemble."""

    trees: int = 80
    learning_rate: float = 0.08  # Shrinkage applied to every stump
    lambda_: float = 1.0  # L2 penalty on leaf values


@dataclass
class TrainingWindow:
    """Inclusive kickoff window of completed fixtures used for training."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def label(self) -> str:
        """Human readable window, e.g. ``2024-01-01 → latest``."""
        start = self.start.date().isoformat() if self.start else "full-history"
        end = self.end.date().isoformat() if self.end else "latest"
        return f"{start} → {end}"


@dataclass
class TrainingJobConfig:
    """
    Configuration for a single training run.

    Attributes:
        model_name: Registry name of the model family.
        version: Semantic version assigned to the trained artifact.
        algorithm: "logit" (logistic regression) or "gbdt" (boosted stumps).
        calibration: Calibration fitted on the backtest split.
        holdout_ratio: Share of the most recent rows held out for backtesting.
        training_window: Optional kickoff window for the training fixtures.
        logistic: Logistic regression hyperparameters.
        gradient_boosting: Boosted stump hyperparameters.
        description: Free text stored alongside the model.
    """

    model_name: str = "weekly-logit"
    version: str = "1.0.0"
    algorithm: Algorithm = "logit"
    calibration: CalibrationMethod = "none"
    holdout_ratio: float = DEFAULT_HOLDOUT_RATIO
    training_window: TrainingWindow = field(default_factory=TrainingWindow)
    logistic: LogisticHyperparameters = field(default_factory=LogisticHyperparameters)
    gradient_boosting: GradientBoostingHyperparameters = field(
        default_factory=GradientBoostingHyperparameters
    )
    description: Optional[str] = None

    def validate(self) -> "TrainingJobConfig":
        """
        Check the configuration for values the trainer cannot handle.

        Returns:
            The config itself, so calls can be chained.

        Raises:
            ValueError: If the algorithm, calibration method or holdout ratio
                is invalid.
        """
        if self.algorithm not in ALGORITHMS:
            raise ValueError(
                f"Unknown algorithm '{self.algorithm}'. Expected one of {ALGORITHMS}"
            )
        if self.calibration not in CALIBRATION_METHODS:
            raise ValueError(
                f"Unknown calibration method '{self.calibration}'. "
                f"Expected one of {CALIBRATION_METHODS}"
            )
        if not (0 < self.holdout_ratio < 1):
            raise ValueError(
                f"holdout_ratio must be between 0 and 1 (exclusive), got {self.holdout_ratio}"
            )
        return self

    def to_dict(self) -> dict:
        """JSON-serializable representation."""
        payload = asdict(self)
        payload["training_window"] = {
            "start": self.training_window.start.isoformat() if self.training_window.start else None,
            "end": self.training_window.end.isoformat() if self.training_window.end else None,
        }
        return payload

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrainingJobConfig":
        """
        Build a job config from environment variables.

        Unrecognised algorithm or calibration values fall back to the
        defaults rather than failing, so a misconfigured scheduler still
        produces a usable run.

        Args:
            environ: Mapping to read from (default: ``os.environ``).

        Returns:
            Validated TrainingJobConfig.
        """
        env = os.environ if environ is None else environ

        algorithm = "gbdt" if env.get("MODEL_ALGO") == "gbdt" else "logit"

        calibration = env.get("MODEL_CALIBRATION")
        if calibration not in ("isotonic", "none"):
            calibration = "platt"

        holdout_ratio = ENV_HOLDOUT_RATIO
        raw_ratio = env.get("HOLDOUT_RATIO")
        if raw_ratio:
            try:
                parsed = float(raw_ratio)
            except ValueError:
                parsed = math.nan
            if math.isfinite(parsed):
                holdout_ratio = parsed

        window = TrainingWindow(
            start=to_utc_datetime(env["TRAIN_START"]) if env.get("TRAIN_START") else None,
            end=to_utc_datetime(env["TRAIN_END"]) if env.get("TRAIN_END") else None,
        )

        config = cls(
            model_name=env.get("MODEL_NAME") or f"weekly-{algorithm}",
            algorithm=algorithm,
            calibration=calibration,
            holdout_ratio=holdout_ratio,
            training_window=window,
            description=env.get("MODEL_DESCRIPTION") or "Manual retraining run",
        )
        return config.validate()
