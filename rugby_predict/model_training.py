"""
Model Training Module

Trains binary home-win classifiers from scratch on numpy and orchestrates a
full training run.

Models supported:
- Logistic regression: batch gradient descent on standardized features with
  L2 regularization on the non-bias weights
- Boosted stumps: second-order (Newton) gradient boosting restricted to
  depth-1 axis-aligned splits

A training run includes:
- Chronological training/backtest split
- Calibration fitted on the backtest split
- Training and backtest metrics, monthly ROI, reliability diagram
- Predictions for upcoming fixtures
- Optional hyperparameter optimization via Optuna
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Literal, Optional, Sequence

import numpy as np
import optuna

from .calibration import CalibrationModel, apply_calibration_array, fit_calibration
from .config import (
    GradientBoostingHyperparameters,
    LogisticHyperparameters,
    TrainingJobConfig,
)
from .data_loader import FixtureStore
from .dataset import build_training_dataset, rows_to_matrix
from .model_evaluation import (
    CalibrationSummary,
    EvaluationMetrics,
    ModelEvaluator,
    RoiPoint,
    compute_brier,
    compute_log_loss,
)
from .models import (
    FeatureImportance,
    GradientBoostingModel,
    LogisticModel,
    SerializedModel,
    Stump,
    compute_feature_importance,
)
from .numeric import clamp_probability, sigmoid_array
from .predict import (
    DEFAULT_AVERAGE_SCORES,
    PredictionArtifact,
    compute_average_scores,
    predict_upcoming,
)

logger = logging.getLogger(__name__)

GRADIENT_TOLERANCE = 1e-4
MIN_HESSIAN = 1e-6
CONVERGED_GRADIENT = 1e-6


def standardize_matrix(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Column-wise z-score standardization.

    Uses the sample standard deviation (``n - 1`` denominator, at least 1).
    Columns without variance get a std of 1 so they standardize to ~0.

    Args:
        matrix: Feature matrix of shape (rows, features).

    Returns:
        Tuple of (standardized matrix, means, stds).
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    rows = matrix.shape[0]
    means = matrix.mean(axis=0)
    variance = ((matrix - means) ** 2).sum(axis=0) / max(rows - 1, 1)
    stds = np.sqrt(variance)
    stds[stds <= 1e-12] = 1.0
    return (matrix - means) / stds, means, stds


def train_logistic(
    matrix: np.ndarray,
    labels: Sequence[float],
    hyperparameters: Optional[LogisticHyperparameters] = None,
) -> LogisticModel:
    """
    Fit logistic regression by batch gradient descent.

    Weights start at zero and every iteration uses all rows, so the result
    is fully deterministic. Training stops early once the largest absolute
    gradient component drops below 1e-4.

    Args:
        matrix: Raw feature matrix of shape (rows, features).
        labels: Binary labels (1 = home win).
        hyperparameters: Learning rate, iteration cap and L2 strength.

    Returns:
        LogisticModel carrying the standardization statistics.

    Raises:
        ValueError: If the matrix has no rows.
    """
    hp = hyperparameters or LogisticHyperparameters()
    matrix = np.asarray(matrix, dtype=np.float64)
    y = np.asarray(labels, dtype=np.float64)

    if matrix.shape[0] == 0:
        raise ValueError("Cannot train a logistic model on an empty matrix")

    normalized, means, stds = standardize_matrix(matrix)
    rows, cols = normalized.shape
    weights = np.zeros(cols + 1, dtype=np.float64)
    step = hp.learning_rate / rows

    for _ in range(hp.iterations):
        error = sigmoid_array(weights[0] + normalized @ weights[1:]) - y

        bias_gradient = error.sum()
        gradients = normalized.T @ error + hp.l2 * weights[1:]

        weights[0] -= step * bias_gradient
        weights[1:] -= step * gradients

        largest = max(abs(bias_gradient), float(np.abs(gradients).max(initial=0.0)))
        if largest < GRADIENT_TOLERANCE:
            break

    return LogisticModel(
        weights=tuple(float(w) for w in weights),
        means=tuple(float(m) for m in means),
        stds=tuple(float(s) for s in stds),
    )


def train_gbdt(
    matrix: np.ndarray,
    labels: Sequence[float],
    hyperparameters: Optional[GradientBoostingHyperparameters] = None,
) -> GradientBoostingModel:
    """
    Fit an additive ensemble of boosted stumps.

    Each round computes the logistic-loss gradient ``y - p`` and hessian
    ``p(1 - p)`` per row, scans every split between distinct consecutive
    values of every feature and keeps the one with the highest second-order
    gain ``G_L^2/(H_L+lambda) + G_R^2/(H_R+lambda)``. Leaf values are
    ``G/(H+lambda)`` and are added to the logits scaled by the shrinkage.

    Boosting stops early when the total gradient magnitude falls below 1e-6
    or no split beats leaving the node unsplit.

    Args:
        matrix: Raw feature matrix of shape (rows, features).
        labels: Binary labels (1 = home win).
        hyperparameters: Number of rounds, shrinkage and leaf L2 penalty.

    Returns:
        GradientBoostingModel with the stumps in the order they were added.

    Raises:
        ValueError: If the matrix has no rows.
    """
    hp = hyperparameters or GradientBoostingHyperparameters()
    matrix = np.asarray(matrix, dtype=np.float64)
    y = np.asarray(labels, dtype=np.float64)

    if matrix.shape[0] == 0:
        raise ValueError("Cannot train a boosted model on an empty matrix")

    rows, cols = matrix.shape
    base_rate = clamp_probability(float(y.mean()))
    bias = math.log(base_rate / (1 - base_rate))
    shrinkage = hp.learning_rate
    lam = hp.lambda_

    logits = np.full(rows, bias, dtype=np.float64)
    order = [np.argsort(matrix[:, f], kind="mergesort") for f in range(cols)]
    stumps: list[Stump] = []

    for _ in range(max(hp.trees, 1)):
        probabilities = sigmoid_array(logits)
        gradients = y - probabilities
        hessians = np.maximum(probabilities * (1 - probabilities), MIN_HESSIAN)

        if float(np.abs(gradients).sum()) < CONVERGED_GRADIENT:
            break

        total_gradient = float(gradients.sum())
        total_hessian = float(hessians.sum())
        best_gain = total_gradient**2 / (total_hessian + lam)
        best: Optional[tuple[int, float, float, float, float, float]] = None

        for feature in range(cols):
            idx = order[feature]
            values = matrix[idx, feature]

            left_gradient = np.cumsum(gradients[idx])[:-1]
            left_hessian = np.cumsum(hessians[idx])[:-1]
            right_gradient = total_gradient - left_gradient
            right_hessian = total_hessian - left_hessian

            valid = (
                (values[:-1] != values[1:])
                & (left_hessian > MIN_HESSIAN)
                & (right_hessian > MIN_HESSIAN)
            )
            if not valid.any():
                continue

            gains = np.where(
                valid,
                left_gradient**2 / (left_hessian + lam) + right_gradient**2 / (right_hessian + lam),
                -np.inf,
            )
            position = int(np.argmax(gains))
            if gains[position] > best_gain:
                best_gain = float(gains[position])
                best = (
                    feature,
                    float((values[position] + values[position + 1]) / 2),
                    float(left_gradient[position]),
                    float(left_hessian[position]),
                    float(right_gradient[position]),
                    float(right_hessian[position]),
                )

        if best is None:
            break

        feature, threshold, g_left, h_left, g_right, h_right = best
        stump = Stump(
            feature_index=feature,
            threshold=threshold,
            left_value=g_left / (h_left + lam),
            right_value=g_right / (h_right + lam),
        )
        stumps.append(stump)
        logits += shrinkage * np.where(
            matrix[:, feature] <= threshold, stump.left_value, stump.right_value
        )

    return GradientBoostingModel(bias=bias, shrinkage=shrinkage, stumps=tuple(stumps))


def fit_model(
    config: TrainingJobConfig,
    matrix: np.ndarray,
    labels: Sequence[float],
) -> SerializedModel:
    """Dispatch to the trainer for ``config.algorithm``."""
    if config.algorithm == "gbdt":
        return train_gbdt(matrix, labels, config.gradient_boosting)
    if config.algorithm == "logit":
        return train_logistic(matrix, labels, config.logistic)
    raise ValueError(f"Unknown algorithm '{config.algorithm}'")


@dataclass
class OptimizationConfig:
    """Configuration for hyperparameter optimization."""

    n_trials: int = 30
    metric: Literal["log_loss", "brier"] = "log_loss"
    learning_rate_range: tuple[float, float] = (0.01, 0.5)  # Logistic step size
    l2_range: tuple[float, float] = (1e-4, 1.0)
    trees_range: tuple[int, int] = (10, 150)
    shrinkage_range: tuple[float, float] = (0.01, 0.3)
    lambda_range: tuple[float, float] = (0.1, 10.0)


@dataclass
class TrainingMetrics:
    """Everything measured during a training run."""

    training: EvaluationMetrics
    backtest: EvaluationMetrics
    calibration: CalibrationSummary
    roi_series: list[RoiPoint]
    trained_at: str
    sample_sizes: dict[str, int]

    def to_dict(self) -> dict:
        return {
            "training": self.training.to_dict(),
            "backtest": self.backtest.to_dict(),
            "calibration": self.calibration.to_dict(),
            "roi_series": [{"period": p.period, "roi": p.roi} for p in self.roi_series],
            "trained_at": self.trained_at,
            "sample_sizes": dict(self.sample_sizes),
        }


@dataclass
class TrainingResult:
    """Result of a training run."""

    config: TrainingJobConfig
    training_window_label: str
    feature_importance: list[FeatureImportance]
    model: SerializedModel
    calibration: CalibrationModel
    metrics: TrainingMetrics
    predictions: list[PredictionArtifact]
    average_scores: tuple[float, float] = DEFAULT_AVERAGE_SCORES

    def to_dict(self) -> dict:
        """JSON-serializable representation of the whole run."""
        return {
            "config": self.config.to_dict(),
            "training_window_label": self.training_window_label,
            "feature_importance": [
                {"feature": f.feature, "importance": f.importance} for f in self.feature_importance
            ],
            "model": self.model.to_dict(),
            "calibration": self.calibration.to_dict(),
            "metrics": self.metrics.to_dict(),
            "predictions": [p.to_dict() for p in self.predictions],
            "average_scores": list(self.average_scores),
        }


class ModelTrainer:
    """
    Train home-win models against a fixture store.

    This class provides:
    - A single training run with fixed hyperparameters
    - Hyperparameter optimization via Optuna

    Example:
        >>> trainer = ModelTrainer(store)
        >>> # Train with fixed parameters
        >>> result = trainer.train(TrainingJobConfig(algorithm="gbdt"))
        >>>
        >>> # Or optimize hyperparameters
        >>> result, stats = trainer.optimize(
        ...     TrainingJobConfig(),
        ...     OptimizationConfig(n_trials=20),
        ... )
    """

    def __init__(self, store: FixtureStore, evaluator: Optional[ModelEvaluator] = None):
        """
        Initialize the model trainer.

        Args:
            store: Source of fixtures, odds and weather.
            evaluator: Evaluator used for metrics (default: 2% edge, unit stake).
        """
        self.store = store
        self.evaluator = evaluator or ModelEvaluator()

    def train(
        self,
        config: Optional[TrainingJobConfig] = None,
        now: Optional[datetime] = None,
    ) -> TrainingResult:
        """
        Run a full training job.

        Args:
            config: Training job configuration (uses defaults if not provided).
            now: Reference time for selecting upcoming fixtures.

        Returns:
            TrainingResult with the model, calibration, metrics and predictions.

        Raises:
            InsufficientDataError: If fewer than 5 completed fixtures qualify.
            ValueError: If the configuration is invalid.
        """
        if config is None:
            config = TrainingJobConfig()
        config.validate()

        window = config.training_window
        logger.info(
            "Training %s v%s (%s, calibration=%s, window %s)",
            config.model_name,
            config.version,
            config.algorithm,
            config.calibration,
            window.label(),
        )

        dataset = build_training_dataset(self.store, start=window.start, end=window.end)
        training_rows, backtest_rows = dataset.split(config.holdout_ratio)

        training_matrix = rows_to_matrix(training_rows)
        backtest_matrix = rows_to_matrix(backtest_rows)
        training_labels = [row.label for row in training_rows]
        backtest_labels = [row.label for row in backtest_rows]

        model = fit_model(config, training_matrix, training_labels)

        raw_training = model.predict_many(training_matrix)
        raw_backtest = model.predict_many(backtest_matrix)

        calibration = fit_calibration(config.calibration, raw_backtest, backtest_labels)
        calibrated_training = apply_calibration_array(calibration, raw_training)
        calibrated_backtest = apply_calibration_array(calibration, raw_backtest)

        metrics = TrainingMetrics(
            training=self.evaluator.evaluate(training_rows, calibrated_training),
            backtest=self.evaluator.evaluate(backtest_rows, calibrated_backtest),
            calibration=self.evaluator.summarize_calibration(
                calibration, calibrated_backtest, backtest_labels
            ),
            roi_series=self.evaluator.roi_series(backtest_rows, calibrated_backtest),
            trained_at=datetime.now(timezone.utc).isoformat(),
            sample_sizes={"training": len(training_rows), "backtest": len(backtest_rows)},
        )

        importance = compute_feature_importance(model, dataset.feature_order)
        average_scores = compute_average_scores(training_rows)

        predictions = predict_upcoming(
            self.store,
            model,
            calibration,
            feature_importance=importance,
            average_scores=average_scores,
            model_version=config.version,
            now=now,
        )

        logger.info(
            "Trained %s v%s on %d rows (backtest %d): accuracy %.3f, brier %.4f, %d predictions",
            config.model_name,
            config.version,
            len(training_rows),
            len(backtest_rows),
            metrics.backtest.accuracy,
            metrics.backtest.brier_score,
            len(predictions),
        )

        return TrainingResult(
            config=config,
            training_window_label=window.label(),
            feature_importance=importance,
            model=model,
            calibration=calibration,
            metrics=metrics,
            predictions=predictions,
            average_scores=average_scores,
        )

    def optimize(
        self,
        config: Optional[TrainingJobConfig] = None,
        opt_config: Optional[OptimizationConfig] = None,
        verbose: bool = True,
    ) -> tuple[TrainingResult, dict]:
        """
        Optimize hyperparameters and train the best model.

        Uses Optuna to search the hyperparameters of ``config.algorithm``,
        scoring each trial by calibrated backtest log loss or Brier score.
        The dataset is built once and shared by every trial.

        Args:
            config: Base training job configuration.
            opt_config: Optimization configuration.
            verbose: Whether to show optimization progress.

        Returns:
            Tuple of (training result for the best parameters, optimization stats).
        """
        if config is None:
            config = TrainingJobConfig()
        if opt_config is None:
            opt_config = OptimizationConfig()
        config.validate()

        window = config.training_window
        dataset = build_training_dataset(self.store, start=window.start, end=window.end)
        training_rows, backtest_rows = dataset.split(config.holdout_ratio)

        training_matrix = rows_to_matrix(training_rows)
        backtest_matrix = rows_to_matrix(backtest_rows)
        training_labels = [row.label for row in training_rows]
        backtest_labels = [row.label for row in backtest_rows]

        metric_fn = compute_log_loss if opt_config.metric == "log_loss" else compute_brier

        if verbose:
            print(f"Optimizing {config.algorithm} model")
            print(f"Training rows: {len(training_rows)}, backtest rows: {len(backtest_rows)}")

        sampler = optuna.samplers.TPESampler(seed=42)
        study = optuna.create_study(direction="minimize", sampler=sampler)

        def objective(trial: optuna.Trial) -> float:
            trial_config = self._suggest_config(trial, config, opt_config)
            model = fit_model(trial_config, training_matrix, training_labels)
            raw_backtest = model.predict_many(backtest_matrix)
            calibration = fit_calibration(trial_config.calibration, raw_backtest, backtest_labels)
            calibrated = apply_calibration_array(calibration, raw_backtest)
            return metric_fn(calibrated, backtest_labels)

        optuna.logging.set_verbosity(
            optuna.logging.INFO if verbose else optuna.logging.WARNING
        )
        study.optimize(objective, n_trials=opt_config.n_trials, show_progress_bar=verbose)

        best_params = study.best_params
        if verbose:
            print(f"\nBest parameters: {best_params}")
            print(f"Best score ({opt_config.metric}): {study.best_value:.4f}")

        best_config = self._apply_params(config, best_params)
        result = self.train(best_config)

        opt_stats = {
            "n_trials": opt_config.n_trials,
            "best_params": best_params,
            "best_score": study.best_value,
            "metric": opt_config.metric,
            "algorithm": config.algorithm,
        }

        return result, opt_stats

    def _suggest_config(
        self,
        trial: optuna.Trial,
        config: TrainingJobConfig,
        opt_config: OptimizationConfig,
    ) -> TrainingJobConfig:
        """Sample the active algorithm's hyperparameters into a config copy."""
        if config.algorithm == "gbdt":
            params = {
                "trees": trial.suggest_int("trees", *opt_config.trees_range),
                "learning_rate": trial.suggest_float(
                    "learning_rate", *opt_config.shrinkage_range, log=True
                ),
                "lambda_": trial.suggest_float("lambda_", *opt_config.lambda_range, log=True),
            }
        else:
            params = {
                "learning_rate": trial.suggest_float(
                    "learning_rate", *opt_config.learning_rate_range, log=True
                ),
                "l2": trial.suggest_float("l2", *opt_config.l2_range, log=True),
            }
        return self._apply_params(config, params)

    def _apply_params(self, config: TrainingJobConfig, params: dict) -> TrainingJobConfig:
        if config.algorithm == "gbdt":
            return replace(config, gradient_boosting=replace(config.gradient_boosting, **params))
        return replace(config, logistic=replace(config.logistic, **params))
