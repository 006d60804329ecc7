"""
Model Evaluation Module

Scores calibrated home-win probabilities against realized outcomes.

Classification metrics:
- Accuracy: share of rows where ``p >= 0.5`` agrees with the label
- Brier score: mean squared error of the probability
- Log loss: mean negative log-likelihood on clamped probabilities

Betting metrics come from a flat-stake simulation: back the home side
whenever the model's probability beats the market-implied probability by
more than the policy's edge threshold.

Lower is better for Brier and log loss; higher is better for the rest.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import timezone
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .calibration import CalibrationModel, NoCalibration
from .dataset import TrainingRow
from .feature_engineering import parse_decimal_odds
from .numeric import EPSILON, clamp_probabilities

DEFAULT_CALIBRATION_BINS = 8


@dataclass
class EvaluationMetrics:
    """Metrics for one split (training or backtest)."""

    accuracy: float
    brier_score: float
    log_loss: float
    roi: float  # Percent
    yield_: float  # Return per unit staked
    hit_rate: float  # Winning bets / bets placed
    bets: int
    sample_size: int

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["yield"] = payload.pop("yield_")
        return payload


@dataclass(frozen=True)
class BettingPolicy:
    """When and how much the betting simulation stakes."""

    edge_threshold: float = 0.02
    stake: float = 1.0


@dataclass
class BettingSummary:
    roi: float
    yield_: float
    hit_rate: float
    bets: int


@dataclass
class RoiPoint:
    """ROI of the simulated bets placed in one calendar month (UTC)."""

    period: str
    roi: float


@dataclass
class CalibrationBin:
    """One bucket of the reliability diagram."""

    range: tuple[float, float]
    count: int
    average_prediction: float
    actual_rate: float


@dataclass
class CalibrationSummary:
    """Fitted calibration plus the reliability diagram it produced."""

    model: CalibrationModel = field(default_factory=NoCalibration)
    bins: list[CalibrationBin] = field(default_factory=list)
    curve: list[dict[str, float]] = field(default_factory=list)

    @property
    def method(self) -> str:
        return self.model.method

    def to_dict(self) -> dict:
        payload = self.model.to_dict()
        payload["bins"] = [
            {
                "range": list(b.range),
                "count": b.count,
                "average_prediction": b.average_prediction,
                "actual_rate": b.actual_rate,
            }
            for b in self.bins
        ]
        payload["curve"] = list(self.curve)
        return payload


def compute_accuracy(probabilities: Sequence[float], labels: Sequence[float]) -> float:
    """
    Share of rows where the 0.5-thresholded prediction matches the label.

    Example:
        >>> compute_accuracy([0.8, 0.3, 0.6], [1, 0, 0])
        0.666...
    """
    probs = clamp_probabilities(probabilities)
    y = np.asarray(labels, dtype=np.float64)
    if len(y) == 0:
        return 0.0
    return float(np.mean((probs >= 0.5) == (y == 1)))


def compute_brier(probabilities: Sequence[float], labels: Sequence[float]) -> float:
    """
    Brier score for binary outcomes.

    Formula:
        BS = mean((p - y)^2)

    Example:
        >>> compute_brier([1.0, 0.0], [1, 0])
        0.0
        >>> compute_brier([0.5, 0.5], [1, 0])
        0.25
    """
    probs = clamp_probabilities(probabilities)
    y = np.asarray(labels, dtype=np.float64)
    if len(y) == 0:
        return 0.0
    return float(np.mean((probs - y) ** 2))


def compute_log_loss(
    probabilities: Sequence[float],
    labels: Sequence[float],
    eps: float = EPSILON,
) -> float:
    """
    Mean negative log-likelihood of the outcomes.

    Formula:
        LL = -mean(y * log(p) + (1 - y) * log(1 - p))

    Probabilities are clipped to ``[eps, 1 - eps]`` first so a confident
    miss costs a large but finite amount.

    Example:
        >>> compute_log_loss([0.9], [1])
        0.105...
    """
    probs = np.clip(np.asarray(probabilities, dtype=np.float64), eps, 1 - eps)
    y = np.asarray(labels, dtype=np.float64)
    if len(y) == 0:
        return 0.0
    return float(-np.mean(y * np.log(probs) + (1 - y) * np.log(1 - probs)))


class ModelEvaluator:
    """
    Evaluate calibrated probabilities on training or backtest rows.

    Example:
        >>> evaluator = ModelEvaluator()
        >>> metrics = evaluator.evaluate(backtest_rows, calibrated)
        >>> print(f"Backtest ROI: {metrics.roi:.2f}%")
    """

    def __init__(self, policy: Optional[BettingPolicy] = None):
        """
        Initialize the evaluator.

        Args:
            policy: Edge threshold and stake for the betting simulation
                (default: 2% edge, unit stake).
        """
        self.policy = policy or BettingPolicy()

    def evaluate(
        self,
        rows: Sequence[TrainingRow],
        probabilities: Sequence[float],
    ) -> EvaluationMetrics:
        """
        Compute classification and betting metrics for one split.

        Args:
            rows: Training rows, aligned with ``probabilities``.
            probabilities: Calibrated home-win probabilities.

        Returns:
            EvaluationMetrics for the split.
        """
        labels = [row.label for row in rows]
        betting = self.simulate_bets(rows, probabilities)

        return EvaluationMetrics(
            accuracy=compute_accuracy(probabilities, labels),
            brier_score=compute_brier(probabilities, labels),
            log_loss=compute_log_loss(probabilities, labels),
            roi=betting.roi,
            yield_=betting.yield_,
            hit_rate=betting.hit_rate,
            bets=betting.bets,
            sample_size=len(rows),
        )

    def simulate_bets(
        self,
        rows: Sequence[TrainingRow],
        probabilities: Sequence[float],
    ) -> BettingSummary:
        """
        Flat-stake home-win betting simulation.

        A bet is placed when the fixture has a home price and the model's
        edge over the implied probability exceeds the policy threshold. A
        winning bet returns ``stake * odds``.
        """
        total_stake = 0.0
        total_return = 0.0
        winning_bets = 0
        bets = 0

        for row, probability, odds in self._placed_bets(rows, probabilities):
            bets += 1
            total_stake += self.policy.stake
            if row.outcome == "home":
                total_return += self.policy.stake * odds
                winning_bets += 1

        if not total_stake:
            return BettingSummary(roi=0.0, yield_=0.0, hit_rate=0.0, bets=0)

        return BettingSummary(
            roi=(total_return - total_stake) / total_stake * 100,
            yield_=total_return / total_stake,
            hit_rate=winning_bets / bets,
            bets=bets,
        )

    def roi_series(
        self,
        rows: Sequence[TrainingRow],
        probabilities: Sequence[float],
    ) -> list[RoiPoint]:
        """
        Monthly ROI of the simulated bets, oldest month first.

        Args:
            rows: Rows aligned with ``probabilities``.
            probabilities: Calibrated home-win probabilities.

        Returns:
            One RoiPoint per UTC kickoff month with at least one bet.
        """
        monthly: dict[str, list[float]] = {}

        for row, probability, odds in self._placed_bets(rows, probabilities):
            period = row.kickoff_at.astimezone(timezone.utc).strftime("%Y-%m")
            bucket = monthly.setdefault(period, [0.0, 0.0])
            bucket[0] += self.policy.stake
            if row.outcome == "home":
                bucket[1] += self.policy.stake * odds

        return [
            RoiPoint(period=period, roi=(returned - stake) / stake * 100 if stake else 0.0)
            for period, (stake, returned) in sorted(monthly.items())
        ]

    def calibration_bins(
        self,
        probabilities: Sequence[float],
        labels: Sequence[float],
        n_bins: int = DEFAULT_CALIBRATION_BINS,
    ) -> list[CalibrationBin]:
        """
        Reliability diagram buckets over equal-width bins of ``[0, 1]``.

        Each probability falls in exactly one bin; 1.0 belongs to the last.

        Args:
            probabilities: Calibrated probabilities.
            labels: Binary outcomes.
            n_bins: Number of bins.

        Returns:
            All ``n_bins`` bins, empty ones with count 0.
        """
        probs = np.clip(np.asarray(probabilities, dtype=np.float64), 0.0, 1.0)
        y = np.asarray(labels, dtype=np.float64)
        indices = np.minimum((probs * n_bins).astype(int), n_bins - 1)

        bins = []
        for i in range(n_bins):
            start = i / n_bins
            end = 1.0 if i == n_bins - 1 else (i + 1) / n_bins
            mask = indices == i
            count = int(mask.sum())
            bins.append(
                CalibrationBin(
                    range=(round(start, 4), round(end, 4)),
                    count=count,
                    average_prediction=float(probs[mask].mean()) if count else 0.0,
                    actual_rate=float(y[mask].mean()) if count else 0.0,
                )
            )
        return bins

    @staticmethod
    def calibration_curve(bins: Sequence[CalibrationBin]) -> list[dict[str, float]]:
        """Predicted vs observed rate for the non-empty bins."""
        return [
            {"predicted": b.average_prediction, "actual": b.actual_rate}
            for b in bins
            if b.count > 0
        ]

    def summarize_calibration(
        self,
        model: CalibrationModel,
        probabilities: Sequence[float],
        labels: Sequence[float],
    ) -> CalibrationSummary:
        bins = self.calibration_bins(probabilities, labels)
        return CalibrationSummary(model=model, bins=bins, curve=self.calibration_curve(bins))

    def evaluation_frame(
        self,
        rows: Sequence[TrainingRow],
        probabilities: Sequence[float],
    ) -> pd.DataFrame:
        """
        Row-level evaluation table for reporting.

        Columns: fixture_id, kickoff_at, probability, implied_probability,
        edge, bet, outcome, label.
        """
        records = []
        for row, probability in zip(rows, probabilities):
            implied = row.features.home_implied_probability
            has_price = parse_decimal_odds(row.implied_odds.home) is not None
            edge = probability - implied if has_price else None
            records.append({
                "fixture_id": row.fixture_id,
                "kickoff_at": row.kickoff_at,
                "probability": float(probability),
                "implied_probability": implied if has_price else None,
                "edge": edge,
                "bet": bool(edge is not None and edge > self.policy.edge_threshold),
                "outcome": row.outcome,
                "label": row.label,
            })
        return pd.DataFrame(records)

    def _placed_bets(self, rows: Sequence[TrainingRow], probabilities: Sequence[float]):
        """Yield (row, probability, home odds) for every bet the policy places."""
        for row, probability in zip(rows, probabilities):
            home_odds = parse_decimal_odds(row.implied_odds.home)
            if home_odds is None:
                continue
            if probability - row.features.home_implied_probability <= self.policy.edge_threshold:
                continue
            yield row, probability, home_odds
