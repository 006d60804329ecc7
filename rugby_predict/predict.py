"""
Prediction Module

Turns a trained model and its calibration into match predictions for
upcoming fixtures. Features for upcoming fixtures go through exactly the same
builder as the training rows.

Each prediction carries:
- Home / Draw / Away probabilities summing to 1
- Expected scores derived from the training-set scoring averages
- Edge over the market-implied home probability (when a home price exists)
- An explanation with the top features and the calibration method
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from .calibration import CalibrationModel, NoCalibration, apply_calibration
from .data_loader import FixtureStore
from .dataset import TrainingRow, compute_fixture_features
from .feature_engineering import FeatureVector, FixtureFeatures
from .log import fixture_logger
from .models import FeatureImportance, SerializedModel

logger = logging.getLogger(__name__)

DEFAULT_AVERAGE_SCORES = (24.0, 22.0)
SCORE_SWING = 6.0  # Points added to the favourite per unit of probability above 0.5
EXPLANATION_FEATURES = 6


@dataclass
class ExpectedScores:
    """Expected points for each side."""

    home: float
    away: float


@dataclass
class PredictionArtifact:
    """Complete prediction for an upcoming fixture."""

    fixture_id: str
    kickoff_at: datetime
    home_team_id: str
    away_team_id: str
    model_version: str
    probabilities: dict[str, float]
    expected_scores: ExpectedScores
    edge: Optional[float] = None
    explanation: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "fixture_id": self.fixture_id,
            "kickoff_at": self.kickoff_at.isoformat(),
            "home_team_id": self.home_team_id,
            "away_team_id": self.away_team_id,
            "model_version": self.model_version,
            "probabilities": dict(self.probabilities),
            "expected_scores": {"home": self.expected_scores.home, "away": self.expected_scores.away},
            "edge": self.edge,
            "explanation": self.explanation,
        }


def compute_average_scores(rows: Sequence[TrainingRow]) -> tuple[float, float]:
    """
    Mean home and away scores over training rows.

    Missing scores count as 0. Returns (24, 22) when there are no rows.
    """
    if not rows:
        return DEFAULT_AVERAGE_SCORES
    home = sum(row.home_score or 0 for row in rows) / len(rows)
    away = sum(row.away_score or 0 for row in rows) / len(rows)
    return home, away


def determine_draw_away_split(vector: FeatureVector) -> tuple[float, float]:
    """
    Share of the non-home probability given to the draw and the away win.

    Follows the relative implied probabilities of the two outcomes, falling
    back to 25% draw / 75% away without prices.

    Returns:
        Tuple of (draw share, away share).
    """
    draw = vector.draw_implied_probability
    away = vector.away_implied_probability
    total = draw + away
    if not total:
        return 0.25, 0.75
    return draw / total, away / total


def build_explanation(
    feature_importance: Sequence[FeatureImportance],
    calibration: CalibrationModel,
) -> dict:
    return {
        "top_features": [
            {"feature": item.feature, "weight": round(item.importance * 100, 2)}
            for item in list(feature_importance)[:EXPLANATION_FEATURES]
        ],
        "calibration": calibration.method,
    }


class MatchPredictor:
    """
    Generate predictions for upcoming fixtures from a trained model.

    Example:
        >>> predictor = MatchPredictor(model, calibration, importance, (25.1, 19.8), "1.0.3")
        >>> artifact = predictor.predict(fixture_features)
        >>> print(f"Home win: {artifact.probabilities['home']:.1%}")
    """

    def __init__(
        self,
        model: SerializedModel,
        calibration: Optional[CalibrationModel] = None,
        feature_importance: Optional[Sequence[FeatureImportance]] = None,
        average_scores: Optional[tuple[float, float]] = None,
        model_version: str = "1.0.0",
    ):
        """
        Initialize the predictor.

        Args:
            model: Trained model.
            calibration: Calibration fitted alongside the model.
            feature_importance: Importance list, most important first.
            average_scores: (home, away) scoring averages of the training rows.
            model_version: Version stamped on every prediction.
        """
        self.model = model
        self.calibration = calibration or NoCalibration()
        self.feature_importance = list(feature_importance or [])
        self.average_scores = average_scores or DEFAULT_AVERAGE_SCORES
        self.model_version = model_version
        self._explanation = build_explanation(self.feature_importance, self.calibration)

    def predict(self, fixture: FixtureFeatures) -> PredictionArtifact:
        """
        Predict one fixture.

        Args:
            fixture: Features, odds and identity of the fixture.

        Returns:
            PredictionArtifact with rounded probabilities and scores.
        """
        vector = fixture.features
        raw = self.model.predict_proba(vector.to_array())
        probability = apply_calibration(self.calibration, raw)

        draw_share, _ = determine_draw_away_split(vector)
        home = round(probability, 4)
        draw = round((1 - probability) * draw_share, 4)
        away = max(0.0, round(1 - home - draw, 4))

        swing = (probability - 0.5) * SCORE_SWING
        average_home, average_away = self.average_scores
        expected = ExpectedScores(
            home=round(max(0.0, average_home + swing), 2),
            away=round(max(0.0, average_away - swing), 2),
        )

        edge = None
        if fixture.implied_odds.home and vector.home_implied_probability:
            edge = round(probability - vector.home_implied_probability, 4)

        fixture_logger(fixture.fixture_id, "predict", logger).debug(
            "raw %.4f calibrated %.4f edge %s", raw, probability, edge
        )

        return PredictionArtifact(
            fixture_id=fixture.fixture_id,
            kickoff_at=fixture.kickoff_at,
            home_team_id=fixture.home_team_id,
            away_team_id=fixture.away_team_id,
            model_version=self.model_version,
            probabilities={"home": home, "draw": draw, "away": away},
            expected_scores=expected,
            edge=edge,
            explanation=dict(self._explanation),
        )

    def predict_upcoming(
        self,
        store: FixtureStore,
        now: Optional[datetime] = None,
    ) -> list[PredictionArtifact]:
        """Predict every upcoming fixture in the store, in kickoff order."""
        return [
            self.predict(compute_fixture_features(store, fixture))
            for fixture in store.query_upcoming_fixtures(now=now)
        ]


def predict_upcoming(
    store: FixtureStore,
    model: SerializedModel,
    calibration: Optional[CalibrationModel] = None,
    feature_importance: Optional[Sequence[FeatureImportance]] = None,
    average_scores: Optional[tuple[float, float]] = None,
    model_version: str = "1.0.0",
    now: Optional[datetime] = None,
) -> list[PredictionArtifact]:
    """
    Predict the store's upcoming fixtures (scheduled, or kicking off at or
    after ``now``).

    Returns:
        One PredictionArtifact per upcoming fixture.
    """
    predictor = MatchPredictor(
        model,
        calibration=calibration,
        feature_importance=feature_importance,
        average_scores=average_scores,
        model_version=model_version,
    )
    predictions = predictor.predict_upcoming(store, now=now)
    logger.info("Generated %d predictions with model v%s", len(predictions), model_version)
    return predictions


def format_prediction(prediction: PredictionArtifact) -> str:
    """
    Format a prediction for display.

    Args:
        prediction: PredictionArtifact object.

    Returns:
        Formatted string representation.
    """
    lines = [
        f"\n{'=' * 50}",
        f"Fixture: {prediction.home_team_id} vs {prediction.away_team_id}",
        f"Kickoff: {prediction.kickoff_at.strftime('%Y-%m-%d %H:%M')} UTC",
        f"Model: v{prediction.model_version}",
        f"{'=' * 50}",
        "",
        "Probabilities:",
        f"  Home Win: {prediction.probabilities['home']:.1%}",
        f"  Draw:     {prediction.probabilities['draw']:.1%}",
        f"  Away Win: {prediction.probabilities['away']:.1%}",
        "",
        "Expected Scores:",
        f"  Home: {prediction.expected_scores.home:.2f}",
        f"  Away: {prediction.expected_scores.away:.2f}",
    ]

    if prediction.edge is not None:
        lines.extend(["", f"Edge vs market: {prediction.edge:+.1%}"])

    top = prediction.explanation.get("top_features", [])
    if top:
        lines.extend(["", "Top features:"])
        for item in top:
            lines.append(f"  {item['feature']:<28} {item['weight']:.2f}%")

    lines.append(f"\nCalibration: {prediction.explanation.get('calibration', 'none')}")

    return "\n".join(lines)
