"""
Training Dataset Module

Turns completed fixtures into labelled training rows. Each row carries the
feature vector computed from the fixture's pre-kickoff context, the market
odds seen at that time and the realized outcome.

Rows are kept in kickoff order so the chronological holdout split in
``TrainingDataset.split`` produces a genuine backtest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

import numpy as np

from .data_loader import FixtureRecord, FixtureStore, MarketOdds, WeatherObservation
from .exceptions import InsufficientDataError
from .feature_engineering import (
    FEATURE_KEYS,
    HEAD_TO_HEAD_LIMIT,
    FeatureVector,
    FixtureFeatures,
    build_feature_vector,
)

logger = logging.getLogger(__name__)

Outcome = Literal["home", "away", "draw"]

MIN_TRAINING_ROWS = 5
RECENT_MATCH_LIMIT = 6


@dataclass(frozen=True)
class TrainingRow:
    """A completed fixture with its features, odds and result."""

    fixture_id: str
    kickoff_at: datetime
    home_team_id: str
    away_team_id: str
    features: FeatureVector
    implied_odds: MarketOdds
    weather: Optional[WeatherObservation]
    outcome: Outcome
    label: int
    home_score: Optional[int]
    away_score: Optional[int]


@dataclass(frozen=True)
class TrainingDataset:
    """Kickoff-ordered training rows plus the feature order used to build them."""

    rows: tuple[TrainingRow, ...]
    feature_order: tuple[str, ...] = field(default=FEATURE_KEYS)

    def __len__(self) -> int:
        return len(self.rows)

    def matrix(self) -> np.ndarray:
        """Feature matrix of shape (rows, features)."""
        return rows_to_matrix(self.rows)

    def labels(self) -> np.ndarray:
        return np.array([row.label for row in self.rows], dtype=np.float64)

    def split(self, holdout_ratio: float) -> tuple[tuple[TrainingRow, ...], tuple[TrainingRow, ...]]:
        """
        Chronological training/backtest split.

        The last ``max(1, floor(n * holdout_ratio))`` rows form the backtest
        split; the training split keeps at least one row.

        Args:
            holdout_ratio: Share of rows to hold out, strictly between 0 and 1.

        Returns:
            Tuple of (training rows, backtest rows).

        Raises:
            ValueError: If the ratio is out of range or the dataset has fewer
                than two rows.
        """
        if not (0 < holdout_ratio < 1):
            raise ValueError(
                f"holdout_ratio must be between 0 and 1 (exclusive), got {holdout_ratio}"
            )
        total = len(self.rows)
        if total < 2:
            raise ValueError("Need at least 2 rows to split into training and backtest sets")

        holdout_size = max(1, int(total * holdout_ratio))
        split_index = total - holdout_size
        if split_index <= 0:
            split_index = total - 1

        return self.rows[:split_index], self.rows[split_index:]


def rows_to_matrix(rows: tuple[TrainingRow, ...] | list[TrainingRow]) -> np.ndarray:
    if not rows:
        return np.zeros((0, len(FEATURE_KEYS)), dtype=np.float64)
    return np.vstack([row.features.to_array() for row in rows])


def determine_outcome(fixture: FixtureRecord) -> Outcome:
    """Match result from the home side's perspective; unscored fixtures count as draws."""
    if fixture.home_score is None or fixture.away_score is None:
        return "draw"
    if fixture.home_score > fixture.away_score:
        return "home"
    if fixture.home_score < fixture.away_score:
        return "away"
    return "draw"


def compute_fixture_features(store: FixtureStore, fixture: FixtureRecord) -> FixtureFeatures:
    """
    Fetch a fixture's pre-kickoff context and build its features.

    The same routine serves training rows and upcoming fixtures so both go
    through identical feature code.

    Args:
        store: Data store to query.
        fixture: Fixture to describe.

    Returns:
        FixtureFeatures with the feature vector, odds and weather.
    """
    recent_home = store.query_recent_fixtures(fixture.home_team_id, fixture.kickoff_at, RECENT_MATCH_LIMIT)
    recent_away = store.query_recent_fixtures(fixture.away_team_id, fixture.kickoff_at, RECENT_MATCH_LIMIT)
    meetings = store.query_head_to_head(
        fixture.home_team_id, fixture.away_team_id, fixture.kickoff_at, HEAD_TO_HEAD_LIMIT
    )
    odds = store.get_latest_market_odds(fixture.fixture_id) or MarketOdds()
    weather = store.get_weather(fixture.fixture_id)

    vector = build_feature_vector(fixture, recent_home, recent_away, meetings, odds, weather)

    return FixtureFeatures(
        fixture_id=fixture.fixture_id,
        kickoff_at=fixture.kickoff_at,
        home_team_id=fixture.home_team_id,
        away_team_id=fixture.away_team_id,
        features=vector,
        implied_odds=odds,
        weather=weather,
    )


def build_training_dataset(
    store: FixtureStore,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    require_minimum: bool = True,
) -> TrainingDataset:
    """
    Build labelled rows from completed fixtures.

    Fixtures are processed one at a time in kickoff order; recency weights in
    the feature builder depend on that order being preserved.

    Args:
        store: Data store to query.
        start: Optional earliest kickoff (inclusive).
        end: Optional latest kickoff (inclusive).
        limit: Optional cap on the number of fixtures read.
        require_minimum: Raise when fewer than ``MIN_TRAINING_ROWS`` rows result.

    Returns:
        TrainingDataset ordered by kickoff.

    Raises:
        InsufficientDataError: If too few usable rows are available and
            ``require_minimum`` is set.
    """
    fixtures = store.query_completed_fixtures(start=start, end=end, limit=limit)

    rows: list[TrainingRow] = []
    for fixture in fixtures:
        if not fixture.is_completed:
            continue

        context = compute_fixture_features(store, fixture)
        outcome = determine_outcome(fixture)

        rows.append(
            TrainingRow(
                fixture_id=context.fixture_id,
                kickoff_at=context.kickoff_at,
                home_team_id=context.home_team_id,
                away_team_id=context.away_team_id,
                features=context.features,
                implied_odds=context.implied_odds,
                weather=context.weather,
                outcome=outcome,
                label=1 if outcome == "home" else 0,
                home_score=fixture.home_score,
                away_score=fixture.away_score,
            )
        )

    logger.info("Built training dataset with %d rows from %d fixtures", len(rows), len(fixtures))

    if require_minimum and len(rows) < MIN_TRAINING_ROWS:
        raise InsufficientDataError(available=len(rows), required=MIN_TRAINING_ROWS)

    return TrainingDataset(rows=tuple(rows), feature_order=FEATURE_KEYS)
