from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from rugby_predict.config import TrainingJobConfig
from rugby_predict.data_loader import (
    DataFrameFixtureStore,
    FixtureRecord,
    MarketOdds,
    WeatherObservation,
)
from rugby_predict.dataset import TrainingRow
from rugby_predict.feature_engineering import FeatureVector, compute_implied_probability
from rugby_predict.model_training import ModelTrainer

UTC = timezone.utc
SEASON_START = datetime(2024, 1, 6, 15, 0, tzinfo=UTC)

STRENGTH = {"alpha": 3, "bravo": 2, "charlie": 1, "delta": 0}

# Each cycle: every pair meets once at each venue, home and away wins mixed
CYCLE = [
    [("alpha", "bravo"), ("delta", "charlie")],
    [("charlie", "alpha"), ("bravo", "delta")],
    [("alpha", "delta"), ("charlie", "bravo")],
    [("bravo", "alpha"), ("charlie", "delta")],
    [("alpha", "charlie"), ("delta", "bravo")],
    [("delta", "alpha"), ("bravo", "charlie")],
]


def fixture_record(
    fixture_id: str,
    day: float,
    home: str,
    away: str,
    home_score: Optional[int] = None,
    away_score: Optional[int] = None,
    status: Optional[str] = None,
) -> FixtureRecord:
    if status is None:
        status = "completed" if home_score is not None else "scheduled"
    return FixtureRecord(
        fixture_id=fixture_id,
        kickoff_at=SEASON_START + timedelta(days=day),
        home_team_id=home,
        away_team_id=away,
        status=status,
        home_score=home_score,
        away_score=away_score,
    )


def strength_odds(home: str, away: str) -> MarketOdds:
    home_prob = 0.5 + 0.12 * (STRENGTH[home] - STRENGTH[away])
    away_prob = 0.97 - home_prob
    return MarketOdds(
        home=round(1 / (home_prob * 1.05), 2),
        draw=round(1 / (0.03 * 1.05), 2),
        away=round(1 / (away_prob * 1.05), 2),
    )


def build_league(cycles: int = 2, scheduled: int = 2) -> DataFrameFixtureStore:
    """Four-team league where the stronger side always wins by a margin."""
    fixtures = []
    odds = {}
    weather = {}
    day = 0

    for cycle in range(cycles):
        for round_index, pairs in enumerate(CYCLE):
            for slot, (home, away) in enumerate(pairs):
                fixture_id = f"c{cycle}-r{round_index}-{slot}"
                gap = STRENGTH[home] - STRENGTH[away]
                winner_score = 25 + 2 * abs(gap)
                home_score, away_score = (winner_score, 15) if gap > 0 else (15, winner_score)
                fixtures.append(
                    fixture_record(fixture_id, day + slot / 12, home, away, home_score, away_score)
                )
                odds[fixture_id] = strength_odds(home, away)
                weather[fixture_id] = WeatherObservation(
                    temperature_c=12 + round_index, humidity=70, wind_speed_kph=10 + slot * 5
                )
            day += 7

    for slot, (home, away) in enumerate(CYCLE[0][:scheduled]):
        fixture_id = f"upcoming-{slot}"
        fixtures.append(fixture_record(fixture_id, day + slot / 12, home, away))
        odds[fixture_id] = strength_odds(home, away)

    return DataFrameFixtureStore.from_records(fixtures, odds=odds, weather=weather)


def training_row(
    fixture_id: str = "row",
    outcome: str = "home",
    home_odds: Optional[float] = None,
    kickoff_at: datetime = SEASON_START,
    home_score: Optional[int] = 20,
    away_score: Optional[int] = 10,
    features: Optional[FeatureVector] = None,
) -> TrainingRow:
    if features is None:
        features = FeatureVector(home_implied_probability=round(compute_implied_probability(home_odds), 4))
    return TrainingRow(
        fixture_id=fixture_id,
        kickoff_at=kickoff_at,
        home_team_id="alpha",
        away_team_id="bravo",
        features=features,
        implied_odds=MarketOdds(home=home_odds),
        weather=None,
        outcome=outcome,
        label=1 if outcome == "home" else 0,
        home_score=home_score,
        away_score=away_score,
    )


@pytest.fixture
def make_fixture():
    return fixture_record


@pytest.fixture
def make_row():
    return training_row


@pytest.fixture
def league_store() -> DataFrameFixtureStore:
    """24 completed fixtures and 2 scheduled ones."""
    return build_league()


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "MODEL_ALGO",
        "MODEL_CALIBRATION",
        "HOLDOUT_RATIO",
        "MODEL_NAME",
        "MODEL_DESCRIPTION",
        "TRAIN_START",
        "TRAIN_END",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture(scope="session")
def trained_result():
    """Logistic run on the league: 18 training rows, 6 backtest rows."""
    config = TrainingJobConfig(model_name="weekly-logit", holdout_ratio=0.25)
    return ModelTrainer(build_league()).train(config)
