import math
from datetime import datetime, timezone

import pytest

from rugby_predict.calibration import NoCalibration, PlattCalibration
from rugby_predict.data_loader import MarketOdds
from rugby_predict.feature_engineering import FEATURE_KEYS, FeatureVector, FixtureFeatures
from rugby_predict.models import FeatureImportance, GradientBoostingModel, LogisticModel
from rugby_predict.predict import (
    DEFAULT_AVERAGE_SCORES,
    MatchPredictor,
    build_explanation,
    compute_average_scores,
    determine_draw_away_split,
    format_prediction,
    predict_upcoming,
)

KICKOFF = datetime(2024, 1, 6, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def coin_flip_model():
    """Zero weights: every fixture gets a raw probability of 0.5."""
    return LogisticModel(weights=(0.0,) * 21, means=(0.0,) * 20, stds=(1.0,) * 20)


def fixture_features(vector=None, odds=None):
    return FixtureFeatures(
        fixture_id="f-1",
        kickoff_at=KICKOFF,
        home_team_id="alpha",
        away_team_id="bravo",
        features=vector or FeatureVector(),
        implied_odds=odds or MarketOdds(),
    )


def test_prediction_with_market_prices(coin_flip_model):
    vector = FeatureVector(
        home_implied_probability=0.5,
        draw_implied_probability=0.25,
        away_implied_probability=0.25,
    )
    artifact = MatchPredictor(coin_flip_model, model_version="2.1.0").predict(
        fixture_features(vector, MarketOdds(home=2.0, draw=4.0, away=4.0))
    )

    assert artifact.probabilities == {"home": 0.5, "draw": 0.25, "away": 0.25}
    assert artifact.edge == 0.0
    assert artifact.model_version == "2.1.0"
    assert (artifact.expected_scores.home, artifact.expected_scores.away) == DEFAULT_AVERAGE_SCORES


def test_prediction_without_prices(coin_flip_model):
    artifact = MatchPredictor(coin_flip_model).predict(fixture_features())

    assert artifact.probabilities == {"home": 0.5, "draw": 0.125, "away": 0.375}
    assert artifact.edge is None
    assert artifact.explanation == {"top_features": [], "calibration": "none"}


def test_prediction_shifts_expected_scores_towards_favourite():
    model = GradientBoostingModel(bias=math.log(0.7 / 0.3), shrinkage=0.1, stumps=())
    artifact = MatchPredictor(model, average_scores=(24.0, 22.0)).predict(fixture_features())

    assert artifact.probabilities == {"home": 0.7, "draw": 0.075, "away": 0.225}
    assert artifact.expected_scores.home == 25.2
    assert artifact.expected_scores.away == 20.8


def test_expected_scores_never_negative():
    model = GradientBoostingModel(bias=-30.0, shrinkage=0.1, stumps=())
    artifact = MatchPredictor(model, average_scores=(1.0, 1.0)).predict(fixture_features())
    assert artifact.expected_scores.home == 0.0
    assert artifact.expected_scores.away == 4.0


@pytest.mark.parametrize("probability", [0.98765, 0.9, 0.75, 0.5])
def test_away_probability_is_never_negative(probability):
    model = GradientBoostingModel(bias=math.log(probability / (1 - probability)), shrinkage=0.1, stumps=())
    vector = FeatureVector(draw_implied_probability=0.25)
    artifact = MatchPredictor(model).predict(fixture_features(vector, MarketOdds(draw=4.0)))

    away = artifact.probabilities["away"]
    assert away >= 0.0
    assert math.copysign(1.0, away) == 1.0
    assert sum(artifact.probabilities.values()) == pytest.approx(1.0, abs=1e-4)


def test_calibration_is_applied(coin_flip_model):
    calibration = PlattCalibration(slope=1.0, intercept=math.log(3))
    artifact = MatchPredictor(coin_flip_model, calibration).predict(fixture_features())
    assert artifact.probabilities["home"] == 0.75
    assert artifact.explanation["calibration"] == "platt"


def test_draw_away_split():
    assert determine_draw_away_split(FeatureVector()) == (0.25, 0.75)
    vector = FeatureVector(draw_implied_probability=0.1, away_implied_probability=0.3)
    assert determine_draw_away_split(vector) == pytest.approx((0.25, 0.75))
    vector = FeatureVector(draw_implied_probability=0.2, away_implied_probability=0.2)
    assert determine_draw_away_split(vector) == (0.5, 0.5)


def test_explanation_keeps_top_six():
    importance = [FeatureImportance(name, 0.125) for name in FEATURE_KEYS[:8]]
    explanation = build_explanation(importance, NoCalibration())

    assert len(explanation["top_features"]) == 6
    assert explanation["top_features"][0] == {"feature": FEATURE_KEYS[0], "weight": 12.5}


def test_average_scores(make_row):
    assert compute_average_scores([]) == DEFAULT_AVERAGE_SCORES
    rows = [make_row(home_score=30, away_score=10), make_row(home_score=20, away_score=None)]
    assert compute_average_scores(rows) == (25.0, 5.0)


def test_predict_upcoming(league_store, coin_flip_model):
    predictions = predict_upcoming(league_store, coin_flip_model, model_version="1.0.4")

    assert [p.fixture_id for p in predictions] == ["upcoming-0", "upcoming-1"]
    for prediction in predictions:
        assert sum(prediction.probabilities.values()) == pytest.approx(1.0, abs=1e-4)
        assert prediction.model_version == "1.0.4"
        assert prediction.edge is not None

    # alpha is priced as the favourite, so a coin flip has a negative edge
    assert predictions[0].edge < 0


def test_prediction_to_dict_and_format(coin_flip_model):
    vector = FeatureVector(home_implied_probability=0.4)
    importance = [FeatureImportance("home_form_rating", 0.6), FeatureImportance("home_elo", 0.4)]
    artifact = MatchPredictor(coin_flip_model, feature_importance=importance).predict(
        fixture_features(vector, MarketOdds(home=2.5))
    )

    payload = artifact.to_dict()
    assert payload["kickoff_at"] == KICKOFF.isoformat()
    assert payload["edge"] == 0.1
    assert payload["expected_scores"] == {"home": 24.0, "away": 22.0}

    text = format_prediction(artifact)
    assert "alpha vs bravo" in text
    assert "Home Win: 50.0%" in text
    assert "Edge vs market: +10.0%" in text
    assert "home_form_rating" in text
