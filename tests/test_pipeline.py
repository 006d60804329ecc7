"""End-to-end training runs through ModelTrainer."""

import json
from datetime import datetime, timedelta, timezone

import pytest

import rugby_predict.model_training as model_training
from rugby_predict.calibration import IsotonicCalibration, NoCalibration, PlattCalibration
from rugby_predict.config import TrainingJobConfig, TrainingWindow
from rugby_predict.dataset import TrainingDataset
from rugby_predict.exceptions import InsufficientDataError
from rugby_predict.feature_engineering import FEATURE_KEYS, FeatureVector
from rugby_predict.model_training import ModelTrainer, OptimizationConfig
from rugby_predict.models import GradientBoostingModel, LogisticModel


def test_logistic_run_beats_coin_flip(trained_result):
    metrics = trained_result.metrics

    assert isinstance(trained_result.model, LogisticModel)
    assert isinstance(trained_result.calibration, NoCalibration)
    assert metrics.sample_sizes == {"training": 18, "backtest": 6}
    assert metrics.backtest.sample_size == 6
    assert metrics.backtest.accuracy > 0.6
    assert metrics.backtest.brier_score < 0.25
    assert metrics.calibration.method == "none"
    assert len(metrics.calibration.bins) == 8


def test_run_predicts_upcoming_fixtures(trained_result):
    predictions = trained_result.predictions

    assert [p.fixture_id for p in predictions] == ["upcoming-0", "upcoming-1"]
    for prediction in predictions:
        assert sum(prediction.probabilities.values()) == pytest.approx(1.0, abs=1e-4)
        assert prediction.model_version == "1.0.0"
        assert prediction.explanation["calibration"] == "none"
        assert len(prediction.explanation["top_features"]) == 6

    # alpha (strongest) at home to bravo, delta (weakest) at home to charlie
    assert predictions[0].probabilities["home"] > predictions[1].probabilities["home"]


def test_feature_importance_covers_every_feature(trained_result):
    importance = trained_result.feature_importance

    assert sorted(item.feature for item in importance) == sorted(FEATURE_KEYS)
    assert sum(item.importance for item in importance) == pytest.approx(1.0)
    values = [item.importance for item in importance]
    assert values == sorted(values, reverse=True)


def test_result_is_json_serializable(trained_result):
    payload = json.loads(json.dumps(trained_result.to_dict()))

    assert payload["training_window_label"] == "full-history → latest"
    assert payload["model"]["type"] == "logit"
    assert payload["calibration"] == {"method": "none"}
    assert payload["metrics"]["backtest"]["sample_size"] == 6
    assert "yield" in payload["metrics"]["backtest"]
    assert len(payload["predictions"]) == 2


def test_gbdt_run(league_store):
    config = TrainingJobConfig(model_name="weekly-gbdt", algorithm="gbdt", holdout_ratio=0.25)
    result = ModelTrainer(league_store).train(config)

    assert isinstance(result.model, GradientBoostingModel)
    assert result.model.stumps
    assert result.metrics.backtest.accuracy > 0.6
    assert sum(item.importance for item in result.feature_importance) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "method, expected", [("platt", PlattCalibration), ("isotonic", IsotonicCalibration)]
)
def test_calibrated_runs(league_store, method, expected):
    config = TrainingJobConfig(calibration=method, holdout_ratio=0.25)
    result = ModelTrainer(league_store).train(config)

    assert isinstance(result.calibration, expected)
    assert result.metrics.calibration.method == method
    assert result.predictions[0].explanation["calibration"] == method


def test_platt_falls_back_on_small_backtest(league_store):
    result = ModelTrainer(league_store).train(TrainingJobConfig(calibration="platt", holdout_ratio=0.1))
    assert result.metrics.sample_sizes["backtest"] == 2
    assert isinstance(result.calibration, NoCalibration)


def test_training_window_limits_rows(league_store, trained_result):
    kickoffs = sorted({p.kickoff_at for p in trained_result.predictions})
    config = TrainingJobConfig(training_window=TrainingWindow(end=kickoffs[0]))
    full = ModelTrainer(league_store).train(config)
    assert sum(full.metrics.sample_sizes.values()) == 24

    second_cycle = league_store.query_completed_fixtures()[12].kickoff_at
    config = TrainingJobConfig(training_window=TrainingWindow(start=second_cycle))
    windowed = ModelTrainer(league_store).train(config)
    assert sum(windowed.metrics.sample_sizes.values()) == 12
    assert windowed.training_window_label.endswith("→ latest")


def test_empty_window_raises(league_store):
    cutoff = league_store.query_completed_fixtures()[2].kickoff_at
    config = TrainingJobConfig(training_window=TrainingWindow(end=cutoff))

    with pytest.raises(InsufficientDataError) as excinfo:
        ModelTrainer(league_store).train(config)
    assert excinfo.value.available == 3


def test_invalid_config_raises_before_training(league_store):
    with pytest.raises(ValueError, match="Unknown algorithm"):
        ModelTrainer(league_store).train(TrainingJobConfig(algorithm="forest"))


def test_optimize(league_store):
    result, stats = ModelTrainer(league_store).optimize(
        TrainingJobConfig(holdout_ratio=0.25),
        OptimizationConfig(n_trials=3),
        verbose=False,
    )

    assert stats["n_trials"] == 3
    assert stats["algorithm"] == "logit"
    assert set(stats["best_params"]) == {"learning_rate", "l2"}
    assert result.config.logistic.learning_rate == stats["best_params"]["learning_rate"]
    assert stats["best_score"] >= 0


def test_optimize_gbdt_with_brier(league_store):
    config = TrainingJobConfig(algorithm="gbdt", holdout_ratio=0.25)
    result, stats = ModelTrainer(league_store).optimize(
        config, OptimizationConfig(n_trials=2, metric="brier", trees_range=(5, 20)), verbose=False
    )

    assert set(stats["best_params"]) == {"trees", "learning_rate", "lambda_"}
    assert stats["best_score"] <= 1.0
    assert result.config.gradient_boosting.trees == stats["best_params"]["trees"]


# (form difference, outcome) in kickoff order. The home side has the higher
# form in 16 of 20 fixtures and wins 12 of those 16; the last 5 are held out.
FORM_SEASON = [
    (12, "home"), (-4, "away"), (2, "away"), (16, "home"), (-8, "away"),
    (10, "home"), (3, "draw"), (20, "home"), (-6, "away"), (14, "home"),
    (1, "away"), (18, "home"), (-10, "away"), (4, "away"), (22, "home"),
    (17, "home"), (21, "home"), (15, "home"), (19, "home"), (24, "home"),
]


@pytest.fixture
def form_season(make_row):
    start = datetime(2024, 2, 3, 15, 0, tzinfo=timezone.utc)
    rows = []
    for index, (diff, outcome) in enumerate(FORM_SEASON):
        home_score, away_score = {"home": (24, 12), "draw": (15, 15), "away": (12, 24)}[outcome]
        features = FeatureVector(
            home_form_rating=50 + diff / 2,
            away_form_rating=50 - diff / 2,
            form_diff=float(diff),
        )
        rows.append(
            make_row(
                f"form-{index}",
                outcome,
                kickoff_at=start + timedelta(days=7 * index),
                home_score=home_score,
                away_score=away_score,
                features=features,
            )
        )
    return TrainingDataset(rows=tuple(rows), feature_order=FEATURE_KEYS)


def test_form_driven_season(form_season, league_store, monkeypatch):
    rows = form_season.rows
    stronger_home = [row for row in rows if row.features.home_form_rating > row.features.away_form_rating]
    assert len(stronger_home) == 16
    assert sum(row.label for row in stronger_home) == 12

    monkeypatch.setattr(model_training, "build_training_dataset", lambda *args, **kwargs: form_season)
    result = ModelTrainer(league_store).train(TrainingJobConfig(algorithm="logit", holdout_ratio=0.25))

    backtest = result.metrics.backtest
    assert result.metrics.sample_sizes == {"training": 15, "backtest": 5}
    assert backtest.accuracy > 0.6
    assert 0.0 <= backtest.brier_score < 0.25
