import numpy as np
import pytest

from rugby_predict.data_loader import DataFrameFixtureStore, MarketOdds
from rugby_predict.dataset import (
    MIN_TRAINING_ROWS,
    TrainingDataset,
    build_training_dataset,
    compute_fixture_features,
    determine_outcome,
)
from rugby_predict.exceptions import InsufficientDataError, RugbyPredictError
from rugby_predict.feature_engineering import FEATURE_KEYS


def _dataset(make_row, n):
    return TrainingDataset(rows=tuple(make_row(fixture_id=f"r{i}") for i in range(n)))


@pytest.mark.parametrize(
    "n, ratio, expected",
    [
        (10, 0.2, (8, 2)),
        (10, 0.25, (8, 2)),
        (10, 0.05, (9, 1)),
        (20, 0.25, (15, 5)),
        (2, 0.9, (1, 1)),
        (3, 0.99, (1, 2)),
    ],
)
def test_split_sizes(make_row, n, ratio, expected):
    training, backtest = _dataset(make_row, n).split(ratio)
    assert (len(training), len(backtest)) == expected


def test_split_keeps_chronological_order(make_row):
    dataset = _dataset(make_row, 10)
    training, backtest = dataset.split(0.3)
    assert [r.fixture_id for r in training + backtest] == [f"r{i}" for i in range(10)]
    assert backtest[0].fixture_id == "r7"


@pytest.mark.parametrize("ratio", [0, 1, -0.1, 1.5])
def test_split_rejects_ratio_outside_unit_interval(make_row, ratio):
    with pytest.raises(ValueError):
        _dataset(make_row, 10).split(ratio)


def test_split_needs_two_rows(make_row):
    with pytest.raises(ValueError):
        _dataset(make_row, 1).split(0.2)


def test_matrix_and_labels(make_row):
    dataset = TrainingDataset(rows=(make_row(outcome="home"), make_row(outcome="away")))
    assert dataset.matrix().shape == (2, len(FEATURE_KEYS))
    np.testing.assert_array_equal(dataset.labels(), [1.0, 0.0])


def test_determine_outcome(make_fixture):
    assert determine_outcome(make_fixture("a", 0, "alpha", "bravo", 20, 10)) == "home"
    assert determine_outcome(make_fixture("b", 0, "alpha", "bravo", 10, 20)) == "away"
    assert determine_outcome(make_fixture("c", 0, "alpha", "bravo", 15, 15)) == "draw"


def test_build_training_dataset(league_store):
    dataset = build_training_dataset(league_store)

    assert len(dataset) == 24
    kickoffs = [row.kickoff_at for row in dataset.rows]
    assert kickoffs == sorted(kickoffs)
    assert dataset.feature_order == FEATURE_KEYS
    for row in dataset.rows:
        assert row.label == (1 if row.outcome == "home" else 0)
        assert np.isfinite(row.features.to_array()).all()


def test_build_training_dataset_uses_only_prior_matches(league_store):
    first = build_training_dataset(league_store).rows[0]
    assert first.features.home_form_rating == 50.0
    assert first.features.home_rest_days == 10.0
    assert first.features.home_head_to_head_win_rate == 0.5
    assert first.features.home_implied_probability > 0.5


def test_build_training_dataset_window(league_store):
    all_rows = build_training_dataset(league_store).rows
    start, end = all_rows[4].kickoff_at, all_rows[15].kickoff_at

    windowed = build_training_dataset(league_store, start=start, end=end)
    assert [r.fixture_id for r in windowed.rows] == [r.fixture_id for r in all_rows[4:16]]


def test_too_few_rows_raises(make_fixture):
    store = DataFrameFixtureStore.from_records(
        [make_fixture(f"f{i}", i * 7, "alpha", "bravo", 20, 10) for i in range(4)]
    )

    with pytest.raises(InsufficientDataError) as excinfo:
        build_training_dataset(store)

    error = excinfo.value
    assert (error.available, error.required) == (4, MIN_TRAINING_ROWS)
    assert isinstance(error, ValueError)
    assert isinstance(error, RugbyPredictError)

    assert len(build_training_dataset(store, require_minimum=False)) == 4


def test_unscored_completed_fixtures_are_skipped(make_fixture):
    fixtures = [make_fixture(f"f{i}", i * 7, "alpha", "bravo", 20, 10) for i in range(5)]
    fixtures.append(make_fixture("void", 40, "alpha", "bravo", status="completed"))
    store = DataFrameFixtureStore.from_records(fixtures)

    assert [r.fixture_id for r in build_training_dataset(store).rows] == [f"f{i}" for i in range(5)]


def test_compute_fixture_features_for_upcoming_fixture(league_store):
    upcoming = league_store.query_upcoming_fixtures()[0]
    context = compute_fixture_features(league_store, upcoming)

    assert context.fixture_id == upcoming.fixture_id
    assert context.implied_odds == league_store.get_latest_market_odds(upcoming.fixture_id)
    assert context.weather is None
    assert context.features.home_form_rating != 50.0


def test_missing_odds_give_empty_prices(make_fixture):
    store = DataFrameFixtureStore.from_records([make_fixture("f", 0, "alpha", "bravo", 20, 10)])
    context = compute_fixture_features(store, store.query_completed_fixtures()[0])
    assert context.implied_odds == MarketOdds()
    assert context.features.home_implied_probability == 0.0
