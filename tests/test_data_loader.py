from datetime import datetime, timezone

import pandas as pd
import pytest

from rugby_predict.data_loader import (
    DataFrameFixtureStore,
    MarketOdds,
    MatchDataLoader,
    WeatherObservation,
    load_fixture_store,
    to_utc_datetime,
)

FIXTURES_CSV = """fixture_id,kickoff_at,home_team_id,away_team_id,status,home_score,away_score
f-003,2024-01-20T15:00:00+00:00,lions,sharks,scheduled,,
f-001,2024-01-06T15:00:00+00:00,lions,sharks,completed,27,20
f-002,2024-01-13T17:30:00+02:00, sharks ,bulls,Completed,13,13
"""

ODDS_CSV = """fixture_id,bookmaker,market,home,draw,away,updated_at
f-001,book-a,1X2,2.10,21.0,1.90,2024-01-05T10:00:00Z
f-001,book-b,1X2,1.95,21.0,2.05,2024-01-06T12:00:00Z
f-001,book-b,handicap,1.50,,2.60,2024-01-06T14:00:00Z
f-002,book-a,1X2,n/a,19.0,1.80,2024-01-12T09:00:00Z
"""

WEATHER_CSV = """fixture_id,temperature_c,humidity,wind_speed_kph,condition,recorded_at
f-001,18.5,72,14,rain,2024-01-06T14:00:00Z
"""


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "fixtures.csv").write_text(FIXTURES_CSV)
    (tmp_path / "odds.csv").write_text(ODDS_CSV)
    (tmp_path / "weather.csv").write_text(WEATHER_CSV)
    return tmp_path


def test_load_fixture_store_from_csv(data_dir):
    store = load_fixture_store(data_dir)
    completed = store.query_completed_fixtures()

    assert [f.fixture_id for f in completed] == ["f-001", "f-002"]
    assert completed[0].kickoff_at == datetime(2024, 1, 6, 15, 0, tzinfo=timezone.utc)
    assert completed[1].kickoff_at == datetime(2024, 1, 13, 15, 30, tzinfo=timezone.utc)
    assert completed[1].home_team_id == "sharks"
    assert (completed[1].home_score, completed[1].away_score) == (13, 13)
    assert completed[1].is_completed


def test_latest_odds_use_newest_match_odds_row(data_dir):
    store = load_fixture_store(data_dir)

    assert store.get_latest_market_odds("f-001") == MarketOdds(home=1.95, draw=21.0, away=2.05)
    assert store.get_latest_market_odds("f-002") == MarketOdds(home=None, draw=19.0, away=1.8)
    assert store.get_latest_market_odds("f-003") is None


def test_weather_lookup(data_dir):
    store = load_fixture_store(data_dir)

    assert store.get_weather("f-001") == WeatherObservation(18.5, 72.0, 14.0, "rain")
    assert store.get_weather("f-002") is None


def test_optional_files_can_be_missing(tmp_path):
    (tmp_path / "fixtures.csv").write_text(FIXTURES_CSV)
    store = load_fixture_store(tmp_path)

    assert store.get_latest_market_odds("f-001") is None
    assert store.get_weather("f-001") is None
    assert len(store.query_completed_fixtures()) == 2


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        MatchDataLoader().load(tmp_path / "fixtures.csv")


def test_missing_columns_raise(tmp_path):
    path = tmp_path / "odds.csv"
    path.write_text("fixture_id,home,away\nf-001,2.0,1.9\n")
    with pytest.raises(ValueError, match="draw"):
        MatchDataLoader().load_odds(path)


def test_invalid_fixtures_fail_store_loading(tmp_path):
    (tmp_path / "fixtures.csv").write_text(
        FIXTURES_CSV + "f-001,2024-01-27T15:00:00+00:00,bulls,lions,completed,-3,10\n"
    )
    with pytest.raises(ValueError, match="Data validation failed"):
        load_fixture_store(tmp_path)


def test_validate_reports_problems():
    loader = MatchDataLoader()
    df = pd.DataFrame(
        {
            "fixture_id": ["a", "a", "b", "c"],
            "kickoff_at": ["2024-01-06", "2024-01-07", "not a date", "2024-01-08"],
            "home_team_id": ["lions", "lions", "bulls", "kings"],
            "away_team_id": ["sharks", "bulls", "bulls", "lions"],
            "status": ["completed", "completed", "scheduled", "completed"],
            "home_score": [10, -1, None, None],
            "away_score": [5, 3, None, None],
        }
    )
    result = loader.validate(df)

    assert not result.is_valid
    assert any("duplicate fixture_id" in error for error in result.errors)
    assert any("kickoff_at" in error for error in result.errors)
    assert any("same" in error for error in result.errors)
    assert any("negative" in error for error in result.errors)
    assert result.warnings == ["1 completed fixtures have no final score"]


def test_validate_empty_dataset():
    result = MatchDataLoader().validate(pd.DataFrame(columns=MatchDataLoader.REQUIRED_COLUMNS))
    assert not result.is_valid
    assert result.errors == ["Dataset is empty"]


def test_completed_window_and_limit(make_fixture):
    store = DataFrameFixtureStore.from_records(
        [make_fixture(f"f{i}", i * 7, "alpha", "bravo", 20, 10) for i in range(5)]
    )
    start = store.query_completed_fixtures()[1].kickoff_at
    end = store.query_completed_fixtures()[3].kickoff_at

    windowed = store.query_completed_fixtures(start=start, end=end)
    assert [f.fixture_id for f in windowed] == ["f1", "f2", "f3"]
    assert [f.fixture_id for f in store.query_completed_fixtures(limit=2)] == ["f0", "f1"]


def test_recent_and_head_to_head_are_most_recent_first(make_fixture):
    store = DataFrameFixtureStore.from_records(
        [
            make_fixture("m1", 0, "alpha", "bravo", 20, 10),
            make_fixture("m2", 7, "charlie", "alpha", 20, 10),
            make_fixture("m3", 14, "bravo", "alpha", 12, 15),
            make_fixture("m4", 21, "charlie", "delta", 30, 3),
            make_fixture("m5", 28, "alpha", "bravo"),
        ]
    )
    before = store.fixtures["kickoff_at"].max()

    recent = store.query_recent_fixtures("alpha", before, limit=2)
    assert [f.fixture_id for f in recent] == ["m3", "m2"]

    meetings = store.query_head_to_head("alpha", "bravo", before)
    assert [f.fixture_id for f in meetings] == ["m3", "m1"]

    assert store.query_recent_fixtures("alpha", recent[-1].kickoff_at, limit=6)[0].fixture_id == "m1"


def test_upcoming_fixtures(make_fixture):
    store = DataFrameFixtureStore.from_records(
        [
            make_fixture("done", 0, "alpha", "bravo", 20, 10),
            make_fixture("next", 14, "alpha", "charlie"),
            make_fixture("moved", 10, "bravo", "delta", status="postponed"),
            make_fixture("old-postponed", 1, "charlie", "delta", status="postponed"),
        ]
    )
    now = store.fixtures["kickoff_at"].min() + pd.Timedelta(days=5)

    upcoming = store.query_upcoming_fixtures(now=now)
    assert [f.fixture_id for f in upcoming] == ["moved", "next"]


def test_to_utc_datetime():
    assert to_utc_datetime("2024-03-01") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert to_utc_datetime("2024-03-01T12:00:00+02:00") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
