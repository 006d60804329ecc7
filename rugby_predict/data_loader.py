"""
Data Loader Module

Loading, validation and querying of the fixture data the training engine
reads: fixtures with final scores, bookmaker odds and weather observations.

The engine only talks to the ``FixtureStore`` protocol. ``DataFrameFixtureStore``
implements it over pandas DataFrames, which ``MatchDataLoader`` builds from
CSV exports of the relational store.

Expected CSV files (in one directory):
    fixtures.csv
        fixture_id, kickoff_at, home_team_id, away_team_id, status,
        home_score, away_score
    odds.csv (optional)
        fixture_id, bookmaker, market, home, draw, away, updated_at
    weather.csv (optional)
        fixture_id, temperature_c, humidity, wind_speed_kph, condition,
        recorded_at
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol

import pandas as pd


@dataclass(frozen=True)
class FixtureRecord:
    """A scheduled or completed match between two teams."""

    fixture_id: str
    kickoff_at: datetime
    home_team_id: str
    away_team_id: str
    status: str = "scheduled"
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.home_score is not None and self.away_score is not None


@dataclass(frozen=True)
class MarketOdds:
    """Decimal 1X2 prices; any side may be missing."""

    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None


@dataclass(frozen=True)
class WeatherObservation:
    """Weather recorded at the venue around kickoff."""

    temperature_c: Optional[float] = None
    humidity: Optional[float] = None
    wind_speed_kph: Optional[float] = None
    condition: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of data validation."""

    is_valid: bool
    errors: list[str]
    warnings: list[str]


class FixtureStore(Protocol):
    """Read-only queries the training engine needs from the data store."""

    def query_completed_fixtures(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[FixtureRecord]:
        """Completed fixtures with both scores, kickoff ascending."""
        ...

    def query_recent_fixtures(
        self, team_id: str, before: datetime, limit: int
    ) -> list[FixtureRecord]:
        """Completed fixtures of a team before a date, most recent first."""
        ...

    def query_head_to_head(
        self,
        home_team_id: str,
        away_team_id: str,
        before: datetime,
        limit: int = 10,
    ) -> list[FixtureRecord]:
        """Completed meetings of two teams (either venue), most recent first."""
        ...

    def get_latest_market_odds(self, fixture_id: str) -> Optional[MarketOdds]:
        ...

    def get_weather(self, fixture_id: str) -> Optional[WeatherObservation]:
        ...

    def query_upcoming_fixtures(self, now: Optional[datetime] = None) -> list[FixtureRecord]:
        """Scheduled fixtures or fixtures kicking off from ``now``, ascending."""
        ...


def to_utc_datetime(value: Any) -> datetime:
    """
    Parse a date/datetime into a timezone-aware UTC ``datetime``.

    Naive values are taken to be UTC already.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return ts.to_pydatetime()


def _optional_float(value: Any) -> Optional[float]:
    """Numeric value or None for missing/unparseable input."""
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _optional_int(value: Any) -> Optional[int]:
    parsed = _optional_float(value)
    return None if parsed is None else int(parsed)


class MatchDataLoader:
    """
    Load and validate fixture, odds and weather exports.

    Example:
        >>> loader = MatchDataLoader()
        >>> fixtures = loader.load("data/fixtures.csv")
        >>> validation = loader.validate(fixtures)
        >>> if validation.is_valid:
        ...     fixtures = loader.prepare(fixtures)
    """

    REQUIRED_COLUMNS = [
        "fixture_id",
        "kickoff_at",
        "home_team_id",
        "away_team_id",
        "status",
        "home_score",
        "away_score",
    ]

    ODDS_COLUMNS = ["fixture_id", "bookmaker", "market", "home", "draw", "away", "updated_at"]

    WEATHER_COLUMNS = [
        "fixture_id",
        "temperature_c",
        "humidity",
        "wind_speed_kph",
        "condition",
        "recorded_at",
    ]

    def load(self, filepath: str | Path) -> pd.DataFrame:
        """
        Load fixtures from a CSV file.

        Args:
            filepath: Path to the CSV file.

        Returns:
            DataFrame with raw fixture data.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If required columns are missing.
        """
        return self._read(filepath, self.REQUIRED_COLUMNS)

    def load_odds(self, filepath: str | Path) -> pd.DataFrame:
        """Load bookmaker odds; same errors as ``load``."""
        return self._read(filepath, ["fixture_id", "home", "draw", "away"])

    def load_weather(self, filepath: str | Path) -> pd.DataFrame:
        """Load weather observations; same errors as ``load``."""
        return self._read(filepath, ["fixture_id"])

    def validate(self, df: pd.DataFrame) -> ValidationResult:
        """
        Validate fixture data before it is handed to the store.

        Checks:
        - No empty dataset
        - Unique fixture ids
        - Kickoff times parse
        - Home and away teams differ
        - Scores are non-negative
        - Completed fixtures carry both scores (warning only; such rows are
          ignored by the training set)

        Args:
            df: DataFrame to validate.

        Returns:
            ValidationResult with status and any errors/warnings.
        """
        errors = []
        warnings = []

        if len(df) == 0:
            errors.append("Dataset is empty")
            return ValidationResult(False, errors, warnings)

        duplicates = df["fixture_id"].duplicated(keep=False)
        if duplicates.any():
            errors.append(f"Found {int(duplicates.sum())} rows with duplicate fixture_id")

        kickoffs = pd.to_datetime(df["kickoff_at"], errors="coerce", utc=True)
        if kickoffs.isna().any():
            errors.append(f"{int(kickoffs.isna().sum())} kickoff_at values cannot be parsed")

        if (df["home_team_id"] == df["away_team_id"]).any():
            errors.append("Home and away teams cannot be the same")

        home_scores = pd.to_numeric(df["home_score"], errors="coerce")
        away_scores = pd.to_numeric(df["away_score"], errors="coerce")
        if (home_scores < 0).any() or (away_scores < 0).any():
            errors.append("Scores cannot be negative")

        completed = df["status"].astype(str).str.strip().str.lower() == "completed"
        missing_scores = completed & (home_scores.isna() | away_scores.isna())
        if missing_scores.any():
            warnings.append(
                f"{int(missing_scores.sum())} completed fixtures have no final score"
            )

        is_valid = len(errors) == 0
        return ValidationResult(is_valid, errors, warnings)

    def prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Normalize fixture data for querying.

        Operations:
        - Parse kickoff times as UTC and sort chronologically
        - Strip team ids and lowercase the status
        - Coerce scores to numbers (missing -> NaN)

        Args:
            df: Raw DataFrame to prepare.

        Returns:
            Cleaned DataFrame sorted by kickoff.
        """
        df = df.copy()
        df["fixture_id"] = df["fixture_id"].astype(str)
        df["kickoff_at"] = pd.to_datetime(df["kickoff_at"], utc=True)
        df["home_team_id"] = df["home_team_id"].astype(str).str.strip()
        df["away_team_id"] = df["away_team_id"].astype(str).str.strip()
        df["status"] = df["status"].astype(str).str.strip().str.lower()
        df["home_score"] = pd.to_numeric(df["home_score"], errors="coerce")
        df["away_score"] = pd.to_numeric(df["away_score"], errors="coerce")
        return df.sort_values("kickoff_at", kind="mergesort").reset_index(drop=True)

    def prepare_odds(self, df: pd.DataFrame) -> pd.DataFrame:
        """Normalize odds; prices that fail to parse become NaN."""
        df = df.copy()
        for column in self.ODDS_COLUMNS:
            if column not in df.columns:
                df[column] = None
        df["fixture_id"] = df["fixture_id"].astype(str)
        df["market"] = df["market"].fillna("1X2").astype(str)
        for column in ("home", "draw", "away"):
            df[column] = pd.to_numeric(df[column], errors="coerce")
        df["updated_at"] = pd.to_datetime(df["updated_at"], errors="coerce", utc=True)
        return df[self.ODDS_COLUMNS]

    def prepare_weather(self, df: pd.DataFrame) -> pd.DataFrame:
        """Normalize weather; readings that fail to parse become NaN."""
        df = df.copy()
        for column in self.WEATHER_COLUMNS:
            if column not in df.columns:
                df[column] = None
        df["fixture_id"] = df["fixture_id"].astype(str)
        for column in ("temperature_c", "humidity", "wind_speed_kph"):
            df[column] = pd.to_numeric(df[column], errors="coerce")
        df["recorded_at"] = pd.to_datetime(df["recorded_at"], errors="coerce", utc=True)
        return df[self.WEATHER_COLUMNS]

    def _read(self, filepath: str | Path, required: list[str]) -> pd.DataFrame:
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Data file not found: {filepath}")

        df = pd.read_csv(filepath)

        missing = set(required) - set(df.columns)
        if missing:
            raise ValueError(f"{filepath.name} missing required columns: {sorted(missing)}")

        return df


class DataFrameFixtureStore:
    """
    ``FixtureStore`` backed by prepared pandas DataFrames.

    Example:
        >>> store = DataFrameFixtureStore.from_csv_dir("data/")
        >>> store.query_completed_fixtures()[:1]
        [FixtureRecord(fixture_id='f-001', ...)]
    """

    def __init__(
        self,
        fixtures: pd.DataFrame,
        odds: Optional[pd.DataFrame] = None,
        weather: Optional[pd.DataFrame] = None,
    ):
        """
        Initialize the store.

        Args:
            fixtures: Fixtures prepared by ``MatchDataLoader.prepare``.
            odds: Odds prepared by ``MatchDataLoader.prepare_odds``.
            weather: Weather prepared by ``MatchDataLoader.prepare_weather``.
        """
        loader = MatchDataLoader()
        self.fixtures = fixtures
        self.odds = loader.prepare_odds(
            odds if odds is not None else pd.DataFrame(columns=loader.ODDS_COLUMNS)
        )
        self.weather = loader.prepare_weather(
            weather if weather is not None else pd.DataFrame(columns=loader.WEATHER_COLUMNS)
        )

    @classmethod
    def from_csv_dir(cls, data_dir: str | Path) -> "DataFrameFixtureStore":
        """
        Load ``fixtures.csv`` plus optional ``odds.csv``/``weather.csv``.

        Raises:
            ValueError: If fixture validation fails.
        """
        data_dir = Path(data_dir)
        loader = MatchDataLoader()

        fixtures = loader.load(data_dir / "fixtures.csv")
        validation = loader.validate(fixtures)
        if not validation.is_valid:
            raise ValueError(f"Data validation failed: {validation.errors}")

        odds_path = data_dir / "odds.csv"
        weather_path = data_dir / "weather.csv"
        odds = loader.load_odds(odds_path) if odds_path.exists() else None
        weather = loader.load_weather(weather_path) if weather_path.exists() else None

        return cls(loader.prepare(fixtures), odds=odds, weather=weather)

    @classmethod
    def from_records(
        cls,
        fixtures: Iterable[FixtureRecord],
        odds: Optional[Mapping[str, MarketOdds]] = None,
        weather: Optional[Mapping[str, WeatherObservation]] = None,
    ) -> "DataFrameFixtureStore":
        """Build a store from in-memory records (demo data and tests)."""
        fixture_frame = pd.DataFrame(
            [
                {
                    "fixture_id": f.fixture_id,
                    "kickoff_at": f.kickoff_at,
                    "home_team_id": f.home_team_id,
                    "away_team_id": f.away_team_id,
                    "status": f.status,
                    "home_score": f.home_score,
                    "away_score": f.away_score,
                }
                for f in fixtures
            ],
            columns=MatchDataLoader.REQUIRED_COLUMNS,
        )
        odds_frame = pd.DataFrame(
            [
                {
                    "fixture_id": fixture_id,
                    "bookmaker": "consensus",
                    "market": "1X2",
                    "home": price.home,
                    "draw": price.draw,
                    "away": price.away,
                    "updated_at": None,
                }
                for fixture_id, price in (odds or {}).items()
            ],
            columns=MatchDataLoader.ODDS_COLUMNS,
        )
        weather_frame = pd.DataFrame(
            [
                {
                    "fixture_id": fixture_id,
                    "temperature_c": obs.temperature_c,
                    "humidity": obs.humidity,
                    "wind_speed_kph": obs.wind_speed_kph,
                    "condition": obs.condition,
                    "recorded_at": None,
                }
                for fixture_id, obs in (weather or {}).items()
            ],
            columns=MatchDataLoader.WEATHER_COLUMNS,
        )
        return cls(MatchDataLoader().prepare(fixture_frame), odds=odds_frame, weather=weather_frame)

    # ------------------------------------------------------------------
    # FixtureStore queries
    # ------------------------------------------------------------------

    def query_completed_fixtures(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[FixtureRecord]:
        df = self._completed()
        if start is not None:
            df = df[df["kickoff_at"] >= to_utc_datetime(start)]
        if end is not None:
            df = df[df["kickoff_at"] <= to_utc_datetime(end)]
        df = df.sort_values("kickoff_at", kind="mergesort")
        if limit is not None:
            df = df.head(limit)
        return self._to_records(df)

    def query_recent_fixtures(
        self, team_id: str, before: datetime, limit: int
    ) -> list[FixtureRecord]:
        df = self._completed()
        involved = (df["home_team_id"] == team_id) | (df["away_team_id"] == team_id)
        df = df[involved & (df["kickoff_at"] < to_utc_datetime(before))]
        df = df.sort_values("kickoff_at", ascending=False, kind="mergesort")
        return self._to_records(df.head(limit))

    def query_head_to_head(
        self,
        home_team_id: str,
        away_team_id: str,
        before: datetime,
        limit: int = 10,
    ) -> list[FixtureRecord]:
        df = self._completed()
        same_venue = (df["home_team_id"] == home_team_id) & (df["away_team_id"] == away_team_id)
        reversed_venue = (df["home_team_id"] == away_team_id) & (df["away_team_id"] == home_team_id)
        df = df[(same_venue | reversed_venue) & (df["kickoff_at"] < to_utc_datetime(before))]
        df = df.sort_values("kickoff_at", ascending=False, kind="mergesort")
        return self._to_records(df.head(limit))

    def get_latest_market_odds(self, fixture_id: str) -> Optional[MarketOdds]:
        market = self.odds[(self.odds["fixture_id"] == fixture_id) & (self.odds["market"] == "1X2")]
        if market.empty:
            return None
        latest = market.sort_values(
            "updated_at", ascending=False, kind="mergesort", na_position="last"
        ).iloc[0]
        return MarketOdds(
            home=_optional_float(latest["home"]),
            draw=_optional_float(latest["draw"]),
            away=_optional_float(latest["away"]),
        )

    def get_weather(self, fixture_id: str) -> Optional[WeatherObservation]:
        rows = self.weather[self.weather["fixture_id"] == fixture_id]
        if rows.empty:
            return None
        row = rows.sort_values(
            "recorded_at", ascending=False, kind="mergesort", na_position="last"
        ).iloc[0]
        condition = row["condition"]
        return WeatherObservation(
            temperature_c=_optional_float(row["temperature_c"]),
            humidity=_optional_float(row["humidity"]),
            wind_speed_kph=_optional_float(row["wind_speed_kph"]),
            condition=None if pd.isna(condition) else str(condition),
        )

    def query_upcoming_fixtures(self, now: Optional[datetime] = None) -> list[FixtureRecord]:
        now = to_utc_datetime(now if now is not None else pd.Timestamp.now(tz="UTC"))
        df = self.fixtures
        df = df[(df["status"] == "scheduled") | (df["kickoff_at"] >= now)]
        df = df.sort_values("kickoff_at", kind="mergesort")
        return self._to_records(df)

    def _completed(self) -> pd.DataFrame:
        df = self.fixtures
        return df[
            (df["status"] == "completed") & df["home_score"].notna() & df["away_score"].notna()
        ]

    @staticmethod
    def _to_records(df: pd.DataFrame) -> list[FixtureRecord]:
        return [
            FixtureRecord(
                fixture_id=str(row.fixture_id),
                kickoff_at=row.kickoff_at.to_pydatetime(),
                home_team_id=str(row.home_team_id),
                away_team_id=str(row.away_team_id),
                status=str(row.status),
                home_score=_optional_int(row.home_score),
                away_score=_optional_int(row.away_score),
            )
            for row in df.itertuples(index=False)
        ]


# Utility function for quick loading
def load_fixture_store(data_dir: str | Path) -> DataFrameFixtureStore:
    """
    Convenience function to load, validate and wrap a CSV export directory.

    Args:
        data_dir: Directory holding fixtures.csv (and optionally odds.csv,
            weather.csv).

    Returns:
        Store ready for dataset building.
    """
    return DataFrameFixtureStore.from_csv_dir(data_dir)
