"""
Feature Engineering Module

Builds the fixed-order numeric feature vector the win-probability models are
trained on and applied to. Every function here is a pure transform of
fixtures that were already fetched from the store; nothing raises for
missing odds, weather or history. Each gap falls back to a neutral value
instead.

Features computed (home, away and home - away difference where relevant):
- Form rating: recency-weighted results over the last matches (0-100)
- Elo proxy: 1500 adjusted by win rate and scoring margin
- Rest days and fatigue index
- Market implied probabilities from decimal 1X2 odds
- Weather severity at the venue
- Head-to-head win rates over the last meetings
"""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass, fields
from datetime import datetime
from typing import Optional, Sequence

import numpy as np

from .data_loader import FixtureRecord, MarketOdds, WeatherObservation
from .log import fixture_logger

FEATURE_KEYS: tuple[str, ...] = (
    "home_form_rating",
    "away_form_rating",
    "form_diff",
    "home_elo",
    "away_elo",
    "elo_diff",
    "home_rest_days",
    "away_rest_days",
    "rest_diff",
    "home_fatigue_index",
    "away_fatigue_index",
    "fatigue_diff",
    "home_implied_probability",
    "draw_implied_probability",
    "away_implied_probability",
    "implied_edge",
    "weather_severity",
    "home_head_to_head_win_rate",
    "away_head_to_head_win_rate",
    "head_to_head_diff",
)

NEUTRAL_REST_DAYS = 10.0
HEAD_TO_HEAD_LIMIT = 10


@dataclass(frozen=True)
class FeatureVector:
    """
    The 20 model inputs for one fixture, in ``FEATURE_KEYS`` order.

    Field order is the contract between training and inference: a model
    trained on ``to_array()`` output must be applied to ``to_array()`` output.
    """

    home_form_rating: float = 50.0
    away_form_rating: float = 50.0
    form_diff: float = 0.0
    home_elo: float = 1500.0
    away_elo: float = 1500.0
    elo_diff: float = 0.0
    home_rest_days: float = NEUTRAL_REST_DAYS
    away_rest_days: float = NEUTRAL_REST_DAYS
    rest_diff: float = 0.0
    home_fatigue_index: float = 0.0
    away_fatigue_index: float = 0.0
    fatigue_diff: float = 0.0
    home_implied_probability: float = 0.0
    draw_implied_probability: float = 0.0
    away_implied_probability: float = 0.0
    implied_edge: float = 0.0
    weather_severity: float = 0.0
    home_head_to_head_win_rate: float = 0.5
    away_head_to_head_win_rate: float = 0.5
    head_to_head_diff: float = 0.0

    def to_array(self) -> np.ndarray:
        """Values in feature order; non-finite values become 0."""
        values = np.array(astuple(self), dtype=np.float64)
        values[~np.isfinite(values)] = 0.0
        return values

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class FormRating:
    """Recency-weighted form of one team."""

    rating: float
    win_rate: float
    average_for: float
    average_against: float


NEUTRAL_FORM = FormRating(rating=50.0, win_rate=0.5, average_for=0.0, average_against=0.0)


@dataclass(frozen=True)
class HeadToHead:
    """Weighted win rates of the two sides over their previous meetings."""

    home_win_rate: float = 0.5
    away_win_rate: float = 0.5
    diff: float = 0.0


@dataclass(frozen=True)
class FixtureFeatures:
    """A fixture's identity together with the inputs and output of feature building."""

    fixture_id: str
    kickoff_at: datetime
    home_team_id: str
    away_team_id: str
    features: FeatureVector
    implied_odds: MarketOdds
    weather: Optional[WeatherObservation] = None


def _finite(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def compute_result(team_score: Optional[int], opponent_score: Optional[int]) -> Optional[float]:
    """1 for a win, 0.5 for a draw, 0 for a loss, None without a final score."""
    if team_score is None or opponent_score is None:
        return None
    if team_score > opponent_score:
        return 1.0
    if team_score == opponent_score:
        return 0.5
    return 0.0


def compute_form_rating(matches: Sequence[FixtureRecord], team_id: str) -> FormRating:
    """
    Recency-weighted form from a team's recent matches.

    Each result (win=1, draw=0.5, loss=0) is weighted by
    ``max(0.2, 1 - index * 0.15)`` where ``index`` is the match's position in
    the most-recent-first input. Matches without a score are skipped.

    Args:
        matches: Completed matches of the team, most recent first.
        team_id: Team whose perspective the results are read from.

    Returns:
        FormRating with the 0-100 rating, win rate (draws count half) and
        average points for/against. Neutral form when nothing is usable.
    """
    weighted_result = 0.0
    total_weight = 0.0
    wins = 0
    draws = 0
    points_for = 0
    points_against = 0
    counted = 0

    for index, match in enumerate(matches):
        is_home = match.home_team_id == team_id
        team_score = match.home_score if is_home else match.away_score
        opponent_score = match.away_score if is_home else match.home_score
        result = compute_result(team_score, opponent_score)
        if result is None:
            continue

        counted += 1
        if result == 1.0:
            wins += 1
        elif result == 0.5:
            draws += 1

        points_for += team_score
        points_against += opponent_score

        weight = max(0.2, 1 - index * 0.15)
        weighted_result += weight * result
        total_weight += weight

    if not total_weight or not counted:
        return NEUTRAL_FORM

    return FormRating(
        rating=(weighted_result / total_weight) * 100,
        win_rate=(wins + draws * 0.5) / counted,
        average_for=points_for / counted,
        average_against=points_against / counted,
    )


def compute_elo(win_rate: float, average_margin: float) -> float:
    """Elo-style proxy: ``1500 + (win_rate - 0.5) * 400 + margin * 12``."""
    return 1500 + (win_rate - 0.5) * 400 + average_margin * 12


def compute_rest_days(fixture: FixtureRecord, recent_matches: Sequence[FixtureRecord]) -> float:
    """
    Days since the team's previous match.

    Whole elapsed hours between the two kickoffs divided by 24, floored at 0.
    A team with no previous match is treated as fully rested (10 days).
    """
    if not recent_matches:
        return NEUTRAL_REST_DAYS

    last_match = recent_matches[0]
    elapsed = fixture.kickoff_at - (last_match.kickoff_at or fixture.kickoff_at)
    hours = math.trunc(elapsed.total_seconds() / 3600)
    return max(hours / 24, 0.0)


def compute_fatigue_index(rest_days: float) -> float:
    """0 when rested 8+ days, 1 at 1 day or less, linear in between."""
    if rest_days is None or not math.isfinite(rest_days):
        return 0.5
    if rest_days >= 8:
        return 0.0
    if rest_days <= 1:
        return 1.0
    return max(0.0, min(1.0, (8 - rest_days) / 7))


def parse_decimal_odds(decimal_odds: Optional[float]) -> Optional[float]:
    """A decimal price as a float, or None unless it is finite and above 1."""
    odds = _finite(decimal_odds, math.nan)
    if math.isnan(odds) or odds <= 1:
        return None
    return odds


def compute_implied_probability(decimal_odds: Optional[float]) -> float:
    """``1 / odds`` for a valid decimal price above 1, otherwise 0."""
    odds = parse_decimal_odds(decimal_odds)
    if odds is None:
        return 0.0
    return 1 / odds


def compute_weather_severity(weather: Optional[WeatherObservation]) -> float:
    """
    Mean of three penalties, each capped at 1.

    - temperature: ``|t - 15| / 25``
    - humidity: ``|h - 60| / 50``
    - wind: ``wind / 50``

    A missing reading contributes 0; no observation at all gives 0.
    """
    if weather is None:
        return 0.0

    temperature = _finite(weather.temperature_c, math.nan)
    humidity = _finite(weather.humidity, math.nan)
    wind = _finite(weather.wind_speed_kph, math.nan)

    temperature_penalty = 0.0 if math.isnan(temperature) else min(abs(temperature - 15) / 25, 1)
    humidity_penalty = 0.0 if math.isnan(humidity) else min(abs(humidity - 60) / 50, 1)
    wind_penalty = 0.0 if math.isnan(wind) else min(wind / 50, 1)

    return round((temperature_penalty + humidity_penalty + wind_penalty) / 3, 4)


def compute_head_to_head(
    fixture: FixtureRecord,
    meetings: Sequence[FixtureRecord],
) -> HeadToHead:
    """
    Weighted head-to-head win rates from the fixture's home side perspective.

    Up to the last 10 meetings are read in the order given; the n-th scored
    meeting is weighted ``max(0.3, 1 - n * 0.1)``. A win credits the winner's
    side, a draw credits both sides half.
    """
    home_score = 0.0
    away_score = 0.0
    samples = 0

    for match in meetings[:HEAD_TO_HEAD_LIMIT]:
        if match.home_score is None or match.away_score is None:
            continue

        weight = max(0.3, 1 - samples * 0.1)

        if match.home_team_id == fixture.home_team_id:
            ours, theirs = match.home_score, match.away_score
        else:
            ours, theirs = match.away_score, match.home_score

        if ours > theirs:
            home_score += weight
        elif ours < theirs:
            away_score += weight
        else:
            home_score += weight * 0.5
            away_score += weight * 0.5

        samples += 1

    total = home_score + away_score
    if not samples or not total:
        return HeadToHead()

    home_win_rate = home_score / total
    away_win_rate = away_score / total
    return HeadToHead(
        home_win_rate=home_win_rate,
        away_win_rate=away_win_rate,
        diff=home_win_rate - away_win_rate,
    )


def build_feature_vector(
    fixture: FixtureRecord,
    recent_home: Sequence[FixtureRecord],
    recent_away: Sequence[FixtureRecord],
    head_to_head: Sequence[FixtureRecord],
    odds: Optional[MarketOdds] = None,
    weather: Optional[WeatherObservation] = None,
) -> FeatureVector:
    """
    Assemble the feature vector for one fixture.

    Args:
        fixture: Fixture to describe.
        recent_home: Home team's completed matches before kickoff, most recent first.
        recent_away: Away team's completed matches before kickoff, most recent first.
        head_to_head: Previous meetings of the two teams, most recent first.
        odds: Latest 1X2 prices, if any.
        weather: Venue weather, if recorded.

    Returns:
        FeatureVector with finite values only.
    """
    odds = odds or MarketOdds()

    home_form = compute_form_rating(recent_home, fixture.home_team_id)
    away_form = compute_form_rating(recent_away, fixture.away_team_id)

    home_elo = compute_elo(home_form.win_rate, home_form.average_for - home_form.average_against)
    away_elo = compute_elo(away_form.win_rate, away_form.average_for - away_form.average_against)

    home_rest = compute_rest_days(fixture, recent_home)
    away_rest = compute_rest_days(fixture, recent_away)
    home_fatigue = compute_fatigue_index(home_rest)
    away_fatigue = compute_fatigue_index(away_rest)

    home_implied = compute_implied_probability(odds.home)
    draw_implied = compute_implied_probability(odds.draw)
    away_implied = compute_implied_probability(odds.away)

    h2h = compute_head_to_head(fixture, head_to_head)

    vector = FeatureVector(
        home_form_rating=round(_finite(home_form.rating, 50.0), 3),
        away_form_rating=round(_finite(away_form.rating, 50.0), 3),
        form_diff=round(_finite(home_form.rating - away_form.rating, 0.0), 3),
        home_elo=round(_finite(home_elo, 1500.0), 3),
        away_elo=round(_finite(away_elo, 1500.0), 3),
        elo_diff=round(_finite(home_elo - away_elo, 0.0), 3),
        home_rest_days=round(_finite(home_rest, NEUTRAL_REST_DAYS), 3),
        away_rest_days=round(_finite(away_rest, NEUTRAL_REST_DAYS), 3),
        rest_diff=round(_finite(home_rest - away_rest, 0.0), 3),
        home_fatigue_index=round(home_fatigue, 3),
        away_fatigue_index=round(away_fatigue, 3),
        fatigue_diff=round(home_fatigue - away_fatigue, 3),
        home_implied_probability=round(home_implied, 4),
        draw_implied_probability=round(draw_implied, 4),
        away_implied_probability=round(away_implied, 4),
        implied_edge=round(home_implied - away_implied, 4),
        weather_severity=compute_weather_severity(weather),
        home_head_to_head_win_rate=round(h2h.home_win_rate, 4),
        away_head_to_head_win_rate=round(h2h.away_win_rate, 4),
        head_to_head_diff=round(h2h.diff, 4),
    )

    fixture_logger(fixture.fixture_id, "features").debug(
        "Feature vector computed: implied_edge=%.4f weather_severity=%.4f rest_diff=%.3f",
        vector.implied_edge,
        vector.weather_severity,
        vector.rest_diff,
    )

    return vector
