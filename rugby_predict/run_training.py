#!/usr/bin/env python3
"""
Run Training Script

Training job entry point: builds the dataset, trains and calibrates a model,
reports backtest metrics and predicts the upcoming fixtures.

Usage:
    python -m rugby_predict.run_training

Or with a CSV export and a model registry:
    python -m rugby_predict.run_training --data-dir exports/ --registry-dir models/

Defaults come from the environment (MODEL_ALGO, MODEL_CALIBRATION,
HOLDOUT_RATIO, MODEL_NAME, MODEL_DESCRIPTION, TRAIN_START, TRAIN_END);
command line flags override them.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from .config import ALGORITHMS, CALIBRATION_METHODS, TrainingJobConfig, TrainingWindow
from .data_loader import (
    DataFrameFixtureStore,
    FixtureRecord,
    FixtureStore,
    MarketOdds,
    WeatherObservation,
    load_fixture_store,
    to_utc_datetime,
)
from .exceptions import InsufficientDataError
from .log import configure_logging
from .model_training import ModelTrainer, OptimizationConfig, TrainingResult
from .predict import format_prediction
from .registry import ModelRegistry, train_and_register

logger = logging.getLogger(__name__)

# Relative team strength in points per match
SAMPLE_TEAMS = {
    "lions": 8.0,
    "sharks": 5.0,
    "bulls": 2.0,
    "stormers": 0.0,
    "cheetahs": -3.0,
    "kings": -6.0,
}
HOME_ADVANTAGE = 3.0
BOOKMAKER_MARGIN = 1.05


def _round_robin(teams: Sequence[str]) -> list[list[tuple[str, str]]]:
    """Single round robin by the circle method, alternating home sides."""
    teams = list(teams)
    n = len(teams)
    rounds = []
    for r in range(n - 1):
        pairs = [(teams[i], teams[n - 1 - i]) for i in range(n // 2)]
        if r % 2:
            pairs = [(away, home) for home, away in pairs]
        rounds.append(pairs)
        teams = [teams[0], teams[-1]] + teams[1:-1]
    return rounds


def _sample_odds(home: str, away: str) -> MarketOdds:
    gap = SAMPLE_TEAMS[home] - SAMPLE_TEAMS[away] + HOME_ADVANTAGE
    draw = 0.04
    home_prob = (1 - draw) / (1 + np.exp(-gap / 6))
    away_prob = 1 - draw - home_prob
    return MarketOdds(
        home=round(1 / (home_prob * BOOKMAKER_MARGIN), 2),
        draw=round(1 / (draw * BOOKMAKER_MARGIN), 2),
        away=round(1 / (away_prob * BOOKMAKER_MARGIN), 2),
    )


def create_sample_data(seasons: int = 2, seed: int = 7) -> DataFrameFixtureStore:
    """
    Create a synthetic league for demonstration.

    Six teams of fixed strength play a double round robin per season, one
    round a week. Scores are drawn around the strength gap plus home
    advantage; odds follow the same strengths with a bookmaker margin. The
    final round is left scheduled so there is something to predict.

    Args:
        seasons: Number of seasons to generate.
        seed: Seed for the score and weather noise.

    Returns:
        DataFrameFixtureStore with fixtures, odds and weather.
    """
    rng = np.random.default_rng(seed)
    single = _round_robin(list(SAMPLE_TEAMS))
    double = single + [[(away, home) for home, away in pairs] for pairs in single]

    fixtures: list[FixtureRecord] = []
    odds: dict[str, MarketOdds] = {}
    weather: dict[str, WeatherObservation] = {}

    start = datetime(2023, 2, 4, 13, 0, tzinfo=timezone.utc)
    rounds = [pairs for _ in range(seasons) for pairs in double]

    for week, pairs in enumerate(rounds):
        season_break = timedelta(weeks=12) * (week // len(double))
        is_last = week == len(rounds) - 1
        for slot, (home, away) in enumerate(pairs):
            fixture_id = f"fx-{week + 1:03d}-{slot + 1}"
            kickoff = start + timedelta(weeks=week, hours=2 * slot) + season_break
            gap = SAMPLE_TEAMS[home] - SAMPLE_TEAMS[away] + HOME_ADVANTAGE

            if is_last:
                record = FixtureRecord(fixture_id, kickoff, home, away, status="scheduled")
            else:
                home_score = int(max(0, round(22 + gap / 2 + rng.normal(0, 6))))
                away_score = int(max(0, round(22 - gap / 2 + rng.normal(0, 6))))
                record = FixtureRecord(
                    fixture_id, kickoff, home, away, "completed", home_score, away_score
                )

            fixtures.append(record)
            odds[fixture_id] = _sample_odds(home, away)
            weather[fixture_id] = WeatherObservation(
                temperature_c=round(float(rng.normal(16, 6)), 1),
                humidity=round(float(rng.uniform(35, 95)), 0),
                wind_speed_kph=round(float(rng.uniform(0, 40)), 1),
                condition="clear",
            )

    return DataFrameFixtureStore.from_records(fixtures, odds=odds, weather=weather)


def run_training(
    store: FixtureStore,
    config: TrainingJobConfig,
    registry_dir: Optional[str | Path] = None,
    optimize: bool = False,
    n_trials: int = 20,
    plots_dir: Optional[str | Path] = None,
    output: Optional[str | Path] = None,
) -> TrainingResult:
    """
    Run the complete training job.

    Steps:
    1. Train (or optimize and train) the model
    2. Report training and backtest metrics
    3. Register the model (optional)
    4. Print predictions for upcoming fixtures

    Args:
        store: Fixture store to train from.
        config: Training job configuration.
        registry_dir: Model registry directory (skips registration if None).
        optimize: Whether to run hyperparameter optimization first.
        n_trials: Optuna trials when optimizing.
        plots_dir: Directory for evaluation plots (skipped if None).
        output: Path for the JSON training result (skipped if None).

    Returns:
        TrainingResult of the run.
    """
    print("=" * 60)
    print("RUGBY HOME-WIN MODEL TRAINING")
    print("=" * 60)

    registry = ModelRegistry(registry_dir) if registry_dir else None
    if registry is not None:
        config = replace(config, version=registry.next_version(config.model_name))

    print(f"\n[1/4] Training {config.model_name} v{config.version}...")
    print(f"  Algorithm: {config.algorithm}")
    print(f"  Calibration: {config.calibration}")
    print(f"  Holdout ratio: {config.holdout_ratio}")
    print(f"  Window: {config.training_window.label()}")

    trainer = ModelTrainer(store)
    card = None

    if optimize:
        print("  Running Optuna optimization (this may take a moment)...")
        result, opt_stats = trainer.optimize(
            config, OptimizationConfig(n_trials=n_trials), verbose=False
        )
        print(f"  Best parameters: {opt_stats['best_params']}")
        print(f"  Best {opt_stats['metric']}: {opt_stats['best_score']:.4f}")
        if registry is not None:
            card = registry.register(result)
    elif registry is not None:
        card, result = train_and_register(store, config, registry, version=config.version, trainer=trainer)
    else:
        result = trainer.train(config)

    metrics = result.metrics
    print(f"  Samples: {metrics.sample_sizes['training']} training, "
          f"{metrics.sample_sizes['backtest']} backtest")

    print("\n[2/4] Evaluation...")
    for split, values in (("Training", metrics.training), ("Backtest", metrics.backtest)):
        print(
            f"  {split}: accuracy {values.accuracy:.1%}, brier {values.brier_score:.4f}, "
            f"log loss {values.log_loss:.4f}, ROI {values.roi:+.2f}% over {values.bets} bets"
        )

    print(f"\n  Calibration ({metrics.calibration.method}):")
    for point in metrics.calibration.curve:
        print(f"    Predicted: {point['predicted']:.0%} -> Actual: {point['actual']:.0%}")

    print("\n  Top features:")
    for item in result.feature_importance[:5]:
        print(f"    {item.feature:<28} {item.importance:.1%}")

    print("\n[3/4] Registry...")
    if card is not None:
        print(f"  Registered {card.name} v{card.version} ({card.status})")
        print(f"  Artifact: {card.artifact_path}")
    else:
        print("  Skipped (no --registry-dir)")

    print("\n[4/4] Upcoming Fixtures...")
    if not result.predictions:
        print("  No upcoming fixtures")
    for prediction in result.predictions:
        print(format_prediction(prediction))

    if plots_dir:
        from .visualizations import generate_all_plots

        print("\nGenerating plots...")
        generate_all_plots(result, output_dir=str(plots_dir))

    if output:
        with open(output, "w") as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"\nTraining result written to: {output}")

    print("\n" + "=" * 60)
    print("TRAINING COMPLETE")
    print("=" * 60)

    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Train the rugby home-win model")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory with fixtures.csv, odds.csv, weather.csv (uses sample data if not provided)",
    )
    parser.add_argument("--algorithm", choices=ALGORITHMS, default=None)
    parser.add_argument("--calibration", choices=CALIBRATION_METHODS, default=None)
    parser.add_argument("--holdout-ratio", type=float, default=None)
    parser.add_argument("--model-name", type=str, default=None)
    parser.add_argument("--start", type=str, default=None, help="Earliest kickoff (ISO date)")
    parser.add_argument("--end", type=str, default=None, help="Latest kickoff (ISO date)")
    parser.add_argument(
        "--registry-dir",
        type=str,
        default=None,
        help="Register the trained model in this directory",
    )
    parser.add_argument(
        "--optimize",
        action="store_true",
        help="Optimize hyperparameters with Optuna before the final training run",
    )
    parser.add_argument("--n-trials", type=int, default=20)
    parser.add_argument("--plots-dir", type=str, default=None)
    parser.add_argument("--output", type=str, default=None, help="Write the result as JSON")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def config_from_args(args: argparse.Namespace, base: TrainingJobConfig) -> TrainingJobConfig:
    """Overlay command line flags on an environment-derived config."""
    algorithm = args.algorithm or base.algorithm
    model_name = args.model_name or base.model_name
    if args.model_name is None and args.algorithm and model_name == f"weekly-{base.algorithm}":
        model_name = f"weekly-{algorithm}"

    window = TrainingWindow(
        start=to_utc_datetime(args.start) if args.start else base.training_window.start,
        end=to_utc_datetime(args.end) if args.end else base.training_window.end,
    )

    config = replace(
        base,
        model_name=model_name,
        algorithm=algorithm,
        calibration=args.calibration or base.calibration,
        holdout_ratio=args.holdout_ratio if args.holdout_ratio is not None else base.holdout_ratio,
        training_window=window,
    )
    return config.validate()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        config = config_from_args(args, TrainingJobConfig.from_env())
    except ValueError as e:
        parser.error(str(e))

    if args.data_dir:
        store = load_fixture_store(args.data_dir)
        print(f"Loaded fixtures from {args.data_dir}")
    else:
        store = create_sample_data()
        print("Using synthetic sample league (demo data)")

    try:
        run_training(
            store,
            config,
            registry_dir=args.registry_dir,
            optimize=args.optimize,
            n_trials=args.n_trials,
            plots_dir=args.plots_dir,
            output=args.output,
        )
    except InsufficientDataError as e:
        logger.error("Training aborted: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
