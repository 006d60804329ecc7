"""
Visualizations Module

Plotting functions for model evaluation reports: reliability diagram,
monthly backtest ROI and feature importance.

Requires: matplotlib (install the ``plot`` extra)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from .model_evaluation import CalibrationSummary, RoiPoint
from .models import FeatureImportance

if TYPE_CHECKING:
    from .model_training import TrainingResult


# Lazy import for the optional dependency
def _get_plt():
    import matplotlib.pyplot as plt
    return plt


# =============================================================================
# Style Configuration
# =============================================================================

COLORS = {
    "home": "#2ecc71",      # Green
    "away": "#e74c3c",      # Red
    "primary": "#3498db",   # Blue
    "secondary": "#9b59b6", # Purple
    "neutral": "#95a5a6",   # Gray
}


def set_style():
    """Set consistent plot style."""
    plt = _get_plt()

    plt.style.use("seaborn-v0_8-whitegrid")
    plt.rcParams["figure.figsize"] = (10, 6)
    plt.rcParams["font.size"] = 11
    plt.rcParams["axes.titlesize"] = 14
    plt.rcParams["axes.labelsize"] = 12


def _finish(fig, save_path: Optional[str], show: bool):
    plt = _get_plt()
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
    if show:
        plt.show()
    plt.close(fig)
    return fig


# =============================================================================
# Model Evaluation Plots
# =============================================================================

def plot_calibration(
    summary: CalibrationSummary,
    save_path: Optional[str] = None,
    show: bool = False,
):
    """
    Plot the reliability diagram of the backtest split.

    Shows mean predicted probability vs observed home-win rate per bin, with
    the perfect calibration line for reference.

    Returns:
        The matplotlib Figure.
    """
    plt = _get_plt()
    set_style()

    fig, ax = plt.subplots(figsize=(8, 8))

    ax.plot([0, 1], [0, 1], "k--", label="Perfect Calibration", alpha=0.7)

    filled = [b for b in summary.bins if b.count > 0]
    predicted = [b.average_prediction for b in filled]
    actual = [b.actual_rate for b in filled]

    ax.scatter(
        predicted,
        actual,
        s=[max(b.count * 20, 20) for b in filled],
        c=COLORS["primary"],
        alpha=0.7,
        edgecolors="white",
        linewidth=1.5,
        label=f"Model ({summary.method})",
    )
    ax.plot(predicted, actual, color=COLORS["primary"], alpha=0.5)

    ax.set_xlabel("Predicted Home-Win Probability")
    ax.set_ylabel("Observed Home-Win Rate")
    ax.set_title("Calibration Plot\n(Size = sample count)")
    ax.legend()
    ax.set_xlim(-0.05, 1.05)
    ax.set_ylim(-0.05, 1.05)
    ax.set_aspect("equal")

    return _finish(fig, save_path, show)


def plot_roi_series(
    series: Sequence[RoiPoint],
    save_path: Optional[str] = None,
    show: bool = False,
):
    """
    Plot monthly ROI of the simulated bets.

    Profitable months are green, losing months red.
    """
    plt = _get_plt()
    set_style()

    fig, ax = plt.subplots(figsize=(10, 5))

    periods = [point.period for point in series]
    roi = [point.roi for point in series]
    colors = [COLORS["home"] if value >= 0 else COLORS["away"] for value in roi]

    ax.bar(periods, roi, color=colors, alpha=0.85, edgecolor="white")
    ax.axhline(0, color="black", linewidth=0.8)

    ax.set_xlabel("Month")
    ax.set_ylabel("ROI (%)")
    ax.set_title("Backtest ROI by Month")
    ax.tick_params(axis="x", rotation=45)

    return _finish(fig, save_path, show)


def plot_feature_importance(
    importance: Sequence[FeatureImportance],
    top_n: int = 10,
    save_path: Optional[str] = None,
    show: bool = False,
):
    """Horizontal bar chart of the ``top_n`` most important features."""
    plt = _get_plt()
    set_style()

    top = list(importance)[:top_n]

    fig, ax = plt.subplots(figsize=(10, max(3, 0.5 * len(top) + 1)))

    names = [item.feature for item in reversed(top)]
    values = [item.importance * 100 for item in reversed(top)]
    ax.barh(names, values, color=COLORS["secondary"], alpha=0.85)

    ax.set_xlabel("Importance (%)")
    ax.set_title("Feature Importance")

    return _finish(fig, save_path, show)


# =============================================================================
# Summary Dashboard
# =============================================================================

def generate_all_plots(
    result: "TrainingResult",
    output_dir: str = "plots",
    show: bool = False,
) -> list[str]:
    """
    Generate all evaluation plots for a training run and save to directory.

    Args:
        result: Output of ``ModelTrainer.train``.
        output_dir: Directory to save plots.
        show: Whether to display plots.

    Returns:
        List of saved file paths.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    saved_files = []

    path = str(output_path / "01_calibration.png")
    plot_calibration(result.metrics.calibration, save_path=path, show=show)
    saved_files.append(path)
    print(f"  Saved: {path}")

    if result.metrics.roi_series:
        path = str(output_path / "02_roi_series.png")
        plot_roi_series(result.metrics.roi_series, save_path=path, show=show)
        saved_files.append(path)
        print(f"  Saved: {path}")

    path = str(output_path / "03_feature_importance.png")
    plot_feature_importance(result.feature_importance, save_path=path, show=show)
    saved_files.append(path)
    print(f"  Saved: {path}")

    return saved_files
