"""
Rugby Predict: Home-Win Model Training Pipeline

Feature engineering and model training for rugby match outcomes. Turns
historical results, market odds and weather into a calibrated home-win
probability model and applies it to upcoming fixtures:

- Fixed 20-feature vectors (form, Elo proxy, rest, fatigue, market, weather,
  head-to-head)
- Logistic regression and boosted stumps trained from scratch on numpy
- Platt and isotonic calibration fitted on a chronological backtest split
- Betting-aware evaluation (accuracy, Brier, log loss, ROI, yield, hit rate)
- Prediction artifacts and a file-based model registry
"""

__version__ = "1.0.0"

from .calibration import fit_calibration, apply_calibration
from .config import TrainingJobConfig, TrainingWindow
from .data_loader import DataFrameFixtureStore, MatchDataLoader, load_fixture_store
from .dataset import build_training_dataset
from .exceptions import InsufficientDataError, RugbyPredictError
from .feature_engineering import FEATURE_KEYS, FeatureVector, build_feature_vector
from .model_evaluation import BettingPolicy, ModelEvaluator
from .model_training import ModelTrainer, OptimizationConfig, train_gbdt, train_logistic
from .models import model_from_dict
from .predict import MatchPredictor, predict_upcoming
from .registry import ModelRegistry, train_and_register

__all__ = [
    "FEATURE_KEYS",
    "BettingPolicy",
    "DataFrameFixtureStore",
    "FeatureVector",
    "InsufficientDataError",
    "MatchDataLoader",
    "MatchPredictor",
    "ModelEvaluator",
    "ModelRegistry",
    "ModelTrainer",
    "OptimizationConfig",
    "RugbyPredictError",
    "TrainingJobConfig",
    "TrainingWindow",
    "apply_calibration",
    "build_feature_vector",
    "build_training_dataset",
    "fit_calibration",
    "load_fixture_store",
    "model_from_dict",
    "predict_upcoming",
    "train_and_register",
    "train_gbdt",
    "train_logistic",
]
