"""
Model Registry

File-based registry of trained models. Each version is stored as a joblib
bundle (model, calibration, feature importance, score averages) next to a
JSON metadata card:

    <root>/<model name>/<version>.joblib
    <root>/<model name>/<version>.meta.json

Versions are semantic (``major.minor.patch``); new versions bump the patch of
the highest existing one. Lifecycle status is one of ``staging`` (fresh
registration), ``production`` (at most one per model name) or ``archived``,
with every transition recorded in the card's status history.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

import joblib

from .config import TrainingJobConfig
from .data_loader import FixtureStore
from .model_training import ModelTrainer, TrainingResult

logger = logging.getLogger(__name__)

ModelStatus = Literal["production", "staging", "archived"]

INITIAL_VERSION = "1.0.0"


def parse_version(version: str) -> tuple[int, int, int]:
    """``"1.2.3"`` -> ``(1, 2, 3)``; missing or non-numeric parts count as 0."""
    parts = []
    for part in version.split(".")[:3]:
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def bump_patch(version: str) -> str:
    major, minor, patch = parse_version(version)
    return f"{major}.{minor}.{patch + 1}"


@dataclass
class ModelCard:
    """Metadata stored alongside a registered model version."""

    name: str
    version: str
    algorithm: str
    calibration: str
    training_window_label: str
    created_at: str
    status: ModelStatus = "staging"
    status_history: list[dict[str, str]] = field(default_factory=list)
    promoted_at: Optional[str] = None
    description: Optional[str] = None
    hyperparameters: dict = field(default_factory=dict)
    metrics: dict = field(default_factory=dict)
    artifact_path: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "ModelCard":
        status = payload.get("status")
        if status not in ("production", "staging", "archived"):
            status = "staging"
        return cls(
            name=payload["name"],
            version=payload["version"],
            algorithm=payload.get("algorithm", "logit"),
            calibration=payload.get("calibration", "none"),
            training_window_label=payload.get("training_window_label", ""),
            created_at=payload.get("created_at", ""),
            status=status,
            status_history=list(payload.get("status_history") or []),
            promoted_at=payload.get("promoted_at"),
            description=payload.get("description"),
            hyperparameters=dict(payload.get("hyperparameters") or {}),
            metrics=dict(payload.get("metrics") or {}),
            artifact_path=payload.get("artifact_path"),
        )


class ModelRegistry:
    """
    Persist, version and promote trained models.

    Example:
        >>> registry = ModelRegistry("models")
        >>> card = registry.register(result)
        >>> registry.promote(card.name, card.version)
        >>> bundle, card = registry.load(card.name)
    """

    def __init__(self, root: str | Path = "models"):
        """
        Initialize the registry.

        Args:
            root: Directory holding one sub-directory per model name.
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def next_version(self, name: str) -> str:
        """Patch bump of the highest registered version, or ``1.0.0``."""
        versions = self.versions(name)
        if not versions:
            return INITIAL_VERSION
        return bump_patch(versions[-1])

    def versions(self, name: str) -> list[str]:
        """Registered versions of ``name``, lowest first."""
        model_dir = self.root / name
        if not model_dir.exists():
            return []
        versions = [p.name[: -len(".meta.json")] for p in model_dir.glob("*.meta.json")]
        return sorted(versions, key=parse_version)

    def register(self, result: TrainingResult) -> ModelCard:
        """
        Save a training result as a new ``staging`` version.

        Args:
            result: Output of ``ModelTrainer.train``.

        Returns:
            The stored ModelCard.

        Raises:
            ValueError: If the version is already registered.
        """
        config = result.config
        if config.version in self.versions(config.model_name):
            raise ValueError(f"Model {config.model_name} v{config.version} is already registered")

        model_dir = self.root / config.model_name
        model_dir.mkdir(parents=True, exist_ok=True)

        model_path = model_dir / f"{config.version}.joblib"
        joblib.dump(
            {
                "model": result.model,
                "calibration": result.calibration,
                "feature_importance": result.feature_importance,
                "average_scores": result.average_scores,
            },
            model_path,
        )

        hyperparameters = (
            asdict(config.gradient_boosting) if config.algorithm == "gbdt" else asdict(config.logistic)
        )
        card = ModelCard(
            name=config.model_name,
            version=config.version,
            algorithm=config.algorithm,
            calibration=result.calibration.method,
            training_window_label=result.training_window_label,
            created_at=_now(),
            description=config.description,
            hyperparameters=hyperparameters,
            metrics=result.metrics.to_dict(),
            artifact_path=str(model_path),
        )
        self._write_card(card)

        logger.info("Registered %s v%s (staging)", card.name, card.version)
        return card

    def get(self, name: str, version: str) -> ModelCard:
        """
        Metadata card of one version.

        Raises:
            KeyError: If the version is not registered.
        """
        meta_path = self._meta_path(name, version)
        if not meta_path.exists():
            raise KeyError(f"Model {name} v{version} not found")
        with open(meta_path) as f:
            return ModelCard.from_dict(json.load(f))

    def load(self, name: str, version: Optional[str] = None) -> tuple[dict, ModelCard]:
        """
        Load a saved model bundle and its metadata.

        Args:
            name: Model name.
            version: Version to load (default: the production version, else
                the latest one).

        Returns:
            Tuple of (bundle with ``model``, ``calibration``,
            ``feature_importance`` and ``average_scores``; ModelCard).

        Raises:
            KeyError: If no matching version is registered.
        """
        if version is None:
            version = self.production_version(name)
        if version is None:
            versions = self.versions(name)
            if not versions:
                raise KeyError(f"No versions registered for model {name}")
            version = versions[-1]

        card = self.get(name, version)
        bundle = joblib.load(self.root / name / f"{version}.joblib")
        return bundle, card

    def list_models(self, name: Optional[str] = None) -> list[ModelCard]:
        """Cards of every registered version, grouped by name, lowest version first."""
        names = [name] if name else sorted(p.name for p in self.root.iterdir() if p.is_dir())
        return [self.get(n, v) for n in names for v in self.versions(n)]

    def production_version(self, name: str) -> Optional[str]:
        for card in self.list_models(name):
            if card.status == "production":
                return card.version
        return None

    def promote(self, name: str, version: str) -> ModelCard:
        """
        Make ``version`` the production model, archiving the previous one.

        Raises:
            KeyError: If the version is not registered.
        """
        target = self.get(name, version)
        now = _now()

        for card in self.list_models(name):
            if card.version != version and card.status == "production":
                self._write_card(_transition(card, "archived", now))
                logger.info("Archived %s v%s", name, card.version)

        promoted = _transition(target, "production", now, promoted=True)
        self._write_card(promoted)
        logger.info("Promoted %s v%s to production", name, version)
        return promoted

    def rollback(self, name: str, version: Optional[str] = None) -> Optional[ModelCard]:
        """
        Take the current production model out of service.

        With ``version`` naming a non-production version, that version is put
        back into production. Otherwise the most recently promoted archived
        version replaces the current one (any other version when none is
        archived).

        Args:
            name: Model name.
            version: Optional version to restore.

        Returns:
            Card of the new production version, or None when nothing was
            in production or no other version exists.

        Raises:
            KeyError: If ``version`` is not registered.
        """
        if version is not None:
            self.get(name, version)

        cards = self.list_models(name)
        current = next((card for card in cards if card.status == "production"), None)
        if current is None:
            logger.warning("Rollback of %s requested with no production version", name)
            return None

        now = _now()
        self._write_card(_transition(current, "archived", now))

        if version is not None and version != current.version:
            target = self.get(name, version)
        else:
            candidates = [card for card in cards if card.version != current.version]
            if not candidates:
                logger.warning("Rolled back %s v%s with no version to restore", name, current.version)
                return None
            archived = [card for card in candidates if card.status == "archived"]
            target = max(archived or candidates, key=lambda card: card.promoted_at or card.created_at)

        restored = _transition(target, "production", now, promoted=True)
        self._write_card(restored)
        logger.info("Rolled %s back from v%s to v%s", name, current.version, restored.version)
        return restored

    def _meta_path(self, name: str, version: str) -> Path:
        return self.root / name / f"{version}.meta.json"

    def _write_card(self, card: ModelCard) -> None:
        with open(self._meta_path(card.name, card.version), "w") as f:
            json.dump(card.to_dict(), f, indent=2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _transition(card: ModelCard, status: ModelStatus, at: str, promoted: bool = False) -> ModelCard:
    return replace(
        card,
        status=status,
        status_history=card.status_history + [{"status": status, "at": at}],
        promoted_at=at if promoted else card.promoted_at,
    )


def train_and_register(
    store: FixtureStore,
    config: TrainingJobConfig,
    registry: ModelRegistry,
    version: Optional[str] = None,
    trainer: Optional[ModelTrainer] = None,
) -> tuple[ModelCard, TrainingResult]:
    """
    Train a model under the next free version and register it as staging.

    Args:
        store: Fixture store to train from.
        config: Training job configuration; its version is replaced.
        registry: Registry to store the result in.
        version: Explicit version (default: ``registry.next_version``).
        trainer: Trainer to use (default: ``ModelTrainer(store)``).

    Returns:
        Tuple of (ModelCard, TrainingResult).
    """
    version = version or registry.next_version(config.model_name)
    trainer = trainer or ModelTrainer(store)
    result = trainer.train(replace(config, version=version))
    return registry.register(result), result
