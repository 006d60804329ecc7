"""
Logging helpers.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves; entry points call ``configure_logging``.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install a root handler with the standard format."""
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


class FixtureLoggerAdapter(logging.LoggerAdapter):
    """Prefix every message with the fixture id and pipeline span."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[fixture={extra.get('fixture_id')} span={extra.get('span')}] {msg}", kwargs


def fixture_logger(
    fixture_id: str,
    span: str,
    logger: Optional[logging.Logger] = None,
) -> FixtureLoggerAdapter:
    """
    Logger bound to a single fixture.

    Args:
        fixture_id: Fixture the messages refer to.
        span: Pipeline stage, e.g. "features" or "predict".
        logger: Underlying logger (default: the package logger).
    """
    if logger is None:
        logger = logging.getLogger("rugby_predict")
    return FixtureLoggerAdapter(logger, {"fixture_id": fixture_id, "span": span})
