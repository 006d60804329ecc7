"""
Exceptions

Errors raised by the training engine. Missing odds or weather never raise;
they degrade to neutral feature values instead.
"""

from __future__ import annotations


class RugbyPredictError(Exception):
    """Base class for errors raised by this package."""


class InsufficientDataError(RugbyPredictError, ValueError):
    """
    Raised when too few labelled fixtures are available to train a model.

    Attributes:
        available: Number of usable training rows found.
        required: Minimum number of rows needed.
    """

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient completed fixtures to train a model: "
            f"found {available}, need at least {required}."
        )
