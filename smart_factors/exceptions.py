"""Failure types raised by smart factor evaluation.

Every failure is scoped to a single evaluation call: the factor that raised
keeps its stored measurements untouched, and other factors are unaffected.
Callers decide whether to skip, down-weight, or reject the landmark.

Taxonomy:
    - ProjectionFailure: a view cannot project the point (cheirality).
    - DegenerateConfiguration: the point-normal matrix EᵀE (optionally
      damped) is singular or ill-conditioned, or too few views are present.
    - InvalidArgument: inconsistent counts or shapes, detected before any
      numerical work begins.
"""

from typing import Any, Optional

import numpy as np


class SmartFactorError(Exception):
    """Base class for all smart factor evaluation failures."""


class ProjectionFailure(SmartFactorError, ValueError):
    """
    Raised when a point cannot be validly projected into a view.

    Attributes:
        view_index: Position of the offending view in the factor, if known.
        key: View identifier of the offending view, if known.
        depth: Depth of the point in the camera frame, if known.
    """

    def __init__(
        self,
        message: str,
        view_index: Optional[int] = None,
        key: Any = None,
        depth: Optional[float] = None,
    ):
        super().__init__(message)
        self.view_index = view_index
        self.key = key
        self.depth = depth


# Cheirality is the only projection failure mode of the pinhole model.
CheiralityError = ProjectionFailure


class DegenerateConfiguration(SmartFactorError, np.linalg.LinAlgError):
    """
    Raised when the point cannot be eliminated reliably.

    Attributes:
        rank: Numerical rank of the offending matrix, if computed.
        condition: Condition number of the offending matrix, if computed.
    """

    def __init__(
        self,
        message: str,
        rank: Optional[int] = None,
        condition: Optional[float] = None,
    ):
        super().__init__(message)
        self.rank = rank
        self.condition = condition


class InvalidArgument(SmartFactorError, ValueError):
    """Raised on inconsistent inputs, before any numerical work."""
