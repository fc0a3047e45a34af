"""
Exception types raised by the normal estimation pipeline.
"""

from __future__ import annotations


class NormalEstimationError(RuntimeError):
    """Base class for failures that abort a whole normals batch."""


class IndexBuildError(NormalEstimationError):
    """The spatial index over reconstructed vertices could not be allocated."""


class PlaneFitError(ValueError):
    """No stable plane could be fitted to a neighbourhood."""


__all__ = ["NormalEstimationError", "IndexBuildError", "PlaneFitError"]
