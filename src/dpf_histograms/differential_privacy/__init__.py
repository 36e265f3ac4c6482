"""Differential privacy utilities for the two-helper aggregation.

This module aggregates noise generation and privacy budget calibration
used by the helpers when they publish their per-level shares.
"""

from .differential_privacy import (
    helper_noise_params,
    stdgeo_tau_noise_std,
)
from .noise import (
    add_noise_vectorized,
    center_lift,
    modulo_clip,
)

__all__ = [
    # Core DP computations
    "stdgeo_tau_noise_std",
    "helper_noise_params",

    # Helper-side noise generation
    "add_noise_vectorized",
    "modulo_clip",
    "center_lift",
]
