"""Utility functions for record simulation, report generation, and evaluation.

This module provides support for:
- Simulating client records (uniform, clustered, zipf).
- Splitting records into the two helpers' partial reports.
- Computing ground-truth prefix histograms.
- Evaluating estimates using MSE and L1 distance metrics.
- Configuring log output.
"""

from .utils import (
    calculate_l1_dist,
    calculate_mse,
    compute_true_histogram,
    generate_partial_reports,
    generate_simulated_records,
    histogram_vector,
    setup_logging,
)

__all__ = [
    "calculate_l1_dist",
    "calculate_mse",
    "compute_true_histogram",
    "generate_partial_reports",
    "generate_simulated_records",
    "histogram_vector",
    "setup_logging",
]
