"""Utility functions for simulation, histogram reconstruction, and evaluation."""

from __future__ import annotations

import logging
import sys
from collections import Counter
from typing import TYPE_CHECKING

import numpy as np
from numpy.random import default_rng

from dpf_histograms.aggregation import pack_blobs
from dpf_histograms.dpf import generate_keys

# Only import heavy types for type checking
if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import NDArray

    from dpf_histograms.dpf import Parameters

# Initialize a single random number generator for reproducible simulations
_rng = default_rng()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Send log records of every module to stdout.

    Args
    -----
        level (str): Level name; unknown names fall back to INFO.

    Returns
    -------
        The package logger.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logger = logging.getLogger("dpf_histograms")
    logger.setLevel(log_level)
    return logger


def _sim_uniform(num_records: int, bit_length: int) -> list[int]:
    """Sample each record uniformly over the domain."""
    return [int(v) for v in _rng.integers(0, 1 << bit_length, size=num_records, dtype=np.uint64)]


def _sim_clustered(num_records: int, bit_length: int, num_clusters: int = 2) -> list[int]:
    """
    Sample records from Gaussian clusters.

    Cluster centers sit at fixed fractions of the domain.

    Args
    -----
        num_records (int): Number of records to simulate.
        bit_length (int): Bit length of a record.
        num_clusters (int): Number of clusters to sample from.

    Returns
    -------
        List of record values.
    """
    domain = 1 << bit_length
    centers = [domain * 0.25, domain * 0.75][:num_clusters]
    std = max(domain * 0.02, 1.0)

    samples: list[int] = []
    for _ in range(num_records):
        center = _rng.choice(centers)
        v = int(_rng.normal(center, std))
        # clamp to domain
        samples.append(max(0, min(v, domain - 1)))
    return samples


def _sim_zipf(num_records: int, bit_length: int, exponent: float = 1.5) -> list[int]:
    """Heavy-tailed records: value ``k - 1`` with probability proportional to ``k**-exponent``."""
    domain = 1 << bit_length
    draws = _rng.zipf(exponent, size=num_records) - 1
    return [int(v) % domain for v in draws]


def generate_simulated_records(
    num_records: int,
    bit_length: int,
    distribution_type: str = "uniform",
) -> list[int]:
    """
    Generate simulated client records.

    Args
    -----
        num_records (int): Number of records to simulate.
        bit_length (int): Bit length of each record.
        distribution_type: One of 'uniform', 'clustered', 'zipf'.

    Returns
    -------
        List of integers in ``[0, 2**bit_length)``.
    """
    dispatch = {
        "uniform": _sim_uniform,
        "clustered": _sim_clustered,
        "zipf": _sim_zipf,
    }
    generator = dispatch.get(distribution_type)
    if generator is None:
        msg = f"Unknown distribution_type: {distribution_type!r}"
        raise ValueError(msg)

    return generator(num_records, bit_length)


def generate_partial_reports(records: Sequence[int], parameters: Parameters) -> tuple[bytes, bytes]:
    """
    Split every record into two key shares contributing a count of one.

    Args
    -----
        records (Sequence[int]): Values in the last level's domain.
        parameters (Parameters): Schema the shares are generated against.

    Returns
    -------
        tuple[bytes, bytes]: The two helpers' partial reports.
    """
    first, second = [], []
    for value in records:
        key_0, key_1 = generate_keys(parameters, value, 1)
        first.append(key_0.to_bytes())
        second.append(key_1.to_bytes())
    return pack_blobs(first), pack_blobs(second)


def compute_true_histogram(records: Sequence[int], bit_length: int, prefix_bits: int) -> dict[int, int]:
    """Count records per ``prefix_bits``-bit prefix; empty prefixes are absent."""
    if not 0 <= prefix_bits <= bit_length:
        msg = f"prefix_bits must be in [0, {bit_length}], got {prefix_bits}"
        raise ValueError(msg)
    shift = bit_length - prefix_bits
    return dict(Counter(int(v) >> shift for v in records))


def histogram_vector(counts: Mapping[int, int], prefixes: Sequence[int]) -> NDArray[np.float64]:
    """Arrange ``counts`` along ``prefixes``, zero where a prefix is missing."""
    return np.array([float(counts.get(p, 0)) for p in prefixes], dtype=float)


def calculate_mse(true_hist: NDArray[np.float64], est_hist: NDArray[np.float64]) -> float:
    """Compute mean-squared error between two histograms of equal shape.

    Args
    -----
        true_hist (NDArray[np.float64]): The ground truth histogram.
        est_hist (NDArray[np.float64]): The estimated histogram.

    Returns
    -------
        float: The mean-squared error between the two histograms.
    """
    if true_hist.shape != est_hist.shape:
        msg = "Histograms must have the same dimensions for MSE."
        raise ValueError(msg)
    return float(np.mean((true_hist - est_hist) ** 2))


def calculate_l1_dist(true_hist: NDArray[np.float64], est_hist: NDArray[np.float64]) -> float:
    """Compute L1 distance between two histograms of equal shape."""
    if true_hist.shape != est_hist.shape:
        msg = "Histograms must have the same dimensions for L1."
        raise ValueError(msg)
    return float(np.sum(np.abs(true_hist - est_hist)))
