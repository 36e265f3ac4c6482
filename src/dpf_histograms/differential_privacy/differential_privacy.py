"""Differential privacy calibration for the two-helper aggregation."""

import math

import numpy as np


def stdgeo_tau_noise_std(epsilon: float,
                         sensitivity_delta: float) -> float:
    r"""Compute standard deviation of the discrete-Laplace noise in the total.

    For \beta = e^{-\epsilon / \Delta} the two-sided geometric distribution
    has standard deviation
        \sigma = \sqrt{2 \beta} / (1 - \beta)

    Args:
        epsilon (float): Privacy budget of one level.
        sensitivity_delta (float): L1-sensitivity \Delta of the query.

    Returns
    -------
        Standard deviation of the noise both helpers add together.
    """
    if epsilon == 0:
        return float("inf")

    beta = np.exp(-epsilon / sensitivity_delta)
    if beta == 1.0:
        return float("inf")

    return float(np.sqrt(2 * beta / (1 - beta) ** 2))


def helper_noise_params(epsilon: float,
                        sensitivity_delta: float,
                        num_helpers: int = 2) -> tuple[float, float]:
    r"""Pólya parameters of one helper's share of the noise.

    Discrete Laplace with ratio \beta is infinitely divisible: the sum of
    ``num_helpers`` independent Pólya(1/n, \beta) differences has exactly
    that distribution, so no single helper knows the total noise.

    Args:
        epsilon (float): Privacy budget of the level, must be > 0.
        sensitivity_delta (float): L1-sensitivity of one record.
        num_helpers (int): Helpers each adding a share.

    Returns
    -------
        (alpha, beta) for ``add_noise_vectorized``.

    Raises
    ------
        ValueError: If epsilon, sensitivity or num_helpers is not positive.
    """
    if epsilon <= 0:
        msg = f"epsilon must be > 0, got {epsilon}"
        raise ValueError(msg)
    if sensitivity_delta <= 0:
        msg = f"sensitivity must be > 0, got {sensitivity_delta}"
        raise ValueError(msg)
    if num_helpers < 1:
        msg = f"num_helpers must be >= 1, got {num_helpers}"
        raise ValueError(msg)
    beta = math.exp(-epsilon / sensitivity_delta)
    return 1.0 / num_helpers, beta
