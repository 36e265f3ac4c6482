"""Helper-side noise generation: Pólya shares of discrete-Laplace noise."""


from functools import lru_cache
from typing import Optional

import numpy as np
from numpy.random import Generator, default_rng
from numpy.typing import NDArray

generator = default_rng()

@lru_cache(maxsize=256)
def _get_scale(beta: float) -> float:
    """Retrieve the Gamma scale = beta/(1-beta), cached for speed."""
    return beta / (1.0 - beta)

def add_noise_vectorized(
    vector_dim: int,
    alpha_param: float,
    beta_param: float,
    rng: Optional[Generator] = None,
) -> NDArray[np.int64]:
    """Generate one helper's noise vector as a difference of Pólya samples.

    Args
    ------
        vector_dim (int): Dimension of the noise vector.
        alpha_param (float): Shape parameter for Gamma distribution.
        beta_param (float): Rate control (used in scale for Gamma).
        rng (Generator, optional): Source of randomness. Pass a seeded
            generator to make the vector reproducible.

    Returns
    -------
        NDArray[np.int64]: Vector of noise samples.
    """
    rng = rng or generator
    beta = min(max(beta_param, 1e-7), 1 - 1e-7)
    scale = _get_scale(beta)

    # 1) Draw gamma mixture parameters, one per Pólya sample
    lam1 = rng.gamma(alpha_param, scale=scale, size=vector_dim)
    lam2 = rng.gamma(alpha_param, scale=scale, size=vector_dim)

    # 2) Two independent Poisson draws
    noise1 = rng.poisson(lam1, size=vector_dim).astype(np.int64)
    noise2 = rng.poisson(lam2, size=vector_dim).astype(np.int64)

    # 3) In-place difference for minimal overhead
    noise1 -= noise2
    return noise1



def modulo_clip(noisy_vector: NDArray[np.integer], m_precision: int) -> NDArray[np.integer]:
    """
    Apply element-wise modulo operation to ensure values lie in [0, m_precision).

    Power-of-two moduli up to 2**64 are handled on uint64 with two's
    complement wrapping, so negative noise maps to the right residue.

    Args:
        noisy_vector: Vector of integers (may be negative).
        m_precision: Modulus value for clipping.

    Returns
    -------
        Vector with elements modulo m_precision.
    """
    if m_precision <= 0:
        msg = f"m_precision must be > 0, got {m_precision}"
        raise ValueError(msg)
    if m_precision & (m_precision - 1) == 0 and m_precision <= 1 << 64:
        return noisy_vector.astype(np.uint64) & np.uint64(m_precision - 1)
    return np.mod(noisy_vector, m_precision)


def center_lift(vector: NDArray[np.integer], bitsize: int) -> NDArray[np.int64]:
    """Map residues modulo 2**bitsize to signed integers in [-2**(bitsize-1), 2**(bitsize-1)).

    Args:
        vector: Residues, typically the sum of both helpers' shares.
        bitsize: Element width of the level.

    Returns
    -------
        Signed counts.
    """
    modulus = 1 << bitsize
    wrapped = modulo_clip(np.asarray(vector), modulus)
    if bitsize == 64:
        return wrapped.astype(np.int64)
    half = modulus >> 1
    signed = wrapped.astype(np.int64)
    return ((signed + half) % modulus) - half
