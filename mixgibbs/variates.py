from typing import Optional, Tuple, Union

import numpy as np
from scipy.linalg import cholesky
from scipy.stats import invwishart

from mixgibbs.exceptions import InvalidParameterError


def _check_positive(x, name: str) -> np.ndarray:
    """Check that every entry of x is a finite positive number."""
    x = np.asarray(x, dtype=float)
    if not np.all(np.isfinite(x)) or np.any(x <= 0):
        raise InvalidParameterError(f"{name} must be positive, got {x}")
    return x


def cholesky_factor(m, name: str) -> np.ndarray:
    """
    Lower Cholesky factor of a symmetric positive definite matrix.

    Raises InvalidParameterError when m is not square, not symmetric or not
    positive definite.
    """
    m = np.asarray(m, dtype=float)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise InvalidParameterError(f"{name} must be a square matrix, got {m.shape}")
    if not np.allclose(m, m.T, rtol=1e-8, atol=1e-10 * np.abs(m).max(initial=1.0)):
        raise InvalidParameterError(f"{name} must be symmetric")
    try:
        return cholesky(m, lower=True)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise InvalidParameterError(f"{name} must be positive definite") from exc


def _check_positive_definite(m, name: str) -> np.ndarray:
    """Check that m is a symmetric positive definite matrix."""
    cholesky_factor(m, name)
    return np.asarray(m, dtype=float)


class RandomVariateSource:
    """
    Seeded source of the random variates used by the samplers.

    Wraps a ``np.random.Generator`` owned by the caller; there is no module
    level generator. Every draw validates its parameters and raises
    ``InvalidParameterError`` when they are malformed.
    """

    def __init__(self, rng: np.random.Generator):
        self.rng = rng

    @classmethod
    def from_seed(cls, seed: Union[int, np.random.SeedSequence], *key: int):
        """
        Build a source from a seed and an optional spawn key.

        Sources built from the same seed and key produce the same stream, and
        different keys give independent streams.

        Args:
            seed: Integer entropy or an existing seed sequence.
            key: Integers identifying the stream (e.g. sweep and observation).

        Returns:
            A new RandomVariateSource.
        """
        spawn_key = tuple(int(k) for k in key)
        if isinstance(seed, np.random.SeedSequence):
            spawn_key = tuple(seed.spawn_key) + spawn_key
            seed = seed.entropy
        ss = np.random.SeedSequence(seed, spawn_key=spawn_key)
        return cls(np.random.default_rng(ss))

    def beta(self, a, b, size: Optional[Union[int, Tuple[int, ...]]] = None):
        a = _check_positive(a, "a")
        b = _check_positive(b, "b")
        return self.rng.beta(a, b, size=size)

    def dirichlet(self, alpha) -> np.ndarray:
        alpha = _check_positive(alpha, "alpha")
        if alpha.ndim != 1:
            raise InvalidParameterError("alpha must be a vector")
        return self.rng.dirichlet(alpha)

    def categorical(self, probs) -> int:
        """
        Draw an index from an unnormalized probability vector.

        Args:
            probs: Non-negative weights, at least one of them positive.

        Returns:
            Index in ``[0, len(probs))``.
        """
        probs = np.asarray(probs, dtype=float)
        if probs.ndim != 1 or len(probs) == 0:
            raise InvalidParameterError("probs must be a non-empty vector")
        if not np.all(np.isfinite(probs)) or np.any(probs < 0):
            raise InvalidParameterError(f"probs must be non-negative, got {probs}")
        cdf = np.cumsum(probs)
        if cdf[-1] <= 0:
            raise InvalidParameterError("probs must have positive mass")
        u = self.rng.random()
        return min(int(np.searchsorted(cdf, u * cdf[-1], side="right")), len(probs) - 1)

    def bernoulli(self, p, size: Optional[Union[int, Tuple[int, ...]]] = None):
        p = np.asarray(p, dtype=float)
        if np.any(np.isnan(p)) or np.any(p < 0) or np.any(p > 1):
            raise InvalidParameterError(f"p must lie in [0, 1], got {p}")
        return (self.rng.random(size=size if size is not None else p.shape) < p).astype(
            int
        )

    def multivariate_normal(self, mean, cov) -> np.ndarray:
        mean = np.asarray(mean, dtype=float)
        cov = _check_positive_definite(cov, "cov")
        if mean.shape != (cov.shape[0],):
            raise InvalidParameterError(
                f"mean of shape {mean.shape} does not match cov of shape {cov.shape}"
            )
        return self.rng.multivariate_normal(mean, cov, method="cholesky")

    def inverse_wishart(self, df: float, scale) -> np.ndarray:
        scale = _check_positive_definite(scale, "scale")
        d = scale.shape[0]
        if not df > d - 1:
            raise InvalidParameterError(
                f"df must be greater than {d - 1} for a {d}x{d} scale, got {df}"
            )
        draw = invwishart.rvs(df=df, scale=scale, random_state=self.rng)
        draw = np.atleast_2d(draw)
        return 0.5 * (draw + draw.T)
