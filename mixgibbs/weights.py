import warnings
from typing import Union

import numpy as np

from mixgibbs.exceptions import InvalidParameterError
from mixgibbs.variates import RandomVariateSource


def normalize(weights: np.ndarray) -> np.ndarray:
    """Clip negative round-off and rescale weights to sum to one."""
    weights = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    total = weights.sum()
    if not total > 0:
        raise InvalidParameterError("weights must have positive mass")
    return weights / total


class DirichletWeights:
    """
    Mixture weights drawn from Dirichlet(counts + concentration).

    Args:
        concentration: Dirichlet concentration, a positive scalar broadcast to
            every cluster or a vector with one entry per cluster.
    """

    def __init__(self, concentration: Union[float, np.ndarray] = 1.0):
        concentration = np.asarray(concentration, dtype=float)
        if concentration.ndim > 1:
            raise InvalidParameterError("concentration must be a scalar or a vector")
        if np.any(concentration <= 0):
            raise InvalidParameterError(
                f"concentration must be positive, got {concentration}"
            )
        self.concentration = concentration

    def check(self, K: int) -> None:
        if self.concentration.ndim == 1 and len(self.concentration) != K:
            raise InvalidParameterError(
                f"concentration must have length K={K}, "
                f"got {len(self.concentration)}"
            )

    def sample(self, counts: np.ndarray, source: RandomVariateSource) -> np.ndarray:
        """
        Draw a weight vector given the current cluster sizes.

        Args:
            counts: Number of observations in each cluster.
            source: Random variate source.

        Returns:
            Normalized mixture weights.
        """
        counts = np.asarray(counts, dtype=float)
        self.check(len(counts))
        return normalize(source.dirichlet(counts + self.concentration))

    def __repr__(self):
        return f"DirichletWeights(concentration={self.concentration.tolist()})"


class SequentialBetaWeights:
    """
    Ad hoc three-cluster weights built from a single Beta draw.

    pi1 ~ Beta(1 + n1, 1 + n2), pi2 = 1 - pi1, pi3 = (pi1 + pi2) / 2, and the
    three values are renormalized, which always gives the third cluster a
    weight of 1/3. The result is not a Dirichlet posterior; it is kept as an
    explicit alternative to DirichletWeights for analyses that used it.
    """

    K = 3

    def __init__(self):
        warnings.warn(
            "SequentialBetaWeights is not a proper Dirichlet posterior: "
            "the third weight is fixed at 1/3 whatever the counts. "
            "Use DirichletWeights unless you need to reproduce this construction.",
            UserWarning,
            stacklevel=2,
        )

    def check(self, K: int) -> None:
        if K != self.K:
            raise InvalidParameterError(
                f"SequentialBetaWeights only supports K=3, got K={K}"
            )

    def sample(self, counts: np.ndarray, source: RandomVariateSource) -> np.ndarray:
        counts = np.asarray(counts, dtype=float)
        self.check(len(counts))
        pi1 = float(source.beta(1.0 + counts[0], 1.0 + counts[1]))
        pi2 = 1.0 - pi1
        pi3 = (pi1 + pi2) / 2.0
        return normalize(np.array([pi1, pi2, pi3]))

    def __repr__(self):
        return "SequentialBetaWeights()"
