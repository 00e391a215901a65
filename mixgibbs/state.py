from dataclasses import dataclass, field
from typing import List, Optional, Union

import numpy as np
from scipy.linalg import solve_triangular

from mixgibbs.exceptions import InvalidParameterError
from mixgibbs.variates import cholesky_factor

LOG_2PI = np.log(2.0 * np.pi)


@dataclass(frozen=True)
class BernoulliParameters:
    """
    Component parameters of a Bernoulli mixture.

    Attributes:
        probs: Success probability of each variable, shape (K, p).
    """

    probs: np.ndarray

    def __post_init__(self):
        probs = np.array(self.probs, dtype=float)
        if probs.ndim != 2:
            raise InvalidParameterError(f"probs must have shape (K, p), got {probs.shape}")
        if np.any(probs <= 0) or np.any(probs >= 1):
            raise InvalidParameterError("probs must lie strictly inside (0, 1)")
        probs.setflags(write=False)
        object.__setattr__(self, "probs", probs)

    @property
    def n_components(self) -> int:
        return self.probs.shape[0]

    def log_likelihood(self, x: np.ndarray) -> np.ndarray:
        """
        Log-probability of one binary observation under each component.

        Args:
            x: Binary vector of length p.

        Returns:
            Array of shape (K,) with ``sum_j x_j log p_kj + (1 - x_j) log(1 - p_kj)``.
        """
        x = np.asarray(x, dtype=float)
        return np.log(self.probs) @ x + np.log1p(-self.probs) @ (1.0 - x)


@dataclass(frozen=True)
class GaussianParameters:
    """
    Component parameters of a Gaussian mixture.

    Attributes:
        means: Component means, shape (K, d).
        covariances: Component covariance matrices, shape (K, d, d).
    """

    means: np.ndarray
    covariances: np.ndarray
    _factors: np.ndarray = field(init=False, repr=False, compare=False)
    _log_dets: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        means = np.array(self.means, dtype=float)
        covariances = np.array(self.covariances, dtype=float)
        if means.ndim != 2 or covariances.shape != means.shape + (means.shape[1],):
            raise InvalidParameterError(
                f"means {means.shape} and covariances {covariances.shape} "
                "must have shapes (K, d) and (K, d, d)"
            )
        means.setflags(write=False)
        covariances.setflags(write=False)
        object.__setattr__(self, "means", means)
        object.__setattr__(self, "covariances", covariances)
        # one lower Cholesky factor per component
        factors = np.array(
            [cholesky_factor(c, f"covariance {k}") for k, c in enumerate(covariances)]
        ).reshape(covariances.shape)
        log_dets = 2.0 * np.log(np.diagonal(factors, axis1=1, axis2=2)).sum(axis=1)
        object.__setattr__(self, "_factors", factors)
        object.__setattr__(self, "_log_dets", log_dets)

    @property
    def n_components(self) -> int:
        return self.means.shape[0]

    @property
    def dim(self) -> int:
        return self.means.shape[1]

    def log_likelihood(self, x: np.ndarray) -> np.ndarray:
        """
        Multivariate normal log-density of x under each component.

        Evaluated from the Cholesky factor L of each covariance:
        ``-0.5 * (d log 2pi + log|Sigma| + |L^-1 (x - mu)|^2)``.
        """
        x = np.asarray(x, dtype=float)
        maha = np.empty(self.n_components)
        for k, (mean, factor) in enumerate(zip(self.means, self._factors)):
            z = solve_triangular(factor, x - mean, lower=True)
            maha[k] = z @ z
        return -0.5 * (self.dim * LOG_2PI + self._log_dets + maha)


ComponentParameters = Union[BernoulliParameters, GaussianParameters]


@dataclass(frozen=True)
class Snapshot:
    """
    State of the sampler after one committed sweep.

    Attributes:
        sweep: Index of the sweep (0-based).
        parameters: Component parameters drawn during the sweep.
        weights: Mixture weights drawn during the sweep.
        labels: Cluster assignments after the allocation phase.
        counts: Number of observations in each cluster.
        log_likelihood: Mixture log-likelihood of the data under the drawn
            parameters and weights.
        entropy: Per-observation assignment entropy, when requested.
    """

    sweep: int
    parameters: ComponentParameters
    weights: np.ndarray
    labels: np.ndarray
    counts: np.ndarray
    log_likelihood: float
    entropy: Optional[np.ndarray] = None


class Trace:
    """
    Append-only sequence of snapshots, ordered by sweep.

    Args:
        seed: Seed the run was started from, kept for reproduction.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._snapshots: List[Snapshot] = []

    def append(self, snapshot: Snapshot) -> None:
        if self._snapshots and snapshot.sweep <= self._snapshots[-1].sweep:
            raise ValueError(
                f"snapshot for sweep {snapshot.sweep} appended after "
                f"sweep {self._snapshots[-1].sweep}"
            )
        self._snapshots.append(snapshot)

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self):
        return iter(self._snapshots)

    def __getitem__(self, item):
        return self._snapshots[item]

    @property
    def last(self) -> Optional[Snapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def sweeps(self) -> np.ndarray:
        return np.array([s.sweep for s in self._snapshots], dtype=int)

    def weights(self) -> np.ndarray:
        return np.vstack([s.weights for s in self._snapshots])

    def labels(self) -> np.ndarray:
        return np.vstack([s.labels for s in self._snapshots])

    def counts(self) -> np.ndarray:
        return np.vstack([s.counts for s in self._snapshots])

    def log_likelihoods(self) -> np.ndarray:
        return np.array([s.log_likelihood for s in self._snapshots])

    def means(self) -> np.ndarray:
        """
        Stack the location parameters of every snapshot.

        Returns:
            Array of shape (n_snapshots, K, p) with Bernoulli probabilities or
            (n_snapshots, K, d) with Gaussian means.
        """
        return np.stack([_location(s.parameters) for s in self._snapshots])


def _location(parameters: ComponentParameters) -> np.ndarray:
    if isinstance(parameters, BernoulliParameters):
        return parameters.probs
    return parameters.means
