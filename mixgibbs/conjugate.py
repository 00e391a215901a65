# pylint: disable=too-many-arguments
# pylint: disable=invalid-name

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import numpy as np

from mixgibbs.exceptions import (
    ComponentDrawError,
    EmptyClusterError,
    InvalidParameterError,
)
from mixgibbs.state import BernoulliParameters, GaussianParameters
from mixgibbs.variates import RandomVariateSource, cholesky_factor

# Beta draws are kept this far away from 0 and 1
PROB_EPS = 1e-12

EMPTY_POLICIES = ("prior", "raise")


@dataclass(frozen=True)
class BetaPrior:
    """
    Beta prior on the success probability of each binary variable.

    Attributes:
        successes: Prior pseudo-successes, one per variable.
        failures: Prior pseudo-failures, one per variable.
    """

    successes: np.ndarray
    failures: np.ndarray

    def __post_init__(self):
        successes = np.atleast_1d(np.asarray(self.successes, dtype=float))
        failures = np.atleast_1d(np.asarray(self.failures, dtype=float))
        if successes.shape != failures.shape or successes.ndim != 1:
            raise InvalidParameterError(
                "successes and failures must be vectors of the same length"
            )
        if np.any(successes <= 0) or np.any(failures <= 0):
            raise InvalidParameterError("Beta prior parameters must be positive")
        object.__setattr__(self, "successes", successes)
        object.__setattr__(self, "failures", failures)

    @classmethod
    def from_matrix(cls, hyper: np.ndarray) -> "BetaPrior":
        """Build the prior from a 2 x p matrix (successes row, failures row)."""
        hyper = np.asarray(hyper, dtype=float)
        if hyper.ndim != 2 or hyper.shape[0] != 2:
            raise InvalidParameterError(f"expected a 2 x p matrix, got {hyper.shape}")
        return cls(hyper[0], hyper[1])

    @classmethod
    def uniform(cls, p: int) -> "BetaPrior":
        return cls(np.ones(p), np.ones(p))

    @classmethod
    def from_data(cls, X: np.ndarray, a: float = 1.0, b: float = 1.0) -> "BetaPrior":
        """
        Build a prior from labeled rows of one cluster.

        The counts of the labeled rows are added to a Beta(a, b) base prior.
        """
        X = np.atleast_2d(np.asarray(X, dtype=float))
        return cls(a + X.sum(axis=0), b + (1.0 - X).sum(axis=0))

    @property
    def dim(self) -> int:
        return len(self.successes)


@dataclass(frozen=True)
class NIWPrior:
    """
    Normal-Inverse-Wishart prior on a Gaussian mean and covariance.

    Sigma ~ IW(v0, gamma0) and mu | Sigma ~ N(mu0, Sigma / k0).

    Attributes:
        k0: Prior scaling of the mean (pseudo-observations).
        v0: Degrees of freedom, greater than d - 1.
        mu0: Prior mean, shape (d,).
        gamma0: Prior scale matrix, shape (d, d).
    """

    k0: float
    v0: float
    mu0: np.ndarray
    gamma0: np.ndarray

    def __post_init__(self):
        mu0 = np.atleast_1d(np.asarray(self.mu0, dtype=float))
        gamma0 = np.atleast_2d(np.asarray(self.gamma0, dtype=float))
        d = len(mu0)
        if mu0.ndim != 1 or gamma0.shape != (d, d):
            raise InvalidParameterError(
                f"mu0 {mu0.shape} and gamma0 {gamma0.shape} do not match"
            )
        if not self.k0 > 0:
            raise InvalidParameterError(f"k0 must be positive, got {self.k0}")
        if not self.v0 > d - 1:
            raise InvalidParameterError(f"v0 must be greater than {d - 1}, got {self.v0}")
        if not np.all(np.isfinite(mu0)):
            raise InvalidParameterError("mu0 must be finite")
        cholesky_factor(gamma0, "gamma0")
        object.__setattr__(self, "k0", float(self.k0))
        object.__setattr__(self, "v0", float(self.v0))
        object.__setattr__(self, "mu0", mu0)
        object.__setattr__(self, "gamma0", gamma0)

    @classmethod
    def default(cls, d: int) -> "NIWPrior":
        """Weak prior centered at the origin with identity scale."""
        return cls(k0=0.01, v0=d + 2.0, mu0=np.zeros(d), gamma0=np.eye(d))

    @classmethod
    def from_data(cls, X: np.ndarray, k0: float = 1.0, v0: float = None) -> "NIWPrior":
        """
        Build a prior from labeled rows of one cluster.

        The prior mean is the sample mean and the scale is chosen so that the
        prior mean of Sigma equals the sample covariance.

        Args:
            X: Labeled rows, shape (n, d) with n > d.
            k0: Prior scaling of the mean.
            v0: Degrees of freedom, defaults to d + 2.

        Returns:
            A new NIWPrior.
        """
        X = np.atleast_2d(np.asarray(X, dtype=float))
        n, d = X.shape
        if n <= d:
            raise InvalidParameterError(
                f"{d + 1} labeled rows are needed for a {d}-dimensional prior, got {n}"
            )
        if v0 is None:
            v0 = d + 2.0
        if not v0 > d + 1:
            raise InvalidParameterError(f"v0 must be greater than {d + 1}, got {v0}")
        cov = np.atleast_2d(np.cov(X, rowvar=False))
        return cls(k0=k0, v0=v0, mu0=X.mean(axis=0), gamma0=cov * (v0 - d - 1))

    @property
    def dim(self) -> int:
        return len(self.mu0)


Prior = Union[BetaPrior, NIWPrior]


def _expand_priors(priors, K: int, prior_type) -> List:
    """Broadcast one prior to K clusters or check a list of K priors."""
    if isinstance(priors, prior_type):
        return [priors] * K
    priors = list(priors)
    if len(priors) != K:
        raise InvalidParameterError(f"expected {K} priors, got {len(priors)}")
    for prior in priors:
        if not isinstance(prior, prior_type):
            raise InvalidParameterError(
                f"expected {prior_type.__name__}, got {type(prior).__name__}"
            )
    return priors


def _check_empty_policy(empty_policy: str) -> None:
    if empty_policy not in EMPTY_POLICIES:
        raise InvalidParameterError(
            f"empty_policy must be one of {EMPTY_POLICIES}, got {empty_policy!r}"
        )


class ComponentModel:
    """
    Conjugate update engine shared by the mixture models.

    Subclasses compute the posterior of one cluster and draw its parameters;
    ``sample_parameters`` does it for every cluster of an assignment.
    """

    prior_type = None

    def validate(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[0] == 0:
            raise InvalidParameterError(f"data must be a non-empty matrix, got {X.shape}")
        if not np.all(np.isfinite(X)):
            raise InvalidParameterError("data must be finite")
        return X

    def default_prior(self, dim: int):
        raise NotImplementedError

    def sample_component(self, X_k: np.ndarray, prior, source: RandomVariateSource):
        raise NotImplementedError

    def pack(self, components: list):
        raise NotImplementedError

    def sample_parameters(
        self,
        X: np.ndarray,
        labels: np.ndarray,
        K: int,
        priors: Union[Prior, Sequence[Prior]],
        source: RandomVariateSource,
        empty_policy: str = "prior",
    ):
        """
        Draw fresh parameters for every cluster given the current assignment.

        Args:
            X: Data matrix, shape (n, p) or (n, d).
            labels: Current cluster assignments.
            K: Number of clusters.
            priors: One prior for all clusters or a list of K priors.
            source: Random variate source.
            empty_policy: "prior" to draw empty clusters from their prior,
                "raise" to raise EmptyClusterError.

        Returns:
            Component parameters for the K clusters.

        Raises:
            EmptyClusterError: A cluster is empty under the "raise" policy.
            ComponentDrawError: The posterior draw of a cluster failed.
        """
        _check_empty_policy(empty_policy)
        priors = _expand_priors(priors, K, self.prior_type)
        components = []
        for k in range(K):
            X_k = X[labels == k]
            if len(X_k) == 0 and empty_policy == "raise":
                raise EmptyClusterError(k)
            try:
                components.append(self.sample_component(X_k, priors[k], source))
            except (InvalidParameterError, np.linalg.LinAlgError) as exc:
                raise ComponentDrawError(k, exc) from exc
        return self.pack(components)


class BernoulliModel(ComponentModel):
    """Beta-Bernoulli components for binary data."""

    prior_type = BetaPrior

    def validate(self, X: np.ndarray) -> np.ndarray:
        X = super().validate(X)
        if not np.all((X == 0) | (X == 1)):
            raise InvalidParameterError("binary data must only contain 0 and 1")
        return X

    def default_prior(self, dim: int) -> BetaPrior:
        return BetaPrior.uniform(dim)

    @staticmethod
    def posterior_from_counts(
        X_k: np.ndarray, prior: BetaPrior
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Posterior Beta parameters of each variable.

        Args:
            X_k: Rows assigned to the cluster, shape (n_k, p); may be empty.
            prior: Beta prior of the cluster.

        Returns:
            Tuple (a, b) of prior plus observed successes and failures.
        """
        X_k = np.asarray(X_k, dtype=float).reshape(-1, prior.dim)
        ones = X_k.sum(axis=0)
        zeros = len(X_k) - ones
        return prior.successes + ones, prior.failures + zeros

    def sample_component(
        self, X_k: np.ndarray, prior: BetaPrior, source: RandomVariateSource
    ) -> np.ndarray:
        a, b = self.posterior_from_counts(X_k, prior)
        return np.clip(source.beta(a, b), PROB_EPS, 1.0 - PROB_EPS)

    def pack(self, components: list) -> BernoulliParameters:
        return BernoulliParameters(np.vstack(components))


class GaussianModel(ComponentModel):
    """Normal-Inverse-Wishart components for real-valued data."""

    prior_type = NIWPrior

    def default_prior(self, dim: int) -> NIWPrior:
        return NIWPrior.default(dim)

    @staticmethod
    def posterior_from_moments(X_k: np.ndarray, prior: NIWPrior) -> NIWPrior:
        """
        Posterior NIW parameters from the sample mean and scatter.

        An empty cluster returns the prior itself (mun = mu0, Gamman = Gamma0).

        Args:
            X_k: Rows assigned to the cluster, shape (n_k, d); may be empty.
            prior: NIW prior of the cluster.

        Returns:
            NIWPrior holding (kn, vn, mun, Gamman).
        """
        X_k = np.asarray(X_k, dtype=float).reshape(-1, prior.dim)
        n_k = len(X_k)
        if n_k == 0:
            return prior

        kn = prior.k0 + n_k
        vn = prior.v0 + n_k
        xbar = X_k.mean(axis=0)
        centered = X_k - xbar
        scatter = centered.T @ centered
        dev = xbar - prior.mu0
        mun = (prior.k0 / kn) * prior.mu0 + (n_k / kn) * xbar
        gamman = prior.gamma0 + scatter + (prior.k0 * n_k / kn) * np.outer(dev, dev)
        gamman = 0.5 * (gamman + gamman.T)
        return NIWPrior(k0=kn, v0=vn, mu0=mun, gamma0=gamman)

    @staticmethod
    def sample_niw(
        posterior: NIWPrior, source: RandomVariateSource
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Draw (mu, Sigma) from a Normal-Inverse-Wishart distribution."""
        sigma = source.inverse_wishart(posterior.v0, posterior.gamma0)
        mu = source.multivariate_normal(posterior.mu0, sigma / posterior.k0)
        return mu, sigma

    def sample_component(
        self, X_k: np.ndarray, prior: NIWPrior, source: RandomVariateSource
    ) -> Tuple[np.ndarray, np.ndarray]:
        return self.sample_niw(self.posterior_from_moments(X_k, prior), source)

    def pack(self, components: list) -> GaussianParameters:
        means = np.vstack([c[0] for c in components])
        covariances = np.stack([c[1] for c in components])
        return GaussianParameters(means, covariances)

    def draw_posterior(
        self, X: np.ndarray, prior: NIWPrior, n_draws: int, seed: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Draw from the NIW posterior of a single Gaussian data set.

        Args:
            X: Data matrix, shape (n, d).
            prior: NIW prior.
            n_draws: Number of posterior draws.
            seed: Random seed.

        Returns:
            Tuple (mus, sigmas) of shapes (n_draws, d) and (n_draws, d, d).
        """
        X = self.validate(X)
        posterior = self.posterior_from_moments(X, prior)
        source = RandomVariateSource.from_seed(seed)
        draws = [self.sample_niw(posterior, source) for _ in range(n_draws)]
        return np.vstack([d[0] for d in draws]), np.stack([d[1] for d in draws])
