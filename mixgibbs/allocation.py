# pylint: disable=too-many-arguments

from typing import Callable, Optional, Tuple

import numpy as np
from scipy.special import logsumexp

from mixgibbs.exceptions import InvalidParameterError
from mixgibbs.parallel import ParallelMap
from mixgibbs.state import ComponentParameters
from mixgibbs.variates import RandomVariateSource

# spawn key tag of the per-observation streams
ALLOCATION_STREAM = 2


def assignment_probabilities(
    x: np.ndarray, parameters: ComponentParameters, log_weights: np.ndarray
) -> np.ndarray:
    """
    Posterior probability of each cluster for one observation.

    The log-weights are added to the component log-likelihoods and the
    maximum is subtracted before exponentiating.

    Args:
        x: Observation, shape (p,) or (d,).
        parameters: Current component parameters.
        log_weights: Log of the current mixture weights.

    Returns:
        Normalized probabilities, shape (K,).
    """
    logw = log_weights + parameters.log_likelihood(x)
    top = np.max(logw)
    if not np.isfinite(top):
        raise InvalidParameterError(
            "observation has zero probability under every cluster"
        )
    probs = np.exp(logw - top)
    return probs / probs.sum()


def entropy(probs: np.ndarray) -> float:
    """Entropy -sum p log p, with 0 log 0 taken as 0."""
    probs = probs[probs > 0]
    return float(-np.sum(probs * np.log(probs)))


def allocate_observation(
    x: np.ndarray,
    parameters: ComponentParameters,
    log_weights: np.ndarray,
    source: RandomVariateSource,
) -> Tuple[int, np.ndarray]:
    """
    Draw a new cluster label for one observation.

    Args:
        x: Observation.
        parameters: Current component parameters.
        log_weights: Log of the current mixture weights.
        source: Random variate source for this observation.

    Returns:
        Tuple of (label, probabilities).
    """
    probs = assignment_probabilities(x, parameters, log_weights)
    return source.categorical(probs), probs


def log_likelihood(
    X: np.ndarray, parameters: ComponentParameters, weights: np.ndarray
) -> float:
    """
    Mixture log-likelihood of the data set.

    Args:
        X: Data matrix.
        parameters: Component parameters.
        weights: Mixture weights.

    Returns:
        ``sum_i log sum_k w_k f_k(x_i)``.
    """
    with np.errstate(divide="ignore"):
        log_weights = np.log(weights)
    logw = np.vstack([parameters.log_likelihood(x) for x in X]) + log_weights
    return float(np.sum(logsumexp(logw, axis=1)))


class AllocationSampler:
    """
    Resamples the cluster label of every observation that is not known.

    Each observation draws from its own stream, derived from the run seed,
    the sweep and the observation position, so the labels do not depend on
    how the work is split across workers.

    Args:
        parallel: Worker pool used for the per-observation step.
    """

    def __init__(self, parallel: Optional[ParallelMap] = None):
        self.parallel = parallel if parallel is not None else ParallelMap(1)

    def sample(
        self,
        X: np.ndarray,
        labels: np.ndarray,
        known: np.ndarray,
        parameters: ComponentParameters,
        weights: np.ndarray,
        sweep: int,
        seed: int,
        return_entropy: bool = False,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Draw new labels for one sweep.

        Args:
            X: Data matrix.
            labels: Labels from the previous sweep.
            known: Boolean mask of observations whose label is fixed.
            parameters: Component parameters drawn this sweep.
            weights: Mixture weights drawn this sweep.
            sweep: Sweep index, part of each observation's stream key.
            seed: Run seed.
            return_entropy: Whether to compute the per-observation entropy.
            should_stop: Optional cancellation check.

        Returns:
            Tuple (labels, entropy); entropy is None unless requested and is
            zero for known observations.
        """
        with np.errstate(divide="ignore"):
            log_weights = np.log(weights)

        def step(index: int, x: np.ndarray) -> Tuple[int, float]:
            if known[index]:
                return int(labels[index]), 0.0
            source = RandomVariateSource.from_seed(
                seed, sweep, ALLOCATION_STREAM, index
            )
            label, probs = allocate_observation(x, parameters, log_weights, source)
            return label, entropy(probs) if return_entropy else 0.0

        results = self.parallel.map(X, step, should_stop=should_stop)
        new_labels = np.array([r[0] for r in results], dtype=int)
        if not return_entropy:
            return new_labels, None
        return new_labels, np.array([r[1] for r in results])
