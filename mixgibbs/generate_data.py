from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np


def _check_weights(weights, K: int) -> np.ndarray:
    weights = np.asarray(weights, dtype=float)
    if len(weights) != K:
        raise ValueError(f"expected {K} weights, got {len(weights)}")
    if not np.isclose(weights.sum(), 1.0) or np.any(weights < 0):
        raise ValueError("The weights must be non-negative and sum to 1")
    return weights


def generate_binary_data(
    n: int, probs: List[List[float]], weights: List[float], seed: int = 0
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate synthetic data from a mixture of independent Bernoulli variables.

    Args:
        n: Number of observations.
        probs: Success probabilities, one row of length p per component.
        weights: Mixture weights (must sum to 1).
        seed: Random seed.

    Returns:
        Tuple (X, labels) with X of shape (n, p) holding 0/1 values.
    """
    probs = np.asarray(probs, dtype=float)
    if probs.ndim != 2 or np.any(probs < 0) or np.any(probs > 1):
        raise ValueError("probs must be a K x p matrix of probabilities")
    weights = _check_weights(weights, probs.shape[0])

    rng = np.random.default_rng(seed)
    labels = rng.choice(len(weights), size=n, p=weights)
    X = (rng.random((n, probs.shape[1])) < probs[labels]).astype(int)
    return X, labels


def generate_gaussian_data(
    n: int,
    means: List[List[float]],
    covariances: List[np.ndarray],
    weights: List[float],
    seed: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate synthetic data from a mixture of multivariate Gaussians.

    Args:
        n: Number of observations.
        means: Component means, shape (K, d).
        covariances: Component covariance matrices, shape (K, d, d).
        weights: Mixture weights (must sum to 1).
        seed: Random seed.

    Returns:
        Tuple (X, labels) with X of shape (n, d).
    """
    means = np.asarray(means, dtype=float)
    covariances = np.asarray(covariances, dtype=float)
    if not means.shape[0] == covariances.shape[0]:
        raise ValueError("The lengths of means and covariances must be equal")
    weights = _check_weights(weights, means.shape[0])

    rng = np.random.default_rng(seed)
    labels = rng.choice(len(weights), size=n, p=weights)
    X = np.empty((n, means.shape[1]))
    for k in range(len(weights)):
        idx = labels == k
        X[idx] = rng.multivariate_normal(means[k], covariances[k], size=idx.sum())
    return X, labels


def mark_known(
    labels: np.ndarray, fraction: float, seed: int = 0
) -> np.ndarray:
    """
    Pick a random subset of observations whose labels are treated as known.

    Args:
        labels: True labels.
        fraction: Fraction of observations to mark, in [0, 1].
        seed: Random seed.

    Returns:
        Boolean mask of known observations.
    """
    if not 0 <= fraction <= 1:
        raise ValueError(f"fraction must lie in [0, 1], got {fraction}")
    rng = np.random.default_rng(seed)
    n = len(labels)
    known = np.zeros(n, dtype=bool)
    known[rng.choice(n, size=int(round(fraction * n)), replace=False)] = True
    return known


def save_data(
    directory: Union[str, Path],
    X: np.ndarray,
    labels: np.ndarray,
    known: Optional[np.ndarray] = None,
) -> Path:
    """
    Save a data set as ``data.npy``, ``labels.npy`` and optionally ``known.npy``.

    Returns:
        The directory the files were written to.
    """
    data_dir = Path(directory)
    data_dir.mkdir(parents=True, exist_ok=True)
    np.save(data_dir / "data.npy", X)
    np.save(data_dir / "labels.npy", labels)
    if known is not None:
        np.save(data_dir / "known.npy", known)
    return data_dir
