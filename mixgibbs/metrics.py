# pylint: disable=too-many-locals

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
from numba import jit

from mixgibbs.state import Trace


def acf_1d(x: np.ndarray, max_lag: int = 100):
    """
    Compute autocorrelation function for a 1D time series.

    Uses FFT to compute the autocorrelation function efficiently.

    Args:
        x: Input time series.
        max_lag: Maximum lag to compute autocorrelation for.

    Returns:
        Autocorrelation values from lag 0 to max_lag (fewer for short series).
    """
    x = np.asarray(x, dtype=float)
    n = len(x)
    x = x - x.mean()
    n_fft = 2 ** int(np.ceil(np.log2(2 * n - 1)))
    x_padded = np.zeros(n_fft)
    x_padded[:n] = x

    X = np.fft.fft(x_padded)
    ac = np.fft.ifft(X * np.conj(X)).real[: min(max_lag, n - 1) + 1]

    if ac[0] == 0:
        # constant series
        out = np.zeros_like(ac)
        out[0] = 1.0
        return out
    return ac / ac[0]


def ess_multichain(chains: List[np.ndarray], max_lag: int = 100):
    """
    Compute effective sample size for multiple chains.

    Sums the mean autocorrelation of the chains in pairs of lags until a
    pair turns negative (Geyer's initial positive sequence).

    Args:
        chains: List of MCMC chains for the same scalar quantity.
        max_lag: Maximum lag to use in autocorrelation computation.

    Returns:
        Effective sample size, at most the total number of draws.
    """
    m = len(chains)
    n = min(len(c) for c in chains)
    chains_array = np.array([np.asarray(c, dtype=float)[:n] for c in chains])

    mean_acf = np.array([acf_1d(c, max_lag) for c in chains_array]).mean(axis=0)

    rho_sum = 0.0
    for k in range(1, len(mean_acf) - 1, 2):
        pair = mean_acf[k] + mean_acf[k + 1]
        if pair < 0:
            break
        rho_sum += pair

    ess = m * n / (1 + 2 * rho_sum)
    return min(ess, m * n)


@jit(nopython=True)
def _rhat_kernel(draws: np.ndarray):
    """Potential scale reduction of an (m, n) array of m chains."""
    m, n = draws.shape
    means = np.empty(m)
    variances = np.empty(m)
    for i in range(m):
        mean = draws[i].sum() / n
        squares = 0.0
        for value in draws[i]:
            squares += (value - mean) * (value - mean)
        means[i] = mean
        variances[i] = squares / (n - 1)

    within = variances.mean()
    # unbiased variance of the chain means, times n
    between = n * means.var() * m / (m - 1)
    pooled = (n - 1) / n * within + between / n
    return np.sqrt(pooled / within)


def rhat_scalar(chains: List[np.ndarray]):
    """
    Compute R-hat convergence diagnostic for multiple chains.

    Values close to 1 indicate good convergence. Needs at least two chains
    of at least two draws each.

    Args:
        chains: List of chains for the same scalar quantity.

    Returns:
        R-hat value.
    """
    if len(chains) < 2:
        raise ValueError("R-hat needs at least two chains")
    n = min(len(c) for c in chains)
    if n < 2:
        raise ValueError("R-hat needs at least two draws per chain")
    chains_array = np.array([np.asarray(c, dtype=float)[:n] for c in chains])
    if np.all(chains_array.var(axis=1) == 0):
        # no within-chain variance
        return float("nan")

    return float(_rhat_kernel(chains_array))


def compute_credible_intervals(pooled: np.ndarray, alpha: float = 0.05):
    """
    Compute equal-tailed credible intervals from pooled posterior samples.

    Args:
        pooled: Pooled posterior samples, draws along the first axis.
        alpha: Significance level (default 0.05 for 95% CI).

    Returns:
        Tuple of (lower, upper) bounds of the credible interval.
    """
    lower_percentile = 100 * alpha / 2
    upper_percentile = 100 * (1 - alpha / 2)

    percentiles = np.percentile(pooled, [lower_percentile, upper_percentile], axis=0)

    return percentiles[0], percentiles[1]


def co_clustering(trace: Trace) -> np.ndarray:
    """
    Fraction of snapshots in which each pair of observations shares a cluster.

    Unlike per-cluster summaries this does not depend on how the clusters
    are labeled.

    Returns:
        Symmetric (n, n) matrix with ones on the diagonal.
    """
    labels = trace.labels()
    n = labels.shape[1]
    out = np.zeros((n, n))
    for z in labels:
        out += z[:, None] == z[None, :]
    return out / len(labels)


def summarize_traces(
    traces: List[Trace], alpha: float = 0.05
) -> Dict[str, Dict[str, Union[list, float]]]:
    """
    Posterior summaries of the weights and component locations.

    Posterior means and credible intervals pool every chain; R-hat is only
    reported when there are at least two chains. Components are summarized
    as labeled, so label switching between chains inflates R-hat.

    Args:
        traces: One trace per chain.
        alpha: Significance level of the credible intervals.

    Returns:
        Dictionary keyed by quantity ("weights", "locations", "log_likelihood")
        with "mean", "ci_lower", "ci_upper", "ess" and optionally "rhat".
    """
    if not traces or any(len(t) == 0 for t in traces):
        raise ValueError("every trace needs at least one snapshot to summarize")
    quantities = {
        "weights": [t.weights() for t in traces],
        "locations": [t.means().reshape(len(t), -1) for t in traces],
        "log_likelihood": [t.log_likelihoods()[:, None] for t in traces],
    }
    summary = {}
    for name, chains in quantities.items():
        pooled = np.vstack(chains)
        ci_lower, ci_upper = compute_credible_intervals(pooled, alpha)
        n_columns = pooled.shape[1]
        entry = {
            "mean": pooled.mean(axis=0).tolist(),
            "ci_lower": np.atleast_1d(ci_lower).tolist(),
            "ci_upper": np.atleast_1d(ci_upper).tolist(),
            "ess": [ess_multichain([c[:, j] for c in chains]) for j in range(n_columns)],
        }
        if len(chains) > 1 and min(len(c) for c in chains) > 1:
            entry["rhat"] = [
                float(rhat_scalar([c[:, j] for c in chains])) for j in range(n_columns)
            ]
        summary[name] = entry
    return summary


def save_summary(
    summary: dict,
    path: Union[str, Path],
    runtimes: Optional[List[float]] = None,
) -> Path:
    """
    Write a summary produced by summarize_traces as JSON.

    Args:
        summary: Summary dictionary.
        path: Output file; parent directories are created.
        runtimes: Runtime of each chain (optional).

    Returns:
        Path of the written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dict(summary)
    if runtimes is not None:
        payload["runtimes"] = list(runtimes)
        payload["mean_runtime"] = float(np.mean(runtimes))
        payload["std_runtime"] = float(np.std(runtimes))
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path


def label_agreement(labels: np.ndarray, truth: np.ndarray) -> float:
    """
    Fraction of pairs on which two clusterings agree (Rand index).

    Args:
        labels: Estimated labels.
        truth: Reference labels.

    Returns:
        Rand index in [0, 1].
    """
    labels = np.asarray(labels)
    truth = np.asarray(truth)
    same_a = labels[:, None] == labels[None, :]
    same_b = truth[:, None] == truth[None, :]
    n = len(labels)
    iu = np.triu_indices(n, k=1)
    return float(np.mean(same_a[iu] == same_b[iu]))

