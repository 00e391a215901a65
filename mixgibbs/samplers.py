# pylint: disable=too-many-arguments
# pylint: disable=too-many-locals
# pylint: disable=too-many-instance-attributes

import threading
import time
from dataclasses import dataclass
from enum import Enum
from multiprocessing import cpu_count
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from mixgibbs.allocation import AllocationSampler, log_likelihood
from mixgibbs.conjugate import (
    EMPTY_POLICIES,
    BernoulliModel,
    ComponentModel,
    GaussianModel,
    Prior,
)
from mixgibbs.exceptions import InvalidParameterError, MixtureError, SweepCancelled
from mixgibbs.parallel import BACKENDS, ParallelMap
from mixgibbs.state import Snapshot, Trace
from mixgibbs.variates import RandomVariateSource
from mixgibbs.weights import DirichletWeights, SequentialBetaWeights

# spawn key tags of the single-threaded phases
PARAMETER_STREAM = 0
WEIGHT_STREAM = 1
INIT_STREAM = 3

MODELS = {"bernoulli": BernoulliModel, "gaussian": GaussianModel}

WeightPolicy = Union[DirichletWeights, SequentialBetaWeights]


class SamplerStatus(Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SamplerConfig:
    """
    Settings of a Gibbs run.

    Attributes:
        n_sweeps: Number of sweeps; the run always stops after exactly this many.
        n_workers: Size of the worker pool of the allocation phase.
        backend: joblib backend of the worker pool.
        seed: Run seed; a fresh one is drawn when None and kept in the trace.
        burn: Sweeps run before snapshots start being kept.
        thin: Keep one snapshot every ``thin`` sweeps after burn-in.
        empty_policy: "prior" draws empty clusters from their prior, "raise"
            fails the sweep with EmptyClusterError.
        return_entropy: Record per-observation assignment entropy.
        verbose: Print progress messages.
        loading_bar: Show a progress bar over sweeps.
    """

    n_sweeps: int = 1000
    n_workers: int = 1
    backend: str = "threading"
    seed: Optional[int] = None
    burn: int = 0
    thin: int = 1
    empty_policy: str = "prior"
    return_entropy: bool = False
    verbose: bool = False
    loading_bar: bool = False

    def __post_init__(self):
        if self.n_sweeps < 0:
            raise InvalidParameterError(f"n_sweeps must be >= 0, got {self.n_sweeps}")
        if self.n_workers < 1:
            raise InvalidParameterError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.backend not in BACKENDS:
            raise InvalidParameterError(f"backend must be one of {BACKENDS}")
        if self.burn < 0 or self.thin < 1:
            raise InvalidParameterError("burn must be >= 0 and thin >= 1")
        if 0 < self.n_sweeps <= self.burn:
            raise InvalidParameterError(
                f"burn ({self.burn}) must be smaller than n_sweeps ({self.n_sweeps})"
            )
        if self.empty_policy not in EMPTY_POLICIES:
            raise InvalidParameterError(f"empty_policy must be one of {EMPTY_POLICIES}")

    def keeps(self, sweep: int) -> bool:
        return sweep >= self.burn and (sweep - self.burn) % self.thin == 0


class GibbsSampler:
    """
    Gibbs sampler for a finite mixture with K components.

    Every sweep draws the component parameters from their conjugate posterior
    given the current assignment, then the mixture weights, then a new label
    for every observation whose label is not known, and finally commits a
    snapshot to the trace.

    Args:
        model: Component model ("bernoulli", "gaussian" or a ComponentModel).
        K: Number of clusters.
        priors: One prior shared by every cluster, a list of K priors, or None
            for the model's default prior.
        weights: Mixture weight policy.
        config: Run settings.
    """

    def __init__(
        self,
        model: Union[str, ComponentModel],
        K: int,
        priors: Optional[Union[Prior, Sequence[Prior]]] = None,
        weights: Optional[WeightPolicy] = None,
        config: Optional[SamplerConfig] = None,
    ):
        if isinstance(model, str):
            if model not in MODELS:
                raise InvalidParameterError(
                    f"model must be one of {sorted(MODELS)}, got {model!r}"
                )
            model = MODELS[model]()
        if K < 1:
            raise InvalidParameterError(f"K must be at least 1, got {K}")
        self.model = model
        self.K = K
        self.priors = priors
        self.weights = weights if weights is not None else DirichletWeights()
        self.weights.check(K)
        self.config = config if config is not None else SamplerConfig()
        self.allocator = AllocationSampler(
            ParallelMap(self.config.n_workers, backend=self.config.backend)
        )
        self.status = SamplerStatus.INITIALIZED
        self.trace = Trace()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Ask a running sampler to stop; the sweep in progress is discarded."""
        self._cancel.set()

    def _should_stop(self) -> bool:
        return self._cancel.is_set()

    def _resolve_priors(self, dim: int):
        """Configured priors, or the model's default prior for this dimension."""
        if self.priors is None:
            return self.model.default_prior(dim)
        return self.priors

    def _check_inputs(self, X, initial_labels, known, seed):
        X = self.model.validate(X)
        n, dim = X.shape
        priors = self._resolve_priors(dim)
        if not isinstance(priors, (list, tuple)):
            priors = [priors]
        for prior in priors:
            if prior.dim != dim:
                raise InvalidParameterError(
                    f"prior of dimension {prior.dim} does not match data of dimension {dim}"
                )

        if known is None:
            known = np.zeros(n, dtype=bool)
        known = np.asarray(known, dtype=bool)
        if known.shape != (n,):
            raise InvalidParameterError(f"known must have shape ({n},), got {known.shape}")

        if initial_labels is None:
            if known.any():
                raise InvalidParameterError("known labels need initial_labels")
            rng = RandomVariateSource.from_seed(seed, INIT_STREAM).rng
            initial_labels = rng.integers(0, self.K, n)
        labels = np.asarray(initial_labels)
        if labels.shape != (n,):
            raise InvalidParameterError(
                f"initial_labels must have shape ({n},), got {labels.shape}"
            )
        if not np.issubdtype(labels.dtype, np.integer):
            if not np.all(np.mod(labels, 1) == 0):
                raise InvalidParameterError("initial_labels must be integers")
        labels = labels.astype(int)
        if np.any(labels < 0) or np.any(labels >= self.K):
            raise InvalidParameterError(f"labels must lie in [0, {self.K})")
        return X, labels, known

    def sweep(
        self, X: np.ndarray, labels: np.ndarray, known: np.ndarray, sweep: int, seed: int
    ) -> Snapshot:
        """
        Run one sweep from the given assignment and return its snapshot.

        The snapshot is not committed; ``run`` appends it to the trace.
        """
        stop = self._should_stop
        if stop():
            raise SweepCancelled(sweep)

        parameters = self.model.sample_parameters(
            X,
            labels,
            self.K,
            self._resolve_priors(X.shape[1]),
            RandomVariateSource.from_seed(seed, sweep, PARAMETER_STREAM),
            empty_policy=self.config.empty_policy,
        )

        counts = np.bincount(labels, minlength=self.K)
        weights = self.weights.sample(
            counts, RandomVariateSource.from_seed(seed, sweep, WEIGHT_STREAM)
        )
        if stop():
            raise SweepCancelled(sweep)

        # a threading.Event can only be checked from workers sharing the process
        in_process = self.config.n_workers == 1 or self.config.backend in (
            "threading",
            "sequential",
        )
        new_labels, entropy = self.allocator.sample(
            X,
            labels,
            known,
            parameters,
            weights,
            sweep,
            seed,
            return_entropy=self.config.return_entropy,
            should_stop=stop if in_process else None,
        )
        if stop():
            raise SweepCancelled(sweep)

        new_counts = np.bincount(new_labels, minlength=self.K)
        new_labels.setflags(write=False)
        new_counts.setflags(write=False)
        return Snapshot(
            sweep=sweep,
            parameters=parameters,
            weights=weights,
            labels=new_labels,
            counts=new_counts,
            log_likelihood=log_likelihood(X, parameters, weights),
            entropy=entropy,
        )

    def run(
        self,
        X: np.ndarray,
        initial_labels: Optional[np.ndarray] = None,
        known: Optional[np.ndarray] = None,
    ) -> Trace:
        """
        Run the configured number of sweeps.

        Args:
            X: Data matrix, shape (n, p) binary or (n, d) real.
            initial_labels: Starting labels in [0, K); drawn uniformly from
                the run seed when None.
            known: Boolean mask of observations whose label is fixed.

        Returns:
            The trace of committed snapshots. On cancellation the trace holds
            the sweeps committed so far; on failure the error propagates with
            its sweep index and ``self.trace`` keeps the committed sweeps.
        """
        config = self.config
        seed = config.seed
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)
        X, labels, known = self._check_inputs(X, initial_labels, known, seed)

        self._cancel.clear()
        self.trace = Trace(seed=seed)
        self.status = SamplerStatus.RUNNING
        if config.verbose:
            print(
                f"Running {config.n_sweeps} sweeps (K={self.K}, n={len(X)}, "
                f"{int(known.sum())} known labels, {config.n_workers} workers)…"
            )

        t0 = time.perf_counter()
        sweeps = (
            tqdm(range(config.n_sweeps))
            if (config.verbose or config.loading_bar)
            else range(config.n_sweeps)
        )
        for it in sweeps:
            try:
                snapshot = self.sweep(X, labels, known, it, seed)
            except SweepCancelled:
                self.status = SamplerStatus.CANCELLED
                if config.verbose:
                    print(f"Cancelled during sweep {it}; {len(self.trace)} snapshots kept")
                return self.trace
            except MixtureError as exc:
                self.status = SamplerStatus.FAILED
                exc.sweep = it
                raise
            except Exception:
                self.status = SamplerStatus.FAILED
                raise

            labels = snapshot.labels
            if config.keeps(it):
                self.trace.append(snapshot)

        self.status = SamplerStatus.COMPLETED
        if config.verbose:
            print(f"Done in {time.perf_counter() - t0:.2f}s")
        return self.trace


def run_chain(
    X: np.ndarray,
    K: int,
    model: Union[str, ComponentModel],
    seed: int,
    priors: Optional[Union[Prior, Sequence[Prior]]] = None,
    weights: Optional[WeightPolicy] = None,
    initial_labels: Optional[np.ndarray] = None,
    known: Optional[np.ndarray] = None,
    n_sweeps: int = 1000,
    burn: int = 0,
    thin: int = 1,
    empty_policy: str = "prior",
    n_workers: int = 1,
    verbose: bool = False,
    loading_bar: bool = False,
) -> Tuple[Trace, float]:
    """
    Run a single Gibbs chain.

    Returns:
        Tuple of (trace, runtime) where runtime is the elapsed time in seconds.
    """
    config = SamplerConfig(
        n_sweeps=n_sweeps,
        n_workers=n_workers,
        seed=seed,
        burn=burn,
        thin=thin,
        empty_policy=empty_policy,
        verbose=verbose,
        loading_bar=loading_bar,
    )
    sampler = GibbsSampler(model, K, priors=priors, weights=weights, config=config)
    t0 = time.perf_counter()
    trace = sampler.run(X, initial_labels=initial_labels, known=known)
    return trace, time.perf_counter() - t0


def _run_single_chain(kwargs):
    """Unpack keyword arguments for run_chain (for joblib dispatch)."""
    return run_chain(**kwargs)


def run_parallel_chains(
    X: np.ndarray,
    K: int,
    model: Union[str, ComponentModel],
    base_seed: int,
    n_chains: int = 4,
    backend: str = "loky",
    **chain_kwargs,
) -> Tuple[List[Trace], List[float]]:
    """
    Run independent chains in parallel with joblib.

    Chain ``i`` is seeded with ``base_seed + i * 1000``. Each chain runs its
    allocation phase in a single worker.

    Args:
        X: Data matrix.
        K: Number of clusters.
        model: Component model.
        base_seed: Base seed to generate unique seeds for each chain.
        n_chains: Number of chains to run.
        backend: joblib backend used across chains.
        chain_kwargs: Further arguments of run_chain.

    Returns:
        Tuple of (traces, runtimes), one entry per chain.
    """
    seeds = [base_seed + i * 1000 for i in range(n_chains)]
    if chain_kwargs.get("verbose"):
        print(f"Running {n_chains} chains with joblib (backend: {backend})...")
    results = Parallel(
        n_jobs=min(n_chains, cpu_count()),
        backend=backend,
        verbose=0,
        batch_size=1,
        pre_dispatch="2*n_jobs",
    )(
        delayed(_run_single_chain)(
            dict(chain_kwargs, X=X, K=K, model=model, seed=seed, n_workers=1)
        )
        for seed in seeds
    )
    return [r[0] for r in results], [r[1] for r in results]
