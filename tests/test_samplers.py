"""Tests for the Gibbs sweep loop."""

import numpy as np
import pytest

from mixgibbs.conjugate import BernoulliModel, BetaPrior, GaussianModel, NIWPrior
from mixgibbs.exceptions import (
    ComponentDrawError,
    EmptyClusterError,
    InvalidParameterError,
    WorkerFailure,
)
from mixgibbs.generate_data import generate_gaussian_data, mark_known
from mixgibbs.samplers import (
    PARAMETER_STREAM,
    GibbsSampler,
    SamplerConfig,
    SamplerStatus,
    run_chain,
    run_parallel_chains,
)
from mixgibbs.state import BernoulliParameters
from mixgibbs.variates import RandomVariateSource
from mixgibbs.weights import DirichletWeights, SequentialBetaWeights

BINARY_X = np.array(
    [
        [1, 0, 1],
        [1, 1, 1],
        [1, 0, 0],
        [0, 1, 0],
        [0, 1, 1],
        [0, 0, 0],
    ]
)
BINARY_LABELS = np.array([0, 0, 0, 1, 1, 1])


@pytest.fixture(name="gaussian_data")
def fixture_gaussian_data():
    X, labels = generate_gaussian_data(
        60,
        [[-4.0, 0.0], [0.0, 4.0], [4.0, 0.0]],
        [np.eye(2)] * 3,
        [0.3, 0.3, 0.4],
        seed=0,
    )
    return X, labels


class TestFixedLabelScenario:
    """K=2, p=3 Bernoulli model with every label known."""

    def run(self, n_sweeps, seed=11):
        sampler = GibbsSampler(
            "bernoulli",
            2,
            priors=BetaPrior.uniform(3),
            weights=DirichletWeights(1.0),
            config=SamplerConfig(n_sweeps=n_sweeps, seed=seed),
        )
        return sampler.run(BINARY_X, BINARY_LABELS, known=np.ones(6, dtype=bool))

    def test_first_sweep_uses_cluster_statistics_only(self):
        """The first draw comes from the Beta posterior of each cluster's own rows."""
        trace = self.run(1)
        assert len(trace) == 1

        source = RandomVariateSource.from_seed(11, 0, PARAMETER_STREAM)
        # cluster 0: successes [3, 1, 2] of 3; cluster 1: successes [0, 2, 1] of 3
        a0, b0 = np.array([4.0, 2.0, 3.0]), np.array([1.0, 3.0, 2.0])
        a1, b1 = np.array([1.0, 3.0, 2.0]), np.array([4.0, 2.0, 3.0])
        expected0 = source.beta(a0, b0)
        expected1 = source.beta(a1, b1)
        assert np.allclose(trace[0].parameters.probs[0], expected0)
        assert np.allclose(trace[0].parameters.probs[1], expected1)

    def test_parameters_average_to_posterior_mean(self):
        """Across sweeps the draws average to the hand-computed posterior mean."""
        trace = self.run(1000)
        probs = trace.means()
        assert np.allclose(probs[:, 0].mean(axis=0), [0.8, 0.4, 0.6], atol=0.04)
        assert np.allclose(probs[:, 1].mean(axis=0), [0.2, 0.6, 0.4], atol=0.04)

    def test_labels_never_change(self):
        """Fixed labels are carried through every sweep."""
        trace = self.run(20)
        assert np.all(trace.labels() == BINARY_LABELS)
        assert np.all(trace.counts() == [3, 3])


def test_invariants_hold_every_sweep(gaussian_data):
    """Weights, counts and covariances satisfy their invariants."""
    X, _ = gaussian_data
    sampler = GibbsSampler(
        "gaussian", 3, config=SamplerConfig(n_sweeps=25, seed=3, return_entropy=True)
    )
    trace = sampler.run(X)
    assert sampler.status is SamplerStatus.COMPLETED
    assert len(trace) == 25
    assert trace.seed == 3
    for snapshot in trace:
        assert np.all(snapshot.weights >= 0)
        assert abs(snapshot.weights.sum() - 1.0) < 1e-9
        assert snapshot.counts.sum() == len(X)
        assert np.all((snapshot.labels >= 0) & (snapshot.labels < 3))
        assert np.isfinite(snapshot.log_likelihood)
        assert snapshot.entropy.shape == (len(X),)
        for sigma in snapshot.parameters.covariances:
            assert np.allclose(sigma, sigma.T)
            assert np.all(np.linalg.eigvalsh(sigma) >= 0)


def test_bernoulli_probabilities_inside_unit_interval():
    """Bernoulli parameters stay strictly inside (0, 1) over a run."""
    rng = np.random.default_rng(0)
    X = (rng.random((40, 5)) < 0.5).astype(int)
    trace = GibbsSampler("bernoulli", 3, config=SamplerConfig(n_sweeps=30, seed=1)).run(X)
    for snapshot in trace:
        assert isinstance(snapshot.parameters, BernoulliParameters)
        assert np.all(snapshot.parameters.probs > 0)
        assert np.all(snapshot.parameters.probs < 1)


def test_semi_supervised_known_labels_fixed(gaussian_data):
    """Known observations keep their label while the others move."""
    X, truth = gaussian_data
    known = mark_known(truth, 0.3, seed=1)
    rng = np.random.default_rng(2)
    initial = np.where(known, truth, rng.integers(0, 3, len(X)))
    priors = [NIWPrior.from_data(X[known & (truth == k)], k0=1.0) for k in range(3)]
    trace = GibbsSampler(
        GaussianModel(), 3, priors=priors, config=SamplerConfig(n_sweeps=30, seed=4)
    ).run(X, initial, known)
    labels = trace.labels()
    assert np.all(labels[:, known] == truth[known])
    # the unlabeled rows recover their component once the chain settles
    assert np.mean(labels[-1, ~known] == truth[~known]) > 0.9


def test_semi_supervised_sequential_beta_weights(gaussian_data):
    """The sequential-beta policy keeps the third weight at 1/3."""
    X, truth = gaussian_data
    with pytest.warns(UserWarning):
        weights = SequentialBetaWeights()
    trace = GibbsSampler(
        "gaussian", 3, weights=weights, config=SamplerConfig(n_sweeps=5, seed=0)
    ).run(X, truth, known=np.ones(len(X), dtype=bool))
    assert np.allclose(trace.weights()[:, 2], 1.0 / 3.0)
    assert np.allclose(trace.weights().sum(axis=1), 1.0)


def test_same_seed_same_trace(gaussian_data):
    """Two runs with the same seed produce identical traces."""
    X, _ = gaussian_data

    def run(n_workers):
        config = SamplerConfig(n_sweeps=10, seed=123, n_workers=n_workers)
        return GibbsSampler("gaussian", 3, config=config).run(X)

    first, second, threaded = run(1), run(1), run(3)
    for a, b, c in zip(first, second, threaded):
        assert np.array_equal(a.labels, b.labels)
        assert np.array_equal(a.weights, b.weights)
        assert np.array_equal(a.parameters.means, b.parameters.means)
        assert np.array_equal(a.labels, c.labels)
        assert np.array_equal(a.weights, c.weights)


def test_different_seeds_differ(gaussian_data):
    """Different seeds give different draws."""
    X, _ = gaussian_data
    a = GibbsSampler("gaussian", 3, config=SamplerConfig(n_sweeps=2, seed=1)).run(X)
    b = GibbsSampler("gaussian", 3, config=SamplerConfig(n_sweeps=2, seed=2)).run(X)
    assert not np.array_equal(a.weights(), b.weights())


class TestEmptyCluster:
    """All observations pinned to K-1 of K clusters."""

    X, truth = generate_gaussian_data(
        20, [[-3.0], [3.0]], [np.eye(1)] * 2, [0.5, 0.5], seed=5
    )
    known = np.ones(20, dtype=bool)

    def test_raise_policy(self):
        """With no fallback the sweep fails with EmptyClusterError."""
        sampler = GibbsSampler(
            "gaussian", 3, config=SamplerConfig(n_sweeps=5, seed=0, empty_policy="raise")
        )
        with pytest.raises(EmptyClusterError) as info:
            sampler.run(self.X, self.truth, self.known)
        assert info.value.cluster == 2
        assert info.value.sweep == 0
        assert sampler.status is SamplerStatus.FAILED
        assert len(sampler.trace) == 0

    def test_prior_fallback(self):
        """With the prior fallback the empty cluster is drawn from its prior."""
        prior = NIWPrior(k0=1.0, v0=3.0, mu0=[50.0], gamma0=[[1.0]])
        sampler = GibbsSampler(
            "gaussian",
            3,
            priors=prior,
            config=SamplerConfig(n_sweeps=200, seed=0, empty_policy="prior"),
        )
        trace = sampler.run(self.X, self.truth, self.known)
        assert len(trace) == 200
        assert np.all(trace.counts()[:, 2] == 0)
        empty_means = trace.means()[:, 2, 0]
        # draws from the prior alone center on mu0
        assert abs(np.median(empty_means) - 50.0) < 1.0


def test_burn_and_thin():
    """Only sweeps after burn-in, every thin-th one, are kept."""
    trace = GibbsSampler(
        "bernoulli", 2, config=SamplerConfig(n_sweeps=10, seed=0, burn=4, thin=3)
    ).run(BINARY_X)
    assert list(trace.sweeps()) == [4, 7]


class CancellingWeights(DirichletWeights):
    """Dirichlet weights that cancel the sampler during a given sweep."""

    def __init__(self, at_call):
        super().__init__(1.0)
        self.at_call = at_call
        self.calls = 0
        self.sampler = None

    def sample(self, counts, source):
        self.calls += 1
        if self.calls == self.at_call:
            self.sampler.cancel()
        return super().sample(counts, source)


def test_cancel_discards_current_sweep():
    """Cancelling keeps committed sweeps and drops the one in progress."""
    weights = CancellingWeights(at_call=4)
    sampler = GibbsSampler(
        "bernoulli", 2, weights=weights, config=SamplerConfig(n_sweeps=10, seed=0)
    )
    weights.sampler = sampler
    trace = sampler.run(BINARY_X)
    assert sampler.status is SamplerStatus.CANCELLED
    assert list(trace.sweeps()) == [0, 1, 2]


class FailingParameters:
    """Bernoulli parameters that cannot evaluate rows full of ones."""

    def __init__(self, inner):
        self.inner = inner

    def log_likelihood(self, x):
        if np.all(np.asarray(x) == 1):
            raise FloatingPointError("cannot evaluate")
        return self.inner.log_likelihood(x)


class FailingModel(BernoulliModel):
    def pack(self, components):
        return FailingParameters(super().pack(components))


@pytest.mark.parametrize("n_workers", [1, 2])
def test_worker_failure_propagates(n_workers):
    """A failing allocation step surfaces as a WorkerFailure with context."""
    sampler = GibbsSampler(
        FailingModel(), 2, config=SamplerConfig(n_sweeps=3, seed=0, n_workers=n_workers)
    )
    with pytest.raises(WorkerFailure) as info:
        sampler.run(BINARY_X, BINARY_LABELS)
    assert info.value.index == 1
    assert info.value.sweep == 0
    assert isinstance(info.value.error, FloatingPointError)
    assert sampler.status is SamplerStatus.FAILED


class BrokenDrawModel(BernoulliModel):
    """Bernoulli model whose draw of one cluster fails at a given call."""

    def __init__(self, at_call):
        self.at_call = at_call
        self.calls = 0

    def sample_component(self, X_k, prior, source):
        self.calls += 1
        if self.calls == self.at_call:
            raise InvalidParameterError("posterior scale is not usable")
        return super().sample_component(X_k, prior, source)


def test_component_draw_failure_reports_cluster_and_sweep():
    """A failing parameter draw names its cluster and the sweep it happened in."""
    # two draws per sweep: call 6 is cluster 1 of sweep 2
    sampler = GibbsSampler(
        BrokenDrawModel(at_call=6), 2, config=SamplerConfig(n_sweeps=5, seed=0)
    )
    with pytest.raises(ComponentDrawError) as info:
        sampler.run(BINARY_X, BINARY_LABELS)
    assert info.value.cluster == 1
    assert info.value.sweep == 2
    assert isinstance(info.value.error, InvalidParameterError)
    assert "cluster 1" in str(info.value) and "sweep 2" in str(info.value)
    assert sampler.status is SamplerStatus.FAILED
    assert list(sampler.trace.sweeps()) == [0, 1]


def test_badly_scaled_gaussian_features():
    """Features on very different scales do not break the Gaussian model."""
    rng = np.random.default_rng(0)
    labels = np.repeat([0, 1], 30)
    # first feature in units of about 1e5, second one separating the clusters
    wide = rng.normal(0.0, 1e5, size=60)
    X = np.column_stack([wide, np.where(labels == 0, -3.0, 3.0) + rng.normal(size=60)])
    sampler = GibbsSampler("gaussian", 2, config=SamplerConfig(n_sweeps=5, seed=0))
    trace = sampler.run(X, labels)
    assert sampler.status is SamplerStatus.COMPLETED
    assert len(trace) == 5
    assert np.all(np.isfinite(trace.log_likelihoods()))
    # the scale of the first feature is recovered
    assert np.all(trace[-1].parameters.covariances[:, 0, 0] > 1e8)


def test_default_prior_follows_the_data_dimension():
    """A sampler without priors can be reused on data of another dimension."""
    rng = np.random.default_rng(1)
    sampler = GibbsSampler("gaussian", 2, config=SamplerConfig(n_sweeps=2, seed=0))
    assert len(sampler.run(rng.normal(size=(20, 2)))) == 2
    trace = sampler.run(rng.normal(size=(20, 3)))
    assert trace.means().shape == (2, 2, 3)
    assert sampler.priors is None


def test_run_chain_and_parallel_chains():
    """Chains run in parallel match the same chains run alone."""
    traces, runtimes = run_parallel_chains(
        BINARY_X, 2, "bernoulli", 7, n_chains=2, backend="threading", n_sweeps=5
    )
    assert len(traces) == 2 and len(runtimes) == 2
    alone, runtime = run_chain(BINARY_X, 2, "bernoulli", 1007, n_sweeps=5)
    assert runtime >= 0
    assert np.array_equal(traces[1].weights(), alone.weights())
    assert not np.array_equal(traces[0].weights(), traces[1].weights())


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_labels": np.array([0, 0, 0, 1, 1, 2])},
        {"initial_labels": np.array([0, 0, 0, 1, 1])},
        {"initial_labels": BINARY_LABELS, "known": np.ones(5, dtype=bool)},
        {"known": np.ones(6, dtype=bool)},
    ],
)
def test_invalid_inputs(kwargs):
    """Labels and masks are checked against the data."""
    sampler = GibbsSampler("bernoulli", 2, config=SamplerConfig(n_sweeps=1, seed=0))
    with pytest.raises(InvalidParameterError):
        sampler.run(BINARY_X, **kwargs)


def test_invalid_configuration():
    """Model names, priors and settings are checked."""
    with pytest.raises(InvalidParameterError):
        GibbsSampler("poisson", 2)
    with pytest.raises(InvalidParameterError):
        SamplerConfig(n_workers=0)
    with pytest.raises(InvalidParameterError):
        SamplerConfig(empty_policy="skip")
    with pytest.raises(InvalidParameterError):
        SamplerConfig(n_sweeps=5, burn=5)
    assert SamplerConfig(n_sweeps=0).n_sweeps == 0
    with pytest.raises(InvalidParameterError):
        GibbsSampler("bernoulli", 2, weights=DirichletWeights([1.0, 1.0, 1.0]))
    sampler = GibbsSampler("bernoulli", 2, priors=BetaPrior.uniform(4))
    with pytest.raises(InvalidParameterError):
        sampler.run(BINARY_X, BINARY_LABELS)
