from mixgibbs.allocation import AllocationSampler, allocate_observation, log_likelihood
from mixgibbs.conjugate import BernoulliModel, BetaPrior, GaussianModel, NIWPrior
from mixgibbs.exceptions import (
    ComponentDrawError,
    EmptyClusterError,
    InvalidParameterError,
    MixtureError,
    SweepCancelled,
    WorkerFailure,
)
from mixgibbs.parallel import ParallelMap
from mixgibbs.samplers import (
    GibbsSampler,
    SamplerConfig,
    SamplerStatus,
    run_chain,
    run_parallel_chains,
)
from mixgibbs.state import BernoulliParameters, GaussianParameters, Snapshot, Trace
from mixgibbs.variates import RandomVariateSource
from mixgibbs.weights import DirichletWeights, SequentialBetaWeights

__version__ = "0.1.0"
