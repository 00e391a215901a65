from typing import Optional


class MixtureError(Exception):
    """
    Base class for errors raised by the mixture samplers.

    Attributes:
        sweep: Sweep during which the error was raised, set by the sampler.
    """

    sweep: Optional[int] = None


class InvalidParameterError(MixtureError, ValueError):
    """Raised when distribution parameters or sampler inputs are malformed."""


class EmptyClusterError(MixtureError):
    """
    Raised when a cluster has no members and no fallback policy is configured.

    Attributes:
        cluster: Index of the empty cluster.
        sweep: Sweep during which the cluster was found empty, if known.
    """

    def __init__(self, cluster: int, sweep: Optional[int] = None):
        super().__init__(cluster, sweep)
        self.cluster = cluster
        self.sweep = sweep

    def __str__(self):
        where = "" if self.sweep is None else f" at sweep {self.sweep}"
        return f"cluster {self.cluster} has no members{where}"


class ComponentDrawError(MixtureError):
    """
    Raised when the parameters of one cluster cannot be drawn.

    Attributes:
        cluster: Index of the cluster whose draw failed.
        error: The original exception.
        sweep: Sweep during which the failure happened, if known.
    """

    def __init__(self, cluster: int, error: BaseException, sweep: Optional[int] = None):
        super().__init__(cluster, error, sweep)
        self.cluster = cluster
        self.error = error
        self.sweep = sweep

    def __str__(self):
        where = "" if self.sweep is None else f" at sweep {self.sweep}"
        return (
            f"drawing cluster {self.cluster} failed{where}: "
            f"{type(self.error).__name__}: {self.error}"
        )


class WorkerFailure(MixtureError):
    """
    Raised when the per-observation step fails inside the worker pool.

    Attributes:
        index: Position of the observation whose computation failed.
        error: The original exception.
        sweep: Sweep during which the failure happened, if known.
    """

    def __init__(self, index: int, error: BaseException, sweep: Optional[int] = None):
        super().__init__(index, error, sweep)
        self.index = index
        self.error = error
        self.sweep = sweep

    def __str__(self):
        where = "" if self.sweep is None else f" at sweep {self.sweep}"
        return (
            f"observation {self.index} failed{where}: "
            f"{type(self.error).__name__}: {self.error}"
        )


class SweepCancelled(MixtureError):
    """Raised when a cancellation request interrupts a sweep."""

    def __init__(self, sweep: Optional[int] = None):
        super().__init__(sweep)
        self.sweep = sweep

    def __str__(self):
        if self.sweep is None:
            return "sweep cancelled"
        return f"sweep {self.sweep} cancelled"
