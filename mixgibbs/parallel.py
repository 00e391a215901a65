from typing import Callable, Iterable, List, Optional

from joblib import Parallel, delayed

from mixgibbs.exceptions import InvalidParameterError, SweepCancelled, WorkerFailure

BACKENDS = ("threading", "loky", "multiprocessing", "sequential")


def _guarded(fn: Callable, index: int, item, should_stop: Optional[Callable]):
    """
    Run fn on one item, wrapping its errors with the item position.

    Args:
        fn: Per-item function, called as ``fn(index, item)``.
        index: Position of the item in the input.
        item: Item to process.
        should_stop: Optional callable; when it returns True the item is not
            processed and SweepCancelled is raised.

    Returns:
        The result of ``fn(index, item)``.
    """
    if should_stop is not None and should_stop():
        raise SweepCancelled()
    try:
        return fn(index, item)
    except (SweepCancelled, WorkerFailure):
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise WorkerFailure(index, exc) from exc


class ParallelMap:
    """
    Ordered map over a fixed-size joblib worker pool.

    Results come back in input order whatever order the workers finish in.
    An error raised for any item aborts the map and surfaces as one
    WorkerFailure carrying the item position and the original error.

    Args:
        n_workers: Number of workers; 1 runs in the calling thread.
        backend: joblib backend name. The threading backend shares the
            read-only inputs without copying them.
        batch_size: Items sent to a worker at a time ("auto" lets joblib
            choose).
    """

    def __init__(self, n_workers: int = 1, backend: str = "threading", batch_size="auto"):
        if n_workers < 1:
            raise InvalidParameterError(f"n_workers must be at least 1, got {n_workers}")
        if backend not in BACKENDS:
            raise InvalidParameterError(
                f"backend must be one of {BACKENDS}, got {backend!r}"
            )
        self.n_workers = n_workers
        self.backend = backend
        self.batch_size = batch_size

    def map(
        self,
        items: Iterable,
        fn: Callable,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List:
        """
        Apply ``fn(index, item)`` to every item.

        Args:
            items: Items to process.
            fn: Per-item function; must not mutate shared inputs.
            should_stop: Optional cancellation check run before each item.

        Returns:
            List of results in input order.
        """
        items = list(items)
        if self.n_workers == 1 or self.backend == "sequential":
            return [_guarded(fn, i, item, should_stop) for i, item in enumerate(items)]
        return Parallel(
            n_jobs=self.n_workers,
            backend=self.backend,
            batch_size=self.batch_size,
            verbose=0,
        )(delayed(_guarded)(fn, i, item, should_stop) for i, item in enumerate(items))

    def __repr__(self):
        return f"ParallelMap(n_workers={self.n_workers}, backend={self.backend!r})"
