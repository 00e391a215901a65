import numpy as np

from mixgibbs.conjugate import BetaPrior, NIWPrior


def parse_float_list(arg_str):
    """Parse a comma-separated list of floats; None stays None."""
    if arg_str is None:
        return None
    return [float(x) for x in arg_str.split(",")]


def parse_prior_args(arg_str, K, param_name):
    """Parse prior arguments that can be either scalar or vector.

    Args:
        arg_str: String containing comma-separated values or single value
        K: Expected number of values for the vector form
        param_name: Name of the parameter for error messages

    Returns:
        Scalar value or numpy array of size K

    Raises:
        ValueError: If the number of values doesn't match K
    """
    values = parse_float_list(arg_str)
    if values is None:
        return None
    if len(values) == 1:
        return values[0]
    if len(values) == K:
        return np.array(values)
    raise ValueError(
        f"{param_name} must be either scalar or have K={K} values, got {len(values)}"
    )


def add_common_args(subparser):
    """Add common arguments to an argument parser.

    Args:
        subparser: ArgumentParser subparser to add arguments to
    """
    subparser.add_argument(
        "--data", type=str, default="data/example_1", help="Data directory"
    )
    subparser.add_argument(
        "--model",
        type=str,
        choices=["bernoulli", "gaussian"],
        default="gaussian",
        help="Component model",
    )
    subparser.add_argument(
        "--K", type=int, default=2, help="Number of mixture components"
    )
    subparser.add_argument(
        "--verbose", action="store_true", help="Indicates if verbose output is desired"
    )


def add_sampling_args(subparser, n_iter=2000, burn=500):
    """Add sampling-related arguments to an argument parser.

    Args:
        subparser: ArgumentParser subparser to add arguments to
        n_iter: Default number of sweeps
        burn: Default burn-in period
    """
    subparser.add_argument("--n_iter", type=int, default=n_iter, help="Number of sweeps")
    subparser.add_argument("--burn", type=int, default=burn, help="Burn-in period")
    subparser.add_argument("--thin", type=int, default=1, help="Thinning interval")
    subparser.add_argument("--seed", type=int, default=0, help="Random seed")
    subparser.add_argument(
        "--workers", type=int, default=1, help="Workers for the allocation step"
    )
    subparser.add_argument(
        "--empty_policy",
        type=str,
        choices=["prior", "raise"],
        default="prior",
        help="What to do when a cluster loses all its members",
    )
    subparser.add_argument(
        "--loading_bar", action="store_true", help="Show a progress bar"
    )


def add_prior_args(subparser):
    """Add prior parameter arguments to an argument parser.

    Args:
        subparser: ArgumentParser subparser to add arguments to
    """
    subparser.add_argument(
        "--alpha",
        type=str,
        default="1.0",
        help="Dirichlet concentration (scalar or comma-separated values)",
    )
    subparser.add_argument(
        "--sequential_beta",
        action="store_true",
        help="Use the sequential-beta weights (K=3 only) instead of the Dirichlet",
    )
    subparser.add_argument(
        "--a0", type=str, default="1.0", help="Beta prior pseudo-successes"
    )
    subparser.add_argument(
        "--b0", type=str, default="1.0", help="Beta prior pseudo-failures"
    )
    subparser.add_argument("--k0", type=float, default=0.01, help="NIW mean scaling")
    subparser.add_argument(
        "--v0", type=float, default=None, help="NIW degrees of freedom (default d + 2)"
    )
    subparser.add_argument(
        "--mu0", type=str, default="0.0", help="NIW prior mean (scalar or d values)"
    )
    subparser.add_argument(
        "--gamma0", type=float, default=1.0, help="NIW scale (multiple of identity)"
    )


def add_chain_args(subparser):
    """Add chain-related arguments to an argument parser.

    Args:
        subparser: ArgumentParser subparser to add arguments to
    """
    subparser.add_argument("--chains", type=int, default=4, help="Number of chains")
    subparser.add_argument(
        "--output", type=str, default=None, help="Save the summary as JSON here"
    )


def add_run_args(subparser):
    """Add all arguments for the run command.

    Args:
        subparser: ArgumentParser subparser to add arguments to
    """
    add_common_args(subparser)
    add_sampling_args(subparser)
    add_chain_args(subparser)
    add_prior_args(subparser)


def add_generate_args(subparser):
    """Add all arguments for the generate command.

    Args:
        subparser: ArgumentParser subparser to add arguments to
    """
    add_common_args(subparser)
    subparser.add_argument("--n", type=int, default=600, help="Number of observations")
    subparser.add_argument(
        "--dim", type=int, default=2, help="Number of variables / dimensions"
    )
    subparser.add_argument("--seed", type=int, default=0, help="Random seed")
    subparser.add_argument(
        "--known_fraction",
        type=float,
        default=0.0,
        help="Fraction of observations whose labels are saved as known",
    )


def build_prior(args, dim):
    """Build the prior of the selected model from command line args.

    Args:
        args: Parsed command line arguments
        dim: Number of columns of the data

    Returns:
        BetaPrior or NIWPrior shared by all clusters
    """
    if args.model == "bernoulli":
        a0 = parse_prior_args(args.a0, dim, "a0")
        b0 = parse_prior_args(args.b0, dim, "b0")
        return BetaPrior(np.broadcast_to(a0, dim), np.broadcast_to(b0, dim))

    mu0 = parse_prior_args(args.mu0, dim, "mu0")
    v0 = args.v0 if args.v0 is not None else dim + 2.0
    return NIWPrior(
        k0=args.k0,
        v0=v0,
        mu0=np.broadcast_to(mu0, dim),
        gamma0=args.gamma0 * np.eye(dim),
    )


def print_parameter_summary(name, entry):
    """Print formatted parameter summary statistics.

    Args:
        name: Name of the quantity (e.g., "weights")
        entry: Dictionary with mean, ci_lower, ci_upper, ess and optional rhat
    """
    print(f"Posterior mean {name:<10}:", np.round(entry["mean"], 4))
    print(f"95% CI lower {name:<12}:", np.round(entry["ci_lower"], 4))
    print(f"95% CI upper {name:<12}:", np.round(entry["ci_upper"], 4))
    if "rhat" in entry:
        print(f"R‑hat ({name})", np.round(entry["rhat"], 3))
    print(f"ESS  ({name})", np.round(entry["ess"], 1))


def print_runtime_summary(times):
    """Print runtime summary.

    Args:
        times: List of runtime values
    """
    print(f"\nMean runtime / chain: {np.mean(times):.2f}s")
