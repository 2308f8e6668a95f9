"""Exception types raised by the GWR sampler and the consensus pipeline."""

from typing import Optional


class BGWRError(Exception):
    """Base class for all pipeline errors."""


class ModelSpecError(BGWRError):
    """Constants, data, or initial values do not fit together.

    Raised before any sampling starts.
    """


class NumericalInstabilityError(BGWRError):
    """A non-finite log-density was produced while sampling a chain.

    chain and iteration are None when the engine does not report where the
    failure happened.
    """

    def __init__(self, message: str, chain: Optional[int], iteration: Optional[int]):
        if chain is None or iteration is None:
            location = "chain and iteration unknown"
        else:
            location = f"chain {chain}, iteration {iteration}"
        super().__init__(f"{message} ({location})")
        self.chain = chain
        self.iteration = iteration


class FitFailure(BGWRError):
    """The clustering oracle could not produce a partition for one draw."""


class EnsembleTooSparseError(BGWRError):
    """Too many draws were dropped for a consensus partition to be meaningful."""

    def __init__(self, n_success: int, n_total: int, min_fraction: float):
        super().__init__(
            f"only {n_success}/{n_total} draws clustered successfully "
            f"(minimum fraction {min_fraction:.2f})"
        )
        self.n_success = n_success
        self.n_total = n_total
        self.min_fraction = min_fraction


class LengthMismatchError(BGWRError):
    """Two partitions compared by the scorer cover different numbers of units."""


class RunCancelled(BGWRError):
    """A chain or oracle batch was stopped through its cancel event."""
