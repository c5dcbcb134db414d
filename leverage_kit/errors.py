"""Exception hierarchy for plan construction, reads and execution."""
from __future__ import annotations


class LeverageKitError(Exception):
    """Base class for every error raised by this package."""


class NotInitialized(LeverageKitError):
    """A session or adapter was used before ``initialize()``."""


class UnknownAsset(LeverageKitError):
    """An asset symbol or coin type could not be resolved."""


class UnknownReserve(LeverageKitError):
    """The lending market has no reserve (or pool) for a coin type."""


class NoObligation(LeverageKitError):
    """The operation needs an existing position and the account has none."""


class NothingToDeleverage(LeverageKitError):
    """The position carries no debt."""


class NoRoute(LeverageKitError):
    """The swap router returned no quote for a pair."""


class InsufficientCollateral(LeverageKitError):
    """Computed proceeds cannot cover a flash-loan repayment."""


class PlanError(LeverageKitError):
    """A transaction plan references a handle it cannot use."""


class PriceUnavailable(LeverageKitError):
    """The price oracle has no price for an asset."""


class SimulationFailed(LeverageKitError):
    """A dry run reported failure; the chain's reason is kept verbatim."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExecutionFailed(LeverageKitError):
    """A submitted transaction failed or could not be submitted."""

    def __init__(self, reason: str, digest: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.digest = digest


class InvalidParameters(LeverageKitError, ValueError):
    """A caller-supplied amount, multiplier or name is unusable."""


class UnsupportedPosition(LeverageKitError):
    """The position has a shape the composer cannot close in one plan."""
