"""Composite transaction plans.

A plan is an ordered list of typed steps. Each step may produce values that
later steps reference through a ``Handle`` (the step index, plus a position
when the step yields several values). Nothing here talks to the network: a
plan is built completely, validated, then handed to a transport or to an
external signer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Union

from .errors import InsufficientCollateral, PlanError
from .models import SwapQuote

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Handle:
    """Reference to a value produced by an earlier step."""

    step: int
    index: int | None = None

    def __getitem__(self, index: int) -> Handle:
        return Handle(self.step, index)


@dataclass(frozen=True)
class GasCoin:
    """The sender's gas coin."""


@dataclass(frozen=True)
class ObjectRef:
    object_id: str


@dataclass(frozen=True)
class Pure:
    value: Any


Argument = Union[Handle, GasCoin, ObjectRef, Pure]

GAS = GasCoin()
CLOCK = ObjectRef("0x6")


def _as_argument(value: Any) -> Argument:
    if isinstance(value, (Handle, GasCoin, ObjectRef, Pure)):
        return value
    return Pure(value)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MoveCall:
    target: str
    arguments: tuple[Argument, ...] = ()
    type_arguments: tuple[str, ...] = ()
    consumes: tuple[Handle, ...] = ()


@dataclass(frozen=True)
class SplitCoins:
    coin: Argument
    amounts: tuple[int, ...]


@dataclass(frozen=True)
class MergeCoins:
    destination: Argument
    sources: tuple[Handle, ...]


@dataclass(frozen=True)
class TransferObjects:
    objects: tuple[Handle, ...]
    recipient: str


@dataclass(frozen=True)
class CoinWithBalance:
    """A coin of ``coin_type`` drawn from the sender's wallet."""

    coin_type: str
    amount: int


@dataclass(frozen=True)
class Swap:
    quote: SwapQuote
    coin_in: Handle
    slippage_bps: int


Step = Union[MoveCall, SplitCoins, MergeCoins, TransferObjects, CoinWithBalance, Swap]


def _step_inputs(step: Step) -> tuple[Argument, ...]:
    if isinstance(step, MoveCall):
        return step.arguments
    if isinstance(step, SplitCoins):
        return (step.coin,)
    if isinstance(step, MergeCoins):
        return (step.destination, *step.sources)
    if isinstance(step, TransferObjects):
        return step.objects
    if isinstance(step, Swap):
        return (step.coin_in,)
    return ()


def _step_consumes(step: Step) -> tuple[Handle, ...]:
    if isinstance(step, MoveCall):
        return step.consumes
    if isinstance(step, MergeCoins):
        return step.sources
    if isinstance(step, TransferObjects):
        return step.objects
    if isinstance(step, Swap):
        return (step.coin_in,)
    return ()


@dataclass(frozen=True)
class FundingCheck:
    """``available`` raw units must cover ``required`` raw units."""

    label: str
    available: int
    required: int

    @property
    def satisfied(self) -> bool:
        return self.available >= self.required


class _Tracker:
    """Walks steps in order, rejecting dangling and consumed handles."""

    def __init__(self) -> None:
        self._count = 0
        self._consumed: set[tuple[int, int | None]] = set()

    def check(self, step: Step) -> None:
        for arg in _step_inputs(step):
            if not isinstance(arg, Handle):
                continue
            if arg.step < 0 or arg.step >= self._count:
                raise PlanError(f"Step {self._count} references unknown step {arg.step}")
            if (arg.step, arg.index) in self._consumed or (arg.step, None) in self._consumed:
                raise PlanError(
                    f"Step {self._count} uses a value already consumed: {arg}"
                )
        for handle in _step_consumes(step):
            self._consumed.add((handle.step, handle.index))
        self._count += 1


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class TransactionPlan:
    """Builder for one all-or-nothing composite transaction."""

    def __init__(self, sender: str, gas_budget: int | None = None) -> None:
        self.sender = sender
        self.gas_budget = gas_budget
        self._steps: list[Step] = []
        self._checks: list[FundingCheck] = []
        self._tracker = _Tracker()

    @property
    def steps(self) -> tuple[Step, ...]:
        return tuple(self._steps)

    @property
    def funding_checks(self) -> tuple[FundingCheck, ...]:
        return tuple(self._checks)

    def __len__(self) -> int:
        return len(self._steps)

    def _add(self, step: Step) -> Handle:
        self._tracker.check(step)
        self._steps.append(step)
        return Handle(len(self._steps) - 1)

    # -- step builders -----------------------------------------------------

    def move_call(
        self,
        target: str,
        arguments: Iterable[Any] = (),
        type_arguments: Iterable[str] = (),
        consumes: Iterable[Handle] = (),
    ) -> Handle:
        return self._add(
            MoveCall(
                target=target,
                arguments=tuple(_as_argument(a) for a in arguments),
                type_arguments=tuple(type_arguments),
                consumes=tuple(consumes),
            )
        )

    def split_coins(self, coin: Argument, amounts: Iterable[int]) -> list[Handle]:
        amounts = tuple(int(a) for a in amounts)
        if any(a < 0 for a in amounts):
            raise PlanError(f"Negative split amount: {amounts}")
        result = self._add(SplitCoins(coin=coin, amounts=amounts))
        return [result[i] for i in range(len(amounts))]

    def merge_coins(self, destination: Argument, sources: Iterable[Handle]) -> None:
        self._add(MergeCoins(destination=destination, sources=tuple(sources)))

    def transfer_objects(self, objects: Iterable[Handle], recipient: str) -> None:
        self._add(TransferObjects(objects=tuple(objects), recipient=recipient))

    def coin_with_balance(self, coin_type: str, amount: int) -> Handle:
        return self._add(CoinWithBalance(coin_type=coin_type, amount=int(amount)))

    def swap(self, quote: SwapQuote, coin_in: Handle, slippage_bps: int) -> Handle:
        return self._add(Swap(quote=quote, coin_in=coin_in, slippage_bps=slippage_bps))

    # -- validation --------------------------------------------------------

    def require_funding(self, label: str, available: int, required: int) -> None:
        """Record an amount reconciliation checked by ``validate()``."""
        check = FundingCheck(label=label, available=int(available), required=int(required))
        logger.debug(
            "Funding check %s: available=%d required=%d", label, check.available, check.required
        )
        self._checks.append(check)

    def validate(self) -> None:
        """Re-walk the whole plan and every funding check.

        Raises:
            PlanError: a step references a missing or consumed value.
            InsufficientCollateral: a funding check is not covered.
        """
        tracker = _Tracker()
        for step in self._steps:
            tracker.check(step)

        for check in self._checks:
            if not check.satisfied:
                raise InsufficientCollateral(
                    f"{check.label}: available {check.available} < required {check.required}"
                )

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe description for external signing or inspection."""
        return {
            "sender": self.sender,
            "gas_budget": self.gas_budget,
            "steps": [_step_to_dict(s) for s in self._steps],
            "funding_checks": [
                {"label": c.label, "available": str(c.available), "required": str(c.required)}
                for c in self._checks
            ],
        }


def _arg_to_dict(arg: Argument) -> dict[str, Any]:
    if isinstance(arg, Handle):
        if arg.index is None:
            return {"kind": "result", "step": arg.step}
        return {"kind": "nested_result", "step": arg.step, "index": arg.index}
    if isinstance(arg, GasCoin):
        return {"kind": "gas_coin"}
    if isinstance(arg, ObjectRef):
        return {"kind": "object", "id": arg.object_id}
    value = arg.value
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    return {"kind": "pure", "value": value}


def _step_to_dict(step: Step) -> dict[str, Any]:
    if isinstance(step, MoveCall):
        return {
            "kind": "move_call",
            "target": step.target,
            "type_arguments": list(step.type_arguments),
            "arguments": [_arg_to_dict(a) for a in step.arguments],
        }
    if isinstance(step, SplitCoins):
        return {
            "kind": "split_coins",
            "coin": _arg_to_dict(step.coin),
            "amounts": [str(a) for a in step.amounts],
        }
    if isinstance(step, MergeCoins):
        return {
            "kind": "merge_coins",
            "destination": _arg_to_dict(step.destination),
            "sources": [_arg_to_dict(s) for s in step.sources],
        }
    if isinstance(step, TransferObjects):
        return {
            "kind": "transfer_objects",
            "objects": [_arg_to_dict(o) for o in step.objects],
            "recipient": step.recipient,
        }
    if isinstance(step, CoinWithBalance):
        return {"kind": "coin_with_balance", "coin_type": step.coin_type, "amount": str(step.amount)}
    return {
        "kind": "swap",
        "provider": step.quote.provider,
        "coin_in_type": step.quote.coin_in,
        "coin_out_type": step.quote.coin_out,
        "amount_in": str(step.quote.amount_in),
        "amount_out": str(step.quote.amount_out),
        "slippage_bps": step.slippage_bps,
        "coin_in": _arg_to_dict(step.coin_in),
        "route": dict(step.quote.route),
    }
