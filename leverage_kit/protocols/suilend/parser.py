"""Pure parsing functions for Suilend lending-market objects — no I/O.

Inputs are the ``content.fields`` dicts returned by ``sui_getObject``.
Move ``Decimal`` values arrive WAD-scaled as ``{"fields": {"value": "..."}}``
and ``TypeName`` values as ``{"fields": {"name": "<addr>::<mod>::<T>"}}``
without the ``0x`` prefix.
"""
from __future__ import annotations

from typing import Any, Mapping

from ...metrics import interest_apr
from ...models import (
    BorrowEntry,
    DepositEntry,
    ObligationSnapshot,
    ReserveSnapshot,
    RewardStream,
    UserReward,
)
from ...units import WAD, asset_symbol, ceil_div, normalize_asset_id


def fields(value: Any) -> dict[str, Any]:
    """Unwrap ``{"fields": {...}}``; plain dicts pass through."""
    if isinstance(value, dict):
        return value.get("fields", value)
    return {}


def decimal_value(value: Any, default: int = 0) -> int:
    """Raw WAD integer of a Move ``Decimal``."""
    if isinstance(value, dict):
        return int(fields(value).get("value", default))
    if value is None:
        return default
    return int(value)


def type_name(value: Any) -> str:
    """Canonical coin type of a Move ``TypeName``."""
    if isinstance(value, dict):
        value = fields(value).get("name", "")
    return normalize_asset_id(str(value))


def object_id(value: Any) -> str:
    """ID of a ``UID`` (``{"id": "0x.."}``) or plain ``ID`` string."""
    if isinstance(value, dict):
        return str(fields(value).get("id", ""))
    return str(value or "")


def reserve_config(reserve: Mapping[str, Any]) -> dict[str, Any]:
    """The ``ReserveConfig`` inside the reserve's ``Cell``."""
    return fields(fields(reserve.get("config", {})).get("element", {}))


# ---------------------------------------------------------------------------
# Reserves
# ---------------------------------------------------------------------------


def parse_pool_rewards(
    manager: Any, reward_metadata: Mapping[str, tuple[str, int]]
) -> tuple[RewardStream, ...]:
    """Active and past reward streams of one pool reward manager.

    ``reward_metadata`` maps reward coin type to (symbol, decimals).
    Empty slots (``None``) in ``pool_rewards`` are skipped.
    """
    streams: list[RewardStream] = []
    for slot in fields(manager).get("pool_rewards", []):
        if not slot:
            continue
        reward = fields(slot)
        coin_type = type_name(reward.get("coin_type", ""))
        symbol, decimals = reward_metadata.get(coin_type, (asset_symbol(coin_type), 9))
        streams.append(
            RewardStream(
                id=object_id(reward.get("id", "")),
                coin_type=coin_type,
                symbol=symbol,
                decimals=decimals,
                total_rewards=int(reward.get("total_rewards", 0)),
                start_ms=int(reward.get("start_time_ms", 0)),
                end_ms=int(reward.get("end_time_ms", 0)),
                cumulative_rewards_per_share=decimal_value(
                    reward.get("cumulative_rewards_per_share")
                ),
            )
        )
    return tuple(streams)


def reward_coin_types(reserves: list[dict[str, Any]]) -> set[str]:
    """Every reward coin type referenced by the given reserves."""
    found: set[str] = set()
    for reserve in reserves:
        for key in ("deposits_pool_reward_manager", "borrows_pool_reward_manager"):
            for slot in fields(reserve.get(key, {})).get("pool_rewards", []):
                if slot:
                    found.add(type_name(fields(slot).get("coin_type", "")))
    return found


def ctoken_exchange_rate(reserve: Mapping[str, Any]) -> int:
    """Underlying per cToken, WAD-scaled; 1.0 before the first deposit.

    total supply = available + borrowed − unclaimed spread fees
    """
    ctoken_supply = int(reserve.get("ctoken_supply", 0))
    if ctoken_supply == 0:
        return WAD
    total_supply_wad = (
        int(reserve.get("available_amount", 0)) * WAD
        + decimal_value(reserve.get("borrowed_amount"))
        - decimal_value(reserve.get("unclaimed_spread_fees"))
    )
    return max(0, total_supply_wad) // ctoken_supply


def parse_reserve(
    reserve: Mapping[str, Any],
    symbol: str,
    reward_metadata: Mapping[str, tuple[str, int]],
) -> ReserveSnapshot:
    """Build a ReserveSnapshot from one entry of ``LendingMarket.reserves``.

    Interest: borrow APR is the config curve at current utilization;
    deposit APR = borrow APR × utilization × (1 − spread fee).
    """
    config = reserve_config(reserve)
    coin_type = type_name(reserve.get("coin_type", ""))
    decimals = int(reserve.get("mint_decimals", 9))

    available = int(reserve.get("available_amount", 0))
    borrowed_wad = decimal_value(reserve.get("borrowed_amount"))
    fees_wad = decimal_value(reserve.get("unclaimed_spread_fees"))
    total_deposited = max(0, (available * WAD + borrowed_wad - fees_wad) // WAD)
    total_borrowed = ceil_div(borrowed_wad, WAD)

    utilization_pct = 0.0
    if total_deposited > 0:
        utilization_pct = min(100.0, total_borrowed / total_deposited * 100)

    utils = [float(u) for u in config.get("interest_rate_utils", [])]
    aprs = [int(a) / 100 for a in config.get("interest_rate_aprs", [])]
    borrow_apr = interest_apr(utils, aprs, utilization_pct)
    spread = int(config.get("spread_fee_bps", 0)) / 10_000
    deposit_apr = borrow_apr * utilization_pct / 100 * (1 - spread)

    return ReserveSnapshot(
        coin_type=coin_type,
        symbol=symbol,
        decimals=decimals,
        price=decimal_value(reserve.get("price")) / WAD,
        available_amount=available,
        total_deposited=total_deposited,
        total_borrowed=total_borrowed,
        open_ltv=int(config.get("open_ltv_pct", 0)) / 100,
        close_ltv=int(config.get("close_ltv_pct", 0)) / 100,
        deposit_apr_pct=deposit_apr,
        borrow_apr_pct=borrow_apr,
        borrow_weight=int(config.get("borrow_weight_bps", 10_000)) / 10_000,
        cumulative_borrow_rate=decimal_value(reserve.get("cumulative_borrow_rate"), WAD),
        exchange_rate=ctoken_exchange_rate(reserve),
        rate_scale=WAD,
        reserve_index=int(reserve.get("array_index", 0)),
        deposit_rewards=parse_pool_rewards(
            reserve.get("deposits_pool_reward_manager", {}), reward_metadata
        ),
        borrow_rewards=parse_pool_rewards(
            reserve.get("borrows_pool_reward_manager", {}), reward_metadata
        ),
    )


# ---------------------------------------------------------------------------
# Obligations
# ---------------------------------------------------------------------------


def find_obligation_cap(
    owned_objects: list[dict[str, Any]], market_type: str = ""
) -> tuple[str, str] | None:
    """(cap object id, obligation id) of the first ObligationOwnerCap owned.

    When ``market_type`` is given only caps of that lending market count.
    """
    wanted = normalize_asset_id(market_type) if market_type else ""
    for obj in owned_objects:
        data = obj.get("data", {})
        obj_type = data.get("type", "")
        if "::lending_market::ObligationOwnerCap<" not in obj_type:
            continue
        type_arg = obj_type.split("<", 1)[1].rstrip(">")
        if wanted and normalize_asset_id(type_arg) != wanted:
            continue
        cap_fields = data.get("content", {}).get("fields", {})
        obligation_id = cap_fields.get("obligation_id")
        if obligation_id:
            return data.get("objectId", ""), obligation_id
    return None


def _user_rewards(manager: Any) -> tuple[int, tuple[UserReward, ...]]:
    manager = fields(manager)
    rewards: list[UserReward] = []
    for slot in manager.get("rewards", []):
        if not slot:
            continue
        reward = fields(slot)
        rewards.append(
            UserReward(
                pool_reward_id=object_id(reward.get("pool_reward_id", "")),
                earned_rewards=decimal_value(reward.get("earned_rewards")),
                cumulative_rewards_per_share=decimal_value(
                    reward.get("cumulative_rewards_per_share")
                ),
            )
        )
    return int(manager.get("share", 0)), tuple(rewards)


def parse_obligation(
    obligation: Mapping[str, Any],
    reserves: Mapping[str, ReserveSnapshot],
    owner: str,
    cap_id: str = "",
) -> ObligationSnapshot:
    """Build an ObligationSnapshot; deposit and borrow accrual comes from
    the reserve snapshots so both are priced at the same instant."""
    managers = [_user_rewards(m) for m in obligation.get("user_reward_managers", [])]

    def rewards_for(entry: Mapping[str, Any]) -> tuple[int, tuple[UserReward, ...]]:
        index = entry.get("user_reward_manager_index")
        if index is None or int(index) >= len(managers):
            return 0, ()
        return managers[int(index)]

    deposits: list[DepositEntry] = []
    for raw in obligation.get("deposits", []):
        entry = fields(raw)
        coin_type = type_name(entry.get("coin_type", ""))
        reserve = reserves.get(coin_type)
        share, rewards = rewards_for(entry)
        deposits.append(
            DepositEntry(
                coin_type=coin_type,
                raw_amount=int(entry.get("deposited_ctoken_amount", 0)),
                exchange_rate=reserve.exchange_rate if reserve else WAD,
                scale=WAD,
                share=share,
                rewards=rewards,
            )
        )

    borrows: list[BorrowEntry] = []
    for raw in obligation.get("borrows", []):
        entry = fields(raw)
        coin_type = type_name(entry.get("coin_type", ""))
        reserve = reserves.get(coin_type)
        share, rewards = rewards_for(entry)
        origin_rate = decimal_value(entry.get("cumulative_borrow_rate"))
        borrows.append(
            BorrowEntry(
                coin_type=coin_type,
                raw_amount=decimal_value(entry.get("borrowed_amount")),
                origin_rate=origin_rate,
                current_rate=reserve.cumulative_borrow_rate if reserve else origin_rate,
                scale=WAD,
                share=share,
                rewards=rewards,
            )
        )

    return ObligationSnapshot(
        protocol="suilend",
        obligation_id=object_id(obligation.get("id", "")),
        owner=owner,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
        reserves=reserves,
        account_cap=cap_id,
    )
