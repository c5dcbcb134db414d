"""Pure parsing functions for Navi API responses — no I/O."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from ...models import BorrowEntry, DepositEntry, ObligationSnapshot, ReserveSnapshot
from ...units import RAY, asset_symbol, normalize_asset_id

# Navi reports user balances with 9 decimals whatever the coin's own decimals.
NAVI_BALANCE_DECIMALS = 9


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int = 0) -> int:
    """Exact for integer strings; decimal strings are truncated."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(_to_float(value, default))


def parse_ratio(value: Any, default: float = 0.0) -> float:
    """LTV-style ratio; values above 1 are RAY-scaled integers."""
    ratio = _to_float(value, default)
    if ratio > 1:
        return ratio / RAY
    return ratio


def pool_coin_type(pool: Mapping[str, Any]) -> str:
    token = pool.get("token") or {}
    raw = token.get("coinType") or pool.get("coinType") or pool.get("suiCoinType") or ""
    return normalize_asset_id(raw)


def pool_object_id(pool: Mapping[str, Any]) -> str:
    return (pool.get("contract") or {}).get("pool", "")


def balance_scale(decimals: int) -> tuple[int, int]:
    """(rate, scale) turning a 9-decimal balance into native raw units."""
    if decimals <= NAVI_BALANCE_DECIMALS:
        return 1, 10 ** (NAVI_BALANCE_DECIMALS - decimals)
    return 10 ** (decimals - NAVI_BALANCE_DECIMALS), 1


def parse_pool(pool: Mapping[str, Any]) -> ReserveSnapshot | None:
    """Build a ReserveSnapshot from one entry of the pools endpoint.

    Deprecated pools and pools without a coin type are skipped (None).
    APRs arrive as percentages: ``vaultApr`` is interest, ``boostedApr``
    incentives.
    """
    status = pool.get("status")
    if status is not None and status != "active":
        return None

    coin_type = pool_coin_type(pool)
    if not coin_type:
        return None

    token = pool.get("token") or {}
    decimals = int(token.get("decimals", 9))
    symbol = token.get("symbol") or pool.get("symbol") or asset_symbol(coin_type)

    total_supply = _to_int(pool.get("totalSupply"))
    total_borrow = _to_int(pool.get("totalBorrow"))

    supply_info = pool.get("supplyIncentiveApyInfo") or {}
    borrow_info = pool.get("borrowIncentiveApyInfo") or {}

    return ReserveSnapshot(
        coin_type=coin_type,
        symbol=symbol,
        decimals=decimals,
        price=_to_float((pool.get("oracle") or {}).get("price")),
        available_amount=max(0, total_supply - total_borrow),
        total_deposited=total_supply,
        total_borrowed=total_borrow,
        open_ltv=parse_ratio(pool.get("ltv")),
        close_ltv=parse_ratio((pool.get("liquidationFactor") or {}).get("threshold")),
        deposit_apr_pct=_to_float(supply_info.get("vaultApr", pool.get("supplyApy"))),
        borrow_apr_pct=_to_float(borrow_info.get("vaultApr", pool.get("borrowApy"))),
        deposit_reward_apr_pct=_to_float(supply_info.get("boostedApr")),
        borrow_reward_apr_pct=_to_float(borrow_info.get("boostedApr")),
        cumulative_borrow_rate=_to_int(pool.get("currentBorrowIndex"), RAY),
        exchange_rate=_to_int(pool.get("currentSupplyIndex"), RAY),
        rate_scale=RAY,
        reserve_index=int(pool.get("id", 0)),  # Navi asset id
    )


def parse_lending_state(
    entries: Iterable[Mapping[str, Any]],
    reserves: Mapping[str, ReserveSnapshot],
    owner: str,
) -> ObligationSnapshot | None:
    """Build an ObligationSnapshot from the user lending-state endpoint.

    Navi reports balances already accrued, so borrows carry the pool's
    current index as both origin and current rate. Entries for pools the
    market does not list are dropped.
    """
    deposits: list[DepositEntry] = []
    borrows: list[BorrowEntry] = []

    for entry in entries:
        pool = entry.get("pool") or {}
        coin_type = normalize_asset_id(pool.get("coinType") or entry.get("coinType") or "")
        reserve = reserves.get(coin_type)
        if reserve is None:
            continue

        supply = _to_int(entry.get("supplyBalance"))
        borrow = _to_int(entry.get("borrowBalance"))
        rate, scale = balance_scale(reserve.decimals)

        if supply > 0:
            deposits.append(
                DepositEntry(coin_type=coin_type, raw_amount=supply, exchange_rate=rate, scale=scale)
            )
        if borrow > 0:
            index = reserve.cumulative_borrow_rate
            borrows.append(
                BorrowEntry(
                    coin_type=coin_type,
                    raw_amount=borrow * rate,
                    origin_rate=index,
                    current_rate=index,
                    scale=scale,
                )
            )

    if not deposits and not borrows:
        return None

    return ObligationSnapshot(
        protocol="navi",
        obligation_id=owner,
        owner=owner,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
        reserves=reserves,
    )
