"""Fixed-point conversions and coin type normalization — no I/O."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

WAD = 10**18
RAY = 10**27
U64_MAX = 2**64 - 1

_HEX_RE = re.compile(r"^[0-9a-fA-F]{1,64}$")
_ADDRESS_WIDTH = 64


def to_human(raw: int | str, decimals: int) -> str:
    """Render a raw integer amount as a decimal string.

    Only trailing fractional zeros are trimmed, so no precision is lost:
        to_human(1500000, 6) → "1.5"
        to_human(1000000, 6) → "1"
    """
    value = int(raw)
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if decimals == 0:
        return sign + digits

    padded = digits.rjust(decimals + 1, "0")
    whole, frac = padded[:-decimals], padded[-decimals:].rstrip("0")
    text = f"{whole}.{frac}" if frac else whole
    return sign + text if text != "0" else "0"


def to_raw(human: str | int | Decimal, decimals: int) -> int:
    """Parse a decimal amount into raw units, truncating extra digits.

        to_raw("1.5", 6) → 1500000
        to_raw("0.1234567", 6) → 123456
    """
    if isinstance(human, Decimal):
        human = format(human, "f")
    text = str(human).strip()
    if not text:
        raise ValueError("Empty amount")

    negative = text.startswith("-")
    if negative:
        text = text[1:]

    whole, _, frac = text.partition(".")
    whole = whole or "0"
    if not whole.isdigit() or (frac and not frac.isdigit()):
        raise ValueError(f"Malformed amount: {human!r}")

    frac = frac[:decimals].ljust(decimals, "0")
    raw = int(whole + frac)
    return -raw if negative else raw


def to_decimal(raw: int, decimals: int) -> Decimal:
    """Exact Decimal view of a raw amount."""
    try:
        return Decimal(to_human(raw, decimals))
    except InvalidOperation as e:
        raise ValueError(f"Cannot convert {raw!r}") from e


def to_float(raw: int, decimals: int) -> float:
    """Lossy float view of a raw amount, for USD arithmetic."""
    return int(raw) / (10**decimals)


def normalize_asset_id(coin_type: str) -> str:
    """Canonicalize a coin type to a zero-padded 64-hex-digit package address.

        "0x2::sui::SUI" → "0x000…0002::sui::SUI"

    Anything that does not look like ``<address>::<module>::<name>`` is
    returned unchanged.
    """
    parts = coin_type.split("::")
    if len(parts) != 3:
        return coin_type

    address = parts[0]
    if address.startswith("0x") or address.startswith("0X"):
        address = address[2:]
    if not _HEX_RE.match(address):
        return coin_type

    return f"0x{address.lower().rjust(_ADDRESS_WIDTH, '0')}::{parts[1]}::{parts[2]}"


def asset_symbol(coin_type: str) -> str:
    """Trailing type name of a coin type, e.g. "0x2::sui::SUI" → "SUI"."""
    if "::" in coin_type:
        return coin_type.split("::")[-1]
    return coin_type


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def apply_bps(amount: int, bps: int) -> int:
    """Scale a raw amount up by ``bps`` basis points, truncating."""
    return amount * (10_000 + bps) // 10_000
