"""
Ingestion - Amount and script helpers shared by adapters and normalizers.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional


SATOSHI_DECIMALS = 8
WEI_DECIMALS = 18


def to_base_units(value: Any, decimals: int) -> Decimal:
    """
    Convert a decimal coin amount (e.g. BTC) to integral base units.

    Raises:
        ValueError: If the value is not a number or not representable
            in whole base units
    """
    try:
        amount = Decimal(str(value)).scaleb(decimals)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount {value!r}") from e
    if not amount.is_finite() or amount < 0 or amount != amount.to_integral_value():
        raise ValueError(f"Amount {value!r} is not representable in base units")
    return amount.quantize(Decimal(1))


def script_address(script: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Address of an output script; None for unaddressable scripts."""
    if not script:
        return None
    if script.get("address"):
        return str(script["address"])
    # Pre-22.0 nodes report a list
    addresses = script.get("addresses")
    if isinstance(addresses, list) and len(addresses) == 1:
        return str(addresses[0])
    return None
