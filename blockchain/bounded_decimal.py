"""
BoundedExp40Dec value formatting.

The chain stores inference and forecast values as fixed-point integers:
the decimal value scaled by 10^precision and rendered without a fraction.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Literal

from chainworker.exceptions import InvalidModelOutput, SkipSubmission

InvalidOutputPolicy = Literal["throw", "skip", "zero"]

DEFAULT_PRECISION = 18

# Conservative guard against absurd model outputs
MAX_ABS_VALUE = Decimal("1e22")


def _reject(policy: InvalidOutputPolicy, message: str) -> str:
    if policy == "zero":
        return "0"
    if policy == "skip":
        raise SkipSubmission(message)
    raise InvalidModelOutput(message)


def format_bounded_exp40dec(
    value: str | int | float | Decimal | None,
    precision: int = DEFAULT_PRECISION,
    policy: InvalidOutputPolicy = "throw",
) -> str:
    """
    Convert a model output to the chain's fixed-point integer string.

    Args:
        value: Numeric value (strings are parsed exactly)
        precision: Number of decimal places kept
        policy: Handling of missing, non-finite or out-of-range values

    Returns:
        Integer string, e.g. "1.5" -> "1500000000000000000"

    Raises:
        InvalidModelOutput: policy "throw" and the value is unusable
        SkipSubmission: policy "skip" and the value is unusable
    """
    if value is None:
        return _reject(policy, "Model output value is missing")

    if isinstance(value, bool):
        return _reject(policy, f"Model output value {value!r} is not numeric")

    try:
        # str() keeps floats at their shortest repr instead of binary expansion
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        return _reject(policy, f"Model output value {value!r} is not numeric")

    if not number.is_finite():
        return _reject(policy, f"Model output value {value!r} is not finite")

    if abs(number) > MAX_ABS_VALUE:
        return _reject(policy, f"Model output value {value!r} exceeds the BoundedExp40Dec range")

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = number.scaleb(precision).quantize(Decimal(1), rounding=ROUND_HALF_UP)

    result = format(scaled, "f")
    return "0" if result in ("-0", "0") else result


__all__ = [
    "DEFAULT_PRECISION",
    "MAX_ABS_VALUE",
    "InvalidOutputPolicy",
    "format_bounded_exp40dec",
]
