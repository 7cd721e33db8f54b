"""Exact conversion of smallest-unit integer amounts into decimal strings.

Explorer APIs report values as integer strings in the smallest unit (wei,
lamports, token base units). These can exceed 2**53, so the conversion is done
on the digit string itself and never passes through float.
"""

from __future__ import annotations


def format_units(raw: str | int | None, decimals: int) -> str:
    """
    Render a raw integer amount with `decimals` fractional digits.

    Trailing fractional zeros are stripped, no scientific notation is used,
    and zero is always "0" (never "-0").

        format_units("1500000000000000000", 18) -> "1.5"
        format_units("5", 18)                   -> "0.000000000000000005"
        format_units("abc", 18)                 -> "0"
    """
    value = "" if raw is None else str(raw).strip()
    negative = value.startswith("-")
    digits = value[1:] if negative else value

    if not digits or not (digits.isascii() and digits.isdigit()):
        return "0"

    digits = digits.lstrip("0") or "0"

    if decimals <= 0:
        formatted = digits
    else:
        # Pad so there is always at least one integer digit
        digits = digits.rjust(decimals + 1, "0")
        int_part = digits[:-decimals].lstrip("0") or "0"
        frac_part = digits[-decimals:].rstrip("0")
        formatted = f"{int_part}.{frac_part}" if frac_part else int_part

    if negative and formatted != "0":
        return "-" + formatted
    return formatted
