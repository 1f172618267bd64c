# Overview: Carton/line quantity encoding and per-line/per-carton price conversion.

"""
Stock quantities are stored as an integer count of lines (the smallest
sellable unit). Users read and type them as cartons + lines, e.g. "2C3L"
for 2 cartons and 3 lines. The divisor is the product's lines_per_carton.

Prices follow the same split: stored per line, shown and entered per carton.
Per-line prices are kept at full precision; round only for display.

Guard behaviour:
- price_per_carton / price_per_line return 0 when lines_per_carton <= 0.
- format_carton_line treats lines_per_carton <= 1 as "no carton notation".
- parse_carton_line_format refuses lines_per_carton < 1 (input path, fail loudly).
"""

from __future__ import annotations

import re
from typing import Iterable

from ..errors import ConfigurationError, ParseError


_CARTON_LINE_RE = re.compile(
    r"^(?:(?P<cartons>\d+)\s*C)?\s*(?:(?P<lines>\d+)\s*L)?$",
    re.IGNORECASE,
)
_BARE_INT_RE = re.compile(r"^\d+$")
_TOKEN_RE = re.compile(r"(\d+)(C|L)")


def to_lines(cartons: int, lines_per_carton: int) -> int:
    return cartons * lines_per_carton


def format_carton_line(total_lines: int, lines_per_carton: int) -> str:
    """
    Render a line count as "<c>C<l>L", "<c>C", "<l>L" or "0".

    Negative counts (e.g. remaining stock after an oversell in historical
    data) render as "-" plus the format of the absolute value.
    """
    total_lines = int(total_lines)
    sign = "-" if total_lines < 0 else ""
    magnitude = abs(total_lines)

    if lines_per_carton is None or lines_per_carton <= 1:
        return f"{sign}{magnitude}"

    cartons, lines = divmod(magnitude, lines_per_carton)

    if cartons and lines:
        body = f"{cartons}C{lines}L"
    elif cartons:
        body = f"{cartons}C"
    elif lines:
        body = f"{lines}L"
    else:
        return "0"

    return sign + body


def parse_carton_line_format(text: str | int, lines_per_carton: int) -> int:
    """
    Inverse of format_carton_line.

    Accepts "5C2L", "5C", "2L" (any case, optional spaces between parts) or a
    bare integer, which counts raw lines.
    """
    if lines_per_carton is None or lines_per_carton < 1:
        raise ConfigurationError(
            "lines_per_carton must be at least 1",
            details={"lines_per_carton": lines_per_carton},
        )

    if isinstance(text, bool):
        raise ParseError("quantity must be a carton/line string", details={"input": text})
    if isinstance(text, int):
        if text < 0:
            raise ParseError("quantity cannot be negative", details={"input": text})
        return text
    if not isinstance(text, str):
        raise ParseError("quantity must be a carton/line string", details={"input": text})

    s = text.strip()
    if not s:
        raise ParseError("quantity is empty", details={"input": text})

    if _BARE_INT_RE.match(s):
        return int(s)

    match = _CARTON_LINE_RE.match(s)
    if match is None or (match.group("cartons") is None and match.group("lines") is None):
        raise ParseError(f"invalid carton/line quantity: {text!r}", details={"input": text})

    cartons = int(match.group("cartons") or 0)
    lines = int(match.group("lines") or 0)
    return to_lines(cartons, lines_per_carton) + lines


def price_per_carton(price_per_line, lines_per_carton: int):
    if lines_per_carton is None or lines_per_carton <= 0:
        return 0
    return price_per_line * lines_per_carton


def price_per_line(price_per_carton, lines_per_carton: int):
    if lines_per_carton is None or lines_per_carton <= 0:
        return 0
    return price_per_carton / lines_per_carton


def combine_formatted_quantities(quantities: Iterable[str]) -> str:
    """Join per-product display strings with " + ", skipping zeros. Not a numeric sum."""
    kept = [q for q in quantities if q != "0"]
    if not kept:
        return "0"
    return " + ".join(kept)


def sum_formatted_quantities_legacy(formatted_quantities: Iterable[str]) -> str:
    """
    Legacy report total: adds every "<n>C" token into one carton count and
    every "<n>L" token into one line count.

    No lines_per_carton is applied, so cartons of products with different
    divisors are added as if they were the same size and lines never roll
    over into cartons. A bare integer part counts as cartons. Kept for
    compatibility with existing report totals.
    """
    total_cartons = 0
    total_lines = 0

    for formatted in formatted_quantities:
        for part in str(formatted).replace(" ", "").split("+"):
            for amount, unit in _TOKEN_RE.findall(part):
                if unit == "C":
                    total_cartons += int(amount)
                else:
                    total_lines += int(amount)
            if _BARE_INT_RE.match(part):
                total_cartons += int(part)

    pieces = []
    if total_cartons > 0:
        pieces.append(f"{total_cartons}C")
    if total_lines > 0:
        pieces.append(f"{total_lines}L")

    return " ".join(pieces) or "0"


# Callers written against the report helper name
sum_formatted_quantities = sum_formatted_quantities_legacy
