"""
Matching sold numbers against configured number ranges.

A range is either a single number ("07") or an inclusive span "10-20".
Anything else never matches; rejections are logged, never raised.
"""

from typing import Optional

from raffle.core.logging import get_logger

logger = get_logger(__name__)


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return None


def matches(sold_number: str, range_expr: str) -> bool:
    """Return True if `sold_number` falls inside `range_expr`."""
    if not sold_number or not range_expr:
        logger.warning("range_match_missing_input", number=sold_number, range=range_expr)
        return False

    number = _parse_int(sold_number)
    if number is None:
        logger.debug("range_match_invalid_number", number=sold_number)
        return False

    if range_expr == sold_number:
        return True

    if "-" in range_expr:
        parts = range_expr.split("-")
        if len(parts) != 2:
            logger.warning("range_match_malformed_range", range=range_expr)
            return False

        start, end = _parse_int(parts[0]), _parse_int(parts[1])
        if start is None or end is None:
            logger.warning("range_match_malformed_range", range=range_expr)
            return False
        if start > end:
            logger.warning("range_match_inverted_range", range=range_expr)
            return False

        return start <= number <= end

    single = _parse_int(range_expr)
    if single is None:
        logger.warning("range_match_malformed_range", range=range_expr)
        return False
    return number == single
