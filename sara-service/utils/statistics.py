"""Closed-form statistics over result rows.

Degenerate inputs give ``None`` rather than 0 so that "no relationship
computable" is never reported as "no relationship".
"""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from models import ColumnStats

Pair = Tuple[float, float]


def is_number(value: Any) -> bool:
    """True for finite ints and floats; bools are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


def numeric_values(rows: Iterable[Dict[str, Any]], key: str) -> List[float]:
    return [float(row.get(key)) for row in rows if is_number(row.get(key))]


def numeric_pairs(rows: Iterable[Dict[str, Any]], x_key: str, y_key: str) -> List[Pair]:
    """Pair up x/y values, skipping rows where either side is not numeric."""
    return [
        (float(row.get(x_key)), float(row.get(y_key)))
        for row in rows
        if is_number(row.get(x_key)) and is_number(row.get(y_key))
    ]


def _is_constant(values: Iterable[float]) -> bool:
    return len(set(values)) < 2


def _sums(pairs: Sequence[Pair]) -> Tuple[int, float, float, float, float, float]:
    pairs = [(float(x), float(y)) for x, y in pairs]
    n = len(pairs)
    sum_x = sum(x for x, _ in pairs)
    sum_y = sum(y for _, y in pairs)
    sum_xy = sum(x * y for x, y in pairs)
    sum_x2 = sum(x * x for x, _ in pairs)
    sum_y2 = sum(y * y for _, y in pairs)
    return n, sum_x, sum_y, sum_xy, sum_x2, sum_y2


def compute_correlation(pairs: Sequence[Pair]) -> Optional[float]:
    """Pearson correlation coefficient, or None if it cannot be computed."""
    if len(pairs) < 2:
        return None
    # a constant series can leave a tiny non-zero variance after cancellation
    if _is_constant(x for x, _ in pairs) or _is_constant(y for _, y in pairs):
        return None
    n, sum_x, sum_y, sum_xy, sum_x2, sum_y2 = _sums(pairs)
    numerator = n * sum_xy - sum_x * sum_y
    variance_product = (n * sum_x2 - sum_x * sum_x) * (n * sum_y2 - sum_y * sum_y)
    if not math.isfinite(variance_product) or variance_product <= 0:
        return None
    denominator = math.sqrt(variance_product)
    if not denominator or not math.isfinite(denominator):
        return None
    r = numerator / denominator
    return max(-1.0, min(1.0, r))


def compute_slope(pairs: Sequence[Pair]) -> Optional[float]:
    """Least-squares slope of y on x, or None if it cannot be computed."""
    if len(pairs) < 2 or _is_constant(x for x, _ in pairs):
        return None
    n, sum_x, sum_y, sum_xy, sum_x2, _ = _sums(pairs)
    denominator = n * sum_x2 - sum_x * sum_x
    if not denominator or not math.isfinite(denominator):
        return None
    slope = (n * sum_xy - sum_x * sum_y) / denominator
    return slope if math.isfinite(slope) else None


def median(values: Sequence[float]) -> float:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def correlation_strength(r: float) -> str:
    strength = abs(r)
    if strength >= 0.7:
        return "strong"
    if strength >= 0.4:
        return "moderate"
    if strength >= 0.2:
        return "weak"
    return "very weak"


def column_stats(rows: Sequence[Dict[str, Any]], keys: Iterable[str]) -> List[ColumnStats]:
    """Average/min/max/count for every column holding at least one number."""
    stats = []
    for key in keys:
        values = numeric_values(rows, key)
        if not values:
            continue
        stats.append(ColumnStats(
            column=key,
            average=sum(values) / len(values),
            min=min(values),
            max=max(values),
            count=len(values),
        ))
    return stats
