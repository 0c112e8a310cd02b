from __future__ import annotations

# Pure numeric helpers shared by the PVT and 2-back scorers.

import math
from collections.abc import Sequence


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(sum(values)) / len(values)


def sample_sd(values: Sequence[float], center: float | None = None) -> float:
    n = len(values)
    if n < 2:
        return 0.0
    m = mean(values) if center is None else center
    variance = sum((v - m) * (v - m) for v in values) / (n - 1)
    return math.sqrt(variance)


def percentile(values_sorted: Sequence[float], fraction: float) -> float:
    """Rank-interpolated percentile of an ascending sequence.

    ``fraction`` is in [0, 1]; the rank is ``fraction * (n - 1)`` and the
    result interpolates linearly between the floor and ceil ranked values.
    """

    if not values_sorted:
        return 0.0
    if len(values_sorted) == 1:
        return float(values_sorted[0])

    f = min(1.0, max(0.0, fraction))
    rank = f * (len(values_sorted) - 1)
    lo = int(math.floor(rank))
    hi = int(math.ceil(rank))
    if lo == hi:
        return float(values_sorted[lo])
    weight = rank - lo
    return float(
        values_sorted[lo] + (values_sorted[hi] - values_sorted[lo]) * weight
    )


def ols_slope(xs: Sequence[float], ys: Sequence[float]) -> float:
    if len(xs) < 2 or len(xs) != len(ys):
        return 0.0

    n = float(len(xs))
    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_x2 = sum(x * x for x in xs)

    denominator = n * sum_x2 - sum_x * sum_x
    if abs(denominator) < 2.220446049250313e-16:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


# Acklam's rational approximation coefficients.
_A = (
    -3.969683028665376e01,
    2.209460984245205e02,
    -2.759285104469687e02,
    1.383577518672690e02,
    -3.066479806614716e01,
    2.506628277459239e00,
)
_B = (
    -5.447609879822406e01,
    1.615858368580409e02,
    -1.556989798598866e02,
    6.680131188771972e01,
    -1.328068155288572e01,
)
_C = (
    -7.784894002430293e-03,
    -3.223964580411365e-01,
    -2.400758277161838e00,
    -2.549732539343734e00,
    4.374664141464968e00,
    2.938163982698783e00,
)
_D = (
    7.784695709041462e-03,
    3.224671290700398e-01,
    2.445134137142996e00,
    3.754408661907416e00,
)

_P_LOW = 0.02425
_P_HIGH = 1.0 - _P_LOW


def _tail(q: float) -> float:
    num = ((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]
    den = (((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1.0
    return num / den


def inverse_normal_cdf(p: float) -> float:
    """Inverse standard-normal CDF (Acklam). Absolute error is below ~4.5e-4."""

    if p <= 0.0:
        return -math.inf
    if p >= 1.0:
        return math.inf

    if p < _P_LOW:
        return _tail(math.sqrt(-2.0 * math.log(p)))
    if p > _P_HIGH:
        return -_tail(math.sqrt(-2.0 * math.log(1.0 - p)))

    q = p - 0.5
    r = q * q
    num = (((((_A[0] * r + _A[1]) * r + _A[2]) * r + _A[3]) * r + _A[4]) * r + _A[5]) * q
    den = ((((_B[0] * r + _B[1]) * r + _B[2]) * r + _B[3]) * r + _B[4]) * r + 1.0
    return num / den
