"""
GEX Calculator - gamma exposure by strike and gamma flip level

GEX per contract = open interest x gamma x spot^2

From the dealer's perspective calls add exposure and puts subtract it, so
the net value at a strike is call GEX minus put GEX. Everything here is
pure: no I/O, no clock, deterministic for identical input.
"""

import math
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from gexwatch.models import Option

GexByStrike = Dict[float, float]


def contributes(option: Option) -> bool:
    """An option adds to GEX only with open interest and a non-zero gamma"""
    return option.open_interest > 0 and option.gamma != 0


def calculate_gex_per_strike(options: Iterable[Option], spot_price: float) -> GexByStrike:
    """
    Calculate net gamma exposure by strike

    Args:
        options: Option contracts for one or more expiries
        spot_price: Underlying price at capture time

    Returns:
        Mapping strike -> signed GEX. Strikes with no contributing
        contract are absent rather than present with 0.
    """
    gex_by_strike: GexByStrike = defaultdict(float)
    spot_squared = spot_price * spot_price

    for option in options:
        if not contributes(option):
            continue

        gex = option.open_interest * option.gamma * spot_squared

        if option.option_type == "call":
            gex_by_strike[option.strike] += gex
        elif option.option_type == "put":
            gex_by_strike[option.strike] -= gex

    return dict(gex_by_strike)


def _zero_crossing(points: Sequence[Tuple[float, float]], rising_only: bool = False) -> Optional[float]:
    """
    First sign change in an ascending (strike, value) series

    The crossing is linearly interpolated between the two strikes that
    bracket it. A value of exactly 0 after a non-zero value is the crossing.
    With rising_only, only negative-to-positive changes count.
    """
    previous: Optional[Tuple[float, float]] = None

    for strike, value in points:
        if previous is not None:
            s1, v1 = previous
            if not rising_only or v1 < 0:
                if value == 0:
                    return strike
                if (v1 > 0) != (value > 0):
                    return s1 + (strike - s1) * (-v1) / (value - v1)
        if value != 0:
            previous = (strike, value)

    return None


def calculate_gamma_flip_level(gex_by_strike: GexByStrike) -> Optional[float]:
    """
    Calculate the gamma flip level (zero gamma level)

    Strikes are walked in ascending order with a running cumulative GEX.
    The flip is where the cumulative sum changes sign, interpolated
    linearly between the bracketing strikes. This is not simply the first
    cumulative crossing: the first crossing from negative (dealers short
    gamma) to positive wins even when a falling crossing comes earlier,
    so {580: 100, 590: -200, 600: 300} flips at 593.33 rather than 585.
    A falling crossing is used only when there is no rising one. When the
    cumulative profile keeps one sign, the first sign change of the
    per-strike values is used instead. With no sign change at all, a
    positive profile flips below the observed range (lowest strike) and a
    negative one above it (highest strike).

    Args:
        gex_by_strike: Mapping strike -> signed GEX

    Returns:
        Flip level, or None for an empty mapping
    """
    if not gex_by_strike:
        return None

    per_strike = sorted(gex_by_strike.items())

    cumulative: List[Tuple[float, float]] = []
    running = 0.0
    for strike, gex in per_strike:
        running += gex
        cumulative.append((strike, running))

    for points, rising_only in ((cumulative, True), (cumulative, False), (per_strike, False)):
        flip = _zero_crossing(points, rising_only=rising_only)
        if flip is not None:
            return flip

    if running < 0:
        return per_strike[-1][0]
    return per_strike[0][0]


def total_gex(gex_by_strike: GexByStrike) -> float:
    """Sum of GEX over all strikes (order independent)"""
    return math.fsum(gex_by_strike.values())


def combine_gex(maps: Iterable[GexByStrike]) -> GexByStrike:
    """Strike-wise sum of several GEX maps (e.g. one per expiry)"""
    combined: GexByStrike = defaultdict(float)
    for gex_map in maps:
        for strike, gex in gex_map.items():
            combined[strike] += gex
    return dict(combined)


def top_strikes(gex_by_strike: GexByStrike, limit: int = 20, min_abs: float = 0.0) -> List[Tuple[float, float]]:
    """
    Largest absolute GEX strikes

    Args:
        gex_by_strike: Mapping strike -> signed GEX
        limit: Maximum number of strikes returned
        min_abs: Drop strikes with |GEX| below this threshold

    Returns:
        List of (strike, gex) sorted by |GEX| descending, then strike
    """
    entries = [(s, g) for s, g in gex_by_strike.items() if abs(g) >= min_abs]
    entries.sort(key=lambda item: (-abs(item[1]), item[0]))
    return entries[:limit]
