"""
Traffic split interpretation.
"""

from typing import Mapping, Optional


def select_default_version(allocations: Optional[Mapping[str, float]]) -> Optional[str]:
    """
    Pick the version receiving the most traffic from a split of version names to weights.

    A version with all of the traffic (a weight of exactly 1.0) always wins.  Otherwise the highest
    weight wins, and ties go to the lexicographically smallest version name.  Returns `None` for a
    missing or empty split.
    """
    if not allocations:
        return None
    default = None
    highest = -1.0
    for version, weight in allocations.items():
        if weight == 1.0:
            return version
        if weight > highest or (weight == highest and version < default):
            default = version
            highest = weight
    return default
