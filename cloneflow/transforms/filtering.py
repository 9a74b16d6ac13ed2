"""
Molecular-weight (length) selection, as on a gel band cut-out.
"""

import math
from typing import List, Tuple

from ..core.models import Sequence
from ..errors import invalid_input


def effective_bounds(min_bp: int, max_bp: int, error: float) -> Tuple[int, int]:
    """
    Widen [min_bp, max_bp] by a relative error.

    Examples:
        >>> effective_bounds(100, 200, 0.5)
        (50, 300)
    """
    if min_bp < 0 or max_bp < 0:
        raise invalid_input("min_bp and max_bp must be >= 0")
    if min_bp > max_bp:
        raise invalid_input(f"min_bp ({min_bp}) must be <= max_bp ({max_bp})")
    if not 0.0 <= error <= 1.0:
        raise invalid_input(f"error must be within 0..1, got {error}")
    return math.floor(min_bp * (1.0 - error)), math.ceil(max_bp * (1.0 + error))


def filter_by_length(sequences: List[Sequence], min_bp: int, max_bp: int, error: float = 0.0) -> List[Sequence]:
    """Keep sequences whose length falls within the widened bounds, in input order."""
    lo, hi = effective_bounds(min_bp, max_bp, error)
    return [s for s in sequences if lo <= len(s.bases) <= hi]
