"""
Candidate selection and set algebra.

Weighted objective scoring, top-k, Pareto frontier, metric filters and
union/intersect/subtract over candidate identity. Every function returns
new candidates; input sets are never modified.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..errors import invalid_input
from .models import Candidate, CandidateSet, metric_value

logger = logging.getLogger(__name__)

DIRECTIONS = ('max', 'min')


def _check_direction(direction: str) -> str:
    direction = (direction or 'max').lower()
    if direction not in DIRECTIONS:
        raise invalid_input(f"direction must be 'max' or 'min', got '{direction}'")
    return direction


@dataclass
class ObjectiveTerm:
    metric: str
    weight: float = 1.0
    direction: str = 'max'

    def __post_init__(self):
        self.direction = _check_direction(self.direction)

    @classmethod
    def from_dict(cls, d: Dict) -> 'ObjectiveTerm':
        return cls(d['metric'], float(d.get('weight', 1.0)), d.get('direction', 'max'))

    def to_dict(self) -> Dict:
        return {'metric': self.metric, 'weight': self.weight, 'direction': self.direction}


def weighted_objective(
    candidate_set: CandidateSet,
    metric: str,
    terms: List[ObjectiveTerm],
    normalize_metrics: bool = True,
) -> List[Candidate]:
    """
    Combine metrics into one weighted score.

    With normalization each term is min-max scaled to [0, 1] over the set
    (a constant term scales to 0); a 'min' term then contributes 1 - v,
    otherwise it contributes -v.
    """
    if not terms:
        raise invalid_input("Weighted objective requires at least one term")
    if not metric:
        raise invalid_input("Metric name must not be empty")
    n = len(candidate_set)
    totals = np.zeros(n)
    for term in terms:
        values = np.array([metric_value(c, term.metric, candidate_set.name) for c in candidate_set.candidates],
                          dtype=float)
        if normalize_metrics and n:
            lo, hi = values.min(), values.max()
            values = (values - lo) / (hi - lo) if hi > lo else np.zeros(n)
            if term.direction == 'min':
                values = 1.0 - values
        elif term.direction == 'min':
            values = -values
        totals += term.weight * values
    out = []
    for candidate, total in zip(candidate_set.candidates, totals):
        scored = candidate.copy()
        scored.metrics[metric] = float(total)
        out.append(scored)
    return out


def top_k(candidate_set: CandidateSet, metric: str, k: int, direction: str = 'max') -> List[Candidate]:
    """Best k by one metric; ties broken by ascending candidate_id."""
    if k < 1:
        raise invalid_input("k must be >= 1")
    direction = _check_direction(direction)
    sign = -1.0 if direction == 'max' else 1.0
    keyed = [
        (sign * metric_value(c, metric, candidate_set.name), c.candidate_id, c)
        for c in candidate_set.candidates
    ]
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [c.copy() for _, _, c in keyed[:k]]


def dominates(a: List[float], b: List[float]) -> bool:
    """a dominates b: at least as good everywhere, strictly better somewhere (maximizing)."""
    return all(x >= y for x, y in zip(a, b)) and any(x > y for x, y in zip(a, b))


def pareto_frontier(candidate_set: CandidateSet, objectives: List[ObjectiveTerm]) -> List[Candidate]:
    """Non-dominated candidates, sorted by candidate_id."""
    if not objectives:
        raise invalid_input("Pareto frontier requires at least one objective")
    vectors = []
    for c in candidate_set.candidates:
        vec = []
        for obj in objectives:
            value = metric_value(c, obj.metric, candidate_set.name)
            vec.append(value if obj.direction == 'max' else -value)
        vectors.append(vec)
    frontier = [
        c for i, c in enumerate(candidate_set.candidates)
        if not any(dominates(vectors[j], vectors[i]) for j in range(len(vectors)) if j != i)
    ]
    return [c.copy() for c in sorted(frontier, key=lambda c: c.candidate_id)]


def filter_by_metric(
    candidate_set: CandidateSet,
    metric: str,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    min_quantile: Optional[float] = None,
    max_quantile: Optional[float] = None,
) -> Tuple[List[Candidate], List[str]]:
    """
    Keep candidates whose metric lies within absolute and quantile bounds.

    Quantiles are computed over candidates that carry the metric; the others
    are dropped and counted in a warning.
    """
    if min_value is not None and max_value is not None and min_value > max_value:
        raise invalid_input(f"min_value ({min_value}) must be <= max_value ({max_value})")
    for name, q in (('min_quantile', min_quantile), ('max_quantile', max_quantile)):
        if q is not None and not 0.0 <= q <= 1.0:
            raise invalid_input(f"{name} must be within 0..1, got {q}")
    if min_quantile is not None and max_quantile is not None and min_quantile > max_quantile:
        raise invalid_input("min_quantile must be <= max_quantile")

    scored = [c for c in candidate_set.candidates if metric in c.metrics]
    warnings = []
    dropped = len(candidate_set) - len(scored)
    if dropped:
        warnings.append(f"{dropped} candidate(s) without metric '{metric}' were dropped")

    lo = min_value if min_value is not None else -np.inf
    hi = max_value if max_value is not None else np.inf
    if scored and (min_quantile is not None or max_quantile is not None):
        values = np.array([c.metrics[metric] for c in scored], dtype=float)
        if min_quantile is not None:
            lo = max(lo, float(np.quantile(values, min_quantile)))
        if max_quantile is not None:
            hi = min(hi, float(np.quantile(values, max_quantile)))
    kept = [c.copy() for c in scored if lo <= c.metrics[metric] <= hi]
    return kept, warnings


SET_OPERATIONS = ('union', 'intersect', 'subtract')


def set_operation(op: str, left: CandidateSet, right: CandidateSet) -> List[Candidate]:
    """
    Set algebra over candidate_id.

    union keeps left's members then right's new ones; intersect and
    subtract keep left's members (and metrics) in left's order.
    """
    op = (op or '').lower()
    right_ids = set(right.ids())
    if op == 'union':
        left_ids = set(left.ids())
        return [c.copy() for c in left.candidates] + [c.copy() for c in right.candidates
                                                      if c.candidate_id not in left_ids]
    if op == 'intersect':
        return [c.copy() for c in left.candidates if c.candidate_id in right_ids]
    if op == 'subtract':
        return [c.copy() for c in left.candidates if c.candidate_id not in right_ids]
    raise invalid_input(f"Unknown set operation '{op}'; expected one of {', '.join(SET_OPERATIONS)}")
