"""
Candidate metric scoring.

Attaches named metrics to every candidate of a set: arithmetic expressions
over per-window quantities, and the distance to the nearest eligible
feature under a chosen geometry.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..core.models import Feature, Sequence
from ..core.progress import CancellationToken, ensure_token
from ..errors import invalid_input, not_found, unsupported
from ..utils.sequence import reverse_complement
from .expressions import Expression, window_quantities
from .models import Candidate, CandidateSet

logger = logging.getLogger(__name__)

GEOMETRY_MODES = ('feature_span', 'feature_parts', 'feature_boundaries')
BOUNDARY_MODES = ('any', 'five_prime', 'three_prime', 'start', 'end')
STRAND_RELATIONS = ('any', 'same', 'opposite')
CANCEL_BLOCK = 1024


@dataclass
class ScoreResult:
    candidate_set: CandidateSet
    warnings: List[str] = field(default_factory=list)


def _validate_metric_name(metric: str):
    if not metric or not metric.strip():
        raise invalid_input("Metric name must not be empty")


def candidate_bases(sequence: Sequence, candidate: Candidate) -> str:
    """Window bases read on the candidate's strand."""
    n = len(sequence.bases)
    if candidate.end <= n:
        bases = sequence.bases[candidate.start:candidate.end]
    elif sequence.is_circular:
        bases = (sequence.bases * 2)[candidate.start:candidate.end]
    else:
        raise invalid_input(
            f"Candidate '{candidate.candidate_id}' extends past the end of '{sequence.id}'"
        )
    return reverse_complement(bases) if candidate.strand == '-' else bases


def _lookup(sequences: Dict[str, Sequence], seq_id: str) -> Sequence:
    seq = sequences.get(seq_id)
    if seq is None:
        raise not_found(f"Sequence '{seq_id}' referenced by a candidate was not found")
    return seq


def score_expression(
    candidate_set: CandidateSet,
    sequences: Dict[str, Sequence],
    metric: str,
    expression: str,
    token: Optional[CancellationToken] = None,
) -> ScoreResult:
    """
    Evaluate an expression for every candidate and store it as metric.

    Built-in quantities shadow stored metrics of the same name.
    """
    _validate_metric_name(metric)
    token = ensure_token(token)
    compiled = Expression(expression)
    out = []
    for idx, candidate in enumerate(candidate_set.candidates):
        if idx % CANCEL_BLOCK == 0:
            token.check('expression scoring', idx, len(candidate_set))
        seq = _lookup(sequences, candidate.seq_id)
        variables = dict(candidate.metrics)
        variables.update(window_quantities(candidate_bases(seq, candidate), candidate.start,
                                           candidate.end, candidate.strand))
        scored = candidate.copy()
        scored.metrics[metric] = compiled.evaluate(variables)
        out.append(scored)
    logger.info(f"Scored {len(out)} candidates of '{candidate_set.name}' with {metric} = {expression}")
    return ScoreResult(candidate_set.derive(candidate_set.name, out))


def _strand_eligible(feature: Feature, candidate: Candidate, relation: str) -> bool:
    if relation == 'any':
        return True
    same = feature.strand_symbol == candidate.strand
    return same if relation == 'same' else not same


def _target_intervals(feature: Feature, geometry: str, boundary: str) -> List[Tuple[int, int]]:
    start, end = feature.location.bounds()
    if geometry == 'feature_span':
        return [(start, end)]
    if geometry == 'feature_parts':
        return list(feature.location.parts)
    reverse = feature.location.is_reverse
    if boundary == 'any':
        points = [start, end]
    elif boundary == 'start':
        points = [start]
    elif boundary == 'end':
        points = [end]
    elif boundary == 'five_prime':
        points = [end if reverse else start]
    else:
        points = [start if reverse else end]
    return [(p, p) for p in points]


def interval_distance(start: int, end: int, target_start: int, target_end: int) -> int:
    """
    Signed gap from a candidate [start, end) to a target interval.

    Zero when they overlap (or a point target lies within the candidate),
    negative when the candidate lies before the target.
    """
    if target_start == target_end:
        if start <= target_start <= end:
            return 0
    elif start < target_end and target_start < end:
        return 0
    if end <= target_start:
        return -(target_start - end)
    return start - target_end


def score_distance(
    candidate_set: CandidateSet,
    sequences: Dict[str, Sequence],
    metric: str,
    feature_kind: Optional[str] = None,
    feature_geometry_mode: str = 'feature_span',
    feature_boundary_mode: str = 'any',
    strand_relation: str = 'any',
    signed: bool = False,
    token: Optional[CancellationToken] = None,
) -> ScoreResult:
    """
    Distance from each candidate to its nearest eligible feature.

    Candidates with no eligible feature keep their metrics unchanged and are
    reported in a warning.
    """
    _validate_metric_name(metric)
    if feature_geometry_mode not in GEOMETRY_MODES:
        raise unsupported(f"Unsupported feature_geometry_mode '{feature_geometry_mode}'")
    if feature_boundary_mode not in BOUNDARY_MODES:
        raise unsupported(f"Unsupported feature_boundary_mode '{feature_boundary_mode}'")
    if strand_relation not in STRAND_RELATIONS:
        raise unsupported(f"Unsupported strand_relation '{strand_relation}'")
    token = ensure_token(token)
    warnings = []
    if feature_boundary_mode != 'any' and feature_geometry_mode != 'feature_boundaries':
        warnings.append(
            f"feature_boundary_mode '{feature_boundary_mode}' only applies to feature_boundaries geometry; ignored"
        )

    kind = feature_kind.upper() if feature_kind else None
    out = []
    missing = 0
    for idx, candidate in enumerate(candidate_set.candidates):
        if idx % CANCEL_BLOCK == 0:
            token.check('distance scoring', idx, len(candidate_set))
        seq = _lookup(sequences, candidate.seq_id)
        best: Optional[int] = None
        for feature in seq.features:
            if feature.kind.upper() == 'SOURCE' or (kind is not None and feature.kind.upper() != kind):
                continue
            if not _strand_eligible(feature, candidate, strand_relation):
                continue
            for target in _target_intervals(feature, feature_geometry_mode, feature_boundary_mode):
                d = interval_distance(candidate.start, candidate.end, *target)
                if best is None or (abs(d), d) < (abs(best), best):
                    best = d
        scored = candidate.copy()
        if best is None:
            missing += 1
        else:
            scored.metrics[metric] = float(best if signed else abs(best))
        out.append(scored)
    if missing:
        warnings.append(
            f"{missing} candidate(s) in '{candidate_set.name}' have no eligible feature; "
            f"metric '{metric}' not set"
        )
    return ScoreResult(candidate_set.derive(candidate_set.name, out), warnings)
