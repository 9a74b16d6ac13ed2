"""
Candidate window generation.

Fixed-length windows at a fixed step across a whole sequence or strictly
between two resolved anchors, on one or both strands.
"""

import logging
from typing import List, Optional, Tuple

from ..core.models import Sequence
from ..core.progress import CancellationToken, ensure_token
from ..errors import invalid_input
from ..transforms.extraction import SequenceAnchor, resolve_anchor
from .models import Candidate, CandidateSet

logger = logging.getLogger(__name__)

STRAND_CHOICES = {'+': ('+',), '-': ('-',), 'both': ('+', '-')}
CANCEL_BLOCK = 1024


def _strands(strands: str) -> Tuple[str, ...]:
    try:
        return STRAND_CHOICES[strands]
    except KeyError:
        raise invalid_input(f"strands must be one of '+', '-', 'both', got '{strands}'")


def _feature_spans(sequence: Sequence, feature_kind: Optional[str]) -> Optional[List[Tuple[int, int]]]:
    if not feature_kind:
        return None
    kind = feature_kind.upper()
    return [f.location.bounds() for f in sequence.features if f.kind.upper() == kind]


def _windows(
    sequence: Sequence,
    set_name: str,
    lo: int,
    hi: int,
    length_bp: int,
    step_bp: int,
    strands: str,
    feature_kind: Optional[str],
    max_candidates: int,
    token: CancellationToken,
) -> CandidateSet:
    if length_bp < 1:
        raise invalid_input("length_bp must be >= 1")
    if step_bp < 1:
        raise invalid_input("step_bp must be >= 1")
    if hi - lo < length_bp:
        raise invalid_input(
            f"length_bp={length_bp} does not fit in the {hi - lo} bp region of '{sequence.id}'"
        )
    strand_list = _strands(strands)
    positions = (hi - lo - length_bp) // step_bp + 1
    spans = _feature_spans(sequence, feature_kind)
    if spans is None and positions * len(strand_list) > max_candidates:
        raise invalid_input(
            f"Candidate generation would produce {positions * len(strand_list)} candidates, "
            f"exceeding the limit of {max_candidates}"
        )

    candidate_set = CandidateSet(name=set_name, source_seq_ids=[sequence.id])
    for k in range(positions):
        if k % CANCEL_BLOCK == 0:
            token.check('candidate generation', k, positions)
        start = lo + k * step_bp
        end = start + length_bp
        if spans is not None and not any(s <= start and end <= e for s, e in spans):
            continue
        for strand in strand_list:
            candidate_set.candidates.append(Candidate.window(sequence.id, start, end, strand))
        if len(candidate_set.candidates) > max_candidates:
            raise invalid_input(
                f"Candidate generation exceeded the limit of {max_candidates} candidates"
            )
    logger.info(f"Generated {len(candidate_set)} candidates for set '{set_name}' on {sequence.id}")
    return candidate_set


def generate_candidates(
    sequence: Sequence,
    set_name: str,
    length_bp: int,
    step_bp: int = 1,
    strands: str = '+',
    feature_kind: Optional[str] = None,
    max_candidates: int = 100000,
    token: Optional[CancellationToken] = None,
) -> CandidateSet:
    """
    Windows across the whole sequence.

    With feature_kind, only windows lying inside a feature of that kind are
    kept. Windows do not wrap across the origin of circular sequences.
    """
    return _windows(sequence, set_name, 0, len(sequence.bases), length_bp, step_bp, strands,
                    feature_kind, max_candidates, ensure_token(token))


def generate_candidates_between_anchors(
    sequence: Sequence,
    set_name: str,
    anchor_a: SequenceAnchor,
    anchor_b: SequenceAnchor,
    length_bp: int,
    step_bp: int = 1,
    strands: str = '+',
    feature_kind: Optional[str] = None,
    max_candidates: int = 100000,
    token: Optional[CancellationToken] = None,
) -> CandidateSet:
    """Windows lying entirely between two anchors, in either anchor order."""
    a = resolve_anchor(sequence, anchor_a)
    b = resolve_anchor(sequence, anchor_b)
    if a == b:
        raise invalid_input(f"Anchors resolve to the same position ({a})")
    lo, hi = min(a, b), max(a, b)
    return _windows(sequence, set_name, lo, hi, length_bp, step_bp, strands,
                    feature_kind, max_candidates, ensure_token(token))
