"""
Region extraction and sequence anchors.

Plain half-open extraction, anchor resolution (absolute position or feature
boundary) and anchored extraction, which searches lengths around a target
for a region satisfying site, motif and primer constraints.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.models import Sequence, features_in_window
from ..core.progress import CancellationToken, ensure_token
from ..errors import invalid_input, not_found
from ..utils.sequence import (
    circular_slice,
    contains_motif_any_strand,
    iupac_match_at,
    normalize_iupac,
    reverse_complement,
)
from .enzymes import enzyme_site

logger = logging.getLogger(__name__)


class AnchorBoundary(Enum):
    START = "Start"
    END = "End"
    MIDDLE = "Middle"


class AnchorDirection(Enum):
    UPSTREAM = "Upstream"
    DOWNSTREAM = "Downstream"


@dataclass
class SequenceAnchor:
    """
    Coordinate reference on a sequence.

    Either an absolute position (``position`` set) or a feature boundary
    selected by kind, label substring and occurrence among sorted matches.
    """
    position: Optional[int] = None
    feature_kind: Optional[str] = None
    feature_label: Optional[str] = None
    boundary: AnchorBoundary = AnchorBoundary.START
    occurrence: int = 0

    @property
    def is_position(self) -> bool:
        return self.position is not None

    @classmethod
    def from_dict(cls, d: Any) -> 'SequenceAnchor':
        if isinstance(d, int) and not isinstance(d, bool):
            return cls(position=d)
        if not isinstance(d, dict) or len(d) != 1:
            raise invalid_input(f"Anchor must be {{'Position': ...}} or {{'FeatureBoundary': ...}}, got {d!r}")
        tag, body = next(iter(d.items()))
        body = body or {}
        if tag == 'Position':
            if 'zero_based' not in body:
                raise invalid_input("Position anchor requires 'zero_based'")
            return cls(position=int(body['zero_based']))
        if tag == 'FeatureBoundary':
            try:
                boundary = AnchorBoundary(body.get('boundary') or 'Start')
            except ValueError:
                raise invalid_input(f"Unknown anchor boundary '{body.get('boundary')}'")
            return cls(
                feature_kind=body.get('feature_kind'),
                feature_label=body.get('feature_label'),
                boundary=boundary,
                occurrence=int(body.get('occurrence') or 0),
            )
        raise invalid_input(f"Unknown anchor type '{tag}'")

    def to_dict(self) -> Dict[str, Any]:
        if self.is_position:
            return {'Position': {'zero_based': self.position}}
        return {'FeatureBoundary': {
            'feature_kind': self.feature_kind,
            'feature_label': self.feature_label,
            'boundary': self.boundary.value,
            'occurrence': self.occurrence,
        }}


def extract_region(sequence: Sequence, start: int, end: int, output_id: Optional[str] = None) -> Sequence:
    """
    Extract [start, end) as a new linear sequence.

    Circular sequences may wrap across the origin (start > end).
    """
    n = len(sequence.bases)
    if start == end:
        raise invalid_input("ExtractRegion requires from != to")
    if not sequence.is_circular and (start < 0 or end > n or start > end):
        raise invalid_input(f"Invalid extraction range {start}..{end} for sequence length {n}")
    if sequence.is_circular and not (0 <= start < n and 0 <= end <= n):
        raise invalid_input(f"Invalid extraction range {start}..{end} for sequence length {n}")
    bases = circular_slice(sequence.bases, start, end, sequence.is_circular)
    if not bases:
        raise invalid_input(f"Invalid extraction range {start}..{end} for sequence length {n}")
    return Sequence(
        id=output_id or f"{sequence.id}_{start}_{end}",
        bases=bases,
        strand_kind=sequence.strand_kind,
        features=features_in_window(
            sequence.features, start, start + len(bases),
            wrap_length=n if sequence.is_circular else 0,
        ),
    )


def resolve_anchor(sequence: Sequence, anchor: SequenceAnchor) -> int:
    """
    Resolve an anchor to a 0-based position in [0, len].

    Raises:
        EngineError: InvalidInput for out-of-range positions, NotFound when
            no feature (or not enough features) match
    """
    n = len(sequence.bases)
    if anchor.is_position:
        if not 0 <= anchor.position <= n:
            raise invalid_input(f"Anchor position {anchor.position} is out of bounds for sequence length {n}")
        return anchor.position

    kind = anchor.feature_kind.upper() if anchor.feature_kind else None
    label = anchor.feature_label.upper() if anchor.feature_label else None
    matches = []
    for feature in sequence.features:
        if feature.kind.upper() == 'SOURCE':
            continue
        if kind is not None and feature.kind.upper() != kind:
            continue
        if label is not None and not any(label in candidate.upper() for candidate in feature.labels()):
            continue
        start, end = feature.location.bounds()
        if anchor.boundary == AnchorBoundary.START:
            pos = start
        elif anchor.boundary == AnchorBoundary.END:
            pos = end
        else:
            pos = (start + end) // 2
        if 0 <= pos <= n:
            matches.append(pos)
    if not matches:
        raise not_found(f"No feature matched anchor {anchor.to_dict()}")
    matches.sort()
    if anchor.occurrence < 0 or anchor.occurrence >= len(matches):
        raise not_found(
            f"Feature anchor occurrence {anchor.occurrence} was requested, "
            f"but only {len(matches)} match(es) found"
        )
    return matches[anchor.occurrence]


def anchored_range(anchor_pos: int, length: int, direction: AnchorDirection, seq_len: int, circular: bool):
    """(start, end) of a window of length ending or starting at the anchor, or None."""
    if length <= 0 or seq_len == 0 or anchor_pos > seq_len:
        return None
    if direction == AnchorDirection.UPSTREAM:
        if not circular:
            return (anchor_pos - length, anchor_pos) if anchor_pos >= length else None
        if length > seq_len:
            return None
        start = anchor_pos - length if anchor_pos >= length else seq_len - (length - anchor_pos)
        return start, anchor_pos
    if not circular:
        return (anchor_pos, anchor_pos + length) if anchor_pos + length <= seq_len else None
    if length > seq_len:
        return None
    return anchor_pos, anchor_pos + length


@dataclass
class AnchoredCandidate:
    start: int
    end: int
    length: int
    bases: str
    score: int


@dataclass
class AnchoredResult:
    candidates: List[AnchoredCandidate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def find_anchored_candidates(
    sequence: Sequence,
    anchor: SequenceAnchor,
    direction: AnchorDirection,
    target_length_bp: int,
    length_tolerance_bp: int = 0,
    required_enzymes: Optional[List] = None,
    required_motifs: Optional[List[str]] = None,
    forward_primer: Optional[str] = None,
    reverse_primer: Optional[str] = None,
    token: Optional[CancellationToken] = None,
) -> AnchoredResult:
    """
    Enumerate windows anchored on one side and ranked by closeness to target.

    Candidate lengths run from max(1, target - tolerance) to target +
    tolerance. Each window must start with the forward primer, end with the
    reverse complement of the reverse primer, contain every required motif
    on either strand and at least one site of every required enzyme.
    Candidates are sorted by |length - target|, then start, then end.
    """
    if target_length_bp < 1:
        raise invalid_input("ExtractAnchoredRegion requires target_length_bp >= 1")
    if length_tolerance_bp < 0:
        raise invalid_input("length_tolerance_bp must be >= 0")
    token = ensure_token(token)
    anchor_pos = resolve_anchor(sequence, anchor)
    min_len = max(1, target_length_bp - length_tolerance_bp)
    max_len = target_length_bp + length_tolerance_bp

    try:
        fwd = normalize_iupac(forward_primer) if forward_primer else ''
        rev_rc = reverse_complement(normalize_iupac(reverse_primer)) if reverse_primer else ''
        motifs = [normalize_iupac(m) for m in (required_motifs or []) if m and m.strip()]
    except ValueError as e:
        raise invalid_input(str(e))

    n = len(sequence.bases)
    result = AnchoredResult()
    for length in range(min_len, max_len + 1):
        token.check('anchored extraction', length - min_len, max_len - min_len + 1)
        window = anchored_range(anchor_pos, length, direction, n, sequence.is_circular)
        if window is None:
            continue
        start, end = window
        if sequence.is_circular:
            bases = (sequence.bases * 2)[start:start + length]
        else:
            bases = sequence.bases[start:end]
        if not bases:
            continue
        if fwd and not iupac_match_at(bases, fwd, 0):
            continue
        if rev_rc and (len(rev_rc) > len(bases) or not iupac_match_at(bases, rev_rc, len(bases) - len(rev_rc))):
            continue
        if not all(contains_motif_any_strand(bases, m) for m in motifs):
            continue
        if required_enzymes and not all(contains_motif_any_strand(bases, enzyme_site(e)) for e in required_enzymes):
            continue
        result.candidates.append(AnchoredCandidate(start, end, length, bases, abs(length - target_length_bp)))

    if not result.candidates:
        raise invalid_input("No anchored-region candidate satisfied the configured constraints")
    result.candidates.sort(key=lambda c: (c.score, c.start, c.end))
    logger.info(f"Anchored extraction on {sequence.id}: {len(result.candidates)} candidate(s) at anchor {anchor_pos}")
    return result


def anchored_candidate_sequence(sequence: Sequence, candidate: AnchoredCandidate, seq_id: str) -> Sequence:
    n = len(sequence.bases)
    return Sequence(
        id=seq_id,
        bases=candidate.bases,
        strand_kind=sequence.strand_kind,
        features=features_in_window(
            sequence.features, candidate.start, candidate.start + candidate.length,
            wrap_length=n if sequence.is_circular else 0,
        ),
    )
