"""
Sequence model for CloneFlow.

A Sequence is immutable per version: operations never edit an existing entry
in ProjectState.sequences, they derive a new one under a new id.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.sequence import normalize_dna, reverse_complement


class Topology(Enum):
    LINEAR = "linear"
    CIRCULAR = "circular"


class StrandKind(Enum):
    DS_DNA = "dsDNA"
    SS_DNA = "ssDNA"
    RNA = "RNA"


_LOCATION_RANGE = re.compile(r'^<?(\d+)(?:\.\.>?(\d+))?$')
_LABEL_QUALIFIERS = ('label', 'gene', 'locus_tag', 'product', 'standard_name', 'note')


@dataclass(frozen=True)
class FeatureLocation:
    """Half-open, possibly multi-part feature location.

    Attributes:
        parts: (start, end) pairs in 0-based half-open coordinates, in
            biological order
        strand: 1 for forward, -1 for complement
        operator: 'join', 'order' or None for single-part locations
    """
    parts: Tuple[Tuple[int, int], ...]
    strand: int = 1
    operator: Optional[str] = None

    @classmethod
    def span(cls, start: int, end: int, strand: int = 1) -> 'FeatureLocation':
        return cls(parts=((start, end),), strand=strand)

    @classmethod
    def parse(cls, text: str) -> 'FeatureLocation':
        """
        Parse a GenBank-style location string.

        Examples:
            >>> FeatureLocation.parse("10..20")
            FeatureLocation(parts=((9, 20),), strand=1, operator=None)
            >>> FeatureLocation.parse("complement(join(1..5,8..12))").strand
            -1
        """
        text = text.replace(' ', '')
        strand = 1
        operator = None
        if text.startswith('complement(') and text.endswith(')'):
            strand = -1
            text = text[len('complement('):-1]
        for op in ('join', 'order'):
            if text.startswith(op + '(') and text.endswith(')'):
                operator = op
                text = text[len(op) + 1:-1]
                break
        parts = []
        for token in text.split(','):
            inner_strand = 1
            if token.startswith('complement(') and token.endswith(')'):
                inner_strand = -1
                token = token[len('complement('):-1]
            m = _LOCATION_RANGE.match(token)
            if not m:
                raise ValueError(f"Unparseable feature location: {token}")
            first = int(m.group(1))
            last = int(m.group(2)) if m.group(2) else first
            parts.append((first - 1, last))
            if inner_strand == -1:
                strand = -1
        if not parts:
            raise ValueError("Empty feature location")
        return cls(parts=tuple(parts), strand=strand, operator=operator)

    def bounds(self) -> Tuple[int, int]:
        return min(p[0] for p in self.parts), max(p[1] for p in self.parts)

    @property
    def is_reverse(self) -> bool:
        return self.strand < 0

    def shifted(self, offset: int) -> 'FeatureLocation':
        return replace(self, parts=tuple((s + offset, e + offset) for s, e in self.parts))

    def reverse_complemented(self, length: int) -> 'FeatureLocation':
        """Location on the reverse complement of a molecule of the given length."""
        parts = tuple((length - e, length - s) for s, e in reversed(self.parts))
        return FeatureLocation(parts=parts, strand=-self.strand, operator=self.operator)

    def clipped(self, lo: int, hi: int) -> Tuple[Optional['FeatureLocation'], bool]:
        """Clip to [lo, hi); returns (location or None, was_truncated)."""
        kept = []
        truncated = False
        for s, e in self.parts:
            cs, ce = max(s, lo), min(e, hi)
            if cs >= ce:
                truncated = True
                continue
            if cs != s or ce != e:
                truncated = True
            kept.append((cs, ce))
        if not kept:
            return None, True
        operator = self.operator if len(kept) > 1 else None
        return FeatureLocation(parts=tuple(kept), strand=self.strand, operator=operator), truncated

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parts': [list(p) for p in self.parts],
            'strand': self.strand,
            'operator': self.operator,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'FeatureLocation':
        return cls(
            parts=tuple((int(s), int(e)) for s, e in d['parts']),
            strand=int(d.get('strand', 1)),
            operator=d.get('operator'),
        )


@dataclass
class Feature:
    """Annotated feature on a sequence."""
    kind: str
    location: FeatureLocation
    label: Optional[str] = None
    qualifiers: Dict[str, str] = field(default_factory=dict)

    def labels(self) -> List[str]:
        """Explicit label first, then label-like qualifier values."""
        labels = []
        if self.label and self.label.strip():
            labels.append(self.label.strip())
        for key in _LABEL_QUALIFIERS:
            value = self.qualifiers.get(key)
            if value and value.strip():
                labels.append(value.strip())
        return labels

    @property
    def strand_symbol(self) -> str:
        return '-' if self.location.is_reverse else '+'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'label': self.label,
            'location': self.location.to_dict(),
            'qualifiers': dict(self.qualifiers),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Feature':
        location = d['location']
        if isinstance(location, str):
            location = FeatureLocation.parse(location)
        else:
            location = FeatureLocation.from_dict(location)
        return cls(
            kind=d['kind'],
            location=location,
            label=d.get('label'),
            qualifiers={str(k): str(v) for k, v in (d.get('qualifiers') or {}).items()},
        )


@dataclass(frozen=True)
class Overhang:
    """Single-stranded termini of a double-stranded molecule.

    Each field holds the top-strand-sense letters of the region where only
    one strand is present:
        forward_5: top strand protrudes at the left end (5' overhang)
        reverse_3: bottom strand protrudes at the left end (3' overhang)
        forward_3: top strand protrudes at the right end (3' overhang)
        reverse_5: bottom strand protrudes at the right end (5' overhang)
    """
    forward_5: str = ''
    forward_3: str = ''
    reverse_5: str = ''
    reverse_3: str = ''

    @property
    def left_is_blunt(self) -> bool:
        return not self.forward_5 and not self.reverse_3

    @property
    def right_is_blunt(self) -> bool:
        return not self.forward_3 and not self.reverse_5

    @property
    def is_blunt(self) -> bool:
        return self.left_is_blunt and self.right_is_blunt

    @property
    def left_text(self) -> str:
        return self.forward_5 or self.reverse_3

    @property
    def right_text(self) -> str:
        return self.reverse_5 or self.forward_3

    def reverse_complemented(self) -> 'Overhang':
        """Ends of the flipped molecule: the left end becomes the right end."""
        return Overhang(
            forward_5=reverse_complement(self.reverse_5),
            forward_3=reverse_complement(self.reverse_3),
            reverse_5=reverse_complement(self.forward_5),
            reverse_3=reverse_complement(self.forward_3),
        )

    def end_type(self) -> str:
        if self.is_blunt:
            return 'blunt'
        if self.forward_5 or self.reverse_5:
            return "5'" if not (self.forward_3 or self.reverse_3) else 'mixed'
        return "3'"

    def to_dict(self) -> Dict[str, str]:
        return {
            'forward_5': self.forward_5,
            'forward_3': self.forward_3,
            'reverse_5': self.reverse_5,
            'reverse_3': self.reverse_3,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, str]]) -> 'Overhang':
        d = d or {}
        return cls(
            forward_5=d.get('forward_5', ''),
            forward_3=d.get('forward_3', ''),
            reverse_5=d.get('reverse_5', ''),
            reverse_3=d.get('reverse_3', ''),
        )


@dataclass
class Sequence:
    """
    DNA/RNA molecule.

    Attributes:
        id: Unique identifier inside a ProjectState
        bases: Double-stranded core, upper case
        topology: Linear or circular
        strand_kind: dsDNA, ssDNA or RNA
        features: Annotated features in core coordinates
        overhang: Single-stranded termini (linear molecules only)
        name: Optional human-readable name
    """
    id: str
    bases: str
    topology: Topology = Topology.LINEAR
    strand_kind: StrandKind = StrandKind.DS_DNA
    features: List[Feature] = field(default_factory=list)
    overhang: Overhang = field(default_factory=Overhang)
    name: Optional[str] = None

    def __post_init__(self):
        self.bases = normalize_dna(self.bases)

    def __len__(self) -> int:
        return len(self.bases)

    @property
    def is_circular(self) -> bool:
        return self.topology == Topology.CIRCULAR

    def derive(self, new_id: str, **changes) -> 'Sequence':
        """Copy this sequence under a new id, applying field changes."""
        features = changes.pop('features', [replace(f, qualifiers=dict(f.qualifiers)) for f in self.features])
        return replace(self, id=new_id, features=features, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'bases': self.bases,
            'topology': self.topology.value,
            'strand_kind': self.strand_kind.value,
            'features': [f.to_dict() for f in self.features],
            'overhang': self.overhang.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Sequence':
        return cls(
            id=d['id'],
            bases=d.get('bases', ''),
            topology=Topology(d.get('topology', 'linear')),
            strand_kind=StrandKind(d.get('strand_kind', 'dsDNA')),
            features=[Feature.from_dict(f) for f in d.get('features', [])],
            overhang=Overhang.from_dict(d.get('overhang')),
            name=d.get('name'),
        )

    def __repr__(self) -> str:
        return f"Sequence(id={self.id}, {len(self.bases)} bp, {self.topology.value})"


def features_in_window(
    features: List[Feature],
    lo: int,
    hi: int,
    offset: int = 0,
    wrap_length: int = 0,
) -> List[Feature]:
    """
    Features overlapping [lo, hi), rebased so that lo maps to offset.

    Features cut by the window edges are clipped and get the qualifier
    ``partial=true``. With wrap_length > 0 the window may extend past the
    origin of a circular molecule of that length.
    """
    kept = []
    shifts = (0, wrap_length, 2 * wrap_length) if wrap_length else (0,)
    for feature in features:
        for shift in shifts:
            location, truncated = feature.location.shifted(shift).clipped(lo, hi)
            if location is None:
                continue
            qualifiers = dict(feature.qualifiers)
            if truncated:
                qualifiers['partial'] = 'true'
            kept.append(replace(feature, location=location.shifted(offset - lo), qualifiers=qualifiers))
    return kept
