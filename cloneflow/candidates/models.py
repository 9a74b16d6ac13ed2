"""
Candidate and candidate-set models.

Candidate sets are stored inline in ``ProjectState.metadata["candidate_sets"]``
as plain dicts; these classes convert to and from that form.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import invalid_input, not_found


def candidate_id_for(seq_id: str, strand: str, start: int, end: int) -> str:
    """Stable identifier derived from coordinates, e.g. ``plasmid:+:10-30``."""
    return f"{seq_id}:{strand}:{start}-{end}"


@dataclass
class Candidate:
    """Coordinate-addressed window with named numeric metrics."""
    candidate_id: str
    seq_id: str
    start: int
    end: int
    strand: str = '+'
    metrics: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def window(cls, seq_id: str, start: int, end: int, strand: str = '+') -> 'Candidate':
        return cls(candidate_id_for(seq_id, strand, start, end), seq_id, start, end, strand)

    @property
    def length(self) -> int:
        return self.end - self.start

    def copy(self) -> 'Candidate':
        return Candidate(self.candidate_id, self.seq_id, self.start, self.end, self.strand, dict(self.metrics))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidate_id': self.candidate_id,
            'seq_id': self.seq_id,
            'start': self.start,
            'end': self.end,
            'strand': self.strand,
            'metrics': dict(sorted(self.metrics.items())),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Candidate':
        return cls(
            candidate_id=d['candidate_id'],
            seq_id=d['seq_id'],
            start=int(d['start']),
            end=int(d['end']),
            strand=d.get('strand', '+'),
            metrics={k: float(v) for k, v in (d.get('metrics') or {}).items()},
        )


@dataclass
class CandidateSet:
    """Named, ordered collection of candidates."""
    name: str
    candidates: List[Candidate] = field(default_factory=list)
    source_seq_ids: List[str] = field(default_factory=list)
    created_by_op: Optional[str] = None

    def __len__(self) -> int:
        return len(self.candidates)

    def ids(self) -> List[str]:
        return [c.candidate_id for c in self.candidates]

    def metric_names(self) -> List[str]:
        names = set()
        for c in self.candidates:
            names.update(c.metrics)
        return sorted(names)

    def derive(self, name: str, candidates: List[Candidate], created_by_op: Optional[str] = None) -> 'CandidateSet':
        return CandidateSet(name, [c.copy() for c in candidates], list(self.source_seq_ids), created_by_op)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'source_seq_ids': list(self.source_seq_ids),
            'created_by_op': self.created_by_op,
            'candidates': [c.to_dict() for c in self.candidates],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'CandidateSet':
        return cls(
            name=d['name'],
            candidates=[Candidate.from_dict(c) for c in d.get('candidates', [])],
            source_seq_ids=list(d.get('source_seq_ids', [])),
            created_by_op=d.get('created_by_op'),
        )


def load_set(store: Dict[str, Any], name: str) -> CandidateSet:
    data = store.get(name)
    if data is None:
        raise not_found(f"Candidate set '{name}' not found")
    return CandidateSet.from_dict(data)


def save_set(store: Dict[str, Any], candidate_set: CandidateSet):
    store[candidate_set.name] = candidate_set.to_dict()


def output_set_name(store: Dict[str, Any], requested: Optional[str], base: str) -> str:
    """
    Name for a derived set.

    An explicit name is used as given (replacing any set of that name);
    otherwise base is made unique with a numeric suffix.
    """
    if requested:
        if not requested.strip():
            raise invalid_input("Candidate set name must not be blank")
        return requested
    if base not in store:
        return base
    n = 2
    while f"{base}_{n}" in store:
        n += 1
    return f"{base}_{n}"


def metric_value(candidate: Candidate, metric: str, set_name: str) -> float:
    """Metric value or InvalidInput naming the candidate lacking it."""
    try:
        return candidate.metrics[metric]
    except KeyError:
        raise invalid_input(
            f"Candidate '{candidate.candidate_id}' in set '{set_name}' has no metric '{metric}'"
        )
