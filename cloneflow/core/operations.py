"""
Operation protocol.

The closed set of operations the engine accepts, their JSON tagged form
(``{"Digest": {"input": "pgex", "enzymes": ["BamHI"]}}``), operation results
and workflows.
"""

from dataclasses import MISSING, dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type, Union, get_args, get_origin, get_type_hints

from ..errors import invalid_input


@dataclass
class Operation:
    """Base class; subclasses are registered in OPERATION_TYPES."""

    # Operations that only touch display or parameters; they add no lineage
    display_only: ClassVar[bool] = False

    # JSON key -> attribute name, for keys that are Python keywords
    aliases: ClassVar[Dict[str, str]] = {}

    @classmethod
    def tag(cls) -> str:
        return cls.__name__

    def to_dict(self) -> Dict[str, Any]:
        reverse_aliases = {attr: key for key, attr in self.aliases.items()}
        body = {reverse_aliases.get(f.name, f.name): getattr(self, f.name) for f in fields(self)}
        return {self.tag(): body}

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> 'Operation':
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise invalid_input(f"{cls.tag()} parameters must be an object")
        known = {f.name: f for f in fields(cls)}
        hints = get_type_hints(cls)
        kwargs = {}
        for key, value in body.items():
            attr = cls.aliases.get(key, key)
            if attr not in known:
                raise invalid_input(f"Unknown field '{key}' for operation {cls.tag()}")
            kwargs[attr] = _coerce(value, hints[attr], f"{cls.tag()}.{key}")
        for name, f in known.items():
            if name not in kwargs and f.default is MISSING and f.default_factory is MISSING:
                raise invalid_input(f"Operation {cls.tag()} requires field '{name}'")
        return cls(**kwargs)


def _type_name(hint) -> str:
    return getattr(hint, '__name__', None) or str(hint).replace('typing.', '')


def _coerce(value: Any, hint, where: str) -> Any:
    """
    Check a JSON value against a field annotation.

    Integers are accepted for float fields; booleans never count as numbers
    and strings are never parsed.

    Raises:
        EngineError: InvalidInput on a type mismatch
    """
    if hint is Any:
        return value
    origin = get_origin(hint)
    if origin is Union:
        options = get_args(hint)
        if value is None and type(None) in options:
            return None
        hint = next(t for t in options if t is not type(None))
        origin = get_origin(hint)

    if origin is list:
        if not isinstance(value, list):
            raise invalid_input(f"{where} must be a list, got {value!r}")
        (item,) = get_args(hint) or (Any,)
        return [_coerce(v, item, f"{where}[{i}]") for i, v in enumerate(value)]
    if origin is dict:
        if not isinstance(value, dict):
            raise invalid_input(f"{where} must be an object, got {value!r}")
        _, item = get_args(hint) or (str, Any)
        return {k: _coerce(v, item, f"{where}.{k}") for k, v in value.items()}

    if hint is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        value = float(value) if ok else value
    elif hint is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, hint)
    if not ok:
        raise invalid_input(f"{where} must be {_type_name(hint)}, got {value!r}")
    return value


# Loading and derivation

@dataclass
class LoadSequence(Operation):
    seq_id: str
    bases: str
    topology: str = 'linear'
    strand_kind: str = 'dsDNA'
    name: Optional[str] = None
    features: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class LoadFile(Operation):
    path: str
    as_id: Optional[str] = None


@dataclass
class SaveFile(Operation):
    seq_id: str
    path: str
    format: str = 'Fasta'

    display_only = True


@dataclass
class ExportPool(Operation):
    path: str
    inputs: List[str] = field(default_factory=list)
    container_id: Optional[str] = None
    pool_id: Optional[str] = None
    human_id: Optional[str] = None

    display_only = True



@dataclass
class Reverse(Operation):
    input: str
    output_id: Optional[str] = None


@dataclass
class Complement(Operation):
    input: str
    output_id: Optional[str] = None


@dataclass
class ReverseComplement(Operation):
    input: str
    output_id: Optional[str] = None


@dataclass
class Branch(Operation):
    input: str
    output_id: Optional[str] = None


@dataclass
class SetTopology(Operation):
    input: str
    topology: str
    output_id: Optional[str] = None


# Digestion, containers, ligation

@dataclass
class Digest(Operation):
    input: str
    enzymes: List[str]
    output_prefix: Optional[str] = None


@dataclass
class DigestContainer(Operation):
    container_id: str
    enzymes: List[str]
    output_prefix: Optional[str] = None


@dataclass
class MergeContainers(Operation):
    inputs: List[str]
    output_prefix: Optional[str] = None


@dataclass
class MergeContainersById(Operation):
    container_ids: List[str]
    output_prefix: Optional[str] = None


@dataclass
class Ligation(Operation):
    inputs: List[str]
    protocol: str = 'Sticky'
    circularize_if_possible: bool = False
    unique: bool = False
    output_id: Optional[str] = None
    output_prefix: Optional[str] = None


@dataclass
class LigationContainer(Operation):
    container_id: str
    protocol: str = 'Sticky'
    circularize_if_possible: bool = False
    unique: bool = False
    output_id: Optional[str] = None
    output_prefix: Optional[str] = None


# PCR

@dataclass
class Pcr(Operation):
    template: str
    forward_primer: str
    reverse_primer: str
    output_id: Optional[str] = None
    unique: bool = False


@dataclass
class PcrAdvanced(Operation):
    template: str
    forward_primer: Any
    reverse_primer: Any
    output_id: Optional[str] = None
    unique: bool = False


@dataclass
class PcrMutagenesis(Operation):
    template: str
    forward_primer: Any
    reverse_primer: Any
    mutations: List[Dict[str, Any]]
    require_all_mutations: bool = True
    output_id: Optional[str] = None
    unique: bool = False


# Extraction and selection

@dataclass
class ExtractRegion(Operation):
    input: str
    from_: int
    to: int
    output_id: Optional[str] = None

    aliases = {'from': 'from_'}


@dataclass
class ExtractAnchoredRegion(Operation):
    input: str
    anchor: Any
    direction: str
    target_length_bp: int
    length_tolerance_bp: int = 0
    required_re_sites: List[str] = field(default_factory=list)
    required_motifs: List[str] = field(default_factory=list)
    forward_primer: Optional[str] = None
    reverse_primer: Optional[str] = None
    output_prefix: Optional[str] = None
    unique: bool = False
    max_candidates: Optional[int] = None


@dataclass
class FilterByMolecularWeight(Operation):
    inputs: List[str]
    min_bp: int
    max_bp: int
    error: float = 0.0
    unique: bool = False
    output_prefix: Optional[str] = None


@dataclass
class FilterContainerByMolecularWeight(Operation):
    container_id: str
    min_bp: int
    max_bp: int
    error: float = 0.0
    unique: bool = False
    output_prefix: Optional[str] = None


@dataclass
class SelectCandidate(Operation):
    input: str
    criterion: str
    output_id: Optional[str] = None


# Display and parameters

@dataclass
class SetDisplayVisibility(Operation):
    target: str
    visible: bool

    display_only = True


@dataclass
class SetLinearViewport(Operation):
    start_bp: int
    span_bp: int

    display_only = True


@dataclass
class SetParameter(Operation):
    name: str
    value: Any

    display_only = True


# Candidate sets

@dataclass
class GenerateCandidateSet(Operation):
    set_name: str
    seq_id: str
    length_bp: int
    step_bp: int = 1
    strands: str = '+'
    feature_kind: Optional[str] = None
    max_candidates: Optional[int] = None


@dataclass
class GenerateCandidateSetBetweenAnchors(Operation):
    set_name: str
    seq_id: str
    anchor_a: Any
    anchor_b: Any
    length_bp: int
    step_bp: int = 1
    strands: str = '+'
    feature_kind: Optional[str] = None
    max_candidates: Optional[int] = None


@dataclass
class ScoreCandidateSetExpression(Operation):
    set_name: str
    metric: str
    expression: str
    output_set: Optional[str] = None


@dataclass
class ScoreCandidateSetDistance(Operation):
    set_name: str
    metric: str
    feature_kind: Optional[str] = None
    feature_geometry_mode: str = 'feature_span'
    feature_boundary_mode: str = 'any'
    strand_relation: str = 'any'
    signed: bool = False
    output_set: Optional[str] = None


@dataclass
class ScoreCandidateSetWeightedObjective(Operation):
    set_name: str
    metric: str
    terms: List[Dict[str, Any]]
    normalize_metrics: bool = True
    output_set: Optional[str] = None


@dataclass
class TopKCandidateSet(Operation):
    set_name: str
    metric: str
    k: int
    direction: str = 'max'
    output_set: Optional[str] = None


@dataclass
class ParetoFrontierCandidateSet(Operation):
    set_name: str
    objectives: List[Dict[str, Any]]
    output_set: Optional[str] = None


@dataclass
class FilterCandidateSet(Operation):
    set_name: str
    metric: str
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_quantile: Optional[float] = None
    max_quantile: Optional[float] = None
    output_set: Optional[str] = None


@dataclass
class CandidateSetOp(Operation):
    op: str
    left_set: str
    right_set: str
    output_set: Optional[str] = None


@dataclass
class DeleteCandidateSet(Operation):
    set_name: str


OPERATION_TYPES: Dict[str, Type[Operation]] = {
    cls.tag(): cls for cls in (
        LoadSequence, LoadFile, SaveFile, ExportPool, Reverse, Complement, ReverseComplement, Branch, SetTopology,
        Digest, DigestContainer, MergeContainers, MergeContainersById, Ligation, LigationContainer,
        Pcr, PcrAdvanced, PcrMutagenesis,
        ExtractRegion, ExtractAnchoredRegion, FilterByMolecularWeight, FilterContainerByMolecularWeight,
        SelectCandidate,
        SetDisplayVisibility, SetLinearViewport, SetParameter,
        GenerateCandidateSet, GenerateCandidateSetBetweenAnchors, ScoreCandidateSetExpression,
        ScoreCandidateSetDistance, ScoreCandidateSetWeightedObjective, TopKCandidateSet,
        ParetoFrontierCandidateSet, FilterCandidateSet, CandidateSetOp, DeleteCandidateSet,
    )
}


def parse_operation(data: Any) -> Operation:
    """
    Parse the tagged JSON form of an operation.

    Examples:
        >>> parse_operation({"Branch": {"input": "a"}})
        Branch(input='a', output_id=None)
    """
    if isinstance(data, Operation):
        return data
    if not isinstance(data, dict) or len(data) != 1:
        raise invalid_input("Operation must be an object with exactly one tag, e.g. {\"Digest\": {...}}")
    tag, body = next(iter(data.items()))
    cls = OPERATION_TYPES.get(tag)
    if cls is None:
        raise invalid_input(f"Unknown operation '{tag}'")
    return cls.from_body(body)


@dataclass
class OpResult:
    """Outcome of one committed operation."""
    op_id: str
    created_seq_ids: List[str] = field(default_factory=list)
    changed_seq_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'op_id': self.op_id,
            'created_seq_ids': list(self.created_seq_ids),
            'changed_seq_ids': list(self.changed_seq_ids),
            'warnings': list(self.warnings),
            'messages': list(self.messages),
        }


@dataclass
class Workflow:
    run_id: str
    ops: List[Operation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Workflow':
        if not isinstance(d, dict):
            raise invalid_input("Workflow must be an object with 'run_id' and 'ops'")
        ops = d.get('ops')
        if not isinstance(ops, list):
            raise invalid_input("Workflow 'ops' must be a list")
        return cls(run_id=str(d.get('run_id') or 'workflow'), ops=[parse_operation(op) for op in ops])

    def to_dict(self) -> Dict[str, Any]:
        return {'run_id': self.run_id, 'ops': [op.to_dict() for op in self.ops]}
