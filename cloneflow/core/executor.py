"""
Operation executor.

Engine.apply() runs one Operation against a ProjectState atomically: the
state is snapshotted, the operation's handler mutates it, and on success the
created sequences are registered in lineage and in a new container. Any
failure restores the snapshot before the error propagates.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Type

from ..candidates.generation import generate_candidates, generate_candidates_between_anchors
from ..candidates.models import CandidateSet, load_set, output_set_name, save_set
from ..candidates.optimization import (
    ObjectiveTerm,
    filter_by_metric,
    pareto_frontier,
    set_operation,
    top_k,
    weighted_objective,
)
from ..candidates.scoring import score_distance, score_expression
from ..config import EngineConfig, EngineParameters
from ..errors import EngineError, internal, invalid_input, io_error, not_found, unsupported
from ..io.fasta import is_fasta_path, read_fasta, sequence_record, write_fasta
from ..io.pool import pool_document, write_pool_json
from ..transforms.digest import digest_sequence, resolve_enzymes
from ..transforms.extraction import (
    AnchorDirection,
    SequenceAnchor,
    anchored_candidate_sequence,
    extract_region,
    find_anchored_candidates,
)
from ..transforms.filtering import filter_by_length
from ..transforms.ligation import LigationProtocol, check_unique, ligate
from ..transforms.pcr import (
    PrimerSpec,
    SnpMutation,
    amplicon_sequence,
    pcr_advanced,
    pcr_exact,
    validate_mutations,
)
from ..utils.sequence import complement, normalize_iupac, reverse_complement
from .containers import Container, ContainerKind, ContainerMember, collapse_members
from .lineage import NodeKind, SequenceOrigin
from .models import Feature, Overhang, Sequence, StrandKind, Topology
from .operations import (
    OPERATION_TYPES,
    Branch,
    CandidateSetOp,
    Complement,
    DeleteCandidateSet,
    Digest,
    DigestContainer,
    ExportPool,
    ExtractAnchoredRegion,
    ExtractRegion,
    FilterByMolecularWeight,
    FilterCandidateSet,
    FilterContainerByMolecularWeight,
    GenerateCandidateSet,
    GenerateCandidateSetBetweenAnchors,
    Ligation,
    LigationContainer,
    LoadFile,
    LoadSequence,
    MergeContainers,
    MergeContainersById,
    OpResult,
    Operation,
    ParetoFrontierCandidateSet,
    Pcr,
    PcrAdvanced,
    PcrMutagenesis,
    Reverse,
    ReverseComplement,
    SaveFile,
    ScoreCandidateSetDistance,
    ScoreCandidateSetExpression,
    ScoreCandidateSetWeightedObjective,
    SelectCandidate,
    SetDisplayVisibility,
    SetLinearViewport,
    SetParameter,
    SetTopology,
    TopKCandidateSet,
    parse_operation,
)
from .progress import CancellationToken, ensure_token
from .state import ProjectState

logger = logging.getLogger(__name__)

INTERACTIVE_RUN_ID = "interactive"

SELECTION_WARNING = (
    "Selection operation is in-silico and may not directly correspond to a unique wet-lab product"
)

# Container name recorded for each sequence-producing operation
CONTAINER_NAMES = {
    LoadSequence: "Imported sequence",
    LoadFile: "Imported sequence",
    Digest: "Digest products",
    DigestContainer: "Digest products",
    MergeContainers: "Merged container",
    MergeContainersById: "Merged container",
    Ligation: "Ligation products",
    LigationContainer: "Ligation products",
    Pcr: "PCR products",
    PcrAdvanced: "PCR products",
    PcrMutagenesis: "PCR products",
    ExtractRegion: "Extracted region",
    ExtractAnchoredRegion: "Extracted region",
    SelectCandidate: "Selected candidate",
    FilterByMolecularWeight: "Molecular-weight filtered",
    FilterContainerByMolecularWeight: "Molecular-weight filtered",
    Reverse: "Derived sequence",
    Complement: "Derived sequence",
    ReverseComplement: "Derived sequence",
    Branch: "Derived sequence",
    SetTopology: "Derived sequence",
}


@dataclass
class OpContext:
    """Bookkeeping collected by a handler and committed by the engine."""
    op_id: str
    run_id: str
    token: CancellationToken
    result: OpResult
    parent_seq_ids: List[str] = field(default_factory=list)
    origins: Dict[str, SequenceOrigin] = field(default_factory=dict)
    multiplicities: Dict[str, int] = field(default_factory=dict)
    parent_sets: List[str] = field(default_factory=list)
    created_sets: List[str] = field(default_factory=list)


Handler = Callable[['Engine', Operation, OpContext], None]
_HANDLERS: Dict[Type[Operation], Handler] = {}


def handles(op_type: Type[Operation]):
    """Register a handler function for one operation type."""
    def register(fn: Handler) -> Handler:
        if op_type in _HANDLERS:
            raise RuntimeError(f"Duplicate handler for {op_type.tag()}")
        _HANDLERS[op_type] = fn
        return fn
    return register


class Engine:
    """
    Applies operations to a ProjectState.

    Example:
        >>> engine = Engine(ProjectState())
        >>> result = engine.apply({"LoadSequence": {"seq_id": "x", "bases": "ACGT"}})
        >>> result.created_seq_ids
        ['x']
    """

    def __init__(self, state: Optional[ProjectState] = None, config: Optional[EngineConfig] = None):
        self.state = state if state is not None else ProjectState()
        self.config = config or EngineConfig()

    def apply(
        self,
        op,
        token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
    ) -> OpResult:
        """
        Apply one operation atomically.

        Args:
            op: Operation instance or its tagged JSON form
            token: Optional cancellation token
            run_id: Run identifier recorded on lineage edges

        Returns:
            OpResult of the committed operation

        Raises:
            EngineError: The state is left exactly as before the call
        """
        op = parse_operation(op)
        handler = _HANDLERS[type(op)]
        snapshot = self.state.snapshot()
        mark = self.state.mark()
        try:
            op_id = self.state.next_op_id()
            ctx = OpContext(op_id, run_id or INTERACTIVE_RUN_ID, ensure_token(token), OpResult(op_id))
            handler(self, op, ctx)
            if not op.display_only:
                self._record_lineage(ctx)
                self._record_container(op, ctx)
            errors = self.state.validate_since(mark, ctx.result.created_seq_ids)
            if errors:
                raise internal(f"State invariants violated after {op.tag()}: {'; '.join(errors[:5])}")
        except EngineError as e:
            self.state.restore(snapshot)
            logger.debug(f"{op.tag()} rejected: {e}")
            raise
        except Exception as e:
            self.state.restore(snapshot)
            raise internal(f"Unexpected failure in {op.tag()}: {e}") from e

        logger.info(
            f"{ctx.op_id} {op.tag()} committed: "
            f"{len(ctx.result.created_seq_ids)} sequence(s) created"
        )
        for warning in ctx.result.warnings:
            logger.warning(f"{ctx.op_id}: {warning}")
        return ctx.result

    def _record_lineage(self, ctx: OpContext):
        lineage = self.state.lineage
        children = [
            lineage.add_node(seq_id, ctx.origins.get(seq_id, SequenceOrigin.DERIVED), ctx.op_id)
            for seq_id in ctx.result.created_seq_ids
        ]
        parents = [lineage.ensure_node(seq_id) for seq_id in dict.fromkeys(ctx.parent_seq_ids)]
        lineage.add_edges(parents, children, ctx.op_id, ctx.run_id)

        set_parents = [lineage.set_to_node[name] for name in ctx.parent_sets if name in lineage.set_to_node]
        if not ctx.parent_sets:
            set_parents = parents
        set_children = [
            lineage.add_node(name, SequenceOrigin.DERIVED, ctx.op_id, kind=NodeKind.CANDIDATE_SET)
            for name in ctx.created_sets
        ]
        lineage.add_edges(set_parents, set_children, ctx.op_id, ctx.run_id)

    def _record_container(self, op: Operation, ctx: OpContext):
        created = ctx.result.created_seq_ids
        if not created:
            return
        if isinstance(op, SelectCandidate):
            kind = ContainerKind.SELECTION
        elif len(created) > 1:
            kind = ContainerKind.POOL
        else:
            kind = ContainerKind.SINGLETON
        self.state.container_state.add(
            collapse_members(created, ctx.multiplicities),
            kind,
            name=CONTAINER_NAMES.get(type(op)),
            created_by_op=ctx.op_id,
        )

    # Helpers used by handlers

    def add_sequence(self, ctx: OpContext, sequence: Sequence, base_id: str,
                     origin: SequenceOrigin = SequenceOrigin.DERIVED) -> str:
        """Store a new sequence under a unique id derived from base_id."""
        seq_id = self.state.unique_seq_id(base_id)
        self.state.sequences[seq_id] = replace(sequence, id=seq_id)
        ctx.result.created_seq_ids.append(seq_id)
        ctx.origins[seq_id] = origin
        return seq_id

    def container(self, container_id: str) -> Container:
        container = self.state.container_state.get(container_id)
        if container is None:
            raise not_found(f"Container '{container_id}' not found")
        return container

    def container_sequences(self, container_id: str) -> List[Sequence]:
        return [self.state.get_sequence(seq_id) for seq_id in self.container(container_id).member_ids()]

    def resolve_enzymes(self, names: List[str], ctx: OpContext) -> List:
        if not names:
            raise invalid_input("At least one enzyme name is required")
        known, warnings = resolve_enzymes(names)
        ctx.result.warnings.extend(warnings)
        return known

    @property
    def max_fragments(self) -> int:
        return self.state.parameters.max_fragments_per_container


def _require(value: Optional[str], label: str) -> str:
    if value is None or not str(value).strip():
        raise invalid_input(f"{label} must not be empty")
    return value


# Loading and derivation

@handles(LoadSequence)
def _load_sequence(engine: Engine, op: LoadSequence, ctx: OpContext):
    _require(op.seq_id, "seq_id")
    if not op.bases:
        raise invalid_input("LoadSequence requires non-empty bases")
    try:
        sequence = Sequence(
            id=op.seq_id,
            bases=normalize_iupac(op.bases),
            topology=Topology(op.topology),
            strand_kind=StrandKind(op.strand_kind),
            features=[Feature.from_dict(f) for f in op.features],
            name=op.name,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise invalid_input(f"Invalid sequence '{op.seq_id}': {e}")
    seq_id = engine.add_sequence(ctx, sequence, op.seq_id, SequenceOrigin.IMPORTED)
    ctx.result.messages.append(f"Loaded '{seq_id}' ({len(sequence)} bp, {sequence.topology.value})")


@handles(LoadFile)
def _load_file(engine: Engine, op: LoadFile, ctx: OpContext):
    path = Path(_require(op.path, "path"))
    if not is_fasta_path(path):
        raise unsupported(f"Unsupported sequence file format '{path.suffix}'; only FASTA can be loaded")
    try:
        records = read_fasta(path)
    except OSError as e:
        raise io_error(f"Could not read sequence file '{path}': {e}")
    except ValueError as e:
        raise invalid_input(f"Could not load sequence file '{path}': {e}")
    if not records:
        raise invalid_input(f"No sequences found in '{path}'")
    for i, record in enumerate(records):
        if op.as_id:
            base = op.as_id if len(records) == 1 else f"{op.as_id}_{i + 1}"
        else:
            base = record.id
        try:
            sequence = Sequence(
                id=base,
                bases=record.sequence,
                topology=Topology.CIRCULAR if record.circular else Topology.LINEAR,
                name=record.description or None,
            )
        except ValueError as e:
            raise invalid_input(f"Invalid sequence '{record.id}' in '{path}': {e}")
        seq_id = engine.add_sequence(ctx, sequence, base, SequenceOrigin.IMPORTED)
        ctx.result.messages.append(f"Loaded '{path}' record '{record.id}' as '{seq_id}'")


@handles(SaveFile)
def _save_file(engine: Engine, op: SaveFile, ctx: OpContext):
    sequence = engine.state.get_sequence(op.seq_id)
    path = Path(_require(op.path, "path"))
    if op.format.strip().lower() != 'fasta':
        raise unsupported(f"Unsupported export format '{op.format}'; only Fasta can be written")
    try:
        write_fasta(path, [sequence_record(sequence)])
    except OSError as e:
        raise io_error(f"Could not write FASTA file '{path}': {e}")
    ctx.result.messages.append(f"Wrote '{op.seq_id}' to '{path}'")


@handles(ExportPool)
def _export_pool(engine: Engine, op: ExportPool, ctx: OpContext):
    if bool(op.inputs) == bool(op.container_id):
        raise invalid_input("ExportPool requires either inputs or container_id")
    if op.container_id:
        members = engine.container_sequences(op.container_id)
    else:
        members = [engine.state.get_sequence(seq_id) for seq_id in op.inputs]
    path = Path(_require(op.path, "path"))
    document = pool_document(members, op.pool_id or op.container_id or 'pool_export', op.human_id)
    try:
        write_pool_json(path, document)
    except OSError as e:
        raise io_error(f"Could not write pool file '{path}': {e}")
    ctx.result.messages.append(
        f"Wrote pool export '{document['pool_id']}' ({document['human_id']}) "
        f"with {document['member_count']} members to '{path}'"
    )


@handles(Reverse)
def _reverse(engine: Engine, op: Reverse, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    ctx.parent_seq_ids.append(op.input)
    derived = source.derive(source.id, bases=source.bases[::-1], features=[], overhang=Overhang())
    seq_id = engine.add_sequence(ctx, derived, op.output_id or f"{op.input}_rev")
    ctx.result.messages.append(f"Created reversed sequence '{seq_id}' from '{op.input}'")


@handles(Complement)
def _complement(engine: Engine, op: Complement, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    ctx.parent_seq_ids.append(op.input)
    derived = source.derive(source.id, bases=complement(source.bases), features=[], overhang=Overhang())
    seq_id = engine.add_sequence(ctx, derived, op.output_id or f"{op.input}_comp")
    ctx.result.messages.append(f"Created complement sequence '{seq_id}' from '{op.input}'")


@handles(ReverseComplement)
def _reverse_complement(engine: Engine, op: ReverseComplement, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    ctx.parent_seq_ids.append(op.input)
    n = len(source.bases)
    features = [
        replace(f, location=f.location.reverse_complemented(n), qualifiers=dict(f.qualifiers))
        for f in source.features
    ]
    derived = source.derive(
        source.id,
        bases=reverse_complement(source.bases),
        features=features,
        overhang=source.overhang.reverse_complemented(),
    )
    seq_id = engine.add_sequence(ctx, derived, op.output_id or f"{op.input}_revcomp")
    ctx.result.messages.append(f"Created reverse-complement sequence '{seq_id}' from '{op.input}'")


@handles(Branch)
def _branch(engine: Engine, op: Branch, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    ctx.parent_seq_ids.append(op.input)
    seq_id = engine.add_sequence(ctx, source.derive(source.id), op.output_id or f"{op.input}_branch",
                                 SequenceOrigin.BRANCH)
    ctx.result.messages.append(f"Created branch '{seq_id}' from '{op.input}'")


@handles(SetTopology)
def _set_topology(engine: Engine, op: SetTopology, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    try:
        topology = Topology(op.topology)
    except ValueError:
        raise invalid_input(f"Unknown topology '{op.topology}'; expected 'linear' or 'circular'")
    ctx.parent_seq_ids.append(op.input)
    changes = {'topology': topology}
    if topology == Topology.CIRCULAR and not source.overhang.is_blunt:
        changes['overhang'] = Overhang()
        ctx.result.warnings.append(f"Single-stranded ends of '{op.input}' were dropped on circularization")
    seq_id = engine.add_sequence(ctx, source.derive(source.id, **changes),
                                 op.output_id or f"{op.input}_{topology.value}")
    ctx.result.messages.append(f"Created {topology.value} sequence '{seq_id}' from '{op.input}'")


# Digestion, containers, ligation

def _digest_into(engine: Engine, ctx: OpContext, source: Sequence, enzymes: List,
                 prefix: str, budget: int) -> int:
    digest = digest_sequence(source, enzymes, prefix, max_fragments=budget, token=ctx.token)
    ctx.result.warnings.extend(digest.warnings)
    for fragment in digest.fragments:
        engine.add_sequence(ctx, fragment, fragment.id)
    return len(digest.fragments)


@handles(Digest)
def _digest(engine: Engine, op: Digest, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    enzymes = engine.resolve_enzymes(op.enzymes, ctx)
    ctx.parent_seq_ids.append(op.input)
    count = _digest_into(engine, ctx, source, enzymes, op.output_prefix or f"{op.input}_digest",
                         engine.max_fragments)
    ctx.result.messages.append(
        f"Digested '{op.input}' with {', '.join(str(e) for e in enzymes)} into {count} fragment(s)"
    )


@handles(DigestContainer)
def _digest_container(engine: Engine, op: DigestContainer, ctx: OpContext):
    members = engine.container_sequences(op.container_id)
    enzymes = engine.resolve_enzymes(op.enzymes, ctx)
    prefix = op.output_prefix or f"{op.container_id}_digest"
    total = 0
    for source in members:
        ctx.parent_seq_ids.append(source.id)
        total += _digest_into(engine, ctx, source, enzymes, f"{prefix}_{source.id}",
                              engine.max_fragments - total)
    ctx.result.messages.append(
        f"Digested container '{op.container_id}' ({len(members)} member(s)) into {total} fragment(s)"
    )


def _merge(engine: Engine, ctx: OpContext, members: List[ContainerMember], prefix: str):
    if not members:
        raise invalid_input("Merging requires at least one input sequence")
    if len(members) > engine.max_fragments:
        raise invalid_input(
            f"Merge input count {len(members)} exceeds "
            f"max_fragments_per_container={engine.max_fragments}"
        )
    for i, member in enumerate(members):
        source = engine.state.get_sequence(member.seq_id)
        ctx.parent_seq_ids.append(member.seq_id)
        seq_id = engine.add_sequence(ctx, source, f"{prefix}_{i + 1}")
        ctx.multiplicities[seq_id] = member.multiplicity


@handles(MergeContainers)
def _merge_containers(engine: Engine, op: MergeContainers, ctx: OpContext):
    prefix = op.output_prefix or "merged"
    _merge(engine, ctx, [ContainerMember(seq_id) for seq_id in op.inputs], prefix)
    ctx.result.messages.append(f"Merged {len(op.inputs)} input sequence(s) into container prefix '{prefix}'")


@handles(MergeContainersById)
def _merge_containers_by_id(engine: Engine, op: MergeContainersById, ctx: OpContext):
    if not op.container_ids:
        raise invalid_input("MergeContainersById requires at least one container id")
    counts: Dict[str, int] = {}
    for container_id in op.container_ids:
        for member in engine.container(container_id).members:
            counts[member.seq_id] = counts.get(member.seq_id, 0) + member.multiplicity
    members = [ContainerMember(seq_id, count) for seq_id, count in counts.items()]
    prefix = op.output_prefix or "merged"
    _merge(engine, ctx, members, prefix)
    ctx.result.messages.append(
        f"Merged containers {', '.join(op.container_ids)} into container prefix '{prefix}'"
    )


def _ligation_protocol(name: str) -> LigationProtocol:
    try:
        return LigationProtocol(name)
    except ValueError:
        raise invalid_input(f"Unknown ligation protocol '{name}'; expected 'Sticky' or 'Blunt'")


def _ligate_into(engine: Engine, ctx: OpContext, inputs: List[Sequence], protocol_name: str,
                 circularize: bool, unique: bool, output_id: Optional[str], output_prefix: Optional[str]):
    protocol = _ligation_protocol(protocol_name)
    ctx.parent_seq_ids.extend(s.id for s in inputs)
    result = ligate(inputs, protocol, circularize, engine.max_fragments)
    check_unique(len(result.products), unique, output_id, "Ligation")
    ctx.result.warnings.extend(result.warnings)
    prefix = output_prefix or "ligation"
    for i, product in enumerate(result.products):
        base = output_id if output_id and i == 0 else f"{prefix}_{i + 1}"
        seq_id = engine.add_sequence(ctx, product.sequence, base)
        ctx.result.messages.append(
            f"Ligated '{product.left_id}' + '{product.right_id}' -> '{seq_id}' "
            f"({product.sequence.topology.value})"
        )


@handles(Ligation)
def _ligation(engine: Engine, op: Ligation, ctx: OpContext):
    inputs = [engine.state.get_sequence(seq_id) for seq_id in op.inputs]
    _ligate_into(engine, ctx, inputs, op.protocol, op.circularize_if_possible, op.unique,
                 op.output_id, op.output_prefix)


@handles(LigationContainer)
def _ligation_container(engine: Engine, op: LigationContainer, ctx: OpContext):
    inputs = engine.container_sequences(op.container_id)
    _ligate_into(engine, ctx, inputs, op.protocol, op.circularize_if_possible, op.unique,
                 op.output_id, op.output_prefix)


# PCR

def _commit_amplicons(engine: Engine, ctx: OpContext, template: Sequence, amplicons, output_id: Optional[str],
                      unique: bool, base: str):
    check_unique(len(amplicons), unique, output_id, "PCR")
    for i, amplicon in enumerate(amplicons):
        if output_id:
            seq_base = output_id
        else:
            seq_base = base if len(amplicons) == 1 else f"{base}_{i + 1}"
        seq_id = engine.add_sequence(ctx, amplicon_sequence(template, amplicon, seq_base), seq_base)
        ctx.result.messages.append(
            f"Amplicon '{seq_id}': template {amplicon.template_start}..{amplicon.template_end}, "
            f"{len(amplicon.bases)} bp"
        )


@handles(Pcr)
def _pcr(engine: Engine, op: Pcr, ctx: OpContext):
    template = engine.state.get_sequence(op.template)
    ctx.parent_seq_ids.append(op.template)
    result = pcr_exact(template, op.forward_primer, op.reverse_primer)
    ctx.result.warnings.extend(result.warnings)
    _commit_amplicons(engine, ctx, template, result.amplicons, op.output_id, op.unique, f"{op.template}_pcr")


def _primer(data, label: str) -> PrimerSpec:
    if data is None:
        raise invalid_input(f"{label} is required")
    try:
        return PrimerSpec.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise invalid_input(f"Invalid {label}: {e}")


@handles(PcrAdvanced)
def _pcr_advanced(engine: Engine, op: PcrAdvanced, ctx: OpContext):
    template = engine.state.get_sequence(op.template)
    ctx.parent_seq_ids.append(op.template)
    result = pcr_advanced(
        template,
        _primer(op.forward_primer, "forward_primer"),
        _primer(op.reverse_primer, "reverse_primer"),
        default_max_variants=engine.state.parameters.max_primer_variants,
        token=ctx.token,
    )
    ctx.result.warnings.extend(result.warnings)
    _commit_amplicons(engine, ctx, template, result.amplicons, op.output_id, op.unique, f"{op.template}_pcr")


@handles(PcrMutagenesis)
def _pcr_mutagenesis(engine: Engine, op: PcrMutagenesis, ctx: OpContext):
    template = engine.state.get_sequence(op.template)
    try:
        mutations = [SnpMutation.from_dict(m) for m in op.mutations or []]
    except (KeyError, TypeError, ValueError) as e:
        raise invalid_input(f"Invalid mutation: {e}")
    validate_mutations(template, mutations)
    ctx.parent_seq_ids.append(op.template)
    result = pcr_advanced(
        template,
        _primer(op.forward_primer, "forward_primer"),
        _primer(op.reverse_primer, "reverse_primer"),
        default_max_variants=engine.state.parameters.max_primer_variants,
        mutations=mutations,
        require_all_mutations=op.require_all_mutations,
        token=ctx.token,
    )
    ctx.result.warnings.extend(result.warnings)
    _commit_amplicons(engine, ctx, template, result.amplicons, op.output_id, op.unique,
                      f"{op.template}_pcr_mut")


# Extraction and selection

@handles(ExtractRegion)
def _extract_region(engine: Engine, op: ExtractRegion, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    base = op.output_id or f"{op.input}_region_{op.from_}_{op.to}"
    region = extract_region(source, op.from_, op.to, base)
    ctx.parent_seq_ids.append(op.input)
    seq_id = engine.add_sequence(ctx, region, base)
    ctx.result.messages.append(f"Extracted {op.input}[{op.from_}..{op.to}) as '{seq_id}' ({len(region)} bp)")


@handles(ExtractAnchoredRegion)
def _extract_anchored_region(engine: Engine, op: ExtractAnchoredRegion, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    anchor = SequenceAnchor.from_dict(op.anchor)
    try:
        direction = AnchorDirection(op.direction)
    except ValueError:
        raise invalid_input(f"Unknown direction '{op.direction}'; expected 'Upstream' or 'Downstream'")
    enzymes = engine.resolve_enzymes(op.required_re_sites, ctx) if op.required_re_sites else []
    found = find_anchored_candidates(
        source, anchor, direction, op.target_length_bp, op.length_tolerance_bp,
        required_enzymes=enzymes,
        required_motifs=op.required_motifs,
        forward_primer=op.forward_primer,
        reverse_primer=op.reverse_primer,
        token=ctx.token,
    )
    ctx.result.warnings.extend(found.warnings)
    candidates = found.candidates
    if op.max_candidates is not None and op.max_candidates < 1:
        raise invalid_input("max_candidates must be >= 1")
    limit = min(op.max_candidates or engine.max_fragments, engine.max_fragments)
    if len(candidates) > limit:
        ctx.result.warnings.append(
            f"{len(candidates)} anchored-region candidates found; keeping the best {limit}"
        )
        candidates = candidates[:limit]
    check_unique(len(candidates), op.unique, None, "ExtractAnchoredRegion")

    ctx.parent_seq_ids.append(op.input)
    prefix = op.output_prefix or f"{op.input}_anchored"
    for i, candidate in enumerate(candidates):
        base = f"{prefix}_{i + 1}"
        seq_id = engine.add_sequence(ctx, anchored_candidate_sequence(source, candidate, base), base)
        ctx.result.messages.append(
            f"Anchored-region candidate '{seq_id}' [{candidate.start}..{candidate.end}, "
            f"{candidate.length} bp] score={candidate.score}"
        )


def _filter_into(engine: Engine, ctx: OpContext, inputs: List[Sequence], op):
    if not inputs:
        raise invalid_input("Molecular-weight filtering requires at least one input sequence")
    if len(inputs) > engine.max_fragments:
        raise invalid_input(
            f"Filter input count {len(inputs)} exceeds "
            f"max_fragments_per_container={engine.max_fragments}"
        )
    ctx.parent_seq_ids.extend(s.id for s in inputs)
    kept = filter_by_length(inputs, op.min_bp, op.max_bp, op.error)
    if op.unique and len(kept) != 1:
        raise invalid_input(
            f"Molecular-weight filter with unique=true requires exactly one match, found {len(kept)}"
        )
    if not kept:
        ctx.result.warnings.append(
            f"No sequence within {op.min_bp}..{op.max_bp} bp (error {op.error}); nothing selected"
        )
    prefix = op.output_prefix or "mw_filter"
    for i, sequence in enumerate(kept):
        seq_id = engine.add_sequence(ctx, sequence, f"{prefix}_{i + 1}", SequenceOrigin.IN_SILICO_SELECTION)
        ctx.result.messages.append(f"Selected '{sequence.id}' ({len(sequence)} bp) as '{seq_id}'")


@handles(FilterByMolecularWeight)
def _filter_by_molecular_weight(engine: Engine, op: FilterByMolecularWeight, ctx: OpContext):
    _filter_into(engine, ctx, [engine.state.get_sequence(seq_id) for seq_id in op.inputs], op)


@handles(FilterContainerByMolecularWeight)
def _filter_container_by_molecular_weight(engine: Engine, op: FilterContainerByMolecularWeight, ctx: OpContext):
    _filter_into(engine, ctx, engine.container_sequences(op.container_id), op)


@handles(SelectCandidate)
def _select_candidate(engine: Engine, op: SelectCandidate, ctx: OpContext):
    source = engine.state.get_sequence(op.input)
    ctx.parent_seq_ids.append(op.input)
    seq_id = engine.add_sequence(ctx, source, op.output_id or f"{op.input}_selected",
                                 SequenceOrigin.IN_SILICO_SELECTION)
    ctx.result.warnings.append(SELECTION_WARNING)
    ctx.result.messages.append(
        f"Selected candidate '{seq_id}' from '{op.input}' using criterion '{op.criterion}'"
    )


# Display and parameters

@handles(SetDisplayVisibility)
def _set_display_visibility(engine: Engine, op: SetDisplayVisibility, ctx: OpContext):
    if not isinstance(op.visible, bool):
        raise invalid_input("visible must be true or false")
    engine.state.display.set_visibility(op.target, op.visible)
    ctx.result.messages.append(f"{op.target} {'shown' if op.visible else 'hidden'}")


@handles(SetLinearViewport)
def _set_linear_viewport(engine: Engine, op: SetLinearViewport, ctx: OpContext):
    for name, value in (('start_bp', op.start_bp), ('span_bp', op.span_bp)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise invalid_input(f"{name} must be a non-negative integer, got {value!r}")
    engine.state.display.linear_view_start_bp = op.start_bp
    engine.state.display.linear_view_span_bp = op.span_bp
    ctx.result.messages.append(f"Linear viewport set to {op.start_bp}+{op.span_bp} bp")


@handles(SetParameter)
def _set_parameter(engine: Engine, op: SetParameter, ctx: OpContext):
    engine.state.parameters.set(op.name, op.value)
    ctx.result.messages.append(f"Parameter {op.name} = {op.value}")


# Candidate sets

def _candidate_limit(engine: Engine, requested: Optional[int]) -> int:
    cap = engine.state.parameters.max_candidates_per_set
    if requested is None:
        return cap
    if isinstance(requested, bool) or not isinstance(requested, int) or requested < 1:
        raise invalid_input(f"max_candidates must be a positive integer, got {requested!r}")
    return min(requested, cap)


def _store_set(engine: Engine, ctx: OpContext, candidate_set: CandidateSet, name: str, verb: str):
    candidate_set.name = name
    candidate_set.created_by_op = ctx.op_id
    save_set(engine.state.candidate_sets, candidate_set)
    ctx.created_sets.append(name)
    ctx.result.messages.append(f"{verb} candidate set '{name}' ({len(candidate_set)} candidates)")


@handles(GenerateCandidateSet)
def _generate_candidate_set(engine: Engine, op: GenerateCandidateSet, ctx: OpContext):
    _require(op.set_name, "set_name")
    sequence = engine.state.get_sequence(op.seq_id)
    ctx.parent_seq_ids.append(op.seq_id)
    candidate_set = generate_candidates(
        sequence, op.set_name, op.length_bp, op.step_bp, op.strands, op.feature_kind,
        _candidate_limit(engine, op.max_candidates), ctx.token,
    )
    _store_set(engine, ctx, candidate_set, op.set_name, "Generated")


@handles(GenerateCandidateSetBetweenAnchors)
def _generate_candidate_set_between_anchors(engine: Engine, op: GenerateCandidateSetBetweenAnchors,
                                            ctx: OpContext):
    _require(op.set_name, "set_name")
    sequence = engine.state.get_sequence(op.seq_id)
    ctx.parent_seq_ids.append(op.seq_id)
    candidate_set = generate_candidates_between_anchors(
        sequence, op.set_name,
        SequenceAnchor.from_dict(op.anchor_a), SequenceAnchor.from_dict(op.anchor_b),
        op.length_bp, op.step_bp, op.strands, op.feature_kind,
        _candidate_limit(engine, op.max_candidates), ctx.token,
    )
    _store_set(engine, ctx, candidate_set, op.set_name, "Generated")


def _source_set(engine: Engine, ctx: OpContext, name: str) -> CandidateSet:
    candidate_set = load_set(engine.state.candidate_sets, name)
    ctx.parent_sets.append(name)
    return candidate_set


@handles(ScoreCandidateSetExpression)
def _score_expression(engine: Engine, op: ScoreCandidateSetExpression, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    scored = score_expression(source, engine.state.sequences, op.metric, op.expression, ctx.token)
    ctx.result.warnings.extend(scored.warnings)
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_{op.metric}")
    _store_set(engine, ctx, scored.candidate_set, name, "Scored")


@handles(ScoreCandidateSetDistance)
def _score_distance(engine: Engine, op: ScoreCandidateSetDistance, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    scored = score_distance(
        source, engine.state.sequences, op.metric, op.feature_kind, op.feature_geometry_mode,
        op.feature_boundary_mode, op.strand_relation, op.signed, ctx.token,
    )
    ctx.result.warnings.extend(scored.warnings)
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_{op.metric}")
    _store_set(engine, ctx, scored.candidate_set, name, "Scored")


def _terms(data, label: str) -> List[ObjectiveTerm]:
    if not isinstance(data, list):
        raise invalid_input(f"{label} must be a list")
    try:
        return [ObjectiveTerm.from_dict(d) for d in data]
    except (KeyError, TypeError, ValueError) as e:
        raise invalid_input(f"Invalid {label} entry: {e}")


@handles(ScoreCandidateSetWeightedObjective)
def _score_weighted_objective(engine: Engine, op: ScoreCandidateSetWeightedObjective, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    candidates = weighted_objective(source, op.metric, _terms(op.terms, "terms"), op.normalize_metrics)
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_{op.metric}")
    _store_set(engine, ctx, source.derive(name, candidates), name, "Scored")


@handles(TopKCandidateSet)
def _top_k(engine: Engine, op: TopKCandidateSet, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    if isinstance(op.k, bool) or not isinstance(op.k, int):
        raise invalid_input(f"k must be an integer, got {op.k!r}")
    candidates = top_k(source, op.metric, op.k, op.direction)
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_top{op.k}")
    _store_set(engine, ctx, source.derive(name, candidates), name, "Selected")


@handles(ParetoFrontierCandidateSet)
def _pareto_frontier(engine: Engine, op: ParetoFrontierCandidateSet, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    candidates = pareto_frontier(source, _terms(op.objectives, "objectives"))
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_pareto")
    _store_set(engine, ctx, source.derive(name, candidates), name, "Selected")


@handles(FilterCandidateSet)
def _filter_candidate_set(engine: Engine, op: FilterCandidateSet, ctx: OpContext):
    source = _source_set(engine, ctx, op.set_name)
    candidates, warnings = filter_by_metric(
        source, op.metric, op.min_value, op.max_value, op.min_quantile, op.max_quantile,
    )
    ctx.result.warnings.extend(warnings)
    name = output_set_name(engine.state.candidate_sets, op.output_set, f"{op.set_name}_filtered")
    _store_set(engine, ctx, source.derive(name, candidates), name, "Filtered")


@handles(CandidateSetOp)
def _candidate_set_op(engine: Engine, op: CandidateSetOp, ctx: OpContext):
    left = _source_set(engine, ctx, op.left_set)
    right = _source_set(engine, ctx, op.right_set)
    candidates = set_operation(op.op, left, right)
    name = output_set_name(engine.state.candidate_sets, op.output_set,
                           f"{op.left_set}_{op.op.lower()}_{op.right_set}")
    combined = CandidateSet(
        name=name,
        candidates=candidates,
        source_seq_ids=list(dict.fromkeys(left.source_seq_ids + right.source_seq_ids)),
    )
    _store_set(engine, ctx, combined, name, "Combined")


@handles(DeleteCandidateSet)
def _delete_candidate_set(engine: Engine, op: DeleteCandidateSet, ctx: OpContext):
    store = engine.state.candidate_sets
    if op.set_name not in store:
        raise not_found(f"Candidate set '{op.set_name}' not found")
    del store[op.set_name]
    ctx.result.messages.append(f"Deleted candidate set '{op.set_name}'")


_MISSING = [tag for tag, op_type in OPERATION_TYPES.items() if op_type not in _HANDLERS]
if _MISSING:
    raise RuntimeError(f"No executor handler for operation(s): {', '.join(_MISSING)}")


def capabilities() -> Dict[str, object]:
    """Protocol description shared by every front end."""
    return {
        'protocol_version': 'v1',
        'supported_operations': sorted(OPERATION_TYPES),
        'display_only_operations': sorted(tag for tag, t in OPERATION_TYPES.items() if t.display_only),
        'parameters': EngineParameters().to_dict(),
    }
