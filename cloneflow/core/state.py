"""
Project state for CloneFlow.

ProjectState owns every sequence, container, lineage record and candidate set
by string id. Its persisted form is a JSON document with the keys
``sequences, metadata, display, lineage, parameters, container_state``.
"""

import copy
import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import EngineParameters
from ..errors import invalid_input, io_error, not_found
from .containers import ContainerState
from .lineage import LineageGraph
from .models import Sequence


# Display targets toggled by SetDisplayVisibility, mapped to their flag
DISPLAY_TARGETS = {
    'SequencePanel': 'show_sequence_panel',
    'MapPanel': 'show_map_panel',
    'Features': 'show_features',
    'CdsFeatures': 'show_cds_features',
    'GeneFeatures': 'show_gene_features',
    'MrnaFeatures': 'show_mrna_features',
    'Tfbs': 'show_tfbs',
    'RestrictionEnzymes': 'show_restriction_enzymes',
    'GcContents': 'show_gc_contents',
    'OpenReadingFrames': 'show_open_reading_frames',
    'MethylationSites': 'show_methylation_sites',
}


@dataclass
class DisplaySettings:
    """Front-end display flags; never part of lineage."""
    show_sequence_panel: bool = True
    show_map_panel: bool = True
    show_features: bool = True
    show_cds_features: bool = True
    show_gene_features: bool = True
    show_mrna_features: bool = True
    show_tfbs: bool = False
    show_restriction_enzymes: bool = True
    show_gc_contents: bool = True
    show_open_reading_frames: bool = True
    show_methylation_sites: bool = False
    linear_view_start_bp: int = 0
    linear_view_span_bp: int = 0

    def set_visibility(self, target: str, visible: bool):
        attr = DISPLAY_TARGETS.get(target)
        if attr is None:
            raise invalid_input(
                f"Unknown display target '{target}'; expected one of {', '.join(DISPLAY_TARGETS)}"
            )
        setattr(self, attr, bool(visible))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'DisplaySettings':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (d or {}).items() if k in known})


@dataclass(frozen=True)
class StateMark:
    node_counter: int
    edge_count: int
    container_counter: int


@dataclass
class ProjectState:
    """
    In-memory project: the single value every operation threads through.

    Attributes:
        sequences: seq_id -> Sequence (never mutated in place)
        metadata: Free-form metadata; holds ``candidate_sets`` and the
            operation counter
        display: Display flags and viewport
        lineage: Provenance DAG
        parameters: Engine limits
        container_state: Containers and the latest-membership index
    """
    sequences: Dict[str, Sequence] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    display: DisplaySettings = field(default_factory=DisplaySettings)
    lineage: LineageGraph = field(default_factory=LineageGraph)
    parameters: EngineParameters = field(default_factory=EngineParameters)
    container_state: ContainerState = field(default_factory=ContainerState)

    def get_sequence(self, seq_id: str) -> Sequence:
        seq = self.sequences.get(seq_id)
        if seq is None:
            raise not_found(f"Sequence '{seq_id}' not found")
        return seq

    def unique_seq_id(self, base: str) -> str:
        """Return base, or base_2, base_3, ... if already taken."""
        base = base or 'seq'
        if base not in self.sequences:
            return base
        n = 2
        while f"{base}_{n}" in self.sequences:
            n += 1
        return f"{base}_{n}"

    def next_op_id(self) -> str:
        counter = int(self.metadata.get('next_op_counter', 0)) + 1
        self.metadata['next_op_counter'] = counter
        return f"op-{counter}"

    def next_macro_instance_id(self) -> str:
        counter = int(self.metadata.get('next_macro_instance_counter', 0)) + 1
        self.metadata['next_macro_instance_counter'] = counter
        return f"macro-{counter}"

    @property
    def candidate_sets(self) -> Dict[str, Any]:
        return self.metadata.setdefault('candidate_sets', {})

    def snapshot(self) -> 'ProjectState':
        return copy.deepcopy(self)

    def restore(self, snapshot: 'ProjectState'):
        """Replace every field with the snapshot's value."""
        for f in fields(self):
            setattr(self, f.name, getattr(snapshot, f.name))

    def validate(self) -> List[str]:
        """Collect container and lineage invariant violations."""
        errors = self.container_state.validate(self.sequences.keys())
        errors.extend(self.lineage.validate())
        for seq_id, seq in self.sequences.items():
            if seq.id != seq_id:
                errors.append(f"Sequence stored under '{seq_id}' has id '{seq.id}'")
        return errors

    def mark(self) -> 'StateMark':
        """Counters to validate later additions against."""
        return StateMark(
            node_counter=self.lineage.next_node_counter,
            edge_count=len(self.lineage.edges),
            container_counter=self.container_state.next_container_counter,
        )

    def validate_since(self, mark: 'StateMark', new_seq_ids: List[str]) -> List[str]:
        """
        Check only what was added after mark.

        Sequences are never removed, so records that passed an earlier check
        stay valid; only new sequences, lineage entries and containers are
        inspected.
        """
        errors = self.container_state.validate_since(mark.container_counter, self.sequences)
        errors.extend(self.lineage.validate_since(mark.node_counter, mark.edge_count))
        for seq_id in new_seq_ids:
            seq = self.sequences.get(seq_id)
            if seq is None:
                errors.append(f"Created sequence '{seq_id}' is missing")
            elif seq.id != seq_id:
                errors.append(f"Sequence stored under '{seq_id}' has id '{seq.id}'")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sequences': {sid: s.to_dict() for sid, s in sorted(self.sequences.items())},
            'metadata': copy.deepcopy(self.metadata),
            'display': self.display.to_dict(),
            'lineage': self.lineage.to_dict(),
            'parameters': self.parameters.to_dict(),
            'container_state': self.container_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ProjectState':
        return cls(
            sequences={sid: Sequence.from_dict(s) for sid, s in (d.get('sequences') or {}).items()},
            metadata=copy.deepcopy(d.get('metadata') or {}),
            display=DisplaySettings.from_dict(d.get('display')),
            lineage=LineageGraph.from_dict(d.get('lineage')),
            parameters=EngineParameters.from_dict(d.get('parameters')),
            container_state=ContainerState.from_dict(d.get('container_state')),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> 'ProjectState':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise invalid_input(f"Invalid project JSON: {e}")
        if not isinstance(data, dict):
            raise invalid_input("Project JSON must be an object")
        return cls.from_dict(data)

    def save_to_path(self, path: Path):
        try:
            Path(path).write_text(self.to_json())
        except OSError as e:
            raise io_error(f"Cannot write project {path}: {e}")

    @classmethod
    def load_from_path(cls, path: Path) -> 'ProjectState':
        try:
            text = Path(path).read_text()
        except OSError as e:
            raise io_error(f"Cannot read project {path}: {e}")
        return cls.from_json(text)
