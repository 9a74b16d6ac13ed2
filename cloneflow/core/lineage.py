"""
Provenance graph.

An append-only DAG: nodes are sequence or candidate-set states, edges record
which operation derived a child from its parents. Ligation and other
multi-input operations produce multi-parent children.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SequenceOrigin(Enum):
    IMPORTED = "imported"
    DERIVED = "derived"
    IN_SILICO_SELECTION = "in_silico_selection"
    BRANCH = "branch"


class NodeKind(Enum):
    SEQUENCE = "sequence"
    CANDIDATE_SET = "candidate_set"


@dataclass
class LineageNode:
    node_id: str
    seq_id: str
    created_by_op: Optional[str] = None
    origin: SequenceOrigin = SequenceOrigin.DERIVED
    kind: NodeKind = NodeKind.SEQUENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'seq_id': self.seq_id,
            'created_by_op': self.created_by_op,
            'origin': self.origin.value,
            'kind': self.kind.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'LineageNode':
        return cls(
            node_id=d['node_id'],
            seq_id=d['seq_id'],
            created_by_op=d.get('created_by_op'),
            origin=SequenceOrigin(d.get('origin', 'derived')),
            kind=NodeKind(d.get('kind', 'sequence')),
        )


@dataclass
class LineageEdge:
    from_node_id: str
    to_node_id: str
    op_id: str
    run_id: str = "interactive"

    def to_dict(self) -> Dict[str, str]:
        return {
            'from_node_id': self.from_node_id,
            'to_node_id': self.to_node_id,
            'op_id': self.op_id,
            'run_id': self.run_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, str]) -> 'LineageEdge':
        return cls(d['from_node_id'], d['to_node_id'], d['op_id'], d.get('run_id', 'interactive'))


@dataclass
class MacroInstance:
    """One recorded execution of a workflow or macro template.

    Immutable after creation except for the terminal status.
    """
    macro_instance_id: str
    template_name: Optional[str]
    run_id: str
    bound_inputs: Dict[str, Any] = field(default_factory=dict)
    bound_outputs: Dict[str, Any] = field(default_factory=dict)
    emitted_op_ids: List[str] = field(default_factory=list)
    status: str = "running"
    error: Optional[Dict[str, Any]] = None

    TERMINAL = ('ok', 'failed', 'cancelled')

    def finish(self, status: str, error: Optional[Dict[str, Any]] = None):
        if status not in self.TERMINAL:
            raise ValueError(f"Unknown macro status: {status}")
        if self.status in self.TERMINAL:
            raise ValueError(f"Macro instance {self.macro_instance_id} already finished")
        self.status = status
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'macro_instance_id': self.macro_instance_id,
            'template_name': self.template_name,
            'run_id': self.run_id,
            'bound_inputs': dict(self.bound_inputs),
            'bound_outputs': dict(self.bound_outputs),
            'emitted_op_ids': list(self.emitted_op_ids),
            'status': self.status,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MacroInstance':
        return cls(
            macro_instance_id=d['macro_instance_id'],
            template_name=d.get('template_name'),
            run_id=d['run_id'],
            bound_inputs=dict(d.get('bound_inputs', {})),
            bound_outputs=dict(d.get('bound_outputs', {})),
            emitted_op_ids=list(d.get('emitted_op_ids', [])),
            status=d.get('status', 'ok'),
            error=d.get('error'),
        )


@dataclass
class LineageGraph:
    """Adjacency-list DAG with id indexes."""
    nodes: Dict[str, LineageNode] = field(default_factory=dict)
    edges: List[LineageEdge] = field(default_factory=list)
    seq_to_node: Dict[str, str] = field(default_factory=dict)
    set_to_node: Dict[str, str] = field(default_factory=dict)
    macro_instances: List[MacroInstance] = field(default_factory=list)
    next_node_counter: int = 0

    def add_node(
        self,
        ref_id: str,
        origin: SequenceOrigin,
        created_by_op: Optional[str],
        kind: NodeKind = NodeKind.SEQUENCE,
    ) -> str:
        self.next_node_counter += 1
        node_id = f"n-{self.next_node_counter}"
        self.nodes[node_id] = LineageNode(
            node_id=node_id,
            seq_id=ref_id,
            created_by_op=created_by_op,
            origin=origin,
            kind=kind,
        )
        index = self.seq_to_node if kind == NodeKind.SEQUENCE else self.set_to_node
        index[ref_id] = node_id
        return node_id

    def ensure_node(self, seq_id: str) -> str:
        node_id = self.seq_to_node.get(seq_id)
        if node_id is not None:
            return node_id
        return self.add_node(seq_id, SequenceOrigin.IMPORTED, None)

    def add_edges(self, parent_nodes: List[str], child_nodes: List[str], op_id: str, run_id: str):
        """Connect every parent to every child."""
        for parent in parent_nodes:
            for child in child_nodes:
                if parent == child:
                    continue
                self.edges.append(LineageEdge(parent, child, op_id, run_id))

    def parents_of(self, node_id: str) -> List[str]:
        return [e.from_node_id for e in self.edges if e.to_node_id == node_id]

    def children_of(self, node_id: str) -> List[str]:
        return [e.to_node_id for e in self.edges if e.from_node_id == node_id]

    def ancestors(self, node_id: str) -> List[str]:
        """All transitive parents, nearest first."""
        seen: List[str] = []
        frontier = [node_id]
        while frontier:
            current = frontier.pop(0)
            for parent in self.parents_of(current):
                if parent not in seen:
                    seen.append(parent)
                    frontier.append(parent)
        return seen

    def validate(self) -> List[str]:
        """
        Check the DAG invariants.

        Returns:
            List of violations: dangling edge endpoints, dangling index
            entries, and cycles (reported once per cycle-entry node)
        """
        errors = self._check_edges(self.edges)
        for index in (self.seq_to_node, self.set_to_node):
            for ref_id, node_id in index.items():
                if node_id not in self.nodes:
                    errors.append(f"Index maps '{ref_id}' to unknown node '{node_id}'")
        errors.extend(_find_cycles(sorted(self.nodes), self.edges))
        return errors

    def validate_since(self, node_counter: int, edge_count: int) -> List[str]:
        """
        Check only what was appended after a (next_node_counter, len(edges)) mark.

        When every new edge ends at a node created after the mark, those nodes
        have no older outgoing edges, so a cycle can only run through new
        edges. Otherwise the whole graph is checked.
        """
        new_edges = self.edges[edge_count:]
        new_nodes = {f"n-{i}" for i in range(node_counter + 1, self.next_node_counter + 1)}
        errors = [f"Lineage node '{node_id}' is missing" for node_id in sorted(new_nodes, key=_node_order)
                  if node_id not in self.nodes]
        if any(edge.to_node_id not in new_nodes for edge in new_edges):
            return errors + self.validate()
        errors.extend(self._check_edges(new_edges))
        roots = sorted({edge.from_node_id for edge in new_edges}, key=_node_order)
        errors.extend(_find_cycles(roots, new_edges))
        return errors

    def _check_edges(self, edges: List[LineageEdge]) -> List[str]:
        errors = []
        for edge in edges:
            if edge.from_node_id not in self.nodes:
                errors.append(f"Edge {edge.op_id} starts at unknown node '{edge.from_node_id}'")
            if edge.to_node_id not in self.nodes:
                errors.append(f"Edge {edge.op_id} ends at unknown node '{edge.to_node_id}'")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': {nid: n.to_dict() for nid, n in sorted(self.nodes.items(), key=lambda kv: _node_order(kv[0]))},
            'edges': [e.to_dict() for e in self.edges],
            'seq_to_node': dict(sorted(self.seq_to_node.items())),
            'set_to_node': dict(sorted(self.set_to_node.items())),
            'macro_instances': [m.to_dict() for m in self.macro_instances],
            'next_node_counter': self.next_node_counter,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'LineageGraph':
        d = d or {}
        return cls(
            nodes={nid: LineageNode.from_dict(n) for nid, n in d.get('nodes', {}).items()},
            edges=[LineageEdge.from_dict(e) for e in d.get('edges', [])],
            seq_to_node=dict(d.get('seq_to_node', {})),
            set_to_node=dict(d.get('set_to_node', {})),
            macro_instances=[MacroInstance.from_dict(m) for m in d.get('macro_instances', [])],
            next_node_counter=int(d.get('next_node_counter', 0)),
        )


def _node_order(node_id: str):
    prefix, _, number = node_id.partition('-')
    return (prefix, int(number)) if number.isdigit() else (prefix, 0)


def _find_cycles(roots: List[str], edges: List[LineageEdge]) -> List[str]:
    """Iterative three-colour DFS over the given edges, starting from roots in order."""
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.from_node_id].append(edge.to_node_id)
    errors = []
    white, grey, black = 0, 1, 2
    colour: Dict[str, int] = defaultdict(int)
    for root in roots:
        if colour[root] != white:
            continue
        stack = [(root, iter(adjacency.get(root, [])))]
        colour[root] = grey
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                state = colour[child]
                if state == grey:
                    errors.append(f"Cycle detected through node '{child}'")
                elif state == white:
                    colour[child] = grey
                    stack.append((child, iter(adjacency.get(child, []))))
                    advanced = True
                    break
            if not advanced:
                colour[node] = black
                stack.pop()
    return errors
