"""
Core modules for CloneFlow: sequence, container and lineage models, project
state, the operation protocol and the executor.
"""

from .containers import Container, ContainerKind, ContainerMember, ContainerState
from .lineage import LineageEdge, LineageGraph, LineageNode, MacroInstance, NodeKind, SequenceOrigin
from .models import Feature, FeatureLocation, Overhang, Sequence, StrandKind, Topology
from .operations import OPERATION_TYPES, OpResult, Operation, Workflow, parse_operation
from .progress import CancellationToken
from .state import DisplaySettings, ProjectState

__all__ = [
    'Container',
    'ContainerKind',
    'ContainerMember',
    'ContainerState',
    'LineageEdge',
    'LineageGraph',
    'LineageNode',
    'MacroInstance',
    'NodeKind',
    'SequenceOrigin',
    'Feature',
    'FeatureLocation',
    'Overhang',
    'Sequence',
    'StrandKind',
    'Topology',
    'OPERATION_TYPES',
    'OpResult',
    'Operation',
    'Workflow',
    'parse_operation',
    'CancellationToken',
    'DisplaySettings',
    'ProjectState',
]
