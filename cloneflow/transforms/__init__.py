"""
Sequence transform library: digestion, ligation, PCR, extraction and
length selection. Functions here are pure; the executor commits results.
"""

from .digest import DigestResult, digest_sequence, resolve_enzymes
from .extraction import (
    AnchorBoundary,
    AnchorDirection,
    SequenceAnchor,
    extract_region,
    find_anchored_candidates,
    resolve_anchor,
)
from .filtering import effective_bounds, filter_by_length
from .ligation import LigationProtocol, ligate, ligate_pair
from .pcr import LibraryMode, PrimerSpec, SnpMutation, pcr_advanced, pcr_exact

__all__ = [
    'DigestResult',
    'digest_sequence',
    'resolve_enzymes',
    'AnchorBoundary',
    'AnchorDirection',
    'SequenceAnchor',
    'extract_region',
    'find_anchored_candidates',
    'resolve_anchor',
    'effective_bounds',
    'filter_by_length',
    'LigationProtocol',
    'ligate',
    'ligate_pair',
    'LibraryMode',
    'PrimerSpec',
    'SnpMutation',
    'pcr_advanced',
    'pcr_exact',
]
