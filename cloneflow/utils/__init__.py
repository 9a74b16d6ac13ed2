"""
Utility modules for CloneFlow.
"""

from .sequence import (
    circular_slice,
    complement,
    contains_iupac_pattern,
    contains_motif_any_strand,
    expand_iupac_options,
    find_all_positions,
    gc_content,
    gc_count,
    hamming_distance,
    iupac_match_at,
    normalize_dna,
    normalize_iupac,
    reverse_complement,
)

__all__ = [
    'normalize_dna',
    'normalize_iupac',
    'complement',
    'reverse_complement',
    'iupac_match_at',
    'contains_iupac_pattern',
    'contains_motif_any_strand',
    'expand_iupac_options',
    'hamming_distance',
    'gc_content',
    'gc_count',
    'find_all_positions',
    'circular_slice',
]
