"""
I/O modules for CloneFlow.
"""

from .fasta import FastaRecord, read_fasta, sequence_record, write_fasta
from .output import (
    candidate_set_frame,
    generate_summary_report,
    lineage_frame,
    sequences_frame,
    state_summary,
    write_candidate_set_tsv,
    write_sequences_tsv,
)
from .pool import pool_document, write_pool_json

__all__ = [
    'FastaRecord',
    'read_fasta',
    'write_fasta',
    'sequence_record',
    'candidate_set_frame',
    'write_candidate_set_tsv',
    'sequences_frame',
    'write_sequences_tsv',
    'lineage_frame',
    'state_summary',
    'generate_summary_report',
    'pool_document',
    'write_pool_json',
]
