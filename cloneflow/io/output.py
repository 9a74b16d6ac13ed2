"""
Tabular and report output for CloneFlow projects.
"""

from pathlib import Path
from typing import Any, Dict, List
import logging

import pandas as pd

from ..candidates.models import CandidateSet
from ..core.state import ProjectState
from ..utils.sequence import gc_content

logger = logging.getLogger(__name__)


def candidate_set_frame(candidate_set: CandidateSet) -> pd.DataFrame:
    """One row per candidate, one column per metric (sorted)."""
    metrics = candidate_set.metric_names()
    rows = []
    for c in candidate_set.candidates:
        row = {
            'candidate_id': c.candidate_id,
            'seq_id': c.seq_id,
            'start': c.start,
            'end': c.end,
            'strand': c.strand,
            'length_bp': c.length,
        }
        for name in metrics:
            row[name] = c.metrics.get(name)
        rows.append(row)
    columns = ['candidate_id', 'seq_id', 'start', 'end', 'strand', 'length_bp'] + metrics
    return pd.DataFrame(rows, columns=columns)


def write_candidate_set_tsv(candidate_set: CandidateSet, output_path: Path) -> Path:
    """
    Write a candidate set to TSV.

    Args:
        candidate_set: Set to export
        output_path: Path for output TSV

    Returns:
        Path to written file
    """
    df = candidate_set_frame(candidate_set)
    df.to_csv(output_path, sep='\t', index=False)

    logger.info(f"Wrote {len(df)} candidates of '{candidate_set.name}' to {output_path}")

    return output_path


def sequences_frame(state: ProjectState) -> pd.DataFrame:
    rows = []
    for seq_id, seq in sorted(state.sequences.items()):
        bases = seq.bases
        rows.append({
            'seq_id': seq_id,
            'length_bp': len(bases),
            'topology': seq.topology.value,
            'strand_kind': seq.strand_kind.value,
            'gc_fraction': round(gc_content(bases, called_only=False), 4),
            'features': len(seq.features),
            'ends': seq.overhang.end_type(),
            'container': state.container_state.seq_to_latest_container.get(seq_id, ''),
        })
    return pd.DataFrame(rows, columns=['seq_id', 'length_bp', 'topology', 'strand_kind',
                                       'gc_fraction', 'features', 'ends', 'container'])


def write_sequences_tsv(state: ProjectState, output_path: Path) -> Path:
    df = sequences_frame(state)
    df.to_csv(output_path, sep='\t', index=False)
    logger.info(f"Wrote {len(df)} sequences to {output_path}")
    return output_path


def state_summary(state: ProjectState) -> Dict[str, Any]:
    """Counts describing a project, as a JSON-friendly dict."""
    return {
        'sequences': len(state.sequences),
        'containers': len(state.container_state.containers),
        'lineage_nodes': len(state.lineage.nodes),
        'lineage_edges': len(state.lineage.edges),
        'candidate_sets': {name: len(data.get('candidates', []))
                           for name, data in sorted(state.candidate_sets.items())},
        'macro_instances': len(state.lineage.macro_instances),
        'parameters': state.parameters.to_dict(),
    }


def generate_summary_report(state: ProjectState, output_path: Path) -> Path:
    """
    Generate a project summary in markdown format.

    Args:
        state: Project to summarize
        output_path: Path for output markdown file

    Returns:
        Path to written file
    """
    summary = state_summary(state)
    with open(output_path, 'w') as f:
        f.write("# CloneFlow Project Summary\n\n")

        f.write("## Overview\n\n")
        f.write(f"- **Sequences:** {summary['sequences']:,}\n")
        f.write(f"- **Containers:** {summary['containers']:,}\n")
        f.write(f"- **Lineage:** {summary['lineage_nodes']:,} nodes, {summary['lineage_edges']:,} edges\n")
        f.write(f"- **Workflow/macro runs:** {summary['macro_instances']}\n\n")

        f.write("## Sequences\n\n")
        f.write("| Sequence | Length (bp) | Topology | Ends |\n")
        f.write("|----------|-------------|----------|------|\n")
        for seq_id, seq in sorted(state.sequences.items()):
            f.write(f"| {seq_id} | {len(seq):,} | {seq.topology.value} | {seq.overhang.end_type()} |\n")
        f.write("\n")

        if summary['candidate_sets']:
            f.write("## Candidate Sets\n\n")
            f.write("| Set | Candidates |\n")
            f.write("|-----|------------|\n")
            for name, count in summary['candidate_sets'].items():
                f.write(f"| {name} | {count:,} |\n")
            f.write("\n")

    logger.info(f"Wrote summary report to {output_path}")

    return output_path


def lineage_frame(state: ProjectState) -> pd.DataFrame:
    rows: List[Dict[str, str]] = []
    nodes = state.lineage.nodes
    for edge in state.lineage.edges:
        rows.append({
            'parent': nodes[edge.from_node_id].seq_id if edge.from_node_id in nodes else edge.from_node_id,
            'child': nodes[edge.to_node_id].seq_id if edge.to_node_id in nodes else edge.to_node_id,
            'op_id': edge.op_id,
            'run_id': edge.run_id,
        })
    return pd.DataFrame(rows, columns=['parent', 'child', 'op_id', 'run_id'])
