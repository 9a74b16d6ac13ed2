"""
Pool export.

Writes a set of sequences as one JSON document so a pool can be handed to
another tool or re-imported by hand. Each member carries its bases,
topology and the single-stranded ends that matter for ligation.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

POOL_SCHEMA = 'cloneflow.pool.v1'


def default_human_id(seq_ids: List[str]) -> str:
    if len(seq_ids) <= 4:
        return f"Pool({', '.join(seq_ids)})"
    return f"Pool({len(seq_ids)} members, first: {seq_ids[0]})"


def pool_member(sequence) -> Dict[str, Any]:
    ends = sequence.overhang.to_dict()
    ends['end_type'] = sequence.overhang.end_type()
    return {
        'seq_id': sequence.id,
        'human_id': sequence.name or sequence.id,
        'name': sequence.name,
        'sequence': sequence.bases,
        'length_bp': len(sequence.bases),
        'topology': sequence.topology.value,
        'ends': ends,
    }


def pool_document(sequences: List, pool_id: str = 'pool_export',
                  human_id: Optional[str] = None) -> Dict[str, Any]:
    members = [pool_member(seq) for seq in sequences]
    return {
        'schema': POOL_SCHEMA,
        'pool_id': pool_id,
        'human_id': human_id or default_human_id([m['seq_id'] for m in members]),
        'member_count': len(members),
        'members': members,
    }


def write_pool_json(path: Path, document: Dict[str, Any]) -> Path:
    path = Path(path)
    with open(path, 'w') as f:
        json.dump(document, f, indent=2)
        f.write('\n')
    return path
