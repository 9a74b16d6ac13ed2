"""
FASTA loading and writing.

Header words after the id are scanned for ``topology=circular`` (or the bare
word ``circular``) so plasmids survive a round trip.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List

FASTA_SUFFIXES = ('.fa', '.fasta', '.fna', '.fas', '.ffn')


@dataclass
class FastaRecord:
    id: str
    description: str
    sequence: str

    @property
    def circular(self) -> bool:
        words = self.description.lower().split()
        return 'circular' in words or 'topology=circular' in words


def is_fasta_path(path: Path) -> bool:
    return Path(path).suffix.lower() in FASTA_SUFFIXES


def read_fasta(path: Path) -> List[FastaRecord]:
    """Read all records of a FASTA file."""
    records = []
    header = None
    chunks: List[str] = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith(';'):
                continue
            if line.startswith('>'):
                if header is not None:
                    records.append(_record(header, chunks))
                header = line[1:].strip()
                chunks = []
                continue
            if header is None:
                raise ValueError(f"{path}: sequence data before the first '>' header")
            chunks.append(line.upper())
    if header is not None:
        records.append(_record(header, chunks))
    return records


def _record(header: str, chunks: List[str]) -> FastaRecord:
    parts = header.split(None, 1)
    seq_id = parts[0] if parts else 'seq'
    description = parts[1] if len(parts) > 1 else ''
    return FastaRecord(seq_id, description, ''.join(chunks))


def write_fasta(path: Path, records: List[FastaRecord], width: int = 60):
    with open(path, 'w') as f:
        for record in records:
            header = f"{record.id} {record.description}".strip()
            f.write(f">{header}\n")
            for i in range(0, len(record.sequence), width):
                f.write(record.sequence[i:i + width] + "\n")


def sequence_record(sequence) -> FastaRecord:
    """FASTA record for a stored sequence; the name and circular topology go in the header."""
    record = FastaRecord(sequence.id, sequence.name or '', sequence.bases)
    if sequence.is_circular and not record.circular:
        record.description = f"{record.description} topology=circular".strip()
    return record
