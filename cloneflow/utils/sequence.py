"""
Sequence manipulation utilities.

Provides strand, IUPAC and composition helpers shared by the transform
library and the candidate-set engine.
"""

from typing import Dict, List, Optional

# IUPAC nucleotide codes as 4-bit masks (A=1, C=2, G=4, T=8)
IUPAC_MASKS: Dict[str, int] = {
    'A': 1, 'C': 2, 'G': 4, 'T': 8, 'U': 8,
    'W': 1 | 8, 'S': 2 | 4, 'M': 1 | 2, 'K': 4 | 8,
    'R': 1 | 4, 'Y': 2 | 8,
    'B': 2 | 4 | 8, 'D': 1 | 4 | 8, 'H': 1 | 2 | 8, 'V': 1 | 2 | 4,
    'N': 1 | 2 | 4 | 8,
}

IUPAC_COMPLEMENT: Dict[str, str] = {
    'A': 'T', 'C': 'G', 'G': 'C', 'T': 'A', 'U': 'A',
    'W': 'W', 'S': 'S', 'M': 'K', 'K': 'M', 'R': 'Y', 'Y': 'R',
    'B': 'V', 'D': 'H', 'H': 'D', 'V': 'B', 'N': 'N',
}

# Concrete bases in the fixed order used for degenerate primer expansion
_BASE_ORDER = ('A', 'C', 'G', 'T')


def normalize_dna(seq: str) -> str:
    """Upper-case a sequence and drop whitespace and digits."""
    return ''.join(c for c in seq.upper() if c.isalpha())


def normalize_iupac(seq: str) -> str:
    """Normalize an IUPAC string; raises ValueError on unknown letters."""
    cleaned = normalize_dna(seq)
    for c in cleaned:
        if c not in IUPAC_MASKS:
            raise ValueError(f"Invalid IUPAC nucleotide '{c}'")
    return cleaned


def complement(seq: str) -> str:
    """Complement each base; case is preserved, unknown letters become N."""
    out = []
    for base in seq:
        comp = IUPAC_COMPLEMENT.get(base.upper(), 'N')
        out.append(comp.lower() if base.islower() else comp)
    return ''.join(out)


def reverse_complement(seq: str) -> str:
    """Return reverse complement of a DNA or IUPAC sequence."""
    return complement(seq)[::-1]


def iupac_mask(letter: str) -> int:
    return IUPAC_MASKS.get(letter.upper(), 0)


def iupac_match_at(sequence: str, pattern: str, start: int) -> bool:
    """Check whether pattern matches sequence at start.

    A position matches when the two IUPAC sets intersect.
    """
    if not pattern:
        return True
    if start < 0 or start + len(pattern) > len(sequence):
        return False
    for i, p in enumerate(pattern):
        s_mask = iupac_mask(sequence[start + i])
        p_mask = iupac_mask(p)
        if not s_mask & p_mask:
            return False
    return True


def contains_iupac_pattern(sequence: str, pattern: str) -> bool:
    if not pattern:
        return True
    return any(
        iupac_match_at(sequence, pattern, start)
        for start in range(len(sequence) - len(pattern) + 1)
    )


def contains_motif_any_strand(sequence: str, motif: str) -> bool:
    """Search a motif on both strands of a sequence."""
    motif = normalize_iupac(motif)
    if not motif:
        return True
    seq = sequence.upper()
    if contains_iupac_pattern(seq, motif):
        return True
    return contains_iupac_pattern(seq, reverse_complement(motif))


def expand_iupac_options(seq: str) -> List[List[str]]:
    """Per-position list of concrete bases for a degenerate sequence."""
    options = []
    for letter in normalize_iupac(seq):
        mask = iupac_mask(letter)
        options.append([b for i, b in enumerate(_BASE_ORDER) if mask & (1 << i)])
    return options


def hamming_distance(seq1: str, seq2: str, limit: Optional[int] = None) -> int:
    """Count mismatches between two equal-length sequences.

    Counting stops once it exceeds ``limit``, so any return value above
    ``limit`` only means "too many".

    Raises ValueError if sequences have different lengths.
    """
    if len(seq1) != len(seq2):
        raise ValueError(f"Sequences must be equal length: {len(seq1)} vs {len(seq2)}")
    mismatches = 0
    for a, b in zip(seq1.upper(), seq2.upper()):
        if a != b:
            mismatches += 1
            if limit is not None and mismatches > limit:
                break
    return mismatches


def gc_count(seq: str) -> int:
    """Number of G and C bases."""
    return sum(1 for base in seq.upper() if base in 'GC')


def gc_content(seq: str, called_only: bool = True) -> float:
    """Calculate GC content of a sequence (0.0 to 1.0).

    With called_only, letters other than A/C/G/T/U are left out of the
    denominator; otherwise the full length is used.
    """
    seq = seq.upper()
    total = sum(1 for base in seq if base in 'ACGTU') if called_only else len(seq)
    return gc_count(seq) / total if total > 0 else 0.0


def find_all_positions(sequence: str, needle: str, allow_overlap: bool = True) -> List[int]:
    """Find all positions of an exact substring in a sequence.

    Args:
        sequence: DNA sequence to search
        needle: Substring to find
        allow_overlap: If True, overlapping matches are returned

    Returns:
        List of 0-based start positions
    """
    positions = []
    if not needle:
        return positions
    seq_upper = sequence.upper()
    needle_upper = needle.upper()
    start = 0

    while True:
        pos = seq_upper.find(needle_upper, start)
        if pos == -1:
            break
        positions.append(pos)
        start = pos + 1 if allow_overlap else pos + len(needle)

    return positions


def circular_slice(bases: str, start: int, end: int, circular: bool) -> Optional[str]:
    """Slice [start, end) with wrap-around for circular sequences.

    For circular sequences start may exceed end (wraps across the origin) and
    both may be >= len(bases). Returns None when the range is invalid.
    """
    n = len(bases)
    if n == 0:
        return None
    if not circular:
        if start < 0 or end > n or start > end:
            return None
        return bases[start:end]
    if start < 0 or end < 0:
        return None
    if end < start:
        end += n
    length = end - start
    if length > n:
        return None
    s = start % n
    return (bases + bases)[s:s + length]
