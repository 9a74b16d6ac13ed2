"""
In-silico PCR.

Exact-match PCR, tolerant PCR with 5' tails and degenerate primer libraries,
and site-directed mutagenesis by primer design. Templates must be linear.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.models import Sequence, features_in_window
from ..core.progress import CancellationToken, ensure_token
from ..errors import invalid_input, unsupported
from ..utils.sequence import (
    expand_iupac_options,
    find_all_positions,
    hamming_distance,
    normalize_iupac,
    reverse_complement,
)

logger = logging.getLogger(__name__)

# 64-bit LCG used for reproducible library sampling
LCG_MULTIPLIER = 6364136223846793005
LCG_INCREMENT = 1442695040888963407
LCG_MASK = (1 << 64) - 1
DEFAULT_SAMPLE_SEED = 0x9E3779B97F4A7C15


class LibraryMode(Enum):
    ENUMERATE = "Enumerate"
    SAMPLE = "Sample"


@dataclass
class PrimerSpec:
    """
    Primer for PcrAdvanced.

    Attributes:
        sequence: Full primer 5'->3', IUPAC allowed; bases 5' of the anneal
            window form a tail that ends up in the amplicon
        anneal_len: Length of the 3' window that binds the template;
            defaults to the full primer
        max_mismatches: Mismatches tolerated in the anneal window
        require_3prime_exact_bases: 3'-terminal bases that must match exactly
        library_mode: Enumerate all degenerate variants or Sample a subset
        max_variants: Variant cap (Enumerate fails above it, Sample draws it)
        sample_seed: Seed for Sample mode
    """
    sequence: str
    anneal_len: Optional[int] = None
    max_mismatches: int = 0
    require_3prime_exact_bases: int = 0
    library_mode: LibraryMode = LibraryMode.ENUMERATE
    max_variants: Optional[int] = None
    sample_seed: Optional[int] = None

    def __post_init__(self):
        try:
            self.sequence = normalize_iupac(self.sequence)
        except ValueError as e:
            raise invalid_input(f"Invalid primer sequence: {e}")
        if not self.sequence:
            raise invalid_input("Primer sequence must not be empty")
        if self.anneal_len is None:
            self.anneal_len = len(self.sequence)
        if not 0 < self.anneal_len <= len(self.sequence):
            raise invalid_input(
                f"anneal_len must be within 1..{len(self.sequence)}, got {self.anneal_len}"
            )
        if self.max_mismatches < 0:
            raise invalid_input("max_mismatches must be >= 0")
        if not 0 <= self.require_3prime_exact_bases <= self.anneal_len:
            raise invalid_input(
                f"require_3prime_exact_bases must be within 0..{self.anneal_len}"
            )
        if isinstance(self.library_mode, str):
            self.library_mode = LibraryMode(self.library_mode)

    @classmethod
    def from_dict(cls, d: Any) -> 'PrimerSpec':
        if isinstance(d, str):
            return cls(sequence=d)
        mode = d.get('library_mode') or 'Enumerate'
        try:
            mode = LibraryMode(mode)
        except ValueError:
            raise invalid_input(f"Unknown library_mode '{mode}'")
        return cls(
            sequence=d['sequence'],
            anneal_len=d.get('anneal_len'),
            max_mismatches=int(d.get('max_mismatches', 0)),
            require_3prime_exact_bases=int(d.get('require_3prime_exact_bases', 0)),
            library_mode=mode,
            max_variants=d.get('max_variants'),
            sample_seed=d.get('sample_seed'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sequence': self.sequence,
            'anneal_len': self.anneal_len,
            'max_mismatches': self.max_mismatches,
            'require_3prime_exact_bases': self.require_3prime_exact_bases,
            'library_mode': self.library_mode.value,
            'max_variants': self.max_variants,
            'sample_seed': self.sample_seed,
        }


@dataclass(frozen=True)
class SnpMutation:
    zero_based_position: int
    reference: str
    alternate: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SnpMutation':
        return cls(int(d['zero_based_position']), str(d['reference']).upper(), str(d['alternate']).upper())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'zero_based_position': self.zero_based_position,
            'reference': self.reference,
            'alternate': self.alternate,
        }


@dataclass
class Amplicon:
    """One PCR product with the binding coordinates that produced it."""
    bases: str
    template_start: int
    template_end: int
    forward_primer: str
    reverse_primer: str
    template_offset: int = 0


@dataclass
class PcrResult:
    amplicons: List[Amplicon] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _require_linear(template: Sequence):
    if template.is_circular:
        raise unsupported(f"PCR on circular template '{template.id}' is not supported")


def pcr_exact(template: Sequence, forward_primer: str, reverse_primer: str) -> PcrResult:
    """
    Exact-match PCR.

    Every forward-primer site paired with every downstream reverse-primer
    binding site yields one amplicon; identical ranges are reported once.
    """
    _require_linear(template)
    fwd = normalize_iupac(forward_primer)
    rev = normalize_iupac(reverse_primer)
    if not fwd or not rev:
        raise invalid_input("PCR primers must not be empty")
    bases = template.bases
    fwd_sites = find_all_positions(bases, fwd)
    rev_sites = find_all_positions(bases, reverse_complement(rev))
    if not fwd_sites:
        raise invalid_input(f"Forward primer not found in template '{template.id}'")
    if not rev_sites:
        raise invalid_input(f"Reverse primer not found in template '{template.id}'")

    ranges = sorted({
        (f, r + len(rev))
        for f in fwd_sites
        for r in rev_sites
        if r >= f
    })
    if not ranges:
        raise invalid_input("No valid amplicon: reverse primer binds upstream of every forward site")
    result = PcrResult()
    for start, end in ranges:
        result.amplicons.append(Amplicon(bases[start:end], start, end, fwd, rev))
    return result


def count_variants(primer: str) -> int:
    total = 1
    for options in expand_iupac_options(primer):
        total *= len(options)
    return total


def variant_by_index(options: List[List[str]], index: int) -> str:
    """Mixed-radix decode; the last position varies fastest."""
    letters = []
    for choices in reversed(options):
        index, digit = divmod(index, len(choices))
        letters.append(choices[digit])
    return ''.join(reversed(letters))


def sample_indices(total: int, count: int, seed: int) -> List[int]:
    """Draw count distinct indices below total with the 64-bit LCG, sorted."""
    state = seed & LCG_MASK
    chosen = set()
    while len(chosen) < count:
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) & LCG_MASK
        chosen.add(state % total)
    return sorted(chosen)


def expand_primer_variants(primer: PrimerSpec, default_max_variants: int) -> List[str]:
    """
    Concrete variants of a possibly degenerate primer.

    Raises:
        EngineError: InvalidInput when Enumerate would exceed the variant cap
    """
    options = expand_iupac_options(primer.sequence)
    total = count_variants(primer.sequence)
    requested = primer.max_variants if primer.max_variants is not None else total
    if requested <= 0:
        raise invalid_input("max_variants must be > 0")
    cap = min(requested, default_max_variants)
    if total <= cap:
        indices = range(total)
    elif primer.library_mode == LibraryMode.ENUMERATE:
        raise invalid_input(
            f"Primer '{primer.sequence}' expands to {total} variants, exceeding max_variants={cap}"
        )
    else:
        seed = primer.sample_seed if primer.sample_seed is not None else DEFAULT_SAMPLE_SEED
        indices = sample_indices(total, cap, seed)
    return [variant_by_index(options, i) for i in indices]


def find_anneal_sites(
    template: str,
    anneal: str,
    max_mismatches: int,
    exact_3prime: int,
    reverse: bool,
) -> List[int]:
    """
    Template start positions where an anneal window binds.

    For reverse primers the binding sequence is the reverse complement of the
    window, so the primer 3' end sits at the start of the match.
    """
    binding = reverse_complement(anneal) if reverse else anneal
    length = len(binding)
    if exact_3prime:
        exact = slice(0, exact_3prime) if reverse else slice(length - exact_3prime, length)
    sites = []
    for pos in range(len(template) - length + 1):
        window = template[pos:pos + length]
        if exact_3prime and window[exact] != binding[exact]:
            continue
        if hamming_distance(window, binding, limit=max_mismatches) <= max_mismatches:
            sites.append(pos)
    return sites


@dataclass
class _Binding:
    primer: str
    position: int


def _bindings(
    template: str,
    spec: PrimerSpec,
    reverse: bool,
    default_max_variants: int,
    token: CancellationToken,
) -> List[_Binding]:
    variants = expand_primer_variants(spec, default_max_variants)
    bindings = []
    for idx, variant in enumerate(variants):
        token.check('pcr primer variants', idx, len(variants))
        anneal = variant[-spec.anneal_len:]
        for pos in find_anneal_sites(template, anneal, spec.max_mismatches,
                                     spec.require_3prime_exact_bases, reverse):
            bindings.append(_Binding(variant, pos))
    return bindings


def _observed_base(position: int, fwd: _Binding, rev: _Binding, anneal_f: int, anneal_r: int,
                   template: str) -> Optional[str]:
    """Base an amplicon carries at a template position, or None if outside it."""
    if fwd.position <= position < fwd.position + anneal_f:
        return fwd.primer[len(fwd.primer) - anneal_f + position - fwd.position]
    if fwd.position + anneal_f <= position < rev.position:
        return template[position]
    if rev.position <= position < rev.position + anneal_r:
        return reverse_complement(rev.primer)[position - rev.position]
    return None


def pcr_advanced(
    template: Sequence,
    forward: PrimerSpec,
    reverse: PrimerSpec,
    default_max_variants: int = 4096,
    mutations: Optional[List[SnpMutation]] = None,
    require_all_mutations: bool = True,
    token: Optional[CancellationToken] = None,
) -> PcrResult:
    """
    Tolerant PCR with tails and degenerate primer libraries.

    The amplicon is the full forward primer, the template between the two
    anneal windows, and the reverse complement of the full reverse primer.
    Identical amplicons are reported once, in binding order. With mutations,
    only amplicons that carry all (or, without require_all_mutations, at
    least one) requested alternate bases are kept.
    """
    _require_linear(template)
    token = ensure_token(token)
    bases = template.bases
    fwd_bindings = _bindings(bases, forward, False, default_max_variants, token)
    rev_bindings = _bindings(bases, reverse, True, default_max_variants, token)
    if not fwd_bindings:
        raise invalid_input(f"Forward primer does not anneal to template '{template.id}'")
    if not rev_bindings:
        raise invalid_input(f"Reverse primer does not anneal to template '{template.id}'")

    result = PcrResult()
    seen = set()
    for fwd in sorted(fwd_bindings, key=lambda b: (b.position, b.primer)):
        for rev in sorted(rev_bindings, key=lambda b: (b.position, b.primer)):
            if rev.position < fwd.position + forward.anneal_len:
                continue
            if mutations:
                hits = [
                    _observed_base(m.zero_based_position, fwd, rev, forward.anneal_len,
                                   reverse.anneal_len, bases) == m.alternate
                    for m in mutations
                ]
                if not (all(hits) if require_all_mutations else any(hits)):
                    continue
            amplicon = (
                fwd.primer
                + bases[fwd.position + forward.anneal_len:rev.position]
                + reverse_complement(rev.primer)
            )
            if amplicon in seen:
                continue
            seen.add(amplicon)
            result.amplicons.append(Amplicon(
                amplicon, fwd.position, rev.position + reverse.anneal_len, fwd.primer, rev.primer,
                len(fwd.primer) - forward.anneal_len,
            ))
    if not result.amplicons:
        if mutations:
            raise invalid_input("No amplicon introduces the requested mutation(s)")
        raise invalid_input("No valid amplicon: reverse primer binds upstream of every forward site")
    logger.info(f"PCR on {template.id}: {len(result.amplicons)} amplicon(s)")
    return result


def validate_mutations(template: Sequence, mutations: List[SnpMutation]):
    """Check SNP intents against the template."""
    if not mutations:
        raise invalid_input("PcrMutagenesis requires at least one mutation")
    for m in mutations:
        if not 0 <= m.zero_based_position < len(template.bases):
            raise invalid_input(
                f"Mutation position {m.zero_based_position} is outside template '{template.id}'"
            )
        for label, base in (('reference', m.reference), ('alternate', m.alternate)):
            if len(base) != 1 or base not in 'ACGT':
                raise invalid_input(f"Mutation {label} must be a single nucleotide, got '{base}'")
        if m.reference == m.alternate:
            raise invalid_input(f"Mutation at {m.zero_based_position} has identical reference and alternate")
        actual = template.bases[m.zero_based_position]
        if actual != m.reference:
            raise invalid_input(
                f"Mutation reference '{m.reference}' does not match template base '{actual}' "
                f"at {m.zero_based_position}"
            )


def amplicon_sequence(template: Sequence, amplicon: Amplicon, seq_id: str) -> Sequence:
    """Build a linear product carrying the template features it spans."""
    return Sequence(
        id=seq_id,
        bases=amplicon.bases,
        strand_kind=template.strand_kind,
        features=features_in_window(template.features, amplicon.template_start, amplicon.template_end,
                                    offset=amplicon.template_offset),
    )
