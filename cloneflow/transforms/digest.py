"""
Restriction digestion.

Cuts a sequence at every site of the requested enzymes and returns the
fragments in site order, each with the single-stranded ends left by the cut
and the features that overlap it.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..core.models import Overhang, Sequence, Topology, features_in_window
from ..core.progress import CancellationToken, ensure_token
from ..errors import invalid_input
from .enzymes import CutSite, collect_cut_sites, enzyme_site, split_known_enzymes

logger = logging.getLogger(__name__)


@dataclass
class DigestResult:
    fragments: List[Sequence] = field(default_factory=list)
    sites: List[CutSite] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def resolve_enzymes(names: List[str]) -> Tuple[List, List[str]]:
    """
    Look up enzyme names in the Biopython REBASE tables, case-insensitively.

    Returns:
        (known enzymes in request order, warnings)

    Raises:
        EngineError: InvalidInput if no requested enzyme is known
    """
    known, unknown = split_known_enzymes(names)
    warnings = []
    if unknown:
        warnings.append(f"Unknown enzymes ignored: {', '.join(unknown)}")
        logger.warning(warnings[-1])
    if not known:
        raise invalid_input("None of the requested enzymes are known")
    return known, warnings


def _end_overhangs(bases: str, left: Optional[CutSite], right: Optional[CutSite], source: Overhang) -> Overhang:
    """Overhangs of the fragment between two cuts; None means a molecule end."""
    forward_5 = reverse_3 = forward_3 = reverse_5 = ''
    if left is None:
        forward_5, reverse_3 = source.forward_5, source.reverse_3
    elif left.top_cut < left.bottom_cut:
        forward_5 = bases[left.top_cut:left.bottom_cut]
    elif left.bottom_cut < left.top_cut:
        reverse_3 = bases[left.bottom_cut:left.top_cut]
    if right is None:
        forward_3, reverse_5 = source.forward_3, source.reverse_5
    elif right.top_cut > right.bottom_cut:
        forward_3 = bases[right.bottom_cut:right.top_cut]
    elif right.bottom_cut > right.top_cut:
        reverse_5 = bases[right.top_cut:right.bottom_cut]
    return Overhang(forward_5=forward_5, forward_3=forward_3, reverse_5=reverse_5, reverse_3=reverse_3)


def digest_sequence(
    sequence: Sequence,
    enzymes: List,
    output_prefix: Optional[str] = None,
    max_fragments: int = 80000,
    token: Optional[CancellationToken] = None,
) -> DigestResult:
    """
    Digest one sequence.

    Args:
        sequence: Molecule to cut
        enzymes: Resolved enzymes
        output_prefix: Fragment id prefix; defaults to "{id}_digest"
        max_fragments: Upper bound on produced fragments
        token: Cancellation token, checked once per enzyme

    Returns:
        DigestResult; fragments carry proposed ids "{prefix}_{i}"

    Raises:
        EngineError: InvalidInput when the fragment count exceeds max_fragments
    """
    token = ensure_token(token)
    result = DigestResult()
    bases = sequence.bases
    n = len(bases)
    circular = sequence.is_circular

    def on_enzyme(enzyme, idx, total):
        token.check('digest', idx, total)
        logger.debug(f"Scanning {sequence.id} for {enzyme} ({enzyme_site(enzyme)})")

    sites = collect_cut_sites(bases, enzymes, circular, on_enzyme=on_enzyme)
    result.sites = sites
    expected = len(sites) if circular else len(sites) + 1
    if expected > max_fragments:
        raise invalid_input(
            f"Digest of '{sequence.id}' would produce {expected} fragments, "
            f"exceeding max_fragments_per_container={max_fragments}"
        )
    prefix = output_prefix or f"{sequence.id}_digest"
    if not sites:
        result.warnings.append(f"No restriction sites found in '{sequence.id}'; molecule left uncut")
        result.fragments.append(sequence.derive(f"{prefix}_1"))
        return result

    unrolled = bases * 3 if circular else bases
    if circular:
        bounds = [(sites[k], sites[(k + 1) % len(sites)].shifted(n if k + 1 == len(sites) else 0))
                  for k in range(len(sites))]
    else:
        bounds = [(sites[k - 1] if k > 0 else None, sites[k] if k < len(sites) else None)
                  for k in range(len(sites) + 1)]

    for left, right in bounds:
        lo = left.right if left is not None else 0
        hi = right.left if right is not None else n
        if hi < lo:
            result.warnings.append(
                f"Overlapping cuts at {lo} and {hi} in '{sequence.id}'; fragment skipped"
            )
            continue
        overhang = _end_overhangs(unrolled, left, right, sequence.overhang)
        fragment = Sequence(
            id=f"{prefix}_{len(result.fragments) + 1}",
            bases=unrolled[lo:hi],
            topology=Topology.LINEAR,
            strand_kind=sequence.strand_kind,
            features=features_in_window(sequence.features, lo, hi, wrap_length=n if circular else 0),
            overhang=overhang,
        )
        result.fragments.append(fragment)

    logger.info(
        f"Digested {sequence.id} with {', '.join(str(e) for e in enzymes)}: "
        f"{len(sites)} sites, {len(result.fragments)} fragments"
    )
    return result
