"""
Restriction site scanning.

Enzymes are resolved by name from the Biopython REBASE tables
(Bio.Restriction). Each top-strand cut reported by Biopython is turned into
top/bottom-strand cut coordinates using the enzyme's overhang.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence as Seq, Tuple

from Bio import Restriction
from Bio.Seq import Seq as BioSeq

_BY_LOWER_NAME = {str(enzyme).lower(): enzyme for enzyme in Restriction.AllEnzymes}


@dataclass(frozen=True)
class CutSite:
    """
    One cleavage event.

    Attributes:
        enzyme: Enzyme name
        top_cut: Cut position between bases on the top strand
        bottom_cut: Cut position on the bottom strand, top-strand coordinates
    """
    enzyme: str
    top_cut: int
    bottom_cut: int

    @property
    def left(self) -> int:
        return min(self.top_cut, self.bottom_cut)

    @property
    def right(self) -> int:
        return max(self.top_cut, self.bottom_cut)

    def shifted(self, offset: int) -> 'CutSite':
        return CutSite(self.enzyme, self.top_cut + offset, self.bottom_cut + offset)


def lookup_enzyme(name: str):
    """
    Find a Bio.Restriction enzyme by name, case-insensitively.

    Returns:
        The enzyme class, or None for unknown names and enzymes whose
        cleavage position is not characterised
    """
    enzyme = _BY_LOWER_NAME.get(name.strip().lower())
    if enzyme is None or enzyme.is_unknown() or enzyme.ovhg is None:
        return None
    return enzyme


def enzyme_site(enzyme) -> str:
    """IUPAC recognition site of an enzyme, top strand 5'->3'."""
    return str(enzyme.site)


def overlap(enzyme) -> int:
    """Bottom-strand cut minus top-strand cut; >0 for 5' overhangs, <0 for 3'."""
    return -enzyme.ovhg


def find_sites(bases: str, enzyme, circular: bool) -> List[CutSite]:
    """
    Find every cleavage of an enzyme on both strands.

    Sequence letters are matched strictly: an ambiguous base in the sequence
    never satisfies the recognition site. On circular sequences sites spanning
    the origin are found and the cut with the lower coordinate lies in
    [0, length). On linear sequences cuts whose bottom strand falls outside the
    molecule are dropped.
    """
    n = len(bases)
    if n == 0 or n < enzyme.size:
        return []
    ovl = overlap(enzyme)
    sites = []
    # Biopython reports 1-based positions of the first base after the top cut
    for position in enzyme.search(BioSeq(bases), linear=not circular):
        top = position - 1
        site = CutSite(str(enzyme), top, top + ovl)
        if circular:
            if site.left < 0:
                site = site.shifted(n)
            elif site.left >= n:
                site = site.shifted(-n)
        elif site.left <= 0 or site.right >= n:
            continue
        sites.append(site)
    return sites


def collect_cut_sites(
    bases: str,
    enzymes: Seq,
    circular: bool,
    on_enzyme=None,
) -> List[CutSite]:
    """
    Merge cut sites of several enzymes, sorted by position.

    Identical cleavages produced by isoschizomers are kept once.
    """
    seen: Dict[Tuple[int, int], CutSite] = {}
    n = len(bases)
    for idx, enzyme in enumerate(enzymes):
        if on_enzyme is not None:
            on_enzyme(enzyme, idx, len(enzymes))
        for site in find_sites(bases, enzyme, circular):
            key = (site.top_cut % n, site.bottom_cut % n) if circular else (site.top_cut, site.bottom_cut)
            seen.setdefault(key, site)
    return sorted(seen.values(), key=lambda c: (c.left, c.top_cut, c.enzyme))


def split_known_enzymes(names: List[str]) -> Tuple[List, List[str]]:
    """
    Look up enzyme names, keeping request order and dropping duplicates.

    Returns:
        (known enzymes, names that matched no usable enzyme)
    """
    known, unknown = [], []
    for name in names:
        enzyme = lookup_enzyme(str(name))
        if enzyme is None:
            unknown.append(str(name))
        elif enzyme not in known:
            known.append(enzyme)
    return known, unknown
