"""
Ligation of linear fragments.

Joins the right end of one fragment to the left end of another when the ends
are compatible under the chosen protocol.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from ..core.models import Feature, Overhang, Sequence, Topology
from ..errors import invalid_input

logger = logging.getLogger(__name__)


class LigationProtocol(Enum):
    STICKY = "Sticky"
    BLUNT = "Blunt"


@dataclass
class LigationProduct:
    left_id: str
    right_id: str
    sequence: Sequence


@dataclass
class LigationResult:
    products: List[LigationProduct] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def join_text(left: Overhang, right: Overhang, protocol: LigationProtocol) -> Optional[str]:
    """
    Bases filled in when joining left's right end to right's left end.

    Returns:
        The overhang letters bridging the two cores ('' for blunt joins), or
        None when the ends cannot be ligated
    """
    if protocol == LigationProtocol.BLUNT:
        return '' if left.right_is_blunt and right.left_is_blunt else None
    # Complementary single strands carry the same top-strand letters
    if left.reverse_5 and left.reverse_5 == right.forward_5 and not left.forward_3 and not right.reverse_3:
        return left.reverse_5
    if left.forward_3 and left.forward_3 == right.reverse_3 and not left.reverse_5 and not right.forward_5:
        return left.forward_3
    return None


def sticky_compatible(left: Sequence, right: Sequence) -> bool:
    return join_text(left.overhang, right.overhang, LigationProtocol.STICKY) is not None


def _shift_features(features: List[Feature], offset: int) -> List[Feature]:
    return [replace(f, location=f.location.shifted(offset), qualifiers=dict(f.qualifiers)) for f in features]


def ligate_pair(
    left: Sequence,
    right: Sequence,
    protocol: LigationProtocol,
    circularize_if_possible: bool = False,
) -> Optional[Sequence]:
    """
    Join two linear molecules; returns None if their ends are incompatible.

    The product keeps left's left end and right's right end. With
    circularize_if_possible the product is closed when those outer ends are
    themselves compatible.
    """
    if left.is_circular or right.is_circular:
        return None
    bridge = join_text(left.overhang, right.overhang, protocol)
    if bridge is None:
        return None

    bases = left.bases + bridge + right.bases
    features = list(_shift_features(left.features, 0))
    features.extend(_shift_features(right.features, len(left.bases) + len(bridge)))
    overhang = Overhang(
        forward_5=left.overhang.forward_5,
        reverse_3=left.overhang.reverse_3,
        forward_3=right.overhang.forward_3,
        reverse_5=right.overhang.reverse_5,
    )
    topology = Topology.LINEAR

    if circularize_if_possible:
        closing = join_text(overhang, overhang, protocol)
        if closing is not None:
            bases = bases + closing
            overhang = Overhang()
            topology = Topology.CIRCULAR

    return Sequence(
        id=f"{left.id}+{right.id}",
        bases=bases,
        topology=topology,
        strand_kind=left.strand_kind,
        features=features,
        overhang=overhang,
    )


def ligate(
    inputs: List[Sequence],
    protocol: LigationProtocol,
    circularize_if_possible: bool = False,
    max_products: int = 80000,
) -> LigationResult:
    """
    Enumerate ordered pairs of distinct inputs and ligate the compatible ones.

    Raises:
        EngineError: InvalidInput for fewer than two inputs, no compatible
            product, or more products than max_products
    """
    if len(inputs) < 2:
        raise invalid_input("Ligation requires at least two input sequences")
    result = LigationResult()
    for i, left in enumerate(inputs):
        for j, right in enumerate(inputs):
            if i == j:
                continue
            product = ligate_pair(left, right, protocol, circularize_if_possible)
            if product is None:
                continue
            result.products.append(LigationProduct(left.id, right.id, product))
            if len(result.products) > max_products:
                raise invalid_input(
                    f"Ligation produced more than max_fragments_per_container={max_products}"
                )
    skipped = [s.id for s in inputs if s.is_circular]
    if skipped:
        result.warnings.append(f"Circular inputs cannot be ligated: {', '.join(skipped)}")
    if not result.products:
        raise invalid_input(f"No ligation products found for protocol '{protocol.value}'")
    logger.info(f"Ligation ({protocol.value}) of {len(inputs)} inputs: {len(result.products)} products")
    return result


def check_unique(count: int, unique: bool, output_id: Optional[str], label: str):
    """Enforce unique/output_id single-product requirements."""
    if unique and count != 1:
        raise invalid_input(f"{label} unique=true requires exactly one product, found {count}")
    if output_id and count != 1:
        raise invalid_input(f"{label} output_id can only be used when exactly one product is produced")
