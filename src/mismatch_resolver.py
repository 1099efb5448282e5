"""
SKU mismatch resolution between a shipment line and the LPN's order records.

The shipment manifest and the return-order record come from different
systems and do not always agree on what is inside a unit. The resolver
classifies each scanned LPN:

    Matched        order SKU(s) equal the shipment SKU, commit without prompting
    Mismatch       two or more distinct SKUs among shipment + order SKUs
    Indeterminate  no order SKU to compare with

Mismatch and Indeterminate are advisory: the scan proceeds, but the commit
waits until the operator picks exactly one candidate SKU. The engine never
picks one on the operator's behalf.
"""

from typing import Iterable, List, Optional, Sequence

from exceptions import ValidationError
from models import Indeterminate, Matched, Mismatch, MismatchFinding, OrderRecord, ShipmentGroup, ShipmentLine
from normalization import keys_equal, normalize_key, unique_keys


def resolve(shipment_sku: str, order_skus: Sequence[Optional[str]]) -> MismatchFinding:
    """
    Classify the shipment SKU against the order SKUs of one LPN.

    Args:
        shipment_sku: SKU declared on the shipment line
        order_skus: SKUs from the LPN's order records (may contain blanks)

    Returns:
        Matched, Mismatch or Indeterminate
    """
    present_order_skus = tuple(unique_keys(order_skus))
    candidates = tuple(unique_keys([shipment_sku, *present_order_skus]))

    if len(candidates) >= 2:
        return Mismatch(
            shipment_sku=shipment_sku,
            order_skus=present_order_skus,
            candidate_skus=candidates,
        )

    if not present_order_skus:
        return Indeterminate(
            shipment_sku=shipment_sku,
            order_skus=(),
            candidate_skus=candidates,
            order_sku_missing=True,
        )

    return Matched(
        shipment_sku=shipment_sku,
        order_skus=present_order_skus,
        candidate_skus=candidates,
    )


def confirm(finding: MismatchFinding, chosen_sku: Optional[str]) -> str:
    """
    Apply the operator's SKU choice to a finding.

    Args:
        finding: Result of resolve()
        chosen_sku: SKU picked by the operator; ignored for Matched findings
                    when None

    Returns:
        The SKU to commit, in its candidate display form

    Raises:
        ValidationError: If no SKU was chosen where one is required, or the
                         chosen SKU is not one of the candidates. A finding
                         with no candidates at all accepts any non-blank SKU.
    """
    if chosen_sku is None or not normalize_key(chosen_sku):
        if not finding.requires_confirmation:
            return finding.candidate_skus[0] if finding.candidate_skus else finding.shipment_sku
        raise ValidationError(f"A SKU must be confirmed ({finding.kind})")

    # Blank shipment SKU and no order SKU: the operator reads it off the unit
    if not finding.candidate_skus:
        return chosen_sku.strip()

    for candidate in finding.candidate_skus:
        if keys_equal(candidate, chosen_sku):
            return candidate

    raise ValidationError(
        f"SKU {chosen_sku!r} is not one of the candidates: {', '.join(finding.candidate_skus)}"
    )


def order_skus_of(orders: Iterable[OrderRecord]) -> List[Optional[str]]:
    return [order.sku for order in orders]


def select_shipment_line(group: ShipmentGroup, order_skus: Sequence[Optional[str]],
                         counts_by_line: Optional[dict] = None) -> ShipmentLine:
    """
    Pick the shipment line an LPN is compared against.

    Preference order:
    1. A line whose SKU equals one of the order SKUs
    2. The first line whose live per-SKU count is below its declared quantity
    3. The first line of the group

    Args:
        group: Matched shipment group (at least one line)
        order_skus: SKUs from the LPN's order records
        counts_by_line: Optional {line_id: inbounded count} from live queries
    """
    for sku in order_skus:
        if not normalize_key(sku):
            continue
        line = group.line_for_sku(sku)
        if line is not None:
            return line

    if counts_by_line:
        for line in group.lines:
            if counts_by_line.get(line.id, 0) < line.quantity:
                return line

    return group.lines[0]
