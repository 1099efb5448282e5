"""
Shipment matcher - resolves a scanned tracking number to its declared lines.

One physical package is declared as one or more shipment lines sharing a
tracking number (one line per SKU). The matcher collects all of them into
a ShipmentGroup and compares the declared total with the live inbounded
count, so the operator is warned about a package that was already fully
received instead of silently starting a session on it.
"""

from dataclasses import dataclass
from typing import Optional

from inbound_store import InboundStore
from logger import get_logger
from models import ShipmentGroup
from normalization import normalize_key

logger = get_logger(__name__)

# Match outcomes
MATCHED = "MATCHED"
NOT_FOUND = "NOT_FOUND"
ALREADY_COMPLETE = "ALREADY_COMPLETE"


@dataclass
class MatchResult:
    """
    Outcome of a tracking-number match.

    Attributes:
        status (str): MATCHED, NOT_FOUND or ALREADY_COMPLETE
        group (ShipmentGroup | None): The matched group (None on NOT_FOUND)
        inbounded_count (int): Live count of InboundRecords at match time
    """
    status: str
    group: Optional[ShipmentGroup] = None
    inbounded_count: int = 0

    @property
    def remaining(self) -> int:
        if self.group is None:
            return 0
        return max(self.group.declared_total_quantity - self.inbounded_count, 0)


class ShipmentMatcher:
    """Matches tracking identifiers against the declared shipment lines."""

    def __init__(self, store: InboundStore):
        self.store = store

    def find_group(self, tracking_number: str) -> Optional[ShipmentGroup]:
        """
        Build the ShipmentGroup for a tracking number without checking progress.

        Lines returned by the store are filtered again by normalized key, so
        a store that matches loosely (prefix search, LIKE) cannot leak
        foreign lines into the group.

        Returns:
            The group, or None if no line declares this tracking number
        """
        key = normalize_key(tracking_number)
        if not key:
            return None

        lines = [
            line for line in self.store.find_shipment_lines(tracking_number)
            if normalize_key(line.tracking_number) == key
        ]
        if not lines:
            return None

        # Display form comes from the declaration, not from the scan
        return ShipmentGroup(tracking_number=lines[0].tracking_number, lines=lines)

    def match(self, tracking_number: str) -> MatchResult:
        """
        Resolve a scanned tracking number.

        Args:
            tracking_number: Raw decoded scan (trimmed and case-folded here)

        Returns:
            MatchResult with status:
              * MATCHED - group found and not yet fully inbounded
              * NOT_FOUND - blank input or no declared line
              * ALREADY_COMPLETE - declared total <= live inbounded count

        Raises:
            StoreUnavailableError: If the store cannot be queried
        """
        group = self.find_group(tracking_number)
        if group is None:
            logger.info(f"Tracking number not found: {tracking_number!r}")
            return MatchResult(status=NOT_FOUND)

        inbounded = self.store.count_inbounded_by_tracking(group.tracking_number)

        if group.declared_total_quantity <= inbounded:
            logger.info(
                f"Tracking {group.tracking_number} already complete: "
                f"{inbounded}/{group.declared_total_quantity}"
            )
            return MatchResult(status=ALREADY_COMPLETE, group=group, inbounded_count=inbounded)

        logger.info(
            f"Matched tracking {group.tracking_number}: {len(group.lines)} line(s), "
            f"{inbounded}/{group.declared_total_quantity} inbounded"
        )
        return MatchResult(status=MATCHED, group=group, inbounded_count=inbounded)
