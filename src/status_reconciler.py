"""
Shipment-status transitions shared by completion, force completion and
deletion reconciliation.

All three paths end in the same operation: set the status (and optionally
a note) on every line of a shipment group. Keeping it in one place means
an InboundRecord deletion by an external screen reverts statuses with the
same rules the scanner used to set them.

The discrepancy report reads the same data the other way round: for every
package with lines in 'inbound' status it compares the declared total with
the live InboundRecord count and lists the packages that came in short or
over.
"""

from typing import Dict, Iterable, List, Optional

import pandas as pd

from inbound_store import InboundStore
from logger import get_logger
from models import ShipmentGroup, ShipmentLine, ShipmentStatus
from normalization import normalize_key
from shipment_matcher import ShipmentMatcher

logger = get_logger(__name__)

# Discrepancy types in the inbound reconciliation report
QUANTITY_LESS = "quantity_less"
QUANTITY_MORE = "quantity_more"

REPORT_COLUMNS = ['tracking_number', 'carrier', 'discrepancy_type', 'declared',
                  'actual', 'difference', 'description', 'updated_at']


def build_discrepancy_frame(lines: Iterable[ShipmentLine], inbounded: Dict[str, int]) -> pd.DataFrame:
    """
    Compare declared and actual quantities per tracking number.

    Only tracking numbers with at least one line in 'inbound' status are
    considered. Packages whose actual count equals the declared total are
    not reported.

    Args:
        lines: Declared shipment lines (any tracking number, any status)
        inbounded: {normalized tracking number: live InboundRecord count}

    Returns:
        DataFrame with REPORT_COLUMNS, most recently updated package first
    """
    records = [
        {
            'tracking_key': normalize_key(line.tracking_number),
            'tracking_number': line.tracking_number,
            'carrier': line.carrier,
            'quantity': line.quantity,
            'inbound': line.status == ShipmentStatus.INBOUND,
            'updated_at': line.updated_at,
        }
        for line in lines
    ]
    if not records:
        return pd.DataFrame(columns=REPORT_COLUMNS)

    df = pd.DataFrame(records)
    df['updated_at'] = pd.to_datetime(df['updated_at'])
    groups = df.groupby('tracking_key', sort=False).agg(
        tracking_number=('tracking_number', 'first'),
        carrier=('carrier', 'first'),
        declared=('quantity', 'sum'),
        has_inbound=('inbound', 'any'),
        updated_at=('updated_at', 'max'),
    )
    groups = groups[groups['has_inbound']].copy()
    groups['actual'] = [int(inbounded.get(key, 0)) for key in groups.index]
    groups = groups[groups['actual'] != groups['declared']].copy()
    if groups.empty:
        return pd.DataFrame(columns=REPORT_COLUMNS)

    groups['difference'] = (groups['actual'] - groups['declared']).abs()
    groups['discrepancy_type'] = [
        QUANTITY_LESS if actual < declared else QUANTITY_MORE
        for actual, declared in zip(groups['actual'], groups['declared'])
    ]
    groups['description'] = [
        f"Actual inbound {actual}, declared {declared}, "
        + (f"short {diff}" if kind == QUANTITY_LESS else f"over {diff}")
        for actual, declared, diff, kind in zip(
            groups['actual'], groups['declared'], groups['difference'], groups['discrepancy_type'])
    ]

    groups = groups.sort_values('updated_at', ascending=False, na_position='last', kind='mergesort')
    return groups.reset_index(drop=True)[REPORT_COLUMNS]


class StatusReconciler:
    """Applies and reverts shipment-line statuses for whole groups."""

    def __init__(self, store: InboundStore, matcher: Optional[ShipmentMatcher] = None):
        self.store = store
        self.matcher = matcher or ShipmentMatcher(store)

    def apply_group_status(self, group: ShipmentGroup, status: ShipmentStatus,
                           note: Optional[str] = None) -> List[str]:
        """
        Set ``status`` on every line of ``group``.

        Updates are idempotent, so a caller that hits StoreUnavailableError
        halfway can simply repeat the call.

        Returns:
            Ids of the updated lines

        Raises:
            StoreUnavailableError: If any update fails
        """
        updated = []
        for line in group.lines:
            self.store.update_shipment_line_status(line.id, status, note)
            line.status = ShipmentStatus(status)
            if note is not None:
                line.note = note
            updated.append(line.id)

        logger.info(f"Set {len(updated)} line(s) of {group.tracking_number} to {ShipmentStatus(status).value}")
        return updated

    def reconcile_after_deletion(self, tracking_number: str) -> List[str]:
        """
        Revert a group to 'arrived' after an InboundRecord was deleted.

        Called by the store collaborator when a record is removed. If the
        live count is now below the declared total, every line still marked
        'inbound' goes back to 'arrived' with a note stating the shortfall.
        Lines in other statuses are left alone.

        Returns:
            Ids of reverted lines (empty when nothing needed reverting)
        """
        group = self.matcher.find_group(tracking_number)
        if group is None:
            logger.warning(f"Deletion reconciliation: no shipment lines for {tracking_number}")
            return []

        actual = self.store.count_inbounded_by_tracking(group.tracking_number)
        declared = group.declared_total_quantity
        if actual >= declared:
            return []

        inbound_lines = [line for line in group.lines if line.status == ShipmentStatus.INBOUND]
        if not inbound_lines:
            return []

        note = (
            f"Inbound record deleted: actual {actual}, declared {declared}, "
            f"shortfall {declared - actual}"
        )
        reverted = self.apply_group_status(
            ShipmentGroup(tracking_number=group.tracking_number, lines=inbound_lines),
            ShipmentStatus.ARRIVED,
            note,
        )
        logger.warning(f"Reverted {group.tracking_number} to arrived: {note}")
        return reverted

    def discrepancy_report(self) -> pd.DataFrame:
        """
        Declared vs live inbound counts for every inbounded package.

        Raises:
            StoreUnavailableError: If the lines or counts cannot be read
        """
        lines = self.store.list_shipment_lines()
        tracking_by_key = {
            normalize_key(line.tracking_number): line.tracking_number
            for line in lines
            if line.status == ShipmentStatus.INBOUND
        }
        inbounded = {
            key: self.store.count_inbounded_by_tracking(tracking)
            for key, tracking in tracking_by_key.items()
        }
        report = build_discrepancy_frame(lines, inbounded)
        logger.info(f"Discrepancy report: {len(report)} of {len(tracking_by_key)} inbounded package(s) differ")
        return report
