"""
Duplicate guard - declared-line duplicates and scan admission duplicates.

Two independent checks live here:

1. Declared-shipment duplication (advisory). Shipment manifests are often
   imported twice or pasted with repeated rows. Lines sharing the same
   (order_id, tracking_number, fnsku-or-sku, quantity, product name) are
   flagged so an operator can review them. Flags never block anything.

2. Scan admission duplication (blocking). Before an LPN is admitted it is
   checked against the session's own scanned set first, then against the
   authoritative store. The store check always runs, even when the
   session-local check passes, because another device may have committed
   the LPN a moment ago.
"""

from typing import Iterable, List, Optional

import pandas as pd

from inbound_store import InboundStore
from logger import get_logger
from models import ShipmentLine
from normalization import normalize_key

logger = get_logger(__name__)

# Admission rejection reasons
ALREADY_SCANNED_THIS_SESSION = "ALREADY_SCANNED_THIS_SESSION"
ALREADY_INBOUNDED = "ALREADY_INBOUNDED"

# Filter views over flagged lines
VIEW_ALL = "all"
VIEW_UNCONFIRMED = "unconfirmed"

DUPLICATE_KEY_COLUMNS = ['order_key', 'tracking_key', 'item_key', 'quantity', 'name_key']


def build_duplicate_frame(lines: Iterable[ShipmentLine]) -> pd.DataFrame:
    """
    Flag declared shipment-line duplicates.

    Every line that shares its composite key with at least one other line
    gets duplicate=True (all members of the group, not only the later ones).

    Args:
        lines: Declared shipment lines

    Returns:
        DataFrame indexed like the input with columns id, tracking_number,
        order_id, sku, fnsku, declared_name, quantity, duplicate_confirmed,
        the normalized key columns, and the boolean 'duplicate' flag
    """
    records = [
        {
            'id': line.id,
            'tracking_number': line.tracking_number,
            'order_id': line.order_id,
            'sku': line.sku,
            'fnsku': line.fnsku,
            'declared_name': line.declared_name,
            'quantity': line.quantity,
            'duplicate_confirmed': line.duplicate_confirmed,
            'order_key': normalize_key(line.order_id),
            'tracking_key': normalize_key(line.tracking_number),
            # FNSKU identifies the unit on the marketplace side; fall back to SKU
            'item_key': normalize_key(line.fnsku) or normalize_key(line.sku),
            'name_key': normalize_key(line.declared_name),
        }
        for line in lines
    ]

    if not records:
        columns = ['id', 'tracking_number', 'order_id', 'sku', 'fnsku', 'declared_name',
                   'quantity', 'duplicate_confirmed', 'order_key', 'tracking_key',
                   'item_key', 'name_key', 'duplicate']
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(records)
    df['duplicate'] = df.duplicated(subset=DUPLICATE_KEY_COLUMNS, keep=False)
    return df


def filter_duplicates(df: pd.DataFrame, view: str = VIEW_ALL) -> pd.DataFrame:
    """
    Select flagged lines for a filter view.

    Args:
        df: Frame from build_duplicate_frame()
        view: VIEW_ALL (every flagged line) or VIEW_UNCONFIRMED (flagged and
              not yet confirmed by an operator)

    Raises:
        ValueError: On an unknown view name
    """
    if df.empty:
        return df
    if view == VIEW_ALL:
        return df[df['duplicate']]
    if view == VIEW_UNCONFIRMED:
        return df[df['duplicate'] & ~df['duplicate_confirmed'].astype(bool)]
    raise ValueError(f"Unknown duplicate view: {view}")


class DuplicateGuard:
    """Duplicate checks backed by the authoritative store."""

    def __init__(self, store: InboundStore):
        self.store = store

    def flag_declared_duplicates(self) -> pd.DataFrame:
        """Flag duplicates across every declared shipment line in the store."""
        df = build_duplicate_frame(self.store.list_shipment_lines())
        flagged = int(df['duplicate'].sum()) if not df.empty else 0
        logger.debug(f"Duplicate scan: {flagged} flagged of {len(df)} lines")
        return df

    def duplicate_line_ids(self, view: str = VIEW_ALL) -> List[str]:
        """Return ids of flagged lines for a filter view."""
        return filter_duplicates(self.flag_declared_duplicates(), view)['id'].tolist()

    def confirm_duplicate(self, line_id: str) -> None:
        """
        Record that an operator reviewed a flagged line.

        The line leaves the 'unconfirmed' view but stays in the 'all' view,
        since it still shares its key with another line.
        """
        self.store.set_duplicate_confirmed(line_id, True)
        logger.info(f"Duplicate confirmed for shipment line {line_id}")

    def check_admission(self, lpn: str, scanned_lpns: Iterable[str]) -> Optional[str]:
        """
        Decide whether an LPN scan may be admitted.

        Order matters: the cheap session-local check first, then the live
        store query, which is always performed.

        Args:
            lpn: The scanned LPN
            scanned_lpns: LPNs already accepted in the current session

        Returns:
            None if admissible, otherwise ALREADY_SCANNED_THIS_SESSION or
            ALREADY_INBOUNDED

        Raises:
            StoreUnavailableError: If the store cannot be queried
        """
        key = normalize_key(lpn)
        if any(normalize_key(s) == key for s in scanned_lpns):
            return ALREADY_SCANNED_THIS_SESSION

        if self.store.exists_inbound_record(lpn):
            return ALREADY_INBOUNDED

        return None
