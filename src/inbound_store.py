"""
Store interfaces consumed by the scan-session engine.

The engine never talks to a database directly. It depends on two narrow
collaborator contracts:

- InboundStore: the shared, authoritative store of shipment lines, order
  records and inbound records. Several devices use it at once, so every
  count and existence method MUST be a live query, never a cache read.
- SessionStore: tiny device-local persistence for the session snapshot.

Error contract for InboundStore implementations:
- Transport/database failures raise StoreUnavailableError.
- create_inbound_record raises UniqueViolationError when the LPN exists.
- No retries: retry policy belongs to the implementation, not the engine.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from models import InboundRecord, OrderRecord, SessionSnapshot, ShipmentLine, ShipmentStatus


class InboundStore(ABC):
    """Authoritative store of shipment lines, orders and inbound records."""

    @abstractmethod
    def find_shipment_lines(self, tracking_number: str) -> List[ShipmentLine]:
        """Return lines whose tracking number matches (case/whitespace-insensitive)."""

    @abstractmethod
    def list_shipment_lines(self) -> List[ShipmentLine]:
        """Return every declared shipment line (used for duplicate flagging)."""

    @abstractmethod
    def count_inbounded_by_tracking(self, tracking_number: str) -> int:
        """Live count of InboundRecords for a tracking number."""

    @abstractmethod
    def count_inbounded_by_sku_and_tracking(self, tracking_number: str, sku: str) -> int:
        """Live count of InboundRecords for a tracking number and SKU."""

    @abstractmethod
    def find_orders_by_lpn(self, lpn: str) -> List[OrderRecord]:
        """Return return-order records associated with an LPN."""

    @abstractmethod
    def exists_inbound_record(self, lpn: str) -> bool:
        """Live check whether an InboundRecord exists for an LPN."""

    @abstractmethod
    def create_inbound_record(self, record: InboundRecord) -> InboundRecord:
        """
        Persist a new InboundRecord.

        Raises:
            UniqueViolationError: If a record for record.lpn already exists
            StoreUnavailableError: On transport/database failure
        """

    @abstractmethod
    def update_shipment_line_status(self, line_id: str, status: ShipmentStatus,
                                    note: Optional[str] = None) -> None:
        """Set a line's status, replacing its note when one is given."""

    @abstractmethod
    def set_duplicate_confirmed(self, line_id: str, confirmed: bool = True) -> None:
        """Mark a declared duplicate as reviewed by an operator."""

    def find_product_parts(self, sku: str) -> List[str]:
        """
        Return the parts checklist for a product SKU.

        Optional collaborator method; stores without a product catalogue
        return an empty checklist.
        """
        return []

    def mark_orders_inbounded(self, order_ids: Iterable[str], when: datetime) -> None:
        """
        Stamp order records as received.

        Optional collaborator method; the default does nothing.
        """
        return None


class SessionStore(ABC):
    """Device-local persistence for the single active session snapshot."""

    @abstractmethod
    def save(self, snapshot: SessionSnapshot) -> None:
        ...

    @abstractmethod
    def load(self) -> Optional[SessionSnapshot]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...
