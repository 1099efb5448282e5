"""Data model for the returns intake engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from normalization import normalize_key, keys_equal


# Post-inspection condition grades accepted on an InboundRecord
VALID_GRADES = ('A', 'B', 'C', 'new')


class ShipmentStatus(str, Enum):
    """Lifecycle of a declared shipment line."""
    SHIPPING = "shipping"
    ARRIVED = "arrived"
    INBOUND = "inbound"
    SHELVED = "shelved"


class SessionState(str, Enum):
    """States of the scan-session state machine."""
    IDLE = "idle"
    AWAITING_TRACKING = "awaiting_tracking"
    AWAITING_LPN = "awaiting_lpn"
    READY_TO_COMPLETE = "ready_to_complete"
    FORCE_COMPLETED = "force_completed"


@dataclass
class ShipmentLine:
    """One declared (SKU, quantity) expectation under a tracking number."""
    id: str
    tracking_number: str
    order_id: str
    sku: str
    quantity: int
    status: ShipmentStatus = ShipmentStatus.SHIPPING
    fnsku: str = ""
    declared_name: str = ""
    carrier: str = ""
    duplicate_confirmed: bool = False
    note: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = ShipmentStatus(self.status)
        self.quantity = int(self.quantity)
        if self.quantity < 0:
            raise ValueError(f"Shipment line {self.id} has negative quantity {self.quantity}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tracking_number': self.tracking_number,
            'order_id': self.order_id,
            'sku': self.sku,
            'fnsku': self.fnsku,
            'declared_name': self.declared_name,
            'quantity': self.quantity,
            'status': self.status.value,
            'carrier': self.carrier,
            'duplicate_confirmed': self.duplicate_confirmed,
            'note': self.note,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ShipmentGroup:
    """
    All shipment lines sharing one normalized tracking number.

    A group is derived on every match and never persisted: one physical
    package can carry several SKUs, each declared as its own line.
    """
    tracking_number: str
    lines: List[ShipmentLine] = field(default_factory=list)

    @property
    def declared_total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def carrier(self) -> str:
        return self.lines[0].carrier if self.lines else ""

    @property
    def line_ids(self) -> List[str]:
        return [line.id for line in self.lines]

    @property
    def skus(self) -> List[str]:
        return [line.sku for line in self.lines]

    def line_for_sku(self, sku: str) -> Optional[ShipmentLine]:
        """Return the first line declaring ``sku`` (normalized), or None."""
        for line in self.lines:
            if keys_equal(line.sku, sku):
                return line
        return None

    def same_as(self, other: "ShipmentGroup") -> bool:
        """True if both groups cover the same tracking number and line set."""
        return (
            normalize_key(self.tracking_number) == normalize_key(other.tracking_number)
            and sorted(self.line_ids) == sorted(other.line_ids)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tracking_number': self.tracking_number,
            'carrier': self.carrier,
            'declared_total_quantity': self.declared_total_quantity,
            'lines': [line.to_dict() for line in self.lines],
        }


@dataclass
class OrderRecord:
    """External return-order record associated with an LPN."""
    id: str
    lpn: str
    sku: Optional[str] = None
    product_name: str = ""
    return_quantity: int = 1
    inbound_at: Optional[datetime] = None


@dataclass
class InboundRecord:
    """
    One physical unit received against a shipment line.

    Created exactly once per LPN; the store enforces uniqueness on ``lpn``.
    """
    lpn: str
    shipment_line_id: str
    tracking_number: str
    sku: str
    grade: str
    missing_parts: List[str] = field(default_factory=list)
    processed_at: datetime = field(default_factory=datetime.now)
    product_name: str = ""
    order_id: str = ""
    processed_by: str = ""
    notes: str = ""
    id: Optional[int] = None


@dataclass(frozen=True)
class MismatchFinding:
    """
    Result of comparing a shipment-line SKU with the order SKUs of an LPN.

    Concrete variants are Matched, Mismatch and Indeterminate; match on
    ``kind`` or isinstance rather than on field combinations.
    """
    shipment_sku: str
    order_skus: Tuple[str, ...] = ()
    candidate_skus: Tuple[str, ...] = ()
    order_sku_missing: bool = False

    kind: ClassVar[str] = "finding"

    @property
    def requires_confirmation(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'shipment_sku': self.shipment_sku,
            'order_skus': list(self.order_skus),
            'candidate_skus': list(self.candidate_skus),
            'order_sku_missing': self.order_sku_missing,
        }


@dataclass(frozen=True)
class Matched(MismatchFinding):
    kind: ClassVar[str] = "matched"

    @property
    def requires_confirmation(self) -> bool:
        return False


@dataclass(frozen=True)
class Mismatch(MismatchFinding):
    kind: ClassVar[str] = "mismatch"


@dataclass(frozen=True)
class Indeterminate(MismatchFinding):
    kind: ClassVar[str] = "indeterminate"


@dataclass
class SessionSnapshot:
    """
    Persisted pointer to an in-progress scan session.

    Only the tracking number is stored. Progress is always re-read from the
    store on resume, never from the snapshot.
    """
    tracking_number: str
    timestamp: datetime
    device_id: str = ""
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'tracking_number': self.tracking_number,
            'timestamp': self.timestamp.isoformat(),
            'device_id': self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            tracking_number=data['tracking_number'],
            timestamp=datetime.fromisoformat(data['timestamp']),
            device_id=data.get('device_id', ''),
            version=data.get('version', '1.0'),
        )
