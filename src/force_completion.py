"""
Force completion - close a shipment group short of its declared quantity.

Manifests overstate what actually arrives often enough that the dock needs
an override. The override is only honest if the shortfall is written down,
so every force completion produces an audit note with the discrepancy.
"""

from dataclasses import dataclass

from logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ForceCompletionResult:
    """
    Discrepancy between declared and actually inbounded units.

    Attributes:
        declared (int): Declared total for the group
        actual (int): Live inbounded count at the moment of the override
        discrepancy (int): declared - actual, never negative
        inconsistent (bool): True if actual exceeded declared, i.e. the raw
                             difference was negative and had to be clamped
    """
    declared: int
    actual: int
    discrepancy: int
    inconsistent: bool

    @property
    def surplus(self) -> int:
        return max(self.actual - self.declared, 0)

    @property
    def audit_note(self) -> str:
        if self.inconsistent:
            return (
                f"Force-completed inbound: actual {self.actual}, declared {self.declared}, "
                f"discrepancy 0 (inconsistency: actual exceeds declared by {self.surplus})"
            )
        return (
            f"Force-completed inbound: actual {self.actual}, declared {self.declared}, "
            f"discrepancy {self.discrepancy}"
        )


def compute_discrepancy(declared: int, actual: int) -> ForceCompletionResult:
    """
    Compute the force-completion discrepancy.

    Force completion is normally offered only while actual < declared, but
    another device may commit scans in the meantime. A negative raw
    difference is clamped to 0 and reported as an inconsistency instead of
    producing a negative audit figure.

    Args:
        declared: Declared total quantity of the shipment group
        actual: Live inbounded count

    Returns:
        ForceCompletionResult
    """
    raw = declared - actual
    if raw < 0:
        logger.warning(
            f"Force completion inconsistency: actual {actual} exceeds declared {declared}"
        )
        return ForceCompletionResult(declared=declared, actual=actual, discrepancy=0, inconsistent=True)

    return ForceCompletionResult(declared=declared, actual=actual, discrepancy=raw, inconsistent=False)
