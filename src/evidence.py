"""
Evidence precondition for committing an inbound record.

Missing parts and product damage must be backed by at least one photo.
Capturing and uploading the photo is the UI shell's job; the engine only
receives how many photos are attached and refuses the commit without one.
"""

from typing import List, Sequence

from exceptions import MissingRequiredEvidenceError


def evidence_reasons(missing_parts: Sequence[str], has_damage: bool) -> List[str]:
    """Return why a photo is needed ("missing_parts", "damage"), or []."""
    reasons = []
    if any(str(p).strip() for p in missing_parts):
        reasons.append('missing_parts')
    if has_damage:
        reasons.append('damage')
    return reasons


class EvidencePolicy:
    """
    Photo requirement for recorded defects.

    Args:
        required: When False ([Scanning] RequireEvidencePhoto = false) the
                  check is a no-op
    """

    def __init__(self, required: bool = True):
        self.required = required

    def check(self, missing_parts: Sequence[str], has_damage: bool, photo_count: int) -> None:
        """
        Raises:
            MissingRequiredEvidenceError: If defects are recorded and no photo
                                          is attached
        """
        if not self.required or photo_count > 0:
            return

        reasons = evidence_reasons(missing_parts, has_damage)
        if reasons:
            raise MissingRequiredEvidenceError(
                f"Photo required: {', '.join(reasons)}", reasons=reasons
            )
