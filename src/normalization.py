"""
Key normalization for tracking numbers, SKUs and LPNs.

Identifiers reach the engine from several sources with inconsistent
formatting: handheld scanners, keyboard-wedge scanners that append a
newline, manual entry, and manifests typed by the shipper. Comparison is
therefore case-insensitive and ignores surrounding whitespace.

Examples:
    "  1z999AA1 "  -> "1z999aa1"
    "SKU-A"        -> "sku-a"
    None           -> ""
"""

from typing import Any, Iterable, List


def normalize_key(value: Any) -> str:
    """
    Normalize an identifier for comparison.

    Args:
        value: Tracking number, SKU or LPN. Non-string values (numeric
               SKUs from a manifest) are converted with str(); None becomes "".

    Returns:
        The trimmed, case-folded identifier
    """
    if value is None:
        return ""
    return str(value).strip().casefold()


def keys_equal(left: Any, right: Any) -> bool:
    """Return True if two identifiers are equal after normalization."""
    return normalize_key(left) == normalize_key(right)


def unique_keys(values: Iterable[Any]) -> List[str]:
    """
    Deduplicate identifiers by normalized key, dropping blanks.

    The first-seen display form of each identifier is kept, so "SKU-A" and
    "sku-a " collapse to "SKU-A" (trimmed).

    Returns:
        List of trimmed identifiers in first-seen order
    """
    seen = set()
    result = []
    for value in values:
        key = normalize_key(value)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(str(value).strip())
    return result
