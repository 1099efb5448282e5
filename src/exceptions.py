"""
Custom exceptions for the Returns Intake engine.

This module defines application-specific exceptions for error handling,
operator feedback, and debugging. Using custom exceptions allows the engine to:
- Distinguish retryable store failures from operator mistakes
- Carry contextual information (LPN, line id, candidate SKUs)
- Let the UI shell catch every engine error with one except clause

Operator-recoverable outcomes of a scan (tracking not found, LPN already
scanned, SKU confirmation required, ...) are NOT exceptions. They are
returned as status strings by ScanSession, the same way the scanner
screens report "wrong SKU" without interrupting the flow. Exceptions are
reserved for the cases below.

Exception hierarchy:
    IntakeError (base)
    ├── StoreError (inbound-record store failures)
    │   ├── StoreUnavailableError (transport/database down, retryable)
    │   └── UniqueViolationError (LPN committed by another device first)
    ├── SessionStateError (illegal state machine transition)
    ├── ValidationError (input validation failures)
    ├── MissingRequiredEvidenceError (photo required before commit)
    └── ConfigurationError (invalid config.ini values)
"""

from typing import List, Optional


class IntakeError(Exception):
    """
    Base exception for all Returns Intake errors.

    All engine-specific exceptions inherit from this class, so the UI shell
    can catch them with a single clause:
        try:
            session.commit_pending(grade="A")
        except IntakeError as e:
            logger.error(f"Intake error: {e}")

    Note: This does NOT inherit from built-in errors like ValueError, IOError
    to keep application and system errors apart.
    """
    pass


class StoreError(IntakeError):
    """Raised when the inbound-record store rejects or fails an operation."""
    pass


class StoreUnavailableError(StoreError):
    """
    Raised when the store cannot be reached or fails mid-request.

    This is always retryable by the operator. The engine performs no retries
    of its own: the scan that triggered the failure is left pending and the
    session state is not advanced, so scanning the same LPN again (or
    calling commit_pending again) repeats the operation.

    Common scenarios on a warehouse floor:
    - Wi-Fi dropout on a handheld device
    - Database restart or lock timeout
    - Request timeout in the store-access collaborator
    """
    pass


class UniqueViolationError(StoreError):
    """
    Raised when an InboundRecord for the same LPN already exists.

    The store's uniqueness constraint on ``lpn`` is the final arbiter when
    several devices scan the same package at once. ScanSession maps this
    error to the ``LPN_ALREADY_INBOUNDED`` outcome; it is never shown as a
    generic failure.

    Attributes:
        lpn (str): The LPN that was already committed
    """

    def __init__(self, message: str, lpn: Optional[str] = None):
        super().__init__(message)
        self.lpn = lpn


class SessionStateError(IntakeError):
    """
    Raised when an event is not allowed in the current session state.

    Example: calling complete_package() while no tracking number has been
    matched, or resume() when no snapshot was offered.

    Attributes:
        state (str): State the session was in
        event (str): Event that was rejected
    """

    def __init__(self, message: str, state: Optional[str] = None, event: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.event = event


class ValidationError(IntakeError):
    """
    Raised when input validation fails.

    Examples:
    - Operator confirms a SKU that is not one of the mismatch candidates
    - Unknown grade value
    - Shipment line with a negative quantity
    """
    pass


class MissingRequiredEvidenceError(IntakeError):
    """
    Raised when a commit needs photo evidence that was not attached.

    Missing parts or product damage must be documented with at least one
    photo before the InboundRecord can be written. Photo capture itself
    lives in the UI shell; the engine only enforces the precondition.

    Attributes:
        reasons (List[str]): What triggered the requirement
                             ("missing_parts", "damage")
    """

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []

    def get_display_message(self) -> str:
        """
        Get an operator-friendly message for display in UI dialogs.

        Returns:
            Message listing why a photo is required
        """
        if not self.reasons:
            return str(self)

        labels = {
            'missing_parts': 'missing parts were recorded',
            'damage': 'product damage was recorded',
        }
        lines = [f"- {labels.get(r, r)}" for r in self.reasons]
        return (
            "A photo is required before this unit can be inbounded because:\n"
            + "\n".join(lines)
            + "\n\nPlease attach a photo and try again."
        )


class ConfigurationError(IntakeError):
    """Raised when config.ini contains values the engine cannot use."""
    pass
