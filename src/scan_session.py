"""
Scan session - the state machine that drives one package through intake.

Flow on the dock:
    1. Operator scans the tracking label  -> scan_tracking()
    2. Operator scans each unit's LPN     -> scan_lpn() creates a pending scan
    3. Operator grades the unit, confirms the SKU if asked, attaches photos
       for defects                        -> commit_pending()
    4. When every declared unit is in     -> complete_package()
       or the package is short and will
       never be whole                     -> force_complete()

Every state change goes through one transition table, so the scanner
screen, the manual-entry screen and any future entry point share exactly
the same rules. Operator-recoverable outcomes come back as
(payload, STATUS) tuples; SessionStateError is raised only for events that
are illegal in the current state.

Safety-relevant decisions (already inbounded? package complete?) always
query the store at decision time. Several devices may be working on the
same package, so nothing cached in this object is trusted for them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
from PySide6.QtCore import QObject, Signal

from duplicate_guard import ALREADY_INBOUNDED, ALREADY_SCANNED_THIS_SESSION, DuplicateGuard, build_duplicate_frame
from evidence import EvidencePolicy, evidence_reasons
from exceptions import (MissingRequiredEvidenceError, SessionStateError, StoreUnavailableError,
                        UniqueViolationError, ValidationError)
from force_completion import compute_discrepancy
from inbound_store import InboundStore
from logger import get_logger, set_device_context, set_operator_context, set_tracking_context
from mismatch_resolver import confirm, order_skus_of, resolve, select_shipment_line
from models import (VALID_GRADES, InboundRecord, Indeterminate, Mismatch, MismatchFinding, OrderRecord,
                    SessionSnapshot, SessionState, ShipmentGroup, ShipmentLine, ShipmentStatus)
from normalization import keys_equal, normalize_key
from session_persistence import JsonFileSessionStore, SessionPersistence
from settings import IntakeSettings
from shipment_matcher import ALREADY_COMPLETE, MATCHED, ShipmentMatcher
from sqlite_store import SQLiteInboundStore
from status_reconciler import StatusReconciler

logger = get_logger(__name__)

# Outcome statuses returned as the second element of every result tuple
TRACKING_MATCHED = "TRACKING_MATCHED"
TRACKING_NOT_FOUND = "TRACKING_NOT_FOUND"
TRACKING_ALREADY_COMPLETE = "TRACKING_ALREADY_COMPLETE"
LPN_PENDING = "LPN_PENDING"
LPN_ACCEPTED = "LPN_ACCEPTED"
LPN_NOT_FOUND = "LPN_NOT_FOUND"
LPN_ALREADY_SCANNED = "LPN_ALREADY_SCANNED"
LPN_ALREADY_INBOUNDED = "LPN_ALREADY_INBOUNDED"
OVER_QUANTITY_LIMIT = "OVER_QUANTITY_LIMIT"
SKU_CONFIRMATION_REQUIRED = "SKU_CONFIRMATION_REQUIRED"
MISSING_EVIDENCE = "MISSING_EVIDENCE"
NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
NO_PENDING_SCAN = "NO_PENDING_SCAN"
EMPTY_INPUT = "EMPTY_INPUT"
STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
PACKAGE_COMPLETED = "PACKAGE_COMPLETED"
PACKAGE_INCOMPLETE = "PACKAGE_INCOMPLETE"
FORCE_COMPLETED = "FORCE_COMPLETED"

# Non-blocking advisories, emitted through advisory_raised
ADVISORY_MISMATCH = "MISMATCH"
ADVISORY_INDETERMINATE = "INDETERMINATE"
ADVISORY_OVER_QUANTITY = "OVER_QUANTITY"
ADVISORY_DUPLICATE_DECLARATION = "DUPLICATE_DECLARATION"

# State machine events
EVENT_TRACKING_SCANNED = "tracking_scanned"
EVENT_TRACKING_RESOLVED = "tracking_resolved"
EVENT_TRACKING_REJECTED = "tracking_rejected"
EVENT_RESUMED = "resumed"
EVENT_LPN_ACCEPTED = "lpn_accepted"
EVENT_QUANTITY_REACHED = "quantity_reached"
EVENT_QUANTITY_DROPPED = "quantity_dropped"
EVENT_PACKAGE_COMPLETED = "package_completed"
EVENT_FORCE_COMPLETED = "force_completed"
EVENT_RESET = "reset"

_TRANSITIONS = {
    (SessionState.IDLE, EVENT_TRACKING_SCANNED): SessionState.AWAITING_TRACKING,
    (SessionState.FORCE_COMPLETED, EVENT_TRACKING_SCANNED): SessionState.AWAITING_TRACKING,
    (SessionState.AWAITING_TRACKING, EVENT_TRACKING_RESOLVED): SessionState.AWAITING_LPN,
    (SessionState.AWAITING_TRACKING, EVENT_TRACKING_REJECTED): SessionState.IDLE,
    (SessionState.IDLE, EVENT_RESUMED): SessionState.AWAITING_LPN,
    (SessionState.AWAITING_LPN, EVENT_LPN_ACCEPTED): SessionState.AWAITING_LPN,
    (SessionState.AWAITING_LPN, EVENT_QUANTITY_REACHED): SessionState.READY_TO_COMPLETE,
    (SessionState.READY_TO_COMPLETE, EVENT_LPN_ACCEPTED): SessionState.READY_TO_COMPLETE,
    (SessionState.READY_TO_COMPLETE, EVENT_QUANTITY_DROPPED): SessionState.AWAITING_LPN,
    (SessionState.READY_TO_COMPLETE, EVENT_PACKAGE_COMPLETED): SessionState.IDLE,
    (SessionState.AWAITING_LPN, EVENT_FORCE_COMPLETED): SessionState.FORCE_COMPLETED,
    (SessionState.READY_TO_COMPLETE, EVENT_FORCE_COMPLETED): SessionState.FORCE_COMPLETED,
}

# States in which a package is being worked on
_ACTIVE_STATES = (SessionState.AWAITING_LPN, SessionState.READY_TO_COMPLETE)


def next_state(state: SessionState, event: str) -> SessionState:
    """
    Look up the transition for (state, event).

    Raises:
        SessionStateError: If the pair is not in the transition table
    """
    if event == EVENT_RESET:
        return SessionState.IDLE

    target = _TRANSITIONS.get((SessionState(state), event))
    if target is None:
        raise SessionStateError(
            f"Event '{event}' is not allowed in state '{SessionState(state).value}'",
            state=SessionState(state).value,
            event=event,
        )
    return target


@dataclass
class PendingScan:
    """An admitted LPN waiting for grade, SKU confirmation and evidence."""
    lpn: str
    line: ShipmentLine
    orders: List[OrderRecord]
    finding: MismatchFinding
    advisories: List[str] = field(default_factory=list)

    @property
    def product_name(self) -> str:
        for order in self.orders:
            if order.product_name:
                return order.product_name
        return self.line.declared_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lpn': self.lpn,
            'shipment_line_id': self.line.id,
            'product_name': self.product_name,
            'order_ids': [o.id for o in self.orders],
            'finding': self.finding.to_dict(),
            'requires_confirmation': self.finding.requires_confirmation,
            'advisories': list(self.advisories),
        }


class ScanSession(QObject):
    """
    Coordinates tracking match, LPN admission, commit and completion.

    The engine runs on one device for one operator. It owns no data: shipment
    lines, orders and inbound records live in the shared InboundStore, and
    the only thing kept locally is a snapshot pointing at the package in
    progress.

    Attributes:
        session_active_changed (Signal): bool, True while a package is open.
                                         Shells subscribe via on_session_active()
                                         to warn before navigating away.
        state_changed (Signal): str, new SessionState value
        progress_changed (Signal): tracking_number, inbounded, declared
        advisory_raised (Signal): advisory name, payload dict
        scan_processed (Signal): result payload, status string for scans
                                 arriving through an attached input source
        state (SessionState): Current state
        group (ShipmentGroup | None): Group of the open package
        scanned_lpns (List[str]): LPNs committed in this session, in order
        pending (PendingScan | None): Admitted LPN awaiting commit_pending()
        pending_resume (SessionSnapshot | None): Snapshot offered for resume
    """
    session_active_changed = Signal(bool)
    state_changed = Signal(str)
    progress_changed = Signal(str, int, int)  # tracking_number, inbounded, declared
    advisory_raised = Signal(str, object)
    scan_processed = Signal(object, str)

    def __init__(self, store: InboundStore, persistence: Optional[SessionPersistence] = None,
                 settings: Optional[IntakeSettings] = None, operator_id: str = "",
                 clock: Callable[[], datetime] = datetime.now, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.store = store
        self.settings = settings or IntakeSettings()
        self.clock = clock

        self.matcher = ShipmentMatcher(store)
        self.guard = DuplicateGuard(store)
        self.reconciler = StatusReconciler(store, self.matcher)
        self.evidence = EvidencePolicy(required=self.settings.require_evidence_photo)

        if persistence is None:
            persistence = SessionPersistence(
                JsonFileSessionStore(self.settings.state_dir),
                stale_after=self.settings.stale_after,
                device_id=self.settings.device_id,
                clock=clock,
            )
        self.persistence = persistence

        self.state = SessionState.IDLE
        self.group: Optional[ShipmentGroup] = None
        self.scanned_lpns: List[str] = []
        self.started_at: Optional[datetime] = None
        self.pending: Optional[PendingScan] = None
        self.pending_resume: Optional[SessionSnapshot] = None
        self._active = False

        self.operator_id = ""
        self.set_operator(operator_id)
        set_device_context(self.settings.device_id)

    @classmethod
    def from_settings(cls, settings: IntakeSettings, operator_id: str = "") -> "ScanSession":
        """
        Build an engine on the device's SQLite store.

        Deleting an inbound record through the store reconciles shipment
        statuses through this session.
        """
        store = SQLiteInboundStore(settings.database_path)
        session = cls(store, settings=settings, operator_id=operator_id)
        store.on_record_deleted = session.handle_record_deleted
        return session

    # ------------------------------------------------------------------
    # Observers and input
    # ------------------------------------------------------------------

    def on_session_active(self, callback: Callable[[bool], None]) -> None:
        """Subscribe to session start/end (True when a package is opened)."""
        self.session_active_changed.connect(callback)

    @property
    def is_session_active(self) -> bool:
        return self._active

    @property
    def tracking_number(self) -> Optional[str]:
        return self.group.tracking_number if self.group else None

    def attach_input_source(self, source) -> None:
        """Route every scan from a ScanInputSource through handle_scan()."""
        source.scanned.connect(self._on_scanned)

    def _on_scanned(self, text: str):
        result, status = self.handle_scan(text)
        self.scan_processed.emit(result, status)

    def set_operator(self, operator_id: str) -> None:
        self.operator_id = operator_id or ""
        set_operator_context(self.operator_id or None)

    def handle_scan(self, text: str) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Dispatch a decoded string by state.

        With a package open the string is an LPN; otherwise it is a
        tracking number.
        """
        if self.state in _ACTIVE_STATES:
            return self.scan_lpn(text)
        return self.scan_tracking(text)

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------

    def _transition(self, event: str) -> SessionState:
        old = self.state
        self.state = next_state(old, event)
        logger.debug(f"Session transition: {old.value} --{event}--> {self.state.value}")
        if self.state != old:
            self.state_changed.emit(self.state.value)
        return self.state

    def _set_active(self, active: bool):
        if active != self._active:
            self._active = active
            self.session_active_changed.emit(active)

    def _open(self, group: ShipmentGroup, inbounded: int):
        self.group = group
        self.scanned_lpns = []
        self.pending = None
        self.started_at = self.clock()
        set_tracking_context(group.tracking_number)
        self.persistence.save(group.tracking_number)
        self._set_active(True)
        self.progress_changed.emit(group.tracking_number, inbounded, group.declared_total_quantity)

    def _close(self):
        self.persistence.clear()
        self.group = None
        self.scanned_lpns = []
        self.pending = None
        self.started_at = None
        set_tracking_context(None)
        self._set_active(False)

    def _advise(self, advisory: str, payload: Dict[str, Any]):
        logger.info(f"Advisory {advisory}: {payload}")
        self.advisory_raised.emit(advisory, payload)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def scan_tracking(self, text: str) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Open a package by its tracking number.

        Returns:
            Tuple[Dict | None, str]: Group payload and one of
                * "TRACKING_MATCHED" - package open, state AwaitingLpn
                * "TRACKING_NOT_FOUND" - no declared line for this tracking number
                * "TRACKING_ALREADY_COMPLETE" - every declared unit is inbounded
                * "STORE_UNAVAILABLE" - lookup failed, state back to Idle
                * "EMPTY_INPUT" - blank scan, nothing happened

        Raises:
            SessionStateError: If a package is already open
        """
        tracking_number = (text or "").strip()
        if not tracking_number:
            return None, EMPTY_INPUT

        self._transition(EVENT_TRACKING_SCANNED)

        try:
            result = self.matcher.match(tracking_number)
        except StoreUnavailableError as e:
            logger.error(f"Tracking lookup failed for {tracking_number}: {e}")
            self._transition(EVENT_TRACKING_REJECTED)
            return None, STORE_UNAVAILABLE

        if result.status != MATCHED:
            self._transition(EVENT_TRACKING_REJECTED)
            if result.status == ALREADY_COMPLETE:
                return {
                    'tracking_number': result.group.tracking_number,
                    'declared_total_quantity': result.group.declared_total_quantity,
                    'inbounded_count': result.inbounded_count,
                }, TRACKING_ALREADY_COMPLETE
            return {'tracking_number': tracking_number}, TRACKING_NOT_FOUND

        # Superseded snapshots must not be offered later
        self.pending_resume = None
        self._open(result.group, result.inbounded_count)
        self._transition(EVENT_TRACKING_RESOLVED)
        logger.info(f"Session started for {result.group.tracking_number}")

        payload = self._group_payload(result.group, result.inbounded_count)
        if payload['duplicate_line_ids']:
            self._advise(ADVISORY_DUPLICATE_DECLARATION, {
                'tracking_number': result.group.tracking_number,
                'line_ids': payload['duplicate_line_ids'],
            })
        return payload, TRACKING_MATCHED

    def _group_payload(self, group: ShipmentGroup, inbounded: int) -> Dict[str, Any]:
        dupes = build_duplicate_frame(group.lines)
        duplicate_ids = dupes.loc[dupes['duplicate'], 'id'].tolist() if not dupes.empty else []
        payload = group.to_dict()
        payload['inbounded_count'] = inbounded
        payload['remaining'] = max(group.declared_total_quantity - inbounded, 0)
        payload['duplicate_line_ids'] = duplicate_ids
        return payload

    # ------------------------------------------------------------------
    # LPN admission
    # ------------------------------------------------------------------

    def scan_lpn(self, text: str) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Admit a scanned LPN as the pending scan.

        Checks, in order: session-local duplicate, store duplicate (always
        performed), order lookup, quantity ceiling. Mismatch, Indeterminate
        and over-quantity are advisories; they never reject the scan.

        Returns:
            Tuple[Dict | None, str]: Pending-scan payload and one of
                * "LPN_PENDING" - admitted, waiting for commit_pending()
                * "LPN_ALREADY_SCANNED" - scanned earlier in this session
                * "LPN_ALREADY_INBOUNDED" - committed before (any device)
                * "LPN_NOT_FOUND" - no order record and RequireOrderRecord is on
                * "OVER_QUANTITY_LIMIT" - MaxOverQuantityRatio ceiling reached
                * "STORE_UNAVAILABLE", "NO_ACTIVE_SESSION", "EMPTY_INPUT"
        """
        lpn = (text or "").strip()
        if not lpn:
            return None, EMPTY_INPUT
        if self.state not in _ACTIVE_STATES or self.group is None:
            return None, NO_ACTIVE_SESSION

        group = self.group
        try:
            rejection = self.guard.check_admission(lpn, self.scanned_lpns)
            if rejection == ALREADY_SCANNED_THIS_SESSION:
                return {'lpn': lpn}, LPN_ALREADY_SCANNED
            if rejection == ALREADY_INBOUNDED:
                return {'lpn': lpn}, LPN_ALREADY_INBOUNDED

            orders = self.store.find_orders_by_lpn(lpn)
            if not orders and self.settings.require_order_record:
                logger.warning(f"LPN {lpn} has no order record")
                return {'lpn': lpn}, LPN_NOT_FOUND

            inbounded = self.store.count_inbounded_by_tracking(group.tracking_number)
            declared = group.declared_total_quantity
            advisories = []
            if inbounded + 1 > declared:
                ratio = self.settings.max_over_quantity_ratio
                if ratio > 0 and inbounded + 1 > declared * ratio:
                    logger.warning(
                        f"Over-quantity limit reached for {group.tracking_number}: "
                        f"{inbounded}/{declared} (ratio {ratio})"
                    )
                    return {
                        'lpn': lpn,
                        'inbounded_count': inbounded,
                        'declared_total_quantity': declared,
                    }, OVER_QUANTITY_LIMIT
                advisories.append(ADVISORY_OVER_QUANTITY)

            order_skus = order_skus_of(orders)
            line = select_shipment_line(group, order_skus, self._counts_by_line(group))
        except StoreUnavailableError as e:
            logger.error(f"LPN admission failed for {lpn}: {e}")
            return {'lpn': lpn}, STORE_UNAVAILABLE

        finding = resolve(line.sku, order_skus)
        if isinstance(finding, Mismatch):
            advisories.append(ADVISORY_MISMATCH)
        elif isinstance(finding, Indeterminate):
            advisories.append(ADVISORY_INDETERMINATE)

        if self.pending is not None:
            logger.info(f"Pending scan {self.pending.lpn} replaced by {lpn}")
        self.pending = PendingScan(lpn=lpn, line=line, orders=orders, finding=finding,
                                   advisories=advisories)

        payload = self.pending.to_dict()
        for advisory in advisories:
            if advisory == ADVISORY_OVER_QUANTITY:
                self._advise(advisory, {
                    'lpn': lpn,
                    'inbounded_count': inbounded,
                    'declared_total_quantity': declared,
                })
            else:
                self._advise(advisory, {'lpn': lpn, 'finding': finding.to_dict()})

        return payload, LPN_PENDING

    def _counts_by_line(self, group: ShipmentGroup) -> Dict[str, int]:
        counts = {}
        by_sku: Dict[str, int] = {}
        for line in group.lines:
            key = normalize_key(line.sku)
            if key not in by_sku:
                by_sku[key] = self.store.count_inbounded_by_sku_and_tracking(group.tracking_number, line.sku)
            counts[line.id] = by_sku[key]
        return counts

    def cancel_pending(self) -> Optional[str]:
        """Drop the pending scan. Returns its LPN, or None if there was none."""
        if self.pending is None:
            return None
        lpn = self.pending.lpn
        self.pending = None
        logger.info(f"Pending scan {lpn} cancelled")
        return lpn

    def evidence_required(self, missing_parts=(), has_damage: bool = False) -> List[str]:
        """
        Precondition hook for the photo step.

        Returns:
            Reasons a photo must be attached before commit ([] if none)
        """
        if not self.evidence.required:
            return []
        return evidence_reasons(missing_parts, has_damage)

    def parts_checklist(self, sku: Optional[str] = None) -> List[str]:
        """
        Parts checklist for the confirmed SKU (or the pending line's SKU).

        Raises:
            StoreUnavailableError: If the catalogue cannot be read
        """
        if sku is None:
            if self.pending is None:
                return []
            sku = self.pending.line.sku
        return self.store.find_product_parts(sku)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit_pending(self, grade: str, confirmed_sku: Optional[str] = None,
                       missing_parts=(), has_damage: bool = False, photo_count: int = 0,
                       processed_by: Optional[str] = None,
                       notes: str = "") -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Write the pending scan as an InboundRecord.

        The store existence check is repeated right before the insert, and
        a UniqueViolationError from the insert itself is treated the same
        way: another device committed the LPN first.

        Args:
            grade: 'A', 'B', 'C' or 'new'
            confirmed_sku: Operator's choice; required for Mismatch and
                           Indeterminate findings
            missing_parts: Names of parts missing from the unit
            has_damage: Operator recorded product damage
            photo_count: Photos attached by the shell
            processed_by: Operator id (defaults to the session operator)
            notes: Free-text note stored on the record

        Returns:
            Tuple[Dict | None, str]: Result payload and one of
                * "LPN_ACCEPTED" - record committed
                * "SKU_CONFIRMATION_REQUIRED" - pick a candidate SKU first
                * "MISSING_EVIDENCE" - attach a photo first
                * "LPN_ALREADY_INBOUNDED" - lost the race, pending scan dropped
                * "STORE_UNAVAILABLE" - nothing written, pending scan kept
                * "NO_PENDING_SCAN", "NO_ACTIVE_SESSION"

        Raises:
            ValidationError: On an unknown grade or a SKU outside the candidates
        """
        if self.state not in _ACTIVE_STATES or self.group is None:
            return None, NO_ACTIVE_SESSION
        if self.pending is None:
            return None, NO_PENDING_SCAN
        if grade not in VALID_GRADES:
            raise ValidationError(f"Unknown grade {grade!r}; expected one of {', '.join(VALID_GRADES)}")

        pending = self.pending
        if pending.finding.requires_confirmation and not (confirmed_sku or "").strip():
            return pending.to_dict(), SKU_CONFIRMATION_REQUIRED
        sku = confirm(pending.finding, confirmed_sku)

        missing_parts = [p.strip() for p in missing_parts if p and p.strip()]
        try:
            self.evidence.check(missing_parts, has_damage, photo_count)
        except MissingRequiredEvidenceError as e:
            payload = pending.to_dict()
            payload['reasons'] = e.reasons
            payload['message'] = e.get_display_message()
            return payload, MISSING_EVIDENCE

        line = pending.line
        if not keys_equal(sku, line.sku):
            line = self.group.line_for_sku(sku) or line

        now = self.clock()
        record = InboundRecord(
            lpn=pending.lpn,
            shipment_line_id=line.id,
            tracking_number=self.group.tracking_number,
            sku=sku,
            grade=grade,
            missing_parts=missing_parts,
            processed_at=now,
            product_name=pending.product_name,
            order_id=pending.orders[0].id if pending.orders else line.order_id,
            processed_by=processed_by if processed_by is not None else self.operator_id,
            notes=notes,
        )

        try:
            if self.store.exists_inbound_record(pending.lpn):
                self.pending = None
                return {'lpn': pending.lpn}, LPN_ALREADY_INBOUNDED
            self.store.create_inbound_record(record)
        except UniqueViolationError:
            logger.info(f"LPN {pending.lpn} was committed by another device")
            self.pending = None
            return {'lpn': pending.lpn}, LPN_ALREADY_INBOUNDED
        except StoreUnavailableError as e:
            logger.error(f"Commit failed for LPN {pending.lpn}: {e}")
            return pending.to_dict(), STORE_UNAVAILABLE

        self.pending = None
        self.scanned_lpns.append(pending.lpn)
        logger.info(f"Inbounded LPN {pending.lpn} as {sku} grade {grade}")

        if pending.orders:
            try:
                self.store.mark_orders_inbounded([o.id for o in pending.orders], now)
            except StoreUnavailableError as e:
                logger.error(f"Could not stamp orders for LPN {pending.lpn}: {e}")

        declared = self.group.declared_total_quantity
        try:
            inbounded = self.store.count_inbounded_by_tracking(self.group.tracking_number)
        except StoreUnavailableError as e:
            # Record is committed; readiness is re-evaluated on the next scan
            logger.error(f"Progress recount failed: {e}")
            inbounded = None

        if inbounded is not None and inbounded >= declared and self.state == SessionState.AWAITING_LPN:
            self._transition(EVENT_QUANTITY_REACHED)
        else:
            self._transition(EVENT_LPN_ACCEPTED)

        self.persistence.save(self.group.tracking_number)
        if inbounded is not None:
            self.progress_changed.emit(self.group.tracking_number, inbounded, declared)

        return {
            'lpn': record.lpn,
            'sku': record.sku,
            'shipment_line_id': record.shipment_line_id,
            'grade': record.grade,
            'inbounded_count': inbounded,
            'declared_total_quantity': declared,
            'ready_to_complete': self.state == SessionState.READY_TO_COMPLETE,
            'advisories': list(pending.advisories),
        }, LPN_ACCEPTED

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_package(self) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Close the package once every declared unit is inbounded.

        The live count is queried again here; a record deleted since the last
        scan keeps the package open.

        Returns:
            Tuple[Dict | None, str]: "PACKAGE_COMPLETED", "PACKAGE_INCOMPLETE",
                                     "STORE_UNAVAILABLE" or "NO_ACTIVE_SESSION"
        """
        if self.state not in _ACTIVE_STATES or self.group is None:
            return None, NO_ACTIVE_SESSION

        group = self.group
        try:
            actual = self.store.count_inbounded_by_tracking(group.tracking_number)
        except StoreUnavailableError as e:
            logger.error(f"Completion check failed: {e}")
            return None, STORE_UNAVAILABLE

        payload = {
            'tracking_number': group.tracking_number,
            'declared_total_quantity': group.declared_total_quantity,
            'inbounded_count': actual,
        }
        if actual < group.declared_total_quantity:
            return payload, PACKAGE_INCOMPLETE

        try:
            self.reconciler.apply_group_status(group, ShipmentStatus.INBOUND)
        except StoreUnavailableError as e:
            logger.error(f"Completion status update failed: {e}")
            return payload, STORE_UNAVAILABLE

        if self.state == SessionState.AWAITING_LPN:
            # Other devices finished the count since our last commit
            self._transition(EVENT_QUANTITY_REACHED)
        self._transition(EVENT_PACKAGE_COMPLETED)
        self._close()
        logger.info(f"Package {group.tracking_number} completed: {actual}/{group.declared_total_quantity}")
        return payload, PACKAGE_COMPLETED

    def force_complete(self) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Close the package short of its declared quantity.

        Every line of the group is set to 'inbound' with an audit note that
        states the discrepancy.

        Returns:
            Tuple[Dict | None, str]: "FORCE_COMPLETED", "STORE_UNAVAILABLE"
                                     or "NO_ACTIVE_SESSION"
        """
        if self.state not in _ACTIVE_STATES or self.group is None:
            return None, NO_ACTIVE_SESSION

        group = self.group
        try:
            actual = self.store.count_inbounded_by_tracking(group.tracking_number)
            result = compute_discrepancy(group.declared_total_quantity, actual)
            self.reconciler.apply_group_status(group, ShipmentStatus.INBOUND, result.audit_note)
        except StoreUnavailableError as e:
            logger.error(f"Force completion failed: {e}")
            return None, STORE_UNAVAILABLE

        self._transition(EVENT_FORCE_COMPLETED)
        self._close()
        logger.warning(f"Package {group.tracking_number} force-completed: {result.audit_note}")
        return {
            'tracking_number': group.tracking_number,
            'declared_total_quantity': result.declared,
            'inbounded_count': result.actual,
            'discrepancy': result.discrepancy,
            'inconsistent': result.inconsistent,
            'audit_note': result.audit_note,
        }, FORCE_COMPLETED

    def reset(self) -> None:
        """
        Abandon the open package.

        Committed records stay in the store; only this session's
        bookkeeping and the snapshot are discarded.
        """
        if self.group is not None:
            logger.info(
                f"Session for {self.group.tracking_number} reset after "
                f"{len(self.scanned_lpns)} scan(s)"
            )
        self.pending_resume = None
        self._transition(EVENT_RESET)
        self._close()

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def check_for_resumable(self) -> Optional[SessionSnapshot]:
        """
        Look for an interrupted session to offer on start-up.

        Returns:
            The snapshot to offer (also kept in pending_resume), or None
        """
        if self.state != SessionState.IDLE:
            return None
        try:
            self.pending_resume = self.persistence.find_resumable(self.matcher)
        except StoreUnavailableError as e:
            logger.error(f"Cannot check for an interrupted session: {e}")
            self.pending_resume = None
        return self.pending_resume

    def resume(self) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        Re-open the offered package.

        The group is matched again from the live store and the session-local
        scanned set starts empty; only the tracking number came from the
        snapshot.

        Raises:
            SessionStateError: If no resume is on offer or a package is open
        """
        if self.pending_resume is None:
            raise SessionStateError("No interrupted session to resume",
                                    state=self.state.value, event=EVENT_RESUMED)
        next_state(self.state, EVENT_RESUMED)

        snapshot = self.pending_resume
        try:
            result = self.matcher.match(snapshot.tracking_number)
        except StoreUnavailableError as e:
            logger.error(f"Resume lookup failed: {e}")
            return None, STORE_UNAVAILABLE

        self.pending_resume = None
        if result.status != MATCHED:
            self.persistence.clear()
            if result.status == ALREADY_COMPLETE:
                return {'tracking_number': result.group.tracking_number}, TRACKING_ALREADY_COMPLETE
            return {'tracking_number': snapshot.tracking_number}, TRACKING_NOT_FOUND

        self._open(result.group, result.inbounded_count)
        self._transition(EVENT_RESUMED)
        logger.info(f"Session resumed for {result.group.tracking_number}")
        return self._group_payload(result.group, result.inbounded_count), TRACKING_MATCHED

    def discard_resume(self) -> None:
        """Decline the offered package and delete its snapshot."""
        if self.pending_resume is not None:
            logger.info(f"Interrupted session for {self.pending_resume.tracking_number} discarded")
        self.pending_resume = None
        self.persistence.clear()

    # ------------------------------------------------------------------
    # Progress and reconciliation
    # ------------------------------------------------------------------

    def progress_frame(self) -> pd.DataFrame:
        """
        Live per-line progress of the open package.

        Columns: line_id, sku, declared, inbounded, remaining, complete.
        Lines declaring the same SKU share that SKU's inbounded count.
        """
        columns = ['line_id', 'sku', 'declared', 'inbounded', 'remaining', 'complete']
        if self.group is None:
            return pd.DataFrame(columns=columns)

        counts = self._counts_by_line(self.group)
        df = pd.DataFrame([
            {'line_id': line.id, 'sku': line.sku, 'declared': line.quantity, 'inbounded': counts[line.id]}
            for line in self.group.lines
        ], columns=['line_id', 'sku', 'declared', 'inbounded'])
        df['remaining'] = (df['declared'] - df['inbounded']).clip(lower=0)
        df['complete'] = df['inbounded'] >= df['declared']
        return df

    def progress(self) -> Optional[Dict[str, Any]]:
        """
        Aggregate and per-line progress from live queries.

        Returns:
            None when no package is open, otherwise
            {"tracking_number", "declared", "inbounded", "remaining",
             "scanned_this_session", "lines": [...]}
        """
        if self.group is None:
            return None

        inbounded = self.store.count_inbounded_by_tracking(self.group.tracking_number)
        declared = self.group.declared_total_quantity
        return {
            'tracking_number': self.group.tracking_number,
            'declared': declared,
            'inbounded': inbounded,
            'remaining': max(declared - inbounded, 0),
            'scanned_this_session': len(self.scanned_lpns),
            'lines': self.progress_frame().to_dict('records'),
        }

    def handle_record_deleted(self, tracking_number: str, lpn: Optional[str] = None) -> List[str]:
        """
        React to an InboundRecord deleted outside the scanner.

        Reverts the group's statuses if it is now short. When the record
        belonged to the open package, the LPN becomes scannable again and a
        package that dropped below its declared total goes back to
        AwaitingLpn.

        The delete has already been committed when this runs, so store
        errors are logged rather than raised back to the deleting caller.
        """
        try:
            reverted = self.reconciler.reconcile_after_deletion(tracking_number)
        except StoreUnavailableError as e:
            logger.error(f"Status reconciliation failed after deletion on {tracking_number}: {e}")
            reverted = []

        if self.group is None or not keys_equal(self.group.tracking_number, tracking_number):
            return reverted

        if lpn is not None:
            remaining = [s for s in self.scanned_lpns if not keys_equal(s, lpn)]
            if len(remaining) != len(self.scanned_lpns):
                logger.info(f"LPN {lpn} deleted from the store, removed from session scans")
                self.scanned_lpns = remaining

        try:
            inbounded = self.store.count_inbounded_by_tracking(self.group.tracking_number)
        except StoreUnavailableError as e:
            # Readiness is re-checked by complete_package()
            logger.error(f"Progress recount failed after deletion: {e}")
            return reverted

        declared = self.group.declared_total_quantity
        if self.state == SessionState.READY_TO_COMPLETE and inbounded < declared:
            logger.warning(
                f"{self.group.tracking_number} dropped below declared after deletion: "
                f"{inbounded}/{declared}"
            )
            self._transition(EVENT_QUANTITY_DROPPED)
        self.progress_changed.emit(self.group.tracking_number, inbounded, declared)
        return reverted
