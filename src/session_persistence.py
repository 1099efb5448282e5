"""
Session persistence - snapshot and recovery of an in-progress scan session.

A handheld can be closed, crash, or run out of battery in the middle of a
package. The engine therefore keeps one small snapshot per device: the
tracking number being worked on and when it was last touched. Progress is
NOT stored; on resume it is re-read from the shared store, because other
devices may have scanned units of the same package in the meantime.

Snapshot file: <StateDir>/inbound_scan_session.json
    {
        "version": "1.0",
        "tracking_number": "1Z999AA10123456784",
        "timestamp": "2026-03-02T09:14:07.512000",
        "device_id": "DOCK-03"
    }

The file is written atomically (temp file + move), and the previous
version is kept as a .backup so a torn write can be recovered.
"""

import json
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from inbound_store import SessionStore
from logger import get_logger
from models import SessionSnapshot
from shipment_matcher import MATCHED, ShipmentMatcher

logger = get_logger(__name__)

# Fixed key: one active session per device
SESSION_KEY = "inbound_scan_session"

DEFAULT_STALE_AFTER = timedelta(hours=24)


class JsonFileSessionStore(SessionStore):
    """SessionStore that keeps the snapshot in a JSON file."""

    def __init__(self, state_dir: Path, key: str = SESSION_KEY):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.state_dir / f"{key}.json"

    @property
    def backup_path(self) -> Path:
        return self.path.with_suffix('.json.backup')

    def save(self, snapshot: SessionSnapshot) -> None:
        """
        Write the snapshot with an atomic replace.

        Raises:
            OSError: If the state directory is not writable
        """
        if self.path.exists():
            shutil.copy2(self.path, self.backup_path)

        with tempfile.NamedTemporaryFile(
            mode='w',
            dir=self.state_dir,
            prefix='.tmp_session_',
            suffix='.json',
            delete=False,
            encoding='utf-8'
        ) as tmp_file:
            json.dump(snapshot.to_dict(), tmp_file, indent=2)
            tmp_path = tmp_file.name

        shutil.move(tmp_path, self.path)
        logger.debug(f"Session snapshot saved: {snapshot.tracking_number}")

    def load(self) -> Optional[SessionSnapshot]:
        """
        Read the snapshot, falling back to the backup if the main file is corrupt.

        Returns:
            The snapshot, or None if neither file holds a valid one
        """
        for path in (self.path, self.backup_path):
            if not path.exists():
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return SessionSnapshot.from_dict(json.load(f))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
                logger.error(f"Unreadable session snapshot {path.name}: {e}")
        return None

    def clear(self) -> None:
        for path in (self.path, self.backup_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        logger.debug("Session snapshot cleared")


class SessionPersistence:
    """
    Snapshot policy on top of a SessionStore.

    Args:
        store: Device-local SessionStore
        stale_after: Snapshots older than this are discarded, never offered
        device_id: Written into every snapshot
        clock: Returns "now"; replaceable in tests
    """

    def __init__(self, store: SessionStore, stale_after: timedelta = DEFAULT_STALE_AFTER,
                 device_id: str = "", clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.stale_after = stale_after
        self.device_id = device_id
        self.clock = clock

    def save(self, tracking_number: str) -> SessionSnapshot:
        """
        Persist the active tracking number with the current timestamp.

        A failing write is logged, not raised: losing crash recovery must
        not stop the operator from scanning.
        """
        snapshot = SessionSnapshot(
            tracking_number=tracking_number,
            timestamp=self.clock(),
            device_id=self.device_id,
        )
        try:
            self.store.save(snapshot)
        except OSError as e:
            logger.error(f"CRITICAL: Failed to save session snapshot: {e}", exc_info=True)
        return snapshot

    def clear(self) -> None:
        try:
            self.store.clear()
        except OSError as e:
            logger.error(f"Failed to clear session snapshot: {e}")

    def is_stale(self, snapshot: SessionSnapshot) -> bool:
        return self.clock() - snapshot.timestamp >= self.stale_after

    def find_resumable(self, matcher: ShipmentMatcher) -> Optional[SessionSnapshot]:
        """
        Return the snapshot if it may be offered for resume.

        A snapshot is offered only if it is younger than stale_after AND its
        shipment group is still incomplete according to the live store.
        Stale snapshots and snapshots of complete (or vanished) groups are
        cleared so they are never offered again.

        Raises:
            StoreUnavailableError: If the completeness check cannot run. The
                                   snapshot is kept so a later start can retry.
        """
        snapshot = self.store.load()
        if snapshot is None:
            return None

        if self.is_stale(snapshot):
            logger.info(
                f"Discarding stale session snapshot for {snapshot.tracking_number} "
                f"from {snapshot.timestamp.isoformat()}"
            )
            self.clear()
            return None

        result = matcher.match(snapshot.tracking_number)
        if result.status != MATCHED:
            logger.info(
                f"Discarding session snapshot for {snapshot.tracking_number}: {result.status}"
            )
            self.clear()
            return None

        logger.info(f"Resumable session found for {snapshot.tracking_number}")
        return snapshot
