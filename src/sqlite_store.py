"""
SQLite implementation of the InboundStore contract.

Used as the device-side reference store and as the backing store in tests.
Every count and existence method runs a fresh query; nothing is cached.

The UNIQUE constraint on inbound_records.lpn_key is the final arbiter for
concurrent scans of the same LPN: a second insert fails with
UniqueViolationError no matter what the caller checked beforehand.

DB location: [Store] DatabasePath in config.ini (default ~/.returns_intake/intake.db)
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from exceptions import StoreUnavailableError, UniqueViolationError
from inbound_store import InboundStore
from logger import get_logger
from models import InboundRecord, OrderRecord, ShipmentLine, ShipmentStatus
from normalization import normalize_key

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS shipment_lines (
    id                  TEXT PRIMARY KEY,
    tracking_number     TEXT NOT NULL,
    tracking_key        TEXT NOT NULL,
    order_id            TEXT NOT NULL,
    sku                 TEXT NOT NULL,
    fnsku               TEXT NOT NULL DEFAULT '',
    declared_name       TEXT NOT NULL DEFAULT '',
    quantity            INTEGER NOT NULL,
    status              TEXT NOT NULL DEFAULT 'shipping',
    carrier             TEXT NOT NULL DEFAULT '',
    duplicate_confirmed INTEGER NOT NULL DEFAULT 0,
    note                TEXT,
    updated_at          TEXT
);
CREATE INDEX IF NOT EXISTS idx_lines_tracking ON shipment_lines (tracking_key);

CREATE TABLE IF NOT EXISTS orders (
    id              TEXT PRIMARY KEY,
    lpn             TEXT NOT NULL,
    lpn_key         TEXT NOT NULL,
    sku             TEXT,
    product_name    TEXT NOT NULL DEFAULT '',
    return_quantity INTEGER NOT NULL DEFAULT 1,
    inbound_at      TEXT
);
CREATE INDEX IF NOT EXISTS idx_orders_lpn ON orders (lpn_key);

CREATE TABLE IF NOT EXISTS inbound_records (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    lpn              TEXT NOT NULL,
    lpn_key          TEXT NOT NULL UNIQUE,
    shipment_line_id TEXT NOT NULL,
    tracking_number  TEXT NOT NULL,
    tracking_key     TEXT NOT NULL,
    sku              TEXT NOT NULL,
    sku_key          TEXT NOT NULL,
    product_name     TEXT NOT NULL DEFAULT '',
    order_id         TEXT NOT NULL DEFAULT '',
    grade            TEXT NOT NULL,
    missing_parts    TEXT NOT NULL DEFAULT '',
    processed_at     TEXT NOT NULL,
    processed_by     TEXT NOT NULL DEFAULT '',
    notes            TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_inbound_tracking ON inbound_records (tracking_key, sku_key);

CREATE TABLE IF NOT EXISTS product_parts (
    sku_key    TEXT NOT NULL,
    part_name  TEXT NOT NULL,
    position   INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_parts_sku ON product_parts (sku_key);
"""

# Separator for missing_parts stored in a single TEXT column
_PARTS_SEPARATOR = "\n"


class SQLiteInboundStore(InboundStore):
    """
    SQLite-backed InboundStore.

    Args:
        db_path: Path to the SQLite file (created if missing)
        on_record_deleted: Optional callback invoked with (tracking_number, lpn)
                           after delete_inbound_record() removes a record.
                           The engine's StatusReconciler subscribes here.
        timeout: sqlite3 busy timeout in seconds
        clock: Returns "now" for shipment-line updated_at stamps
    """

    def __init__(self, db_path: Path,
                 on_record_deleted: Optional[Callable[[str, str], None]] = None,
                 timeout: float = 5, clock: Callable[[], datetime] = datetime.now):
        self._path = str(db_path)
        self._timeout = timeout
        self.on_record_deleted = on_record_deleted
        self.clock = clock
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and map sqlite errors."""
        try:
            conn = sqlite3.connect(self._path, timeout=self._timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open inbound store {self._path}: {e}")

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailableError(f"Inbound store error: {e}")
        finally:
            conn.close()

    @property
    def db_path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_line(row: sqlite3.Row) -> ShipmentLine:
        return ShipmentLine(
            id=row["id"],
            tracking_number=row["tracking_number"],
            order_id=row["order_id"],
            sku=row["sku"],
            fnsku=row["fnsku"],
            declared_name=row["declared_name"],
            quantity=row["quantity"],
            status=ShipmentStatus(row["status"]),
            carrier=row["carrier"],
            duplicate_confirmed=bool(row["duplicate_confirmed"]),
            note=row["note"],
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> OrderRecord:
        return OrderRecord(
            id=row["id"],
            lpn=row["lpn"],
            sku=row["sku"],
            product_name=row["product_name"],
            return_quantity=row["return_quantity"],
            inbound_at=datetime.fromisoformat(row["inbound_at"]) if row["inbound_at"] else None,
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> InboundRecord:
        parts = row["missing_parts"]
        return InboundRecord(
            id=row["id"],
            lpn=row["lpn"],
            shipment_line_id=row["shipment_line_id"],
            tracking_number=row["tracking_number"],
            sku=row["sku"],
            product_name=row["product_name"],
            order_id=row["order_id"],
            grade=row["grade"],
            missing_parts=parts.split(_PARTS_SEPARATOR) if parts else [],
            processed_at=datetime.fromisoformat(row["processed_at"]),
            processed_by=row["processed_by"],
            notes=row["notes"],
        )

    # ------------------------------------------------------------------
    # InboundStore contract
    # ------------------------------------------------------------------

    def find_shipment_lines(self, tracking_number: str) -> List[ShipmentLine]:
        sql = "SELECT * FROM shipment_lines WHERE tracking_key = ? ORDER BY rowid"
        with self._connection() as conn:
            rows = conn.execute(sql, (normalize_key(tracking_number),)).fetchall()
        return [self._row_to_line(r) for r in rows]

    def list_shipment_lines(self) -> List[ShipmentLine]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM shipment_lines ORDER BY rowid").fetchall()
        return [self._row_to_line(r) for r in rows]

    def count_inbounded_by_tracking(self, tracking_number: str) -> int:
        sql = "SELECT COUNT(*) FROM inbound_records WHERE tracking_key = ?"
        with self._connection() as conn:
            return conn.execute(sql, (normalize_key(tracking_number),)).fetchone()[0]

    def count_inbounded_by_sku_and_tracking(self, tracking_number: str, sku: str) -> int:
        sql = "SELECT COUNT(*) FROM inbound_records WHERE tracking_key = ? AND sku_key = ?"
        with self._connection() as conn:
            return conn.execute(
                sql, (normalize_key(tracking_number), normalize_key(sku))
            ).fetchone()[0]

    def find_orders_by_lpn(self, lpn: str) -> List[OrderRecord]:
        sql = "SELECT * FROM orders WHERE lpn_key = ? ORDER BY rowid"
        with self._connection() as conn:
            rows = conn.execute(sql, (normalize_key(lpn),)).fetchall()
        return [self._row_to_order(r) for r in rows]

    def exists_inbound_record(self, lpn: str) -> bool:
        sql = "SELECT 1 FROM inbound_records WHERE lpn_key = ? LIMIT 1"
        with self._connection() as conn:
            return conn.execute(sql, (normalize_key(lpn),)).fetchone() is not None

    def create_inbound_record(self, record: InboundRecord) -> InboundRecord:
        sql = """
            INSERT INTO inbound_records
                (lpn, lpn_key, shipment_line_id, tracking_number, tracking_key,
                 sku, sku_key, product_name, order_id, grade, missing_parts,
                 processed_at, processed_by, notes)
            VALUES
                (:lpn, :lpn_key, :shipment_line_id, :tracking_number, :tracking_key,
                 :sku, :sku_key, :product_name, :order_id, :grade, :missing_parts,
                 :processed_at, :processed_by, :notes)
        """
        row = {
            "lpn": record.lpn,
            "lpn_key": normalize_key(record.lpn),
            "shipment_line_id": record.shipment_line_id,
            "tracking_number": record.tracking_number,
            "tracking_key": normalize_key(record.tracking_number),
            "sku": record.sku,
            "sku_key": normalize_key(record.sku),
            "product_name": record.product_name,
            "order_id": record.order_id,
            "grade": record.grade,
            "missing_parts": _PARTS_SEPARATOR.join(record.missing_parts),
            "processed_at": record.processed_at.isoformat(),
            "processed_by": record.processed_by,
            "notes": record.notes,
        }
        try:
            with self._connection() as conn:
                cur = conn.execute(sql, row)
                record.id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            logger.info(f"Unique violation on LPN {record.lpn}: {e}")
            raise UniqueViolationError(f"LPN {record.lpn} is already inbounded", lpn=record.lpn)

        logger.debug(f"Inserted inbound record {record.id} for LPN {record.lpn}")
        return record

    def update_shipment_line_status(self, line_id: str, status: ShipmentStatus,
                                    note: Optional[str] = None) -> None:
        status = ShipmentStatus(status)
        stamp = self.clock().isoformat()
        with self._connection() as conn:
            if note is None:
                cur = conn.execute(
                    "UPDATE shipment_lines SET status = ?, updated_at = ? WHERE id = ?",
                    (status.value, stamp, line_id),
                )
            else:
                cur = conn.execute(
                    "UPDATE shipment_lines SET status = ?, note = ?, updated_at = ? WHERE id = ?",
                    (status.value, note, stamp, line_id),
                )
            if cur.rowcount == 0:
                logger.warning(f"Status update matched no shipment line: {line_id}")

    def set_duplicate_confirmed(self, line_id: str, confirmed: bool = True) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE shipment_lines SET duplicate_confirmed = ? WHERE id = ?",
                (1 if confirmed else 0, line_id),
            )

    def find_product_parts(self, sku: str) -> List[str]:
        sql = "SELECT part_name FROM product_parts WHERE sku_key = ? ORDER BY position"
        with self._connection() as conn:
            rows = conn.execute(sql, (normalize_key(sku),)).fetchall()
        return [r["part_name"] for r in rows]

    def mark_orders_inbounded(self, order_ids: Iterable[str], when: datetime) -> None:
        ids = [(when.isoformat(), order_id) for order_id in order_ids]
        if not ids:
            return
        with self._connection() as conn:
            conn.executemany("UPDATE orders SET inbound_at = ? WHERE id = ?", ids)

    # ------------------------------------------------------------------
    # Data maintenance (outside the engine contract)
    # ------------------------------------------------------------------

    def add_shipment_lines(self, lines: Iterable[ShipmentLine]) -> None:
        """Insert or replace declared shipment lines."""
        rows = [
            (line.id, line.tracking_number, normalize_key(line.tracking_number),
             line.order_id, line.sku, line.fnsku, line.declared_name, line.quantity,
             line.status.value, line.carrier, 1 if line.duplicate_confirmed else 0, line.note,
             line.updated_at.isoformat() if line.updated_at else None)
            for line in lines
        ]
        sql = """
            INSERT OR REPLACE INTO shipment_lines
                (id, tracking_number, tracking_key, order_id, sku, fnsku,
                 declared_name, quantity, status, carrier, duplicate_confirmed, note, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
        """
        with self._connection() as conn:
            conn.executemany(sql, rows)

    def add_orders(self, orders: Iterable[OrderRecord]) -> None:
        """Insert or replace return-order records."""
        rows = [
            (o.id, o.lpn, normalize_key(o.lpn), o.sku, o.product_name, o.return_quantity,
             o.inbound_at.isoformat() if o.inbound_at else None)
            for o in orders
        ]
        sql = """
            INSERT OR REPLACE INTO orders
                (id, lpn, lpn_key, sku, product_name, return_quantity, inbound_at)
            VALUES (?,?,?,?,?,?,?)
        """
        with self._connection() as conn:
            conn.executemany(sql, rows)

    def set_product_parts(self, sku: str, parts: List[str]) -> None:
        """Replace the parts checklist for a SKU."""
        key = normalize_key(sku)
        with self._connection() as conn:
            conn.execute("DELETE FROM product_parts WHERE sku_key = ?", (key,))
            conn.executemany(
                "INSERT INTO product_parts (sku_key, part_name, position) VALUES (?,?,?)",
                [(key, part, i) for i, part in enumerate(parts)],
            )

    def get_shipment_line(self, line_id: str) -> Optional[ShipmentLine]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM shipment_lines WHERE id = ?", (line_id,)).fetchone()
        return self._row_to_line(row) if row else None

    def get_inbound_record(self, lpn: str) -> Optional[InboundRecord]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM inbound_records WHERE lpn_key = ?", (normalize_key(lpn),)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_inbound_records(self, tracking_number: str) -> List[InboundRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM inbound_records WHERE tracking_key = ? ORDER BY id",
                (normalize_key(tracking_number),),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row else None

    def delete_inbound_record(self, lpn: str) -> Optional[str]:
        """
        Delete the InboundRecord for an LPN.

        Clears inbound_at on the LPN's order records, then notifies
        on_record_deleted so shipment statuses can be reconciled.

        Returns:
            Tracking number of the deleted record, or None if nothing was deleted
        """
        key = normalize_key(lpn)
        with self._connection() as conn:
            row = conn.execute(
                "SELECT tracking_number, lpn FROM inbound_records WHERE lpn_key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM inbound_records WHERE lpn_key = ?", (key,))
            conn.execute("UPDATE orders SET inbound_at = NULL WHERE lpn_key = ?", (key,))

        tracking_number = row["tracking_number"]
        logger.info(f"Deleted inbound record for LPN {lpn} (tracking {tracking_number})")

        if self.on_record_deleted:
            self.on_record_deleted(tracking_number, row["lpn"])

        return tracking_number
