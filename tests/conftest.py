"""
Pytest configuration file for Returns Intake tests.

Sets up the Python path so tests can import the flat modules under 'src',
points config.ini at a throwaway file (logs go to a temp directory), and
provides a seeded SQLite store plus a ready ScanSession.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

# Add src directory to sys.path (for src modules)
src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

# Keep test logs out of the user's home directory
_test_home = Path(tempfile.mkdtemp(prefix="returns_intake_tests_"))
_test_config = _test_home / "config.ini"
_test_config.write_text(
    "[Logging]\n"
    f"LogDir = {_test_home / 'logs'}\n"
    "LogLevel = DEBUG\n",
    encoding="utf-8",
)
os.environ["RETURNS_INTAKE_CONFIG"] = str(_test_config)

from models import OrderRecord, ShipmentLine  # noqa: E402
from scan_session import ScanSession  # noqa: E402
from settings import IntakeSettings  # noqa: E402
from sqlite_store import SQLiteInboundStore  # noqa: E402


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def seed_lines():
    """
    TRK1 declares SKU-A x3 + SKU-B x2 (total 5); TRK2 declares SKU-D x1.
    """
    return [
        ShipmentLine(id="L1", tracking_number="TRK1", order_id="RO-1", sku="SKU-A", quantity=3,
                     fnsku="X00A", declared_name="Widget A", carrier="UPS"),
        ShipmentLine(id="L2", tracking_number="TRK1", order_id="RO-1", sku="SKU-B", quantity=2,
                     fnsku="X00B", declared_name="Widget B", carrier="UPS"),
        ShipmentLine(id="L3", tracking_number="TRK2", order_id="RO-2", sku="SKU-D", quantity=1,
                     fnsku="X00D", declared_name="Widget D", carrier="FedEx"),
    ]


def seed_orders():
    orders = []
    for i in range(1, 5):
        orders.append(OrderRecord(id=f"O-A{i}", lpn=f"LPN-A{i}", sku="SKU-A", product_name="Widget A"))
    for i in range(1, 4):
        orders.append(OrderRecord(id=f"O-B{i}", lpn=f"LPN-B{i}", sku="SKU-B", product_name="Widget B"))
    orders.append(OrderRecord(id="O-C1", lpn="LPN-C1", sku="SKU-C", product_name="Widget C"))
    orders.append(OrderRecord(id="O-N1", lpn="LPN-N1", sku=None, product_name="Unlabelled"))
    orders.append(OrderRecord(id="O-D1", lpn="LPN-D1", sku="SKU-D", product_name="Widget D"))
    return orders


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """SQLite store seeded with TRK1/TRK2 lines, orders and a parts checklist."""
    s = SQLiteInboundStore(tmp_path / "intake.db")
    s.add_shipment_lines(seed_lines())
    s.add_orders(seed_orders())
    s.set_product_parts("SKU-A", ["Charger", "Manual"])
    s.set_product_parts("SKU-C", ["Remote"])
    return s


@pytest.fixture
def settings(tmp_path):
    return IntakeSettings(
        state_dir=tmp_path / "state",
        device_id="DOCK-TEST",
        database_path=tmp_path / "intake.db",
    )


@pytest.fixture
def session(store, settings, clock):
    return ScanSession(store, settings=settings, operator_id="op-1", clock=clock)


def scan_and_commit(session, lpn, grade="A", **kwargs):
    """Scan an LPN and commit it. Returns the commit_pending() result."""
    result, status = session.scan_lpn(lpn)
    assert status == "LPN_PENDING", (lpn, status)
    return session.commit_pending(grade, **kwargs)
