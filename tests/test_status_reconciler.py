"""
Unit tests for src/status_reconciler.py.

Deletion reconciliation: removing an InboundRecord from a completed
package reverts its 'inbound' lines to 'arrived' with a shortfall note.
The discrepancy report lists inbounded packages that came in short or over.
"""

from unittest.mock import MagicMock

import pytest

from exceptions import StoreUnavailableError
from models import InboundRecord, ShipmentStatus
from shipment_matcher import ShipmentMatcher
from status_reconciler import (QUANTITY_LESS, QUANTITY_MORE, REPORT_COLUMNS, StatusReconciler,
                               build_discrepancy_frame)


def _inbound(store, lpn, sku, line_id, tracking="TRK1"):
    store.create_inbound_record(InboundRecord(
        lpn=lpn, shipment_line_id=line_id, tracking_number=tracking, sku=sku, grade="A"))


@pytest.fixture
def reconciler(store):
    return StatusReconciler(store)


class TestApplyGroupStatus:

    def test_sets_status_and_note_on_every_line(self, reconciler, store):
        group = ShipmentMatcher(store).find_group("TRK1")

        updated = reconciler.apply_group_status(group, ShipmentStatus.INBOUND, "note")

        assert updated == ["L1", "L2"]
        for line_id in updated:
            line = store.get_shipment_line(line_id)
            assert line.status == ShipmentStatus.INBOUND
            assert line.note == "note"

    def test_store_failure_propagates(self):
        mock_store = MagicMock()
        mock_store.update_shipment_line_status.side_effect = StoreUnavailableError("offline")
        group = MagicMock(lines=[MagicMock(id="L1")], tracking_number="TRK1")

        with pytest.raises(StoreUnavailableError):
            StatusReconciler(mock_store, MagicMock()).apply_group_status(group, ShipmentStatus.INBOUND)


class TestReconcileAfterDeletion:

    @pytest.fixture
    def completed(self, store, reconciler):
        for lpn in ("LPN-A1", "LPN-A2", "LPN-A3"):
            _inbound(store, lpn, "SKU-A", "L1")
        for lpn in ("LPN-B1", "LPN-B2"):
            _inbound(store, lpn, "SKU-B", "L2")
        reconciler.apply_group_status(ShipmentMatcher(store).find_group("TRK1"), ShipmentStatus.INBOUND)
        return store

    def test_deletion_reverts_to_arrived(self, completed, reconciler):
        completed.delete_inbound_record("LPN-A2")

        reverted = reconciler.reconcile_after_deletion("TRK1")

        assert reverted == ["L1", "L2"]
        line = completed.get_shipment_line("L1")
        assert line.status == ShipmentStatus.ARRIVED
        assert line.note == "Inbound record deleted: actual 4, declared 5, shortfall 1"

    def test_store_callback_triggers_reconciliation(self, completed, reconciler):
        completed.on_record_deleted = lambda tracking, lpn: reconciler.reconcile_after_deletion(tracking)

        assert completed.delete_inbound_record("LPN-B1") == "TRK1"
        assert completed.get_shipment_line("L2").status == ShipmentStatus.ARRIVED

    def test_nothing_reverted_when_still_complete(self, completed, reconciler):
        _inbound(completed, "LPN-A4", "SKU-A", "L1")
        completed.delete_inbound_record("LPN-A4")

        assert reconciler.reconcile_after_deletion("TRK1") == []
        assert completed.get_shipment_line("L1").status == ShipmentStatus.INBOUND

    def test_lines_not_inbound_left_alone(self, store, reconciler):
        _inbound(store, "LPN-A1", "SKU-A", "L1")
        store.delete_inbound_record("LPN-A1")

        assert reconciler.reconcile_after_deletion("TRK1") == []
        assert store.get_shipment_line("L1").status == ShipmentStatus.SHIPPING

    def test_unknown_tracking(self, reconciler):
        assert reconciler.reconcile_after_deletion("NOPE") == []


class TestDiscrepancyReport:

    def _close(self, store, reconciler, tracking):
        reconciler.apply_group_status(ShipmentMatcher(store).find_group(tracking), ShipmentStatus.INBOUND)

    def test_short_package_reported(self, store, reconciler):
        for lpn in ("LPN-A1", "LPN-A2", "LPN-A3"):
            _inbound(store, lpn, "SKU-A", "L1")
        _inbound(store, "LPN-B1", "SKU-B", "L2")
        self._close(store, reconciler, "TRK1")

        report = reconciler.discrepancy_report()

        assert list(report.columns) == REPORT_COLUMNS
        assert report['tracking_number'].tolist() == ["TRK1"]
        row = report.iloc[0]
        assert row['discrepancy_type'] == QUANTITY_LESS
        assert row['declared'] == 5
        assert row['actual'] == 4
        assert row['difference'] == 1
        assert row['description'] == "Actual inbound 4, declared 5, short 1"

    def test_over_delivered_package_reported(self, store, reconciler):
        _inbound(store, "LPN-D1", "SKU-D", "L3", tracking="TRK2")
        _inbound(store, "LPN-X1", "SKU-D", "L3", tracking="TRK2")
        self._close(store, reconciler, "TRK2")

        row = reconciler.discrepancy_report().iloc[0]

        assert row['tracking_number'] == "TRK2"
        assert row['carrier'] == "FedEx"
        assert row['discrepancy_type'] == QUANTITY_MORE
        assert row['difference'] == 1
        assert row['description'] == "Actual inbound 2, declared 1, over 1"

    def test_matching_package_not_reported(self, store, reconciler):
        for lpn in ("LPN-A1", "LPN-A2", "LPN-A3"):
            _inbound(store, lpn, "SKU-A", "L1")
        for lpn in ("LPN-B1", "LPN-B2"):
            _inbound(store, lpn, "SKU-B", "L2")
        self._close(store, reconciler, "TRK1")

        assert reconciler.discrepancy_report().empty

    def test_packages_not_inbounded_ignored(self, store, reconciler):
        _inbound(store, "LPN-A1", "SKU-A", "L1")

        assert reconciler.discrepancy_report().empty

    def test_newest_first(self, store, reconciler, clock):
        store.clock = clock
        _inbound(store, "LPN-A1", "SKU-A", "L1")
        self._close(store, reconciler, "TRK1")
        clock.advance(hours=1)
        self._close(store, reconciler, "TRK2")

        report = reconciler.discrepancy_report()

        assert report['tracking_number'].tolist() == ["TRK2", "TRK1"]
        assert report['discrepancy_type'].tolist() == [QUANTITY_LESS, QUANTITY_LESS]

    def test_frame_without_lines(self):
        report = build_discrepancy_frame([], {})

        assert report.empty
        assert list(report.columns) == REPORT_COLUMNS
