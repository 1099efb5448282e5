"""
Unit tests for src/shipment_matcher.py.

Tests cover:
- Grouping of multi-line tracking numbers
- Case/whitespace-insensitive matching
- NOT_FOUND and ALREADY_COMPLETE outcomes against live counts
"""

from unittest.mock import MagicMock

from models import InboundRecord, ShipmentLine
from shipment_matcher import ALREADY_COMPLETE, MATCHED, NOT_FOUND, MatchResult, ShipmentMatcher


def _record(lpn, tracking="TRK1", sku="SKU-A", line_id="L1"):
    return InboundRecord(lpn=lpn, shipment_line_id=line_id, tracking_number=tracking, sku=sku, grade="A")


class TestShipmentMatcher:

    def test_groups_all_lines_of_tracking_number(self, store):
        result = ShipmentMatcher(store).match("TRK1")

        assert result.status == MATCHED
        assert result.group.line_ids == ["L1", "L2"]
        assert result.group.declared_total_quantity == 5
        assert result.group.carrier == "UPS"
        assert result.inbounded_count == 0
        assert result.remaining == 5

    def test_match_is_case_and_whitespace_insensitive(self, store):
        result = ShipmentMatcher(store).match("  trk1\n")

        assert result.status == MATCHED
        # Display form comes from the declared line
        assert result.group.tracking_number == "TRK1"

    def test_unknown_tracking_not_found(self, store):
        result = ShipmentMatcher(store).match("NOPE")

        assert result.status == NOT_FOUND
        assert result.group is None
        assert result.remaining == 0

    def test_blank_input_skips_store(self):
        mock_store = MagicMock()
        result = ShipmentMatcher(mock_store).match("   ")

        assert result.status == NOT_FOUND
        mock_store.find_shipment_lines.assert_not_called()

    def test_already_complete_when_count_reaches_declared(self, store):
        store.create_inbound_record(_record("LPN-D1", tracking="TRK2", sku="SKU-D", line_id="L3"))

        result = ShipmentMatcher(store).match("TRK2")

        assert result.status == ALREADY_COMPLETE
        assert result.inbounded_count == 1

    def test_partial_progress_still_matched(self, store):
        store.create_inbound_record(_record("LPN-A1"))
        store.create_inbound_record(_record("LPN-A2"))

        result = ShipmentMatcher(store).match("TRK1")

        assert result.status == MATCHED
        assert result.inbounded_count == 2
        assert result.remaining == 3

    def test_loose_store_results_are_filtered(self):
        mock_store = MagicMock()
        mock_store.find_shipment_lines.return_value = [
            ShipmentLine(id="L1", tracking_number="TRK1", order_id="O", sku="SKU-A", quantity=1),
            ShipmentLine(id="L9", tracking_number="TRK10", order_id="O", sku="SKU-Z", quantity=4),
        ]
        mock_store.count_inbounded_by_tracking.return_value = 0

        result = ShipmentMatcher(mock_store).match("TRK1")

        assert result.group.line_ids == ["L1"]

    def test_remaining_never_negative(self, store):
        group = ShipmentMatcher(store).find_group("TRK2")
        assert MatchResult(status=ALREADY_COMPLETE, group=group, inbounded_count=3).remaining == 0
