"""Unit tests for src/force_completion.py."""

from force_completion import compute_discrepancy


class TestComputeDiscrepancy:

    def test_shortfall(self):
        result = compute_discrepancy(declared=5, actual=3)

        assert result.discrepancy == 2
        assert result.inconsistent is False
        assert result.audit_note == "Force-completed inbound: actual 3, declared 5, discrepancy 2"

    def test_exact_count_has_zero_discrepancy(self):
        result = compute_discrepancy(declared=5, actual=5)
        assert result.discrepancy == 0
        assert result.inconsistent is False

    def test_negative_difference_clamped_and_flagged(self):
        result = compute_discrepancy(declared=5, actual=7)

        assert result.discrepancy == 0
        assert result.inconsistent is True
        assert result.surplus == 2
        assert "inconsistency: actual exceeds declared by 2" in result.audit_note
        assert "discrepancy -" not in result.audit_note
