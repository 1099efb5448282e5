"""Unit tests for src/normalization.py."""

from normalization import keys_equal, normalize_key, unique_keys


class TestNormalizeKey:

    def test_trims_and_casefolds(self):
        assert normalize_key("  1Z999aa1 \n") == "1z999aa1"

    def test_none_is_blank(self):
        assert normalize_key(None) == ""

    def test_numeric_sku(self):
        assert normalize_key(12345) == "12345"

    def test_keys_equal_ignores_case_and_whitespace(self):
        assert keys_equal("SKU-A", " sku-a")
        assert not keys_equal("SKU-A", "SKU-B")


class TestUniqueKeys:

    def test_first_seen_display_form_kept(self):
        assert unique_keys(["SKU-A", "sku-a ", "SKU-B"]) == ["SKU-A", "SKU-B"]

    def test_blanks_dropped(self):
        assert unique_keys(["", None, "  ", "SKU-C"]) == ["SKU-C"]
