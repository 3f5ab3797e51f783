"""
Test suite for payload repair rules
Each rule is a pure text rewrite tested with literal before/after strings
"""

import pytest
from erp_sync.payload_normalizer import (
    collapse_stray_close_brackets,
    fix_known_tokens,
    extract_array_body,
    strip_encoded_spaces,
    wrap_array,
    normalize_text,
    normalize_payload,
    PayloadFormatError,
)


class TestNormalizationRules:
    """Test suite for the individual repair rules"""

    def test_collapse_stray_close_brackets_blanks_double_close(self):
        """
        Test that a ']' ahead of the terminal '}]}' is blanked and the final one kept
        """
        # Arrange
        raw = '{"value":[{"Lines":[{"Qty":1}]}]}'

        # Act
        result = collapse_stray_close_brackets(raw)

        # Assert
        assert result == '{"value":[{"Lines":[{"Qty":1} }]}'

    def test_collapse_stray_close_brackets_leaves_wellformed_flat_page(self):
        raw = '{"value":[{"Id":1},{"Id":2}]}'
        assert collapse_stray_close_brackets(raw) == raw

    def test_fix_known_tokens_restores_city_name(self):
        # Act
        result = fix_known_tokens('{"City":"P[LAIN CITY"}')

        # Assert
        assert result == '{"City":"PLAIN CITY"}'

    def test_extract_array_body_uses_first_and_last_bracket(self):
        assert extract_array_body('{"odata":"x","value":[{"A":[1]},{"B":2}]}') == '{"A":[1]},{"B":2}'

    def test_extract_array_body_without_brackets_raises(self):
        with pytest.raises(PayloadFormatError):
            extract_array_body('{"error":"no data"}')

    def test_strip_encoded_spaces_removes_artifact(self):
        # Act
        result = strip_encoded_spaces('{"Item_x0020_No":"A1","Ship_x0020_To":"B"}')

        # Assert
        assert result == '{"ItemNo":"A1","ShipTo":"B"}'

    def test_wrap_array_adds_brackets(self):
        assert wrap_array(' {"A":1} ') == '[{"A":1}]'
        assert wrap_array('') == '[]'


class TestNormalizePayload:
    """Test suite for the full repair pipeline"""

    def test_typical_page_returns_records(self):
        # Arrange
        raw = '{"@odata.context":"https://erp/$metadata#Items","value":[{"No":"1","Item_x0020_Name":"Bolt"},{"No":"2","Item_x0020_Name":"Nut"}]}'

        # Act
        records = normalize_payload(raw)

        # Assert
        assert records == [
            {"No": "1", "ItemName": "Bolt"},
            {"No": "2", "ItemName": "Nut"},
        ]

    def test_empty_value_array_returns_empty_list(self):
        assert normalize_payload('{"@odata.context":"x","value":[]}') == []

    def test_corrupted_city_token_is_corrected(self):
        # Arrange
        raw = '{"value":[{"Customer":"C1","City":"P[LAIN CITY"}]}'

        # Act
        records = normalize_payload(raw)

        # Assert
        assert records == [{"Customer": "C1", "City": "PLAIN CITY"}]

    def test_normalize_text_applies_rules_in_order(self):
        raw = '{"value":[{"Ship_x0020_City":"P[LAIN CITY"}]}'
        assert normalize_text(raw) == '[{"ShipCity":"PLAIN CITY"}]'

    def test_unknown_malformation_raises_payload_format_error(self):
        """
        Test that breakage outside the known repairs is a parse failure, not coerced
        """
        with pytest.raises(PayloadFormatError):
            normalize_payload('{"value":[{"No":"1",,"Name":}]}')

    def test_payload_without_array_raises_payload_format_error(self):
        with pytest.raises(PayloadFormatError):
            normalize_payload('<html>Service Unavailable</html>')

    def test_array_of_scalars_raises_payload_format_error(self):
        with pytest.raises(PayloadFormatError):
            normalize_payload('{"value":[1,2,3]}')
