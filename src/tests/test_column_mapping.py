"""
Test suite for ColumnMapping component
Following AAA pattern and descriptive naming
"""

import pytest
from erp_sync.column_mapping import ColumnMapping, ColumnRule, MappingError, quote_identifier


class TestColumnMapping:
    """Test suite for validated column mappings and insert building"""

    def test_from_rows_keeps_rule_order(self):
        # Act
        mapping = ColumnMapping.from_rows("HFS_ITEMS", [("ITEM_NO", "No"), ("DESCRIPTION", "Description")])

        # Assert
        assert mapping.columns == ["ITEM_NO", "DESCRIPTION"]
        assert mapping.rules[1] == ColumnRule("DESCRIPTION", "Description")

    def test_from_rows_with_no_rows_raises_mapping_error(self):
        """
        Test that an empty rule set is rejected before any SQL is built
        """
        with pytest.raises(MappingError) as exc_info:
            ColumnMapping.from_rows("HFS_ITEMS", [])

        assert "no mappings for HFS_ITEMS" in str(exc_info.value)

    @pytest.mark.parametrize("column", ["ITEM NO", "ITEM;DROP", '"X"', "1ST", ""])
    def test_invalid_column_names_are_rejected(self, column):
        with pytest.raises(MappingError):
            ColumnRule(column, "No")

    @pytest.mark.parametrize("path", ["Address.City", "Lines[0].Qty", "No", "a_b.c_d[12]"])
    def test_member_paths_are_accepted(self, path):
        assert ColumnRule("COL", path).json_path == path

    @pytest.mark.parametrize("path", ["$.No", "No'); DROP TABLE x; --", "a..b", "", "a[x]"])
    def test_unsafe_or_malformed_paths_are_rejected(self, path):
        with pytest.raises(MappingError):
            ColumnRule("COL", path)

    def test_duplicate_columns_are_rejected_case_insensitively(self):
        with pytest.raises(MappingError) as exc_info:
            ColumnMapping.from_rows("HFS_ITEMS", [("ITEM_NO", "No"), ("item_no", "Number")])

        assert "ITEM_NO" in str(exc_info.value)

    def test_invalid_table_name_is_rejected(self):
        with pytest.raises(MappingError):
            ColumnMapping.from_rows("HFS ITEMS", [("ITEM_NO", "No")])

    def test_build_insert_sql_projects_each_column_from_json(self):
        # Arrange
        mapping = ColumnMapping.from_rows("HFS_ITEMS", [("ITEM_NO", "No"), ("CITY", "Address.City")])

        # Act
        sql = mapping.build_insert_sql()

        # Assert
        assert sql.startswith('INSERT INTO "HFS_ITEMS" ("ITEM_NO", "CITY")')
        assert "json_extract_string(record, '$.No')" in sql
        assert "json_extract_string(record, '$.Address.City')" in sql
        assert sql.count("?") == 1

    def test_quote_identifier_wraps_valid_name(self):
        assert quote_identifier("DSD_API_LIST") == '"DSD_API_LIST"'
