"""
Test suite for filter criteria placeholder substitution
"""

import pytest
from datetime import datetime
from erp_sync.filter_criteria import update_criteria, order_date, post_date

# Monday
MORNING = datetime(2024, 5, 6, 9, 30)
AFTERNOON = datetime(2024, 5, 6, 13, 0)


class TestUpdateCriteria:
    """Test suite for business date placeholder substitution"""

    @pytest.mark.parametrize("template", ["N", "", None])
    def test_no_filter_templates_collapse_to_empty_string(self, template):
        assert update_criteria(template, 3, MORNING) == ""

    def test_ship_and_end_dates_use_day_offset(self):
        """
        Test that SHIPDATE is today plus offset and ENDDATE a week after that
        """
        # Arrange
        template = "&$filter=ShipDate ge SHIPDATE and ShipDate le ENDDATE"

        # Act
        result = update_criteria(template, 2, MORNING)

        # Assert
        assert result == "&$filter=ShipDate ge 2024-05-08 and ShipDate le 2024-05-15"

    def test_day_of_week_uses_offset_date(self):
        # Act
        result = update_criteria("&$filter=RouteDay eq 'xxxdowxxx'", 1, MORNING)

        # Assert
        assert result == "&$filter=RouteDay eq 'Tuesday'"

    def test_day_of_week_is_english_weekday_name(self):
        assert update_criteria("xxxdowxxx", 5, MORNING) == "Saturday"

    def test_order_date_rolls_to_tomorrow_from_13_00(self):
        # Act
        before = update_criteria("xxxorderdatexxx", 0, MORNING)
        after = update_criteria("xxxorderdatexxx", 0, AFTERNOON)

        # Assert
        assert before == "2024-05-06"
        assert after == "2024-05-07"

    def test_post_date_is_eight_days_ago(self):
        assert update_criteria("xxxpostdatexxx", 10, MORNING) == "2024-04-28"

    def test_template_without_placeholders_is_unchanged(self):
        assert update_criteria("&$filter=Active eq true", 0, MORNING) == "&$filter=Active eq true"

    def test_helpers_ignore_day_offset(self):
        assert order_date(datetime(2024, 12, 31, 18, 0)).isoformat() == "2025-01-01"
        assert post_date(datetime(2024, 3, 5, 8, 0)).isoformat() == "2024-02-26"
