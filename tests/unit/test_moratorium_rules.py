"""
MORATORIUM RULES TESTS
"""
from datetime import date

import pytest

from domain.moratorium_rules import add_years, validate_moratorium_geometry, validate_moratorium_period
from exceptions import InvalidGeometry, InvalidMoratorium

from conftest import PRAGUE_POINT, PRAGUE_SQUARE


class TestAddYears:

    def test_regular_day(self):
        assert add_years(date(2024, 3, 15), 5) == date(2029, 3, 15)

    def test_leap_day_clamps_to_feb_28(self):
        assert add_years(date(2024, 2, 29), 5) == date(2029, 2, 28)

    def test_leap_day_kept_in_leap_year(self):
        assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


class TestValidityPeriod:

    def test_exactly_five_years_allowed(self):
        validate_moratorium_period(date(2024, 1, 1), date(2029, 1, 1))

    def test_single_day_allowed(self):
        validate_moratorium_period(date(2024, 1, 1), date(2024, 1, 1))

    def test_longer_than_five_years_rejected(self):
        with pytest.raises(InvalidMoratorium) as exc_info:
            validate_moratorium_period(date(2024, 1, 1), date(2029, 1, 2))
        assert exc_info.value.details == {"valid_from": "2024-01-01", "valid_to": "2029-01-02"}

    def test_leap_day_start_limit(self):
        validate_moratorium_period(date(2024, 2, 29), date(2029, 2, 28))
        with pytest.raises(InvalidMoratorium):
            validate_moratorium_period(date(2024, 2, 29), date(2029, 3, 1))

    def test_reversed_period_rejected(self):
        with pytest.raises(InvalidMoratorium):
            validate_moratorium_period(date(2024, 6, 1), date(2024, 5, 31))


class TestMoratoriumGeometry:

    def test_polygon_accepted(self):
        assert validate_moratorium_geometry(PRAGUE_SQUARE).type == "Polygon"

    def test_linestring_accepted(self):
        line = {"type": "LineString", "coordinates": [[14.43, 50.07], [14.44, 50.08]]}
        assert validate_moratorium_geometry(line).type == "LineString"

    def test_point_rejected(self):
        with pytest.raises(InvalidGeometry) as exc_info:
            validate_moratorium_geometry(PRAGUE_POINT)
        assert exc_info.value.details["geometry_type"] == "Point"
