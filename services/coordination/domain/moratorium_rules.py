"""
Moratorium Rules - pure domain validation
"""
import calendar
from datetime import date

from conflict_config import MORATORIUM_MAX_YEARS
from exceptions import InvalidGeometry, InvalidMoratorium
from geometry import Geometry, parse_geometry


def add_years(day: date, years: int) -> date:
    """Calendar-year shift; Feb 29 falls back to Feb 28."""
    target_year = day.year + years
    if day.month == 2 and day.day == 29 and not calendar.isleap(target_year):
        return day.replace(year=target_year, day=28)
    return day.replace(year=target_year)


def validate_moratorium_period(valid_from: date, valid_to: date) -> None:
    if valid_to < valid_from:
        raise InvalidMoratorium("valid_to precedes valid_from", valid_from.isoformat(), valid_to.isoformat())
    if valid_to > add_years(valid_from, MORATORIUM_MAX_YEARS):
        raise InvalidMoratorium(
            f"duration exceeds {MORATORIUM_MAX_YEARS} years",
            valid_from.isoformat(),
            valid_to.isoformat(),
        )


def validate_moratorium_geometry(payload) -> Geometry:
    """Moratoriums cover lines or areas; a point is not a valid restriction."""
    geometry = parse_geometry(payload)
    if geometry.type == "Point":
        raise InvalidGeometry("moratorium geometry must be a LineString or Polygon", geometry_type="Point")
    return geometry
