"""
Geometry & Date Primitives

- Closed tagged union of GeoJSON geometries (Point, LineString, Polygon)
  in WGS84, validated at the boundary
- Inclusive date interval with overlap test
- Metric predicates (distance / buffer) computed in a local azimuthal
  equidistant projection centred on the query geometry
"""
import math
from datetime import date
from typing import Annotated, List, Literal, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pyproj import CRS, Transformer
import shapely
from shapely.geometry import shape as to_shape, mapping
from shapely.geometry.base import BaseGeometry

from exceptions import InvalidGeometry, InvalidDateRange

Position = Tuple[float, float]

# Smallest ground length of one degree of latitude (at the equator)
_METERS_PER_DEGREE_LAT = 110_574.0
_METERS_PER_DEGREE_LON_EQUATOR = 111_320.0


def _check_position(position: Position) -> Position:
    lon, lat = position
    if not (math.isfinite(lon) and math.isfinite(lat)):
        raise ValueError("coordinates must be finite numbers")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"longitude out of range: {lon}")
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"latitude out of range: {lat}")
    return position


# =============================================================================
# Geometry tagged union
# =============================================================================

class PointGeometry(BaseModel):
    type: Literal["Point"]
    coordinates: Position

    class Config:
        frozen = True

    @field_validator("coordinates")
    @classmethod
    def _valid_position(cls, value):
        return _check_position(value)


class LineStringGeometry(BaseModel):
    type: Literal["LineString"]
    coordinates: List[Position] = Field(..., min_length=2)

    class Config:
        frozen = True

    @field_validator("coordinates")
    @classmethod
    def _valid_positions(cls, value):
        for position in value:
            _check_position(position)
        if len(set(value)) < 2:
            raise ValueError("line needs at least two distinct positions")
        return value


class PolygonGeometry(BaseModel):
    type: Literal["Polygon"]
    coordinates: List[List[Position]] = Field(..., min_length=1)

    class Config:
        frozen = True

    @field_validator("coordinates")
    @classmethod
    def _valid_rings(cls, value):
        for ring in value:
            if len(ring) < 4:
                raise ValueError("linear ring needs at least four positions")
            if tuple(ring[0]) != tuple(ring[-1]):
                raise ValueError("linear ring must be closed")
            for position in ring:
                _check_position(position)
        return value


Geometry = Annotated[
    Union[PointGeometry, LineStringGeometry, PolygonGeometry],
    Field(discriminator="type"),
]

_geometry_adapter = TypeAdapter(Geometry)


def parse_geometry(payload) -> Geometry:
    """
    Validate a GeoJSON geometry payload.

    Unknown tags, malformed coordinates and topologically invalid
    shapes are rejected with InvalidGeometry.
    """
    if isinstance(payload, (PointGeometry, LineStringGeometry, PolygonGeometry)):
        geometry = payload
    else:
        if not isinstance(payload, dict):
            raise InvalidGeometry("geometry must be a GeoJSON object")
        try:
            geometry = _geometry_adapter.validate_python(payload)
        except ValidationError as e:
            raise InvalidGeometry(
                "; ".join(err["msg"] for err in e.errors()),
                geometry_type=payload.get("type"),
            ) from e

    shape = to_shapely(geometry)
    if shape.is_empty:
        raise InvalidGeometry("geometry is empty", geometry_type=geometry.type)
    if not shape.is_valid:
        raise InvalidGeometry("geometry is not topologically valid", geometry_type=geometry.type)
    return geometry


def to_shapely(geometry: Geometry) -> BaseGeometry:
    return to_shape(geometry.model_dump())


def to_geojson(geometry: Geometry) -> dict:
    """Plain dict for JSON storage."""
    data = geometry.model_dump()
    if data["type"] == "Point":
        data["coordinates"] = list(data["coordinates"])
    elif data["type"] == "LineString":
        data["coordinates"] = [list(p) for p in data["coordinates"]]
    else:
        data["coordinates"] = [[list(p) for p in ring] for ring in data["coordinates"]]
    return data


def geometry_bounds(geometry: Geometry) -> Tuple[float, float, float, float]:
    """(min_lon, min_lat, max_lon, max_lat)"""
    return to_shapely(geometry).bounds


def expand_bounds(bounds, meters: float) -> Tuple[float, float, float, float]:
    """
    Grow a lon/lat bounding box by at least `meters` on every side.

    Used as a coarse SQL prefilter; the exact predicate runs afterwards.
    """
    min_lon, min_lat, max_lon, max_lat = bounds
    dlat = meters / _METERS_PER_DEGREE_LAT * 1.1
    widest_lat = min(max(abs(min_lat), abs(max_lat)) + dlat, 89.9)
    dlon = meters / (_METERS_PER_DEGREE_LON_EQUATOR * max(math.cos(math.radians(widest_lat)), 0.001)) * 1.1
    return (
        max(min_lon - dlon, -180.0),
        max(min_lat - dlat, -90.0),
        min(max_lon + dlon, 180.0),
        min(max_lat + dlat, 90.0),
    )


# =============================================================================
# Metric predicates
# =============================================================================

def _metric_transformer(anchor: BaseGeometry) -> Transformer:
    centre = anchor.centroid
    crs = CRS.from_proj4(
        f"+proj=aeqd +lat_0={centre.y} +lon_0={centre.x} +datum=WGS84 +units=m +no_defs"
    )
    return Transformer.from_crs("EPSG:4326", crs, always_xy=True)


def _project(shape: BaseGeometry, transformer: Transformer) -> BaseGeometry:
    return shapely.transform(shape, transformer.transform, interleaved=False)


def distance_meters(a: BaseGeometry, b: BaseGeometry) -> float:
    """Ground distance between two lon/lat shapes, 0 when they touch."""
    transformer = _metric_transformer(a)
    return _project(a, transformer).distance(_project(b, transformer))


def within_distance(a: BaseGeometry, b: BaseGeometry, meters: float) -> bool:
    """Inclusive: shapes exactly `meters` apart are within distance."""
    if a.intersects(b):
        return True
    return distance_meters(a, b) <= meters


def buffer_geometry(geometry: Geometry, meters: float) -> dict:
    """Buffered outline of a geometry as a GeoJSON Polygon in lon/lat."""
    shape = to_shapely(geometry)
    transformer = _metric_transformer(shape)
    inverse = Transformer.from_crs(transformer.target_crs, "EPSG:4326", always_xy=True)
    buffered = _project(shape, transformer).buffer(meters)
    return mapping(_project(buffered, inverse))


# =============================================================================
# Date interval
# =============================================================================

class DateInterval(BaseModel):
    """Closed interval [start, end], both days inclusive."""
    start: date
    end: date

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise InvalidDateRange(self.start.isoformat(), self.end.isoformat())
        return self

    def overlaps(self, other: "DateInterval") -> bool:
        return overlaps(self, other)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def overlaps(a: DateInterval, b: DateInterval) -> bool:
    """Inclusive overlap: touching intervals overlap, adjacent ones do not."""
    return a.start <= b.end and b.start <= a.end
