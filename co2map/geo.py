"""
Geographic assignment of records to Spanish autonomous communities.

The anchor table is fixed reference data.  ``GeoResolver`` receives it
explicitly so it can be exercised with any anchor set in isolation.

Distances are planar (Euclidean in degree space), not great-circle.  At
country scale this only matters near region borders, where switching metric
would change which anchor wins.
"""

from __future__ import annotations

import math
import unicodedata
from typing import Dict, NamedTuple, Optional, Sequence, Tuple

from .records import Coordinates, NormalizedRecord


class GeoAnchor(NamedTuple):
    name: str
    lat: float
    lng: float

    @property
    def coordinates(self) -> Coordinates:
        return (self.lat, self.lng)


class GeoKey(NamedTuple):
    key: str
    coordinates: Optional[Coordinates]
    region: str


# Declaration order is the tie-break order for nearest-anchor search
SPAIN_ANCHORS: Tuple[GeoAnchor, ...] = (
    GeoAnchor("Andalucía", 37.7749, -4.7324),
    GeoAnchor("Aragón", 41.5868, -0.8296),
    GeoAnchor("Asturias", 43.3619, -5.8494),
    GeoAnchor("Baleares", 39.6953, 3.0176),
    GeoAnchor("Canarias", 28.2916, -16.6291),
    GeoAnchor("Cantabria", 43.1828, -3.9878),
    GeoAnchor("Castilla-La Mancha", 39.5663, -2.9908),
    GeoAnchor("Castilla y León", 41.6523, -4.7245),
    GeoAnchor("Cataluña", 41.8019, 1.8734),
    GeoAnchor("Comunidad Valenciana", 39.4840, -0.7532),
    GeoAnchor("Extremadura", 39.1622, -6.3432),
    GeoAnchor("Galicia", 42.5751, -8.1339),
    GeoAnchor("Madrid", 40.4165, -3.7026),
    GeoAnchor("Murcia", 37.9922, -1.1307),
    GeoAnchor("Navarra", 42.6954, -1.6761),
    GeoAnchor("País Vasco", 43.2630, -2.9340),
    GeoAnchor("La Rioja", 42.2871, -2.5396),
)

# Records of national rather than regional granularity
NATIONAL_ANCHOR = GeoAnchor("España", 40.4637, -3.7492)


def planar_distance(a: Coordinates, b: Coordinates) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def name_key(name: str) -> str:
    """Case- and accent-insensitive lookup key for a region name."""
    decomposed = unicodedata.normalize("NFKD", name.strip().casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def coordinate_key(coordinates: Coordinates) -> str:
    return f"{coordinates[0]:.6f},{coordinates[1]:.6f}"


class GeoResolver:
    def __init__(
        self,
        anchors: Sequence[GeoAnchor] = SPAIN_ANCHORS,
        national: GeoAnchor = NATIONAL_ANCHOR,
    ):
        if not anchors:
            raise ValueError("GeoResolver needs at least one anchor")
        self.anchors: Tuple[GeoAnchor, ...] = tuple(anchors)
        self.national = national
        self._by_name: Dict[str, GeoAnchor] = {}
        for anchor in (*self.anchors, national):
            self._by_name.setdefault(name_key(anchor.name), anchor)

    def nearest(self, lat: float, lng: float) -> GeoAnchor:
        point = (lat, lng)
        best = self.anchors[0]
        best_dist = planar_distance(point, best.coordinates)
        for anchor in self.anchors[1:]:
            dist = planar_distance(point, anchor.coordinates)
            if dist < best_dist:
                best, best_dist = anchor, dist
        return best

    def anchor_for(self, name: str) -> Optional[GeoAnchor]:
        if not name:
            return None
        return self._by_name.get(name_key(name))

    def assign_region(self, record: NormalizedRecord) -> str:
        """Region name used by the batch path."""
        if record.coordinates is not None:
            return self.nearest(*record.coordinates).name
        if record.region:
            anchor = self.anchor_for(record.region)
            return anchor.name if anchor else record.region
        return self.national.name

    def resolve(self, record: NormalizedRecord) -> GeoKey:
        """Geographic key used by the runtime path."""
        if record.coordinates is not None:
            nearest = self.nearest(*record.coordinates)
            return GeoKey(coordinate_key(record.coordinates), record.coordinates, nearest.name)
        if record.region:
            anchor = self.anchor_for(record.region)
            if anchor is not None:
                return GeoKey(anchor.name, anchor.coordinates, anchor.name)
            return GeoKey(record.region, None, record.region)
        return GeoKey(self.national.name, self.national.coordinates, self.national.name)


DEFAULT_RESOLVER = GeoResolver()
