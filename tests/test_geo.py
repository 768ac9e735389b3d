import pytest

from co2map.geo import (
    NATIONAL_ANCHOR,
    SPAIN_ANCHORS,
    GeoAnchor,
    GeoResolver,
    coordinate_key,
    planar_distance,
)
from co2map.records import NormalizedRecord


def make_record(region="", coordinates=None):
    return NormalizedRecord(region=region, year=2022, sector="power", emissions=1.0, coordinates=coordinates)


def test_anchor_table_is_fixed():
    assert len(SPAIN_ANCHORS) == 17
    assert len({a.name for a in SPAIN_ANCHORS}) == 17
    assert NATIONAL_ANCHOR.name == "España"
    assert NATIONAL_ANCHOR not in SPAIN_ANCHORS


@pytest.mark.parametrize("anchor", SPAIN_ANCHORS, ids=lambda a: a.name)
def test_exact_centroid_resolves_to_its_anchor(anchor):
    assert GeoResolver().nearest(anchor.lat, anchor.lng) == anchor


def test_equidistant_point_goes_to_first_declared_anchor():
    a, b = GeoAnchor("A", 0.0, 0.0), GeoAnchor("B", 0.0, 2.0)
    assert GeoResolver([a, b]).nearest(0.0, 1.0) == a
    assert GeoResolver([b, a]).nearest(0.0, 1.0) == b


def test_distance_is_planar():
    assert planar_distance((0.0, 0.0), (3.0, 4.0)) == 5.0


def test_nearest_picks_closest_region():
    resolver = GeoResolver()
    assert resolver.nearest(40.45, -3.68).name == "Madrid"
    assert resolver.nearest(28.1, -15.4).name == "Canarias"
    assert resolver.nearest(41.39, 2.17).name == "Cataluña"


def test_assign_region_prefers_coordinates_then_name_then_national():
    resolver = GeoResolver()
    assert resolver.assign_region(make_record("Galicia", (40.42, -3.70))) == "Madrid"
    assert resolver.assign_region(make_record("pais vasco")) == "País Vasco"
    assert resolver.assign_region(make_record("Ceuta")) == "Ceuta"
    assert resolver.assign_region(make_record()) == "España"


def test_resolve_runtime_keys():
    resolver = GeoResolver()

    key = resolver.resolve(make_record("Madrid", (40.4, -3.7)))
    assert key.key == coordinate_key((40.4, -3.7)) == "40.400000,-3.700000"
    assert key.coordinates == (40.4, -3.7)
    assert key.region == "Madrid"

    # Points are labelled by their nearest anchor, whatever the row claims
    assert resolver.resolve(make_record("Galicia", (40.4, -3.7))).region == "Madrid"

    key = resolver.resolve(make_record("ARAGON"))
    assert key.key == "Aragón"
    assert key.coordinates == (41.5868, -0.8296)

    key = resolver.resolve(make_record("Ceuta"))
    assert key.key == "Ceuta"
    assert key.coordinates is None
    assert key.region == "Ceuta"

    key = resolver.resolve(make_record())
    assert key.key == "España"


def test_resolver_requires_anchors():
    with pytest.raises(ValueError):
        GeoResolver([])
