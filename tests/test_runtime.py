import asyncio
import time

import pytest

from co2map import runtime
from co2map.encode import EncodingRange
from co2map.errors import EmptyResultError, SourceFetchError
from co2map.records import NormalizedRecord
from co2map.runtime import (
    DatasetSession,
    FilterSelection,
    build_render_payload,
    discover_metrics,
    fetch_dataset_bytes,
    filter_options,
    humanize_label,
)

CSV = (
    "region,year,sector,emissions,lat,lng,population\n"
    "Madrid,2022,power:electricity-generation,100,40.4,-3.7,10\n"
    "Madrid,2022,transportation:road,50,40.4,-3.7,5\n"
    "Galicia,2021,power:electricity-generation,30,,,2\n"
    "Murcia,2022,manufacturing:cement,0,,,1\n"
)


def rec(region, year, sector, emissions, coordinates=None, **extra):
    return NormalizedRecord(region, year, sector, emissions, coordinates, extra)


RECORDS = [
    rec("Madrid", 2022, "power:electricity-generation", 100.0, (40.4, -3.7), population=10.0),
    rec("Madrid", 2022, "transportation:road", 50.0, (40.4, -3.7), population=5.0),
    rec("Galicia", 2021, "power:electricity-generation", 30.0, population=2.0, note="coastal"),
    rec("Murcia", 2022, "manufacturing:cement", 0.0),
]


def test_humanize_label():
    assert humanize_label("power:electricity-generation") == "Power - Electricity Generation"
    assert humanize_label("fossil_fuel_operations") == "Fossil Fuel Operations"
    assert humanize_label("") == ""


def test_filter_selection_matches():
    assert FilterSelection(region="Madrid").matches(RECORDS[0])
    assert not FilterSelection(region="Galicia").matches(RECORDS[0])
    assert FilterSelection(year=2021).matches(RECORDS[2])
    assert FilterSelection(category="power").matches(RECORDS[2])
    assert not FilterSelection(category="power").matches(RECORDS[1])
    assert FilterSelection(sector="transportation:road").matches(RECORDS[1])
    assert FilterSelection(region="<b>Madrid</b>").matches(RECORDS[0])


def test_filter_options():
    options = filter_options(RECORDS)
    assert options.regions == ["Galicia", "Madrid", "Murcia"]
    assert options.years == [2021, 2022]
    assert options.categories == ["manufacturing", "power", "transportation"]
    assert "transportation:road" in options.sectors
    assert options.labels["manufacturing:cement"] == "Manufacturing - Cement"

    assert filter_options(RECORDS, category="power").sectors == ["power:electricity-generation"]


def test_discover_metrics():
    assert discover_metrics(RECORDS) == ["emissions", "population"]


def test_render_payload_merges_by_position():
    payload = build_render_payload(RECORDS, FilterSelection())
    keys = [m.key for m in payload.markers]
    assert keys == sorted(keys)
    assert len(payload.markers) == 3
    madrid = next(m for m in payload.markers if m.key == "40.400000,-3.700000")
    assert madrid.metrics == {"emissions": 150.0}
    assert madrid.count == 2
    assert madrid.bucket == "high"
    assert payload.totals == {"emissions": 180.0}
    assert payload.record_count == 4

    galicia = next(m for m in payload.markers if m.key == "Galicia")
    assert galicia.coordinates == (42.5751, -8.1339)


def test_render_payload_with_filters_and_extra_metric():
    payload = build_render_payload(RECORDS, FilterSelection(year=2022, metrics=["population", "emissions"]))
    assert payload.record_count == 3
    assert payload.ranges["population"] == EncodingRange("population", 15.0, 15.0)
    madrid = next(m for m in payload.markers if m.key.startswith("40.4"))
    assert madrid.metrics == {"population": 15.0, "emissions": 150.0}


def test_render_payload_with_no_matches_is_empty():
    payload = build_render_payload(RECORDS, FilterSelection(region="Canarias"))
    assert payload.markers == []
    assert payload.totals == {"emissions": 0.0}


def test_fetch_dataset_bytes_reads_local_path(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text(CSV, encoding="utf-8")
    assert fetch_dataset_bytes(str(path)) == CSV.encode("utf-8")
    with pytest.raises(SourceFetchError):
        fetch_dataset_bytes(str(tmp_path / "missing.csv"))


def test_session_loads_upload_and_renders():
    session = DatasetSession()
    assert not session.loaded
    result = session.load_bytes(CSV.encode("utf-8"), source="upload.csv")
    assert session.loaded
    assert len(result.records) == 4
    assert session.source == "upload.csv"
    assert len(session.render(FilterSelection(region="Madrid")).markers) == 1


def test_failed_load_keeps_previous_dataset():
    session = DatasetSession()
    session.load_bytes(CSV.encode("utf-8"))
    with pytest.raises(EmptyResultError):
        session.load_bytes(b"region,year,sector,emissions\nMadrid,1800,power,1\n")
    assert len(session.records) == 4


def test_session_load_url_from_path(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text(CSV, encoding="utf-8")
    session = DatasetSession()
    result = asyncio.run(session.load_url(str(path)))
    assert len(result.records) == 4
    assert session.source == str(path)


def test_newer_load_supersedes_pending_one(monkeypatch):
    payloads = {
        "slow": b"region,year,sector,emissions\nGalicia,2021,power,1\n",
        "fast": b"region,year,sector,emissions\nMadrid,2022,power,2\n",
    }

    def fake_fetch(source, timeout=30):
        if source == "slow":
            time.sleep(0.2)
        return payloads[source]

    monkeypatch.setattr(runtime, "fetch_dataset_bytes", fake_fetch)

    async def scenario():
        session = DatasetSession()
        first = asyncio.ensure_future(session.load_url("slow"))
        await asyncio.sleep(0.05)
        await session.load_url("fast")
        with pytest.raises(SourceFetchError) as exc:
            await first
        assert exc.value.retryable is False
        # The abandoned worker thread finishes later and must not commit
        await asyncio.sleep(0.3)
        return session

    session = asyncio.run(scenario())
    assert session.source == "fast"
    assert [r.region for r in session.records] == ["Madrid"]
