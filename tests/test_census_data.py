import pandas as pd
import geopandas as gpd
import pytest
import requests
from shapely.geometry import box

from polling_access import census_data
from polling_access.census_data import (
    fetch_census_attributes,
    load_census_units,
    request_census_json,
    tiger_url,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Answers Census API requests from canned tables keyed by the 'for' clause."""

    def __init__(self, tables, failures=0):
        self.tables = tables
        self.failures = failures
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        if self.failures > 0:
            self.failures -= 1
            raise requests.ConnectionError("connection reset")
        for_clause = params["for"]
        if for_clause == "block:*":
            county = params["in"][1].split(":")[1]
            return FakeResponse(self.tables[("block", county)])
        return FakeResponse(self.tables[for_clause])


TRACT_TABLE = [
    ["P1_001N", "P1_004N", "state", "county", "tract"],
    ["1200", "700", "45", "001", "950100"],
    ["800", "100", "45", "003", "020200"],
]


def test_tiger_url():
    assert tiger_url(2020, "45", "tract") == (
        "https://www2.census.gov/geo/tiger/TIGER2020/TRACT/tl_2020_45_tract.zip"
    )
    assert tiger_url(2020, "45", "block").endswith("TABBLOCK20/tl_2020_45_tabblock20.zip")
    assert tiger_url(2010, "45", "block").endswith("tl_2010_45_tabblock10.zip")
    with pytest.raises(ValueError, match="Unknown geography"):
        tiger_url(2020, "45", "county")


def test_fetch_tract_attributes_builds_geoid_and_numbers():
    session = FakeSession({"tract:*": TRACT_TABLE})
    df = fetch_census_attributes(2020, "45", "tract", ["P1_001N", "P1_004N"], "KEY",
                                 session=session, print_=False)

    assert list(df.columns) == ["GEOID", "P1_001N", "P1_004N"]
    assert list(df["GEOID"]) == ["45001950100", "45003020200"]
    assert df["P1_001N"].tolist() == [1200, 800]

    url, params = session.calls[0]
    assert url == "https://api.census.gov/data/2020/dec/pl"
    assert params["in"] == ["state:45"]
    assert params["key"] == "KEY"


def test_fetch_block_attributes_goes_county_by_county():
    tables = {
        "county:*": [["P1_001N", "P1_004N", "state", "county"],
                     ["10", "5", "45", "003"], ["20", "5", "45", "001"]],
        ("block", "001"): [["P1_001N", "P1_004N", "state", "county", "tract", "block"],
                           ["12", "6", "45", "001", "950100", "1001"]],
        ("block", "003"): [["P1_001N", "P1_004N", "state", "county", "tract", "block"],
                           ["8", "0", "45", "003", "020200", "2000"],
                           ["0", "0", "45", "003", "020200", "2001"]],
    }
    session = FakeSession(tables)
    df = fetch_census_attributes(2020, "45", "block", ["P1_001N", "P1_004N"],
                                 session=session, print_=False)

    assert len(df) == 3
    assert set(df["GEOID"]) == {"450019501001001", "450030202002000", "450030202002001"}
    block_calls = [p for _, p in session.calls if p["for"] == "block:*"]
    assert [p["in"] for p in block_calls] == [["state:45", "county:001"], ["state:45", "county:003"]]
    assert all("key" not in p for _, p in session.calls)


def test_request_retries_then_succeeds(monkeypatch):
    monkeypatch.setattr(census_data.time, "sleep", lambda s: None)
    session = FakeSession({"tract:*": TRACT_TABLE}, failures=2)
    rows = request_census_json("url", {"for": "tract:*"}, session=session, retries=3)
    assert rows == TRACT_TABLE
    assert len(session.calls) == 3


def test_request_gives_up_after_bounded_retries(monkeypatch):
    sleeps = []
    monkeypatch.setattr(census_data.time, "sleep", sleeps.append)
    session = FakeSession({"tract:*": TRACT_TABLE}, failures=10)
    with pytest.raises(requests.ConnectionError):
        request_census_json("url", {"for": "tract:*"}, session=session, retries=3, backoff=1.5)
    assert len(session.calls) == 3
    assert sleeps == [1.5, 3.0]


def test_load_census_units_merges_and_reprojects():
    geometry = gpd.GeoDataFrame(
        {"GEOID": ["45001950100", "45003020200", "45005000100"], "ALAND": [1, 2, 3]},
        geometry=[box(-82.0, 34.0, -81.99, 34.01), box(-81.5, 33.5, -81.49, 33.51),
                  box(-80.5, 33.0, -80.49, 33.01)],
        crs="EPSG:4269",
    )
    attributes = pd.DataFrame({
        "GEOID": ["45001950100", "45003020200"],
        "P1_001N": [1200, 800],
        "P1_004N": [700, 100],
    })

    units = load_census_units(
        2020, "45", "tract",
        crs="EPSG:32617",
        subgroup_var="P1_004N",
        total_var="P1_001N",
        geometry_source=geometry,
        attributes=attributes,
        print_=False,
    )

    assert units.crs.to_epsg() == 32617
    assert list(units.columns) == ["GEOID", "pop_black", "pop_total", "geometry"]
    assert units.set_index("GEOID").loc["45001950100", "pop_black"] == 700
    assert pd.isna(units.set_index("GEOID").loc["45005000100", "pop_total"])


def test_load_census_units_renames_block_geoid():
    geometry = gpd.GeoDataFrame(
        {"GEOID20": ["450019501001001"]},
        geometry=[box(-82.0, 34.0, -81.99, 34.01)],
        crs="EPSG:4269",
    )
    attributes = pd.DataFrame({"GEOID": ["450019501001001"], "P1_001N": [12], "P1_004N": [6]})
    units = load_census_units(
        2020, "45", "block", crs="EPSG:32617", subgroup_var="P1_004N", total_var="P1_001N",
        geometry_source=geometry, attributes=attributes, print_=False,
    )
    assert units.loc[0, "GEOID"] == "450019501001001"
    assert units.loc[0, "pop_total"] == 12


def test_load_census_units_reads_attribute_csv(tmp_path):
    path = tmp_path / "counts.csv"
    pd.DataFrame({"GEOID": ["45001950100"], "P1_001N": [1200], "P1_004N": [700]}).to_csv(path, index=False)
    geometry = gpd.GeoDataFrame(
        {"GEOID": ["45001950100"]}, geometry=[box(-82.0, 34.0, -81.99, 34.01)], crs="EPSG:4269"
    )
    units = load_census_units(
        2020, "45", "tract", crs="EPSG:32617", subgroup_var="P1_004N", total_var="P1_001N",
        geometry_source=geometry, attributes=str(path), print_=False,
    )
    assert units.loc[0, "pop_black"] == 700


def test_attribute_csv_keeps_leading_zero_geoids(tmp_path):
    path = tmp_path / "al_counts.csv"
    pd.DataFrame({"GEOID": ["01001020100"], "P1_001N": [1000], "P1_004N": [250]}).to_csv(path, index=False)
    geometry = gpd.GeoDataFrame(
        {"GEOID": ["01001020100"]}, geometry=[box(-86.5, 32.4, -86.49, 32.41)], crs="EPSG:4269"
    )
    units = load_census_units(
        2020, "01", "tract", crs="EPSG:32616", subgroup_var="P1_004N", total_var="P1_001N",
        geometry_source=geometry, attributes=str(path), print_=False,
    )
    assert units.loc[0, "GEOID"] == "01001020100"
    assert units.loc[0, "pop_total"] == 1000
    assert units.loc[0, "pop_black"] == 250
