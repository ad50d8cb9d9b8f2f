import os
import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from shapely.geometry import box

from polling_access import run_of_show
from polling_access.run_of_show import run_analysis


@pytest.fixture
def tract_geometry():
    geoms, geoids = [], []
    for i in range(8):
        for j in range(5):
            x, y = -81.1 + i * 0.02, 33.9 + j * 0.02
            geoms.append(box(x, y, x + 0.02, y + 0.02))
            geoids.append(f"45079{i:03d}{j:03d}")
    return gpd.GeoDataFrame({"GEOID": geoids}, geometry=geoms, crs="EPSG:4269")


@pytest.fixture
def tract_attributes(tract_geometry):
    rng = np.random.default_rng(5)
    n = len(tract_geometry)
    total = rng.integers(200, 6000, n)
    share = rng.uniform(0.02, 0.98, n)
    return pd.DataFrame({
        "GEOID": tract_geometry["GEOID"],
        "P1_001N": total,
        "P1_004N": np.floor(total * share).astype(int),
    })


@pytest.fixture
def places_frame():
    rng = np.random.default_rng(9)
    return pd.DataFrame({
        "longitude": rng.uniform(-81.1, -80.94, 15),
        "latitude": rng.uniform(33.9, 34.0, 15),
    })


def test_run_analysis_writes_every_artifact(tmp_path, tract_geometry, tract_attributes, places_frame):
    artifacts = run_analysis(
        "tract",
        polling_places_path=places_frame,
        output_dir=str(tmp_path),
        geometry_source=tract_geometry,
        attributes=tract_attributes,
        print_=False,
    )

    units = artifacts["units"]
    assert len(units) == 40
    assert units.crs.to_epsg() == 32617
    assert (units["nearest_distance"] <= units["five_nearest_mean"] + 1e-9).all()

    deciles = artifacts["decile_results"]
    assert list(deciles["decile"]) == list(range(1, 11))

    assert os.path.exists(tmp_path / "units_with_distances__tract.pkl")
    assert os.path.exists(artifacts["results_path"])
    with open(artifacts["report_path"], "rb") as f:
        assert f.read(4) == b"%PDF"

    assert set(artifacts["coefficients"]["model"]) == {"standardized", "raw_outcome"}


def test_second_run_reads_distance_cache(tmp_path, tract_geometry, tract_attributes, places_frame):
    first = run_analysis(
        "tract",
        polling_places_path=places_frame,
        output_dir=str(tmp_path),
        geometry_source=tract_geometry,
        attributes=tract_attributes,
        print_=False,
    )

    # no inputs: only the cache can supply the units
    second = run_analysis(
        "tract",
        polling_places_path=str(tmp_path / "missing.csv"),
        output_dir=str(tmp_path),
        print_=False,
    )

    pd.testing.assert_series_equal(
        first["units"]["nearest_distance"], second["units"]["nearest_distance"]
    )


def test_unconfigured_year_raises(tmp_path):
    with pytest.raises(ValueError, match="1990"):
        run_analysis("tract", year=1990, output_dir=str(tmp_path), print_=False)


def test_main_passes_arguments(monkeypatch, tmp_path, capsys):
    seen = {}

    def fake_run_analysis(geography, **kwargs):
        seen["geography"] = geography
        seen.update(kwargs)
        return {"decile_results": pd.DataFrame({"decile": [1]})}

    monkeypatch.setattr(run_of_show, "run_analysis", fake_run_analysis)
    run_of_show.main([
        "block",
        "--state", "sc",
        "--polling-places", "places.csv",
        "--output-dir", str(tmp_path),
        "--method", "kdtree",
        "--overwrite-cache",
    ])

    assert seen["geography"] == "block"
    assert seen["state_fips"] == "45"
    assert seen["polling_places_path"] == "places.csv"
    assert seen["method"] == "kdtree"
    assert seen["overwrite_cache"] is True
    assert "decile" in capsys.readouterr().out
