import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from shapely.geometry import Point, box

PLANAR_CRS = "EPSG:32617"


@pytest.fixture
def planar_crs():
    return PLANAR_CRS


@pytest.fixture
def corner_places():
    """Four polling places on the corners of a 10 x 10 square."""
    return gpd.GeoDataFrame(
        {"place_id": [0, 1, 2, 3]},
        geometry=[Point(0, 0), Point(10, 0), Point(0, 10), Point(10, 10)],
        crs=PLANAR_CRS,
    )


@pytest.fixture
def grid_units():
    """
    A 6 x 5 grid of 100 m square units in a projected CRS with varied
    population and Black share (no unit at exactly 0.5).
    """
    rng = np.random.default_rng(7)
    geoms, totals = [], []
    for i in range(6):
        for j in range(5):
            geoms.append(box(i * 100, j * 100, (i + 1) * 100, (j + 1) * 100))
            totals.append(int(rng.integers(50, 2000)))
    totals = np.array(totals)
    shares = rng.choice([0.05, 0.15, 0.3, 0.45, 0.55, 0.7, 0.85, 0.95], size=len(totals))
    return gpd.GeoDataFrame(
        {
            "GEOID": [f"45001{k:06d}" for k in range(len(totals))],
            "pop_black": np.round(totals * shares),
            "pop_total": totals,
        },
        geometry=geoms,
        crs=PLANAR_CRS,
    )


@pytest.fixture
def grid_places():
    rng = np.random.default_rng(11)
    xy = rng.uniform(0, 600, size=(12, 2))
    return gpd.GeoDataFrame(
        {"place_id": range(len(xy))},
        geometry=[Point(x, y) for x, y in xy],
        crs=PLANAR_CRS,
    )


@pytest.fixture
def twenty_units():
    """
    Twenty units for majority-split checks: 8 majority, 8 non-majority and
    4 at exactly 0.5 share whose far distances must not leak into either group.
    """
    maj_share = [0.6, 0.7, 0.8, 0.9] * 2
    non_share = [0.1, 0.2, 0.3, 0.4] * 2
    half_share = [0.5] * 4
    maj_near = [2.0, 4.0, 6.0, 8.0] * 2
    non_near = [1.0, 3.0] * 4
    half_near = [100.0] * 4

    share = maj_share + non_share + half_share
    near = maj_near + non_near + half_near
    df = pd.DataFrame({
        "black_share": share,
        "nearest_distance": near,
        "five_nearest_mean": [d + 1.0 for d in near],
        "pop_total": [100.0] * 20,
        "density": np.arange(1, 21, dtype=float),
    })
    df["pop_black"] = df["black_share"] * df["pop_total"]
    return df
