import numpy as np
import pandas as pd
import geopandas as gpd


###############################################################################
# CENTROID, AREA, DENSITY AND SUBGROUP SHARE PER CENSUS UNIT
###############################################################################

def add_centroids(gdf, centroid_col="centroid"):
    """
    Add the area-weighted planar centroid of each unit polygon as a point
    GeoSeries in ``centroid_col``. The active geometry stays the polygon.
    """
    gdf = gdf.copy()
    gdf[centroid_col] = gpd.GeoSeries(gdf.geometry.centroid, index=gdf.index, crs=gdf.crs)
    return gdf


def add_area_and_density(gdf, *, total_col="pop_total", area_units=1.0):
    """
    Add polygon area and population density.

    Area is measured in the square units of the GeoDataFrame's CRS, divided
    by ``area_units`` (e.g. 1e6 turns square metres into square kilometres).
    Density is NaN when the area is zero or missing or the population is
    missing, so those units drop out of density-based analyses.
    """
    if total_col not in gdf.columns:
        raise KeyError(f"'{total_col}' not found in census unit columns.")
    if area_units <= 0:
        raise ValueError("area_units must be positive.")

    gdf = gdf.copy()
    gdf["area"] = gdf.geometry.area / area_units

    area = gdf["area"].where(gdf["area"] > 0)
    population = pd.to_numeric(gdf[total_col], errors="coerce")
    with np.errstate(divide="ignore", invalid="ignore"):
        density = population / area
    gdf["density"] = density.replace([np.inf, -np.inf], np.nan)

    return gdf


def add_subgroup_share(gdf, *, subgroup_col="pop_black", total_col="pop_total", share_col="black_share"):
    """
    Add the subgroup's share of total population.

    The share is NaN when total population is zero or missing. A share
    outside [0, 1] means the subgroup count exceeds the total, which is bad
    upstream data and raises.
    """
    for col in (subgroup_col, total_col):
        if col not in gdf.columns:
            raise KeyError(f"'{col}' not found in census unit columns.")

    gdf = gdf.copy()
    total = pd.to_numeric(gdf[total_col], errors="coerce")
    subgroup = pd.to_numeric(gdf[subgroup_col], errors="coerce")
    gdf[share_col] = subgroup / total.where(total > 0)

    out_of_range = gdf[share_col].notna() & ~gdf[share_col].between(0, 1)
    if out_of_range.any():
        bad = gdf.loc[out_of_range].index[:5].tolist()
        raise ValueError(
            f"{out_of_range.sum()} units have '{subgroup_col}' outside [0, '{total_col}'] "
            f"(first rows: {bad})."
        )

    return gdf


def enrich_units(
    gdf,
    *,
    subgroup_col="pop_black",
    total_col="pop_total",
    share_col="black_share",
    area_units=1.0,
    print_=True
):
    """
    Derive centroid, area, density and subgroup share for every census unit.

    Returns a new GeoDataFrame; the input is not modified.
    """
    gdf = add_centroids(gdf)
    gdf = add_area_and_density(gdf, total_col=total_col, area_units=area_units)
    gdf = add_subgroup_share(gdf, subgroup_col=subgroup_col, total_col=total_col, share_col=share_col)

    if print_:
        no_density = gdf["density"].isna().sum()
        zero_density = (gdf["density"] == 0).sum()
        no_share = gdf[share_col].isna().sum()
        print(f"[enrich_units] Enriched {len(gdf):,} units.")
        print(f"[enrich_units] {no_density:,} units without a defined density; "
              f"{zero_density:,} with zero population.")
        print(f"[enrich_units] {no_share:,} units without a defined {share_col}.")

    return gdf
