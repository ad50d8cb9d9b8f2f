import time
import pandas as pd
import geopandas as gpd
import requests

from polling_access.mapping_utilities import load_generic_file, fix_invalid_geometries
from polling_access.dataset_utilities import verbose_merge


###############################################################################
# CENSUS GEOMETRY (TIGER/LINE) AND ATTRIBUTES (CENSUS API)
###############################################################################

TIGER_BASE = "https://www2.census.gov/geo/tiger"
CENSUS_API_BASE = "https://api.census.gov/data"

# geography -> year -> (TIGER subdirectory, file suffix, GEOID column)
TIGER_LAYERS = {
    "tract": {
        2020: ("TIGER2020/TRACT", "tract", "GEOID"),
        2010: ("TIGER2010/TRACT/2010", "tract10", "GEOID10"),
    },
    "block": {
        2020: ("TIGER2020/TABBLOCK20", "tabblock20", "GEOID20"),
        2010: ("TIGER2010/TABBLOCK/2010", "tabblock10", "GEOID10"),
    },
}

# decennial summary file used for attributes in each year
CENSUS_DATASETS = {2020: "dec/pl", 2010: "dec/sf1"}

# API geography components that make up the GEOID, in order
GEOID_COMPONENTS = {
    "tract": ["state", "county", "tract"],
    "block": ["state", "county", "tract", "block"],
}


def _check_geography(geography, year):
    if geography not in TIGER_LAYERS:
        raise ValueError(f"Unknown geography '{geography}'. Use one of {sorted(TIGER_LAYERS)}.")
    if year not in TIGER_LAYERS[geography]:
        raise ValueError(
            f"No decennial {geography} layer configured for {year}. "
            f"Available years: {sorted(TIGER_LAYERS[geography])}."
        )


def tiger_url(year, state_fips, geography):
    """Return the TIGER/Line shapefile zip URL for a state's tracts or blocks."""
    _check_geography(geography, year)
    subdir, suffix, _ = TIGER_LAYERS[geography][year]
    return f"{TIGER_BASE}/{subdir}/tl_{year}_{state_fips}_{suffix}.zip"


def request_census_json(url, params, *, session=None, retries=3, backoff=2.0):
    """
    GET a Census API table and return the parsed JSON (a list of rows, header first).

    Network errors and bad HTTP statuses are retried ``retries`` times in total,
    sleeping ``backoff * attempt`` seconds in between. The last error is re-raised,
    which aborts the run.
    """
    if retries < 1:
        raise ValueError("retries must be at least 1.")

    session = session or requests.Session()

    for attempt in range(1, retries + 1):
        try:
            response = session.get(url, params=params, timeout=120)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            if attempt == retries:
                raise
            print(f"[request_census_json] Attempt {attempt}/{retries} failed ({e}); retrying...")
            time.sleep(backoff * attempt)


def _json_to_frame(rows):
    if not rows or len(rows) < 2:
        return pd.DataFrame(columns=rows[0] if rows else [])
    return pd.DataFrame(rows[1:], columns=rows[0])


def fetch_census_attributes(
    year,
    state_fips,
    geography,
    variables,
    api_key=None,
    *,
    session=None,
    retries=3,
    backoff=2.0,
    print_=True
):
    """
    Pull decennial population counts for every tract or block in a state.

    Tracts come back in a single request. The API only serves blocks one
    county at a time, so the county list is fetched first and blocks are
    requested per county.

    Parameters
    ----------
    year : int
        Decennial census year (2010 or 2020).
    state_fips : str
        Two-digit state FIPS code (e.g. '45').
    geography : {'tract', 'block'}
    variables : list of str
        Census variable codes (e.g. ['P1_001N', 'P1_004N']).
    api_key : str, optional
        Census API key; omitted from the request when empty.
    session : requests.Session, optional
        Session to issue requests with (a new one by default).
    retries, backoff
        Passed to ``request_census_json``.

    Returns
    -------
    pd.DataFrame
        One row per unit with a 'GEOID' column and numeric variable columns.
    """
    _check_geography(geography, year)
    url = f"{CENSUS_API_BASE}/{year}/{CENSUS_DATASETS[year]}"
    session = session or requests.Session()

    def _params(for_clause, in_clauses):
        params = {"get": ",".join(variables), "for": for_clause, "in": in_clauses}
        if api_key:
            params["key"] = api_key
        return params

    if geography == "tract":
        if print_:
            print(f"[fetch_census_attributes] Downloading tract data from {url}")
        rows = request_census_json(
            url, _params("tract:*", [f"state:{state_fips}"]),
            session=session, retries=retries, backoff=backoff
        )
        df = _json_to_frame(rows)
    else:
        county_rows = request_census_json(
            url, _params("county:*", [f"state:{state_fips}"]),
            session=session, retries=retries, backoff=backoff
        )
        counties = sorted(_json_to_frame(county_rows)["county"].unique())
        if print_:
            print(f"[fetch_census_attributes] Downloading block data for {len(counties)} counties from {url}")

        frames = []
        for county in counties:
            rows = request_census_json(
                url, _params("block:*", [f"state:{state_fips}", f"county:{county}"]),
                session=session, retries=retries, backoff=backoff
            )
            frames.append(_json_to_frame(rows))
        df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

    missing = [c for c in GEOID_COMPONENTS[geography] + list(variables) if c not in df.columns]
    if missing:
        raise KeyError(f"Census API response is missing columns {missing}.")

    df["GEOID"] = df[GEOID_COMPONENTS[geography]].astype(str).agg("".join, axis=1)
    df[list(variables)] = df[list(variables)].apply(pd.to_numeric, errors="coerce")
    df = df.drop(columns=GEOID_COMPONENTS[geography])

    if print_:
        print(f"[fetch_census_attributes] Retrieved {len(df):,} {geography} records.")

    return df[["GEOID"] + list(variables)]


def load_census_units(
    year,
    state_fips,
    geography,
    *,
    crs,
    api_key=None,
    subgroup_var,
    total_var,
    subgroup_col="pop_black",
    total_col="pop_total",
    geometry_source=None,
    attributes=None,
    session=None,
    print_=True
):
    """
    Build the census unit GeoDataFrame: polygons with subgroup and total
    population, reprojected to the analysis CRS.

    Parameters
    ----------
    year, state_fips, geography
        Which decennial layer to load.
    crs : str
        Target CRS; the result's ``.crs`` is always this CRS.
    api_key : str, optional
        Census API key.
    subgroup_var, total_var : str
        Census variable codes for the subgroup and total counts.
    subgroup_col, total_col : str
        Output column names for those counts.
    geometry_source : str or GeoDataFrame, optional
        Local shapefile/GeoPackage (or loaded frame) to use instead of
        downloading the TIGER/Line zip.
    attributes : str or pd.DataFrame, optional
        Pre-fetched attribute table (or CSV path) with 'GEOID', ``subgroup_var`` and
        ``total_var`` columns; skips the Census API.

    Returns
    -------
    geopandas.GeoDataFrame
        Columns 'GEOID', ``subgroup_col``, ``total_col``, 'geometry'.
        Units whose geometry has no attribute row keep NaN counts.
    """
    _check_geography(geography, year)
    _, _, geoid_col = TIGER_LAYERS[geography][year]

    if geometry_source is None:
        geometry_source = tiger_url(year, state_fips, geography)
        if print_:
            print(f"[load_census_units] Downloading {geography} geometry from {geometry_source}")
    gdf = load_generic_file(geometry_source)

    if "GEOID" not in gdf.columns:
        if geoid_col not in gdf.columns:
            raise KeyError(f"Geometry layer has neither 'GEOID' nor '{geoid_col}' columns.")
        gdf = gdf.rename(columns={geoid_col: "GEOID"})
    gdf["GEOID"] = gdf["GEOID"].astype(str)

    if gdf.crs is None:
        raise ValueError("Census geometry has no CRS; cannot reproject.")
    gdf = gdf[["GEOID", "geometry"]].to_crs(crs)
    gdf = fix_invalid_geometries(gdf, print_=print_)

    if attributes is None:
        attributes = fetch_census_attributes(
            year, state_fips, geography, [total_var, subgroup_var],
            api_key, session=session, print_=print_
        )
    else:
        attributes = load_generic_file(attributes, dtypes={"GEOID": str}, keep_geometry=False)
    attributes["GEOID"] = attributes["GEOID"].astype(str)

    units = verbose_merge(
        gdf, attributes[["GEOID", subgroup_var, total_var]],
        left_on="GEOID", right_on="GEOID", how="left", verbose=print_
    )
    units = units.drop(columns=["merge_source"]).rename(
        columns={subgroup_var: subgroup_col, total_var: total_col}
    )
    units = gpd.GeoDataFrame(units, geometry="geometry", crs=gdf.crs)

    if print_:
        print(f"[load_census_units] Loaded {len(units):,} {geography} units in {units.crs.to_string()}.")

    return units[["GEOID", subgroup_col, total_col, "geometry"]]
