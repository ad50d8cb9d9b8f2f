import os
import warnings
import pandas as pd
import geopandas as gpd
from pyproj import CRS
from shapely import wkt


def load_generic_file(
    data_input,
    encoding="utf-8",
    dtypes=None,
    keep_geometry=True
):
    """
    Loads a polling place or census table from CSV or any geospatial format,
    or accepts an already-loaded DataFrame/GeoDataFrame.

    Parameters
    ----------
    data_input : str or DataFrame or GeoDataFrame
        - If str, the path (or URL) of a file to load.
          Automatically detects extension:
              .csv / .txt => read via pandas
              else        => read via geopandas
        - If DataFrame/GeoDataFrame, returns a copy of it.
    encoding : str
        File encoding (pandas).
    dtypes : dict or None
        Optionally specify column data types for pandas (e.g., {'GEOID': str}).
        Columns that cannot be converted are left as read, with a warning.
    keep_geometry : bool
        If False, drops geometry even if the source is geospatial.

    Returns
    -------
    DataFrame or GeoDataFrame
    """
    if isinstance(data_input, (pd.DataFrame, gpd.GeoDataFrame)):
        df = data_input.copy()
        if not keep_geometry and isinstance(df, gpd.GeoDataFrame):
            df = remove_geometry(df)
        return df

    _, ext = os.path.splitext(str(data_input).lower())

    if ext in [".csv", ".txt"]:
        if not dtypes:
            return pd.read_csv(data_input, encoding=encoding)

        try:
            return pd.read_csv(data_input, encoding=encoding, dtype=dtypes)
        except (ValueError, TypeError) as e:
            warnings.warn(
                f"Could not load with specified dtypes. Will load without dtypes "
                f"and then attempt to coerce columns as possible.\n  Original error: {e}",
                UserWarning
            )

        df = pd.read_csv(data_input, encoding=encoding)
        for col, desired_type in dtypes.items():
            if col not in df.columns:
                continue
            try:
                if pd.api.types.is_numeric_dtype(desired_type):
                    df[col] = pd.to_numeric(df[col], errors="coerce")
                else:
                    df[col] = df[col].astype(desired_type)
            except (ValueError, TypeError) as col_err:
                warnings.warn(
                    f"Could not convert column '{col}' to {desired_type}; left unchanged.\n"
                    f"  Original error: {col_err}",
                    UserWarning
                )
        return df

    gdf = gpd.read_file(data_input)
    if not keep_geometry:
        gdf = remove_geometry(gdf)
    return gdf


def remove_geometry(gdf, geometry_col="geometry"):
    """
    Remove geometry from a GeoDataFrame and return a DataFrame.
    """
    if geometry_col not in gdf.columns:
        print(f"Warning: '{geometry_col}' not found in GeoDataFrame columns.")
        return pd.DataFrame(gdf.copy())
    return pd.DataFrame(gdf.drop(columns=geometry_col))


def fix_invalid_geometries(gdf, print_=True):
    """
    Fix invalid geometries in a GeoDataFrame via buffer(0).
    Returns a copy with repaired geometries.
    """
    if gdf.empty:
        if print_:
            print("Warning: Received an empty GeoDataFrame. No geometries to fix.")
        return gdf

    gdf = gdf.copy()
    invalid_mask = gdf.geometry.notna() & ~gdf.geometry.is_valid
    if invalid_mask.any():
        if print_:
            print(f"Found {invalid_mask.sum()} invalid geometries; attempting to fix...")
        gdf.loc[invalid_mask, gdf.geometry.name] = gdf.loc[invalid_mask].geometry.buffer(0)
    return gdf


def parse_wkt_geometry(df, geometry_col="geometry", crs="EPSG:4326"):
    """
    Convert a DataFrame holding WKT strings in ``geometry_col`` into a GeoDataFrame.
    Null strings become missing geometries.
    """
    if geometry_col not in df.columns:
        raise KeyError(f"Specified geometry_col '{geometry_col}' not found in columns.")

    df = df.copy()
    df[geometry_col] = df[geometry_col].apply(lambda x: wkt.loads(x) if pd.notnull(x) else None)
    return gpd.GeoDataFrame(df, geometry=geometry_col, crs=crs)


def validate_matching_crs(units, places, *, require_projected=True):
    """Check that census units and polling places share one usable CRS.

    Distances between geometries in different (or unknown) reference systems
    are meaningless, and Euclidean distances in degrees are not comparable
    across latitudes, so both conditions are rejected before any distance is
    computed.

    Parameters
    ----------
    units, places : geopandas.GeoDataFrame
        Census units and polling places.
    require_projected : bool, default True
        If True, a geographic (lon/lat) CRS raises as well.

    Returns
    -------
    pyproj.CRS
        The shared CRS.

    Raises
    ------
    ValueError
        If either frame has no CRS, the CRSs differ, or the shared CRS is
        geographic while ``require_projected`` is set.
    """
    for name, gdf in (("census units", units), ("polling places", places)):
        if getattr(gdf, "crs", None) is None:
            raise ValueError(f"The {name} GeoDataFrame has no CRS; set or reproject it first.")

    units_crs = CRS.from_user_input(units.crs)
    places_crs = CRS.from_user_input(places.crs)
    if units_crs != places_crs:
        raise ValueError(
            f"CRS mismatch: census units are in {units_crs.to_string()} but polling "
            f"places are in {places_crs.to_string()}. Reproject both with .to_crs()."
        )

    if require_projected and units_crs.is_geographic:
        raise ValueError(
            f"CRS {units_crs.to_string()} is geographic (degrees); distances require a "
            "projected CRS such as EPSG:32617."
        )

    return units_crs


def map_fips_and_state(value):
    """Return the state abbreviation for a FIPS code, or the FIPS code for an abbreviation."""

    fips_to_state = {
        '01': 'AL', '02': 'AK', '04': 'AZ', '05': 'AR', '06': 'CA',
        '08': 'CO', '09': 'CT', '10': 'DE', '11': 'DC', '12': 'FL',
        '13': 'GA', '15': 'HI', '16': 'ID', '17': 'IL', '18': 'IN',
        '19': 'IA', '20': 'KS', '21': 'KY', '22': 'LA', '23': 'ME',
        '24': 'MD', '25': 'MA', '26': 'MI', '27': 'MN', '28': 'MS',
        '29': 'MO', '30': 'MT', '31': 'NE', '32': 'NV', '33': 'NH',
        '34': 'NJ', '35': 'NM', '36': 'NY', '37': 'NC', '38': 'ND',
        '39': 'OH', '40': 'OK', '41': 'OR', '42': 'PA', '44': 'RI',
        '45': 'SC', '46': 'SD', '47': 'TN', '48': 'TX', '49': 'UT',
        '50': 'VT', '51': 'VA', '53': 'WA', '54': 'WV', '55': 'WI',
        '56': 'WY', '72': 'PR'
    }
    state_to_fips = {state: fips for fips, state in fips_to_state.items()}

    if value in fips_to_state:
        return fips_to_state[value]
    elif value in state_to_fips:
        return state_to_fips[value]
    raise ValueError(f"'{value}' is neither a state FIPS code nor a state abbreviation.")
