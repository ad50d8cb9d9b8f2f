import geopandas as gpd

from polling_access.mapping_utilities import load_generic_file, parse_wkt_geometry


def load_polling_places(
    source,
    *,
    crs,
    lon_col="longitude",
    lat_col="latitude",
    id_col=None,
    source_crs="EPSG:4326",
    print_=True
):
    """
    Load polling place locations as a point GeoDataFrame in the analysis CRS.

    Parameters
    ----------
    source : str or DataFrame or GeoDataFrame
        CSV with longitude/latitude (or WKT 'geometry') columns, any file
        geopandas can read, or an already-loaded frame.
    crs : str
        Target CRS, shared with the census units.
    lon_col, lat_col : str
        Coordinate columns for tabular sources.
    id_col : str, optional
        Identifier column; a sequential 'place_id' is created when omitted.
    source_crs : str, default "EPSG:4326"
        CRS of tabular coordinates.

    Returns
    -------
    geopandas.GeoDataFrame
        One row per polling place. Co-located places are kept as separate rows.
    """
    df = load_generic_file(source)

    if not isinstance(df, gpd.GeoDataFrame):
        if lon_col in df.columns and lat_col in df.columns:
            n_before = len(df)
            df = df.dropna(subset=[lon_col, lat_col])
            dropped = n_before - len(df)
            if dropped and print_:
                print(f"[load_polling_places] Dropped {dropped} polling places without coordinates.")
            df = gpd.GeoDataFrame(
                df,
                geometry=gpd.points_from_xy(df[lon_col], df[lat_col]),
                crs=source_crs
            )
        elif "geometry" in df.columns:
            df = parse_wkt_geometry(df, geometry_col="geometry", crs=source_crs)
        else:
            raise KeyError(
                f"Polling place table needs '{lon_col}'/'{lat_col}' columns or a WKT 'geometry' column."
            )

    gdf = df[df.geometry.notna() & ~df.geometry.is_empty].copy()

    if gdf.crs is None:
        raise ValueError("Polling place geometry has no CRS; cannot reproject.")

    non_points = ~gdf.geom_type.isin(["Point"])
    if non_points.any():
        raise ValueError(
            f"Polling places must be points; found {sorted(gdf.geom_type[non_points].unique())}."
        )

    gdf = gdf.to_crs(crs)

    if id_col is None:
        id_col = "place_id"
        gdf[id_col] = range(len(gdf))
    elif id_col not in gdf.columns:
        raise KeyError(f"'{id_col}' not found in polling place columns.")

    gdf = gdf.reset_index(drop=True)

    if print_:
        print(f"[load_polling_places] Loaded {len(gdf):,} polling places in {gdf.crs.to_string()}.")

    return gdf
