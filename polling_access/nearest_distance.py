import os
import warnings
import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from polling_access.mapping_utilities import validate_matching_crs


###############################################################################
# DISTANCE FROM EACH UNIT CENTROID TO THE NEAREST POLLING PLACES
###############################################################################

MIN_PLACES_POLICIES = ("mean_available", "error")


def pairwise_distances(unit_xy, place_xy):
    """
    Euclidean distance from every unit point to every polling place.

    Parameters
    ----------
    unit_xy : array-like, shape (N, 2)
    place_xy : array-like, shape (M, 2)

    Returns
    -------
    np.ndarray, shape (N, M)
    """
    unit_xy = np.asarray(unit_xy, dtype=float).reshape(-1, 2)
    place_xy = np.asarray(place_xy, dtype=float).reshape(-1, 2)
    diff = unit_xy[:, None, :] - place_xy[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=-1))


def nearest_k_distances(unit_xy, place_xy, k=5, *, method="brute", chunk_size=2000):
    """
    The ``k`` smallest unit-to-place distances per unit, in ascending order.

    ``method="brute"`` evaluates all N x M pairs, ``chunk_size`` units at a
    time so the distance matrix never exceeds chunk_size x M. ``method="kdtree"``
    queries a ``scipy.spatial.cKDTree`` built over the polling places and
    returns the same distances.

    When fewer than ``k`` places exist, every distance is returned, so the
    result has ``min(k, M)`` columns.
    """
    if k < 1:
        raise ValueError("k must be at least 1.")
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1.")

    unit_xy = np.asarray(unit_xy, dtype=float).reshape(-1, 2)
    place_xy = np.asarray(place_xy, dtype=float).reshape(-1, 2)
    if len(place_xy) == 0:
        raise ValueError("At least one polling place is required.")

    k_eff = min(k, len(place_xy))

    if method == "kdtree":
        if len(unit_xy) == 0:
            return np.empty((0, k_eff))
        dist, _ = cKDTree(place_xy).query(unit_xy, k=k_eff)
        return np.asarray(dist, dtype=float).reshape(len(unit_xy), k_eff)

    if method != "brute":
        raise ValueError(f"Unknown method '{method}'. Use 'brute' or 'kdtree'.")

    out = np.empty((len(unit_xy), k_eff))
    for start in range(0, len(unit_xy), chunk_size):
        d = pairwise_distances(unit_xy[start:start + chunk_size], place_xy)
        if k_eff < d.shape[1]:
            d = np.partition(d, k_eff - 1, axis=1)[:, :k_eff]
        out[start:start + chunk_size] = np.sort(d, axis=1)
    return out


def compute_nearest_distances(
    units,
    places,
    *,
    k=5,
    method="brute",
    centroid_col="centroid",
    min_places_policy="mean_available",
    chunk_size=2000,
    print_=True
):
    """
    Add ``nearest_distance`` and ``five_nearest_mean`` to every census unit.

    Distances run from each unit's centroid to each polling place, in the
    units of the shared projected CRS. ``nearest_distance`` is the minimum;
    ``five_nearest_mean`` is the mean of the ``k`` (default 5) smallest.

    Parameters
    ----------
    units : geopandas.GeoDataFrame
        Enriched census units with a point column ``centroid_col``.
    places : geopandas.GeoDataFrame
        Polling place points.
    k : int, default 5
        Number of nearest places averaged into ``five_nearest_mean``. The
        column keeps that name for any ``k`` so the downstream statistics
        and report always find it.
    method : {'brute', 'kdtree'}
        Exhaustive pairwise evaluation, or a k-d tree over the places.
    min_places_policy : {'mean_available', 'error'}
        With fewer than ``k`` places, either average every available distance
        (with a warning) or raise.

    Returns
    -------
    geopandas.GeoDataFrame
        Copy of ``units`` with the two distance columns. Units without a
        centroid get NaN distances.

    Raises
    ------
    ValueError
        On CRS mismatch, no polling places, or too few places under the
        'error' policy.
    """
    if min_places_policy not in MIN_PLACES_POLICIES:
        raise ValueError(f"min_places_policy must be one of {MIN_PLACES_POLICIES}.")
    if centroid_col not in units.columns:
        raise KeyError(f"'{centroid_col}' not found; run enrich_units() first.")

    validate_matching_crs(units, places)

    place_points = places.geometry
    place_points = place_points[place_points.notna() & ~place_points.is_empty]
    n_places = len(place_points)
    if n_places == 0:
        raise ValueError("No polling places to measure distances to.")

    if n_places < k:
        message = (
            f"Only {n_places} polling places available (fewer than {k}); "
            f"'five_nearest_mean' averages all {n_places} distances."
        )
        if min_places_policy == "error":
            raise ValueError(message)
        warnings.warn(message, UserWarning)

    centroids = units[centroid_col]
    has_point = centroids.notna() & ~centroids.is_empty
    unit_xy = np.column_stack([centroids[has_point].x, centroids[has_point].y])
    place_xy = np.column_stack([place_points.x, place_points.y])

    if print_:
        print(f"[compute_nearest_distances] Measuring {has_point.sum():,} units x {n_places:,} "
              f"polling places ({method})...")

    nearest = nearest_k_distances(unit_xy, place_xy, k=k, method=method, chunk_size=chunk_size)

    out = units.copy()
    out["nearest_distance"] = np.nan
    out["five_nearest_mean"] = np.nan
    if len(nearest):
        out.loc[has_point, "nearest_distance"] = nearest[:, 0]
        out.loc[has_point, "five_nearest_mean"] = nearest.mean(axis=1)

    if print_:
        print(f"[compute_nearest_distances] Median nearest distance: "
              f"{out['nearest_distance'].median():,.1f}; median {k}-nearest mean: "
              f"{out['five_nearest_mean'].median():,.1f}")

    return out


def read_distance_cache(cache_path, print_=True):
    """Return the cached units-with-distances frame, or None if no cache exists."""
    if not os.path.exists(cache_path):
        return None
    if print_:
        print(f"[read_distance_cache] Reading cached distances from {cache_path}")
    return pd.read_pickle(cache_path)


def load_or_compute_distances(units, places, cache_path, *, overwrite=False, print_=True, **kwargs):
    """
    Return units with distances, reading them from ``cache_path`` if it exists.

    The cache is write-once: it is a pickled GeoDataFrame keyed only by its
    path, so delete the file (or pass ``overwrite=True``) after changing the
    input data. Extra keyword arguments go to ``compute_nearest_distances``.
    """
    if not overwrite:
        cached = read_distance_cache(cache_path, print_=print_)
        if cached is not None:
            return cached

    out = compute_nearest_distances(units, places, print_=print_, **kwargs)

    cache_dir = os.path.dirname(cache_path)
    if cache_dir:
        os.makedirs(cache_dir, exist_ok=True)
    out.to_pickle(cache_path)
    if print_:
        print(f"[load_or_compute_distances] Saved distances to {cache_path}")

    return out
