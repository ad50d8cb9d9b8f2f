import warnings
import numpy as np
import pandas as pd
from scipy import stats


###############################################################################
# DENSITY DECILES + MAJORITY / NON-MAJORITY COMPARISONS
###############################################################################

DISTANCE_COLS = {"nearest": "nearest_distance", "five": "five_nearest_mean"}


def density_quantile_bounds(density, n_quantiles=10):
    """
    Boundaries of ``n_quantiles`` equal-count density strata.

    Computed over finite densities > 0 with linear interpolation between
    order statistics (the 'type 7' definition), so ``n_quantiles + 1``
    boundaries come back, from the minimum to the maximum. Positions are
    built as exact fractions, so a boundary landing on an order statistic
    equals that unit's density and the unit falls in both adjacent deciles.
    """
    if n_quantiles < 1:
        raise ValueError("n_quantiles must be at least 1.")

    values = pd.to_numeric(pd.Series(density), errors="coerce").to_numpy(dtype=float)
    values = values[np.isfinite(values) & (values > 0)]
    if len(values) == 0:
        raise ValueError("No units with a positive, finite density to stratify.")

    values = np.sort(values)
    positions = np.arange(n_quantiles + 1) * (len(values) - 1) / n_quantiles
    return np.interp(positions, np.arange(len(values)), values)


def select_decile(units, lower, upper, *, density_col="density"):
    """
    Units whose density lies in [lower, upper].

    Both ends are inclusive, so a unit sitting exactly on a boundary belongs
    to both adjacent deciles.
    """
    density = units[density_col]
    return units[(density >= lower) & (density <= upper)]


def split_by_majority(units, *, share_col="black_share", threshold=0.5):
    """
    Split units into (majority, non_majority) by subgroup share.

    Majority is share > threshold, non-majority is share < threshold. Units
    exactly at the threshold, or with no defined share, are in neither group.
    """
    share = units[share_col]
    return units[share > threshold], units[share < threshold]


def proportional_difference(difference, base):
    """``difference / base``, or None when ``base`` is zero or not finite."""
    if base is None or pd.isna(base) or not np.isfinite(base) or base == 0:
        return None
    if pd.isna(difference):
        return None
    return float(difference) / float(base)


def welch_ttest(a, b):
    """
    Two-sample t-test for a difference in means without assuming equal
    variances (Welch). Returns (t_stat, p_value).

    Groups with fewer than 2 finite values cannot be tested; (nan, nan) is
    returned with a warning.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    a = a[np.isfinite(a)]
    b = b[np.isfinite(b)]

    if len(a) < 2 or len(b) < 2:
        warnings.warn(
            f"Welch t-test skipped: groups have {len(a)} and {len(b)} values (need at least 2 each).",
            UserWarning
        )
        return np.nan, np.nan

    res = stats.ttest_ind(a, b, equal_var=False)
    return float(res.statistic), float(res.pvalue)


def _group_comparison(majority, non_majority, distance_col, label):
    maj = majority[distance_col].dropna()
    non = non_majority[distance_col].dropna()

    mean_maj = maj.mean() if len(maj) else np.nan
    mean_non = non.mean() if len(non) else np.nan
    difference = mean_non - mean_maj

    prop = proportional_difference(difference, mean_non)
    if prop is None and len(non) and mean_non == 0:
        warnings.warn(
            f"Non-majority mean {distance_col} is 0; proportional difference is undefined.",
            UserWarning
        )

    t_stat, p_value = welch_ttest(maj, non)

    return {
        f"mean_{label}_majority": mean_maj,
        f"mean_{label}_non_majority": mean_non,
        f"difference_{label}": difference,
        f"prop_difference_{label}": prop,
        f"t_stat_{label}": t_stat,
        f"p_value_{label}": p_value,
    }


def _rows_to_frame(rows):
    # undefined proportional differences stay <NA> instead of becoming NaN
    prop_cols = {
        f"prop_difference_{label}": pd.array(
            [pd.NA if row[f"prop_difference_{label}"] is None else row[f"prop_difference_{label}"]
             for row in rows],
            dtype="Float64"
        )
        for label in DISTANCE_COLS
    }
    df = pd.DataFrame(rows)
    for col, values in prop_cols.items():
        df[col] = values
    return df


def compute_decile_result(
    units,
    decile,
    lower,
    upper,
    *,
    share_col="black_share",
    subgroup_col="pop_black",
    total_col="pop_total",
    density_col="density",
    threshold=0.5
):
    """
    Compare majority and non-majority units within one density decile.

    Returns a dict (one DecileResult row): the decile bounds, group sizes,
    mean nearest and five-nearest distances per group, difference
    (non-majority minus majority), proportional difference (difference over
    the non-majority mean; None when that mean is 0), Welch t-test statistic
    and p-value, and the summed subgroup and total population of every unit
    in the decile.
    """
    in_decile = select_decile(units, lower, upper, density_col=density_col)
    majority, non_majority = split_by_majority(in_decile, share_col=share_col, threshold=threshold)

    row = {
        "decile": decile,
        "density_lower": lower,
        "density_upper": upper,
        "n_units": len(in_decile),
        "n_majority": len(majority),
        "n_non_majority": len(non_majority),
    }
    for label, distance_col in DISTANCE_COLS.items():
        row.update(_group_comparison(majority, non_majority, distance_col, label))

    row["subgroup_population"] = in_decile[subgroup_col].sum()
    row["total_population"] = in_decile[total_col].sum()

    return row


def compute_decile_results(
    units,
    n_quantiles=10,
    *,
    share_col="black_share",
    subgroup_col="pop_black",
    total_col="pop_total",
    density_col="density",
    threshold=0.5,
    print_=True
):
    """
    One DecileResult row per density decile, in decile order (1 = sparsest).

    Parameters
    ----------
    units : DataFrame or GeoDataFrame
        Census units with density, subgroup share, population counts and the
        two distance columns.
    n_quantiles : int, default 10
        Number of density strata.

    Returns
    -------
    pd.DataFrame
        The ``prop_difference_*`` columns are nullable ``Float64``; an
        undefined proportional difference is ``pd.NA``.
    """
    required = [share_col, subgroup_col, total_col, density_col] + list(DISTANCE_COLS.values())
    missing = [c for c in required if c not in units.columns]
    if missing:
        raise KeyError(f"Census units are missing columns {missing}.")

    bounds = density_quantile_bounds(units[density_col], n_quantiles)
    if print_:
        print(f"[compute_decile_results] Density boundaries: {np.round(bounds, 2).tolist()}")

    rows = [
        compute_decile_result(
            units, i + 1, bounds[i], bounds[i + 1],
            share_col=share_col, subgroup_col=subgroup_col, total_col=total_col,
            density_col=density_col, threshold=threshold
        )
        for i in range(n_quantiles)
    ]

    return _rows_to_frame(rows)


def summarize_by_majority(units, *, share_col="black_share", threshold=0.5):
    """
    Statewide (unstratified) comparison of majority and non-majority units,
    as a one-row DataFrame with the same distance columns as a DecileResult.
    """
    majority, non_majority = split_by_majority(units, share_col=share_col, threshold=threshold)
    row = {"n_majority": len(majority), "n_non_majority": len(non_majority)}
    for label, distance_col in DISTANCE_COLS.items():
        row.update(_group_comparison(majority, non_majority, distance_col, label))

    return _rows_to_frame([row])


def _correlation_row(df, share_col, distance_col):
    pair = df[[share_col, distance_col]].replace([np.inf, -np.inf], np.nan).dropna()
    row = {"distance": distance_col, "n": len(pair)}
    if len(pair) >= 3 and pair[share_col].nunique() > 1 and pair[distance_col].nunique() > 1:
        r_p, p_p = stats.pearsonr(pair[share_col], pair[distance_col])
        r_s, p_s = stats.spearmanr(pair[share_col], pair[distance_col])
        row.update({"pearson_r": r_p, "pearson_p": p_p, "spearman_rho": r_s, "spearman_p": p_s})
    else:
        row.update({"pearson_r": np.nan, "pearson_p": np.nan, "spearman_rho": np.nan, "spearman_p": np.nan})
    return row


def correlate_share_and_distance(
    units,
    *,
    share_col="black_share",
    distance_cols=("nearest_distance", "five_nearest_mean"),
    by_decile=False,
    n_quantiles=10,
    density_col="density"
):
    """
    Pearson and Spearman correlations between subgroup share and distance.

    Returns one row per distance column for the whole state ('decile' = 0),
    plus, if ``by_decile``, one row per distance column and density decile
    (same inclusive strata as ``compute_decile_results``). Pairs with fewer
    than 3 observations or no variation get NaN coefficients.
    """
    rows = []
    for distance_col in distance_cols:
        rows.append({"decile": 0, **_correlation_row(units, share_col, distance_col)})

    if by_decile:
        bounds = density_quantile_bounds(units[density_col], n_quantiles)
        for i in range(n_quantiles):
            in_decile = select_decile(units, bounds[i], bounds[i + 1], density_col=density_col)
            for distance_col in distance_cols:
                rows.append({"decile": i + 1, **_correlation_row(in_decile, share_col, distance_col)})

    return pd.DataFrame(rows)
