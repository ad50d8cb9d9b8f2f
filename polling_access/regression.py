import numpy as np
import pandas as pd
import statsmodels.api as sm


DEFAULT_PREDICTORS = ("black_share", "density", "pop_black")


def zscore(series):
    """Standardize to mean 0 and sample standard deviation 1."""
    series = pd.to_numeric(series, errors="coerce").astype(float)
    std = series.std(ddof=1)
    if not np.isfinite(std) or std == 0:
        raise ValueError(f"Cannot standardize '{series.name}': it has no variation.")
    return (series - series.mean()) / std


def _model_frame(units, outcome, predictors):
    cols = [outcome] + list(predictors)
    missing = [c for c in cols if c not in units.columns]
    if missing:
        raise KeyError(f"Regression columns {missing} not found.")

    df = pd.DataFrame(units[cols]).apply(pd.to_numeric, errors="coerce")
    df = df.replace([np.inf, -np.inf], np.nan).dropna()
    if len(df) <= len(predictors) + 1:
        raise ValueError(
            f"Only {len(df)} complete rows for {len(predictors)} predictors; cannot fit OLS."
        )
    return df


def fit_distance_models(units, *, outcome="nearest_distance", predictors=DEFAULT_PREDICTORS):
    """
    Fit OLS of distance on subgroup share, density and subgroup population.

    Two fits on the same complete rows:
      - 'standardized': outcome and predictors z-scored, giving standardized
        coefficients.
      - 'raw_outcome': outcome in its original distance units, predictors
        z-scored, so each coefficient is the change in distance per standard
        deviation of the predictor.

    Returns
    -------
    dict of str -> statsmodels RegressionResults
    """
    df = _model_frame(units, outcome, predictors)

    X = sm.add_constant(df[list(predictors)].apply(zscore))
    y_std = zscore(df[outcome])
    y_raw = df[outcome].astype(float)

    return {
        "standardized": sm.OLS(y_std, X).fit(),
        "raw_outcome": sm.OLS(y_raw, X).fit(),
    }


def coefficient_table(results):
    """Tidy coefficient table for a dict of fitted OLS results."""
    rows = []
    for model_name, res in results.items():
        for term in res.params.index:
            rows.append({
                "model": model_name,
                "term": term,
                "coef": res.params[term],
                "std_err": res.bse[term],
                "t": res.tvalues[term],
                "p_value": res.pvalues[term],
                "r_squared": res.rsquared,
                "n_obs": int(res.nobs),
            })
    return pd.DataFrame(rows)
