import pandas as pd
import numpy as np


def verbose_merge(df1, df2, left_on, right_on, how="left", verbose=True):
    """
    Merges two datasets and prints merge statistics, so that census geometry
    records without attributes (or attributes without geometry) are visible
    before they silently drop out of the analysis.

    Args:
        df1 (pd.DataFrame or gpd.GeoDataFrame): Left dataframe (keeps its type).
        df2 (pd.DataFrame): Right dataframe.
        left_on (str): Column to merge on from df1.
        right_on (str): Column to merge on from df2.
        how (str): Type of merge ('left', 'right', 'inner', 'outer'). Default is 'left'.
        verbose (bool): If True, prints merge statistics.

    Returns:
        Merged dataframe with a 'merge_source' column: 'merged', 'left_only' or 'right_only'.
    """
    merged_df = df1.merge(df2, left_on=left_on, right_on=right_on, how=how, indicator=True)

    merged_df["merge_source"] = merged_df["_merge"].map({
        "both": "merged",
        "left_only": "left_only",
        "right_only": "right_only"
    }).astype(str)

    if verbose:
        print(f"[verbose_merge] Total merged dataset size: {len(merged_df)}")
        print(f"[verbose_merge] Rows merged from both datasets: {(merged_df['_merge'] == 'both').sum()}")
        print(f"[verbose_merge] Rows from left that did not merge: {(merged_df['_merge'] == 'left_only').sum()}")
        print(f"[verbose_merge] Rows from right that did not merge: {(merged_df['_merge'] == 'right_only').sum()}")

    merged_df = merged_df.drop(columns=["_merge"])

    return merged_df


def prettify_dataset(
    df,
    round_decimals=2,
    int_columns=None,
    percent_columns=None,
    sort_by=None,
    fillna_value=0
):
    """
    Prettify a results table for display by rounding numeric columns,
    converting counts to integers and formatting shares as percentages.

    Parameters
    ----------
    df : pd.DataFrame
        The input DataFrame.
    round_decimals : int, default=2
        Number of decimal places for numeric columns.
    int_columns : list of str, optional
        Columns to convert to integers after rounding; missing columns are skipped.
    percent_columns : list of str, optional
        Columns to render as percentages (multiplied by 100, one decimal).
        Missing values render as 'n/a'.
    sort_by : str or list of str, optional
        Column(s) to sort by.
    fillna_value : int or float, default=0
        Replacement for NaN/inf before integer conversion.

    Returns
    -------
    pd.DataFrame
    """
    df = df.copy()

    int_columns = list(int_columns or [])
    percent_columns = list(percent_columns or [])

    if not isinstance(round_decimals, int) or round_decimals < 0:
        raise ValueError("round_decimals must be a non-negative integer.")

    for col in percent_columns:
        if col not in df.columns:
            print(f"Warning: percent_columns: '{col}' not in df; skipping.")
            continue
        values = pd.to_numeric(df[col].astype("Float64"), errors="coerce")
        df[col] = [
            "n/a" if pd.isna(v) else f"{v * 100:.1f}%"
            for v in values
        ]

    numeric_cols = [
        c for c in df.select_dtypes(include=["number"]).columns
        if c not in percent_columns
    ]
    if numeric_cols:
        df[numeric_cols] = df[numeric_cols].round(round_decimals)

    for col in int_columns:
        if col not in df.columns:
            print(f"Warning: int_columns: '{col}' not in df; skipping.")
            continue
        if not pd.api.types.is_numeric_dtype(df[col]):
            print(f"Warning: column '{col}' is not numeric; cannot convert to int.")
            continue
        df[col] = (
            df[col].astype(float)
            .replace([np.inf, -np.inf], np.nan)
            .fillna(fillna_value)
            .round(0)
            .astype(int)
        )

    if sort_by:
        df = df.sort_values(by=sort_by)

    return df
