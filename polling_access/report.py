import os
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages

from polling_access.dataset_utilities import prettify_dataset
from polling_access.mapping_utilities import remove_geometry


DECILE_TABLE_COLS = {
    "decile": "Decile",
    "n_majority": "N maj.",
    "n_non_majority": "N non-maj.",
    "mean_nearest_majority": "Mean dist. maj.",
    "mean_nearest_non_majority": "Mean dist. non-maj.",
    "difference_nearest": "Difference",
    "prop_difference_nearest": "Prop. diff.",
    "p_value_nearest": "p-value",
    "subgroup_population": "Black pop.",
    "total_population": "Total pop.",
}


def render_table_page(df, title, *, fontsize=8):
    """Render a DataFrame as a matplotlib table on its own page-sized figure."""
    fig, ax = plt.subplots(figsize=(11, 8.5))
    ax.axis("off")
    ax.set_title(title, fontsize=14, loc="left")

    if df.empty:
        ax.text(0.5, 0.5, "No rows", ha="center", va="center")
        return fig

    table = ax.table(
        cellText=df.astype(str).values,
        colLabels=[str(c) for c in df.columns],
        loc="upper center",
        cellLoc="center"
    )
    table.auto_set_font_size(False)
    table.set_fontsize(fontsize)
    table.scale(1, 1.4)
    return fig


def format_decile_table(decile_results):
    """Subset, rename and round the decile results for display."""
    cols = [c for c in DECILE_TABLE_COLS if c in decile_results.columns]
    table = prettify_dataset(
        decile_results[cols],
        round_decimals=3,
        int_columns=["decile", "n_majority", "n_non_majority", "subgroup_population", "total_population"],
        percent_columns=["prop_difference_nearest"],
    )
    return table.rename(columns=DECILE_TABLE_COLS)


def plot_distance_by_share(units, ax=None, *, share_col="black_share", distance_col="nearest_distance"):
    """Scatter of distance against subgroup share with an OLS fit line."""
    if ax is None:
        _, ax = plt.subplots(figsize=(10, 7))

    df = remove_geometry(units)[[share_col, distance_col]]
    df = df.apply(pd.to_numeric, errors="coerce").replace([np.inf, -np.inf], np.nan).dropna()

    sns.regplot(
        data=df, x=share_col, y=distance_col, ax=ax,
        scatter_kws={"s": 6, "alpha": 0.3}, line_kws={"color": "red"}
    )
    ax.set_xlabel("Black share of population")
    ax.set_ylabel("Distance to nearest polling place")
    ax.set_title("Distance to nearest polling place by Black population share")
    return ax


def plot_decile_means(decile_results, ax=None, *, label="nearest"):
    """Grouped bars of mean distance for majority and non-majority units by density decile."""
    if ax is None:
        _, ax = plt.subplots(figsize=(10, 7))

    long = decile_results.melt(
        id_vars="decile",
        value_vars=[f"mean_{label}_majority", f"mean_{label}_non_majority"],
        var_name="group",
        value_name="mean_distance"
    )
    long["group"] = long["group"].map({
        f"mean_{label}_majority": "Majority Black",
        f"mean_{label}_non_majority": "Not majority Black",
    })

    sns.barplot(data=long, x="decile", y="mean_distance", hue="group", ax=ax)
    ax.set_xlabel("Population density decile (1 = least dense)")
    ax.set_ylabel("Mean distance")
    ax.set_title(f"Mean {label} distance by density decile")
    return ax


def plot_decile_differences(decile_results, ax=None, *, label="nearest", alpha=0.05):
    """Bars of (non-majority - majority) mean distance per decile; * marks p < alpha."""
    if ax is None:
        _, ax = plt.subplots(figsize=(10, 7))

    diffs = decile_results[f"difference_{label}"].astype(float)
    pvals = decile_results[f"p_value_{label}"].astype(float)
    colors = ["tab:blue" if d >= 0 else "tab:orange" for d in diffs.fillna(0)]

    ax.bar(decile_results["decile"], diffs, color=colors)
    ax.axhline(0, color="black", linewidth=0.8)
    for x, d, p in zip(decile_results["decile"], diffs, pvals):
        if np.isfinite(p) and p < alpha and np.isfinite(d):
            ax.annotate("*", (x, d), ha="center", va="bottom" if d >= 0 else "top", fontsize=14)

    ax.set_xticks(decile_results["decile"])
    ax.set_xlabel("Population density decile (1 = least dense)")
    ax.set_ylabel("Non-majority minus majority mean distance")
    ax.set_title(f"Difference in mean {label} distance (* p < {alpha})")
    return ax


def write_report(
    decile_results,
    units,
    coefficients,
    output_path,
    *,
    correlations=None,
    summary=None,
    title="Polling place proximity and Black population share, South Carolina",
    print_=True
):
    """
    Write the analysis report as a multi-page PDF.

    Pages: decile result table, statewide summary and correlations (when
    given), regression coefficients, then the distance/share scatter,
    decile mean bars and decile difference bars for both distance measures.

    Returns the output path.
    """
    out_dir = os.path.dirname(output_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    figures = [render_table_page(format_decile_table(decile_results), f"{title}\nResults by density decile")]

    if summary is not None:
        figures.append(render_table_page(prettify_dataset(summary, round_decimals=3), "Statewide comparison"))
    if correlations is not None:
        figures.append(render_table_page(prettify_dataset(correlations, round_decimals=4), "Correlations"))

    figures.append(render_table_page(prettify_dataset(coefficients, round_decimals=4), "OLS regression coefficients"))

    fig, ax = plt.subplots(figsize=(11, 8.5))
    plot_distance_by_share(units, ax=ax)
    figures.append(fig)

    for label in ("nearest", "five"):
        fig, ax = plt.subplots(figsize=(11, 8.5))
        plot_decile_means(decile_results, ax=ax, label=label)
        figures.append(fig)

        fig, ax = plt.subplots(figsize=(11, 8.5))
        plot_decile_differences(decile_results, ax=ax, label=label)
        figures.append(fig)

    with PdfPages(output_path) as pdf:
        for fig in figures:
            fig.tight_layout()
            pdf.savefig(fig)
            plt.close(fig)

    if print_:
        print(f"[write_report] Wrote {len(figures)} pages to {output_path}")

    return output_path
