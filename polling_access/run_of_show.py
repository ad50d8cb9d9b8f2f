# ------------------------------------------------------------------
# NOTE: Distances are cached after the first run in the output
# directory. Delete units_with_distances__<geography>.pkl (or pass
# --overwrite-cache) after changing the census or polling place inputs.
# ------------------------------------------------------------------

import os
import argparse
import warnings
import matplotlib
import pandas as pd

from polling_access import config
from polling_access.census_data import load_census_units
from polling_access.mapping_utilities import map_fips_and_state
from polling_access.polling_places import load_polling_places
from polling_access.unit_enrichment import enrich_units
from polling_access.nearest_distance import load_or_compute_distances, read_distance_cache
from polling_access.stratified_statistics import (
    compute_decile_results,
    correlate_share_and_distance,
    summarize_by_majority,
)
from polling_access.regression import fit_distance_models, coefficient_table
from polling_access.report import write_report

# disable SettingWithCopyWarning
pd.options.mode.chained_assignment = None

# Suppress all warnings from pyogrio
warnings.filterwarnings("ignore", module="pyogrio")


def run_analysis(
    geography=config.GEO_LEVEL,
    *,
    polling_places_path=config.POLLING_PLACES_PATH,
    output_dir=config.OUTPUT_DIR,
    year=config.YEAR,
    state_fips=config.STATE_FIPS,
    crs=config.ANALYSIS_CRS,
    api_key=config.API_KEY,
    geometry_source=None,
    attributes=None,
    n_quantiles=config.N_QUANTILES,
    k=config.K_NEAREST,
    method="brute",
    min_places_policy=config.MIN_PLACES_POLICY,
    overwrite_cache=False,
    print_=True
):
    """
    Run the full analysis for one geography level and write every artifact
    (distance cache, decile results, PDF report) to ``output_dir``.

    ``k`` sets how many nearest places are averaged; the result column is
    still named 'five_nearest_mean'.

    Returns a dict with 'units', 'decile_results', 'summary', 'correlations',
    'coefficients', 'results_path' and 'report_path'.
    """
    if year not in config.CENSUS_VARIABLES:
        raise ValueError(f"No census variables configured for {year}.")
    variables = config.CENSUS_VARIABLES[year]

    os.makedirs(output_dir, exist_ok=True)
    if print_:
        print(f"\nRunning polling place proximity analysis for {geography}s...")
        print(f"Output directory: {output_dir}")

    cache_path = os.path.join(output_dir, config.DISTANCE_CACHE_NAME.format(geography=geography))

    # ------------------------------------------------------------------
    # LOAD, ENRICH AND MEASURE (skipped when the distance cache exists)
    # ------------------------------------------------------------------
    units = None if overwrite_cache else read_distance_cache(cache_path, print_=print_)

    if units is None:
        places = load_polling_places(polling_places_path, crs=crs, print_=print_)
        units = load_census_units(
            year, state_fips, geography,
            crs=crs,
            api_key=api_key,
            subgroup_var=variables["subgroup"],
            total_var=variables["total"],
            subgroup_col=config.SUBGROUP_COL,
            total_col=config.TOTAL_COL,
            geometry_source=geometry_source,
            attributes=attributes,
            print_=print_
        )
        units = enrich_units(
            units,
            subgroup_col=config.SUBGROUP_COL,
            total_col=config.TOTAL_COL,
            share_col=config.SHARE_COL,
            print_=print_
        )
        units = load_or_compute_distances(
            units, places, cache_path,
            overwrite=True,
            k=k,
            method=method,
            min_places_policy=min_places_policy,
            print_=print_
        )

    # ------------------------------------------------------------------
    # STATISTICS
    # ------------------------------------------------------------------
    stat_kwargs = dict(
        share_col=config.SHARE_COL,
        threshold=config.MAJORITY_THRESHOLD,
    )
    decile_results = compute_decile_results(
        units, n_quantiles,
        subgroup_col=config.SUBGROUP_COL,
        total_col=config.TOTAL_COL,
        print_=print_,
        **stat_kwargs
    )
    summary = summarize_by_majority(units, **stat_kwargs)
    correlations = correlate_share_and_distance(
        units, share_col=config.SHARE_COL, by_decile=True, n_quantiles=n_quantiles
    )
    coefficients = coefficient_table(
        fit_distance_models(
            units, predictors=(config.SHARE_COL, "density", config.SUBGROUP_COL)
        )
    )

    results_path = os.path.join(output_dir, config.RESULTS_NAME.format(geography=geography))
    decile_results.to_pickle(results_path)
    if print_:
        print(f"Saved decile results to {results_path}")

    # ------------------------------------------------------------------
    # REPORT
    # ------------------------------------------------------------------
    report_path = write_report(
        decile_results, units, coefficients,
        os.path.join(output_dir, config.REPORT_NAME.format(geography=geography)),
        correlations=correlations,
        summary=summary,
        print_=print_
    )

    return {
        "units": units,
        "decile_results": decile_results,
        "summary": summary,
        "correlations": correlations,
        "coefficients": coefficients,
        "results_path": results_path,
        "report_path": report_path,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Compare distance to polling places for majority-Black and other census units."
    )
    parser.add_argument("geography", nargs="?", default=config.GEO_LEVEL, choices=["tract", "block"])
    parser.add_argument("--polling-places", default=config.POLLING_PLACES_PATH,
                        help="CSV (longitude/latitude) or geospatial file of polling places.")
    parser.add_argument("--output-dir", default=config.OUTPUT_DIR)
    parser.add_argument("--state", default=config.STATE, help="State abbreviation, e.g. SC.")
    parser.add_argument("--geometry", default=None,
                        help="Local TIGER/Line file to use instead of downloading it.")
    parser.add_argument("--attributes", default=None,
                        help="CSV of census counts (GEOID plus variable columns) to use instead of the Census API.")
    parser.add_argument("--method", default="brute", choices=["brute", "kdtree"])
    parser.add_argument("--overwrite-cache", action="store_true")
    args = parser.parse_args(argv)

    matplotlib.use("Agg")

    artifacts = run_analysis(
        args.geography,
        polling_places_path=args.polling_places,
        output_dir=args.output_dir,
        state_fips=map_fips_and_state(args.state.upper()),
        geometry_source=args.geometry,
        attributes=args.attributes,
        method=args.method,
        overwrite_cache=args.overwrite_cache,
    )
    print(artifacts["decile_results"].to_string(index=False))


if __name__ == "__main__":
    main()
