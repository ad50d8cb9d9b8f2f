"""
Configuration settings for the South Carolina polling place proximity analysis.
"""
import os

# ---------------------------------------------------------------------------
# GLOBAL SETTINGS
# ---------------------------------------------------------------------------
# Census API Key (Get one at http://api.census.gov/data/key_signup.html)
# The decennial endpoints work without a key for small request volumes.
API_KEY = os.getenv("CENSUS_API_KEY", "")

# Decennial census year (2020 uses the P.L. 94-171 redistricting file)
YEAR = 2020

STATE = "SC"
STATE_FIPS = "45"

# Geography Level: 'tract' or 'block'
GEO_LEVEL = "tract"

# Projected CRS shared by census units and polling places.
# UTM zone 17N covers South Carolina; units are metres.
ANALYSIS_CRS = "EPSG:32617"

# ---------------------------------------------------------------------------
# CENSUS VARIABLES
# ---------------------------------------------------------------------------
# Format: year -> {'total': Total population, 'subgroup': Black alone}
CENSUS_VARIABLES = {
    2020: {"total": "P1_001N", "subgroup": "P1_004N"},
    2010: {"total": "P003001", "subgroup": "P003003"},
}

SUBGROUP_COL = "pop_black"
TOTAL_COL = "pop_total"
SHARE_COL = "black_share"

# ---------------------------------------------------------------------------
# ANALYSIS PARAMETERS
# ---------------------------------------------------------------------------
N_QUANTILES = 10
K_NEAREST = 5
MAJORITY_THRESHOLD = 0.5

# 'mean_available' averages every distance when fewer than K_NEAREST polling
# places exist; 'error' refuses to run.
MIN_PLACES_POLICY = "mean_available"

# ---------------------------------------------------------------------------
# FILE PATHS
# ---------------------------------------------------------------------------
OUTPUT_DIR = os.getenv("POLLING_ACCESS_OUTPUT_DIR", "output")
POLLING_PLACES_PATH = os.getenv("POLLING_PLACES_PATH", "data/sc_polling_places.csv")

DISTANCE_CACHE_NAME = "units_with_distances__{geography}.pkl"
RESULTS_NAME = "decile_results__{geography}.pkl"
REPORT_NAME = "polling_place_proximity__{geography}.pdf"
