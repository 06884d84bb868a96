from __future__ import annotations
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
DATA = ROOT / "data"
RAW = DATA / "raw"
REPORTS = ROOT / "reports"
FIGURES = REPORTS / "figures"

# raw files as distributed with the study
RAW_SITES = RAW / "sites.gpkg"
RAW_EXPLORATION_CSV = RAW / "exploration.csv"
RAW_PERCEPTION_CSV = RAW / "perception.csv"
RAW_DISSECTION_CSV = RAW / "dissection.csv"

# keys
KEYS = ["site"]  # join key shared by every table

STAGES = {"a": "adult", "s": "subadult"}
DATE_FORMAT = "%d/%m/%Y"

# landscape metrics per buffer radius: perimeter/area, habitat %, artificial matrix %, largest patch
BUFFER_VARIABLES = {
    "10m": ["para_10m", "habitat_10m", "matrix_10m", "lpi_10m"],
    "50m": ["para_50m", "habitat_50m", "matrix_50m", "lpi_50m"],
}
# PC1 is flipped so this loading is positive -> positive score = less urbanized
ORIENT_BY = {"10m": "habitat_10m", "50m": "habitat_50m"}
URBANIZATION_COLUMNS = {"10m": "urb_10m", "50m": "urb_50m"}

# dissection: foot dry mass is modelled in mg
DISSECTION_SCALE = 1000.0

# simulation
N_DRAWS = 5000
CI_LEVEL = 0.95
SEED = 20240521
