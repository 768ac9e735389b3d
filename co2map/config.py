"""
Configuration for the co2map pipeline.

Every value can be overridden through an environment variable of the same
name prefixed with ``CO2MAP_``.
"""

import os
from pathlib import Path

# ======================================================
#  DATA SOURCES
# ======================================================
ARCHIVE_URL: str = os.getenv(
    "CO2MAP_ARCHIVE_URL",
    "https://downloads.climatetrace.org/v4.4.0/country_packages/co2e_100yr/ESP.zip",
)

WORK_DIR: Path = Path(os.getenv("CO2MAP_WORK_DIR", "data")).expanduser()
ARCHIVE_NAME: str = os.getenv("CO2MAP_ARCHIVE_NAME", "ESP.zip")
OUTPUT_CSV: Path = Path(
    os.getenv("CO2MAP_OUTPUT_CSV", os.path.join("public", "climatetrace_aggregated.csv"))
).expanduser()

# Dataset loaded by POST /datasets/default: an http(s) URL or a local path
DEFAULT_DATASET: str = os.getenv("CO2MAP_DEFAULT_DATASET", str(OUTPUT_CSV))

# ======================================================
#  NETWORK
# ======================================================
DOWNLOAD_TIMEOUT: int = int(os.getenv("CO2MAP_DOWNLOAD_TIMEOUT", "60"))
DOWNLOAD_RETRIES: int = int(os.getenv("CO2MAP_DOWNLOAD_RETRIES", "4"))
FETCH_TIMEOUT: int = int(os.getenv("CO2MAP_FETCH_TIMEOUT", "30"))

# ======================================================
#  LOGGING
# ======================================================
LOG_LEVEL: str = os.getenv("CO2MAP_LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
