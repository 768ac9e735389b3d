"""
Deterministic pipeline rules.

This file exists to make limits, bounds and column aliases explicit and enforceable.
"""

NORMALIZED_DELIMITER = ","

# Input ceilings for uploaded / fetched datasets
MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_CSV_ROWS = 50_000
MAX_CSV_COLUMNS = 20

# Sanitizer bounds
NUMBER_CLAMP = 1e12
MAX_STRING_LENGTH = 200

# Record invariants
YEAR_MIN = 1900
YEAR_MAX = 2100

# Bounding box used as a validity heuristic for Spain
SPAIN_BOUNDS = {
    "lat": (27.6, 43.8),
    "lng": (-18.2, 4.3),
}

# Canonical field -> source headers, highest priority first
FIELD_ALIASES = {
    "region": ("region", "Region", "autonomous_community", "comunidad_autonoma"),
    "year": ("year", "Year", "año", "Año"),
    "sector": ("sector", "Sector", "industry", "industria"),
    "emissions": ("emissions", "Emissions", "emisiones", "co2", "CO2"),
    "lat": ("lat", "latitude"),
    "lng": ("lng", "lon", "longitude"),
}

EMISSIONS_METRIC = "emissions"

# Visual encoding
BUCKET_HIGH = 0.7
BUCKET_MEDIUM = 0.4
BUCKET_COLORS = {
    "high": "#ef4444",
    "medium": "#eab308",
    "low": "#22c55e",
    "neutral": "#e5e7eb",
}
MIN_RADIUS = 8.0
MAX_RADIUS = 50.0
BASE_ZOOM = 6

# Offline archive
SOURCES_SUFFIX = "_emissions_sources_v4_4_0.csv"
BATCH_HEADER = ("region", "year", "sector", "emissions")
KEY_SEPARATOR = "|"
