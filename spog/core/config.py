import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/spog_inventory")

# Application Metadata
PROJECT_NAME = "SPOG Inventory Service"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Consumption pipeline
# "fallback" treats the entered amount as already being in the stocking unit, "reject" refuses the request
UNSUPPORTED_CONVERSION_POLICY = os.getenv("UNSUPPORTED_CONVERSION_POLICY", "fallback").lower()
MAX_COMMIT_RETRIES = int(os.getenv("MAX_COMMIT_RETRIES", 3)) # Re-reads after a lost compare-and-set

# Default thresholds as a share of the original amount when none are given on item creation
MIN_THRESHOLD_RATIO = float(os.getenv("MIN_THRESHOLD_RATIO", 0.2))
CRITICAL_THRESHOLD_RATIO = float(os.getenv("CRITICAL_THRESHOLD_RATIO", 0.1))

# Packaging sizes, in pieces. Global for every item.
PIECES_PER_BOX = int(os.getenv("PIECES_PER_BOX", 24))
PIECES_PER_PACK = int(os.getenv("PIECES_PER_PACK", 10))
PIECES_PER_SET = int(os.getenv("PIECES_PER_SET", 1))

# Role allowed to overwrite balances
ADMIN_ROLE = os.getenv("ADMIN_ROLE", "admin")
