import os
from pathlib import Path

# Define the root directory of the project
ROOT_DIR = Path(__file__).resolve().parent

# Storage - flows are kept as one JSON file per flow id
FLOWS_DIR = Path(os.getenv("FLOWDIFF_FLOWS_DIR", ROOT_DIR / "flows"))
COMPONENTS_FILE = Path(os.getenv("FLOWDIFF_COMPONENTS_FILE", ROOT_DIR / "data" / "components.json"))

# Remote flow service (optional). When set, the catalog is fetched from it and single
# flows are read, diffed and written back through it. Listing and deleting stay local.
REMOTE_API_URL = os.getenv("FLOWDIFF_REMOTE_API_URL", "")
REMOTE_API_KEY = os.getenv("FLOWDIFF_REMOTE_API_KEY", "")
REQUEST_TIMEOUT = float(os.getenv("FLOWDIFF_REQUEST_TIMEOUT", "30"))

# App Defaults
HISTORY_MAX_ENTRIES = int(os.getenv("FLOWDIFF_HISTORY_MAX_ENTRIES", "50"))
LOG_LEVEL = os.getenv("FLOWDIFF_LOG_LEVEL", "INFO")
HOST = os.getenv("FLOWDIFF_HOST", "0.0.0.0")
PORT = int(os.getenv("FLOWDIFF_PORT", "8000"))
