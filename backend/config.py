from dotenv import load_dotenv
from pathlib import Path
import os

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "factory_production")
TRAINING_MODE = os.environ.get("TRAINING_MODE", "false").lower() == "true"

# Stage guard: how long a transition may wait for its stage lock (and for
# revision conflicts to clear) before giving up with ConcurrencyTimeout
STAGE_LOCK_TIMEOUT_SECONDS = float(os.environ.get("STAGE_LOCK_TIMEOUT_SECONDS", "5"))
STALE_REVISION_BACKOFF_SECONDS = float(os.environ.get("STALE_REVISION_BACKOFF_SECONDS", "0.05"))

# Nightly process-record reconciliation sweep
ENABLE_SCHEDULER = os.environ.get("ENABLE_SCHEDULER", "false").lower() == "true"
RECONCILE_SWEEP_HOUR = int(os.environ.get("RECONCILE_SWEEP_HOUR", "2"))
SCHEDULER_TIMEZONE = os.environ.get("SCHEDULER_TIMEZONE", "America/New_York")

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
