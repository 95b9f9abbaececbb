from pathlib import Path
import os

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in some environments
    load_dotenv = None

ROOT = Path(__file__).resolve().parents[1]

if load_dotenv:
    load_dotenv(ROOT / ".env")

DB_URL = os.getenv("TRAINING_DB_URL")
DB_PATH = Path(os.getenv("TRAINING_DB_PATH", ROOT / "data" / "training.db"))
API_HOST = os.getenv("TRAINING_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("TRAINING_API_PORT", "8000"))
RUN_MODE = os.getenv("RUN_MODE", "dev").lower()
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "TRAINING_CORS_ORIGINS",
        "http://127.0.0.1:8788,http://localhost:8788",
    ).split(",")
    if origin.strip()
]

# Duplicate detection tolerances
DEDUP_TIME_WINDOW_MIN = float(os.getenv("TRAINING_DEDUP_TIME_WINDOW_MIN", "5"))
DEDUP_DURATION_TOLERANCE_S = float(os.getenv("TRAINING_DEDUP_DURATION_TOLERANCE_S", "30"))
DEDUP_DISTANCE_TOLERANCE_M = float(os.getenv("TRAINING_DEDUP_DISTANCE_TOLERANCE_M", "100"))

# Performance management time constants (days)
CHRONIC_DAYS = float(os.getenv("TRAINING_CHRONIC_DAYS", "42"))
ACUTE_DAYS = float(os.getenv("TRAINING_ACUTE_DAYS", "7"))

# Load estimation for activities that arrive without a load scalar
FTP_W = float(os.getenv("TRAINING_FTP_W", "250"))
FALLBACK_INTENSITY = float(os.getenv("TRAINING_FALLBACK_INTENSITY", "0.7"))

# Best-effort curve
BEST_EFFORT_MAX_S = int(os.getenv("TRAINING_BEST_EFFORT_MAX_S", str(6 * 3600)))
RECENT_WINDOW_DAYS = int(os.getenv("TRAINING_RECENT_WINDOW_DAYS", "90"))
