"""
Karat Pricing - Centralized Configuration
==========================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")

if all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
else:
    # Local development / CI without PostgreSQL
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./karat_pricing.db")


# ==========================================
# 📈 Metal Price Feed
# ==========================================
METAL_PRICE_API_URL = os.getenv("METAL_PRICE_API_URL", "https://api.metals.dev/v1/latest")
METAL_PRICE_API_KEY = os.getenv("METAL_PRICE_API_KEY", "")
METAL_PRICE_CURRENCY = os.getenv("METAL_PRICE_CURRENCY", "INR")
METAL_PRICE_TIMEOUT = int(os.getenv("METAL_PRICE_TIMEOUT", "10"))  # seconds
METAL_PRICE_STALE_MINUTES = int(os.getenv("METAL_PRICE_STALE_MINUTES", "1440"))
METAL_PRICE_REFRESH_MINUTES = int(os.getenv("METAL_PRICE_REFRESH_MINUTES", "60"))


# ==========================================
# 🧮 Pricing Engine
# ==========================================
# Canonical sample used for configuration-level freezes
FREEZE_SAMPLE_GROSS_WEIGHT = Decimal(os.getenv("FREEZE_SAMPLE_GROSS_WEIGHT", "10"))
FREEZE_SAMPLE_NET_WEIGHT = Decimal(os.getenv("FREEZE_SAMPLE_NET_WEIGHT", "9.5"))

UNIT_COST_LABEL = "Unit Cost"
PREVIEW_SAMPLE_LIMIT = int(os.getenv("PREVIEW_SAMPLE_LIMIT", "10"))


# ==========================================
# 🔁 Recalculation Jobs
# ==========================================
SYNC_RECALC_THRESHOLD = int(os.getenv("SYNC_RECALC_THRESHOLD", "200"))  # below → inline
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
JOB_FAILURE_CAP = 100
JOB_ERROR_MAX_LENGTH = 200
CONFLICT_RETRY_LIMIT = int(os.getenv("CONFLICT_RETRY_LIMIT", "3"))
STALE_JOB_MINUTES = int(os.getenv("STALE_JOB_MINUTES", "10"))
RETRYABLE_JOB_WINDOW_HOURS = int(os.getenv("RETRYABLE_JOB_WINDOW_HOURS", "24"))
JOB_RETENTION_DAYS = int(os.getenv("JOB_RETENTION_DAYS", "30"))
JOB_POLL_SECONDS = int(os.getenv("JOB_POLL_SECONDS", "15"))


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_LEVEL_SQL = os.getenv("LOG_LEVEL_SQL", "WARNING")
LOG_LEVEL_HTTP = os.getenv("LOG_LEVEL_HTTP", "WARNING")
LOG_LEVEL_SCHEDULER = os.getenv("LOG_LEVEL_SCHEDULER", "WARNING")
