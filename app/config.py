import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --------------------------------------------------
# App
# --------------------------------------------------
APP_NAME = "Record Generation & Enrichment API"
API_PREFIX = "/v1"

ENV = os.getenv("ENV", "local")  # local | production
IS_PROD = ENV == "production"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# --------------------------------------------------
# Feature Flags
# --------------------------------------------------
USE_CELERY = os.getenv("USE_CELERY", "false").lower() == "true"

# --------------------------------------------------
# OpenAI
# --------------------------------------------------
# Checked when the model client is built, not at import
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.2"))
AI_REQUEST_TIMEOUT = int(os.getenv("AI_REQUEST_TIMEOUT", "60"))
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "3"))

# --------------------------------------------------
# Firestore (OPTIONAL)
# --------------------------------------------------
FIRESTORE_PROJECT = os.getenv("FIRESTORE_PROJECT")

if IS_PROD and not FIRESTORE_PROJECT:
    raise RuntimeError("FIRESTORE_PROJECT is required in production")

# In local/dev → in-memory record store

# --------------------------------------------------
# Redis / Celery
# --------------------------------------------------
REDIS_URL = os.getenv("REDIS_URL")

if USE_CELERY and not REDIS_URL:
    raise RuntimeError("REDIS_URL is required when USE_CELERY=true")

REDIS_PREFIX = os.getenv("REDIS_PREFIX", "recordgen:")

# ⏱️ JOB TTL (seconds) – default: 24 hours
JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", 60 * 60 * 24))

# A running job with no update for this long is failed as timed out
JOB_STALE_SECONDS = int(os.getenv("JOB_STALE_SECONDS", 15 * 60))

# --------------------------------------------------
# Generation limits
# --------------------------------------------------
MAX_ROW_COUNT = int(os.getenv("MAX_ROW_COUNT", "1000"))
DEFAULT_ROW_COUNT = int(os.getenv("DEFAULT_ROW_COUNT", "10"))
MAX_SLOT_RETRIES = int(os.getenv("MAX_SLOT_RETRIES", "2"))
MAX_USER_INPUT_LENGTH = int(os.getenv("MAX_USER_INPUT_LENGTH", "1000"))

# Enriched fields written to top-level record columns instead of `data`
DIRECT_FIELDS = tuple(
    f.strip()
    for f in os.getenv("DIRECT_FIELDS", "email,phone").split(",")
    if f.strip()
)

# Generated records missing these (when targeted) count as failures
IDENTIFYING_FIELDS = ("name", "company")
