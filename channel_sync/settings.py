import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


# --- Path Configuration ---
OUTPUT_DIR = BASE_DIR / os.getenv("OUTPUT_DIR", "output")
LOG_DIR = BASE_DIR / os.getenv("LOG_DIR", "logs")
LOG_LEVEL = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())

# --- Durable Store ---
# The "dataset" is a schema name; leave empty to use the connection's default.
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'channel_sync.db'}")
WAREHOUSE_SCHEMA = os.getenv("WAREHOUSE_SCHEMA") or None

ORDERS_TABLE = os.getenv("ORDERS_TABLE", "orders")
ORDER_ITEMS_TABLE = os.getenv("ORDER_ITEMS_TABLE", "order_items")
INVENTORY_TABLE = os.getenv("INVENTORY_TABLE", "inventory")
STOCKOUT_ALERT_TABLE = os.getenv("STOCKOUT_ALERT_TABLE", "stockout_alert")
SKU_MAPPING_TABLE = os.getenv("SKU_MAPPING_TABLE", "sku_mapping")
SYNC_LOCK_TABLE = os.getenv("SYNC_LOCK_TABLE", "sync_lock")

# --- Staging Merge ---
STAGING_BATCH_SIZE = _env_int("STAGING_BATCH_SIZE", 500)
# Rows streamed into a table cannot take part in a MERGE until the sink's
# buffer flushes. 90s is the observed safe value.
VISIBILITY_WAIT_SECONDS = _env_float("VISIBILITY_WAIT_SECONDS", 90)

RUN_LOCK_ENABLED = _env_bool("RUN_LOCK_ENABLED", True)
RUN_LOCK_TTL_SECONDS = _env_int("RUN_LOCK_TTL_SECONDS", 3600)

# --- Connectors ---
HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 30)
INTER_PAGE_DELAY_SECONDS = _env_float("INTER_PAGE_DELAY_SECONDS", 0.5)
INTER_WINDOW_DELAY_SECONDS = _env_float("INTER_WINDOW_DELAY_SECONDS", 5)
RATE_LIMIT_COOLDOWN_SECONDS = _env_float("RATE_LIMIT_COOLDOWN_SECONDS", 60)
TRANSIENT_BACKOFF_SECONDS = _env_float("TRANSIENT_BACKOFF_SECONDS", 5)
MAX_RATE_LIMIT_RETRIES = _env_int("MAX_RATE_LIMIT_RETRIES", 3)

MIN_REPORT_POLL_INTERVAL_SECONDS = 10
REPORT_POLL_INTERVAL_SECONDS = max(
    MIN_REPORT_POLL_INTERVAL_SECONDS, _env_float("REPORT_POLL_INTERVAL_SECONDS", 10)
)
REPORT_MAX_WAIT_SECONDS = _env_float("REPORT_MAX_WAIT_SECONDS", 600)
REPORT_WINDOW_DAYS = _env_int("REPORT_WINDOW_DAYS", 30)

DEFAULT_LOOKBACK_DAYS = _env_int("DEFAULT_LOOKBACK_DAYS", 30)
FULL_SYNC_LOOKBACK_DAYS = _env_int("FULL_SYNC_LOOKBACK_DAYS", 365)
DEFAULT_MAX_PAGES = _env_int("DEFAULT_MAX_PAGES", 20)
FULL_SYNC_MAX_PAGES = _env_int("FULL_SYNC_MAX_PAGES", 200)

SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")
SHOPIFY_PAGE_LIMIT = _env_int("SHOPIFY_PAGE_LIMIT", 250)
SHOPIFY_DEFAULT_CURRENCY = os.getenv("SHOPIFY_DEFAULT_CURRENCY", "JPY")

LWA_TOKEN_URL = os.getenv("LWA_TOKEN_URL", "https://api.amazon.com/auth/o2/token")
LOGISP_API_URL = os.getenv(
    "LOGISP_API_URL",
    "https://asia-northeast1-logisp-production.cloudfunctions.net/inventories",
)

# --- Marketplaces ---
# Report documents are UTF-8 except where the marketplace falls back to a
# legacy encoding.
MARKETPLACES = {
    "JP": {
        "endpoint": "sellingpartnerapi-fe.amazon.com",
        "marketplace_id": "A1VC38T7YXB528",
        "currency": "JPY",
        "fallback_encoding": "shift_jis",
    },
    "US": {
        "endpoint": "sellingpartnerapi-na.amazon.com",
        "marketplace_id": "ATVPDKIKX0DER",
        "currency": "USD",
        "fallback_encoding": "latin-1",
    },
    "CA": {
        "endpoint": "sellingpartnerapi-na.amazon.com",
        "marketplace_id": "A2EUQ1WTGCTBG2",
        "currency": "CAD",
        "fallback_encoding": "latin-1",
    },
    "MX": {
        "endpoint": "sellingpartnerapi-na.amazon.com",
        "marketplace_id": "A1AM78C64UM0Y8",
        "currency": "MXN",
        "fallback_encoding": "latin-1",
    },
}

# --- Inventory Locations ---
LOGISP_LOCATION = os.getenv("LOGISP_LOCATION", "Logisp")

# --- Stockout Forecasting ---
SALES_WINDOW_DAYS = _env_int("SALES_WINDOW_DAYS", 30)
CRITICAL_DAYS = _env_int("CRITICAL_DAYS", 7)
WARNING_DAYS = _env_int("WARNING_DAYS", 14)
REORDER_COVER_DAYS = _env_int("REORDER_COVER_DAYS", 30)
MAX_NOTIFIED_CRITICAL = _env_int("MAX_NOTIFIED_CRITICAL", 10)

# --- Webhook ---
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
WEBHOOK_TIMEOUT_SECONDS = _env_float("WEBHOOK_TIMEOUT_SECONDS", 15)

# --- Outputs ---
SAVE_ALERT_OUTPUT = _env_bool("SAVE_ALERT_OUTPUT", False)
ALERT_FILENAME_BASE = os.getenv("ALERT_FILENAME_BASE", "stockout_alerts")
