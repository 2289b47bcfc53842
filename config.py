"""
Application configuration, read once from the environment at import time.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

PRODUCT_CACHE_TTL = float(os.getenv("PRODUCT_CACHE_TTL", "60"))
PRODUCT_SORT = os.getenv("PRODUCT_SORT", "id")  # id | newest

SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))

MAX_SCREENSHOT_BYTES = int(os.getenv("MAX_SCREENSHOT_BYTES", str(10 * 1024 * 1024)))

OWNER_PHONE = os.getenv("OWNER_PHONE", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
