"""
Runtime configuration for the rental engine service.
Values come from the environment (optionally a .env file).
"""

import os
from dotenv import load_dotenv

load_dotenv()

# Database Configuration - PostgreSQL in production, SQLite for local dev
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv(
    "POSTGRES_URL",
    "sqlite+aiosqlite:///./rental_engine.db"
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Booking confirmation lock (per vehicle)
BOOKING_LOCK_TTL_SECONDS = int(os.getenv("BOOKING_LOCK_TTL_SECONDS", 30))
BOOKING_LOCK_WAIT_SECONDS = float(os.getenv("BOOKING_LOCK_WAIT_SECONDS", 5))
BOOKING_LOCK_RETRY_INTERVAL = float(os.getenv("BOOKING_LOCK_RETRY_INTERVAL", 0.05))

# Cached booking results for Idempotency-Key replays (24h)
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", 86400))

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "GBP")

# "global" counts every booked unit against max_quantity,
# "date_range" only counts rentals overlapping the requested dates
EXTRAS_STOCK_SCOPE = os.getenv("EXTRAS_STOCK_SCOPE", "global").lower()

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# Longest rental a quote or booking accepts, in days
MAX_RENTAL_DAYS = int(os.getenv("MAX_RENTAL_DAYS", 3660))
