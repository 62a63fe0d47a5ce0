import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tour_office.db")

# Redis (optional) - rate configuration cache; the engine works without it
REDIS_URL = os.getenv("REDIS_URL")

# Rate configuration store
# JSON file with rules, weekday mapping, seasons and routes; built-in rates when unset
RATE_CONFIG_PATH = os.getenv("RATE_CONFIG_PATH")
RATE_CONFIG_CACHE_TTL = int(os.getenv("RATE_CONFIG_CACHE_TTL", "300"))

# Financial defaults (overridden by the rate configuration file when it sets them)
TAX_RATE = os.getenv("TAX_RATE", "0.091")  # 9.1% WA state + local
DEPOSIT_FRACTION = os.getenv("DEPOSIT_FRACTION", "0.5")
CURRENCY = os.getenv("CURRENCY", "USD")

# Proposal lifecycle
PROPOSAL_VALID_DAYS = int(os.getenv("PROPOSAL_VALID_DAYS", "14"))
DECLINE_REASON_MIN_LENGTH = int(os.getenv("DECLINE_REASON_MIN_LENGTH", "10"))
PROPOSAL_NUMBER_PREFIX = os.getenv("PROPOSAL_NUMBER_PREFIX", "PRO")
BOOKING_NUMBER_PREFIX = os.getenv("BOOKING_NUMBER_PREFIX", "WWT")

# Payment confirmation provider
# Endpoint receives GET {PAYMENT_VERIFICATION_URL}/{reference} with a Bearer key
PAYMENT_VERIFICATION_URL = os.getenv("PAYMENT_VERIFICATION_URL")
PAYMENT_API_KEY = os.getenv("PAYMENT_API_KEY")
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "30"))
