import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sessionbook.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Timezone used when a user has not stored one
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")

# Scheduling
SLOT_WINDOW_DAYS = int(os.getenv("SLOT_WINDOW_DAYS", "30"))
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES", "30"))
RESCHEDULE_LEAD_HOURS = int(os.getenv("RESCHEDULE_LEAD_HOURS", "2"))
PENDING_HOLD_MINUTES = int(os.getenv("PENDING_HOLD_MINUTES", "15"))
DEFAULT_MIN_ADVANCE_HOURS = int(os.getenv("DEFAULT_MIN_ADVANCE_HOURS", "2"))
DEFAULT_MAX_ADVANCE_DAYS = int(os.getenv("DEFAULT_MAX_ADVANCE_DAYS", "7"))

# Pricing (all amounts in cents)
PLATFORM_FEE_PERCENT = int(os.getenv("PLATFORM_FEE_PERCENT", "20"))
LATE_CANCEL_PROCESSING_FEE_CENTS = int(os.getenv("LATE_CANCEL_PROCESSING_FEE_CENTS", "200"))
LATE_CANCEL_CUTOFF_HOURS = int(os.getenv("LATE_CANCEL_CUTOFF_HOURS", "2"))
PROVIDER_CANCEL_WARNING_HOURS = int(os.getenv("PROVIDER_CANCEL_WARNING_HOURS", "24"))
DEFAULT_RATE_15_CENTS = int(os.getenv("DEFAULT_RATE_15_CENTS", "1500"))
DEFAULT_RATE_30_CENTS = int(os.getenv("DEFAULT_RATE_30_CENTS", "2500"))
DEFAULT_RATE_60_CENTS = int(os.getenv("DEFAULT_RATE_60_CENTS", "6000"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

# External calendars
CALENDAR_HTTP_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_HTTP_TIMEOUT_SECONDS", "4"))
CALENDAR_CACHE_TTL_SECONDS = int(os.getenv("CALENDAR_CACHE_TTL_SECONDS", "300"))

# Google Calendar OAuth Configuration
# Note: GOOGLE_REDIRECT_URI should point to FRONTEND (not backend API)
# OAuth flow: Google → Frontend → Frontend sends code to Backend API
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", f"{FRONTEND_URL}/auth/google-calendar")

# Microsoft (Outlook) OAuth Configuration
MICROSOFT_CLIENT_ID = os.getenv("MICROSOFT_CLIENT_ID")
MICROSOFT_CLIENT_SECRET = os.getenv("MICROSOFT_CLIENT_SECRET")
MICROSOFT_REDIRECT_URI = os.getenv("MICROSOFT_REDIRECT_URI", f"{FRONTEND_URL}/auth/microsoft-calendar")

# Daily.co video rooms
DAILY_API_KEY = os.getenv("DAILY_API_KEY")
MEETING_ROOM_TIMEOUT_SECONDS = float(os.getenv("MEETING_ROOM_TIMEOUT_SECONDS", "5"))

# Dodo Payments Configuration
DODO_PAYMENTS_API_KEY = os.getenv("DODO_PAYMENTS_API_KEY")
DODO_PAYMENTS_WEBHOOK_SECRET = os.getenv("DODO_PAYMENTS_WEBHOOK_SECRET")
# "test_mode" or "live_mode" - default to test for safety
DODO_PAYMENTS_ENVIRONMENT = os.getenv("DODO_PAYMENTS_ENVIRONMENT", "test_mode")
# Adhoc product ID for pay-what-you-want sessions - one product covers every booking
DODO_ADHOC_PRODUCT_ID = os.getenv("DODO_ADHOC_PRODUCT_ID")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Sessionbook <noreply@sessionbook.app>")

# Redis (cache + background worker); caching is disabled when unset
REDIS_URL = os.getenv("REDIS_URL")
