"""Centralized application constants: single source of truth for hardcoded values."""

# --- Session ---
COOKIE_NAME = "sharesub_session"

# --- Step-up token purposes ---
PURPOSE_VERIFY_EMAIL = "verify_email"
PURPOSE_RESET_PASSWORD = "reset_password"

# --- Plans ---
CYCLE_FREQUENCIES = ("weekly", "monthly", "yearly")
RECURRING_INTERVALS = {
    "weekly": "week",
    "monthly": "month",
    "yearly": "year",
}
MINOR_UNITS_PER_MAJOR = 100

# --- Membership states ---
STATUS_NOT_JOINED = "not_joined"
STATUS_PENDING_SETUP = "pending_setup"
STATUS_ACTIVE = "active"

# --- Stripe ---
PAYMENT_METHOD_TYPES = ["card", "link"]
PRORATION_NONE = "none"

# --- Plan locks ---
PLAN_LOCK_TIMEOUT = 30  # seconds a Redis lock may be held
PLAN_LOCK_BLOCKING_TIMEOUT = 10  # seconds to wait for a Redis lock

# --- Worker ---
ARQ_MAX_JOBS = 10
ARQ_JOB_TIMEOUT = 600  # seconds (10 min)
PENDING_SETUP_TTL_HOURS = 24
