import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gamenight.db")

# Magic link signing - CRITICAL: No default secret in production
MAGIC_TOKEN_SECRET = os.getenv("MAGIC_TOKEN_SECRET")
if not MAGIC_TOKEN_SECRET:
    import warnings

    warnings.warn(
        "MAGIC_TOKEN_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    MAGIC_TOKEN_SECRET = "INSECURE-DEV-MAGIC-TOKEN-SECRET-CHANGE-ME"  # noqa: S105 - Dev fallback only

MAGIC_TOKEN_ALGORITHM = os.getenv("MAGIC_TOKEN_ALGORITHM", "HS256")
MAGIC_TOKEN_AUDIENCE = os.getenv("MAGIC_TOKEN_AUDIENCE", "availability-form")
MAGIC_TOKEN_ISSUER = os.getenv("MAGIC_TOKEN_ISSUER", "gamenight.app")

# Token lifetimes
DEFAULT_TOKEN_EXPIRY_HOURS = int(os.getenv("DEFAULT_TOKEN_EXPIRY_HOURS", "168"))  # 7 days
TOKEN_GRACE_PERIOD_MINUTES = int(os.getenv("TOKEN_GRACE_PERIOD_MINUTES", "5"))

# Prompt defaults (overridden per group by GroupPromptSettings)
DEFAULT_DEADLINE_HOURS = int(os.getenv("DEFAULT_DEADLINE_HOURS", "72"))
DEFAULT_MIN_PARTICIPANTS = int(os.getenv("DEFAULT_MIN_PARTICIPANTS", "2"))
DEFAULT_SESSION_MINUTES = int(os.getenv("DEFAULT_SESSION_MINUTES", "60"))
MAX_REMINDERS_PER_USER = int(os.getenv("MAX_REMINDERS_PER_USER", "2"))
MANUAL_REMINDER_COOLDOWN_HOURS = int(os.getenv("MANUAL_REMINDER_COOLDOWN_HOURS", "24"))

# Suggestion scoring weights
SUGGESTION_PARTICIPANT_WEIGHT = float(os.getenv("SUGGESTION_PARTICIPANT_WEIGHT", "1.0"))
SUGGESTION_PREFERRED_WEIGHT = float(os.getenv("SUGGESTION_PREFERRED_WEIGHT", "0.5"))

# Frontend base URL for availability form links
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Game Night <noreply@gamenight.app>")
EMAIL_SEND_TIMEOUT = float(os.getenv("EMAIL_SEND_TIMEOUT", "15"))

# ARQ queue concurrency - reminders run lower to respect email rate limits
ARQ_PROMPT_MAX_JOBS = int(os.getenv("ARQ_PROMPT_MAX_JOBS", "3"))
ARQ_REMINDER_MAX_JOBS = int(os.getenv("ARQ_REMINDER_MAX_JOBS", "2"))
ARQ_DEADLINE_MAX_JOBS = int(os.getenv("ARQ_DEADLINE_MAX_JOBS", "5"))
ARQ_JOB_TIMEOUT = int(os.getenv("ARQ_JOB_TIMEOUT", "300"))

# Identity provider for dashboard users (JWKS-verified bearer tokens)
IDP_JWKS_URL = os.getenv("IDP_JWKS_URL")
IDP_AUDIENCE = os.getenv("IDP_AUDIENCE")
IDP_ISSUER = os.getenv("IDP_ISSUER")
IDP_JWKS_TIMEOUT = float(os.getenv("IDP_JWKS_TIMEOUT", "10"))
