"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _csv_env(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


# Shared secret expected in X-Api-Secret (empty disables the check)
API_SECRET: str = os.getenv("API_SECRET", "").strip()

# OpenAI (agent LLM). Used for OpenAI models when the key is set.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL_PREFIXES: tuple[str, ...] = ("gpt-", "o1", "o3", "o4")

# Hugging Face router (OpenAI-compatible chat completions) for every other model
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# Model selection
DEFAULT_MODEL: str = os.getenv("DEFAULT_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
FREE_MODEL_MARKER: str = "free"

# Generation defaults
DEFAULT_TEMPERATURE: float = 0.3
DEFAULT_TOP_P: float = 0.8
DEFAULT_MAX_TOKENS: int = 512
DEFAULT_SYSTEM_PROMPT: str = (
    "You are a polish legal assistant. Your answers are SHORT and precise. "
    "You use rich markdown syntax to format your answers."
)

# API timeouts (seconds)
LLM_API_TIMEOUT: float = 60.0
TOOLS_HTTP_TIMEOUT: float = 15.0
QUOTA_API_TIMEOUT: float = 10.0
MEMBERSHIP_API_TIMEOUT: float = 10.0

# Orchestrator
DIRECT_CONTEXT_MESSAGES: int = 3

# Legal acts search (sejm-stats vector search)
SEJM_STATS_BASE_URL: str = os.getenv("SEJM_STATS_BASE_URL", "https://sejm-stats.pl/apiInt").rstrip("/")
SEJM_STATS_RESULTS: int = 3

# Web search
WEB_SEARCH_MAX_RESULTS: int = 5

# Quota limits (per day)
PATRON_TOTAL_LIMIT: int = int(os.getenv("PATRON_TOTAL_LIMIT", "40"))
FREE_TOTAL_LIMIT: int = int(os.getenv("FREE_TOTAL_LIMIT", "5"))
FREE_PAID_MODEL_LIMIT: int = int(os.getenv("FREE_PAID_MODEL_LIMIT", "5"))

# Quota counting store: "sqlite" (local) or "supabase"
QUOTA_BACKEND: str = os.getenv("QUOTA_BACKEND", "sqlite").strip().lower() or "sqlite"
QUOTA_DB_PATH: str = os.getenv("QUOTA_DB_PATH", "data/quota.db").strip() or "data/quota.db"
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "").strip()

# Membership (Patronite patrons)
PATRONITE_API_URL: str = os.getenv("PATRONITE_API_URL", "").strip()
PATRONITE_API_KEY: str = os.getenv("PATRONITE_API_KEY", "").strip()
MEMBERSHIP_CACHE_SECONDS: float = 60.0
# Always treated as members, in addition to the fetched list
MEMBERSHIP_EXTRA_EMAILS: tuple[str, ...] = _csv_env("MEMBERSHIP_EXTRA_EMAILS")
# Used instead of the fetched list when the directory is unreachable
MEMBERSHIP_FALLBACK_EMAILS: tuple[str, ...] = _csv_env("MEMBERSHIP_FALLBACK_EMAILS")
