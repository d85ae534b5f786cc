from __future__ import annotations

import os
import re
from zoneinfo import ZoneInfo

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/New_York").strip() or "America/New_York"
LOCAL_TZ = ZoneInfo(APP_TIMEZONE)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CLOCK_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# -------------------------
# LLM 설정
# -------------------------
AGENT_INTENT_MODEL = os.getenv("AGENT_INTENT_MODEL", "gpt-5-nano").strip()
AGENT_SUMMARY_MODEL = os.getenv("AGENT_SUMMARY_MODEL", "gpt-5-nano").strip()
INTENT_MAX_COMPLETION_TOKENS = int(os.getenv("INTENT_MAX_COMPLETION_TOKENS", "2000"))
SUMMARY_MAX_COMPLETION_TOKENS = int(os.getenv("SUMMARY_MAX_COMPLETION_TOKENS", "600"))
OPENAI_REASONING_EFFORT = os.getenv("OPENAI_REASONING_EFFORT", "low").strip() or "low"
OPENAI_VERBOSITY = os.getenv("OPENAI_VERBOSITY", "low").strip() or "low"
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))

# -------------------------
# Google Calendar 설정
# -------------------------
ENABLE_GCAL = os.getenv("ENABLE_GCAL", "0") == "1"
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_TOKEN_URI = os.getenv("GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]
GCAL_MAX_RESULTS = 250

API_BASE = os.getenv("API_BASE", "/api")
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "")
cors_origins: list[str] = [
    origin.strip() for origin in CORS_ALLOW_ORIGINS.split(",") if origin.strip()
]

# -------------------------
# 대화 / 충돌 / 빈 시간 기본값
# -------------------------
MAX_FOLLOWUPS = int(os.getenv("MAX_FOLLOWUPS", "5"))
SUMMARY_THRESHOLD = int(os.getenv("SUMMARY_THRESHOLD", "8"))
HISTORY_KEEP_MESSAGES = int(os.getenv("HISTORY_KEEP_MESSAGES", "8"))
DEFAULT_DURATION_MINUTES = 60
ABORT_MESSAGE = "I'm having trouble understanding. Please add or delete events manually."
DEFAULT_FOLLOWUP_QUESTION = "Could you tell me a bit more about the event?"

ALTERNATIVE_STEP_MINUTES = int(os.getenv("ALTERNATIVE_STEP_MINUTES", "30"))
DAY_START_HOUR = int(os.getenv("DAY_START_HOUR", "8"))
DAY_END_HOUR = int(os.getenv("DAY_END_HOUR", "21"))
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", "7"))
DEFAULT_ALTERNATIVE_COUNT = 3

FREE_SLOT_MIN_MINUTES = int(os.getenv("FREE_SLOT_MIN_MINUTES", "120"))
FREE_SLOT_DAYS = int(os.getenv("FREE_SLOT_DAYS", "14"))
