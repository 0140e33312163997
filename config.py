import os
from dotenv import load_dotenv

load_dotenv()

# ---------- Config via env ----------
GEMINI_MODEL       = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_KEY         = os.getenv("GEMINI_API_KEY", "")
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))
GEMINI_MAX_TOKENS  = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "2048"))
ANALYZE_TIMEOUT    = float(os.getenv("ANALYZE_TIMEOUT", "60"))     # seconds, 0 disables

HISTORY_LIMIT      = int(os.getenv("HISTORY_LIMIT", "10"))
MAX_SESSIONS       = int(os.getenv("MAX_SESSIONS", "200"))
SESSION_COOKIE     = os.getenv("SESSION_COOKIE", "client_id")

# allowed drift between health_score and the formula before we log it
HEALTH_SCORE_TOLERANCE = int(os.getenv("HEALTH_SCORE_TOLERANCE", "1"))

LOG_LEVEL          = os.getenv("LOG_LEVEL", "INFO").upper()
PORT               = int(os.getenv("PORT", "8000"))
