import os
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# 1. Load environment variables from .env file
load_dotenv()

DATABASE_URL = os.environ.get("DATABASE_URL")

# 2. Display timezone, organization wide. Pick a zone without DST.
DISPLAY_TZ = ZoneInfo(os.getenv("DISPLAY_TZ", "Asia/Kolkata"))
DISPLAY_TZ_NAME = os.getenv("DISPLAY_TZ_NAME", "IST")

# 3. Schedule / lifecycle knobs
SCHEDULE_DAYS = int(os.getenv("SCHEDULE_DAYS", "14"))
COMPLETION_SWEEP_SECONDS = int(os.getenv("COMPLETION_SWEEP_SECONDS", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
