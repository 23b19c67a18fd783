"""Global configuration for the China Unicom usage bot."""

import os
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

# Discord
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")

# Data directory (sqlite store lives here)
DATA_DIR = Path(os.getenv("UNICOM_DATA_DIR", "."))
UNICOM_DB_PATH = Path(os.getenv("UNICOM_DB_PATH", str(DATA_DIR / "china_unicom" / "data.db")))

# Calendar day boundaries for the daily snapshot are taken in this zone
UNICOM_TIMEZONE = ZoneInfo(os.getenv("UNICOM_TIMEZONE", "Asia/Shanghai"))

# Logging
LOG_DIR = Path(os.getenv("LOCALAPPDATA", ".")) / "unicom-bot" / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)
