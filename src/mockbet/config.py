import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Persistence
# Use absolute path anchored to this file location
BASE_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = BASE_DIR / "data"
# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = os.getenv("DB_PATH", str(DATA_DIR / "mockbet.db"))

# Notifications
DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")
DISCORD_HEALTH_WEBHOOK_URL = os.getenv("DISCORD_HEALTH_WEBHOOK_URL", "")

# Settlement Rules
FINISH_GRACE_HOURS = int(os.getenv("FINISH_GRACE_HOURS", "2")) # Used when a match has no end_time
DIAMOND_BONUS_RATE = float(os.getenv("DIAMOND_BONUS_RATE", "0.01")) # Diamonds per token of profit

# Placement Rules
DAILY_BET_LIMIT = int(os.getenv("DAILY_BET_LIMIT", "5")) # Simple + combo bets per UTC day
MIN_COMBO_SELECTIONS = 2
STARTING_TOKENS = int(os.getenv("STARTING_TOKENS", "1000"))
STARTING_DIAMONDS = int(os.getenv("STARTING_DIAMONDS", "0"))

# Scheduled Trigger
SETTLEMENT_INTERVAL_MINUTES = int(os.getenv("SETTLEMENT_INTERVAL_MINUTES", "5"))

# HTTP Trigger
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "5000"))
