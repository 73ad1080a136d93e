# config.py
import os
import logging
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger('config')


def _env_int(name, default=None):
    """Read an integer env var, falling back to default on missing/invalid values"""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default!r}")
        return default


# Basic configuration
BOT_MODULES = ["meme_contest"]
DISCORD_BOT_TOKEN = os.getenv('DISCORD_BOT_TOKEN')
GUILD_ID = _env_int('GUILD_ID')

# Channel used both for collecting memes and announcing winners
MEME_CHANNEL_ID = _env_int('MEME_CHANNEL_ID')

# Contest configuration
CONTEST_DURATION = timedelta(days=7)
TOP_MEMES = _env_int('TOP_MEMES', 3)

# Weekly announcement (Friday 12:00 Colombia time)
CONTEST_TIMEZONE = (os.getenv('CONTEST_TIMEZONE') or "America/Bogota").strip()
ANNOUNCEMENT_WEEKDAY = 4
ANNOUNCEMENT_HOUR = 12

# Reaction configuration: unicode emoji match by name, custom emoji by id
REACTION_EMOJIS = [
    "🤣",
    "😂",
    "974777892418519081",
    "956966036354265180",
    "954075635310035024",
    "930549056466485298",
]

# Slash commands
START_CONTEST_COMMAND = "startcontest"
WINNER_COMMAND = "winner"

# Announcement
ANNOUNCEMENT_HASHTAG = "#LaPlazaRulez!"
ATTACHMENT_DOWNLOAD_TIMEOUT = 30  # seconds

# Logging configuration
LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

def setup_logging(debug=False):
    """Configure logging for the entire bot"""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT
    )
    logging.getLogger('discord').setLevel(logging.WARNING)
