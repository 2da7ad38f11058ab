"""
showsync Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)


class Config:
    """Application configuration."""

    # Database: must be set in .env
    DATABASE_URL = os.getenv('DATABASE_URL')
    if not DATABASE_URL:
        _logger.critical("DATABASE_URL is not set, cannot start. Copy .env.example to .env and configure it.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    # Seconds before giving up on a database connection
    DB_CONNECT_TIMEOUT = int(os.getenv('DB_CONNECT_TIMEOUT', '10'))

    # Calendar day boundaries are computed in this zone
    TIMEZONE = os.getenv('TIMEZONE', 'UTC')

    # Derived schedule markers (minutes)
    LODGING_MARKER_MINUTES = int(os.getenv('LODGING_MARKER_MINUTES', '15'))
    CATERING_MARKER_MINUTES = int(os.getenv('CATERING_MARKER_MINUTES', '30'))
    DEFAULT_ITEM_MINUTES = int(os.getenv('DEFAULT_ITEM_MINUTES', '30'))

    # Grid saves: parallel updates per chunk
    GRID_UPDATE_CHUNK_SIZE = int(os.getenv('GRID_UPDATE_CHUNK_SIZE', '25'))

    # Timeline layout
    TIMELINE_PX_PER_MINUTE = float(os.getenv('TIMELINE_PX_PER_MINUTE', '1.25'))
    TIMELINE_MIN_ITEM_PX = int(os.getenv('TIMELINE_MIN_ITEM_PX', '18'))


# Singleton instance
config = Config()
