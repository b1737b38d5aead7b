import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

BASE_DIR = Path(__file__).resolve().parents[3]
DATA_DIR = Path(os.environ.get("ALTMIRROR_DATA_DIR") or BASE_DIR)

CARD_DB_DIR = DATA_DIR / "card_db"
CHECKPOINT_DIR = DATA_DIR / "checkpoints_db"
EXPORT_FILE = DATA_DIR / "exports" / "catalog.csv"

API_BASE_URL = os.environ.get("ALTERED_API_URL", "https://api.altered.gg")
DEFAULT_LOCALE = os.environ.get("ALTERED_LOCALE", "en-us")
ITEMS_PER_PAGE = 999

CHECKPOINT_PREFIX = "scrape"
TARGETED_PREFIX = "targeted"


@dataclass
class CrawlConfig:
    checkpoint_every: int = 10
    detail_delay: Tuple[float, float] = (0.2, 0.4)
    combination_delay: Tuple[float, float] = (0.2, 0.7)
    detail_rate_limit_cooldown: float = 2.0
    combination_rate_limit_cooldown: float = 5.0
    include_ocean_power: bool = False
    max_summary_errors: int = 10
