from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.core.config import get_settings


def board_today(tz_name: str | None = None) -> date:
    """Calendar date at the board's home campus; deadlines are compared against it."""
    zone = ZoneInfo(tz_name or get_settings().board_timezone)
    return datetime.now(zone).date()
