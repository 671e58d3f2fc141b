from __future__ import annotations

from datetime import datetime
import os
import time
from zoneinfo import ZoneInfo

WIB_ZONE_NAME = "Asia/Jakarta"
WIB_ZONE = ZoneInfo(WIB_ZONE_NAME)

_configured = False


def configure_wib_timezone() -> None:
    """Pin the process clock to Western Indonesia Time (UTC+7)."""
    global _configured
    if _configured:
        return
    os.environ["TZ"] = WIB_ZONE_NAME
    if hasattr(time, "tzset"):
        time.tzset()
    _configured = True


def now_wib() -> datetime:
    return datetime.now(WIB_ZONE)


def now_wib_iso() -> str:
    return now_wib().isoformat()


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=WIB_ZONE)
    return parsed
