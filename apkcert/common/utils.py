# apkcert/common/utils.py
import datetime
import os
from typing import Optional, Tuple

TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
DISPLAY_FMT = "%Y-%m-%d %H:%M:%S"


def to_ms(dt: datetime.datetime) -> int:
    """Milliseconds since the epoch for an aware datetime."""
    return int(dt.timestamp() * 1000)


def utc_now() -> datetime.datetime:
    """Current UTC time truncated to whole seconds (X.509 has no sub-second field)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


def add_years(dt: datetime.datetime, years: int) -> datetime.datetime:
    """
    Add calendar years to dt. Feb 29 rolls over to Mar 1 when the target
    year has no leap day.
    """
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        return dt.replace(year=dt.year + years, month=3, day=1)


def timestamped_paths(base_path: str, when: Optional[datetime.datetime] = None) -> Tuple[str, str]:
    """
    Insert a YYYYMMDD-HHMMSS stamp before the extension of base_path.
    Returns (keystore_path, report_path); the report is the .txt sibling.

      build/release.jks -> build/release-20240101-120000.jks,
                           build/release-20240101-120000.txt
    """
    when = when or datetime.datetime.now()
    stamp = when.strftime(TIMESTAMP_FMT)
    base, ext = os.path.splitext(base_path)
    return f"{base}-{stamp}{ext}", f"{base}-{stamp}.txt"
