# File: fleet_permits/core/timeutils.py
import time
from datetime import datetime, timezone
from typing import Optional


def utc_now_iso() -> str:
    """ISO timestamp in the format the web UI writes (millisecond precision, Z suffix)"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_to_ms(value: Optional[str]) -> Optional[int]:
    """Epoch milliseconds of an ISO timestamp, None when absent or unparseable"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
