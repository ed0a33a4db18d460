from __future__ import annotations

import re


INTERVAL_RE = re.compile(r"^(\d+)(m|h|d|w)$")

# Minute units accepted by the venue's candle endpoint
MINUTE_UNITS = (1, 3, 5, 10, 15, 30, 60, 240)


def interval_to_seconds(interval: str) -> int:
    """Convert venue codes (1, 5, 240, D, W) or 1m/5m/1h/1d/1w into seconds."""
    code = interval.strip()
    if code.isdigit():
        minutes = int(code)
        if minutes not in MINUTE_UNITS:
            raise ValueError(f"Unsupported minute unit '{interval}'. Use one of {MINUTE_UNITS}.")
        return minutes * 60
    if code.upper() == "D":
        return 86400
    if code.upper() == "W":
        return 7 * 86400

    m = INTERVAL_RE.match(code)
    if not m:
        raise ValueError(f"Unsupported interval '{interval}'. Use like 1,5,60,D,W or 1m,5m,1h,1d,1w.")
    n = int(m.group(1))
    if n <= 0:
        raise ValueError(f"Interval must be positive, got '{interval}'.")
    unit = m.group(2)
    if unit == "m":
        return n * 60
    if unit == "h":
        return n * 3600
    if unit == "d":
        return n * 86400
    if unit == "w":
        return n * 7 * 86400
    raise ValueError(f"Unsupported interval unit '{unit}'.")


WEEK_SECONDS = 7 * 86400

# Weekly candles open on Monday 00:00 UTC; the epoch fell on a Thursday
WEEK_ORIGIN = 4 * 86400


def bucket_start(ts: int, interval_seconds: int) -> int:
    """Floor a Unix timestamp to the start of its bucket. Weekly buckets start on Monday."""
    origin = WEEK_ORIGIN if interval_seconds % WEEK_SECONDS == 0 else 0
    offset = ts - origin
    return offset - offset % interval_seconds + origin
