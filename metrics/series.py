"""
Summaries and chart series over stored PFLOPS samples
"""

import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from models.chain import MetricSample

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

PERIODS: Dict[str, Optional[int]] = {
    "24h": DAY_MS,
    "7d": 7 * DAY_MS,
    "30d": 30 * DAY_MS,
    "all": None,
}


def _now_ms(now_ms: Optional[int]) -> int:
    return int(time.time() * 1000) if now_ms is None else now_ms


def filter_period(samples: Sequence[MetricSample], period: str = "all",
                  now_ms: Optional[int] = None) -> List[MetricSample]:
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    span = PERIODS[period]
    if span is None:
        return list(samples)
    now_ms = _now_ms(now_ms)
    return [s for s in samples if now_ms - s.timestamp <= span]


def summarize(samples: Sequence[MetricSample], now_ms: Optional[int] = None) -> Dict[str, Optional[float]]:
    """Current value plus the last 24 hours' average and peak."""
    if not samples:
        return {"current": None, "avg_24h": None, "peak_24h": None, "entries": 0}
    last_day = filter_period(samples, "24h", now_ms)
    values = [s.pflops for s in last_day]
    return {
        "current": samples[-1].pflops,
        "avg_24h": sum(values) / len(values) if values else None,
        "peak_24h": max(values) if values else None,
        "entries": len(samples),
    }


def chart_points(samples: Sequence[MetricSample], now_ms: Optional[int] = None) -> List[Dict[str, object]]:
    now_ms = _now_ms(now_ms)
    points = []
    for s in samples:
        moment = datetime.fromtimestamp(s.timestamp / 1000, tz=timezone.utc)
        # Recent points only need the time of day
        label = moment.strftime("%H:%M") if now_ms - s.timestamp < DAY_MS else moment.strftime("%b %d, %H:00")
        points.append({"label": label, "value": s.pflops, "timestamp": s.timestamp})
    return points
