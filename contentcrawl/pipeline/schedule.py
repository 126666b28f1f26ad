"""Adaptive scheduling.

Two controllers drive crawl frequency: a per-source interval that reacts to
each crawl outcome, and the global run cadence that reacts to the error rate
and yield of the last seven days of source metrics.
"""

from typing import Dict

from ..models import MetricsWindow

FAILURE_FACTOR = 1.5
HIGH_YIELD_FACTOR = 0.8
NO_YIELD_FACTOR = 1.2
HIGH_YIELD_THRESHOLD = 5

RECURRENCE_SECONDS: Dict[str, int] = {
    "hourly": 3600,
    "twicedaily": 12 * 3600,
    "daily": 24 * 3600,
}

RUN_MIN_INTERVAL = 30 * 60
RUN_MAX_INTERVAL = 2 * 24 * 3600
HIGH_ERROR_RATE = 0.2
LOW_ERROR_RATE = 0.05
HIGH_AVG_ITEMS = 10
HIGH_ERROR_FACTOR = 1.5
HEALTHY_FACTOR = 0.75
METRICS_WINDOW_DAYS = 7


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value to [lower, upper]."""
    return max(lower, min(value, upper))


def next_source_interval(
    current: int,
    min_interval: int,
    max_interval: int,
    success: bool,
    new_items: int,
) -> int:
    """
    Next fetch interval for a source after a crawl attempt.

    Failures back off by 1.5x. Successful crawls that brought more than five
    new items speed up by 0.8x, crawls that brought nothing slow down by 1.2x,
    anything in between keeps the interval. The result always lies in
    [min_interval, max_interval].
    """
    if not success:
        factor = FAILURE_FACTOR
    elif new_items > HIGH_YIELD_THRESHOLD:
        factor = HIGH_YIELD_FACTOR
    elif new_items == 0:
        factor = NO_YIELD_FACTOR
    else:
        factor = 1.0
    return int(round(clamp(current * factor, min_interval, max_interval)))


def recurrence_seconds(recurrence: str) -> int:
    """Base cadence in seconds for a named recurrence."""
    try:
        return RECURRENCE_SECONDS[recurrence]
    except KeyError:
        raise ValueError(
            f"Unknown recurrence '{recurrence}', expected one of {sorted(RECURRENCE_SECONDS)}"
        ) from None


def compute_next_run_interval(base_interval: int, window: MetricsWindow) -> int:
    """
    Seconds until the next global run.

    A window error rate above 20% stretches the base cadence by 1.5x. A rate
    below 5% with more than ten items per crawl on average shortens it to
    0.75x. The result is clamped to [30 minutes, 2 days].
    """
    if window.error_rate > HIGH_ERROR_RATE:
        factor = HIGH_ERROR_FACTOR
    elif window.error_rate < LOW_ERROR_RATE and window.avg_items > HIGH_AVG_ITEMS:
        factor = HEALTHY_FACTOR
    else:
        factor = 1.0
    return int(round(clamp(base_interval * factor, RUN_MIN_INTERVAL, RUN_MAX_INTERVAL)))
