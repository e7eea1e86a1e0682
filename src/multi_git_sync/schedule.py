"""Cron expression handling on top of croniter.

Fire times are computed in local wall-clock time, so a schedule such as
``0 * * * *`` fires on the hour regardless of when the process started.
"""

import datetime
from typing import Iterator

from croniter import croniter

from .errors import ConfigError

CRON_FIELDS = 5


def validate(expr: str) -> str:
    """Checks that ``expr`` is a standard 5-field cron expression.

    Args:
        expr (str): The cron expression.

    Returns:
        str: The expression with surrounding whitespace removed.

    Raises:
        ConfigError: If the expression is malformed.
    """
    clean = " ".join(str(expr).split())
    if len(clean.split()) != CRON_FIELDS or not croniter.is_valid(clean):
        raise ConfigError(f"Invalid cron expression '{expr}'")
    return clean


def _aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.astimezone()
    return value


def fire_times(
    expr: str, start: datetime.datetime | None = None
) -> Iterator[datetime.datetime]:
    """Yields the fire times of ``expr`` strictly after ``start``, lazily.

    Args:
        expr (str): A valid 5-field cron expression.
        start (datetime | None): The reference time. Defaults to now (local).

    Yields:
        datetime: Timezone-aware fire times in ascending order.
    """
    base = _aware(start or datetime.datetime.now().astimezone())
    iterator = croniter(expr, base)
    while True:
        yield _aware(iterator.get_next(datetime.datetime))


def next_fire(
    expr: str, start: datetime.datetime | None = None
) -> datetime.datetime:
    """Returns the first fire time of ``expr`` after ``start``."""
    return next(fire_times(expr, start))
