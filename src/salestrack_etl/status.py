"""salestrack_etl.status

Lifecycle status derived from a job's dates.

Dates outrank whatever status text the feed carried: a job whose end date
has passed is completed, one that has started is active.  Only when the
dates say nothing does the feed's hint apply.
"""

from __future__ import annotations

from datetime import date

# Statuses the dates can derive; any other stored status came from the feed.
DATE_DRIVEN_STATUSES = frozenset({"planning", "active", "completed"})


def infer_status(
    start_date: date | None,
    end_date: date | None,
    hint: str | None,
    today: date,
    current: str | None = None,
) -> str:
    """Return the status a job should carry as of `today`.

    Rules, in order:
      1. end_date strictly before today      → 'completed'
      2. start_date on or before today       → 'active'
      3. the feed's status hint, if any
      4. `current` when it is a feed-only state such as 'pending'
      5. 'planning'

    Date-driven states never stick: an active job whose start date moves
    into the future goes back to planning.

    Callers skip this entirely when 'status' is a locked field.
    """
    if end_date is not None and end_date < today:
        return "completed"
    if start_date is not None and start_date <= today:
        return "active"
    if hint:
        return hint
    if current and current not in DATE_DRIVEN_STATUSES:
        return current
    return "planning"
