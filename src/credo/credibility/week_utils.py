"""Settlement week boundaries.

Weeks are ISO weeks ('2026-W09') evaluated in a fixed reset timezone and
shifted by the reset hour, so a week runs from Monday <reset_hour>:00 to the
next Monday <reset_hour>:00 regardless of where the user is. Week keys are
always recomputed from timestamps, never taken from the client.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from credo.config import Settings, get_settings


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def iso_week_to_monday(week_iso: str) -> date:
    """Convert '2026-W09' to the Monday date of that ISO week."""
    return datetime.strptime(week_iso + "-1", "%G-W%V-%u").date()


@dataclass(frozen=True)
class WeekClock:
    """Maps instants to settlement weeks for one reset timezone and hour."""

    tz_name: str = "UTC"
    reset_hour: int = 0

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def week_of(self, dt: datetime) -> str:
        """Settlement week containing an aware instant."""
        if dt.tzinfo is None:
            msg = "week_of() requires a timezone-aware datetime"
            raise ValueError(msg)
        local = dt.astimezone(self.tz) - timedelta(hours=self.reset_hour)
        return get_week_iso(local)

    def current_week(self, now: datetime | None = None) -> str:
        if now is None:
            now = datetime.now(timezone.utc)
        return self.week_of(now)

    def week_start(self, week_iso: str) -> datetime:
        """The reset instant opening ``week_iso``, in UTC."""
        monday = iso_week_to_monday(week_iso)
        local = datetime.combine(monday, time(self.reset_hour), tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def week_end(self, week_iso: str) -> datetime:
        """The reset instant closing ``week_iso`` (exclusive), in UTC."""
        return self.week_start(self.next_week(week_iso))

    def next_week(self, week_iso: str) -> str:
        return get_week_iso(iso_week_to_monday(week_iso) + timedelta(weeks=1))

    def previous_week(self, week_iso: str) -> str:
        return get_week_iso(iso_week_to_monday(week_iso) - timedelta(weeks=1))

    def is_closed(self, week_iso: str, now: datetime | None = None) -> bool:
        """True once the reset instant after ``week_iso`` has passed."""
        if now is None:
            now = datetime.now(timezone.utc)
        return now >= self.week_end(week_iso)

    def weeks_between(self, start_week: str, end_week: str) -> Iterator[str]:
        """Yield weeks from ``start_week`` (inclusive) to ``end_week`` (exclusive)."""
        week = start_week
        while week < end_week:
            yield week
            week = self.next_week(week)


def get_week_clock(settings: Settings | None = None) -> WeekClock:
    """Build the clock from the configured reset timezone and hour."""
    if settings is None:
        settings = get_settings()
    return WeekClock(settings.weekly_reset_timezone, settings.weekly_reset_hour)
