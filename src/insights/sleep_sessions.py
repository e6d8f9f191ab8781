"""Sleep session reconstruction from fragmented sleep-stage samples.

Wearables report sleep as many short stage intervals (core, deep, REM...)
with small gaps where the wearer briefly woke.  The reconstructor stitches
those fragments back into sessions and picks out the night that just ended.

Algorithm:
  1. Drop non-asleep stages (in bed, awake) and sort by start time.
  2. Start a new session whenever the gap between the previous fragment's
     end and the next fragment's start exceeds ``session_gap`` (1 hour).
  3. "Tonight's sleep" is every session that ends no earlier than
     ``night_window`` (8 hours) before the most recent session ends and
     starts inside the typical sleep window (local hour ≥ 18 or < 14).
  4. Bed time is the earliest qualifying start, wake time the latest end,
     and the total is the sum of the qualifying session spans, so a gap
     between two sessions is never counted as sleep.

No samples, or no qualifying session, means "no data" (None), never zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable

from src.insights.base import OLDEST_FIRST, CategorySample
from src.insights.config_loader import SleepSessionConfig
from src.insights.dates import to_local
from src.insights.query_service import HealthQueryService

logger = logging.getLogger("murmur.insights.sleep_sessions")


@dataclass
class SleepSession:
    """A contiguous block of sleep built from one or more stage samples.

    Attributes:
        start:        Start of the first fragment.
        end:          Latest end among the fragments.
        sample_count: Number of fragments merged into the session.
    """

    start: datetime
    end: datetime
    sample_count: int = 1

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600


@dataclass
class SleepSummary:
    """Last night's sleep as presented to the user.

    Attributes:
        bed_time:    Earliest start among qualifying sessions.
        wake_time:   Latest end among qualifying sessions.
        total_hours: Sum of qualifying session durations.
        sessions:    The qualifying sessions, oldest first.
    """

    bed_time: datetime
    wake_time: datetime
    total_hours: float
    sessions: list[SleepSession] = field(default_factory=list)


class SleepSessionReconstructor:
    """Merges raw sleep samples into sessions and finds last night's sleep.

    Args:
        config: Sleep session settings (gap, night window, sleep window hours).
        tz:     Local time zone used for the sleep-window hour check.
    """

    def __init__(self, config: SleepSessionConfig | None = None, tz: tzinfo = timezone.utc) -> None:
        self.config = config or SleepSessionConfig()
        self.tz = tz

    def reconstruct(self, samples: Iterable[CategorySample]) -> list[SleepSession]:
        """Group asleep-stage samples into sessions, oldest first."""
        asleep = sorted(
            (s for s in samples if s.sleep_stage.is_asleep and s.end > s.start),
            key=lambda s: s.start,
        )
        sessions: list[SleepSession] = []
        current: SleepSession | None = None

        for sample in asleep:
            if current is None:
                current = SleepSession(start=sample.start, end=sample.end)
                continue
            if sample.start - current.end > self.config.session_gap:
                sessions.append(current)
                current = SleepSession(start=sample.start, end=sample.end)
            else:
                # Overlapping stage samples must not shrink the session
                current.end = max(current.end, sample.end)
                current.sample_count += 1

        if current is not None:
            sessions.append(current)
        return sessions

    def _in_sleep_window(self, start: datetime) -> bool:
        hour = to_local(start, self.tz).hour
        return (
            hour >= self.config.sleep_window_start_hour
            or hour < self.config.sleep_window_end_hour
        )

    def tonight(self, samples: Iterable[CategorySample]) -> SleepSummary | None:
        """Return last night's sleep, or None when there is nothing to report."""
        sessions = self.reconstruct(samples)
        if not sessions:
            return None

        most_recent_end = max(s.end for s in sessions)
        cutoff = most_recent_end - self.config.night_window
        qualifying = [
            s for s in sessions if s.end >= cutoff and self._in_sleep_window(s.start)
        ]
        if not qualifying:
            logger.debug(
                "No sleep session in the typical sleep window (%d sessions found)",
                len(sessions),
            )
            return None

        total = sum((s.duration for s in qualifying), timedelta())
        return SleepSummary(
            bed_time=min(s.start for s in qualifying),
            wake_time=max(s.end for s in qualifying),
            total_hours=total.total_seconds() / 3600,
            sessions=qualifying,
        )

    async def fetch_tonight(
        self, queries: HealthQueryService, now: datetime
    ) -> SleepSummary | None:
        """Query the recent lookback window and summarise last night's sleep.

        Raises:
            QueryTimeoutError: If the provider query times out.
        """
        start = now - timedelta(hours=self.config.recent_lookback_hours)
        samples = await queries.fetch_sleep_samples(start, now, sort=OLDEST_FIRST)
        return self.tonight(samples)
