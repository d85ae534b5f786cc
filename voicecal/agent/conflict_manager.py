"""
Conflict Manager: 후보 일정 ↔ 기존 일정 충돌 관리
- 이종(heterogeneous) 이벤트 정규화 후 시간 겹침 감지
- 대안 시간 탐색 및 점수화
"""

from datetime import datetime, timedelta, tzinfo
from typing import Any, Iterable, List, Optional, Sequence

from ..config import (
    ALTERNATIVE_SEARCH_DAYS,
    ALTERNATIVE_STEP_MINUTES,
    DAY_END_HOUR,
    DAY_START_HOUR,
    DEFAULT_ALTERNATIVE_COUNT,
    LOCAL_TZ,
)
from .normalizer import normalize_event, normalize_events
from .schemas import (
    AlternativeSlot,
    CandidateEvent,
    ConflictResult,
    NormalizationReport,
    NormalizedEvent,
    SchedulingPreferences,
)

# Relative weights only; the ordering they produce is what matters.
BASE_SCORE = 10.0
DISTANCE_PENALTY_PER_HOUR = 1.0
SAME_DAY_BONUS = 3.0
TIME_OF_DAY_BONUS = 2.0
DAY_OF_WEEK_BONUS = 1.5

_TIME_OF_DAY_HOURS = {
    "morning": (6, 12),
    "afternoon": (12, 17),
    "evening": (17, 22),
}
_WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday",
                  "saturday", "sunday")


def intervals_overlap(start_a: datetime, end_a: datetime,
                      start_b: datetime, end_b: datetime) -> bool:
    """Half-open [start, end) intersection."""
    return start_a < end_b and start_b < end_a


def matches_time_of_day(moment: datetime, preference: Optional[str]) -> bool:
    bounds = _TIME_OF_DAY_HOURS.get((preference or "any").strip().lower())
    if bounds is None:
        return False
    return bounds[0] <= moment.hour < bounds[1]


def matches_day_of_week(moment: datetime, preference: Optional[str]) -> bool:
    pref = (preference or "any").strip().lower()
    if pref == "any" or not pref:
        return False
    weekday = moment.weekday()
    if pref in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES[weekday] == pref
    if pref == "weekend":
        return weekday >= 5
    if pref == "weekday":
        return weekday < 5
    return False


class ConflictEngine:
    """충돌 감지 및 대안 제시. 상태 없음 (no side effects)."""

    def __init__(self,
                 step_minutes: int = ALTERNATIVE_STEP_MINUTES,
                 day_start_hour: int = DAY_START_HOUR,
                 day_end_hour: int = DAY_END_HOUR,
                 search_days: int = ALTERNATIVE_SEARCH_DAYS,
                 tz: tzinfo = LOCAL_TZ):
        self.step_minutes = max(1, step_minutes)
        self.day_start_hour = day_start_hour
        self.day_end_hour = day_end_hour
        self.search_days = max(1, search_days)
        self.tz = tz

    def normalize_event(self, raw: Any) -> Optional[NormalizedEvent]:
        return normalize_event(raw, self.tz)

    def normalize_events(self, raw_events: Any) -> NormalizationReport:
        return normalize_events(raw_events, self.tz)

    def check_conflict(self,
                       candidate: CandidateEvent,
                       events: Iterable[NormalizedEvent]) -> ConflictResult:
        """
        후보 일정과 기존 일정 간 충돌 감지

        Returns:
            ConflictResult; ``conflicting_event`` is the first overlap in input
            order, ``conflicts`` holds every overlap for display.
        """
        start = candidate.starts_at()
        end = candidate.ends_at()
        conflicts = [
            event for event in events
            if intervals_overlap(start, end, event.starts_at(), event.ends_at())
        ]
        return ConflictResult(
            has_conflict=bool(conflicts),
            conflicting_event=conflicts[0] if conflicts else None,
            conflicts=conflicts,
        )

    def get_alternative_suggestions(
        self,
        candidate: CandidateEvent,
        events: Sequence[NormalizedEvent],
        count: int = DEFAULT_ALTERNATIVE_COUNT,
        preferences: Optional[SchedulingPreferences] = None,
        now: Optional[datetime] = None,
    ) -> List[AlternativeSlot]:
        """
        요청한 날짜부터 빈 시간대를 찾아 점수순으로 반환

        The requested day is scanned first; following days are only scanned
        while fewer than ``count`` open windows have been found.
        """
        if count <= 0:
            return []
        requested_start = candidate.starts_at()
        duration = timedelta(minutes=candidate.duration_minutes)
        busy = [(event.starts_at(), event.ends_at()) for event in events]
        if now is not None and now.tzinfo is not None:
            now = now.astimezone(self.tz).replace(tzinfo=None)

        scored: List[AlternativeSlot] = []
        for day_offset in range(self.search_days):
            day = requested_start.date() + timedelta(days=day_offset)
            for window_start in self._day_windows(day, duration):
                if window_start == requested_start:
                    continue
                if now is not None and window_start < now:
                    continue
                window_end = window_start + duration
                if any(intervals_overlap(window_start, window_end, b_start, b_end)
                       for b_start, b_end in busy):
                    continue
                scored.append(self._score_window(window_start, window_end,
                                                 requested_start, preferences))
            if len(scored) >= count:
                break

        scored.sort(key=lambda slot: (-slot.score, slot.date, slot.time))
        return scored[:count]

    def _day_windows(self, day, duration: timedelta) -> Iterable[datetime]:
        cursor = datetime(day.year, day.month, day.day, self.day_start_hour)
        day_end = datetime(day.year, day.month, day.day) + timedelta(hours=self.day_end_hour)
        step = timedelta(minutes=self.step_minutes)
        while cursor + duration <= day_end:
            yield cursor
            cursor += step

    def _score_window(self,
                      start: datetime,
                      end: datetime,
                      requested_start: datetime,
                      preferences: Optional[SchedulingPreferences]) -> AlternativeSlot:
        hours_away = abs((start - requested_start).total_seconds()) / 3600
        same_day = start.date() == requested_start.date()
        score = BASE_SCORE - hours_away * DISTANCE_PENALTY_PER_HOUR
        reasons = []
        if same_day:
            score += SAME_DAY_BONUS
            reasons.append("same day")
        else:
            reasons.append(start.strftime("%A"))
        reasons.append(f"{hours_away:g}h from the requested time")
        if preferences is not None:
            if matches_time_of_day(start, preferences.time_of_day):
                score += TIME_OF_DAY_BONUS
                reasons.append(f"preferred {preferences.time_of_day}")
            if matches_day_of_week(start, preferences.day_of_week):
                score += DAY_OF_WEEK_BONUS
                reasons.append(f"preferred {preferences.day_of_week}")
        return AlternativeSlot(
            date=start.strftime("%Y-%m-%d"),
            time=start.strftime("%H:%M"),
            end_time=end.strftime("%H:%M"),
            duration_minutes=int((end - start).total_seconds() // 60),
            score=round(score, 2),
            same_day=same_day,
            reason=", ".join(reasons),
        )
