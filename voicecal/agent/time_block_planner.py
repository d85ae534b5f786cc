"""
Time Block Planner: 빈 시간대 탐색
- 바쁜 구간(정렬 안 됨 가능)을 받아 최소 길이 이상의 빈 구간 계산
- 아이템 선호(시간대/요일/소요시간)에 따른 슬롯 추천
"""

import hashlib
from datetime import datetime, timedelta, tzinfo
from typing import Any, Iterable, List, Optional

from ..config import FREE_SLOT_DAYS, FREE_SLOT_MIN_MINUTES, LOCAL_TZ
from ..utils import ceil_to_hour
from .conflict_manager import matches_day_of_week, matches_time_of_day
from .normalizer import normalize_events
from .schemas import BusyInterval, FreeSlot, ItemAnalysis, SlotSuggestion

SUGGESTION_BASE_SCORE = 5.0
SUGGESTION_TIME_OF_DAY_BONUS = 2.0
SUGGESTION_DAY_OF_WEEK_BONUS = 1.5
SUGGESTION_RECENCY_PER_DAY = 0.3
SUGGESTION_RECENCY_HORIZON_DAYS = 7


def _naive_local(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(tz).replace(tzinfo=None)


def busy_intervals_from_events(raw_events: Any, tz: tzinfo = LOCAL_TZ) -> List[BusyInterval]:
    """All-day and unparseable events never become busy intervals."""
    report = normalize_events(raw_events, tz)
    return [
        BusyInterval(start=event.starts_at(), end=event.ends_at(), title=event.title)
        for event in report.events
    ]


class FreeSlotFinder:
    """바쁜 구간 사이의 빈 시간 계산"""

    def __init__(self, tz: tzinfo = LOCAL_TZ):
        self.tz = tz

    def find_free_slots(
        self,
        busy: Iterable[BusyInterval],
        window_start: datetime,
        window_end: Optional[datetime] = None,
        min_duration: int = FREE_SLOT_MIN_MINUTES,
        days_to_check: int = FREE_SLOT_DAYS,
    ) -> List[FreeSlot]:
        """
        사용 가능한 시간대 찾기

        Args:
            busy: 바쁜 구간 (정렬 불필요)
            window_start: 검색 시작 (다음 정시로 올림)
            window_end: 검색 끝; 없으면 window_start + days_to_check
            min_duration: 최소 빈 시간 (분)

        Returns:
            시간순 FreeSlot 목록
        """
        start = _naive_local(window_start, self.tz)
        end = (_naive_local(window_end, self.tz) if window_end is not None
               else start + timedelta(days=days_to_check))
        minimum = timedelta(minutes=max(0, min_duration))

        intervals = []
        for interval in busy:
            b_start = _naive_local(interval.start, self.tz)
            b_end = _naive_local(interval.end, self.tz)
            if b_end < b_start:
                continue
            if b_end <= start or b_start >= end:
                continue
            intervals.append((b_start, b_end))
        intervals.sort(key=lambda pair: pair[0])

        slots: List[FreeSlot] = []
        cursor = ceil_to_hour(start)
        for b_start, b_end in intervals:
            if cursor < b_start:
                self._emit(slots, cursor, b_start, minimum)
            cursor = ceil_to_hour(max(cursor, b_end))

        if cursor < end:
            self._emit(slots, cursor, end, minimum)
        return slots

    @staticmethod
    def _emit(slots: List[FreeSlot], start: datetime, end: datetime,
              minimum: timedelta) -> None:
        length = end - start
        if length < minimum or length <= timedelta(0):
            return
        slots.append(FreeSlot(
            start_time=start,
            end_time=end,
            duration_minutes=int(length.total_seconds() // 60),
            date=start.strftime("%Y-%m-%d"),
        ))

    def suggest_slots_for_item(
        self,
        item_id: str,
        analysis: ItemAnalysis,
        free_slots: Iterable[FreeSlot],
        now: Optional[datetime] = None,
        count: int = 3,
    ) -> List[SlotSuggestion]:
        """
        아이템 선호(시간대/요일/소요시간)로 빈 슬롯 점수화 후 상위 ``count`` 반환
        """
        estimated = max(1, analysis.estimated_duration)
        minimum = analysis.min_duration if analysis.min_duration is not None else min(estimated, 60)
        reference = _naive_local(now, self.tz) if now is not None else datetime.now(self.tz).replace(tzinfo=None)

        scored: List[SlotSuggestion] = []
        for slot in free_slots:
            start = _naive_local(slot.start_time, self.tz)
            available = int((_naive_local(slot.end_time, self.tz) - start).total_seconds() // 60)
            if available < minimum or available <= 0:
                continue
            scheduled = min(estimated, available)
            score = SUGGESTION_BASE_SCORE
            reasons = [f"Fits a {scheduled} minute window"]
            if matches_time_of_day(start, analysis.best_time_of_day):
                score += SUGGESTION_TIME_OF_DAY_BONUS
                reasons.append(f"Matches preferred {analysis.best_time_of_day} time")
            if matches_day_of_week(start, analysis.best_day_of_week):
                score += SUGGESTION_DAY_OF_WEEK_BONUS
                reasons.append(f"Falls on a preferred {analysis.best_day_of_week}")
            days_away = max(0, (start - reference).days)
            score += max(0, SUGGESTION_RECENCY_HORIZON_DAYS - days_away) * SUGGESTION_RECENCY_PER_DAY
            start_iso = start.isoformat()
            scored.append(SlotSuggestion(
                id=hashlib.sha1(f"{item_id}-{start_iso}".encode("utf-8")).hexdigest(),
                start_time=start,
                end_time=start + timedelta(minutes=scheduled),
                duration_minutes=scheduled,
                available_minutes=available,
                score=round(score, 2),
                confidence=round(min(0.95, 0.55 + score / 10), 2),
                reasoning=". ".join(reasons),
            ))

        scored.sort(key=lambda suggestion: (-suggestion.score, suggestion.start_time))
        return scored[:count]
