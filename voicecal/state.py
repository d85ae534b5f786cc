from __future__ import annotations

import copy
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, List, Optional

from .config import DEFAULT_DURATION_MINUTES, LOCAL_TZ
from .errors import NotFoundError, ValidationError
from .models import Event
from .utils import _log_debug, _now_iso_minute

# 메모리 저장 (프로세스 재시작 시 사라짐)


def _naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(LOCAL_TZ).replace(tzinfo=None)


def _parse_start(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value[:16], "%Y-%m-%dT%H:%M")
    except (TypeError, ValueError):
        return None


class LocalCalendarProvider:
    """In-memory calendar used when no Google credentials are supplied.

    Implements the same async collaborator interface as the Google provider.
    """

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        self._events: List[Event] = []
        self._next_id = 1
        self._lock = Lock()
        for raw in events or []:
            self._insert(raw)

    def _insert(self, raw: Dict[str, Any]) -> Event:
        data = dict(raw)
        with self._lock:
            if data.get("id") in (None, ""):
                data["id"] = str(self._next_id)
            data["id"] = str(data["id"])
            self._next_id += 1
            data.setdefault("createdAt", _now_iso_minute())
            event = Event.model_validate(data)
            self._events.append(event)
            return event

    def list_events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.model_dump(by_alias=True) for e in self._events]

    def _fetch_sync(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        range_start = _naive(start)
        range_end = _naive(end)
        matched: List[Dict[str, Any]] = []
        with self._lock:
            for ev in self._events:
                ev_start = _parse_start(ev.start)
                if ev_start is None:
                    # Unparseable entries are handed on; normalization drops them.
                    matched.append(ev.model_dump(by_alias=True))
                    continue
                ev_end = _parse_start(ev.end) if ev.end else None
                if ev_end is None:
                    ev_end = ev_start + timedelta(minutes=DEFAULT_DURATION_MINUTES)
                if ev.all_day:
                    ev_end = ev_start + timedelta(days=1)
                if ev_start < range_end and ev_end > range_start:
                    matched.append(ev.model_dump(by_alias=True))
        return copy.deepcopy(matched)

    async def fetch_events(self, start: datetime,
                           end: datetime) -> List[Dict[str, Any]]:
        return self._fetch_sync(start, end)

    async def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        date_value = event.get("date")
        time_value = event.get("time")
        if not date_value or not time_value:
            raise ValidationError("date and time are required")
        start_dt = datetime.strptime(f"{date_value}T{time_value}", "%Y-%m-%dT%H:%M")
        minutes = int(event.get("durationMinutes") or DEFAULT_DURATION_MINUTES)
        end_dt = start_dt + timedelta(minutes=minutes)
        data = {
            key: value for key, value in event.items()
            if key not in ("date", "time", "durationMinutes")
        }
        data["start"] = start_dt.strftime("%Y-%m-%dT%H:%M")
        data["end"] = end_dt.strftime("%Y-%m-%dT%H:%M")
        created = self._insert(data)
        _log_debug(f"[EVENT STORE] created {created.id} {created.title} {created.start}")
        return created.model_dump(by_alias=True)

    async def delete_event(self, event_id: str) -> bool:
        with self._lock:
            for idx, ev in enumerate(self._events):
                if ev.id == str(event_id):
                    del self._events[idx]
                    return True
        raise NotFoundError(f"Event not found: {event_id}")

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._next_id = 1
