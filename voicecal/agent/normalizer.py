"""
Event normalization boundary.

Calendar events reach us in several shapes (provider-native, combined ISO
date-time, separate date + time, all-day). They are classified once into a
tagged shape and reduced to a NormalizedEvent here; nothing downstream looks
at the raw shape again.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, tzinfo
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from ..config import (CLOCK_TIME_RE, DEFAULT_DURATION_MINUTES, ISO_DATE_RE,
                      LOCAL_TZ)
from .schemas import NormalizationReport, NormalizedEvent

logger = logging.getLogger(__name__)

_CLOCK_FLEX_RE = re.compile(
    r"^(\d{1,2})(?::?(\d{2}))?(?::\d{2})?\s*([ap])\.?\s*m?\.?$|^(\d{1,2})(?::?(\d{2}))?(?::\d{2})?$",
    re.IGNORECASE)
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%B %d, %Y", "%b %d, %Y",
                 "%B %d %Y", "%b %d %Y")


class _Shape(BaseModel):
  model_config = ConfigDict(arbitrary_types_allowed=True)

  raw: Dict[str, Any]


class AllDayShape(_Shape):
  kind: Literal["all_day"] = "all_day"


class DateTimeShape(_Shape):
  kind: Literal["datetime"] = "datetime"
  start: datetime
  end: Optional[datetime] = None


class DateAndTimeShape(_Shape):
  kind: Literal["date_time_fields"] = "date_time_fields"
  date_value: Any
  time_value: Any


class UnparseableShape(_Shape):
  kind: Literal["unparseable"] = "unparseable"
  reason: str


EventShape = Union[AllDayShape, DateTimeShape, DateAndTimeShape, UnparseableShape]


def _parse_iso_datetime(value: Any) -> Optional[datetime]:
  if isinstance(value, datetime):
    return value
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  try:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))
  except ValueError:
    return None


def _to_local(value: datetime, tz: tzinfo) -> datetime:
  """Aware values are converted; naive values are already local wall-clock."""
  if value.tzinfo is None:
    return value
  return value.astimezone(tz).replace(tzinfo=None)


def normalize_calendar_date(value: Any, tz: tzinfo = LOCAL_TZ) -> Optional[str]:
  if isinstance(value, datetime):
    return _to_local(value, tz).strftime("%Y-%m-%d")
  if isinstance(value, date):
    return value.isoformat()
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  if ISO_DATE_RE.match(raw):
    try:
      datetime.strptime(raw, "%Y-%m-%d")
    except ValueError:
      return None
    return raw
  if "T" in raw:
    parsed = _parse_iso_datetime(raw)
    return _to_local(parsed, tz).strftime("%Y-%m-%d") if parsed else None
  for fmt in _DATE_FORMATS:
    try:
      return datetime.strptime(raw, fmt).strftime("%Y-%m-%d")
    except ValueError:
      continue
  return None


def normalize_clock_time(value: Any) -> Optional[str]:
  """Normalize a spoken clock time to HH:MM ("9:30", "3pm", "3:30 p.m.")."""
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  match = _CLOCK_FLEX_RE.match(raw)
  if not match:
    return None
  if match.group(1) is not None:
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = match.group(3).lower()
    if not 1 <= hours <= 12:
      return None
    if meridiem == "p" and hours != 12:
      hours += 12
    if meridiem == "a" and hours == 12:
      hours = 0
  else:
    hours = int(match.group(4))
    minutes = int(match.group(5) or 0)
  if hours > 23 or minutes > 59:
    return None
  return f"{hours:02d}:{minutes:02d}"


def _coerce_duration(raw: Mapping[str, Any]) -> Optional[int]:
  for key in ("durationMinutes", "duration_minutes", "duration"):
    value = raw.get(key)
    if value is None or isinstance(value, bool):
      continue
    try:
      minutes = int(value)
    except (TypeError, ValueError):
      continue
    if minutes >= 0:
      return minutes
  return None


def classify_event(raw: Any) -> EventShape:
  if isinstance(raw, BaseModel):
    raw = raw.model_dump(by_alias=True)
  if not isinstance(raw, Mapping):
    return UnparseableShape(raw={"value": repr(raw)}, reason="not a mapping")
  data = dict(raw)

  if data.get("allDay") or data.get("all_day"):
    return AllDayShape(raw=data)

  start = data.get("start")
  if isinstance(start, Mapping):
    # Provider-native: {"start": {"dateTime"|"date": ...}, "end": {...}}
    end = data.get("end") if isinstance(data.get("end"), Mapping) else {}
    if start.get("dateTime"):
      start_dt = _parse_iso_datetime(start.get("dateTime"))
      if start_dt is None:
        return UnparseableShape(raw=data, reason="bad start.dateTime")
      return DateTimeShape(raw=data, start=start_dt,
                           end=_parse_iso_datetime(end.get("dateTime")))
    if start.get("date"):
      return AllDayShape(raw=data)
    return UnparseableShape(raw=data, reason="empty start")

  date_value = data.get("date")
  end_value = data.get("endDate") or data.get("end_date")
  if date_value is None and isinstance(start, (str, datetime)):
    # Local store shape: {"start": "YYYY-MM-DDTHH:MM", "end": ...}
    date_value = start
    end_value = end_value or data.get("end")

  if isinstance(date_value, datetime):
    return DateTimeShape(raw=data, start=date_value,
                         end=_parse_iso_datetime(end_value))

  if isinstance(date_value, str) and "T" in date_value:
    start_dt = _parse_iso_datetime(date_value)
    if start_dt is None:
      return UnparseableShape(raw=data, reason="bad combined date-time")
    return DateTimeShape(raw=data, start=start_dt,
                         end=_parse_iso_datetime(end_value))

  if date_value is not None and date_value != "":
    time_value = data.get("time")
    if time_value is None or (isinstance(time_value, str) and not time_value.strip()):
      return AllDayShape(raw=data)
    return DateAndTimeShape(raw=data, date_value=date_value, time_value=time_value)

  return UnparseableShape(raw=data, reason="no date")


def _base_fields(raw: Mapping[str, Any], default_source: str) -> Dict[str, Any]:
  event_id = raw.get("id")
  return {
      "id": str(event_id) if event_id not in (None, "") else None,
      "title": raw.get("title") or raw.get("summary"),
      "source": raw.get("source") or default_source,
  }


def _normalize_shape(shape: EventShape, tz: tzinfo) -> Tuple[Optional[NormalizedEvent], str]:
  if isinstance(shape, AllDayShape):
    return None, "all_day"

  if isinstance(shape, UnparseableShape):
    return None, shape.reason

  raw = shape.raw
  if isinstance(shape, DateTimeShape):
    start_local = _to_local(shape.start, tz)
    if shape.end is not None:
      end_local = _to_local(shape.end, tz)
      duration = round((end_local - start_local).total_seconds() / 60)
      if duration < 0:
        return None, "end before start"
    else:
      duration = _coerce_duration(raw)
      if duration is None:
        duration = DEFAULT_DURATION_MINUTES
    default_source = "google" if isinstance(raw.get("start"), Mapping) else "local"
    return NormalizedEvent(date=start_local.strftime("%Y-%m-%d"),
                           time=start_local.strftime("%H:%M"),
                           duration_minutes=duration,
                           **_base_fields(raw, default_source)), "ok"

  date_text = normalize_calendar_date(shape.date_value, tz)
  if date_text is None:
    return None, "bad date"
  time_text = None
  if isinstance(shape.time_value, str):
    match = CLOCK_TIME_RE.match(shape.time_value.strip()[:5].rstrip(":"))
    if match and int(match.group(1)) < 24 and int(match.group(2)) < 60:
      time_text = f"{int(match.group(1)):02d}:{match.group(2)}"
  if time_text is None:
    return None, "bad time"
  duration = _coerce_duration(raw)
  return NormalizedEvent(date=date_text,
                         time=time_text,
                         duration_minutes=DEFAULT_DURATION_MINUTES if duration is None else duration,
                         **_base_fields(raw, "local")), "ok"


def normalize_event(raw: Any, tz: tzinfo = LOCAL_TZ) -> Optional[NormalizedEvent]:
  """Reduce one raw event to date/time/duration. Never raises."""
  normalized, status = _normalize_shape(classify_event(raw), tz)
  if normalized is None and status != "all_day":
    logger.warning("Dropping event that cannot be normalized (%s): %r",
                   status, _event_hint(raw))
  return normalized


def normalize_events(raw_events: Any, tz: tzinfo = LOCAL_TZ) -> NormalizationReport:
  report = NormalizationReport()
  if not isinstance(raw_events, (list, tuple)):
    return report
  for raw in raw_events:
    normalized, status = _normalize_shape(classify_event(raw), tz)
    if normalized is not None:
      report.events.append(normalized)
    elif status == "all_day":
      report.skipped_all_day += 1
    else:
      report.dropped += 1
      logger.warning("Dropping event that cannot be normalized (%s): %r",
                     status, _event_hint(raw))
  return report


def _event_hint(raw: Any) -> Dict[str, Any]:
  if isinstance(raw, Mapping):
    return {key: raw.get(key) for key in ("id", "title", "date", "time") if key in raw}
  return {"value": repr(raw)[:80]}
