from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import (
    APP_TIMEZONE,
    ENABLE_GCAL,
    GCAL_MAX_RESULTS,
    GCAL_SCOPES,
    GOOGLE_CALENDAR_ID,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URI,
    LOCAL_TZ,
)
from .errors import NotFoundError, UpstreamFailure
from .utils import _log_debug

logger = logging.getLogger(__name__)


# -------------------------
# Google Calendar 유틸
# -------------------------
def is_gcal_configured() -> bool:
  return bool(ENABLE_GCAL and GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def _credentials_from_tokens(tokens: Dict[str, Any]) -> Credentials:
  access_token = tokens.get("access_token") or tokens.get("token")
  refresh_token = tokens.get("refresh_token")
  if refresh_token:
    info = {
        "token": access_token,
        "refresh_token": refresh_token,
        "client_id": GOOGLE_CLIENT_ID,
        "client_secret": GOOGLE_CLIENT_SECRET,
        "token_uri": GOOGLE_TOKEN_URI,
    }
    return Credentials.from_authorized_user_info(info, GCAL_SCOPES)
  if not access_token:
    raise UpstreamFailure("Google OAuth token is missing.")
  return Credentials(token=access_token)


def get_gcal_service(tokens: Dict[str, Any]):
  if not is_gcal_configured():
    raise UpstreamFailure("Google Calendar is not configured.")
  creds = _credentials_from_tokens(tokens)
  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
  return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _build_event_body(event: Dict[str, Any]) -> Dict[str, Any]:
  start_dt = datetime.strptime(f"{event['date']}T{event['time']}",
                               "%Y-%m-%dT%H:%M").replace(tzinfo=LOCAL_TZ)
  minutes = int(event.get("durationMinutes") or 60)
  end_dt = start_dt + timedelta(minutes=minutes)

  body: Dict[str, Any] = {
      "summary": event.get("title") or "Untitled",
      "start": {"dateTime": start_dt.isoformat(), "timeZone": APP_TIMEZONE},
      "end": {"dateTime": end_dt.isoformat(), "timeZone": APP_TIMEZONE},
  }
  if event.get("location"):
    body["location"] = event["location"]
  if event.get("description"):
    body["description"] = event["description"]
  private = {
      key: str(event[key])
      for key in ("type", "isAIGenerated", "originalEventId", "taskId")
      if event.get(key) is not None
  }
  if private:
    body["extendedProperties"] = {"private": private}
  return body


def _fetch_google_events_raw(service,
                             time_min: datetime,
                             time_max: datetime,
                             calendar_id: str) -> List[Dict[str, Any]]:
  events_data: List[Dict[str, Any]] = []
  page_token: Optional[str] = None

  while True:
    params: Dict[str, Any] = {
        "calendarId": calendar_id,
        "singleEvents": True,
        "orderBy": "startTime",
        "pageToken": page_token,
        "timeMin": time_min.isoformat(),
        "timeMax": time_max.isoformat(),
        "maxResults": GCAL_MAX_RESULTS,
    }
    response = service.events().list(**params).execute()

    items = response.get("items", [])
    if isinstance(items, list):
      events_data.extend(items)

    page_token = response.get("nextPageToken")
    if not page_token:
      break

  return events_data


def _aware(value: datetime) -> datetime:
  if value.tzinfo is None:
    return value.replace(tzinfo=LOCAL_TZ)
  return value


class GoogleCalendarProvider:
  """Calendar collaborator backed by the Google Calendar v3 API.

  Events come back in Google's own shape; the conflict engine normalizes them.
  """

  def __init__(self, tokens: Dict[str, Any],
               calendar_id: Optional[str] = None):
    self.tokens = dict(tokens or {})
    self.calendar_id = calendar_id or GOOGLE_CALENDAR_ID
    self._service = None

  def _get_service(self):
    if self._service is None:
      self._service = get_gcal_service(self.tokens)
    return self._service

  def _fetch_sync(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    service = self._get_service()
    items = _fetch_google_events_raw(service, _aware(start), _aware(end),
                                     self.calendar_id)
    _log_debug(f"[GCAL] fetched {len(items)} events {start} ~ {end}")
    return items

  def _create_sync(self, event: Dict[str, Any]) -> Dict[str, Any]:
    service = self._get_service()
    created = service.events().insert(calendarId=self.calendar_id,
                                      body=_build_event_body(event)).execute()
    return created

  def _delete_sync(self, event_id: str) -> bool:
    service = self._get_service()
    try:
      service.events().delete(calendarId=self.calendar_id,
                              eventId=event_id).execute()
    except HttpError as exc:
      if getattr(exc, "status_code", None) == 404 or getattr(
          getattr(exc, "resp", None), "status", None) == 404:
        raise NotFoundError(f"Google event not found: {event_id}") from exc
      raise
    return True

  async def fetch_events(self, start: datetime,
                         end: datetime) -> List[Dict[str, Any]]:
    return await asyncio.to_thread(self._fetch_sync, start, end)

  async def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
    return await asyncio.to_thread(self._create_sync, event)

  async def delete_event(self, event_id: str) -> bool:
    if not event_id:
      raise ValueError("event_id is empty")
    return await asyncio.to_thread(self._delete_sync, event_id)
