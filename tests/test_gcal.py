import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from voicecal import gcal
from voicecal.agent.normalizer import normalize_events
from voicecal.errors import NotFoundError, UpstreamFailure


class _Call:

    def __init__(self, result):
        self._result = result

    def execute(self):
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class FakeEvents:

    def __init__(self, pages):
        self.pages = list(pages)
        self.list_params = []
        self.inserted = []
        self.delete_error = None

    def list(self, **params):
        self.list_params.append(params)
        return _Call(self.pages.pop(0))

    def insert(self, calendarId, body):
        self.inserted.append((calendarId, body))
        return _Call(dict(body, id="g-new"))

    def delete(self, calendarId, eventId):
        return _Call(self.delete_error or "")


class FakeService:

    def __init__(self, pages=()):
        self._events = FakeEvents(pages)

    def events(self):
        return self._events


def _provider(service):
    provider = gcal.GoogleCalendarProvider({"token": "abc"}, calendar_id="team")
    provider._service = service
    return provider


def test_event_body_carries_local_time_and_metadata():
    body = gcal._build_event_body({
        "title": "📋 Order cake", "date": "2024-11-22", "time": "14:00",
        "durationMinutes": 30, "location": "Bakery", "type": "ai-preparation",
        "isAIGenerated": True, "taskId": "task:order cake", "originalEventId": None,
    })
    assert body["summary"] == "📋 Order cake"
    assert body["start"]["dateTime"] == "2024-11-22T14:00:00-05:00"
    assert body["end"]["dateTime"] == "2024-11-22T14:30:00-05:00"
    assert body["location"] == "Bakery"
    assert body["extendedProperties"]["private"] == {
        "type": "ai-preparation", "isAIGenerated": "True", "taskId": "task:order cake"}


def test_fetch_follows_pages():
    service = FakeService(pages=[
        {"items": [{"id": "1", "summary": "A", "start": {"dateTime": "2024-11-22T14:00:00-05:00"},
                    "end": {"dateTime": "2024-11-22T15:00:00-05:00"}}],
         "nextPageToken": "p2"},
        {"items": [{"id": "2", "start": {"date": "2024-11-23"}, "end": {"date": "2024-11-24"}}]},
    ])
    items = asyncio.run(_provider(service).fetch_events(datetime(2024, 11, 22), datetime(2024, 11, 30)))
    assert [item["id"] for item in items] == ["1", "2"]

    params = service.events().list_params
    assert params[0]["calendarId"] == "team"
    assert params[0]["singleEvents"] is True
    assert params[0]["timeMin"] == "2024-11-22T00:00:00-05:00"
    assert params[1]["pageToken"] == "p2"

    report = normalize_events(items)
    assert [(e.date, e.time) for e in report.events] == [("2024-11-22", "14:00")]
    assert report.skipped_all_day == 1


def test_create_inserts_body():
    service = FakeService()
    created = asyncio.run(_provider(service).create_event(
        {"title": "Dentist", "date": "2024-11-22", "time": "09:00"}))
    assert created["id"] == "g-new"
    calendar_id, body = service.events().inserted[0]
    assert calendar_id == "team"
    assert body["end"]["dateTime"] == "2024-11-22T10:00:00-05:00"


def test_delete_missing_event_is_not_found():
    service = FakeService()
    service.events().delete_error = HttpError(SimpleNamespace(status=404, reason="Not Found"), b"")
    with pytest.raises(NotFoundError):
        asyncio.run(_provider(service).delete_event("gone"))


def test_configuration_gate(monkeypatch):
    monkeypatch.setattr(gcal, "ENABLE_GCAL", False)
    assert gcal.is_gcal_configured() is False
    with pytest.raises(UpstreamFailure):
        gcal.get_gcal_service({"token": "abc"})

    monkeypatch.setattr(gcal, "ENABLE_GCAL", True)
    monkeypatch.setattr(gcal, "GOOGLE_CLIENT_ID", "id")
    monkeypatch.setattr(gcal, "GOOGLE_CLIENT_SECRET", "secret")
    assert gcal.is_gcal_configured() is True


def test_credentials_need_a_token():
    with pytest.raises(UpstreamFailure):
        gcal._credentials_from_tokens({})
    creds = gcal._credentials_from_tokens({"access_token": "abc"})
    assert creds.token == "abc"
