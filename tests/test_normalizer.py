import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from voicecal.agent.normalizer import (AllDayShape, DateAndTimeShape,
                                       DateTimeShape, UnparseableShape,
                                       classify_event, normalize_calendar_date,
                                       normalize_clock_time, normalize_event,
                                       normalize_events)

NEW_YORK = ZoneInfo("America/New_York")


class TestClassify:

    def test_provider_all_day(self):
        shape = classify_event({"start": {"date": "2024-11-22"}, "end": {"date": "2024-11-23"}})
        assert isinstance(shape, AllDayShape)

    def test_all_day_flag_wins(self):
        shape = classify_event({"date": "2024-11-22", "time": "10:00", "allDay": True})
        assert isinstance(shape, AllDayShape)

    def test_provider_datetime(self):
        shape = classify_event({"start": {"dateTime": "2024-11-22T14:00:00-05:00"}})
        assert isinstance(shape, DateTimeShape)

    def test_separate_fields(self):
        shape = classify_event({"date": "2024-11-22", "time": "9:30"})
        assert isinstance(shape, DateAndTimeShape)

    def test_not_a_mapping(self):
        assert isinstance(classify_event("tomorrow at 3"), UnparseableShape)


class TestNormalizeEvent:

    def test_provider_datetime_converted_to_local_wall_clock(self):
        event = normalize_event({
            "id": "g1",
            "summary": "Standup",
            "start": {"dateTime": "2024-11-22T19:00:00Z"},
            "end": {"dateTime": "2024-11-22T20:30:00Z"},
        }, NEW_YORK)
        assert event is not None
        assert (event.date, event.time, event.duration_minutes) == ("2024-11-22", "14:00", 90)
        assert event.title == "Standup"
        assert event.source == "google"

    def test_combined_iso_with_end(self):
        event = normalize_event({"date": "2024-11-22T14:00", "endDate": "2024-11-22T15:30"}, NEW_YORK)
        assert (event.time, event.duration_minutes) == ("14:00", 90)

    def test_combined_iso_without_end_defaults_to_sixty(self):
        event = normalize_event({"date": "2024-11-22T14:00"}, NEW_YORK)
        assert event.duration_minutes == 60

    def test_local_store_shape(self):
        event = normalize_event({"id": 3, "title": "Gym", "start": "2024-11-22T07:00",
                                 "end": "2024-11-22T08:15"}, NEW_YORK)
        assert (event.id, event.time, event.duration_minutes) == ("3", "07:00", 75)

    def test_datetime_object(self):
        event = normalize_event({"date": datetime(2024, 11, 22, 9, 0), "duration": 45}, NEW_YORK)
        assert (event.date, event.time, event.duration_minutes) == ("2024-11-22", "09:00", 45)

    def test_separate_fields_zero_padded(self):
        event = normalize_event({"date": "2024-11-22", "time": "9:05", "duration": 30}, NEW_YORK)
        assert (event.time, event.duration_minutes) == ("09:05", 30)

    def test_separate_fields_reparse_date(self):
        event = normalize_event({"date": "11/22/2024", "time": "14:30:00"}, NEW_YORK)
        assert (event.date, event.time) == ("2024-11-22", "14:30")

    @pytest.mark.parametrize("raw", [
        {"date": "2024-11-22"},
        {"start": {"date": "2024-11-22"}},
        {"date": "2024-11-22", "time": "", "allDay": False},
        {"all_day": True, "start": "2024-11-22T00:00"},
    ])
    def test_all_day_never_normalized(self, raw):
        assert normalize_event(raw, NEW_YORK) is None

    @pytest.mark.parametrize("raw", [
        None,
        {},
        {"title": "no date"},
        {"date": "not a date", "time": "10:00"},
        {"date": "2024-11-22", "time": "quarter past"},
        {"start": {"dateTime": "garbage"}},
        {"date": "2024-11-22T15:00", "endDate": "2024-11-22T14:00"},
    ])
    def test_unparseable_dropped_without_raising(self, raw):
        assert normalize_event(raw, NEW_YORK) is None


def test_normalize_events_counts_drops(caplog):
    raw = [
        {"date": "2024-11-22", "time": "10:00"},
        {"start": {"date": "2024-11-22"}},
        {"title": "broken"},
        "junk",
    ]
    with caplog.at_level(logging.WARNING, logger="voicecal.agent.normalizer"):
        report = normalize_events(raw, NEW_YORK)
    assert len(report.events) == 1
    assert report.skipped_all_day == 1
    assert report.dropped == 2
    assert "cannot be normalized" in caplog.text


def test_normalize_events_rejects_non_list():
    report = normalize_events({"date": "2024-11-22"}, NEW_YORK)
    assert report.events == [] and report.dropped == 0


@pytest.mark.parametrize("spoken, expected", [
    ("3pm", "15:00"),
    ("3:30 p.m.", "15:30"),
    ("12am", "00:00"),
    ("12 pm", "12:00"),
    ("9:30", "09:30"),
    ("15", "15:00"),
    ("1430", "14:30"),
    ("25:00", None),
    ("13pm", None),
    ("noon", None),
    (None, None),
])
def test_normalize_clock_time(spoken, expected):
    assert normalize_clock_time(spoken) == expected


@pytest.mark.parametrize("value, expected", [
    ("2024-11-22", "2024-11-22"),
    ("2024/11/22", "2024-11-22"),
    ("11/22/2024", "2024-11-22"),
    ("November 22, 2024", "2024-11-22"),
    ("2024-11-23T02:00:00Z", "2024-11-22"),
    ("2024-02-30", None),
    ("next friday", None),
])
def test_normalize_calendar_date(value, expected):
    assert normalize_calendar_date(value, NEW_YORK) == expected
