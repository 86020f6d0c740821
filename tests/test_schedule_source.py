from __future__ import annotations

import json

import pytest

from adapters.schedule_source import HttpScheduleSource, ScheduleSourceError, extract_talks

SCHEDULE = {
    "schedule": {
        "conference": {
            "days": [
                {
                    "rooms": {
                        "One": [
                            {"id": 1, "title": "Opening", "date": "2025-12-27T10:30:00+01:00"},
                            {"id": 2, "title": "Moved", "room": "Zero", "date": "2025-12-27T11:30:00+01:00"},
                        ],
                        "Lounge": [{"id": 3, "title": "Chill", "date": "2025-12-27T12:00:00+01:00"}],
                    }
                },
                {"rooms": {"Fuse": [{"id": 4, "title": "Day two", "startTime": "2025-12-28T10:00:00+01:00"}]}},
                {"rooms": None},
            ]
        }
    }
}


def test_extract_talks_flattens_days_and_rooms() -> None:
    talks = extract_talks(SCHEDULE)

    assert [(talk.id, talk.room) for talk in talks] == [("1", "One"), ("2", "Zero"), ("3", "Lounge"), ("4", "Fuse")]
    assert talks[0].title == "Opening"
    assert talks[0].start_time == "2025-12-27T10:30:00+01:00"
    assert talks[3].start_time == "2025-12-28T10:00:00+01:00"


@pytest.mark.parametrize("document", [{}, {"schedule": {}}, {"schedule": {"conference": {"days": "x"}}}, []])
def test_extract_talks_without_days_is_empty(document) -> None:
    assert extract_talks(document) == []


def test_fetch_talks_reads_file_url(tmp_path) -> None:
    path = tmp_path / "schedule.json"
    path.write_text(json.dumps(SCHEDULE), encoding="utf-8")

    talks = HttpScheduleSource(path.as_uri()).fetch_talks()

    assert len(talks) == 4


def test_fetch_talks_rejects_invalid_json(tmp_path) -> None:
    path = tmp_path / "schedule.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ScheduleSourceError):
        HttpScheduleSource(path.as_uri()).fetch_talks()


def test_fetch_talks_missing_file_raises(tmp_path) -> None:
    with pytest.raises(ScheduleSourceError):
        HttpScheduleSource((tmp_path / "missing.json").as_uri()).fetch_talks()


def test_source_requires_url() -> None:
    with pytest.raises(ValueError):
        HttpScheduleSource("")
