from datetime import datetime
from datetime import timezone

import icalendar
import pytest

from fake_caldav import make_ics

from calendula.lib import error
from calendula.lib.vcal import create_ical
from calendula.lib.vcal import extract
from calendula.lib.vcal import fix
from calendula.objects import Item
from calendula.objects import ItemFields

TODO_WITH_TIMEZONE = b"""BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//test//test//EN
BEGIN:VTIMEZONE
TZID:Europe/Oslo
BEGIN:STANDARD
DTSTART:19701025T030000
TZOFFSETFROM:+0200
TZOFFSETTO:+0100
END:STANDARD
END:VTIMEZONE
BEGIN:VTODO
UID:todo-1
DTSTAMP:20250101T100000Z
LAST-MODIFIED:20250105T120000Z
SUMMARY:Buy milk
BEGIN:VALARM
ACTION:DISPLAY
TRIGGER:-PT15M
DESCRIPTION:Reminder
END:VALARM
END:VTODO
END:VCALENDAR
"""


class TestExtract:
    def test_event(self):
        fields = extract(make_ics("abc", "Meeting"))
        assert fields.uid == "abc"
        assert fields.summary == "Meeting"
        assert fields.components == ["VCALENDAR", "VEVENT"]
        assert fields.last_modified == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_components_in_document_order(self):
        fields = extract(TODO_WITH_TIMEZONE)
        assert fields.uid == "todo-1"
        assert fields.summary == "Buy milk"
        assert fields.components == ["VCALENDAR", "VTIMEZONE", "STANDARD", "VTODO", "VALARM"]

    def test_last_modified_preferred_over_dtstamp(self):
        fields = extract(TODO_WITH_TIMEZONE)
        assert fields.last_modified == datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)

    def test_str_input(self):
        assert extract(make_ics("abc").decode("utf-8")).uid == "abc"

    def test_no_uid(self):
        with pytest.raises(error.MalformedItem):
            extract(b"BEGIN:VCALENDAR\nVERSION:2.0\nEND:VCALENDAR\n")

    def test_garbage(self):
        with pytest.raises(error.MalformedItem) as excinfo:
            extract(b"this is not icalendar")
        assert excinfo.value.exit_status == 52

    def test_item_parse(self):
        body = make_ics("abc", "Meeting")
        item = Item.parse("work", body, etag='"1"')
        assert item.id == "abc"
        assert item.calendar_id == "work"
        assert item.body == body
        assert item.etag == '"1"'

    def test_item_parse_error_names_the_href(self):
        with pytest.raises(error.MalformedItem) as excinfo:
            Item.parse("work", b"this is not icalendar", href="/calendars/me/work/x.ics")
        assert excinfo.value.url == "/calendars/me/work/x.ics"
        assert "/calendars/me/work/x.ics" in str(excinfo.value)
        with pytest.raises(error.MalformedItem) as excinfo:
            Item.parse("work", b"this is not icalendar")
        assert excinfo.value.url is None

    def test_item_parse_with_injected_extractor(self):
        item = Item.parse("work", b"opaque", extract=lambda raw: ItemFields(uid="x"))
        assert item.id == "x"
        assert item.body == b"opaque"


class TestFix:
    def test_duplicate_dtstamp(self):
        ical = "BEGIN:VCALENDAR\nBEGIN:VEVENT\nUID:a\nDTSTAMP:20250101T100000Z\nDTSTAMP:20250102T100000Z\nEND:VEVENT\nEND:VCALENDAR\n"
        fixed = fix(ical)
        assert fixed.count("DTSTAMP") == 1
        assert "DTSTAMP:20250101T100000Z" in fixed

    def test_completed_as_date(self):
        ical = "BEGIN:VCALENDAR\nBEGIN:VTODO\nUID:a\nCOMPLETED;VALUE=DATE:20250101\nEND:VTODO\nEND:VCALENDAR\n"
        assert "COMPLETED:20250101T120000Z" in fix(ical)

    def test_dtend_and_duration(self):
        ical = "BEGIN:VCALENDAR\nBEGIN:VEVENT\nUID:a\nDTEND:20250101T100000Z\nDURATION:PT1H\nEND:VEVENT\nEND:VCALENDAR\n"
        assert "DURATION" not in fix(ical)

    def test_clean_data_is_untouched(self):
        ical = make_ics("abc").decode("utf-8").replace("\r\n", "\n")
        assert fix(ical) == ical


class TestCreateIcal:
    def test_defaults(self):
        cal = icalendar.Calendar.from_ical(create_ical(summary="Lunch"))
        event = cal.subcomponents[0]
        assert event.name == "VEVENT"
        assert event["UID"]
        assert str(event["SUMMARY"]) == "Lunch"
        assert "DTSTAMP" in event

    def test_todo_with_uid(self):
        fields = extract(create_ical("VTODO", uid="my-todo"))
        assert fields.uid == "my-todo"
        assert fields.components == ["VCALENDAR", "VTODO"]
