#!/usr/bin/env python
import datetime
import difflib
import logging
import re
import uuid
from typing import Union

import icalendar

from calendula.lib import error
from calendula.lib.python_utilities import to_normal_str
from calendula.objects import ItemFields

## Global counter.  We don't want to be too verbose on the users.
fixup_error_loggings = 0

## Components that carry the UID of the item.  VTIMEZONE and VALARM
## never do.
PRIMARY_COMPONENTS = ("VEVENT", "VTODO", "VJOURNAL", "VFREEBUSY")


def fix(event: str) -> str:
    """This function receives some ical as it's given from the server or
    from disk, checks for breakages with the standard, and attempts to
    fix up known issues so that the icalendar library can parse it:

    1) COMPLETED MUST be a datetime in UTC according to the RFC, but
    sometimes a date is given. (SOGo, Google Calendar)

    2) CREATED timestamps at year 0 does not make sense. (Google Calendar)

    3) iCloud duplicates the DTSTAMP property sometimes - keep the first
    DTSTAMP encountered.

    4) X-APPLE-STRUCTURED-EVENT sometimes comes with trailing white
    space.  All trailing spaces are removed.

    5) Zimbra can create events with both DTEND and DURATION set,
    which is forbidden.  Whatever comes last is dropped.

    The fixed data is only used for extracting fields, the item body
    is never modified.
    """
    event = to_normal_str(event)
    if not event.endswith("\n"):
        event = event + "\n"

    ## 1) Add an arbitrary time if completed is given as date
    fixed = re.sub(
        r"COMPLETED(?:;VALUE=DATE)?:(\d+)\s", r"COMPLETED:\g<1>T120000Z\n", event
    )

    ## 2) CREATED timestamps prior to epoch does not make sense
    fixed = re.sub("CREATED:00001231T000000Z", "CREATED:19700101T000000Z", fixed)

    ## 4) trailing whitespace probably never makes sense
    fixed = re.sub(" *$", "", fixed, flags=re.MULTILINE)

    ## 3) and 5)
    fixed2 = (
        "\n".join(filter(LineFilterDiscardingDuplicates(), fixed.strip().split("\n")))
        + "\n"
    )

    if fixed2 != event:
        ## Rate-limited, only counts that are powers of two are logged
        ## as warnings
        global fixup_error_loggings
        fixup_error_loggings += 1
        if not (fixup_error_loggings & (fixup_error_loggings - 1)):
            _log = logging.warning
        else:
            _log = logging.debug

        log_message = [
            "Ical data was modified to avoid compatibility issues",
            "(the producer of this item breaks the icalendar standard)",
            f"(error count: {fixup_error_loggings} - this error is ratelimited)",
        ]
        diff = list(
            difflib.unified_diff(event.split("\n"), fixed2.split("\n"), lineterm="")
        )
        _log("\n".join(log_message + diff))

    return fixed2


class LineFilterDiscardingDuplicates:
    """Needs to be a class because it keeps track of whether a certain
    group of date line was already encountered within a component.
    This must be called line by line in order on the complete text.
    """

    def __init__(self) -> None:
        self.stamped = 0
        self.ended = 0

    def __call__(self, line: str) -> bool:
        if line.startswith("BEGIN:V"):
            self.stamped = 0
            self.ended = 0

        elif re.match("(DURATION|DTEND|DUE)[:;]", line):
            if self.ended:
                return False
            self.ended += 1

        elif re.match("DTSTAMP[:;]", line):
            if self.stamped:
                return False
            self.stamped += 1

        return True


def extract(raw: Union[bytes, str]) -> ItemFields:
    """
    Default extraction collaborator.  Parses the raw iCalendar data
    with the icalendar library and picks out the few fields the
    backends care about.

    Raises MalformedItem if the data cannot be parsed or carries no UID.
    """
    try:
        cal = icalendar.Calendar.from_ical(fix(raw))
    except (ValueError, IndexError) as e:
        raise error.MalformedItem(reason=f"cannot parse iCalendar data: {e}")
    if cal.name != "VCALENDAR":
        raise error.MalformedItem(reason=f"expected VCALENDAR, got {cal.name}")

    components = []
    for component in cal.walk():
        if component.name not in components:
            components.append(component.name)

    primary = [x for x in cal.subcomponents if x.name in PRIMARY_COMPONENTS]
    uid = None
    for component in primary or cal.subcomponents:
        if "UID" in component:
            uid = str(component["UID"])
            break
    if not uid:
        raise error.MalformedItem(reason="no UID found in iCalendar data")

    summary = ""
    last_modified = None
    for component in primary:
        if not summary and "SUMMARY" in component:
            summary = str(component["SUMMARY"])
        if last_modified is None:
            stamp = component.get("LAST-MODIFIED") or component.get("DTSTAMP")
            if stamp is not None and isinstance(stamp.dt, datetime.datetime):
                last_modified = stamp.dt

    return ItemFields(
        uid=uid,
        summary=summary,
        components=components,
        last_modified=last_modified,
    )


def new_uid() -> str:
    return str(uuid.uuid4())


def create_ical(objtype: str = "VEVENT", language: str = "en", **props) -> bytes:
    """
    Build a minimal iCalendar object, i.e. as a template to hand over
    to an editor.  Mandatory fields (PRODID, VERSION, DTSTAMP, UID) are
    populated if not given in props.
    """
    my_instance = icalendar.Calendar()
    component = icalendar.cal.component_factory[objtype]()
    my_instance.add_component(component)

    my_instance.add("prodid", "-//calendula//calendula//" + language)
    my_instance.add("version", "2.0")
    if not props.get("dtstamp"):
        component.add("dtstamp", datetime.datetime.now(tz=datetime.timezone.utc))
    if not props.get("uid"):
        component.add("uid", new_uid())

    for prop in props:
        if props[prop] is not None:
            if isinstance(props[prop], datetime.datetime) and not props[prop].tzinfo:
                ## We need to have a timezone!  Assume UTC.
                props[prop] = props[prop].astimezone(datetime.timezone.utc)
            component.add(prop, props[prop])
    return my_instance.to_ical()
