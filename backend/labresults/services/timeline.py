"""Timeline projection of one panel's results.

Turns the newest-first entries of a single panel into the column headers of
the timeline table (years, days, times) and one row per member test. Rows
are positionally aligned with the entries; a None cell means the member had
no result at that time. Nothing here is cached; it is recomputed per request.
"""

import re

from labresults.schemas.lab_results import (
    DayColumn,
    ObservationEntry,
    PatientAggregate,
    TimelineView,
    YearColumn,
)

_DATETIME_SPLIT_RE = re.compile(r"[-,T:]")


class PanelDataMissingError(LookupError):
    """Raised when the requested panel is not among the patient's results."""

    def __init__(self, panel_uuid: str) -> None:
        self.panel_uuid = panel_uuid
        super().__init__("panel data missing")


def parse_time(sorted_times: list[str | None]) -> tuple[list[YearColumn], list[DayColumn], list[str]]:
    """Bucket timestamps into year columns, day columns and time labels.

    Buckets appear in first-seen order; ``time_columns`` has one "HH:MM"
    label per timestamp, in input order.
    """
    year_columns: dict[str, YearColumn] = {}
    day_columns: dict[tuple[str, str], DayColumn] = {}
    time_columns: list[str] = []

    for datetime_str in sorted_times:
        parts = _DATETIME_SPLIT_RE.split(datetime_str or "")
        year, month, day, hour, minutes = (parts + [""] * 5)[:5]
        date = f"{month}/{day}"

        year_column = year_columns.get(year)
        if year_column:
            year_column.size += 1
        else:
            year_columns[year] = YearColumn(year=year, size=1)

        day_column = day_columns.get((year, date))
        if day_column:
            day_column.size += 1
        else:
            day_columns[(year, date)] = DayColumn(year=year, day=date, size=1)

        time_columns.append(f"{hour}:{minutes}")

    return list(year_columns.values()), list(day_columns.values()), time_columns


def parse_entries(entries: list[ObservationEntry]) -> dict[str, list[ObservationEntry | None]]:
    """Pivot panel members into per-test rows aligned with ``entries``.

    A single test entry (no members) is its own row cell.
    """
    rows: dict[str, list[ObservationEntry | None]] = {}

    for index, entry in enumerate(entries):
        members = entry.members if entry.members is not None else [entry]
        for member in members:
            if member is None:
                continue
            name = member.name or member.id
            row = rows.get(name)
            if row is None:
                row = rows[name] = [None] * len(entries)
            row[index] = member

    return rows


def build_timeline(aggregate: PatientAggregate, panel_uuid: str) -> TimelineView:
    """Project the group whose concept UUID is ``panel_uuid`` onto a timeline.

    Raises:
        PanelDataMissingError: if no group has that concept UUID.
    """
    for panel_name, panel_data in aggregate.items():
        if panel_data.uuid == panel_uuid:
            break
    else:
        raise PanelDataMissingError(panel_uuid)

    entries = panel_data.entries
    times = [entry.effective_date_time for entry in entries]
    year_columns, day_columns, time_columns = parse_time(times)

    return TimelineView(
        panel_name=panel_name,
        panel_uuid=panel_uuid,
        year_columns=year_columns,
        day_columns=day_columns,
        time_columns=time_columns,
        sorted_times=[time or "" for time in times],
        rows=parse_entries(entries),
    )
