from datetime import date

import pytest
from sqlalchemy import select

from conftest import MONDAY, students
from examsched.core.exceptions import ReferenceDataError
from examsched.models.academic import Enrollment
from examsched.services.reference_data import (
    SchedulingScope,
    SessionRequest,
    SqlReferenceDataProvider,
    generate_daily_slots,
    generate_exam_dates,
    load_snapshot,
    make_session_key,
    parse_availability_windows,
)


def test_exam_dates_skip_weekends_and_excluded_days():
    dates = generate_exam_dates(
        date(2026, 11, 5),
        date(2026, 11, 11),
        excluded_days=["Tuesday"],
        excluded_dates=[date(2026, 11, 11)],
    )

    # Thu, Fri, (weekend), Mon, (Tue excluded), (Wed 11th excluded)
    assert dates == [date(2026, 11, 5), date(2026, 11, 6), date(2026, 11, 9)]


def test_daily_slots_follow_duration_and_break():
    assert generate_daily_slots("08:00", 120, 30, 3) == [
        (1, "08:00", "10:00"),
        (2, "10:30", "12:30"),
        (3, "13:00", "15:00"),
    ]


def test_daily_slots_truncate_at_midnight(caplog):
    slots = generate_daily_slots("20:00", 120, 60, 4)

    assert slots == [(1, "20:00", "22:00")]
    assert "overflows the day" in caplog.text


def test_availability_windows_parse_dates_and_days():
    windows = parse_availability_windows(
        [{"day": "Monday", "start_time": "08:00", "end_time": "12:00"}, {"date": "2026-11-03"}]
    )

    assert windows[0].day == "Monday"
    assert windows[1].exam_date == date(2026, 11, 3)
    assert windows[1].start_time == "00:00"


def test_sessions_group_classes_by_unit_and_lecturer(db, catalog):
    program = catalog.program("BSC")
    unit = catalog.unit("CS101", program)
    class_a = catalog.klass("BSC Y1", program, section="A")
    class_b = catalog.klass("BSC Y1", program, section="B")
    class_c = catalog.klass("BSC Y1", program, section="C")
    catalog.enroll(unit, class_a, students("a", 3))
    catalog.enroll(unit, class_b, students("b", 2))
    catalog.enroll(unit, class_c, students("c", 4))
    catalog.lecturer(unit, "L-UNIT")
    catalog.lecturer(unit, "L-C", klass=class_c)
    catalog.commit()

    provider = SqlReferenceDataProvider(db)
    sessions = provider.list_exam_sessions(catalog.semester.id, SchedulingScope(semester_id=catalog.semester.id))

    by_lecturer = {session.lecturer_id: session for session in sessions}
    assert set(by_lecturer) == {"L-UNIT", "L-C"}
    assert by_lecturer["L-UNIT"].class_ids == tuple(sorted([class_a.id, class_b.id]))
    assert by_lecturer["L-UNIT"].student_count == 5
    assert by_lecturer["L-UNIT"].session_key == make_session_key(unit.id, [class_a.id, class_b.id])
    assert by_lecturer["L-C"].student_ids == frozenset(students("c", 4))
    assert by_lecturer["L-C"].snapshot.lecturer_name == "Dr L-C"
    assert by_lecturer["L-UNIT"].program_id == program.id


def test_dropped_enrollments_are_not_in_roster(db, catalog):
    unit = catalog.unit("CS101")
    klass = catalog.klass("Y1")
    catalog.enroll(unit, klass, students("s", 3))
    catalog.commit()
    enrollment = db.execute(select(Enrollment).where(Enrollment.student_code == "s001")).scalar_one()
    enrollment.status = "dropped"
    db.commit()

    sessions = SqlReferenceDataProvider(db).list_exam_sessions(
        catalog.semester.id, SchedulingScope(semester_id=catalog.semester.id)
    )

    assert sessions[0].student_ids == frozenset({"s002", "s003"})


def test_derive_sessions_flags_missing_classes_and_units(db, catalog):
    unit = catalog.unit("CS101")
    klass = catalog.klass("Y1")
    catalog.enroll(unit, klass, students("s", 2))
    catalog.commit()
    provider = SqlReferenceDataProvider(db)

    derived = provider.derive_sessions(
        catalog.semester.id,
        [
            SessionRequest(unit_id=unit.id, class_ids=(klass.id, "missing-class")),
            SessionRequest(unit_id="missing-unit", class_ids=(klass.id,)),
        ],
    )

    assert derived[0].missing_class_ids == ("missing-class",)
    assert derived[0].session_key == make_session_key(unit.id, [klass.id, "missing-class"])
    assert "missing-class" in derived[0].invalid_reason
    assert derived[1].missing_unit
    assert derived[1].snapshot.unit_code == "UNKNOWN"


def test_venues_filtered_by_activity_and_school(db, catalog):
    science = catalog.school("SCI")
    arts = catalog.school("ART")
    program = catalog.program("BSC", science)
    catalog.venue("Main Hall", 200)
    catalog.venue("Science Lab", 40, school=science)
    catalog.venue("Arts Studio", 60, school=arts)
    catalog.venue("Old Hall", 500, is_active=False)
    catalog.commit()
    provider = SqlReferenceDataProvider(db)

    by_program = provider.list_venues(catalog.semester.id, SchedulingScope(catalog.semester.id, program_id=program.id))
    everything = provider.list_venues(catalog.semester.id, SchedulingScope(catalog.semester.id))

    assert {venue.name for venue in by_program} == {"Main Hall", "Science Lab"}
    assert {venue.name for venue in everything} == {"Main Hall", "Science Lab", "Arts Studio"}


def test_load_snapshot_requires_venues_and_slots(db, catalog):
    provider = SqlReferenceDataProvider(db)
    scope = SchedulingScope(semester_id=catalog.semester.id)

    with pytest.raises(ReferenceDataError, match="No active venues"):
        load_snapshot(provider, scope)

    catalog.venue("Main Hall", 100)
    catalog.commit()
    with pytest.raises(ReferenceDataError, match="no time slots"):
        load_snapshot(provider, scope)

    catalog.exam_period(MONDAY, MONDAY, slots_per_day=2)
    catalog.commit()
    snapshot = load_snapshot(provider, scope)
    assert [slot.slot_number for slot in snapshot.slots] == [1, 2]
    assert snapshot.venue_names == {snapshot.venues[0].id: "Main Hall"}


def test_unknown_semester_is_a_reference_data_error(db):
    with pytest.raises(ReferenceDataError, match="Semester not found"):
        SqlReferenceDataProvider(db).list_slots("no-such-semester")


def test_scopes_in_one_semester_always_overlap():
    semester_wide = SchedulingScope("sem-1")
    program_a = SchedulingScope("sem-1", program_id="a")
    program_b = SchedulingScope("sem-1", program_id="b")
    school_x = SchedulingScope("sem-1", school_id="x")
    school_y = SchedulingScope("sem-1", school_id="y")

    assert semester_wide.overlaps(program_a)
    assert program_a.overlaps(program_b)
    assert school_x.overlaps(school_y)
    assert program_a.overlaps(school_x)
    assert not SchedulingScope("sem-2").overlaps(semester_wide)
    assert program_a.semester_wide() == semester_wide
