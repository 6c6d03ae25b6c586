from datetime import datetime, timedelta

from lessonbook import aggregation, models

NOON = datetime(2024, 3, 14, 12, 0)


def _student(sid, email):
    return models.Student(id=sid, first_name=sid.upper(), last_name="Test", email=email, created_at=NOON)


def _package(pid, sid, total=10):
    return models.LessonPackage(id=pid, student_id=sid, package_type="Piano", total_lessons=total,
                                remaining_lessons=total, is_active=True, created_at=NOON)


def _lesson(lid, pid, sid, when=None, done=False):
    return models.Lesson(id=lid, package_id=pid, student_id=sid, scheduled_date=when,
                         is_completed=done, completed_date=when if done else None, created_at=NOON)


def test_day_bounds_are_local_midnights():
    start, end = aggregation.day_bounds(datetime(2024, 3, 14, 18, 45, 12, 99))
    assert start == datetime(2024, 3, 14)
    assert end == datetime(2024, 3, 15)


def test_compose_students_groups_children_per_owner():
    students = [_student("a", "a@x.com"), _student("b", "b@x.com"), _student("c", "c@x.com")]
    packages = [_package("pa1", "a"), _package("pa2", "a"), _package("pb", "b")]
    lessons = [_lesson("l1", "pa1", "a"), _lesson("l2", "pa2", "a"), _lesson("l3", "pa1", "a"), _lesson("l4", "pb", "b")]

    views = aggregation.compose_students(students, packages, lessons)
    assert [v.id for v in views] == ["a", "b", "c"]
    a, b, c = views
    assert [p.id for p in a.packages] == ["pa1", "pa2"]
    assert [l.id for l in a.packages[0].lessons] == ["l1", "l3"]
    assert [l.id for l in b.packages[0].lessons] == ["l4"]
    assert c.packages == []


def test_compose_student_matches_listing_entry():
    students = [_student("a", "a@x.com"), _student("b", "b@x.com")]
    packages = [_package("pa", "a"), _package("pb", "b")]
    lessons = [_lesson("l1", "pa", "a"), _lesson("l2", "pb", "b")]
    single = aggregation.compose_student(students[1], packages, lessons)
    assert single == aggregation.compose_students(students, packages, lessons)[1]


def test_student_detail_adds_only_own_documents():
    mine = models.Document(id="d1", student_id="a", file_name="f", file_url="/f", uploaded_at=NOON)
    theirs = models.Document(id="d2", student_id="b", file_name="g", file_url="/g", uploaded_at=NOON)
    detail = aggregation.compose_student_detail(_student("a", "a@x.com"), [_package("pa", "a")], [], [mine, theirs])
    assert [d.id for d in detail.documents] == ["d1"]
    assert detail.packages[0].id == "pa"


def test_wire_format_is_camel_case():
    view = aggregation.compose_student(_student("a", "a@x.com"), [_package("pa", "a")], [_lesson("l1", "pa", "a", NOON)])
    payload = view.model_dump(by_alias=True)
    assert payload["firstName"] == "A"
    assert payload["packages"][0]["remainingLessons"] == 10
    assert payload["packages"][0]["lessons"][0]["scheduledDate"] == NOON


def test_stats_window_is_today_only():
    lessons = [
        _lesson("start", "p", "a", datetime(2024, 3, 14, 0, 0)),
        _lesson("late", "p", "a", datetime(2024, 3, 14, 23, 59), done=True),
        _lesson("tomorrow", "p", "a", datetime(2024, 3, 15, 0, 0)),
        _lesson("unscheduled", "p", "a"),
    ]
    stats = aggregation.compute_stats([_student("a", "a@x.com")], lessons, NOON)
    assert stats.total_students == 1
    assert stats.todays_lessons == 2
    assert stats.pending_attendance == 1
    assert stats.completion_rate == "25%"


def test_completion_rate_rounds_half_up():
    def rate(done, total):
        return aggregation.completion_rate([_lesson(str(i), "p", "a", NOON, done=i < done) for i in range(total)])

    assert rate(0, 0) == "0%"
    assert rate(1, 8) == "13%"
    assert rate(1, 3) == "33%"
    assert rate(2, 3) == "67%"
    assert rate(3, 3) == "100%"


def test_enrich_lessons_tolerates_dangling_references():
    lesson = _lesson("l1", "gone", "a", NOON)
    (view,) = aggregation.enrich_lessons([lesson], [_student("a", "a@x.com")], [])
    assert view.student.id == "a"
    assert view.lesson_package is None


def test_scheduled_between_orders_by_time():
    early = _lesson("early", "p", "a", NOON - timedelta(hours=2))
    later = _lesson("later", "p", "a", NOON + timedelta(hours=2))
    hits = aggregation.scheduled_between([later, early], NOON - timedelta(hours=3), NOON + timedelta(hours=3))
    assert [l.id for l in hits] == ["early", "later"]
