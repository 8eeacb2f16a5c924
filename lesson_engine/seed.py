from datetime import date, time

from .extensions import db
from .models import (
    AcademicYear,
    ClassGroup,
    ClassSchedule,
    Classroom,
    PublicHoliday,
    Semester,
    Student,
    Teacher,
    TeachingBreak,
)


def _academic_year_start(today: date) -> int:
    return today.year if today.month >= 9 else today.year - 1


def seed_data(today: date | None = None) -> ClassGroup:
    existing = ClassGroup.query.order_by(ClassGroup.created_at).first()
    if existing is not None:
        return existing

    today = today or date.today()
    first_year = _academic_year_start(today)

    year = AcademicYear(
        name=f"{first_year}/{first_year + 1}",
        start_date=date(first_year, 9, 1),
        end_date=date(first_year + 1, 6, 30),
        is_active=True,
    )
    year.semesters.extend(
        [
            Semester(
                name="Fall semester",
                semester_number=1,
                start_date=date(first_year, 9, 1),
                end_date=date(first_year + 1, 1, 31),
            ),
            Semester(
                name="Spring semester",
                semester_number=2,
                start_date=date(first_year + 1, 2, 1),
                end_date=date(first_year + 1, 6, 30),
            ),
        ]
    )
    db.session.add(year)
    db.session.flush()

    db.session.add_all(
        [
            TeachingBreak(
                academic_year_id=year.id,
                name="Winter break",
                start_date=date(first_year, 12, 22),
                end_date=date(first_year + 1, 1, 4),
                break_type="vacation",
            ),
            TeachingBreak(
                academic_year_id=year.id,
                name="Spring exams",
                start_date=date(first_year + 1, 6, 8),
                end_date=date(first_year + 1, 6, 19),
                break_type="exam_period",
            ),
            PublicHoliday(
                academic_year_id=year.id,
                name="New Year's Day",
                holiday_date=date(first_year + 1, 1, 1),
                recurring_annually=True,
            ),
            PublicHoliday(
                academic_year_id=year.id,
                name="Labour Day",
                holiday_date=date(first_year + 1, 5, 1),
                recurring_annually=True,
            ),
        ]
    )

    teacher = Teacher(name="Alice Martin", email="alice@example.com")
    classroom = Classroom(name="Room 101", capacity=24)
    class_group = ClassGroup(name="English B1 - Group A", teacher=teacher, classroom=classroom)
    class_group.students.extend(
        [
            Student(full_name="Emma Dupont"),
            Student(full_name="Lucas Bernard"),
        ]
    )
    class_group.schedules.extend(
        [
            ClassSchedule(weekday=0, start_time=time(10, 0), end_time=time(11, 30)),
            ClassSchedule(weekday=3, start_time=time(14, 0), end_time=time(15, 30)),
        ]
    )
    db.session.add(class_group)
    db.session.commit()
    return class_group
