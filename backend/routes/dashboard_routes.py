from datetime import datetime, time, timedelta

from fastapi import APIRouter, Depends

from backend.auth.dependencies import get_context, get_lesson_source
from backend.core.context import AppContext
from backend.models.camel import CamelModel
from backend.services.google_calendar import LessonSource
from backend.services.layout import FALLBACK_COLOR, UNKNOWN_LABEL, start_of_week
from backend.services.storage import find_by_id

router = APIRouter(tags=['dashboard'])

NEXT_LESSONS_LIMIT = 5


class UpcomingLessonResponse(CamelModel):
    id: str
    start: datetime
    end: datetime
    confirmed: bool
    student_name: str
    instructor_name: str
    color: str


class DashboardResponse(CamelModel):
    students: int
    instructors: int
    lessons_this_week: int
    next_lessons: list[UpcomingLessonResponse]


@router.get('', response_model=DashboardResponse)
async def get_dashboard(
    context: AppContext = Depends(get_context),
    source: LessonSource = Depends(get_lesson_source),
):
    students = context.store.get_students()
    instructors = context.store.get_instructors()

    now = datetime.now(context.tz)
    week_start = datetime.combine(start_of_week(now.date()), time.min, tzinfo=context.tz)
    week_end = week_start + timedelta(days=7)

    lessons = await source.list_range(week_start, week_end)
    upcoming = sorted((lesson for lesson in lessons if now <= lesson.start <= week_end), key=lambda lesson: lesson.start)

    next_lessons = []
    for lesson in upcoming[:NEXT_LESSONS_LIMIT]:
        student = find_by_id(students, lesson.student_id)
        instructor = find_by_id(instructors, lesson.instructor_id)
        next_lessons.append(
            UpcomingLessonResponse(
                id=lesson.id,
                start=lesson.start,
                end=lesson.end,
                confirmed=lesson.confirmed,
                student_name=student.full_name if student else UNKNOWN_LABEL,
                instructor_name=instructor.full_name if instructor else UNKNOWN_LABEL,
                color=instructor.color if instructor else FALLBACK_COLOR,
            )
        )

    return DashboardResponse(
        students=len(students),
        instructors=len(instructors),
        lessons_this_week=len(upcoming),
        next_lessons=next_lessons,
    )
