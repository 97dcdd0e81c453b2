from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AwareDatetime, model_validator

from backend.auth.dependencies import get_context, get_lesson_source, get_workflow
from backend.core.context import AppContext
from backend.models.camel import CamelModel
from backend.models.lesson import Lesson
from backend.services.availability import check_availability
from backend.services.booking import (
    BookingError,
    BookingState,
    BookingWorkflow,
    ChooseInstructor,
    ChooseStudent,
    ConfirmLesson,
    Confirmed,
    CreateLesson,
    DeleteLesson,
    OpenLesson,
    SelectSlot,
    Slot,
    StudentChosen,
)
from backend.services.google_calendar import LessonSource
from backend.services.layout import CalendarLayout, describe_lesson, layout_team, layout_week, start_of_week
from backend.services.storage import find_by_id

router = APIRouter(tags=['planning'])


class AvailabilityCheckRequest(CamelModel):
    student_id: str
    start: AwareDatetime
    end: AwareDatetime


class AvailabilityCheckResponse(CamelModel):
    available: bool
    reason: str | None = None


class CreateLessonRequest(CamelModel):
    student_id: str
    instructor_id: str
    start: AwareDatetime
    end: AwareDatetime | None = None

    @model_validator(mode='after')
    def validate_interval(self) -> 'CreateLessonRequest':
        if self.end is not None and self.end <= self.start:
            raise ValueError('Lesson must end after it starts.')
        return self


class BookingResponse(CamelModel):
    state: str
    lesson: Lesson | None = None
    warning: str | None = None
    notice: str | None = None


class LessonView(CamelModel):
    id: str
    student_id: str
    instructor_id: str
    start: datetime
    end: datetime
    confirmed: bool
    title: str
    subtitle: str
    color: str
    column: int
    top: float
    height: float
    stack_index: int
    stack_size: int


class OverflowView(CamelModel):
    column: int
    hour: int
    minute: int
    top: float
    height: float
    label: str
    hidden_lesson_ids: list[str]


class RowView(CamelModel):
    hour: int
    top: float
    height: float


class PlanningColumn(CamelModel):
    key: str
    label: str
    color: str | None = None


class PlanningResponse(CamelModel):
    columns: list[PlanningColumn]
    rows: list[RowView]
    total_height: float
    lessons: list[LessonView]
    overflows: list[OverflowView]
    unplaced: list[str]


def booking_response(state: BookingState, warning: str | None = None) -> BookingResponse:
    lesson = getattr(state, 'lesson', None)
    return BookingResponse(
        state=type(state).__name__,
        lesson=lesson,
        warning=warning,
        notice=getattr(state, 'notice', None),
    )


def day_bounds(context: AppContext, first_day: date, days: int) -> tuple[datetime, datetime]:
    start = datetime.combine(first_day, time.min, tzinfo=context.tz)
    return start, start + timedelta(days=days)


def planning_response(
    context: AppContext,
    columns: list[PlanningColumn],
    lessons: list[Lesson],
    layout: CalendarLayout,
    show_instructor: bool,
) -> PlanningResponse:
    students = context.store.get_students()
    instructors = context.store.get_instructors()
    by_id = {lesson.id: lesson for lesson in lessons}

    views = []
    for block in layout.blocks:
        lesson = by_id[block.lesson_id]
        label = describe_lesson(lesson, students, instructors, context.tz, show_instructor=show_instructor)
        views.append(
            LessonView(
                **lesson.model_dump(),
                title=label.title,
                subtitle=label.subtitle,
                color=label.color,
                column=block.column,
                top=block.top,
                height=block.height,
                stack_index=block.stack_index,
                stack_size=block.stack_size,
            )
        )

    return PlanningResponse(
        columns=columns,
        rows=[
            RowView(hour=hour, top=layout.row_tops[hour], height=layout.row_heights[hour])
            for hour in context.grid.hours
        ],
        total_height=layout.total_height,
        lessons=views,
        overflows=[
            OverflowView(
                column=overflow.column,
                hour=overflow.hour,
                minute=overflow.minute,
                top=overflow.top,
                height=overflow.height,
                label=overflow.label,
                hidden_lesson_ids=list(overflow.hidden_lesson_ids),
            )
            for overflow in layout.overflows
        ],
        unplaced=layout.unplaced,
    )


@router.get('/week', response_model=PlanningResponse)
async def get_week(
    day: date | None = Query(default=None, alias='date'),
    context: AppContext = Depends(get_context),
    source: LessonSource = Depends(get_lesson_source),
):
    target = day or datetime.now(context.tz).date()
    range_start, range_end = day_bounds(context, start_of_week(target), 7)
    lessons = await source.list_range(range_start, range_end)

    days, layout = layout_week(lessons, target, context.grid, context.tz)
    columns = [PlanningColumn(key=column_day.isoformat(), label=f'{column_day:%a %d}') for column_day in days]
    return planning_response(context, columns, lessons, layout, show_instructor=True)


@router.get('/team', response_model=PlanningResponse)
async def get_team(
    day: date | None = Query(default=None, alias='date'),
    context: AppContext = Depends(get_context),
    source: LessonSource = Depends(get_lesson_source),
):
    target = day or datetime.now(context.tz).date()
    range_start, range_end = day_bounds(context, target, 1)
    lessons = await source.list_range(range_start, range_end)

    instructors = context.store.get_instructors()
    layout = layout_team(lessons, target, [instructor.id for instructor in instructors], context.grid, context.tz)
    columns = [
        PlanningColumn(key=instructor.id, label=instructor.full_name, color=instructor.color)
        for instructor in instructors
    ]
    return planning_response(context, columns, lessons, layout, show_instructor=False)


@router.post('/availability-check', response_model=AvailabilityCheckResponse)
def availability_check(data: AvailabilityCheckRequest, context: AppContext = Depends(get_context)):
    student = find_by_id(context.store.get_students(), data.student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found.')

    result = check_availability(student, data.start, data.end, context.tz)
    return AvailabilityCheckResponse(available=result.available, reason=result.reason)


@router.post('/lessons', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_lesson(data: CreateLessonRequest, workflow: BookingWorkflow = Depends(get_workflow)):
    end = data.end or data.start + timedelta(hours=1)
    try:
        await workflow.dispatch(SelectSlot(Slot(start=data.start, end=end)))
        chosen = await workflow.dispatch(ChooseStudent(data.student_id))
        await workflow.dispatch(ChooseInstructor(data.instructor_id))
        state = await workflow.dispatch(CreateLesson())
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    warning = chosen.warning if isinstance(chosen, StudentChosen) else None
    return booking_response(state, warning=warning)


async def open_lesson(lesson_id: str, workflow: BookingWorkflow) -> BookingState:
    lesson = await workflow.source.get_lesson(lesson_id)
    if lesson is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Lesson not found.')
    return await workflow.dispatch(OpenLesson(lesson))


@router.get('/lessons/{lesson_id}', response_model=BookingResponse)
async def get_lesson(lesson_id: str, workflow: BookingWorkflow = Depends(get_workflow)):
    return booking_response(await open_lesson(lesson_id, workflow))


@router.post('/lessons/{lesson_id}/confirm', response_model=BookingResponse)
async def confirm_lesson(lesson_id: str, workflow: BookingWorkflow = Depends(get_workflow)):
    state = await open_lesson(lesson_id, workflow)
    if isinstance(state, Confirmed):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Lesson is already confirmed.')

    try:
        state = await workflow.dispatch(ConfirmLesson())
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return booking_response(state)


@router.delete('/lessons/{lesson_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(lesson_id: str, workflow: BookingWorkflow = Depends(get_workflow)):
    await open_lesson(lesson_id, workflow)
    try:
        await workflow.dispatch(DeleteLesson())
    except BookingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
