"""Booking workflow for a single in-progress lesson booking.

States form a closed set of frozen dataclasses; ``next_state`` handles every
transition that has no side effect, and ``BookingWorkflow.dispatch`` adds the
calendar writes and notification for create, confirm and delete.
"""
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Sequence, Union

from backend.models.instructor import Instructor
from backend.models.lesson import Lesson
from backend.models.student import Student
from backend.services.availability import check_availability
from backend.services.google_calendar import LessonSource
from backend.services.notification import NotificationService
from backend.services.storage import EntityStore, find_by_id

logger = logging.getLogger(__name__)

DEFAULT_SLOT_DURATION = timedelta(hours=1)
NOTIFICATION_FAILED_NOTICE = 'Notification could not be sent, the lesson is still unconfirmed.'
CONFIRMATION_NOT_STORED_NOTICE = 'The calendar could not be updated, the lesson is still unconfirmed.'


class BookingError(ValueError):
    """A booking action was attempted without what it requires."""


class InvalidTransition(BookingError):
    pass


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    @classmethod
    def from_grid(cls, day: date, hour: int, tz: tzinfo, duration: timedelta = DEFAULT_SLOT_DURATION) -> 'Slot':
        start = datetime.combine(day, time(hour, 0), tzinfo=tz)
        return cls(start=start, end=start + duration)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class SlotSelected:
    slot: Slot
    instructor_id: str | None = None
    preselected_instructor_id: str | None = None


@dataclass(frozen=True)
class StudentChosen:
    slot: Slot
    student_id: str
    instructor_id: str | None = None
    warning: str | None = None


@dataclass(frozen=True)
class LessonCreated:
    lesson: Lesson
    notice: str | None = None


@dataclass(frozen=True)
class Confirming:
    lesson: Lesson


@dataclass(frozen=True)
class Confirmed:
    lesson: Lesson


BookingState = Union[Idle, SlotSelected, StudentChosen, LessonCreated, Confirming, Confirmed]


@dataclass(frozen=True)
class SelectSlot:
    slot: Slot
    instructor_id: str | None = None


@dataclass(frozen=True)
class ChooseStudent:
    student_id: str


@dataclass(frozen=True)
class ChooseInstructor:
    instructor_id: str


@dataclass(frozen=True)
class OpenLesson:
    lesson: Lesson


@dataclass(frozen=True)
class CreateLesson:
    pass


@dataclass(frozen=True)
class ConfirmLesson:
    pass


@dataclass(frozen=True)
class DeleteLesson:
    pass


@dataclass(frozen=True)
class Close:
    pass


BookingEvent = Union[
    SelectSlot, ChooseStudent, ChooseInstructor, OpenLesson, CreateLesson, ConfirmLesson, DeleteLesson, Close
]


def _detail_state(lesson: Lesson) -> BookingState:
    return Confirmed(lesson) if lesson.confirmed else LessonCreated(lesson)


def next_state(
    state: BookingState,
    event: BookingEvent,
    students: Sequence[Student] = (),
    tz: tzinfo | None = None,
) -> BookingState:
    if isinstance(event, Close):
        return Idle()

    if isinstance(state, Confirming):
        raise InvalidTransition('A confirmation is already in progress.')

    if isinstance(event, SelectSlot):
        if event.slot.end <= event.slot.start:
            raise BookingError('A slot must end after it starts.')
        return SlotSelected(
            slot=event.slot,
            instructor_id=event.instructor_id,
            preselected_instructor_id=event.instructor_id,
        )

    if isinstance(event, OpenLesson):
        return _detail_state(event.lesson)

    if isinstance(event, ChooseStudent):
        if not isinstance(state, (SlotSelected, StudentChosen)):
            raise InvalidTransition('Select a slot before choosing a student.')
        student = find_by_id(students, event.student_id)
        if student is None:
            raise BookingError('Unknown student.')
        result = check_availability(student, state.slot.start, state.slot.end, tz)
        return StudentChosen(
            slot=state.slot,
            student_id=student.id,
            instructor_id=state.instructor_id,
            warning=result.reason,
        )

    if isinstance(event, ChooseInstructor):
        if not isinstance(state, (SlotSelected, StudentChosen)):
            raise InvalidTransition('Select a slot before choosing an instructor.')
        return replace(state, instructor_id=event.instructor_id or None)

    raise InvalidTransition(f'{type(event).__name__} is not allowed while {type(state).__name__}.')


def calendar_summary(student: Student | None, instructor: Instructor | None) -> tuple[str, str]:
    student_name = student.full_name if student else 'Unknown'
    instructor_name = instructor.full_name if instructor else 'Unknown'
    return f'Driving lesson - {student_name}', f'Instructor: {instructor_name}'


class BookingWorkflow:
    def __init__(
        self,
        store: EntityStore,
        source: LessonSource,
        notifier: NotificationService,
        tz: tzinfo,
        state: BookingState | None = None,
    ) -> None:
        self.store = store
        self.source = source
        self.notifier = notifier
        self.tz = tz
        self.state: BookingState = state or Idle()

    async def dispatch(self, event: BookingEvent) -> BookingState:
        if isinstance(event, CreateLesson):
            self.state = await self._create()
        elif isinstance(event, ConfirmLesson):
            self.state = await self._confirm()
        elif isinstance(event, DeleteLesson):
            self.state = await self._delete()
        else:
            students = self.store.get_students() if isinstance(event, ChooseStudent) else ()
            self.state = next_state(self.state, event, students, self.tz)
        return self.state

    async def _create(self) -> BookingState:
        state = self.state
        if not isinstance(state, StudentChosen):
            raise InvalidTransition('Choose a slot and a student before creating a lesson.')
        if not state.instructor_id:
            raise BookingError('Choose an instructor before creating a lesson.')
        if state.slot.end <= state.slot.start:
            raise BookingError('A lesson must end after it starts.')

        placeholder = Lesson(
            id=uuid.uuid4().hex,
            student_id=state.student_id,
            instructor_id=state.instructor_id,
            start=state.slot.start,
            end=state.slot.end,
            confirmed=False,
        )
        student = find_by_id(self.store.get_students(), placeholder.student_id)
        instructor = find_by_id(self.store.get_instructors(), placeholder.instructor_id)
        summary, description = calendar_summary(student, instructor)

        await self.source.create_from_lesson(placeholder, summary, description)
        return LessonCreated(await self._canonical(placeholder))

    async def _canonical(self, placeholder: Lesson) -> Lesson:
        fetched = await self.source.list_range(placeholder.start, placeholder.end)
        matches = [
            lesson
            for lesson in fetched
            if lesson.student_id == placeholder.student_id
            and lesson.instructor_id == placeholder.instructor_id
            and lesson.start == placeholder.start
            and lesson.end == placeholder.end
        ]
        if not matches:
            logger.warning('Created lesson %s not found on re-fetch, keeping local id', placeholder.id)
            return placeholder
        return next((lesson for lesson in matches if lesson.id == placeholder.id), matches[-1])

    async def _confirm(self) -> BookingState:
        state = self.state
        if not isinstance(state, LessonCreated):
            raise InvalidTransition('Only an unconfirmed lesson can be confirmed.')

        lesson = state.lesson
        self.state = Confirming(lesson)
        try:
            student = find_by_id(self.store.get_students(), lesson.student_id)
            instructor = find_by_id(self.store.get_instructors(), lesson.instructor_id)

            if student is not None and instructor is not None:
                sent = await self.notifier.send_confirmation(lesson, student, instructor, self.store.get_settings())
                if not sent:
                    return LessonCreated(lesson, notice=NOTIFICATION_FAILED_NOTICE)
            else:
                logger.warning('Lesson %s references a missing student or instructor, notification skipped', lesson.id)

            await self.source.update_event(lesson.id, {'confirmed': True})
            stored = await self.source.get_lesson(lesson.id)
            if stored is None or not stored.confirmed:
                logger.warning('Confirmation of lesson %s was not stored', lesson.id)
                return LessonCreated(lesson, notice=CONFIRMATION_NOT_STORED_NOTICE)
        except Exception:
            self.state = state
            raise
        return Confirmed(lesson.model_copy(update={'confirmed': True}))

    async def _delete(self) -> BookingState:
        state = self.state
        if not isinstance(state, (LessonCreated, Confirmed)):
            raise InvalidTransition('Open a lesson before deleting it.')
        await self.source.delete_event(state.lesson.id)
        return Idle()
