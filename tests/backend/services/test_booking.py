import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from backend.auth.google_oauth import GoogleSession
from backend.models.instructor import Instructor
from backend.models.lesson import Lesson
from backend.models.student import Availability, Student
from backend.services.booking import (
    CONFIRMATION_NOT_STORED_NOTICE,
    NOTIFICATION_FAILED_NOTICE,
    BookingError,
    BookingWorkflow,
    ChooseInstructor,
    ChooseStudent,
    Close,
    ConfirmLesson,
    Confirmed,
    Confirming,
    CreateLesson,
    DeleteLesson,
    Idle,
    InvalidTransition,
    LessonCreated,
    OpenLesson,
    SelectSlot,
    Slot,
    SlotSelected,
    StudentChosen,
    next_state,
)
from backend.services.google_calendar import CalendarLessonSource, GoogleCalendarClient, LocalLessonSource
from backend.services.layout import GridSpec, layout_week
from backend.services.storage import EntityStore, MemoryKeyValueStore

UTC = timezone.utc
MONDAY = date(2026, 1, 5)

ALICE = Student(
    id='alice',
    first_name='Alice',
    last_name='Martin',
    phone='+33600000001',
    availability=[Availability(day=1, start_hour=9, end_hour=12)],
)
BOB = Instructor(id='bob', first_name='Bob', last_name='Durand', color='#ef4444')


class FakeNotifier:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[tuple[Lesson, Student, Instructor]] = []

    async def send_confirmation(self, lesson, student, instructor, settings) -> bool:
        self.calls.append((lesson, student, instructor))
        return self.result


class ExplodingNotifier:
    async def send_confirmation(self, lesson, student, instructor, settings) -> bool:
        raise RuntimeError('provider down')


def make_store() -> EntityStore:
    store = EntityStore(MemoryKeyValueStore())
    store.save_students([ALICE])
    store.save_instructors([BOB])
    return store


def make_workflow(store: EntityStore | None = None, notifier=None, source=None) -> BookingWorkflow:
    store = store or make_store()
    return BookingWorkflow(store, source or LocalLessonSource(store), notifier or FakeNotifier(), UTC)


def monday_at(hour: int) -> Slot:
    return Slot.from_grid(MONDAY, hour, UTC)


def book(workflow: BookingWorkflow, slot: Slot, student_id: str = 'alice', instructor_id: str = 'bob'):
    async def run():
        await workflow.dispatch(SelectSlot(slot))
        await workflow.dispatch(ChooseStudent(student_id))
        await workflow.dispatch(ChooseInstructor(instructor_id))
        return await workflow.dispatch(CreateLesson())

    return asyncio.run(run())


def test_select_slot_keeps_preselected_instructor() -> None:
    state = next_state(Idle(), SelectSlot(monday_at(10), instructor_id='bob'))

    assert state == SlotSelected(slot=monday_at(10), instructor_id='bob', preselected_instructor_id='bob')


def test_select_slot_rejects_empty_interval() -> None:
    slot = Slot(start=datetime(2026, 1, 5, 10, tzinfo=UTC), end=datetime(2026, 1, 5, 10, tzinfo=UTC))

    with pytest.raises(BookingError):
        next_state(Idle(), SelectSlot(slot))


def test_choose_student_inside_availability_has_no_warning() -> None:
    state = next_state(SlotSelected(slot=monday_at(10)), ChooseStudent('alice'), [ALICE], UTC)

    assert isinstance(state, StudentChosen)
    assert state.warning is None


def test_choose_student_outside_availability_is_a_warning_not_a_block() -> None:
    state = next_state(SlotSelected(slot=monday_at(14)), ChooseStudent('alice'), [ALICE], UTC)

    assert isinstance(state, StudentChosen)
    assert state.warning == 'Alice is only available from 9h to 12h that day'


def test_choose_unknown_student_fails() -> None:
    with pytest.raises(BookingError):
        next_state(SlotSelected(slot=monday_at(10)), ChooseStudent('nobody'), [ALICE], UTC)


def test_choose_student_requires_a_slot() -> None:
    with pytest.raises(InvalidTransition):
        next_state(Idle(), ChooseStudent('alice'), [ALICE], UTC)


def test_open_lesson_picks_detail_state_from_confirmed_flag() -> None:
    lesson = Lesson(id='l1', start=monday_at(10).start, end=monday_at(10).end)

    assert next_state(Idle(), OpenLesson(lesson)) == LessonCreated(lesson)
    confirmed = lesson.model_copy(update={'confirmed': True})
    assert next_state(Idle(), OpenLesson(confirmed)) == Confirmed(confirmed)


def test_close_returns_to_idle_from_any_state() -> None:
    lesson = Lesson(id='l1', start=monday_at(10).start, end=monday_at(10).end)

    assert next_state(Confirming(lesson), Close()) == Idle()
    assert next_state(SlotSelected(slot=monday_at(10)), Close()) == Idle()


def test_confirming_rejects_other_events() -> None:
    lesson = Lesson(id='l1', start=monday_at(10).start, end=monday_at(10).end)

    with pytest.raises(InvalidTransition):
        next_state(Confirming(lesson), SelectSlot(monday_at(11)))


def test_create_requires_an_instructor() -> None:
    workflow = make_workflow()

    async def run():
        await workflow.dispatch(SelectSlot(monday_at(10)))
        await workflow.dispatch(ChooseStudent('alice'))
        await workflow.dispatch(CreateLesson())

    with pytest.raises(BookingError):
        asyncio.run(run())


def test_create_outside_student_choice_is_invalid() -> None:
    with pytest.raises(InvalidTransition):
        asyncio.run(make_workflow().dispatch(CreateLesson()))


def test_booking_scenario_creates_confirms_and_shows_on_week() -> None:
    store = make_store()
    notifier = FakeNotifier(result=True)
    workflow = make_workflow(store, notifier)

    created = book(workflow, monday_at(10))

    assert isinstance(created, LessonCreated)
    assert created.lesson.confirmed is False
    assert created.lesson.student_id == 'alice'
    assert created.lesson.instructor_id == 'bob'
    assert created.lesson.end - created.lesson.start == timedelta(hours=1)
    assert [lesson.id for lesson in store.get_lessons()] == [created.lesson.id]

    confirmed = asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert isinstance(confirmed, Confirmed)
    assert confirmed.lesson.confirmed is True
    assert store.get_lessons()[0].confirmed is True
    assert [(student.id, instructor.id) for _, student, instructor in notifier.calls] == [('alice', 'bob')]

    days, layout = layout_week(store.get_lessons(), MONDAY, GridSpec(), UTC)
    assert days[0] == MONDAY
    [block] = layout.blocks
    assert block.column == 0
    assert block.top == 2 * 64
    assert block.height == 64


def test_failed_notification_keeps_lesson_unconfirmed() -> None:
    store = make_store()
    workflow = make_workflow(store, FakeNotifier(result=False))
    book(workflow, monday_at(10))

    state = asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert isinstance(state, LessonCreated)
    assert state.notice == NOTIFICATION_FAILED_NOTICE
    assert state.lesson.confirmed is False
    assert store.get_lessons()[0].confirmed is False


def test_missing_student_skips_notification_but_confirms() -> None:
    store = make_store()
    notifier = FakeNotifier()
    workflow = make_workflow(store, notifier)
    book(workflow, monday_at(10))
    store.save_students([])

    state = asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert isinstance(state, Confirmed)
    assert notifier.calls == []


def test_notifier_exception_restores_previous_state() -> None:
    workflow = make_workflow(notifier=ExplodingNotifier())
    created = book(workflow, monday_at(10))

    with pytest.raises(RuntimeError):
        asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert workflow.state == created


def test_confirm_twice_is_invalid() -> None:
    workflow = make_workflow()
    book(workflow, monday_at(10))
    asyncio.run(workflow.dispatch(ConfirmLesson()))

    with pytest.raises(InvalidTransition):
        asyncio.run(workflow.dispatch(ConfirmLesson()))


def test_delete_removes_lesson_and_returns_to_idle() -> None:
    store = make_store()
    workflow = make_workflow(store)
    book(workflow, monday_at(10))

    state = asyncio.run(workflow.dispatch(DeleteLesson()))

    assert state == Idle()
    assert store.get_lessons() == []


def test_delete_requires_an_open_lesson() -> None:
    with pytest.raises(InvalidTransition):
        asyncio.run(make_workflow().dispatch(DeleteLesson()))


class RenamingSource:
    """Stores created lessons under a provider-assigned id."""

    def __init__(self) -> None:
        self.lessons: list[Lesson] = []
        self.updates: list[tuple[str, dict]] = []

    async def list_range(self, start, end):
        return [lesson for lesson in self.lessons if lesson.start < end and lesson.end > start]

    async def get_lesson(self, event_id):
        return next((lesson for lesson in self.lessons if lesson.id == event_id), None)

    async def create_from_lesson(self, lesson, summary, description):
        self.lessons.append(lesson.model_copy(update={'id': f'google-{len(self.lessons) + 1}'}))

    async def update_event(self, event_id, fields):
        self.updates.append((event_id, fields))
        self.lessons = [
            lesson.model_copy(update={'confirmed': fields['confirmed']}) if lesson.id == event_id else lesson
            for lesson in self.lessons
        ]

    async def delete_event(self, event_id):
        self.lessons = [lesson for lesson in self.lessons if lesson.id != event_id]


def test_created_lesson_adopts_provider_id_from_refetch() -> None:
    source = RenamingSource()
    workflow = make_workflow(source=source)

    created = book(workflow, monday_at(10))
    asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert created.lesson.id == 'google-1'
    assert source.updates == [('google-1', {'confirmed': True})]


class SilentSource(RenamingSource):
    async def create_from_lesson(self, lesson, summary, description):
        return None


def test_created_lesson_keeps_local_id_when_refetch_misses() -> None:
    created = book(make_workflow(source=SilentSource()), monday_at(10))

    assert isinstance(created, LessonCreated)
    assert created.lesson.id
    assert created.lesson.confirmed is False


class DroppedUpdateSource(RenamingSource):
    """Accepts the confirm write but never stores it."""

    async def update_event(self, event_id, fields):
        self.updates.append((event_id, fields))


def test_confirm_reports_unstored_calendar_write() -> None:
    source = DroppedUpdateSource()
    notifier = FakeNotifier()
    workflow = make_workflow(source=source, notifier=notifier)
    created = book(workflow, monday_at(10))

    state = asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert state == LessonCreated(created.lesson, notice=CONFIRMATION_NOT_STORED_NOTICE)
    assert state.lesson.confirmed is False
    assert len(notifier.calls) == 1


def test_confirm_with_failing_calendar_patch_stays_unconfirmed() -> None:
    events: dict[str, dict] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == 'POST':
            event = {'id': 'evt1', **json.loads(request.content)}
            events[event['id']] = event
            return httpx.Response(200, json=event)
        if request.method == 'PATCH':
            return httpx.Response(500, json={'error': 'backend error'})
        if request.url.path.endswith('/events'):
            return httpx.Response(200, json={'items': list(events.values())})
        return httpx.Response(200, json=events['evt1'])

    client = GoogleCalendarClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        GoogleSession(access_token='token'),
        calendar_id='school',
        api_url='https://calendar.test/v3',
    )
    workflow = make_workflow(source=CalendarLessonSource(client, UTC))
    created = book(workflow, monday_at(10))

    state = asyncio.run(workflow.dispatch(ConfirmLesson()))

    assert created.lesson.id == 'evt1'
    assert isinstance(state, LessonCreated)
    assert state.notice == CONFIRMATION_NOT_STORED_NOTICE
