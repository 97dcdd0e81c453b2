"""Calendar grid geometry for the planning views.

Lessons are placed on an hourly grid. Lessons whose start falls in the same
quarter hour of the same column are stacked in bands; grid rows grow to the
tallest stack found in any column so that every column shares row
boundaries. Everything is recomputed from the lesson list on each call.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta, tzinfo
from typing import Sequence

from backend.models.instructor import Instructor
from backend.models.lesson import Lesson
from backend.models.student import Student
from backend.services.storage import find_by_id

UNKNOWN_LABEL = 'Unknown'
FALLBACK_COLOR = '#cccccc'


@dataclass(frozen=True)
class GridSpec:
    start_hour: int = 8
    end_hour: int = 20
    row_height: float = 64
    min_block_height: float = 40
    stack_spacing: float = 2
    max_stack_depth: int = 4
    slot_minutes: int = 15

    @property
    def hours(self) -> list[int]:
        return list(range(self.start_hour, self.end_hour))


@dataclass(frozen=True)
class LessonBlock:
    lesson_id: str
    column: int
    top: float
    height: float
    stack_index: int = 0
    stack_size: int = 1


@dataclass(frozen=True)
class OverflowBlock:
    column: int
    hour: int
    minute: int
    top: float
    height: float
    hidden_lesson_ids: tuple[str, ...]

    @property
    def label(self) -> str:
        return f'+{len(self.hidden_lesson_ids)} more'


@dataclass
class CalendarLayout:
    row_heights: dict[int, float]
    row_tops: dict[int, float]
    total_height: float
    blocks: list[LessonBlock] = field(default_factory=list)
    overflows: list[OverflowBlock] = field(default_factory=list)
    unplaced: list[str] = field(default_factory=list)


@dataclass
class _Group:
    hour: int
    minute: int
    lessons: list[Lesson]
    offset: float = 0.0

    def band_count(self, grid: GridSpec) -> int:
        return min(len(self.lessons), grid.max_stack_depth)

    def visible(self, grid: GridSpec) -> list[Lesson]:
        if len(self.lessons) <= grid.max_stack_depth:
            return self.lessons
        return self.lessons[: grid.max_stack_depth - 1]

    def hidden(self, grid: GridSpec) -> list[Lesson]:
        return self.lessons[len(self.visible(grid)):]


def base_height(lesson: Lesson, grid: GridSpec) -> float:
    return (lesson.end - lesson.start).total_seconds() / 3600 * grid.row_height


def band_height(lesson: Lesson, bands: int, grid: GridSpec) -> float:
    return max(grid.min_block_height, base_height(lesson, grid) / bands)


def _band_offsets(group: _Group, grid: GridSpec) -> tuple[list[float], float]:
    """Top of each visible band relative to the stack, and where the next band would start."""
    bands = group.band_count(grid)
    offsets: list[float] = []
    cursor = 0.0
    for lesson in group.visible(grid):
        offsets.append(cursor)
        cursor += band_height(lesson, bands, grid) + grid.stack_spacing
    return offsets, cursor


def _stack_span(group: _Group, grid: GridSpec) -> float:
    _, next_top = _band_offsets(group, grid)
    if group.hidden(grid):
        return next_top + grid.min_block_height
    return next_top - grid.stack_spacing


def _group_column(lessons: Sequence[Lesson], grid: GridSpec, tz: tzinfo, unplaced: list[str]) -> dict[int, list[_Group]]:
    slots: dict[tuple[int, int], _Group] = {}
    for lesson in lessons:
        local_start = lesson.start.astimezone(tz)
        if not grid.start_hour <= local_start.hour < grid.end_hour:
            unplaced.append(lesson.id)
            continue
        bucket = local_start.minute // grid.slot_minutes * grid.slot_minutes
        key = (local_start.hour, bucket)
        if key not in slots:
            slots[key] = _Group(hour=local_start.hour, minute=bucket, lessons=[])
        slots[key].lessons.append(lesson)

    by_hour: dict[int, list[_Group]] = {}
    for key in sorted(slots):
        by_hour.setdefault(key[0], []).append(slots[key])
    return by_hour


def _required_heights(by_hour: dict[int, list[_Group]], grid: GridSpec) -> dict[int, float]:
    """Place stacks inside each hour and return the height each hour needs."""
    required: dict[int, float] = {}
    for hour, groups in by_hour.items():
        floor = 0.0
        needed = grid.row_height
        for group in groups:
            if len(group.lessons) < 2:
                continue
            group.offset = max(group.minute / 60 * grid.row_height, floor)
            bottom = group.offset + _stack_span(group, grid)
            floor = bottom + grid.stack_spacing
            needed = max(needed, bottom)
        required[hour] = needed
    return required


def compute_layout(columns: Sequence[Sequence[Lesson]], grid: GridSpec, tz: tzinfo) -> CalendarLayout:
    unplaced: list[str] = []
    grouped = [_group_column(lessons, grid, tz, unplaced) for lessons in columns]

    row_heights = {hour: float(grid.row_height) for hour in grid.hours}
    for by_hour in grouped:
        for hour, needed in _required_heights(by_hour, grid).items():
            row_heights[hour] = max(row_heights[hour], needed)

    row_tops: dict[int, float] = {}
    cursor = 0.0
    for hour in grid.hours:
        row_tops[hour] = cursor
        cursor += row_heights[hour]

    layout = CalendarLayout(row_heights=row_heights, row_tops=row_tops, total_height=cursor, unplaced=unplaced)

    for column_index, by_hour in enumerate(grouped):
        for hour, groups in by_hour.items():
            for group in groups:
                if len(group.lessons) == 1:
                    lesson = group.lessons[0]
                    minutes = lesson.start.astimezone(tz).minute
                    layout.blocks.append(
                        LessonBlock(
                            lesson_id=lesson.id,
                            column=column_index,
                            top=row_tops[hour] + minutes / 60 * grid.row_height,
                            height=base_height(lesson, grid),
                        )
                    )
                    continue

                slot_top = row_tops[hour] + group.offset
                bands = group.band_count(grid)
                offsets, next_top = _band_offsets(group, grid)
                for index, lesson in enumerate(group.visible(grid)):
                    layout.blocks.append(
                        LessonBlock(
                            lesson_id=lesson.id,
                            column=column_index,
                            top=slot_top + offsets[index],
                            height=band_height(lesson, bands, grid),
                            stack_index=index,
                            stack_size=len(group.lessons),
                        )
                    )
                hidden = group.hidden(grid)
                if hidden:
                    layout.overflows.append(
                        OverflowBlock(
                            column=column_index,
                            hour=hour,
                            minute=group.minute,
                            top=slot_top + next_top,
                            height=grid.min_block_height,
                            hidden_lesson_ids=tuple(lesson.id for lesson in hidden),
                        )
                    )

    return layout


def start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_days(day: date) -> list[date]:
    monday = start_of_week(day)
    return [monday + timedelta(days=offset) for offset in range(7)]


def layout_week(lessons: Sequence[Lesson], day: date, grid: GridSpec, tz: tzinfo) -> tuple[list[date], CalendarLayout]:
    days = week_days(day)
    columns = [[lesson for lesson in lessons if lesson.start.astimezone(tz).date() == column_day] for column_day in days]
    return days, compute_layout(columns, grid, tz)


def layout_team(
    lessons: Sequence[Lesson],
    day: date,
    instructor_ids: Sequence[str],
    grid: GridSpec,
    tz: tzinfo,
) -> CalendarLayout:
    columns = [
        [
            lesson
            for lesson in lessons
            if lesson.instructor_id == instructor_id and lesson.start.astimezone(tz).date() == day
        ]
        for instructor_id in instructor_ids
    ]
    return compute_layout(columns, grid, tz)


@dataclass(frozen=True)
class LessonLabel:
    title: str
    subtitle: str
    color: str
    confirmed: bool


def describe_lesson(
    lesson: Lesson,
    students: Sequence[Student],
    instructors: Sequence[Instructor],
    tz: tzinfo,
    show_instructor: bool = True,
) -> LessonLabel:
    student = find_by_id(students, lesson.student_id)
    instructor = find_by_id(instructors, lesson.instructor_id)

    subtitle = f'{lesson.start.astimezone(tz):%H:%M}'
    if show_instructor and instructor is not None:
        subtitle = f'{subtitle} - {instructor.first_name}'

    return LessonLabel(
        title=student.full_name if student else UNKNOWN_LABEL,
        subtitle=subtitle,
        color=instructor.color if instructor else FALLBACK_COLOR,
        confirmed=lesson.confirmed,
    )
