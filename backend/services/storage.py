import json
import logging
from typing import Protocol, Sequence, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.models.collection import StoredCollection
from backend.models.instructor import COLORS, Instructor
from backend.models.lesson import Lesson
from backend.models.settings import AppSettings
from backend.models.student import Student

logger = logging.getLogger(__name__)

STUDENTS_KEY = 'autoplanning_students'
INSTRUCTORS_KEY = 'autoplanning_instructors'
LESSONS_KEY = 'autoplanning_lessons'
SETTINGS_KEY = 'autoplanning_settings'

DEFAULT_INSTRUCTORS = [
    Instructor(id='1', first_name='Jean', last_name='Dupont', email='jean@ecole.fr', phone='0600000001', color=COLORS[0]),
    Instructor(id='2', first_name='Marie', last_name='Curie', email='marie@ecole.fr', phone='0600000002', color=COLORS[5]),
]

T = TypeVar('T', bound=BaseModel)


class KeyValueStore(Protocol):
    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        self.data[key] = value


class SqlKeyValueStore:
    """Keeps each collection as one JSON document in ``stored_collections``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def read(self, key: str) -> str | None:
        db: Session = self.session_factory()
        try:
            row = db.query(StoredCollection).filter(StoredCollection.key == key).first()
            return row.value if row else None
        except SQLAlchemyError:
            logger.exception('Failed to read collection %s', key)
            return None
        finally:
            db.close()

    def write(self, key: str, value: str) -> None:
        db: Session = self.session_factory()
        try:
            row = db.query(StoredCollection).filter(StoredCollection.key == key).first()
            if row is None:
                db.add(StoredCollection(key=key, value=value))
            else:
                row.value = value
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


class EntityStore:
    """Typed get/save access to the planner's collections.

    Reads are fail-soft: a missing or malformed collection comes back empty
    (or as default settings) instead of raising. Saves overwrite the whole
    collection, last write wins.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def _read_list(self, key: str, model: type[T]) -> list[T]:
        raw = self.kv.read(key)
        if not raw:
            return []
        try:
            return TypeAdapter(list[model]).validate_json(raw)
        except ValidationError as exc:
            logger.warning('Discarding malformed collection %s: %s', key, exc.error_count())
            return []

    def _write_list(self, key: str, items: Sequence[BaseModel]) -> None:
        payload = [item.model_dump(mode='json', by_alias=True) for item in items]
        self.kv.write(key, json.dumps(payload))

    def get_students(self) -> list[Student]:
        return self._read_list(STUDENTS_KEY, Student)

    def save_students(self, students: Sequence[Student]) -> None:
        self._write_list(STUDENTS_KEY, students)

    def get_instructors(self) -> list[Instructor]:
        return self._read_list(INSTRUCTORS_KEY, Instructor)

    def save_instructors(self, instructors: Sequence[Instructor]) -> None:
        self._write_list(INSTRUCTORS_KEY, instructors)

    def get_lessons(self) -> list[Lesson]:
        return self._read_list(LESSONS_KEY, Lesson)

    def save_lessons(self, lessons: Sequence[Lesson]) -> None:
        self._write_list(LESSONS_KEY, lessons)

    def get_settings(self) -> AppSettings:
        raw = self.kv.read(SETTINGS_KEY)
        if not raw:
            return AppSettings()
        try:
            return AppSettings.model_validate_json(raw)
        except ValidationError:
            logger.warning('Discarding malformed settings, falling back to defaults')
            return AppSettings()

    def save_settings(self, settings: AppSettings) -> None:
        self.kv.write(SETTINGS_KEY, settings.model_dump_json(by_alias=True))


def seed_defaults(store: EntityStore) -> None:
    if store.kv.read(INSTRUCTORS_KEY) is None:
        store.save_instructors(DEFAULT_INSTRUCTORS)
    if store.kv.read(SETTINGS_KEY) is None:
        store.save_settings(AppSettings())


def find_by_id(items: Sequence[T], item_id: str) -> T | None:
    if not item_id:
        return None
    return next((item for item in items if getattr(item, 'id', None) == item_id), None)
