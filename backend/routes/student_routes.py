import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import get_context
from backend.core.context import AppContext
from backend.models.camel import CamelModel
from backend.models.student import Availability, Student
from backend.services.storage import find_by_id

router = APIRouter(tags=['students'])

MAX_NOTES_LENGTH = 1000


class StudentRequest(CamelModel):
    first_name: str
    last_name: str = ''
    email: str = ''
    phone: str = ''
    notes: str | None = None
    availability: list[Availability] = Field(default_factory=list)

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('First name is required.')
        return normalized

    @field_validator('last_name', 'phone')
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

        return normalized


def save_or_503(save, items) -> None:
    try:
        save(items)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Storage unavailable. Verify DATABASE_URL.',
        ) from exc


@router.get('', response_model=list[Student])
def list_students(context: AppContext = Depends(get_context)):
    return sorted(context.store.get_students(), key=lambda student: (student.last_name.lower(), student.first_name.lower()))


@router.post('', response_model=Student, status_code=status.HTTP_201_CREATED)
def create_student(data: StudentRequest, context: AppContext = Depends(get_context)):
    student = Student(id=uuid.uuid4().hex, **data.model_dump())
    students = context.store.get_students()
    students.append(student)
    save_or_503(context.store.save_students, students)
    return student


@router.get('/{student_id}', response_model=Student)
def get_student(student_id: str, context: AppContext = Depends(get_context)):
    student = find_by_id(context.store.get_students(), student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found.')
    return student


@router.put('/{student_id}', response_model=Student)
def update_student(student_id: str, data: StudentRequest, context: AppContext = Depends(get_context)):
    students = context.store.get_students()
    if find_by_id(students, student_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found.')

    updated = Student(id=student_id, **data.model_dump())
    save_or_503(context.store.save_students, [updated if student.id == student_id else student for student in students])
    return updated


@router.delete('/{student_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_student(student_id: str, context: AppContext = Depends(get_context)):
    students = context.store.get_students()
    if find_by_id(students, student_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found.')

    save_or_503(context.store.save_students, [student for student in students if student.id != student_id])
