import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import field_validator

from backend.auth.dependencies import get_context
from backend.core.context import AppContext
from backend.models.camel import CamelModel
from backend.models.instructor import COLORS, Instructor
from backend.routes.student_routes import save_or_503
from backend.services.storage import find_by_id

router = APIRouter(tags=['instructors'])


class InstructorRequest(CamelModel):
    first_name: str
    last_name: str = ''
    email: str = ''
    phone: str = ''
    color: str = COLORS[0]

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('First name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('color')
    @classmethod
    def validate_color(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in COLORS:
            raise ValueError('Color must be one of the instructor palette colors.')
        return normalized


@router.get('/colors', response_model=list[str])
def list_colors():
    return COLORS


@router.get('', response_model=list[Instructor])
def list_instructors(context: AppContext = Depends(get_context)):
    return context.store.get_instructors()


@router.post('', response_model=Instructor, status_code=status.HTTP_201_CREATED)
def create_instructor(data: InstructorRequest, context: AppContext = Depends(get_context)):
    instructor = Instructor(id=uuid.uuid4().hex, **data.model_dump())
    instructors = context.store.get_instructors()
    instructors.append(instructor)
    save_or_503(context.store.save_instructors, instructors)
    return instructor


@router.put('/{instructor_id}', response_model=Instructor)
def update_instructor(instructor_id: str, data: InstructorRequest, context: AppContext = Depends(get_context)):
    instructors = context.store.get_instructors()
    if find_by_id(instructors, instructor_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Instructor not found.')

    updated = Instructor(id=instructor_id, **data.model_dump())
    save_or_503(
        context.store.save_instructors,
        [updated if instructor.id == instructor_id else instructor for instructor in instructors],
    )
    return updated


@router.delete('/{instructor_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_instructor(instructor_id: str, context: AppContext = Depends(get_context)):
    instructors = context.store.get_instructors()
    if find_by_id(instructors, instructor_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Instructor not found.')

    save_or_503(context.store.save_instructors, [instructor for instructor in instructors if instructor.id != instructor_id])
