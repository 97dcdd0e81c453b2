"""Lesson model definitions."""

from pydantic import AwareDatetime, model_validator

from backend.models.camel import CamelModel


class Lesson(CamelModel):
    """A driving lesson linking one student and one instructor."""

    id: str
    student_id: str = ''
    instructor_id: str = ''
    start: AwareDatetime
    end: AwareDatetime
    confirmed: bool = False

    @model_validator(mode='after')
    def validate_interval(self) -> 'Lesson':
        if self.end <= self.start:
            raise ValueError('Lesson must end after it starts.')
        return self
