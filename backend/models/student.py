"""Student model definitions."""

from pydantic import Field, model_validator

from backend.models.camel import CamelModel


class Availability(CamelModel):
    """Weekly time window in which a student can take lessons."""

    day: int = Field(ge=0, le=6)  # 0 = Sunday
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)

    @model_validator(mode='after')
    def validate_hours(self) -> 'Availability':
        if self.start_hour > self.end_hour:
            raise ValueError('Availability must start before it ends.')
        return self


class Student(CamelModel):
    """Represents a driving school student."""

    id: str
    first_name: str
    last_name: str = ''
    email: str = ''
    phone: str = ''
    notes: str | None = None
    availability: list[Availability] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()
