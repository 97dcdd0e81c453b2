"""Instructor model definitions."""

from pydantic import field_validator

from backend.models.camel import CamelModel

COLORS = [
    '#3b82f6',  # blue
    '#ef4444',  # red
    '#10b981',  # emerald
    '#f59e0b',  # amber
    '#8b5cf6',  # violet
    '#ec4899',  # pink
    '#06b6d4',  # cyan
    '#84cc16',  # lime
]


class Instructor(CamelModel):
    """Represents a driving instructor."""

    id: str
    first_name: str
    last_name: str = ''
    email: str = ''
    phone: str = ''
    color: str = COLORS[0]

    @field_validator('color')
    @classmethod
    def validate_color(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in COLORS:
            raise ValueError('Color must be one of the instructor palette colors.')
        return normalized

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()
