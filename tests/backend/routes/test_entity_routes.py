import os

import httpx
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.auth.dependencies import get_context  # noqa: E402
from backend.core.context import AppContext  # noqa: E402
from backend.main import app  # noqa: E402
from backend.routes.instructor_routes import InstructorRequest  # noqa: E402
from backend.routes.student_routes import StudentRequest, save_or_503  # noqa: E402
from backend.services.storage import DEFAULT_INSTRUCTORS, EntityStore, MemoryKeyValueStore, seed_defaults  # noqa: E402


@pytest.fixture
def store() -> EntityStore:
    store = EntityStore(MemoryKeyValueStore())
    seed_defaults(store)
    return store


@pytest.fixture
def client(store: EntityStore):
    context = AppContext(store=store, http=httpx.AsyncClient(), calendar_sync=False)
    app.dependency_overrides[get_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_student_request_normalizes_fields() -> None:
    request = StudentRequest(first_name=' Alice ', email=' ALICE@EXAMPLE.COM ', notes='   ')

    assert request.first_name == 'Alice'
    assert request.email == 'alice@example.com'
    assert request.notes is None


def test_student_request_rejects_blank_first_name() -> None:
    with pytest.raises(ValidationError):
        StudentRequest(first_name='  ')


def test_save_or_503_maps_storage_errors() -> None:
    def failing_save(_items) -> None:
        raise OperationalError('UPDATE', {}, Exception('database is locked'))

    with pytest.raises(HTTPException) as exception_info:
        save_or_503(failing_save, [])

    assert exception_info.value.status_code == 503


def test_student_crud(client: TestClient, store: EntityStore) -> None:
    created = client.post(
        '/students',
        json={
            'firstName': 'Alice',
            'lastName': 'Martin',
            'phone': '+33600000001',
            'availability': [{'day': 1, 'startHour': 9, 'endHour': 12}],
        },
    )
    assert created.status_code == 201
    student_id = created.json()['id']
    assert created.json()['availability'] == [{'day': 1, 'startHour': 9, 'endHour': 12}]

    updated = client.put(f'/students/{student_id}', json={'firstName': 'Alicia', 'lastName': 'Martin'})
    assert updated.status_code == 200
    assert store.get_students()[0].first_name == 'Alicia'

    assert client.get(f'/students/{student_id}').json()['firstName'] == 'Alicia'
    assert client.delete(f'/students/{student_id}').status_code == 204
    assert client.get(f'/students/{student_id}').status_code == 404


def test_students_are_listed_by_name(client: TestClient) -> None:
    client.post('/students', json={'firstName': 'Zoe', 'lastName': 'Bernard'})
    client.post('/students', json={'firstName': 'Adam', 'lastName': 'Roux'})

    names = [student['lastName'] for student in client.get('/students').json()]

    assert names == ['Bernard', 'Roux']


def test_student_with_invalid_availability_is_rejected(client: TestClient) -> None:
    response = client.post(
        '/students',
        json={'firstName': 'Alice', 'availability': [{'day': 7, 'startHour': 9, 'endHour': 12}]},
    )

    assert response.status_code == 422


def test_update_unknown_student_is_not_found(client: TestClient) -> None:
    assert client.put('/students/ghost', json={'firstName': 'Nobody'}).status_code == 404


def test_seeded_instructors_are_listed(client: TestClient) -> None:
    response = client.get('/instructors')

    assert [instructor['id'] for instructor in response.json()] == [instructor.id for instructor in DEFAULT_INSTRUCTORS]


def test_instructor_color_must_come_from_palette(client: TestClient) -> None:
    palette = client.get('/instructors/colors').json()

    assert client.post('/instructors', json={'firstName': 'Eve', 'color': palette[2]}).status_code == 201
    assert client.post('/instructors', json={'firstName': 'Eve', 'color': '#123456'}).status_code == 422


def test_instructor_request_normalizes_palette_color() -> None:
    assert InstructorRequest(first_name='Eve', color=' #EF4444 ').color == '#ef4444'

    with pytest.raises(ValidationError):
        InstructorRequest(first_name='Eve', color='#123456')


def test_update_instructor_with_off_palette_color_is_rejected(client: TestClient, store: EntityStore) -> None:
    instructor_id = DEFAULT_INSTRUCTORS[0].id

    response = client.put(f'/instructors/{instructor_id}', json={'firstName': 'Jean', 'color': 'red'})

    assert response.status_code == 422
    assert store.get_instructors()[0].color == DEFAULT_INSTRUCTORS[0].color


def test_delete_unknown_instructor_is_not_found(client: TestClient) -> None:
    assert client.delete('/instructors/ghost').status_code == 404


def test_settings_round_trip(client: TestClient) -> None:
    assert client.get('/settings').json()['notificationMethod'] == 'SMS'

    response = client.put(
        '/settings',
        json={
            'twilioAccountSid': 'AC1',
            'twilioAuthToken': 'token',
            'twilioPhoneNumber': '+331',
            'notificationMethod': 'WHATSAPP',
        },
    )

    assert response.status_code == 200
    assert client.get('/settings').json()['notificationMethod'] == 'WHATSAPP'


def test_settings_reject_unknown_notification_method(client: TestClient) -> None:
    assert client.put('/settings', json={'notificationMethod': 'EMAIL'}).status_code == 422
