"""Shared fixtures for the attendance service tests."""

from datetime import date, timedelta

import pytest

from app import create_app
from attendai.modules.attendance_manager import AttendanceManager
from attendai.modules.credential_store import InMemoryCredentialStore, SQLiteCredentialStore
from attendai.modules.database_manager import DatabaseManager
from attendai.modules.event_manager import EventManager

START_MILLIS = 1_700_000_000_000
PASSWORD = 'password123'


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start=START_MILLIS):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds=0, millis=0):
        self.now += int(seconds * 1000) + millis
        return self.now


class RecordingNotifier:
    """Stands in for NotificationSystem and keeps what it was sent."""

    def __init__(self):
        self.attendance = []
        self.alerts = []

    def send_attendance_notification(self, attendance_data):
        self.attendance.append(attendance_data)
        return True

    def send_system_alert(self, title, message, severity='info', recipient=None,
                          additional_data=None):
        self.alerts.append({
            'title': title,
            'message': message,
            'severity': severity,
            'data': additional_data or {}
        })
        return True

    def get_recent_notifications(self, limit=10):
        return list(reversed(self.alerts))[:limit]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'attendance.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def sqlite_store(db):
    return SQLiteCredentialStore(db)


@pytest.fixture
def memory_store():
    return InMemoryCredentialStore()


@pytest.fixture(params=['sqlite', 'memory'])
def store(request, db):
    """Each test using this runs against both store implementations."""
    if request.param == 'sqlite':
        return SQLiteCredentialStore(db)
    return InMemoryCredentialStore()


@pytest.fixture
def attendance_manager(db):
    return AttendanceManager(db)


@pytest.fixture
def event_manager(db):
    return EventManager(db)


@pytest.fixture
def today_event(event_manager):
    result = event_manager.create_event(
        title='Data Structures',
        event_date=date.today().isoformat(),
        venue='Room 101',
        start_time='09:00',
        end_time='10:30',
        event_id='E1'
    )
    return result['event']


@pytest.fixture
def tomorrow_event(event_manager):
    result = event_manager.create_event(
        title='Algorithms',
        event_date=(date.today() + timedelta(days=1)).isoformat(),
        event_id='E-tomorrow'
    )
    return result['event']


@pytest.fixture
def app(tmp_path, clock, notifier):
    app = create_app(
        'testing',
        DATABASE_PATH=tmp_path / 'app.db',
        SECRET_KEY='test-secret',
        clock=clock,
        notifier=notifier
    )
    components = app.extensions['attendai']
    auth_manager = components['auth_manager']
    auth_manager.create_user('student1', PASSWORD, 'Student One', email='s1@example.edu')
    auth_manager.create_user('student2', PASSWORD, 'Student Two')
    auth_manager.create_user('faculty1', PASSWORD, 'Faculty One', role='faculty')
    auth_manager.create_user('admin1', PASSWORD, 'Admin One', role='admin')
    components['event_manager'].create_event(
        title='Data Structures',
        event_date=date.today().isoformat(),
        event_id='E1'
    )
    components['event_manager'].create_event(
        title='Operating Systems',
        event_date=date.today().isoformat(),
        event_id='E2'
    )

    yield app

    components['db'].close_all_connections()


def login(app, username):
    client = app.test_client()
    response = client.post('/login', json={'username': username, 'password': PASSWORD})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def student_client(app):
    return login(app, 'student1')


@pytest.fixture
def faculty_client(app):
    return login(app, 'faculty1')


@pytest.fixture
def admin_client(app):
    return login(app, 'admin1')
