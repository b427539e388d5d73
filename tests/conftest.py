"""Shared pytest fixtures for the test suite.

Every test runs against a fresh SQLite file in tmp_path, with the service key,
the email outbox and the backup directory pointed at test values.

Fixture overview
----------------
client        Flask test client for web.app
make_user     factory: signup(email) -> {'user', 'token'}
user          a regular signed-in user
other_user    a second regular user
admin         a user holding the admin role
service_headers  Authorization headers carrying the service key
make_tender   factory inserting a tender with sensible defaults
make_rfq      factory inserting an RFQ for a user, returns its id
"""

from datetime import timedelta

import pytest

from tenderalert import auth
from tenderalert import database as db
from tenderalert.backup import BACKUP_CONFIG
from tenderalert.dates import utc_now
from tenderalert.notifications import EMAIL_CONFIG

from tests.helpers import SERVICE_KEY, bearer


# ── Database / configuration ─────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point the database layer at a fresh file for each test."""
    monkeypatch.setattr(db, 'DB_PATH', str(tmp_path / 'tenderalert.db'))
    monkeypatch.setitem(auth.AUTH_CONFIG, 'service_role_key', SERVICE_KEY)
    monkeypatch.setitem(EMAIL_CONFIG, 'outbox_dir', str(tmp_path / 'emails'))
    monkeypatch.setitem(EMAIL_CONFIG, 'sender_email', '')
    monkeypatch.setitem(EMAIL_CONFIG, 'sender_password', '')
    monkeypatch.setitem(BACKUP_CONFIG, 'backup_dir', str(tmp_path / 'backups'))
    db.init_database()
    db.seed_categories()
    return db.DB_PATH


# ── Web client and accounts ──────────────────────────────────────────────────


@pytest.fixture
def client():
    from web.app import app

    app.config['TESTING'] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def make_user():
    counter = {'n': 0}

    def _make(email=None, password='password123', **fields):
        counter['n'] += 1
        email = email or f"user{counter['n']}@example.com"
        return auth.signup(email, password, **fields)

    return _make


@pytest.fixture
def user(make_user):
    return make_user('alice@example.com', first_name='Alice', company='Acme Ltd')


@pytest.fixture
def other_user(make_user):
    return make_user('bob@example.com', first_name='Bob')


@pytest.fixture
def admin(make_user):
    account = make_user('admin@example.com', first_name='Admin')
    auth.grant_role(account['user']['id'], 'admin')
    return account


@pytest.fixture
def service_headers():
    return bearer(SERVICE_KEY)


# ── Tenders ──────────────────────────────────────────────────────────────────


@pytest.fixture
def make_tender():
    def _make(title='Supply of Office Furniture', days_left=30, **fields):
        data = {
            'description': 'Supply and delivery of office desks and chairs',
            'organization': 'Ministry of Education',
            'category': 'Education',
            'location': 'Nairobi',
            'budget_estimate': 5000000,
            'deadline': (utc_now() + timedelta(days=days_left)).strftime('%Y-%m-%d'),
        }
        data.update(fields)
        tender_id = db.create_tender(title, **data)
        return db.get_tender(tender_id)

    return _make


@pytest.fixture
def make_rfq():
    def _make(user_id, title='Supply of Laptops', **fields):
        data = {
            'description': f'{title} for the head office',
            'category': 'Technology',
            'location': 'Nairobi',
            'deadline': (utc_now() + timedelta(days=14)).strftime('%Y-%m-%d'),
        }
        data.update(fields)
        return db.create_rfq(user_id, title=title, **data)

    return _make
