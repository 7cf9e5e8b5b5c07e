import copy
import json
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from api.routes import create_app
from lib.config import Settings
from lib.signature import compute_signature

TEST_SECRET = 'whsec_test_secret'
TEST_PHONE = '+15551234567'
TEST_USER_ID = 'user-1'
TEST_EMAIL = 'writer@example.com'

class FakeResponse:
    def __init__(self, data):
        self.data = data

class FakeQuery:
    """Just enough of the postgrest query builder for the pipeline"""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = 'select'
        self.payload = None
        self.filters = []
        self.order_by = None
        self.limit_count = None

    def select(self, columns='*'):
        self.op = 'select'
        return self

    def insert(self, data):
        self.op = 'insert'
        self.payload = data
        return self

    def update(self, data):
        self.op = 'update'
        self.payload = data
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in list(values))
        return self

    def is_(self, column, value):
        if value == 'null':
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) >= value)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.limit_count = count
        return self

    def _matches(self):
        return [row for row in self.db.tables.setdefault(self.table, []) if all(f(row) for f in self.filters)]

    def execute(self):
        failure = self.db.failures.get((self.table, self.op))
        if failure is not None:
            raise failure

        if self.op == 'insert':
            return FakeResponse(self.db.insert(self.table, self.payload))

        if self.op == 'update':
            matched = self._matches()
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            if matched:
                self.db.writes.append((self.table, 'update'))
            return FakeResponse(copy.deepcopy(matched))

        matched = self._matches()
        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda row: str(row.get(column)), reverse=desc)
        if self.limit_count is not None:
            matched = matched[:self.limit_count]
        return FakeResponse(copy.deepcopy(matched))

class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        if self.storage.fail:
            raise Exception("storage unavailable")
        self.storage.objects[f"{self.name}/{path}"] = (file, file_options)
        return {'Key': f"{self.name}/{path}"}

class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.fail = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)

class FakeFunctions:
    def __init__(self):
        self.response = json.dumps({'url': 'https://checkout.example.com/session/abc'}).encode()
        self.error = None
        self.calls = []

    def invoke(self, name, invoke_options=None):
        self.calls.append((name, invoke_options))
        if self.error is not None:
            raise self.error
        return self.response

class FakeSupabase:
    """In-memory stand-in for the Supabase client with the unique indexes the pipeline relies on"""

    UNIQUE = {
        'sms_messages': [(('surge_message_id',), None)],
        'journal_entries': [(('user_id', 'entry_date'), lambda row: row.get('source') == 'sms')],
        'rate_limits': [(('identifier', 'endpoint'), None)],
    }

    DEFAULTS = {
        'sms_messages': {'user_id': None, 'error_message': None, 'entry_id': None, 'processed': False},
        'rate_limits': {'blocked_until': None},
    }

    def __init__(self):
        self.tables = {}
        self.writes = []
        self.failures = {}
        self.storage = FakeStorage()
        self.functions = FakeFunctions()

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table, row):
        """Insert without counting as a write or checking constraints"""
        row = dict(row)
        row.setdefault('id', str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(row)
        return row

    def insert(self, table, payload):
        new_rows = payload if isinstance(payload, list) else [payload]
        existing = self.tables.setdefault(table, [])
        inserted = []
        for data in new_rows:
            row = dict(self.DEFAULTS.get(table, {}))
            row.update(copy.deepcopy(data))
            row.setdefault('id', str(uuid.uuid4()))
            row.setdefault('created_at', datetime.now(timezone.utc).isoformat())
            for columns, applies in self.UNIQUE.get(table, []):
                if applies is not None and not applies(row):
                    continue
                key = tuple(row.get(c) for c in columns)
                for other in existing:
                    if (applies is None or applies(other)) and tuple(other.get(c) for c in columns) == key:
                        raise APIError({
                            'message': f'duplicate key value violates unique constraint on {table}',
                            'code': '23505',
                            'hint': None,
                            'details': None,
                        })
            existing.append(row)
            inserted.append(row)
        self.writes.append((table, 'insert'))
        return copy.deepcopy(inserted)

    def rows(self, table):
        return self.tables.get(table, [])

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        supabase_url='https://fake.supabase.co',
        supabase_service_role_key='service-role-key',
        surge_webhook_secret=TEST_SECRET,
        surge_api_token='surge-token',
        surge_account_id='acct_test',
        surge_phone_number_id='pn_test',
        surge_api_url='https://api.surge.test',
        upgrade_url='https://journal.example.com/upgrade',
    )

@pytest.fixture
def fake_supabase():
    return FakeSupabase()

@pytest.fixture
def http_session():
    session = MagicMock()
    sent = MagicMock()
    sent.ok = True
    sent.status_code = 200
    sent.json.return_value = {'id': 'msg_outbound'}
    session.post.return_value = sent
    return session

@pytest.fixture
def app(settings, fake_supabase, http_session):
    app = create_app(
        settings,
        supabase_client=fake_supabase,
        http_session=http_session,
        background_sends=False
    )
    app.config['TESTING'] = True
    return app

@pytest.fixture
def test_client(app):
    return app.test_client()

def sign(raw: bytes, secret: str = TEST_SECRET, timestamp: int = None) -> str:
    timestamp = str(timestamp if timestamp is not None else int(time.time()))
    return f"t={timestamp},v1={compute_signature(raw, timestamp, secret)}"

def make_payload(message_id='msg_1', body='Hello', phone=TEST_PHONE, attachments=None):
    return {
        'event': 'message.received',
        'properties': {
            'id': message_id,
            'content': body,
            'contact': {'phone_number': phone},
            'conversation': {'id': 'cnv_1'},
            'attachments': attachments or [],
        },
    }

@pytest.fixture
def post_webhook(test_client):
    def post(payload, signature=None, raw=None):
        raw = raw if raw is not None else json.dumps(payload).encode()
        return test_client.post(
            '/webhook',
            data=raw,
            headers={
                'Content-Type': 'application/json',
                'Surge-Signature': signature if signature is not None else sign(raw),
            }
        )
    return post

@pytest.fixture
def profile(fake_supabase):
    return fake_supabase.seed('profiles', {
        'id': TEST_USER_ID,
        'phone_number': TEST_PHONE,
        'phone_verified': True,
        'timezone': 'UTC',
    })

@pytest.fixture
def subscriber(fake_supabase, profile):
    return fake_supabase.seed('subscribers', {
        'user_id': TEST_USER_ID,
        'email': TEST_EMAIL,
        'subscribed': True,
        'is_trial': False,
        'trial_end': None,
    })

def sent_bodies(http_session):
    """Bodies of every outbound SMS posted through the mocked session"""
    return [c.kwargs['json']['body'] for c in http_session.post.call_args_list]
