from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from api.services.sms import (
    BILLING_REMINDER_MESSAGE,
    CELEBRATION_OPENERS,
    CONFIRMATION_MESSAGE,
    SMSService,
)
from lib.error_handler import TransientError
from lib.surge_client import CircuitBreaker, SurgeClient, create_session

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

def response(ok=True, status_code=200, data=None):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.text = 'error text'
    resp.json.return_value = data if data is not None else {'id': 'msg_out_1'}
    return resp

@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = response()
    return session

def test_build_payload(settings):
    client = SurgeClient(settings, session=MagicMock())
    assert client.build_payload('+15551234567', 'hi') == {
        'conversation': {
            'contact': {'phone_number': '+15551234567'},
            'phone_number': {'id': 'pn_test'},
        },
        'body': 'hi',
        'attachments': [],
    }

def test_send_message(settings, session):
    client = SurgeClient(settings, session=session)

    assert client.send_message('+15551234567', 'hi') == 'msg_out_1'

    call = session.post.call_args
    assert call.args[0] == 'https://api.surge.test/accounts/acct_test/messages'
    assert call.kwargs['headers']['Authorization'] == 'Bearer surge-token'
    assert call.kwargs['timeout'] == settings.http_timeout_seconds

def test_send_skipped_without_credentials(settings, session):
    settings = settings.model_copy(update={'surge_api_token': ''})
    client = SurgeClient(settings, session=session)
    assert client.send_message('+15551234567', 'hi') is None
    assert not session.post.called

def test_error_status_raises_transient(settings, session):
    session.post.return_value = response(ok=False, status_code=503)
    with pytest.raises(TransientError):
        SurgeClient(settings, session=session).send_message('+15551234567', 'hi')

def test_network_error_raises_transient(settings, session):
    session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")
    with pytest.raises(TransientError):
        SurgeClient(settings, session=session).send_message('+15551234567', 'hi')

def test_breaker_opens_after_consecutive_failures(settings, session):
    session.post.return_value = response(ok=False, status_code=500)
    breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=60, clock=FakeClock())
    client = SurgeClient(settings, session=session, breaker=breaker)

    for _ in range(3):
        with pytest.raises(TransientError):
            client.send_message('+15551234567', 'hi')
    assert breaker.is_open

    with pytest.raises(TransientError):
        client.send_message('+15551234567', 'hi')
    assert session.post.call_count == 3

def test_breaker_half_opens_after_cooldown():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=60, clock=clock)
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.is_open

    clock.now = 61
    assert not breaker.is_open

    # One more failure while half-open trips it again
    breaker.record_failure()
    assert breaker.is_open

    clock.now = 200
    assert not breaker.is_open
    breaker.record_success()
    breaker.record_failure()
    assert not breaker.is_open

def test_create_session_mounts_retry_policy():
    session = create_session(max_retries=2)
    retry = session.get_adapter('https://api.surge.app').max_retries
    assert retry.total == 2
    assert 503 in retry.status_forcelist
    assert 'POST' in retry.allowed_methods

def test_sms_service_swallows_delivery_errors():
    client = MagicMock()
    client.send_message.side_effect = TransientError("down")
    SMSService(client).send_confirmation('+15551234567')
    client.send_message.assert_called_once_with('+15551234567', CONFIRMATION_MESSAGE)

def test_sms_service_background_dispatch():
    client = MagicMock()
    with ThreadPoolExecutor(max_workers=1) as executor:
        SMSService(client, executor=executor).send_confirmation('+15551234567')
    client.send_message.assert_called_once_with('+15551234567', CONFIRMATION_MESSAGE)

def test_billing_reminder_includes_checkout_url():
    client = MagicMock()
    SMSService(client).send_billing_reminder('+15551234567', lambda: 'https://pay.example.com/x')
    body = client.send_message.call_args.args[1]
    assert body == BILLING_REMINDER_MESSAGE.format(checkout_url='https://pay.example.com/x')

def test_milestone_message():
    client = MagicMock()
    SMSService(client).send_milestone('+15551234567', 10)
    body = client.send_message.call_args.args[1]
    assert "10 days in a row" in body
    assert any(body.startswith(opener) for opener in CELEBRATION_OPENERS)
