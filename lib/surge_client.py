import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lib.config import Settings
from lib.error_handler import TransientError
from lib.phone import mask_phone

logger = logging.getLogger(__name__)

def create_session(max_retries: int) -> requests.Session:
    """Session with bounded retries on connection errors, 429 and 5xx"""
    retry = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({'GET', 'POST'}),
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session

class CircuitBreaker:
    """Opens after consecutive failures and stays open for a cooldown"""

    def __init__(self, failure_threshold: int = 5, cooldown_seconds: float = 60, clock=time.monotonic):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return False
            if self._clock() - self._opened_at >= self.cooldown_seconds:
                # Half-open: let the next call through
                self._opened_at = None
                self._failures = self.failure_threshold - 1
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self.failure_threshold:
                self._opened_at = self._clock()

class SurgeClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None, breaker: Optional[CircuitBreaker] = None):
        self.settings = settings
        self.session = session or create_session(settings.outbound_max_retries)
        self.breaker = breaker or CircuitBreaker(
            settings.breaker_failure_threshold,
            settings.breaker_cooldown_seconds
        )

    def build_payload(self, to_number: str, body: str, attachments: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        return {
            'conversation': {
                'contact': {'phone_number': to_number},
                'phone_number': {'id': self.settings.surge_phone_number_id},
            },
            'body': body,
            'attachments': attachments or [],
        }

    def send_message(self, to_number: str, body: str) -> Optional[str]:
        """Send an SMS and return the provider message id"""
        if not self.settings.surge_configured:
            logger.warning("Surge credentials not configured; skipping outbound message")
            return None
        if self.breaker.is_open:
            raise TransientError("Outbound circuit open; message not sent")

        try:
            response = self.session.post(
                self.settings.messages_url,
                json=self.build_payload(to_number, body),
                headers={
                    'Authorization': f"Bearer {self.settings.surge_api_token}",
                    'Content-Type': 'application/json',
                },
                timeout=self.settings.http_timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            self.breaker.record_failure()
            raise TransientError(f"Failed to reach Surge: {str(e)}")

        if not response.ok:
            self.breaker.record_failure()
            raise TransientError(f"Surge returned {response.status_code}: {response.text[:200]}")

        self.breaker.record_success()
        try:
            data = response.json()
        except ValueError:
            data = None
        message_id = data.get('id') if isinstance(data, dict) else None
        logger.info(f"Message sent successfully to {mask_phone(to_number)}")
        return message_id
