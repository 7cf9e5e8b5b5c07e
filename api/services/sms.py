import logging
import random
from concurrent.futures import Executor
from typing import Callable, Optional

from lib.error_handler import ErrorHandler
from lib.phone import mask_phone

logger = logging.getLogger(__name__)

INSTRUCTION_MESSAGE = (
    "Perfect! Your phone is now verified. To create a journal entry, simply send a "
    "message to this number. You can view all your entries on our website."
)
CONFIRMATION_MESSAGE = "✅ Your journal entry has been saved!"
BILLING_REMINDER_MESSAGE = (
    "Your free trial has ended, so we couldn't save that entry. Subscribe to keep "
    "journaling by text and keep access to all your previous entries: {checkout_url}"
)
MILESTONE_MESSAGE = (
    "{opener} That's {streak} days in a row you've submitted a journal entry. "
    "Keep up the good work! Your future self will thank you."
)
CELEBRATION_OPENERS = [
    "You're doing great!",
    "Nice work!",
    "Keep it up!",
    "You're on a hot streak!",
    "Journaling is becoming second nature!",
    "You were made to keep a journal.",
    "Way to go!",
    "This is awesome!",
    "Keep the journal entries coming!",
    "You're on a roll!",
]

class SMSService:
    """Outbound replies. Every send is best-effort and runs off the request path."""

    def __init__(self, surge_client, executor: Optional[Executor] = None):
        self.client = surge_client
        self.executor = executor
        logger.info(f"SMS service initialized (background sends: {executor is not None})")

    def dispatch(self, func: Callable, *args) -> None:
        if self.executor is None:
            self._run(func, *args)
        else:
            self.executor.submit(self._run, func, *args)

    def _run(self, func: Callable, *args) -> None:
        try:
            func(*args)
        except Exception as e:
            # Delivery failures never reach the webhook response
            ErrorHandler.handle_transient_error(e, "Outbound SMS")

    def send_message(self, to: str, body: str) -> None:
        logger.info(f"Sending message to {mask_phone(to)}")
        self.client.send_message(to, body)

    def send_instruction(self, to: str) -> None:
        self.dispatch(self.send_message, to, INSTRUCTION_MESSAGE)

    def send_confirmation(self, to: str) -> None:
        self.dispatch(self.send_message, to, CONFIRMATION_MESSAGE)

    def send_billing_reminder(self, to: str, checkout_url: Callable[[], str]) -> None:
        def send():
            self.send_message(to, BILLING_REMINDER_MESSAGE.format(checkout_url=checkout_url()))
        self.dispatch(send)

    def send_milestone(self, to: str, streak: int) -> None:
        opener = random.choice(CELEBRATION_OPENERS)
        self.dispatch(self.send_message, to, MILESTONE_MESSAGE.format(opener=opener, streak=streak))
