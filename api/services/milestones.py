import logging
from datetime import date, timedelta
from typing import Iterable

logger = logging.getLogger(__name__)

MILESTONE_DAYS = {2, 5, 10, 15, 20, 25, 40, 50, 75, 100}

def current_streak(entry_dates: Iterable[date], today: date) -> int:
    """Consecutive days with an entry, ending today or yesterday"""
    dates = sorted(set(entry_dates), reverse=True)
    if not dates or (today - dates[0]).days > 1:
        return 0

    streak = 1
    for previous, current in zip(dates, dates[1:]):
        if previous - current != timedelta(days=1):
            break
        streak += 1
    return streak

class MilestoneService:
    def __init__(self, journal_service, sms_service):
        self.journal = journal_service
        self.sms = sms_service

    def check(self, user_id: str, phone: str, today: date) -> None:
        """Celebrate streak milestones; only called when a day's first entry is created"""
        try:
            streak = current_streak(self.journal.entry_dates(user_id), today)
        except Exception as e:
            logger.error(f"Error checking milestone: {str(e)}")
            return

        if streak in MILESTONE_DAYS:
            logger.info(f"User {user_id} reached a {streak} day streak")
            self.sms.send_milestone(phone, streak)
