import logging
from abc import ABC, abstractmethod

from app.models.notification import Notification
from app.stores.sql import session_scope

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, user_id: str, title: str, message: str, category: str) -> None:
        ...


class DbNotifier(Notifier):
    """Stores notifications for the user-facing notification center to pick up."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def notify(self, user_id, title, message, category):
        with session_scope(self._session_factory) as db:
            db.add(Notification(user_id=user_id, title=title, message=message, category=category))


class NullNotifier(Notifier):
    def notify(self, user_id, title, message, category):
        pass


def send_best_effort(notifier: Notifier, user_id: str, title: str, message: str, category: str) -> bool:
    """Deliver a notification; a failure is logged and never propagates."""
    try:
        notifier.notify(user_id, title, message, category)
        return True
    except Exception:
        logger.exception("notification delivery failed", extra={"user_id": user_id, "category": category})
        return False
