"""
Outbound notification dispatch.

State-changing operations hand a NotificationEvent to a dispatcher after
their write has committed. Dispatch is fire-and-forget: a slow or failing
notification path is logged and never fails or blocks the primary write.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
import logging

import requests

from utils.util import post_json

logger = logging.getLogger("marketplace_messaging")

NEW_MESSAGE = "new_message"
CONVERSATION_STATUS_CHANGED = "conversation_status_changed"


@dataclass
class NotificationEvent:
    event_type: str
    user_id: str
    title: str
    body: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationDispatcher(ABC):
    @abstractmethod
    def dispatch(self, event: NotificationEvent) -> None:
        pass

    def shutdown(self) -> None:
        pass


class NullNotificationDispatcher(NotificationDispatcher):
    """Used when no notification endpoint is configured."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.debug(f"notification dropped, no dispatcher configured: {event.event_type}")


class WebhookNotificationDispatcher(NotificationDispatcher):
    """Posts events as json to a webhook from a small background pool."""

    def __init__(self, webhook_url: str, timeout: float = 5, max_workers: int = 4):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify"
        )

    def dispatch(self, event: NotificationEvent) -> None:
        try:
            self._executor.submit(self._deliver, event)
        except RuntimeError as e:
            # executor already shut down
            logger.error(f"could not queue notification {event.event_type}: {e}")

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            post_json(self.webhook_url, event.to_dict(), timeout=self.timeout)
            logger.info(f"notification sent: {event.event_type} to {event.user_id}")
        except requests.RequestException as e:
            logger.error(
                f"notification dispatch failed: {event.event_type} to {event.user_id}: {e}"
            )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def notify(dispatcher: NotificationDispatcher, event: NotificationEvent) -> None:
    """Hands an event to the dispatcher, logging instead of raising on failure"""
    try:
        dispatcher.dispatch(event)
    except Exception as e:
        logger.error(f"notification dispatch failed: {event.event_type}: {e}")
