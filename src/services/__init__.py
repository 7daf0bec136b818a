from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import logging
import time

from services.admin import AdminService
from services.attachments import AttachmentPipeline
from services.conversations import ConversationResolver
from services.messages import MessageService
from services.notifications import (
    NotificationDispatcher,
    NullNotificationDispatcher,
    WebhookNotificationDispatcher,
)
from services.storage import InMemoryObjectStorage, ObjectStorage, SupabaseObjectStorage
from services.typing import TypingPresence
from utils.util import utc_now

logger = logging.getLogger("marketplace_messaging")


@dataclass
class MessagingServices:
    resolver: ConversationResolver
    messages: MessageService
    attachments: AttachmentPipeline
    typing: TypingPresence
    admin: AdminService
    notifier: NotificationDispatcher


def build_storage(config: dict) -> ObjectStorage:
    if config.get("STORAGE_URL") and config.get("STORAGE_SERVICE_KEY"):
        return SupabaseObjectStorage(
            config["STORAGE_URL"],
            config["STORAGE_SERVICE_KEY"],
            timeout=config["STORAGE_TIMEOUT_SECONDS"],
        )
    logger.warning("no object storage configured, attachments are kept in memory")
    return InMemoryObjectStorage()


def build_notifier(config: dict) -> NotificationDispatcher:
    if config.get("NOTIFICATION_WEBHOOK_URL"):
        return WebhookNotificationDispatcher(
            config["NOTIFICATION_WEBHOOK_URL"],
            timeout=config["NOTIFICATION_TIMEOUT_SECONDS"],
        )
    return NullNotificationDispatcher()


def build_services(
    config: dict,
    storage: Optional[ObjectStorage] = None,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Callable[[], datetime] = utc_now,
    typing_clock: Callable[[], float] = time.monotonic,
) -> MessagingServices:
    """
    Wires the messaging services together

    Args:
        config: flask config
        storage: object storage backend, built from config if omitted
        notifier: notification dispatcher, built from config if omitted
        clock: wall clock for message and conversation timestamps
        typing_clock: monotonic clock for typing expiry

    Returns:
        MessagingServices
    """
    if storage is None:
        storage = build_storage(config)
    if notifier is None:
        notifier = build_notifier(config)

    resolver = ConversationResolver(clock=clock)
    attachments = AttachmentPipeline(
        storage,
        timeout=config["STORAGE_TIMEOUT_SECONDS"],
        signed_url_ttl=config["SIGNED_URL_TTL_SECONDS"],
    )
    typing = TypingPresence(
        expiry_seconds=config["TYPING_EXPIRY_SECONDS"], clock=typing_clock
    )
    if config.get("TYPING_SWEEP_INTERVAL_SECONDS"):
        typing.start_sweeper(config["TYPING_SWEEP_INTERVAL_SECONDS"])
    messages = MessageService(resolver, attachments, notifier, typing=typing, clock=clock)
    admin = AdminService(resolver, messages, attachments, notifier, clock=clock)

    return MessagingServices(
        resolver=resolver,
        messages=messages,
        attachments=attachments,
        typing=typing,
        admin=admin,
        notifier=notifier,
    )
