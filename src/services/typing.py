"""
Typing presence channel.

Ephemeral, in-process signal that a participant is composing a reply. A
signal expires after a fixed window unless refreshed. Nothing here is
persisted and nothing survives a restart; a missed signal only means the
indicator isn't shown.
"""

from collections import defaultdict
from typing import Callable, Optional
import logging
import threading
import time

from config import TYPING_EXPIRY_SECONDS

logger = logging.getLogger("marketplace_messaging")

# (conversation_id, participant_id, is_typing)
TypingCallback = Callable[[str, str, bool], None]


class TypingPresence:
    def __init__(
        self,
        expiry_seconds: float = TYPING_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.expiry_seconds = expiry_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._deadlines: dict[tuple[str, str], float] = {}
        self._subscribers: dict[str, list[TypingCallback]] = defaultdict(list)
        self._stop_sweeper = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def _collect_expired(self, now: float) -> list[tuple[str, str, bool]]:
        # caller holds the lock
        expired = [key for key, deadline in self._deadlines.items() if deadline <= now]
        for key in expired:
            del self._deadlines[key]
        return [(conversation_id, participant_id, False) for conversation_id, participant_id in expired]

    def _publish(self, changes: list[tuple[str, str, bool]]) -> None:
        for conversation_id, participant_id, is_typing in changes:
            with self._lock:
                callbacks = list(self._subscribers.get(conversation_id, []))
            for callback in callbacks:
                try:
                    callback(conversation_id, participant_id, is_typing)
                except Exception as e:
                    logger.error(f"typing subscriber failed for {conversation_id}: {e}")

    def signal_typing(self, conversation_id: str, participant_id: str) -> None:
        """Marks the participant as typing, or refreshes an existing signal"""
        now = self.clock()
        key = (conversation_id, participant_id)
        with self._lock:
            changes = self._collect_expired(now)
            started = key not in self._deadlines
            self._deadlines[key] = now + self.expiry_seconds
        if started:
            changes.append((conversation_id, participant_id, True))
        self._publish(changes)

    def signal_stopped_typing(self, conversation_id: str, participant_id: str) -> None:
        now = self.clock()
        with self._lock:
            changes = self._collect_expired(now)
            if self._deadlines.pop((conversation_id, participant_id), None) is not None:
                changes.append((conversation_id, participant_id, False))
        self._publish(changes)

    def is_typing(self, conversation_id: str, participant_id: str) -> bool:
        self.sweep()
        with self._lock:
            return (conversation_id, participant_id) in self._deadlines

    def is_anyone_else_typing(self, conversation_id: str, viewer_id: str) -> bool:
        """True if a participant other than the viewer is typing in the conversation"""
        self.sweep()
        with self._lock:
            return any(
                cid == conversation_id and pid != viewer_id
                for cid, pid in self._deadlines
            )

    def subscribe(self, conversation_id: str, callback: TypingCallback) -> Callable[[], None]:
        """
        Registers a callback for typing changes in one conversation. Expiry
        events are published by sweep(), which runs on every read and on the
        background sweeper when start_sweeper() has been called.

        Args:
            conversation_id: conversation to watch
            callback: called with (conversation_id, participant_id, is_typing)

        Returns:
            a function that removes the subscription
        """
        with self._lock:
            self._subscribers[conversation_id].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(conversation_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(conversation_id, None)

        return unsubscribe

    def sweep(self) -> int:
        """
        Drops expired signals and tells subscribers about them

        Returns:
            number of signals that expired
        """
        with self._lock:
            changes = self._collect_expired(self.clock())
        self._publish(changes)
        return len(changes)

    def start_sweeper(self, interval_seconds: float) -> None:
        """Calls sweep() every interval_seconds on a daemon thread until stop_sweeper()"""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_sweeper.clear()

        def run() -> None:
            while not self._stop_sweeper.wait(interval_seconds):
                self.sweep()

        self._sweeper = threading.Thread(target=run, name="typing-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(f"typing sweeper started, every {interval_seconds}s")

    def stop_sweeper(self) -> None:
        self._stop_sweeper.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None
