"""Result fan-out and per-session CAPTCHA stash.

ResultBroadcaster delivers every solver result to all registered listeners;
one failing listener never blocks the others.

CaptchaStash keeps the latest CAPTCHA image and prediction per session until
that session navigates away from the page it was captured on (the login
went through, so the prediction was right) or the session closes.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

from pipeline.dataset import labeled_filename, sanitize_label

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 64


class ResultBroadcaster:
    def __init__(self):
        self._listeners: list[Callable[[dict], object]] = []

    def subscribe(self, listener: Callable[[dict], object]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[dict], object]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def publish(self, message: dict) -> int:
        """Send `message` to every listener. Returns how many accepted it."""
        delivered = 0
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as exc:
                logger.warning("Listener %r failed on %s message: %s", listener, message.get("type"), exc)
                continue
            delivered += 1
        return delivered


@dataclass
class StashEntry:
    image: object
    prediction: str
    origin_url: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def filename(self) -> str:
        """Name to save the image under once the prediction is confirmed."""
        return labeled_filename(self.prediction, self.timestamp_ms, predicted=True)


class CaptchaStash:
    """Bounded session_id -> StashEntry map; the oldest session is evicted first."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id) -> bool:
        return session_id in self._entries

    def put(self, session_id, image, prediction: str, origin_url: str) -> StashEntry:
        """Stash a CAPTCHA for a session, replacing any earlier one."""
        entry = StashEntry(image, sanitize_label(prediction.upper()), origin_url)
        self._entries.pop(session_id, None)
        self._entries[session_id] = entry
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Stash full, evicted session %s", evicted)
        logger.info("Stashed CAPTCHA for session %s: %s", session_id, entry.prediction)
        return entry

    def get(self, session_id) -> StashEntry | None:
        return self._entries.get(session_id)

    def pop(self, session_id) -> StashEntry | None:
        return self._entries.pop(session_id, None)

    def evict(self, session_id) -> bool:
        """Drop a closed session's entry. Returns True if there was one."""
        return self._entries.pop(session_id, None) is not None

    def on_navigation(self, session_id, url: str) -> StashEntry | None:
        """
        Session finished loading `url`. If that differs from where the CAPTCHA
        was captured, the entry is confirmed: remove and return it.
        """
        entry = self._entries.get(session_id)
        if entry is None or url == entry.origin_url:
            return None
        logger.info("Navigation detected (session %s), releasing %s", session_id, entry.filename)
        del self._entries[session_id]
        return entry
