"""
Link Facade
===========

Boundary to the transport that reaches the remote control system. A link
sends command dicts and dispatches incoming event dicts (each with a
``type`` key) to its registered listeners. Framing, chunking and delivery
guarantees belong to the concrete transport.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class LinkFacade(ABC):
    """Abstract message link to the remote system."""

    def __init__(self):
        self._listeners: List[Listener] = []

    @abstractmethod
    def send(self, message: dict) -> None:
        """Queue one command for delivery. Must not block."""

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, message: dict) -> None:
        """Deliver one incoming event to every listener."""
        if not isinstance(message, dict) or 'type' not in message:
            logger.warning("Dropping malformed event: %r", message)
            return
        for listener in list(self._listeners):
            listener(message)


class MockLink(LinkFacade):
    """
    In-memory link that records every sent command.

    An optional ``responder(message, link)`` is invoked for each send and may
    call ``link.dispatch`` (directly or via the event loop) to answer.
    """

    def __init__(self, responder: Callable[[dict, 'MockLink'], None] = None):
        super().__init__()
        self.sent: List[dict] = []
        self.responder = responder

    def send(self, message: dict) -> None:
        self.sent.append(dict(message))
        if self.responder is not None:
            self.responder(message, self)

    def sent_of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.sent if m.get('type') == message_type]
