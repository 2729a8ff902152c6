"""Connectivity and visibility signals reported by the host application."""

from __future__ import annotations

import logging
from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)

EVENT_ONLINE = "online"
EVENT_VISIBLE = "visible"

ConnectivityListener = Callable[[str], None]


class ConnectivityMonitor:
    """Track the online flag and fan out transition events to listeners.

    Listeners receive ``"online"`` on an offline to online transition and
    ``"visible"`` whenever the host reports the app coming to the foreground.
    """

    def __init__(self, *, online: bool = True) -> None:
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_online(self, online: bool) -> bool:
        """Update the flag. Returns ``True`` when this was an offline to online transition."""

        was_online = self._online
        self._online = bool(online)
        if self._online and not was_online:
            _LOGGER.debug("Network online")
            self._notify(EVENT_ONLINE)
            return True
        if was_online and not self._online:
            _LOGGER.debug("Network offline")
        return False

    def notify_visible(self) -> None:
        self._notify(EVENT_VISIBLE)

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)


__all__ = ["ConnectivityListener", "ConnectivityMonitor", "EVENT_ONLINE", "EVENT_VISIBLE"]
