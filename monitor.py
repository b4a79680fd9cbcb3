from __future__ import annotations

import logging
import threading
from typing import Any, Callable


logger = logging.getLogger(__name__)

TriggerCallback = Callable[[str], Any]


class ConnectivityMonitor:
    """Turns connectivity and focus signals into drain triggers.

    A trigger fires once per offline to online transition, and on focus
    while online. Nothing fires before ``start`` or after ``stop``.
    Overlapping drains are the engine's concern, not the monitor's.
    """

    def __init__(self, online: bool = False) -> None:
        self._online = online
        self._running = False
        self._callbacks: list[TriggerCallback] = []
        self._lock = threading.Lock()

    def on_trigger(self, callback: TriggerCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            online = self._online
        logger.info(f"monitor_started: online={online}")
        if online:
            self._fire("startup")

    def stop(self) -> None:
        with self._lock:
            self._running = False
        logger.info("monitor_stopped")

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        with self._lock:
            came_online = online and not self._online
            if online != self._online:
                logger.info(f"monitor_connectivity: online={online}")
            self._online = online
            fire = came_online and self._running
        if fire:
            self._fire("online")

    def notify_focus(self) -> None:
        with self._lock:
            fire = self._running and self._online
        if fire:
            self._fire("focus")

    def _fire(self, reason: str) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception(f"monitor_trigger_failed: reason={reason}")
