# src/gpinstall/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Protocol
from .events import BaseEvent

log = logging.getLogger("gpinstall")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    def __init__(self, observers: List[Observer] = None):
        self._observers = observers or []

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as exc:
                # observers must not break an install
                log.debug("observer %s failed: %s", type(ob).__name__, exc)
