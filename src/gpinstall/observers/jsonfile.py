from __future__ import annotations
import json
from pathlib import Path
from typing import Optional, Tuple, Type

from .events import BaseEvent, FAILURE_EVENTS


class JsonFileObserver:
    """
    Appends one JSON object per event. ``only`` restricts the event types
    written, which is how the error journal is kept.
    """

    def __init__(self, path: str | Path, only: Optional[Tuple[Type[BaseEvent], ...]] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.only = only

    def notify(self, event: BaseEvent) -> None:
        if self.only is not None and not isinstance(event, self.only):
            return
        with self.path.open("a") as f:
            json.dump({"type": event.__class__.__name__, **event.dict()}, f, sort_keys=True)
            f.write("\n")


def error_journal(path: str | Path) -> JsonFileObserver:
    return JsonFileObserver(path, only=FAILURE_EVENTS)
