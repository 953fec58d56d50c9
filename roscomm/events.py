"""
Minimal observer hook used for Comm notifications (error, received,
state_changed, login_state_changed).
"""

import logging
from typing import Any, Callable

log = logging.getLogger("Events")


class Signal:

    def __init__(self, name: str):
        self.name = name
        self._handlers: list[Callable[..., Any]] = []

    def connect(self, handler: Callable[..., Any]) -> Callable[..., Any]:
        self._handlers.append(handler)
        return handler

    def disconnect(self, handler: Callable[..., Any]):
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, *args: Any):
        for handler in list(self._handlers):
            handler(*args)

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"<Signal {self.name} handlers={len(self._handlers)}>"
