"""Client-side helpers for course search: debouncing and stale-result guard."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional


class SearchSequencer:
    """Drop search results that arrive after newer ones were requested.

    Every outgoing query takes a ticket from `next_ticket()`. When the
    response arrives it is offered with `commit(ticket, results)`; only a
    ticket at least as new as every ticket committed so far is applied.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._issued = 0
        self._committed = 0
        self.results: Any = None

    def next_ticket(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def is_current(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._issued

    def commit(self, ticket: int, results: Any) -> bool:
        with self._lock:
            if ticket <= self._committed or ticket > self._issued:
                return False
            self._committed = ticket
            self.results = results
            return True


class Debouncer:
    """Run `func` once calls have stopped arriving for `delay` seconds."""

    def __init__(self, func: Callable[..., Any], delay: float = 0.5):
        self.func = func
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def __call__(self, *args, **kwargs) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.func, args=args, kwargs=kwargs)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
