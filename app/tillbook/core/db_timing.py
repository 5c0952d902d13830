from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass


@dataclass
class QueryTimer:
    """Database time spent on one request.

    The timer is mutated in place so queries issued from the threadpool that
    runs sync endpoints still add to the request's totals.
    """

    elapsed_ms: float = 0.0
    queries: int = 0


_current_timer: ContextVar[QueryTimer | None] = ContextVar("tillbook_query_timer", default=None)


def start_db_timer() -> tuple[QueryTimer, Token]:
    timer = QueryTimer()
    return timer, _current_timer.set(timer)


def stop_db_timer(token: Token) -> None:
    _current_timer.reset(token)


def current_db_timer() -> QueryTimer | None:
    return _current_timer.get()


def add_db_time(delta_ms: float) -> None:
    timer = _current_timer.get()
    if timer is None:
        return
    timer.elapsed_ms += delta_ms
    timer.queries += 1
