from __future__ import annotations
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context-local; worker threads see them only through contextvars.copy_context()
_run_id: ContextVar[Optional[str]] = ContextVar("tradeloop_run_id", default=None)
_cycle_id: ContextVar[Optional[str]] = ContextVar("tradeloop_cycle_id", default=None)


def set_run_id(run_id: str) -> None:
    _run_id.set(run_id)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def clear_run_id() -> None:
    _run_id.set(None)


def get_cycle_id() -> Optional[str]:
    return _cycle_id.get()


@contextmanager
def cycle_scope(cycle_id: str) -> Iterator[str]:
    """Bind the cycle id for the duration of one scheduler tick, then restore the previous one."""
    token = _cycle_id.set(cycle_id)
    try:
        yield cycle_id
    finally:
        _cycle_id.reset(token)
