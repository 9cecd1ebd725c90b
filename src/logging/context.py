# src/logging/context.py - v3
"""Run context for log records.

The pipeline sets run_id and command once per run; ManifestBuilder moves the
step as step handles open and close. Formatters read a snapshot.
"""

from __future__ import annotations

import contextvars
from dataclasses import asdict, dataclass, replace
from typing import Any


@dataclass(frozen=True)
class LogContext:
    run_id: str | None = None
    command: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Fields that are set, for the JSON "context" object."""
        return {k: v for k, v in asdict(self).items() if v is not None}


_EMPTY = LogContext()
_current: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "runmanifest_log_context", default=_EMPTY
)


def get_context() -> LogContext:
    return _current.get()


def set_run_context(run_id: str, command: str) -> None:
    # a new run never inherits the previous run's open step
    _current.set(LogContext(run_id=run_id, command=command))


def set_step_context(step: str | None) -> None:
    _current.set(replace(_current.get(), step=step))


def clear_context() -> None:
    _current.set(_EMPTY)
