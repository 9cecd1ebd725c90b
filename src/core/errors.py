# src/core/errors.py - v1
"""Exception hierarchy shared by the safety gates, writer and pipeline."""

from __future__ import annotations


class ToolkitError(Exception):
    """Base error carrying a stable code for manifest error records."""

    code: str = "TOOLKIT_ERROR"
    is_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        is_recoverable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if is_recoverable is not None:
            self.is_recoverable = is_recoverable


class SafetyBlockError(ToolkitError):
    """A safety gate refused execution. Fixable by operator action."""

    code = "SAFETY_BLOCK"
    is_recoverable = True

    def __init__(self, gate: str, reason: str) -> None:
        super().__init__(f"Gate {gate} blocked: {reason}")
        self.gate = gate
        self.reason = reason


class OutputPathPolicyError(ToolkitError):
    """Requested output directory is outside the allowed roots."""

    code = "OUTPUT_PATH_BLOCKED"
    exit_code = 78
