# src/manifest/builder.py - v1
"""In-memory accumulator for one run's manifest.

Lifecycle: OPEN -> FINALIZED. While open, steps, tenant, safety and
results accumulate; finalize() freezes everything into a ManifestDocument.
Finalize is first-call-wins: later calls return the same document and
ignore their arguments. Every mutator is a no-op once finalized.

Status defaults to BLOCKED/78 so that a run which never reaches a
decision is recorded as blocked, not as successful.
"""

from __future__ import annotations

import os
import platform
import sys
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from runmanifest.logging.context import set_step_context
from runmanifest.manifest import redactor
from runmanifest.manifest.models import (
    ExitCode,
    ManifestConfirmation,
    ManifestDbSafetySummary,
    ManifestDocument,
    ManifestEnvSummary,
    ManifestExternalCalls,
    ManifestFilesystemWrites,
    ManifestFlags,
    ManifestInitConfig,
    ManifestInvocation,
    ManifestResults,
    ManifestRuntime,
    ManifestSafety,
    ManifestStatus,
    ManifestStep,
    ManifestTenant,
    ManifestWritesCounts,
    SanitizedError,
    StepMetrics,
    StepName,
    StepStatus,
)
from runmanifest.version import __version__

_UNSAFE_DEFAULT_SAFETY = ManifestSafety(
    gates=(),
    env_summary=ManifestEnvSummary(toolkit_env=None, classification="MISSING"),
    db_safety_summary=ManifestDbSafetySummary(
        db_host_masked="UNKNOWN",
        db_name_masked="UNKNOWN",
        classification="UNKNOWN",
        matched_rule=None,
    ),
)


def _clean_warning(warning: str) -> str:
    return redactor.truncate(redactor.scrub_message(warning), redactor.ERROR_MESSAGE_LIMIT)


class StepHandle:
    """Timer for one step. Only the first close() is recorded."""

    def __init__(
        self,
        step_id: str,
        name: StepName,
        on_close: Callable[[ManifestStep], None],
    ) -> None:
        self._step_id = step_id
        self._name = name
        self._on_close = on_close
        self._started_at = datetime.now(timezone.utc)
        self._start = time.monotonic()
        self._closed = False
        set_step_context(name)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(
        self,
        status: StepStatus,
        summary: str,
        metrics: StepMetrics | None = None,
        error: SanitizedError | None = None,
    ) -> None:
        if self._closed:
            return
        self._closed = True
        set_step_context(None)

        self._on_close(
            ManifestStep(
                step_id=self._step_id,
                name=self._name,
                started_at=self._started_at,
                finished_at=datetime.now(timezone.utc),
                duration_ms=int((time.monotonic() - self._start) * 1000),
                status=status,
                summary=redactor.truncate(
                    redactor.scrub_message(summary), redactor.STEP_SUMMARY_LIMIT
                ),
                metrics=metrics,
                error=error,
            )
        )


class ManifestBuilder:
    """Mutable, single-use manifest accumulator."""

    def __init__(self, config: ManifestInitConfig) -> None:
        self._run_id = config.run_id or str(uuid.uuid4())
        self._started_at = datetime.now(timezone.utc)
        self._start = time.monotonic()
        self._execution_mode = config.execution_mode
        self._type = config.type
        self._tty = bool(sys.stdout and sys.stdout.isatty())
        self._runtime = ManifestRuntime(
            toolkit_version=__version__,
            python_version=platform.python_version(),
            os=sys.platform,
            pid=os.getpid(),
        )

        self._status: ManifestStatus = "BLOCKED"
        self._exit_code: ExitCode = 78

        self._invocation = ManifestInvocation(
            command_name=config.command_name,
            command_classification=config.command_classification,
            args=redactor.redact_args(config.args),
            flags=ManifestFlags.model_validate(config.flags),
            confirmation=ManifestConfirmation(),
        )
        self._safety: ManifestSafety | None = None
        self._tenant = ManifestTenant()

        self._steps: list[ManifestStep] = []
        self._step_counter = 0

        self._writes_planned: ManifestWritesCounts | None = None
        self._writes_applied: ManifestWritesCounts | None = None
        self._external_calls: ManifestExternalCalls | None = None
        self._filesystem_writes: ManifestFilesystemWrites | None = None
        self._warnings: list[str] = []
        self._errors: list[SanitizedError] = []
        self._dropped_warnings = 0
        self._dropped_errors = 0

        self._document: ManifestDocument | None = None

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def invocation(self) -> ManifestInvocation:
        return self._invocation

    def is_finalized(self) -> bool:
        return self._document is not None

    # --- Setters (no-ops once finalized) ---

    def set_safety(self, safety: ManifestSafety) -> None:
        if self.is_finalized():
            return
        self._safety = safety

    def set_tenant(self, tenant: ManifestTenant) -> None:
        if self.is_finalized():
            return
        self._tenant = tenant

    def set_confirmation(self, confirmation: ManifestConfirmation) -> None:
        if self.is_finalized():
            return
        self._invocation = self._invocation.model_copy(
            update={"confirmation": confirmation}
        )

    def set_results(
        self,
        *,
        writes_planned: ManifestWritesCounts | None = None,
        writes_applied: ManifestWritesCounts | None = None,
        external_calls: ManifestExternalCalls | None = None,
        filesystem_writes: ManifestFilesystemWrites | None = None,
        warnings: list[str] | None = None,
        errors: list[object] | None = None,
    ) -> None:
        """Merge result fields; omitted fields keep their current value."""
        if self.is_finalized():
            return
        if writes_planned is not None:
            self._writes_planned = writes_planned
        if writes_applied is not None:
            self._writes_applied = writes_applied
        if external_calls is not None:
            self._external_calls = external_calls
        if filesystem_writes is not None:
            self._filesystem_writes = filesystem_writes
        if warnings is not None:
            self._warnings = [_clean_warning(w) for w in warnings]
        if errors is not None:
            self._errors = [redactor.sanitize_error(e) for e in errors]

    def add_warning(self, warning: str) -> None:
        if self.is_finalized():
            return
        if len(self._warnings) >= redactor.MAX_WARNINGS:
            self._dropped_warnings += 1
            return
        self._warnings.append(_clean_warning(warning))

    def add_error(self, error: object) -> None:
        if self.is_finalized():
            return
        if len(self._errors) >= redactor.MAX_ERRORS:
            self._dropped_errors += 1
            return
        self._errors.append(redactor.sanitize_error(error))

    def stage_outcome(self, status: ManifestStatus, exit_code: ExitCode) -> None:
        """Record the outcome emergency_finalize() should report."""
        if self.is_finalized():
            return
        self._status = status
        self._exit_code = exit_code

    # --- Steps ---

    def start_step(self, name: StepName) -> StepHandle:
        self._step_counter += 1
        step_id = f"step-{self._step_counter:03d}"
        return StepHandle(step_id, name, self._record_step)

    def _record_step(self, step: ManifestStep) -> None:
        if not self.is_finalized():
            self._steps.append(step)

    # --- Finalize ---

    def finalize(self, status: ManifestStatus, exit_code: ExitCode) -> ManifestDocument:
        if self._document is not None:
            return self._document
        self._status = status
        self._exit_code = exit_code
        self._document = self._build_document()
        return self._document

    def emergency_finalize(self) -> ManifestDocument:
        """Finalize with whatever outcome is staged (BLOCKED/78 by default)."""
        if self._document is not None:
            return self._document
        self._document = self._build_document()
        return self._document

    def _build_document(self) -> ManifestDocument:
        finished_at = datetime.now(timezone.utc)

        warnings, _ = redactor.limit_array(
            self._warnings, redactor.MAX_WARNINGS, "warnings"
        )
        overflow = self._dropped_warnings + max(
            0, len(self._warnings) - redactor.MAX_WARNINGS
        )
        if overflow:
            warnings.append(f"+{overflow} more warnings truncated")

        errors, _ = redactor.limit_array(self._errors, redactor.MAX_ERRORS, "errors")
        overflow = self._dropped_errors + max(0, len(self._errors) - redactor.MAX_ERRORS)
        if overflow:
            errors.append(
                SanitizedError(
                    code="ERRORS_TRUNCATED",
                    message=f"+{overflow} more errors truncated",
                    is_recoverable=False,
                )
            )

        return ManifestDocument(
            run_id=self._run_id,
            started_at=self._started_at,
            finished_at=finished_at,
            duration_ms=int((time.monotonic() - self._start) * 1000),
            status=self._status,
            exit_code=self._exit_code,
            execution_mode=self._execution_mode,
            tty=self._tty,
            type=self._type,
            runtime=self._runtime,
            invocation=self._invocation,
            safety=self._safety or _UNSAFE_DEFAULT_SAFETY,
            tenant=self._tenant,
            steps=tuple(self._steps),
            results=ManifestResults(
                writes_planned=self._writes_planned,
                writes_applied=self._writes_applied,
                external_calls=self._external_calls,
                filesystem_writes=self._filesystem_writes,
                warnings=tuple(warnings),
                errors=tuple(errors),
            ),
        )
