# src/manifest/pipeline.py - v1
"""Manifest pipeline: the single entry point for write-capable commands.

Phases: INIT -> SAFETY -> EXECUTE -> FINALIZE -> WRITE. Every invocation,
blocked ones included, finalizes exactly one manifest and attempts to
write it.

At most one run is in flight per process. The active builder lives in a
module-level slot so that crash handlers owned by the embedding CLI can
reach it through emergency_finalize_and_write(). The slot is unlocked: a
normal finalize racing an emergency one from another thread is not guarded.
This module installs no signal or exception handlers itself.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Union

from pydantic_core import PydanticSerializationError

from runmanifest.config.settings import ConfigurationError
from runmanifest.core.errors import OutputPathPolicyError, SafetyBlockError
from runmanifest.logging.context import clear_context, set_run_context
from runmanifest.manifest import redactor
from runmanifest.manifest.builder import ManifestBuilder
from runmanifest.manifest.models import (
    ExecutionOutcome,
    ExitCode,
    ManifestInitConfig,
    ManifestStatus,
    PipelineResult,
)
from runmanifest.manifest.writer import ManifestWriter
from runmanifest.safety.gates import SafetyOptions, evaluate_safety_gates

logger = logging.getLogger(__name__)

ExecuteResult = Union[ExecutionOutcome, dict]
ExecuteFn = Callable[[ManifestBuilder], Union[Awaitable[ExecuteResult], ExecuteResult]]

_active_builder: ManifestBuilder | None = None
_active_manifest_dir: str | os.PathLike[str] | None = None


def get_active_builder() -> ManifestBuilder | None:
    """The builder of the run currently in flight, if any."""
    return _active_builder


def emergency_finalize_and_write(signal: str | None = None) -> Path | None:
    """Force-finalize the active run and write it synchronously.

    Meant for SIGINT / uncaught-exception handlers, where awaiting is not
    possible. No-op when no run is active or it is already finalized.
    SIGINT maps to CANCELLED/130, any other signal to FAILED/1; with no
    signal the builder's staged outcome is used. Never raises.
    """
    global _active_builder, _active_manifest_dir
    builder = _active_builder
    if builder is None or builder.is_finalized():
        return None

    if signal is None:
        builder.add_warning("Emergency finalize triggered")
        document = builder.emergency_finalize()
    else:
        status: ManifestStatus = "CANCELLED" if signal == "SIGINT" else "FAILED"
        exit_code: ExitCode = 130 if signal == "SIGINT" else 1
        builder.add_warning(f"Emergency finalize triggered by {signal}")
        document = builder.finalize(status, exit_code)

    writer = ManifestWriter()
    written: Path | None = None
    try:
        target = writer.resolve_dir(
            _active_manifest_dir, document.invocation.flags.manifest_dir
        )
        target.mkdir(parents=True, exist_ok=True)
        payload, size = writer.serialize(document)
        if payload is None:
            logger.warning(
                "Emergency manifest size %d exceeds cap %d", size, writer.max_bytes
            )
        else:
            path = target / writer.generate_filename(
                document.run_id, document.invocation.command_name
            )
            with open(path, "wb") as fh:
                fh.write(payload)
            written = path
            logger.warning("Emergency manifest written: %s", path)
    except (
        OSError,
        ValueError,
        TypeError,
        PydanticSerializationError,
        OutputPathPolicyError,
        ConfigurationError,
    ) as exc:
        logger.warning("Emergency manifest write failed: %s", redactor.scrub_message(str(exc)))
    finally:
        _active_builder = None
        _active_manifest_dir = None

    return written


async def execute_with_manifest(
    config: ManifestInitConfig,
    execute: ExecuteFn,
    safety_options: SafetyOptions | None = None,
    manifest_dir: str | os.PathLike[str] | None = None,
    skip_safety: bool = False,
    writer: ManifestWriter | None = None,
) -> PipelineResult:
    """Run a command through the manifest pipeline.

    Args:
        config: Command descriptor for the builder.
        execute: Callback receiving the builder; returns the terminal
            ExecutionOutcome (sync or async).
        safety_options: Explicit gate inputs; environment otherwise.
        manifest_dir: Output directory override.
        skip_safety: Record SAFETY_CHECK as SKIPPED (read-only commands).
        writer: Writer to persist with (default ManifestWriter()).

    Returns:
        PipelineResult. Errors from execute are reported through it,
        never raised.
    """
    global _active_builder, _active_manifest_dir
    writer = writer or ManifestWriter()

    builder = ManifestBuilder(config)
    _active_builder = builder
    _active_manifest_dir = manifest_dir
    set_run_context(builder.run_id, config.command_name)

    try:
        if skip_safety:
            step = builder.start_step("SAFETY_CHECK")
            step.close(status="SKIPPED", summary="Skipped for read-only command")
        else:
            step = builder.start_step("SAFETY_CHECK")
            try:
                check = evaluate_safety_gates(safety_options)
            except Exception as exc:
                step.close(
                    status="FAILED",
                    summary="Safety gate evaluation failed",
                    error=redactor.sanitize_error(exc),
                )
                raise
            builder.set_safety(check.safety)

            if check.blocked:
                block = SafetyBlockError(
                    check.blocked_gate or "UNKNOWN",
                    check.blocked_reason or "Safety gate blocked execution",
                )
                step.close(
                    status="FAILED",
                    summary=str(block),
                    error=redactor.sanitize_error(block),
                )
                builder.add_error(block)
                logger.warning("Execution blocked: %s", redactor.scrub_message(str(block)))
                return await _build_result(builder, "BLOCKED", 78, manifest_dir, writer)

            step.close(status="SUCCESS", summary="All safety gates passed")

        result = execute(builder)
        if inspect.isawaitable(result):
            result = await result
        outcome = (
            result
            if isinstance(result, ExecutionOutcome)
            else ExecutionOutcome.model_validate(result)
        )
        return await _build_result(
            builder, outcome.status, outcome.exit_code, manifest_dir, writer
        )
    except (KeyboardInterrupt, asyncio.CancelledError):
        emergency_finalize_and_write("SIGINT")
        raise
    except Exception as exc:
        error = redactor.sanitize_error(exc)
        logger.error("Command failed: %s", error.message)
        builder.add_error(exc)
        return await _build_result(builder, "FAILED", 1, manifest_dir, writer)
    finally:
        _active_builder = None
        _active_manifest_dir = None
        clear_context()


async def _build_result(
    builder: ManifestBuilder,
    status: ManifestStatus,
    exit_code: ExitCode,
    manifest_dir: str | os.PathLike[str] | None,
    writer: ManifestWriter,
) -> PipelineResult:
    """Finalize, then write (best effort)."""
    manifest = builder.finalize(status, exit_code)
    manifest_path = await writer.write(manifest, manifest_dir)
    if manifest_path is not None:
        logger.info("Manifest written: %s", manifest_path)

    return PipelineResult(
        status=status,
        exit_code=exit_code,
        manifest_path=manifest_path,
        manifest=manifest,
    )
