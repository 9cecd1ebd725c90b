# src/main.py - v2
"""CLI entry point: check, exec, show, list, cleanup commands.

Usage:
    runmanifest check [--all-env]
    runmanifest exec --name <command> [options] -- <program> [args...]
    runmanifest show <manifest.json>
    runmanifest list [directory]
    runmanifest cleanup [directory] [--max-age-minutes N]

`exec` is the embedding point for crash recovery: it installs SIGINT,
uncaught-exception and asyncio exception handlers for the duration of the
run, each of which emergency-finalizes the active manifest before exit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shlex
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from runmanifest.config.settings import ConfigurationError, load_settings
from runmanifest.core.errors import OutputPathPolicyError, ToolkitError
from runmanifest.logging.logger import get_logger, setup_logging
from runmanifest.manifest import redactor
from runmanifest.manifest.builder import ManifestBuilder
from runmanifest.manifest.models import (
    ExecutionOutcome,
    ManifestConfirmation,
    ManifestInitConfig,
    ManifestTenant,
    SanitizedError,
)
from runmanifest.manifest.pipeline import (
    emergency_finalize_and_write,
    execute_with_manifest,
    get_active_builder,
)
from runmanifest.manifest.reader import list_manifests, load_manifest
from runmanifest.manifest.writer import ManifestWriter
from runmanifest.safety.gates import evaluate_safety_gates
from runmanifest.version import __version__

logger = get_logger("main")

GATE_ENV_KEYS = ("TOOLKIT_ENV", "DATABASE_URL", "TOOLKIT_SAFE_DB_HOSTS", "TOOLKIT_MANIFEST_DIR")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        _setup_logging(args.verbose)
    except (ConfigurationError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        emergency_finalize_and_write("SIGINT")
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error(
            "Fatal error: %s", redactor.sanitize_error(exc).message, exc_info=args.verbose
        )
        emergency_finalize_and_write("uncaughtException")
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="runmanifest",
        description=f"runmanifest v{__version__}: safety-gated command runner",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- check ---
    p_check = subparsers.add_parser(
        "check", help="Evaluate safety gates against the current environment",
    )
    p_check.add_argument(
        "--all-env", action="store_true",
        help="Print the whole (redacted) environment, not only gate inputs",
    )
    p_check.set_defaults(func=_cmd_check)

    # --- exec ---
    p_exec = subparsers.add_parser(
        "exec", help="Run a program through the manifest pipeline",
    )
    p_exec.add_argument("--name", required=True, help="Command name for the manifest")
    p_exec.add_argument(
        "--classification", choices=["READ", "WRITE", "DESTRUCTIVE"], default="WRITE",
        help="Command classification (default: WRITE)",
    )
    p_exec.add_argument("--tenant", default=None, help="Tenant id the command targets")
    p_exec.add_argument(
        "--manifest-dir", type=Path, default=None,
        help="Manifest output directory (default: $TOOLKIT_MANIFEST_DIR or ./toolkit-manifests)",
    )
    p_exec.add_argument(
        "--dry-run", action="store_true",
        help="Record the run without starting the program",
    )
    p_exec.add_argument(
        "-y", "--yes", action="store_true",
        help="Confirm DESTRUCTIVE commands without prompting",
    )
    p_exec.add_argument("program", nargs=argparse.REMAINDER, help="Program and arguments")
    p_exec.set_defaults(func=_cmd_exec)

    # --- show ---
    p_show = subparsers.add_parser("show", help="Summarize a manifest file")
    p_show.add_argument("path", type=Path, help="Path to a .manifest.json file")
    p_show.set_defaults(func=_cmd_show)

    # --- list ---
    p_list = subparsers.add_parser("list", help="List manifests in a directory")
    p_list.add_argument("directory", type=Path, nargs="?", default=None)
    p_list.set_defaults(func=_cmd_list)

    # --- cleanup ---
    p_cleanup = subparsers.add_parser(
        "cleanup", help="Remove orphaned temp files from interrupted writes",
    )
    p_cleanup.add_argument("directory", type=Path, nargs="?", default=None)
    p_cleanup.add_argument(
        "--max-age-minutes", type=int, default=60,
        help="Only remove temp files older than this (default: 60)",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    return parser


async def _cmd_check(args: argparse.Namespace) -> int:
    """Print the gate table and a redacted env snapshot."""
    check = evaluate_safety_gates()

    print("\nSafety gates:")
    for gate in check.safety.gates:
        mark = "PASS" if gate.passed else "FAIL"
        print(f"  [{mark}] {gate.name:<13} {gate.reason_code:<13} {gate.reason_message}")

    if args.all_env:
        env = redactor.redact_env(os.environ)
    else:
        env = redactor.redact_env({k: os.environ.get(k) for k in GATE_ENV_KEYS})
    print("\nEnvironment (redacted):")
    for key in sorted(env):
        print(f"  {key}={env[key]}")

    if check.blocked:
        print(f"\nWrites BLOCKED by {check.blocked_gate}")
        return 78
    print("\nWrites allowed")
    return 0


async def _cmd_exec(args: argparse.Namespace) -> int:
    """Run an external program with a manifest."""
    program = list(args.program)
    if program and program[0] == "--":
        program = program[1:]
    if not program:
        logger.error("No program given; usage: runmanifest exec --name NAME -- PROGRAM ...")
        return 2

    command_line = shlex.join(redact_argv(program))
    config = ManifestInitConfig(
        execution_mode="CLI",
        command_name=args.name,
        command_classification=args.classification,
        args={"command": command_line, "tenant": args.tenant},
        flags={
            "dry_run": args.dry_run,
            "no_dry_run": not args.dry_run,
            "yes": args.yes,
            "verbose": args.verbose,
            "manifest_dir": str(args.manifest_dir) if args.manifest_dir else None,
        },
    )

    async def execute(builder: ManifestBuilder) -> ExecutionOutcome:
        if args.tenant:
            builder.set_tenant(
                ManifestTenant(tenant_id=args.tenant, tenant_resolution="EXPLICIT")
            )
        if args.classification == "DESTRUCTIVE":
            denied = await confirm_destructive(builder, args.yes)
            if denied is not None:
                return denied
        return await run_program(builder, program, command_line, args.dry_run)

    restore = install_crash_handlers(asyncio.get_running_loop())
    try:
        result = await execute_with_manifest(
            config,
            execute,
            manifest_dir=args.manifest_dir,
            skip_safety=args.classification == "READ",
        )
    finally:
        restore()

    if result.manifest_path is None:
        logger.warning("Run finished without a manifest on disk")
    return result.exit_code


async def confirm_destructive(
    builder: ManifestBuilder, assume_yes: bool
) -> ExecutionOutcome | None:
    """CONFIRMATION step for DESTRUCTIVE commands. Returns an outcome if denied."""
    step = builder.start_step("CONFIRMATION")

    if assume_yes:
        builder.set_confirmation(
            ManifestConfirmation(
                tier_used="DESTRUCTIVE", confirmation_method="AUTO_YES", confirmed=True
            )
        )
        step.close(status="SUCCESS", summary="Confirmed by --yes")
        return None

    if not sys.stdin or not sys.stdin.isatty():
        builder.set_confirmation(
            ManifestConfirmation(
                tier_used="DESTRUCTIVE",
                confirmation_method="DENIED_NON_TTY",
                confirmed=False,
            )
        )
        step.close(status="FAILED", summary="No TTY to confirm a destructive command")
        builder.add_warning("Destructive command requires --yes when not interactive")
        return ExecutionOutcome(status="BLOCKED", exit_code=2)

    answer = await asyncio.to_thread(input, "This command is DESTRUCTIVE. Type 'yes' to continue: ")
    confirmed = answer.strip().lower() == "yes"
    builder.set_confirmation(
        ManifestConfirmation(
            tier_used="DESTRUCTIVE",
            confirmation_method="PROMPT_YN" if confirmed else "DENIED_USER",
            confirmed=confirmed,
        )
    )
    if not confirmed:
        step.close(status="FAILED", summary="Declined by user")
        return ExecutionOutcome(status="BLOCKED", exit_code=2)
    step.close(status="SUCCESS", summary="Confirmed interactively")
    return None


async def run_program(
    builder: ManifestBuilder, program: list[str], command_line: str, dry_run: bool
) -> ExecutionOutcome:
    """EXECUTE step: start the program and map its exit status."""
    step = builder.start_step("EXECUTE")
    if dry_run:
        step.close(status="SKIPPED", summary=f"Dry run: {command_line}")
        return ExecutionOutcome(status="SUCCESS", exit_code=0)

    builder.stage_outcome("FAILED", 1)
    try:
        proc = await asyncio.create_subprocess_exec(*program)
    except OSError as exc:
        error = redactor.sanitize_error(
            ToolkitError(f"Cannot start {program[0]}: {exc}", code="COMMAND_NOT_EXECUTABLE")
        )
        step.close(status="FAILED", summary=error.message, error=error)
        builder.add_error(error)
        return ExecutionOutcome(status="FAILED", exit_code=126)

    returncode = await proc.wait()
    if returncode == 0:
        step.close(status="SUCCESS", summary=f"{command_line} exited with 0")
        return ExecutionOutcome(status="SUCCESS", exit_code=0)

    error = SanitizedError(
        code="COMMAND_FAILED",
        message=f"{program[0]} exited with {returncode}",
        is_recoverable=False,
    )
    step.close(status="FAILED", summary=error.message, error=error)
    builder.add_error(error)
    return ExecutionOutcome(status="FAILED", exit_code=1)


def redact_argv(argv: list[str]) -> list[str]:
    """Mask values of secret-looking options (--api-key=x, --token x) and URL creds."""
    redacted: list[str] = []
    mask_next = False
    for token in argv:
        if mask_next:
            redacted.append(redactor.REDACTED_PLACEHOLDER)
            mask_next = False
            continue
        if token.startswith("-"):
            name, sep, _ = token.lstrip("-").partition("=")
            if redactor.is_forbidden_key(name.replace("-", "_")):
                if sep:
                    redacted.append(token.split("=", 1)[0] + "=" + redactor.REDACTED_PLACEHOLDER)
                else:
                    redacted.append(token)
                    mask_next = True
                continue
        redacted.append(redactor.scrub_message(token))
    return redacted


async def _cmd_show(args: argparse.Namespace) -> int:
    """Print a human-readable summary of one manifest."""
    try:
        doc = load_manifest(args.path)
    except (OSError, ValidationError) as exc:
        logger.error("Cannot read manifest %s: %s", args.path, exc)
        return 1

    print(f"\nManifest {doc.run_id}:")
    print(f"  Command:   {doc.invocation.command_name} ({doc.invocation.command_classification})")
    print(f"  Status:    {doc.status} (exit {doc.exit_code})")
    print(f"  Started:   {doc.started_at.isoformat()}")
    print(f"  Duration:  {doc.duration_ms} ms")
    print(f"  Tenant:    {doc.tenant.tenant_id}")
    print(f"  Safety:    env={doc.safety.env_summary.classification} "
          f"db={doc.safety.db_safety_summary.classification}")
    for step in doc.steps:
        print(f"  - {step.step_id} {step.name:<17} {step.status:<8} {step.summary}")
    for warning in doc.results.warnings:
        print(f"  ! {warning}")
    for error in doc.results.errors:
        print(f"  x {error.code}: {error.message}")
    return 0


async def _cmd_list(args: argparse.Namespace) -> int:
    """List manifests in the resolved directory."""
    try:
        directory = ManifestWriter.resolve_dir(args.directory)
    except OutputPathPolicyError as exc:
        logger.error("%s", exc)
        return exc.exit_code

    paths = list_manifests(directory)
    print(f"\n{len(paths)} manifest(s) in {directory}:")
    for path in paths:
        print(f"  {path.name}")
    return 0


async def _cmd_cleanup(args: argparse.Namespace) -> int:
    """Remove stale temp files from the resolved directory."""
    try:
        directory = ManifestWriter.resolve_dir(args.directory)
    except OutputPathPolicyError as exc:
        logger.error("%s", exc)
        return exc.exit_code

    removed = await ManifestWriter().cleanup_orphans(
        directory, max_age_ms=args.max_age_minutes * 60 * 1000
    )
    print(f"Removed {removed} orphaned temp file(s) from {directory}")
    return 0


def install_crash_handlers(
    loop: asyncio.AbstractEventLoop | None = None,
) -> Callable[[], None]:
    """Route SIGINT and uncaught exceptions through the emergency finalize.

    Covers SIGINT, sys.excepthook, threading.excepthook (worker threads)
    and the asyncio loop exception handler. Returns a callable restoring
    the previous handlers, so repeated runs in one process do not stack.
    """
    previous_excepthook = sys.excepthook
    previous_thread_hook = threading.excepthook
    in_main_thread = threading.current_thread() is threading.main_thread()
    previous_sigint = signal.getsignal(signal.SIGINT) if in_main_thread else None
    previous_loop_handler = loop.get_exception_handler() if loop is not None else None

    def on_sigint(signum: int, frame: object) -> None:
        emergency_finalize_and_write("SIGINT")
        logger.error("SIGINT received - exiting with code 130")
        raise SystemExit(130)

    def on_uncaught(exc_type, exc, tb) -> None:
        logger.error("uncaughtException: %s", redactor.sanitize_error(exc).message)
        emergency_finalize_and_write("uncaughtException")

    def on_thread_exception(hook_args: threading.ExceptHookArgs) -> None:
        if get_active_builder() is None:
            previous_thread_hook(hook_args)
            return
        logger.error(
            "uncaughtException in thread %s: %s",
            hook_args.thread.name if hook_args.thread else "?",
            redactor.sanitize_error(hook_args.exc_value).message,
        )
        emergency_finalize_and_write("uncaughtException")
        _terminate(1)

    def on_loop_exception(_loop: asyncio.AbstractEventLoop, context: dict) -> None:
        if get_active_builder() is None:
            if previous_loop_handler is not None:
                previous_loop_handler(_loop, context)
            else:
                _loop.default_exception_handler(context)
            return
        exc = context.get("exception") or context.get("message", "unknown")
        logger.error("unhandledRejection: %s", redactor.sanitize_error(exc).message)
        emergency_finalize_and_write("unhandledRejection")
        _terminate(1)

    sys.excepthook = on_uncaught
    threading.excepthook = on_thread_exception
    if in_main_thread:
        signal.signal(signal.SIGINT, on_sigint)
    if loop is not None:
        loop.set_exception_handler(on_loop_exception)

    def restore() -> None:
        sys.excepthook = previous_excepthook
        threading.excepthook = previous_thread_hook
        if in_main_thread and previous_sigint is not None:
            signal.signal(signal.SIGINT, previous_sigint)
        if loop is not None:
            loop.set_exception_handler(previous_loop_handler)

    return restore


def _terminate(code: int) -> None:
    """Exit immediately; used where raising cannot reach the interpreter."""
    logging.shutdown()
    sys.stderr.flush()
    os._exit(code)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage from Settings."""
    settings = load_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
