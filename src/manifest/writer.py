# src/manifest/writer.py - v1
"""Atomic, best-effort manifest persistence.

Strategy: serialize -> size check -> temp write -> fsync -> rename.
Failures are logged and reported as a None path; they never raise and
never change the run's status or exit code.

Target directory precedence: explicit argument > the run's --manifest-dir
flag > TOOLKIT_MANIFEST_DIR > ./toolkit-manifests, all subject to the
output-path policy.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic_core import PydanticSerializationError

from runmanifest.config.settings import ConfigurationError, load_core_settings
from runmanifest.core.errors import OutputPathPolicyError
from runmanifest.manifest.models import ManifestDocument
from runmanifest.manifest.redactor import MAX_MANIFEST_BYTES, scrub_message
from runmanifest.safety.output_path import resolve_output_dir

logger = logging.getLogger(__name__)

ORPHAN_MAX_AGE_MS = 60 * 60 * 1000
TEMP_PREFIX = ".tmp_"
MANIFEST_SUFFIX = ".manifest.json"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9-]")


class ManifestWriter:
    """Writes finalized documents; treats them as read-only."""

    def __init__(self, max_bytes: int = MAX_MANIFEST_BYTES) -> None:
        self._max_bytes = max_bytes

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def serialize(self, manifest: ManifestDocument) -> tuple[bytes | None, int]:
        """Pretty-print as JSON. Returns (payload or None if oversized, size)."""
        payload = manifest.model_dump_json(indent=2, by_alias=True).encode("utf-8")
        size = len(payload)
        if size > self._max_bytes:
            return None, size
        return payload, size

    @staticmethod
    def resolve_dir(
        manifest_dir: str | os.PathLike[str] | None = None,
        flag_value: str | None = None,
    ) -> Path:
        """Pick the target directory.

        Raises:
            OutputPathPolicyError: If the chosen directory is not allowed.
        """
        requested = manifest_dir or flag_value or load_core_settings().toolkit_manifest_dir
        return resolve_output_dir("manifest", requested)

    @staticmethod
    def generate_filename(
        run_id: str, command_name: str, now: datetime | None = None
    ) -> str:
        """Canonical name: {runId}_{command}_{YYYYMMDDTHHMMSSZ}.manifest.json."""
        ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
        safe_name = _UNSAFE_NAME_CHARS.sub("_", command_name)
        return f"{run_id}_{safe_name}_{ts}{MANIFEST_SUFFIX}"

    @staticmethod
    def temp_filename(run_id: str) -> str:
        return f"{TEMP_PREFIX}{run_id}.json"

    async def write(
        self,
        manifest: ManifestDocument,
        manifest_dir: str | os.PathLike[str] | None = None,
    ) -> Path | None:
        """Atomically write a manifest. Returns the final path, or None."""
        try:
            target = self.resolve_dir(manifest_dir, manifest.invocation.flags.manifest_dir)
        except (OutputPathPolicyError, ConfigurationError, ValueError) as exc:
            logger.warning("Manifest output path blocked by policy: %s", exc)
            return None

        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to create manifest directory %s: %s", target, exc)
            return None

        try:
            payload, size = self.serialize(manifest)
        except (PydanticSerializationError, TypeError, ValueError) as exc:
            logger.warning("Manifest could not be serialized: %s", scrub_message(str(exc)))
            return None
        if payload is None:
            logger.warning(
                "Manifest size %d exceeds cap %d; skipping write", size, self._max_bytes
            )
            return None

        final_path = target / self.generate_filename(
            manifest.run_id, manifest.invocation.command_name
        )
        temp_path = target / self.temp_filename(manifest.run_id)

        try:
            await asyncio.to_thread(_write_and_sync, temp_path, payload)
            await asyncio.to_thread(os.replace, temp_path, final_path)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to write manifest: %s", exc)
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                logger.debug("Could not remove temp file %s", temp_path)
            return None

        return final_path

    async def cleanup_orphans(
        self,
        directory: str | os.PathLike[str],
        max_age_ms: int = ORPHAN_MAX_AGE_MS,
    ) -> int:
        """Remove stale temp files left by interrupted writes.

        Housekeeping only: never raises. Returns the number of files removed.
        """
        return await asyncio.to_thread(_cleanup_orphans, Path(directory), max_age_ms)


def _write_and_sync(path: Path, payload: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(payload)
        fh.flush()
        try:
            os.fsync(fh.fileno())
        except OSError:
            # Not supported everywhere; the rename still happens.
            logger.debug("fsync unavailable for %s", path)


def _cleanup_orphans(directory: Path, max_age_ms: int) -> int:
    cleaned = 0
    cutoff = time.time() - max_age_ms / 1000
    try:
        entries = list(directory.iterdir())
    except OSError:
        return 0

    for entry in entries:
        if not entry.name.startswith(TEMP_PREFIX):
            continue
        try:
            if entry.stat().st_mtime < cutoff:
                entry.unlink()
                cleaned += 1
        except OSError:
            continue
    return cleaned
