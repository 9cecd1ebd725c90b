# src/manifest/reader.py - v1
"""Read manifests back for consultation (CLI show/list, audits)."""

from __future__ import annotations

from pathlib import Path

from runmanifest.manifest.models import ManifestDocument
from runmanifest.manifest.writer import MANIFEST_SUFFIX, TEMP_PREFIX


def load_manifest(path: Path) -> ManifestDocument:
    """Load and validate a ManifestDocument from a manifest file."""
    return ManifestDocument.model_validate_json(Path(path).read_text(encoding="utf-8"))


def list_manifests(directory: Path) -> list[Path]:
    """Manifest files in a directory, sorted by name. Temp files are skipped."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        p
        for p in directory.iterdir()
        if p.name.endswith(MANIFEST_SUFFIX) and not p.name.startswith(TEMP_PREFIX)
    )
