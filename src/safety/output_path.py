# src/safety/output_path.py - v1
"""Output-path policy: where the toolkit is allowed to write files.

A requested directory must resolve inside one of the allowed roots: the
working directory, the system temp directory, or an operator-supplied
root from TOOLKIT_OUTPUT_ROOTS.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from runmanifest.config.settings import load_core_settings
from runmanifest.core.errors import OutputPathPolicyError

DEFAULT_DIRS: dict[str, str] = {
    "manifest": "toolkit-manifests",
}


def allowed_roots(extra_roots: list[str] | None = None) -> list[Path]:
    """Absolute, symlink-resolved roots that output may live under."""
    if extra_roots is None:
        extra_roots = load_core_settings().output_roots_list
    candidates = [os.getcwd(), tempfile.gettempdir(), *extra_roots]
    return [Path(os.path.realpath(os.path.expanduser(c))) for c in candidates]


def resolve_output_dir(
    kind: str,
    requested: str | os.PathLike[str] | None,
    extra_roots: list[str] | None = None,
) -> Path:
    """Resolve and validate an output directory.

    Args:
        kind: Output category ("manifest"); selects the default directory.
        requested: Caller-requested directory. None/empty selects the default.
        extra_roots: Additional allowed roots (defaults to TOOLKIT_OUTPUT_ROOTS).

    Returns:
        Absolute directory path.

    Raises:
        OutputPathPolicyError: If the path is malformed or outside every root.
    """
    raw = os.fspath(requested) if requested else ""
    if not raw:
        raw = os.path.join(os.getcwd(), DEFAULT_DIRS.get(kind, f"toolkit-{kind}"))

    if "\0" in raw:
        raise OutputPathPolicyError(f"{kind} output path contains a NUL byte")

    candidate = Path(os.path.realpath(os.path.expanduser(raw)))
    for root in allowed_roots(extra_roots):
        if candidate == root or root in candidate.parents:
            return candidate

    raise OutputPathPolicyError(
        f"{kind} output path {candidate} is outside the allowed roots; "
        "add its parent to TOOLKIT_OUTPUT_ROOTS if intentional"
    )
