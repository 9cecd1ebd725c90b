# tests/unit/safety/test_output_path.py - v1
"""Tests for safety/output_path.py - allowed output roots."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from runmanifest.core.errors import OutputPathPolicyError
from runmanifest.safety.output_path import allowed_roots, resolve_output_dir


class TestAllowedRoots:
    def test_includes_cwd(self, isolated_env: Path):
        assert Path(os.path.realpath(isolated_env)) in allowed_roots([])

    def test_extra_roots_from_settings(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("TOOLKIT_OUTPUT_ROOTS", f"{tmp_path}/a,{tmp_path}/b")
        roots = allowed_roots()
        assert Path(os.path.realpath(tmp_path / "a")) in roots
        assert Path(os.path.realpath(tmp_path / "b")) in roots


class TestResolveOutputDir:
    def test_default_under_cwd(self, isolated_env: Path):
        resolved = resolve_output_dir("manifest", None)
        assert resolved == Path(os.path.realpath(isolated_env)) / "toolkit-manifests"

    def test_relative_path(self, isolated_env: Path):
        resolved = resolve_output_dir("manifest", "out/manifests")
        assert resolved == Path(os.path.realpath(isolated_env)) / "out" / "manifests"

    def test_temp_dir_allowed(self, tmp_path: Path):
        resolved = resolve_output_dir("manifest", tmp_path / "m")
        assert resolved == Path(os.path.realpath(tmp_path / "m"))

    def test_outside_roots_rejected(self):
        with pytest.raises(OutputPathPolicyError, match="outside the allowed roots"):
            resolve_output_dir("manifest", "/etc/runmanifest", extra_roots=[])

    def test_parent_escape_rejected(self, isolated_env: Path):
        escape = "../" * (len(Path(os.path.realpath(isolated_env)).parts) + 1) + "etc"
        with pytest.raises(OutputPathPolicyError):
            resolve_output_dir("manifest", escape, extra_roots=[])

    def test_nul_byte_rejected(self):
        with pytest.raises(OutputPathPolicyError, match="NUL"):
            resolve_output_dir("manifest", "bad\0dir")

    def test_extra_root_allows(self):
        resolved = resolve_output_dir("manifest", "/srv/audit/m", extra_roots=["/srv/audit"])
        assert resolved == Path(os.path.realpath("/srv/audit/m"))

    def test_symlink_out_of_root_rejected(self, isolated_env: Path):
        link = isolated_env / "escape"
        link.symlink_to("/etc")
        with pytest.raises(OutputPathPolicyError):
            resolve_output_dir("manifest", link / "m", extra_roots=[])
