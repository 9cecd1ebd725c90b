# tests/unit/manifest/test_reader.py - v1
"""Tests for manifest/reader.py - loading and listing manifests."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from runmanifest.manifest.builder import ManifestBuilder
from runmanifest.manifest.models import ManifestInitConfig
from runmanifest.manifest.reader import list_manifests, load_manifest
from runmanifest.manifest.writer import ManifestWriter


class TestLoadManifest:
    @pytest.mark.asyncio
    async def test_round_trip(self, init_config: ManifestInitConfig, manifest_dir: Path):
        builder = ManifestBuilder(init_config)
        builder.start_step("PLAN").close(status="SUCCESS", summary="planned")
        builder.add_error(RuntimeError("oops"))
        doc = builder.finalize("FAILED", 1)

        path = await ManifestWriter().write(doc, manifest_dir)
        loaded = load_manifest(path)
        assert loaded == doc
        assert loaded.to_json_dict() == doc.to_json_dict()

    def test_invalid_json(self, tmp_path: Path):
        bad = tmp_path / "bad.manifest.json"
        bad.write_text('{"runId": 1}')
        with pytest.raises(ValidationError):
            load_manifest(bad)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(OSError):
            load_manifest(tmp_path / "missing.manifest.json")


class TestListManifests:
    def test_sorted_and_filtered(self, tmp_path: Path):
        for name in ("b_x.manifest.json", "a_x.manifest.json", ".tmp_c.json", "notes.txt"):
            (tmp_path / name).write_text("{}")
        assert [p.name for p in list_manifests(tmp_path)] == [
            "a_x.manifest.json", "b_x.manifest.json",
        ]

    def test_missing_directory(self, tmp_path: Path):
        assert list_manifests(tmp_path / "nope") == []
