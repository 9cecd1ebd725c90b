# tests/unit/manifest/test_models.py - v1
"""Tests for manifest/models.py - schema defaults, aliases, immutability."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from runmanifest.manifest.models import (
    MANIFEST_SCHEMA_VERSION,
    ManifestConfirmation,
    ManifestDbSafetySummary,
    ManifestDocument,
    ManifestEnvSummary,
    ManifestFlags,
    ManifestInvocation,
    ManifestResults,
    ManifestSafety,
    ManifestTenant,
)


def _document(**overrides) -> ManifestDocument:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    fields = dict(
        run_id="run-1",
        started_at=now,
        finished_at=now,
        duration_ms=0,
        status="SUCCESS",
        exit_code=0,
        execution_mode="CLI",
        tty=False,
        invocation=ManifestInvocation(command_name="seed", command_classification="WRITE"),
        safety=ManifestSafety(
            env_summary=ManifestEnvSummary(toolkit_env="DEV", classification="ALLOWED"),
            db_safety_summary=ManifestDbSafetySummary(
                db_host_masked="localhost", db_name_masked="app", classification="SAFE",
            ),
        ),
        tenant=ManifestTenant(),
        results=ManifestResults(),
    )
    fields.update(overrides)
    return ManifestDocument(**fields)


class TestDefaults:
    def test_flags_default_to_dry_run(self):
        flags = ManifestFlags()
        assert flags.dry_run is True
        assert flags.no_dry_run is False

    def test_confirmation_default(self):
        assert ManifestConfirmation() == ManifestConfirmation(
            tier_used="NONE", confirmation_method="NONE", confirmed=False
        )

    def test_tenant_unresolved(self):
        tenant = ManifestTenant()
        assert tenant.tenant_id == "UNRESOLVED"
        assert tenant.tenant_resolution == "NOT_ATTEMPTED"

    def test_schema_version(self):
        assert _document().schema_version == MANIFEST_SCHEMA_VERSION


class TestSerialization:
    def test_camel_case_keys(self):
        data = _document().to_json_dict()
        assert data["runId"] == "run-1"
        assert data["exitCode"] == 0
        assert data["safety"]["dbSafetySummary"]["dbHostMasked"] == "localhost"
        assert data["invocation"]["flags"]["dryRun"] is True
        assert data["startedAt"].startswith("2026-03-01T12:00:00")

    def test_populate_by_alias(self):
        flags = ManifestFlags.model_validate({"dryRun": False, "manifestDir": "/tmp/m"})
        assert flags.dry_run is False
        assert flags.manifest_dir == "/tmp/m"

    def test_json_round_trip(self):
        doc = _document()
        assert ManifestDocument.model_validate_json(doc.model_dump_json(by_alias=True)) == doc


class TestValidation:
    def test_frozen(self):
        doc = _document()
        with pytest.raises(ValidationError):
            doc.status = "FAILED"  # type: ignore[misc]

    def test_unknown_exit_code_rejected(self):
        with pytest.raises(ValidationError):
            _document(exit_code=42)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            _document(status="DONE")
