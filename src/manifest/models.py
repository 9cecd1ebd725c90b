# src/manifest/models.py - v1
"""Run manifest domain model: ManifestDocument and its sub-records.

Attributes are snake_case; the JSON form uses camelCase aliases and is the
on-disk manifest schema. Bump MANIFEST_SCHEMA_VERSION on any breaking field
change.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MANIFEST_SCHEMA_VERSION = "1.0.0"
SAFETY_POLICY_VERSION = "1.0.0"

ManifestStatus = Literal["SUCCESS", "FAILED", "BLOCKED", "CANCELLED"]
ExitCode = Literal[0, 1, 2, 10, 78, 126, 130]
ExecutionMode = Literal["CLI", "INTERNAL_API"]
CommandClassification = Literal["READ", "WRITE", "DESTRUCTIVE"]
ConfirmationTier = Literal["NONE", "STANDARD", "DESTRUCTIVE", "HARD_RESET"]
ConfirmationMethod = Literal[
    "NONE",
    "PROMPT_YN",
    "TYPE_RESET",
    "TYPE_TENANT_SLUG",
    "AUTO_YES",
    "AUTO_FORCE",
    "DENIED_NON_TTY",
    "DENIED_USER",
]
GateReasonCode = Literal[
    "ALLOWED", "BLOCKED_ENV", "BLOCKED_HOST", "UNKNOWN_HOST", "MISSING_ENV"
]
EnvClassification = Literal["ALLOWED", "BLOCKED", "MISSING"]
DbClassification = Literal["SAFE", "UNSAFE", "UNKNOWN"]
TenantResolution = Literal["EXPLICIT", "DEFAULT", "FAILED", "NOT_ATTEMPTED"]
StepName = Literal[
    "SAFETY_CHECK",
    "LOAD_SCENARIO",
    "VALIDATE_SCENARIO",
    "LOAD_FIXTURES",
    "VALIDATE_INPUT",
    "CONFIRMATION",
    "PLAN",
    "EXECUTE",
    "VERIFY",
    "VERIFY_LITE",
]
StepStatus = Literal["SUCCESS", "FAILED", "SKIPPED"]


class ManifestModel(BaseModel):
    """Frozen base with camelCase JSON aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Plain JSON-compatible dict, exactly as written to disk."""
        return self.model_dump(mode="json", by_alias=True)


# === Sub-objects ===


class ManifestRuntime(ManifestModel):
    toolkit_version: str
    python_version: str
    os: str
    pid: int


class ManifestFlags(ManifestModel):
    dry_run: bool = True
    no_dry_run: bool = False
    force: bool = False
    yes: bool = False
    verbose: bool = False
    manifest_dir: str | None = None
    seed: str | None = None
    scenario: str | None = None


class ManifestConfirmation(ManifestModel):
    tier_used: ConfirmationTier = "NONE"
    confirmation_method: ConfirmationMethod = "NONE"
    confirmed: bool = False


class ManifestInvocation(ManifestModel):
    command_name: str
    command_classification: CommandClassification
    args: dict[str, Any] = Field(default_factory=dict)
    flags: ManifestFlags = Field(default_factory=ManifestFlags)
    confirmation: ManifestConfirmation = Field(default_factory=ManifestConfirmation)


class ManifestGate(ManifestModel):
    """One evaluated safety gate. Only its summary outlives the run."""

    name: str
    passed: bool
    reason_code: GateReasonCode
    reason_message: str


class ManifestEnvSummary(ManifestModel):
    toolkit_env: str | None
    classification: EnvClassification


class ManifestDbSafetySummary(ManifestModel):
    db_host_masked: str
    db_name_masked: str
    classification: DbClassification
    matched_rule: str | None = None


class ManifestSafety(ManifestModel):
    policy_version: str = SAFETY_POLICY_VERSION
    gates: tuple[ManifestGate, ...] = ()
    env_summary: ManifestEnvSummary
    db_safety_summary: ManifestDbSafetySummary


class ManifestTenant(ManifestModel):
    tenant_id: str = "UNRESOLVED"
    tenant_slug: str | None = None
    tenant_display_name: str | None = None
    tenant_resolution: TenantResolution = "NOT_ATTEMPTED"


class StepMetrics(ManifestModel):
    records_affected_estimate: int | None = None
    records_affected_actual: int | None = None
    entities_touched: tuple[str, ...] = ()


class SanitizedError(ManifestModel):
    """Error as persisted: no stack, message scrubbed and truncated."""

    code: str
    message: str
    is_recoverable: bool = False


class ManifestStep(ManifestModel):
    step_id: str
    name: StepName
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    status: StepStatus
    summary: str
    metrics: StepMetrics | None = None
    error: SanitizedError | None = None


class ManifestWritesCounts(ManifestModel):
    entities: tuple[str, ...] = ()
    estimated_counts: dict[str, int] | None = None
    actual_counts: dict[str, int] | None = None


class ManifestExternalCalls(ManifestModel):
    count: int = 0
    endpoints_masked: tuple[str, ...] = ()


class ManifestFilesystemWrites(ManifestModel):
    count: int = 0
    paths_masked: tuple[str, ...] = ()


class ManifestResults(ManifestModel):
    writes_planned: ManifestWritesCounts | None = None
    writes_applied: ManifestWritesCounts | None = None
    external_calls: ManifestExternalCalls | None = None
    filesystem_writes: ManifestFilesystemWrites | None = None
    warnings: tuple[str, ...] = ()
    errors: tuple[SanitizedError, ...] = ()


# === Top-level document ===


class ManifestDocument(ManifestModel):
    """Immutable record of one command execution."""

    schema_version: str = MANIFEST_SCHEMA_VERSION
    run_id: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    status: ManifestStatus
    exit_code: ExitCode
    execution_mode: ExecutionMode
    tty: bool
    type: str | None = None
    runtime: ManifestRuntime | None = None

    invocation: ManifestInvocation
    safety: ManifestSafety
    tenant: ManifestTenant
    steps: tuple[ManifestStep, ...] = ()
    results: ManifestResults


# === Pipeline I/O ===


class ManifestInitConfig(BaseModel):
    """What a caller tells the builder about the command being run."""

    run_id: str | None = None
    type: str | None = None
    execution_mode: ExecutionMode
    command_name: str
    command_classification: CommandClassification
    args: dict[str, Any] = Field(default_factory=dict)
    flags: dict[str, Any] = Field(default_factory=dict)


class ExecutionOutcome(BaseModel):
    """Terminal status an execute callback reports back to the pipeline."""

    status: ManifestStatus
    exit_code: ExitCode


class PipelineResult(BaseModel):
    """Return value of execute_with_manifest()."""

    status: ManifestStatus
    exit_code: ExitCode
    manifest_path: Path | None
    manifest: ManifestDocument
