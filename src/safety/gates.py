# src/safety/gates.py - v1
"""Pre-flight safety gates for write-capable commands.

Gate 1 (TOOLKIT_ENV): the environment tag must be in the writable set.
Gate 2 (DATABASE_URL): the database host must be positively known as safe.

Both gates are fail-closed: anything missing, unparseable or unrecognised
blocks execution. Evaluation is pure given explicit options; omitted
options fall back to the process environment through CoreSettings.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel

from runmanifest.config.settings import load_core_settings
from runmanifest.manifest.models import (
    DbClassification,
    EnvClassification,
    GateReasonCode,
    ManifestDbSafetySummary,
    ManifestEnvSummary,
    ManifestGate,
    ManifestSafety,
)

WRITABLE_ENVS: frozenset[str] = frozenset({"LOCAL", "DEV", "CI"})

# Managed cloud databases: matched as suffix, or exactly without the dot.
BLOCKED_HOST_SUFFIXES: tuple[str, ...] = (
    ".supabase.co",
    ".supabase.com",
    ".rds.amazonaws.com",
    ".gcp.cloud",
    ".azure.com",
    ".neon.tech",
)

ALLOWED_HOSTS: tuple[str, ...] = (
    "localhost",
    "127.0.0.1",
    "::1",
    "host.docker.internal",
    "db",
    "postgres",
)

UNPARSEABLE_HOST = "UNPARSEABLE"

ENV_GATE = "TOOLKIT_ENV"
DB_GATE = "DATABASE_URL"

HostClassification = Literal["ALLOWED", "BLOCKED", "UNKNOWN"]


class SafetyOptions(BaseModel):
    """Explicit gate inputs. None means: read it from the environment."""

    toolkit_env: str | None = None
    database_url: str | None = None
    safe_db_hosts: list[str] | None = None


class SafetyCheckResult(BaseModel):
    safety: ManifestSafety
    blocked: bool
    blocked_gate: str | None = None
    blocked_reason: str | None = None


def classify_host(
    hostname: str, safe_hosts: list[str] | None = None
) -> tuple[HostClassification, str | None]:
    """Classify a database hostname; returns (classification, matched rule)."""
    lower = hostname.lower()

    # Operator override wins over the blocklist.
    for host in safe_hosts or []:
        if lower == host.lower():
            return "ALLOWED", f"custom:{host}"

    for suffix in BLOCKED_HOST_SUFFIXES:
        if lower.endswith(suffix) or lower == suffix[1:]:
            return "BLOCKED", f"blocklist:{suffix}"

    for host in ALLOWED_HOSTS:
        if lower == host:
            return "ALLOWED", f"allowlist:{host}"

    return "UNKNOWN", None


def parse_database_host(url: str) -> tuple[str, str]:
    """Return (hostname, db name); unparseable input maps to a sentinel pair."""
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError:
        return UNPARSEABLE_HOST, UNPARSEABLE_HOST
    if not parsed.scheme or not hostname:
        return UNPARSEABLE_HOST, UNPARSEABLE_HOST
    return hostname, parsed.path.lstrip("/")


def _evaluate_env_gate(toolkit_env: str | None) -> tuple[ManifestGate, ManifestEnvSummary]:
    env_upper = toolkit_env.upper() if toolkit_env is not None else None
    allowed = env_upper is not None and env_upper in WRITABLE_ENVS
    writable = ", ".join(sorted(WRITABLE_ENVS))

    reason_code: GateReasonCode
    classification: EnvClassification
    if env_upper is None:
        reason_code, classification = "MISSING_ENV", "MISSING"
        message = f"TOOLKIT_ENV is not set. Set to one of [{writable}] to allow writes."
    elif allowed:
        reason_code, classification = "ALLOWED", "ALLOWED"
        message = f"TOOLKIT_ENV={env_upper} is in the writable allowlist."
    else:
        reason_code, classification = "BLOCKED_ENV", "BLOCKED"
        message = f"TOOLKIT_ENV={env_upper} is not in the writable allowlist [{writable}]."

    gate = ManifestGate(
        name=ENV_GATE, passed=allowed, reason_code=reason_code, reason_message=message
    )
    return gate, ManifestEnvSummary(toolkit_env=env_upper, classification=classification)


def _evaluate_db_gate(
    database_url: str, safe_db_hosts: list[str]
) -> tuple[ManifestGate, ManifestDbSafetySummary]:
    hostname, db_name = parse_database_host(database_url)
    host_class, matched_rule = classify_host(hostname, safe_db_hosts)

    reason_code: GateReasonCode
    db_class: DbClassification
    if host_class == "ALLOWED":
        reason_code, db_class = "ALLOWED", "SAFE"
        message = f"Host '{hostname}' is in the safe allowlist."
    elif host_class == "BLOCKED":
        reason_code, db_class = "BLOCKED_HOST", "UNSAFE"
        message = (
            f"Host '{hostname}' matches blocked pattern {matched_rule}. "
            "Production databases are not allowed."
        )
    else:
        reason_code, db_class = "UNKNOWN_HOST", "UNKNOWN"
        message = (
            f"Host '{hostname}' is not in the allowlist. "
            "Add to TOOLKIT_SAFE_DB_HOSTS if intentional."
        )

    gate = ManifestGate(
        name=DB_GATE,
        passed=host_class == "ALLOWED",
        reason_code=reason_code,
        reason_message=message,
    )
    summary = ManifestDbSafetySummary(
        db_host_masked=hostname,
        db_name_masked=db_name,
        classification=db_class,
        matched_rule=matched_rule,
    )
    return gate, summary


def evaluate_safety_gates(options: SafetyOptions | None = None) -> SafetyCheckResult:
    """Evaluate both gates and return the full audit summary.

    The summary is returned whatever the outcome. When both gates fail,
    the environment gate is reported as the blocking one.
    """
    options = options or SafetyOptions()
    toolkit_env = options.toolkit_env
    database_url = options.database_url
    safe_db_hosts = options.safe_db_hosts

    if toolkit_env is None or database_url is None or safe_db_hosts is None:
        settings = load_core_settings()
        if toolkit_env is None:
            toolkit_env = settings.toolkit_env
        if database_url is None:
            database_url = settings.database_url
        if safe_db_hosts is None:
            safe_db_hosts = settings.safe_db_hosts_list

    env_gate, env_summary = _evaluate_env_gate(toolkit_env)
    db_gate, db_summary = _evaluate_db_gate(database_url, safe_db_hosts)

    blocked_gate: str | None = None
    blocked_reason: str | None = None
    if not env_gate.passed:
        blocked_gate, blocked_reason = env_gate.name, env_gate.reason_message
    elif not db_gate.passed:
        blocked_gate, blocked_reason = db_gate.name, db_gate.reason_message

    return SafetyCheckResult(
        safety=ManifestSafety(
            gates=(env_gate, db_gate),
            env_summary=env_summary,
            db_safety_summary=db_summary,
        ),
        blocked=blocked_gate is not None,
        blocked_gate=blocked_gate,
        blocked_reason=blocked_reason,
    )
