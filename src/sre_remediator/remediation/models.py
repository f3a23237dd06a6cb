"""Outcomes of remediation attempts and rollout verification."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from sre_remediator.analysis.models import Result
from sre_remediator.cluster import ApplyOutcome, ResourceRef


class VerificationOutcome(str, Enum):
    """Terminal states of rollout verification."""

    READY = "Ready"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"


class VerificationResult(BaseModel):
    target: ResourceRef
    outcome: VerificationOutcome
    message: str = ""
    last_observed_phase: str | None = None
    ready_pod: str | None = None
    polls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is VerificationOutcome.READY


class RemediationStatus(str, Enum):
    """Where a remediation attempt ended."""

    VERIFIED = "verified"
    UNVERIFIED = "applied_unverified"
    GENERATED = "generated"  # dry run: corrected manifest produced, not applied
    RATE_LIMITED = "rate_limited"
    INPUT_ERROR = "input_error"
    FAILED = "failed"
    SKIPPED = "skipped"


class RemediationAttempt(BaseModel):
    """One issue threaded through fetch, generate, apply and verify."""

    result: Result
    target: ResourceRef | None = None
    source_manifest: str = ""
    corrected_manifest: str = ""
    cached: bool = False
    cache_key: str = ""
    apply_outcome: ApplyOutcome | None = None
    verification: VerificationResult | None = None
    status: RemediationStatus = RemediationStatus.FAILED
    error: str = Field(default="", description="Error message when the attempt did not succeed")

    @property
    def succeeded(self) -> bool:
        return self.status is RemediationStatus.VERIFIED

    @property
    def identity(self) -> str:
        if self.target is not None:
            return str(self.target)
        return f"{self.result.kind} {self.result.name}"
