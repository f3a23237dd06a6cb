"""Remediation layer: generate corrected manifests, apply them and verify the rollout."""

from sre_remediator.remediation.generator import (
    RemediationGenerator,
    build_prompt,
    resolve_target,
)
from sre_remediator.remediation.models import (
    RemediationAttempt,
    RemediationStatus,
    VerificationOutcome,
    VerificationResult,
)
from sre_remediator.remediation.verifier import RolloutVerifier, VerificationState

__all__ = [
    "RemediationAttempt",
    "RemediationGenerator",
    "RemediationStatus",
    "RolloutVerifier",
    "VerificationOutcome",
    "VerificationResult",
    "VerificationState",
    "build_prompt",
    "resolve_target",
]
