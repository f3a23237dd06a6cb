"""Generate a corrected manifest for a diagnosed issue, apply it and hand off to verification."""

from __future__ import annotations

import logging
import threading

import yaml

from sre_remediator.ai import AIBackend
from sre_remediator.analysis.models import Result, mask_text
from sre_remediator.cache import CompletionCache, fingerprint
from sre_remediator.cluster import DEFAULT_NAMESPACE, ApplyOutcome, ClusterAccessor, ResourceRef
from sre_remediator.config import DEFAULT_FIELD_MANAGER
from sre_remediator.errors import AIBackendError, ClusterError, InputError, RateLimitedError
from sre_remediator.remediation.models import RemediationAttempt, RemediationStatus, VerificationOutcome
from sre_remediator.remediation.verifier import RolloutVerifier

logger = logging.getLogger(__name__)

REMEDIATION_PROMPT = """Given the following Kubernetes {kind} YAML and issues:

Current YAML:
{manifest}

Issues Detected:
{failures}

Analysis Details:
{details}

Please only provide the corrected YAML.

Format the response as valid Kubernetes YAML.

Do not include any triple backticks, the word yaml, or any explanation in the output. Just provide the corrected YAML."""


def _split_pair(value: str, what: str) -> tuple[str, str]:
    parts = value.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InputError(f"invalid {what} format: {value!r} (expected two '/'-separated segments)")
    return parts[0], parts[1]


def resolve_target(result: Result) -> ResourceRef:
    """
    Find the resource whose manifest should be corrected.

    An issue attributed to a controller targets the owner: namespace comes from
    the pod-qualified name and kind/name from parent_object. Otherwise the named
    resource itself is targeted, in the default namespace when unqualified.
    """
    if result.parent_object:
        namespace, _ = _split_pair(result.name, "resource name")
        kind, name = _split_pair(result.parent_object, "parent object")
        return ResourceRef(kind=kind, namespace=namespace, name=name)
    if not result.name:
        raise InputError(f"{result.kind} issue has no resource name")
    if "/" not in result.name:
        return ResourceRef(kind=result.kind, namespace=DEFAULT_NAMESPACE, name=result.name)
    namespace, name = _split_pair(result.name, "resource name")
    return ResourceRef(kind=result.kind, namespace=namespace, name=name)


def manifest_target(manifest: str) -> ResourceRef | None:
    """Resource a generated manifest would be applied to, or None when it does not name one."""
    try:
        body = yaml.safe_load(manifest)
    except yaml.YAMLError:
        return None
    if not isinstance(body, dict) or not isinstance(body.get("metadata"), dict):
        return None
    metadata = body["metadata"]
    if not body.get("kind") or not metadata.get("name"):
        return None
    return ResourceRef(
        kind=str(body["kind"]),
        namespace=str(metadata.get("namespace") or DEFAULT_NAMESPACE),
        name=str(metadata["name"]),
    )


def build_prompt(kind: str, manifest: str, failures: str, details: str = "") -> str:
    return REMEDIATION_PROMPT.format(kind=kind, manifest=manifest, failures=failures, details=details or "(none)")


class RemediationGenerator:
    """
    Turn one diagnosed issue into an applied, verified fix.

    Responses are cached by (provider, language, failure text), so a repeat of
    the same failure signature does not call the AI backend again. A response
    naming another resource than the target is never applied, and a response
    whose apply or rollout failed is evicted. Otherwise the generated text is
    applied as-is; a malformed manifest surfaces as an apply error.
    """

    def __init__(
        self,
        accessor: ClusterAccessor,
        backend: AIBackend,
        cache: CompletionCache,
        verifier: RolloutVerifier | None = None,
        language: str = "english",
        anonymize: bool = False,
        field_manager: str = DEFAULT_FIELD_MANAGER,
        dry_run: bool = False,
    ) -> None:
        self.accessor = accessor
        self.backend = backend
        self.cache = cache
        self.verifier = verifier or RolloutVerifier(accessor)
        self.language = language
        self.anonymize = anonymize
        self.field_manager = field_manager
        self.dry_run = dry_run

    def generate(self, result: Result) -> str:
        """Return the corrected manifest text for an issue."""
        return self._generate(result, RemediationAttempt(result=result))

    def _generate(self, result: Result, attempt: RemediationAttempt) -> str:
        target = resolve_target(result)
        attempt.target = target
        logger.info("Fetching manifest of %s for %s %s", target, result.kind, result.name)
        manifest = self.accessor.manifest_yaml(target.kind, target.namespace, target.name)
        attempt.source_manifest = manifest

        failures = result.failure_text(masked=self.anonymize)
        details = result.details
        if self.anonymize:
            manifest = mask_text(manifest, result.sensitive)
            details = result.mask(details)

        key = fingerprint(self.backend.name, self.language, failures)
        attempt.cache_key = key
        cached = self.cache.lookup(key)
        if cached is not None:
            generated = self._unmask(result, cached)
            other = self._foreign_target(generated, target)
            if other is None:
                logger.info("Using cached remediation for %s", target)
                attempt.cached = True
                return generated
            logger.warning("Cached remediation for %s targets %s, regenerating", target, other)
            self.cache.evict(key)

        prompt = build_prompt(target.kind, manifest, failures, details)
        logger.debug("Remediation prompt for %s:\n%s", target, prompt)
        completion = self.backend.complete(prompt)
        generated = self._unmask(result, completion)
        other = self._foreign_target(generated, target)
        if other is not None:
            raise InputError(f"generated manifest targets {other} instead of {target}")
        self.cache.store(key, completion)
        logger.debug("Generated manifest for %s:\n%s", target, generated)
        return generated

    def _unmask(self, result: Result, text: str) -> str:
        return result.unmask(text) if self.anonymize else text

    @staticmethod
    def _foreign_target(generated: str, target: ResourceRef) -> ResourceRef | None:
        # Unparseable text is left for apply to reject
        applies_to = manifest_target(generated)
        if applies_to is None or applies_to == target:
            return None
        return applies_to

    def apply(self, manifest: str) -> ApplyOutcome:
        """Server-side apply with forced conflict resolution under our field manager."""
        outcome = self.accessor.apply(manifest, field_manager=self.field_manager, force=True)
        logger.info(
            "Apply response: kind=%s name=%s/%s action=%s",
            outcome.kind,
            outcome.namespace,
            outcome.name,
            outcome.action,
        )
        return outcome

    def remediate(self, result: Result, cancel: threading.Event | None = None) -> RemediationAttempt:
        """Run generate, apply and verify for one issue; never raises for per-issue failures."""
        attempt = RemediationAttempt(result=result)
        logger.info("Starting remediation for %s %s", result.kind, result.name)
        try:
            attempt.corrected_manifest = self._generate(result, attempt)
        except InputError as e:
            return self._fail(attempt, RemediationStatus.INPUT_ERROR, str(e))
        except RateLimitedError as e:
            return self._fail(attempt, RemediationStatus.RATE_LIMITED, str(e))
        except (AIBackendError, ClusterError) as e:
            return self._fail(attempt, RemediationStatus.FAILED, f"generation failed: {e}")

        if self.dry_run:
            attempt.status = RemediationStatus.GENERATED
            logger.info("Dry run: not applying corrected manifest for %s", attempt.identity)
            return attempt

        try:
            attempt.apply_outcome = self.apply(attempt.corrected_manifest)
        except (ClusterError, InputError) as e:
            self._forget(attempt)
            return self._fail(attempt, RemediationStatus.FAILED, f"apply failed: {e}")

        verification = self.verifier.verify(attempt.apply_outcome.target, cancel)
        attempt.verification = verification
        if verification.succeeded:
            attempt.status = RemediationStatus.VERIFIED
            logger.info("Remediation of %s verified: %s", attempt.identity, verification.message)
        else:
            attempt.status = RemediationStatus.UNVERIFIED
            attempt.error = f"verification {verification.outcome.value}: {verification.message}"
            if verification.outcome is VerificationOutcome.FAILED:
                self._forget(attempt)
            logger.warning("Remediation of %s applied but not verified: %s", attempt.identity, attempt.error)
        return attempt

    def _forget(self, attempt: RemediationAttempt) -> None:
        # Drop the cached response that did not work
        if attempt.cache_key:
            self.cache.evict(attempt.cache_key)

    @staticmethod
    def _fail(attempt: RemediationAttempt, status: RemediationStatus, message: str) -> RemediationAttempt:
        attempt.status = status
        attempt.error = message
        logger.error("Remediation of %s: %s", attempt.identity, message)
        return attempt
