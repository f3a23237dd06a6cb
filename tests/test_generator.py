"""Tests for target resolution and the generate/apply/verify pipeline."""

import pytest
import yaml
from conftest import FakeBackend, make_pod_status, make_result

from sre_remediator.cache import MemoryCache
from sre_remediator.errors import ApplyError, InputError
from sre_remediator.remediation import (
    RemediationGenerator,
    RemediationStatus,
    RolloutVerifier,
    VerificationOutcome,
    build_prompt,
    resolve_target,
)


def generator_for(accessor, backend, cache=None, **kwargs):
    verifier = RolloutVerifier(accessor, poll_interval=0.01, timeout=kwargs.pop("timeout", 1.0))
    return RemediationGenerator(accessor, backend, cache or MemoryCache(), verifier=verifier, **kwargs)


class TestResolveTarget:
    def test_parent_attribution(self):
        target = resolve_target(make_result(name="ns1/web-abc-123", parent="Deployment/dep-a"))
        assert (target.kind, target.namespace, target.name) == ("Deployment", "ns1", "dep-a")

    def test_direct_target(self):
        target = resolve_target(make_result(name="ns2/web-1"))
        assert (target.kind, target.namespace, target.name) == ("Pod", "ns2", "web-1")

    def test_unqualified_name_defaults_namespace(self):
        target = resolve_target(make_result(name="web-1"))
        assert (target.namespace, target.name) == ("default", "web-1")

    @pytest.mark.parametrize(
        "name,parent",
        [
            ("a/b/c", ""),
            ("/web-1", ""),
            ("ns1/", ""),
            ("", ""),
            ("ns1/web-1", "Deployment"),
            ("ns1/web-1", "Deployment/a/b"),
            ("web-1", "Deployment/dep-a"),
        ],
    )
    def test_malformed_input(self, name, parent):
        with pytest.raises(InputError):
            resolve_target(make_result(name=name or "x", parent=parent).model_copy(update={"name": name}))


def test_build_prompt_includes_everything():
    prompt = build_prompt("Deployment", "kind: Deployment\n", "it crashed", "")
    assert "Kubernetes Deployment YAML" in prompt
    assert "kind: Deployment" in prompt
    assert "it crashed" in prompt
    assert "(none)" in prompt


class TestRemediate:
    def test_pod_end_to_end_ready(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1", spec={"containers": [{"name": "app", "image": "nginx:1.25"}]})
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1")]
        attempt = generator_for(accessor, backend).remediate(make_result(name="default/web-1"))

        assert attempt.status is RemediationStatus.VERIFIED
        assert attempt.succeeded
        assert attempt.verification.outcome is VerificationOutcome.READY
        assert str(attempt.target) == "Pod default/web-1"
        assert len(accessor.applied) == 1
        manifest, field_manager, force = accessor.applied[0]
        assert field_manager == "sre-remediator"
        assert force is True
        assert yaml.safe_load(manifest)["metadata"]["name"] == "web-1"
        assert attempt.apply_outcome.action == "applied"

    def test_parent_attribution_fetches_owner(self, accessor, backend):
        accessor.add_object("Deployment", "ns1", "dep-a", spec={"replicas": 1})
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [["dep-a-new"]]
        accessor.pod_statuses[("ns1", "dep-a-new")] = [make_pod_status("dep-a-new", namespace="ns1")]
        result = make_result(name="ns1/dep-a-old", parent="Deployment/dep-a")
        attempt = generator_for(accessor, backend).remediate(result)

        assert accessor.called("manifest_yaml") == [("Deployment", "ns1", "dep-a")]
        assert "kind: Deployment" in backend.prompts[0]
        assert attempt.status is RemediationStatus.VERIFIED
        assert attempt.verification.ready_pod == "dep-a-new"

    def test_malformed_name_makes_no_calls(self, accessor, backend):
        attempt = generator_for(accessor, backend).remediate(make_result(name="a/b/c"))
        assert attempt.status is RemediationStatus.INPUT_ERROR
        assert accessor.calls == []
        assert backend.calls == 0

    def test_missing_resource_fails_without_ai_call(self, accessor, backend):
        attempt = generator_for(accessor, backend).remediate(make_result(name="default/ghost"))
        assert attempt.status is RemediationStatus.FAILED
        assert "not found" in attempt.error
        assert backend.calls == 0

    def test_rate_limit_skips_apply_and_verify(self, accessor, rate_limited_backend):
        accessor.add_object("Pod", "default", "web-1")
        attempt = generator_for(accessor, rate_limited_backend).remediate(make_result())
        assert attempt.status is RemediationStatus.RATE_LIMITED
        assert "rate limiting" in attempt.error
        assert accessor.called("apply") == []
        assert accessor.called("pod_status") == []

    def test_dry_run_generates_only(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        attempt = generator_for(accessor, backend, dry_run=True).remediate(make_result())
        assert attempt.status is RemediationStatus.GENERATED
        assert attempt.corrected_manifest
        assert accessor.called("apply") == []

    def test_apply_rejection_is_failed_without_verify(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        accessor.apply_error = ApplyError("admission webhook denied the request", 422)
        attempt = generator_for(accessor, backend).remediate(make_result())
        assert attempt.status is RemediationStatus.FAILED
        assert "apply failed" in attempt.error
        assert accessor.called("pod_status") == []

    def test_garbage_completion_surfaces_as_apply_error(self, accessor):
        accessor.add_object("Pod", "default", "web-1")
        attempt = generator_for(accessor, FakeBackend(response="```yaml\n: : :\n```")).remediate(make_result())
        assert attempt.status is RemediationStatus.FAILED
        assert accessor.applied == []

    def test_timeout_is_applied_but_unverified(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Pending", ready=False)]
        attempt = generator_for(accessor, backend, timeout=0.05).remediate(make_result())
        assert attempt.status is RemediationStatus.UNVERIFIED
        assert attempt.apply_outcome is not None
        assert attempt.verification.outcome is VerificationOutcome.TIMED_OUT


class TestGenerateCaching:
    def test_second_generation_uses_cache(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        gen = generator_for(accessor, backend, cache=MemoryCache(), dry_run=True)
        first = gen.remediate(make_result())
        second = gen.remediate(make_result())
        assert backend.calls == 1
        assert first.corrected_manifest == second.corrected_manifest
        assert not first.cached and second.cached

    def test_disabled_cache_calls_backend_every_time(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        gen = generator_for(accessor, backend, cache=MemoryCache(disabled=True))
        gen.generate(make_result())
        gen.generate(make_result())
        assert backend.calls == 2

    def test_different_failure_text_misses(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1")
        gen = generator_for(accessor, backend)
        gen.generate(make_result(text="OOMKilled"))
        gen.generate(make_result(text="ImagePullBackOff"))
        assert backend.calls == 2

    def test_same_name_in_other_namespace_is_not_served_from_cache(self, accessor, backend):
        text = "Container app of pod web-1 is in CrashLoopBackOff"
        for namespace in ("team-a", "team-b"):
            accessor.add_object("Pod", namespace, "web-1")
            accessor.pod_statuses[(namespace, "web-1")] = [make_pod_status("web-1", namespace=namespace)]
        cache = MemoryCache()
        gen = generator_for(accessor, backend, cache=cache)

        first = gen.remediate(make_result(name="team-a/web-1", text=text))
        second = gen.remediate(make_result(name="team-b/web-1", text=text))

        assert backend.calls == 2
        assert not second.cached
        assert [yaml.safe_load(m)["metadata"]["namespace"] for m, _, _ in accessor.applied] == ["team-a", "team-b"]
        assert (first.apply_outcome.namespace, second.apply_outcome.namespace) == ("team-a", "team-b")
        assert yaml.safe_load(cache.lookup(second.cache_key))["metadata"]["namespace"] == "team-b"

    def test_manifest_for_another_resource_is_rejected(self, accessor, cache):
        accessor.add_object("Pod", "team-a", "web-1")
        backend = FakeBackend(response="apiVersion: v1\nkind: Pod\nmetadata:\n  name: web-1\n  namespace: team-b\n")
        attempt = generator_for(accessor, backend, cache=cache).remediate(make_result(name="team-a/web-1"))
        assert attempt.status is RemediationStatus.INPUT_ERROR
        assert "Pod team-b/web-1" in attempt.error
        assert accessor.applied == []
        assert len(cache) == 0

    def test_failed_apply_evicts_response(self, accessor, backend, cache):
        accessor.add_object("Pod", "default", "web-1")
        accessor.apply_error = ApplyError("admission webhook denied the request", 422)
        gen = generator_for(accessor, backend, cache=cache)
        attempt = gen.remediate(make_result())
        assert attempt.status is RemediationStatus.FAILED
        assert cache.lookup(attempt.cache_key) is None

        gen.generate(make_result())
        assert backend.calls == 2

    def test_failed_rollout_evicts_response(self, accessor, backend, cache):
        accessor.add_object("Pod", "default", "web-1")
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Failed", ready=False)]
        gen = generator_for(accessor, backend, cache=cache)
        attempt = gen.remediate(make_result())
        assert attempt.verification.outcome is VerificationOutcome.FAILED
        assert len(cache) == 0

        gen.generate(make_result())
        assert backend.calls == 2

    def test_timed_out_rollout_keeps_response(self, accessor, backend, cache):
        accessor.add_object("Pod", "default", "web-1")
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Pending", ready=False)]
        attempt = generator_for(accessor, backend, cache=cache, timeout=0.05).remediate(make_result())
        assert attempt.verification.outcome is VerificationOutcome.TIMED_OUT
        assert cache.lookup(attempt.cache_key) is not None


class TestAnonymize:
    def test_names_masked_in_prompt_and_restored_in_manifest(self, accessor, backend):
        accessor.add_object("Pod", "default", "web-1", spec={"containers": [{"name": "app", "image": "nginx"}]})
        manifest = generator_for(accessor, backend, anonymize=True).generate(make_result())
        assert "web-1" not in backend.prompts[0]
        assert yaml.safe_load(manifest)["metadata"] == {"name": "web-1", "namespace": "default"}
