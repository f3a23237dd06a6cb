"""Tests for the rollout verifier state machine."""

import threading
import time
from unittest.mock import MagicMock, Mock

import pytest
from conftest import make_pod_status
from urllib3.exceptions import MaxRetryError

from sre_remediator.cluster import KubernetesAccessor, ResourceRef
from sre_remediator.errors import ClusterError
from sre_remediator.remediation import RolloutVerifier, VerificationOutcome

POD = ResourceRef(kind="Pod", namespace="default", name="web-1")
DEPLOYMENT = ResourceRef(kind="Deployment", namespace="ns1", name="dep-a")


@pytest.fixture
def verifier(accessor):
    return RolloutVerifier(accessor, poll_interval=0.01, timeout=1.0)


class TestPodVerification:
    def test_running_and_ready(self, accessor, verifier):
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1")]
        result = verifier.verify(POD)
        assert result.outcome is VerificationOutcome.READY
        assert result.succeeded
        assert result.ready_pod == "web-1"

    def test_becomes_ready_after_pending(self, accessor, verifier):
        accessor.pod_statuses[("default", "web-1")] = [
            make_pod_status("web-1", phase="Pending", ready=False),
            make_pod_status("web-1", ready=False),
            make_pod_status("web-1"),
        ]
        result = verifier.verify(POD)
        assert result.outcome is VerificationOutcome.READY
        assert result.polls == 3

    def test_failed_phase_is_terminal(self, accessor, verifier):
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Failed", ready=False)]
        result = verifier.verify(POD)
        assert result.outcome is VerificationOutcome.FAILED
        assert result.polls == 1
        assert result.last_observed_phase == "Failed"

    def test_pending_until_deadline_times_out(self, accessor):
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Pending", ready=False)]
        result = RolloutVerifier(accessor, poll_interval=0.01, timeout=0.1).verify(POD)
        assert result.outcome is VerificationOutcome.TIMED_OUT
        assert result.outcome is not VerificationOutcome.FAILED
        assert result.last_observed_phase == "Pending"
        assert result.polls >= 1

    def test_transient_errors_keep_polling(self, accessor, verifier):
        accessor.pod_statuses[("default", "web-1")] = [
            ClusterError("connection reset"),
            ClusterError("connection reset"),
            make_pod_status("web-1"),
        ]
        result = verifier.verify(POD)
        assert result.outcome is VerificationOutcome.READY
        assert len(accessor.called("pod_status")) == 3

    def test_waits_one_interval_before_first_poll(self, accessor):
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1")]
        start = time.monotonic()
        RolloutVerifier(accessor, poll_interval=0.1, timeout=5).verify(POD)
        assert time.monotonic() - start >= 0.09


class TestCancellation:
    def test_cancel_interrupts_polling(self, accessor):
        accessor.pod_statuses[("default", "web-1")] = [make_pod_status("web-1", phase="Pending", ready=False)]
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        start = time.monotonic()
        result = RolloutVerifier(accessor, poll_interval=10, timeout=60).verify(POD, cancel)
        timer.join()
        assert result.outcome is VerificationOutcome.CANCELLED
        assert time.monotonic() - start < 5

    def test_cancel_wins_over_expired_deadline(self, accessor):
        cancel = threading.Event()
        cancel.set()
        result = RolloutVerifier(accessor, poll_interval=0.01, timeout=0).verify(POD, cancel)
        assert result.outcome is VerificationOutcome.CANCELLED
        assert result.polls == 0
        assert accessor.calls == []


class TestDeploymentVerification:
    def test_zero_pods_keeps_polling_then_ready(self, accessor, verifier):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [[], [], ["dep-a-xyz"]]
        accessor.pod_statuses[("ns1", "dep-a-xyz")] = [make_pod_status("dep-a-xyz", namespace="ns1")]
        result = verifier.verify(DEPLOYMENT)
        assert result.outcome is VerificationOutcome.READY
        assert result.ready_pod == "dep-a-xyz"
        assert len(accessor.called("workload_pod_names")) == 3

    def test_first_ready_pod_is_enough(self, accessor, verifier):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [["dep-a-1", "dep-a-2"]]
        accessor.pod_statuses[("ns1", "dep-a-1")] = [make_pod_status("dep-a-1", phase="Pending", ready=False)]
        accessor.pod_statuses[("ns1", "dep-a-2")] = [make_pod_status("dep-a-2")]
        result = verifier.verify(DEPLOYMENT)
        assert result.outcome is VerificationOutcome.READY
        assert result.ready_pod == "dep-a-2"

    def test_require_all_ready(self, accessor):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [["dep-a-1", "dep-a-2"]]
        accessor.pod_statuses[("ns1", "dep-a-1")] = [
            make_pod_status("dep-a-1", phase="Pending", ready=False),
            make_pod_status("dep-a-1"),
        ]
        accessor.pod_statuses[("ns1", "dep-a-2")] = [make_pod_status("dep-a-2")]
        result = RolloutVerifier(accessor, poll_interval=0.01, timeout=1, require_all_ready=True).verify(DEPLOYMENT)
        assert result.outcome is VerificationOutcome.READY
        assert result.polls == 2

    def test_failed_only_when_every_pod_failed(self, accessor, verifier):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [["dep-a-1", "dep-a-2"]]
        accessor.pod_statuses[("ns1", "dep-a-1")] = [make_pod_status("dep-a-1", phase="Failed", ready=False)]
        accessor.pod_statuses[("ns1", "dep-a-2")] = [make_pod_status("dep-a-2", phase="Failed", ready=False)]
        assert verifier.verify(DEPLOYMENT).outcome is VerificationOutcome.FAILED

    def test_one_failed_pod_keeps_polling(self, accessor):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [["dep-a-1", "dep-a-2"]]
        accessor.pod_statuses[("ns1", "dep-a-1")] = [make_pod_status("dep-a-1", phase="Failed", ready=False)]
        accessor.pod_statuses[("ns1", "dep-a-2")] = [make_pod_status("dep-a-2", phase="Pending", ready=False)]
        result = RolloutVerifier(accessor, poll_interval=0.01, timeout=0.1).verify(DEPLOYMENT)
        assert result.outcome is VerificationOutcome.TIMED_OUT

    def test_resolution_error_keeps_polling(self, accessor, verifier):
        accessor.workload_pods[("Deployment", "ns1", "dep-a")] = [ClusterError("etcd timeout"), ["dep-a-1"]]
        accessor.pod_statuses[("ns1", "dep-a-1")] = [make_pod_status("dep-a-1")]
        assert verifier.verify(DEPLOYMENT).outcome is VerificationOutcome.READY

    @pytest.mark.parametrize("kind", ["StatefulSet", "DaemonSet", "ReplicaSet", "Job", "CronJob"])
    def test_other_controllers_resolve_member_pods(self, accessor, verifier, kind):
        accessor.workload_pods[(kind, "ns1", "db")] = [["db-0"]]
        accessor.pod_statuses[("ns1", "db-0")] = [make_pod_status("db-0", namespace="ns1")]
        result = verifier.verify(ResourceRef(kind=kind, namespace="ns1", name="db"))
        assert result.outcome is VerificationOutcome.READY
        assert result.ready_pod == "db-0"
        assert accessor.called("pod_status") == [("ns1", "db-0")]


class TestUnreachableCluster:
    def test_connection_errors_keep_polling_until_timeout(self):
        kube = KubernetesAccessor(api_client=MagicMock())
        kube._core = Mock()
        kube._core.read_namespaced_pod.side_effect = MaxRetryError(None, "/api/v1/namespaces/default/pods/web-1")
        result = RolloutVerifier(kube, poll_interval=0.01, timeout=0.2).verify(POD)
        assert result.outcome is VerificationOutcome.TIMED_OUT
        assert result.polls >= 2

    def test_connection_errors_resolving_controller_pods(self):
        kube = KubernetesAccessor(api_client=MagicMock())
        kube._dynamic = Mock()
        kube._dynamic.resources.get.return_value.get.side_effect = ConnectionRefusedError(111, "Connection refused")
        result = RolloutVerifier(kube, poll_interval=0.01, timeout=0.1).verify(DEPLOYMENT)
        assert result.outcome is VerificationOutcome.TIMED_OUT
