# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import sh
from kubernetes.client.exceptions import ApiException

from ephemeral_env import cluster
from ephemeral_env.cluster import (
    ClusterEnvironment,
    ClusterHandle,
    create_cluster,
    create_namespace,
    provisioned_cluster,
    setup,
    sweep_stale_clusters,
    teardown,
)
from ephemeral_env.config import ClusterConfig
from ephemeral_env.exceptions import ClusterSetupError


class FakeKind:
    """Records kind invocations against an in-memory cluster list."""

    def __init__(self, clusters=(), create_failures=0, broken_export=(), broken_delete=()):
        self.clusters = list(clusters)
        self.calls = []
        self.create_failures = create_failures
        self.broken_export = set(broken_export)
        self.broken_delete = set(broken_delete)

    @staticmethod
    def _fail(cmd, message):
        return sh.ErrorReturnCode_1(cmd, b"", message.encode())

    def __call__(self, *args):
        self.calls.append(args)
        if args[:2] == ("get", "clusters"):
            return "".join(f"{name}\n" for name in self.clusters)
        if args[:2] == ("export", "kubeconfig"):
            if args[3] in self.broken_export:
                raise self._fail("kind export kubeconfig", "ERROR: container is not running")
            return ""
        if args[:2] == ("delete", "cluster"):
            name = args[args.index("--name") + 1]
            if name in self.broken_delete:
                raise self._fail("kind delete cluster", "ERROR: failed to delete cluster")
            if name in self.clusters:
                self.clusters.remove(name)
            return ""
        if args[:2] == ("create", "cluster"):
            if self.create_failures:
                self.create_failures -= 1
                raise self._fail("kind create cluster", "ERROR: failed to create cluster: boom")
            self.clusters.append(args[args.index("--name") + 1])
        return ""


@pytest.fixture
def cluster_cfg():
    return ClusterConfig(max_retries=3)


@pytest.fixture(autouse=True)
def no_retry_wait():
    with patch.object(cluster, "CLUSTER_CREATE_RETRY_WAIT_SECONDS", 0):
        yield


class TestSweep:
    def test_deletes_only_prefixed_clusters(self):
        kind = FakeKind(["draft-e2e-aaaa", "dev", "draft-e2e-bbbb"])
        with patch.object(cluster, "_kind", kind):
            deleted = sweep_stale_clusters("draft-e2e")

        assert deleted == ["draft-e2e-aaaa", "draft-e2e-bbbb"]
        assert kind.clusters == ["dev"]
        exports = [call for call in kind.calls if call[:2] == ("export", "kubeconfig")]
        assert [call[3] for call in exports] == ["draft-e2e-aaaa", "draft-e2e-bbbb"]
        deletes = [call for call in kind.calls if call[:2] == ("delete", "cluster")]
        assert all("--kubeconfig" in call for call in deletes)

    def test_unexportable_cluster_is_still_deleted(self):
        kind = FakeKind(["draft-e2e-broken", "draft-e2e-ok"], broken_export=["draft-e2e-broken"])
        with patch.object(cluster, "_kind", kind):
            deleted = sweep_stale_clusters("draft-e2e")

        assert deleted == ["draft-e2e-broken", "draft-e2e-ok"]
        assert kind.clusters == []
        deletes = {call[3]: call for call in kind.calls if call[:2] == ("delete", "cluster")}
        assert "--kubeconfig" not in deletes["draft-e2e-broken"]
        assert "--kubeconfig" in deletes["draft-e2e-ok"]

    def test_failed_delete_does_not_stop_sweep(self):
        kind = FakeKind(["draft-e2e-stuck", "draft-e2e-ok"], broken_delete=["draft-e2e-stuck"])
        with patch.object(cluster, "_kind", kind):
            deleted = sweep_stale_clusters("draft-e2e")

        assert deleted == ["draft-e2e-ok"]
        assert kind.clusters == ["draft-e2e-stuck"]

    def test_setup_sweeps_before_creating(self, cluster_cfg):
        kind = FakeKind(["draft-e2e-old1", "draft-e2e-old2"])
        env = MagicMock()
        with patch.object(cluster, "_kind", kind), patch.object(cluster, "_attach", return_value=env):
            assert setup(cluster_cfg) is env

        first_create = next(i for i, call in enumerate(kind.calls) if call[:2] == ("create", "cluster"))
        last_sweep_delete = max(
            i for i, call in enumerate(kind.calls)
            if call[:2] == ("delete", "cluster") and "old" in call[3]
        )
        assert last_sweep_delete < first_create
        assert len(kind.clusters) == 1
        assert kind.clusters[0].startswith("draft-e2e-")
        assert "old" not in kind.clusters[0]


class TestCreate:
    def test_create_arguments(self, cluster_cfg):
        kind = FakeKind()
        with patch.object(cluster, "_kind", kind):
            handle = create_cluster(cluster_cfg, "draft-e2e-1234")

        create = next(call for call in kind.calls if call[:2] == ("create", "cluster"))
        assert create[create.index("--image") + 1] == cluster_cfg.node_image
        assert create[create.index("--config") + 1] == str(cluster_cfg.config_file)
        assert create[create.index("--kubeconfig") + 1] == str(handle.kubeconfig)
        handle.kubeconfig.unlink(missing_ok=True)

    def test_retries_then_succeeds(self, cluster_cfg):
        kind = FakeKind(create_failures=2)
        with patch.object(cluster, "_kind", kind):
            handle = create_cluster(cluster_cfg, "draft-e2e-1234")
        assert sum(call[:2] == ("create", "cluster") for call in kind.calls) == 3
        assert handle.name == "draft-e2e-1234"
        handle.kubeconfig.unlink(missing_ok=True)

    def test_exhausted_retries_are_fatal(self, cluster_cfg, tmp_path):
        kind = FakeKind(create_failures=5)
        kubeconfig = tmp_path / "kc"
        kubeconfig.touch()
        with patch.object(cluster, "_kind", kind), \
                patch.object(cluster, "_new_kubeconfig_path", return_value=kubeconfig):
            with pytest.raises(ClusterSetupError, match="boom"):
                create_cluster(cluster_cfg, "draft-e2e-1234")
        assert not kubeconfig.exists()

    def test_setup_deletes_partial_cluster_by_name(self, cluster_cfg):
        kind = FakeKind(create_failures=5)
        with patch.object(cluster, "_kind", kind):
            with pytest.raises(ClusterSetupError, match="boom"):
                setup(cluster_cfg, sweep=False, cluster_name="draft-e2e-1234")

        assert kind.calls[-2][:2] == ("create", "cluster")
        assert kind.calls[-1] == ("delete", "cluster", "--name", "draft-e2e-1234")


class TestTeardown:
    def test_always_runs_when_body_fails(self, cluster_cfg):
        handle = ClusterHandle("draft-e2e-1234", Path("/tmp/kc"))
        env = ClusterEnvironment(cluster=handle, namespace="ns", api_client=MagicMock())
        with patch.object(cluster, "sweep_stale_clusters"), \
                patch.object(cluster, "create_cluster", return_value=handle), \
                patch.object(cluster, "_attach", return_value=env), \
                patch.object(cluster, "teardown") as teardown_mock:
            with pytest.raises(RuntimeError, match="scenario exploded"):
                with provisioned_cluster(cluster_cfg):
                    raise RuntimeError("scenario exploded")
        teardown_mock.assert_called_once()
        assert teardown_mock.call_args.args[2] is env

    def test_runs_once_when_attach_fails(self, cluster_cfg):
        handle = ClusterHandle("draft-e2e-1234", Path("/tmp/kc"))
        with patch.object(cluster, "sweep_stale_clusters"), \
                patch.object(cluster, "create_cluster", return_value=handle), \
                patch.object(cluster, "_attach", side_effect=ClusterSetupError("no namespace")), \
                patch.object(cluster, "teardown") as teardown_mock:
            with pytest.raises(ClusterSetupError):
                with provisioned_cluster(cluster_cfg):
                    pytest.fail("body must not run")
        teardown_mock.assert_called_once_with("draft-e2e-1234", Path("/tmp/kc"), None)

    def test_keep_cluster_skips_teardown(self):
        cfg = ClusterConfig(keep_cluster=True)
        handle = ClusterHandle("draft-e2e-1234", Path("/tmp/kc"))
        with patch.object(cluster, "sweep_stale_clusters"), \
                patch.object(cluster, "create_cluster", return_value=handle), \
                patch.object(cluster, "_attach", return_value=MagicMock()), \
                patch.object(cluster, "teardown") as teardown_mock:
            with provisioned_cluster(cfg, sweep=False):
                pass
        teardown_mock.assert_not_called()

    def test_failures_are_logged_not_raised(self, tmp_path):
        kubeconfig = tmp_path / "kc"
        kubeconfig.touch()
        api_client = MagicMock()
        env = ClusterEnvironment(ClusterHandle("c", kubeconfig), "ns", api_client)
        with patch("kubernetes.client.CoreV1Api") as core, \
                patch.object(cluster, "delete_cluster", side_effect=RuntimeError("kind gone")):
            core.return_value.delete_namespace.side_effect = ApiException(status=500, reason="boom")
            teardown("c", kubeconfig, env)
        api_client.close.assert_called_once()
        assert not kubeconfig.exists()


class TestNamespaces:
    def test_existing_namespace_is_fine(self):
        with patch("kubernetes.client.CoreV1Api") as core:
            core.return_value.create_namespace.side_effect = ApiException(status=409, reason="AlreadyExists")
            create_namespace(MagicMock(), "go-ns")

    def test_forbidden_is_raised(self):
        with patch("kubernetes.client.CoreV1Api") as core:
            core.return_value.create_namespace.side_effect = ApiException(status=403, reason="Forbidden")
            with pytest.raises(ApiException):
                create_namespace(MagicMock(), "go-ns")
