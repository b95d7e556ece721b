"""
Test k3sboot.deploy.k3s with a mocked kubernetes client
"""
#  pylint: disable=redefined-outer-name
import base64
import os
import stat
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.utils import FailToCreateError
from munch import Munch

from k3sboot.cloud.builder import Outputs
from k3sboot.deploy.k3s import (K3S, GitOpsInstaller, fetch_kubeconfig,
                                render_cluster_info)
from k3sboot.util.config import merge
from k3sboot.util.util import WaitTimeout

from .testdata import make_config, ready_node

KUBECONFIG = """apiVersion: v1
clusters:
- cluster:
    server: https://127.0.0.1:6443
  name: default
"""


@pytest.fixture
def k3s():
    with patch("k3sboot.deploy.k3s.kube_config"), \
            patch("k3sboot.deploy.k3s.k8sclient"), \
            patch("k3sboot.deploy.k3s.api_client"):
        yield K3S("kubeconfig")


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def outputs(config):
    return Outputs("test", "203.0.113.10", "10.0.1.5", "ubuntu",
                   config["key-path"])


def test_nodes_ready(k3s):
    k3s.api.list_node.return_value = Munch(items=[])
    assert not k3s.nodes_ready()

    k3s.api.list_node.return_value = Munch(items=[ready_node("server")])
    assert k3s.nodes_ready()

    k3s.api.list_node.return_value = Munch(items=[
        ready_node("server"), ready_node("agent", ready=False)])
    assert not k3s.nodes_ready()


def test_wait_for_nodes_timeout(k3s):
    k3s.api.list_node.return_value = Munch(items=[])

    with pytest.raises(WaitTimeout):
        k3s.wait_for_nodes(0)


def test_ensure_namespace(k3s):
    assert not k3s.ensure_namespace("argocd")
    k3s.api.create_namespace.assert_not_called()

    k3s.api.read_namespace.side_effect = ApiException(status=404)
    assert k3s.ensure_namespace("argocd")
    k3s.api.create_namespace.assert_called_once()

    k3s.api.read_namespace.side_effect = ApiException(status=403)
    with pytest.raises(ApiException):
        k3s.ensure_namespace("argocd")


def test_apply_tolerates_existing_objects(k3s):
    with patch("k3sboot.deploy.k3s.create_from_yaml") as create:
        create.side_effect = FailToCreateError([ApiException(status=409),
                                                ApiException(status=409)])
        k3s.apply_manifest("install.yaml", "argocd")

        create.side_effect = FailToCreateError([ApiException(status=409),
                                                ApiException(status=422)])
        with pytest.raises(FailToCreateError):
            k3s.apply_manifest("install.yaml", "argocd")

        create.assert_called_with(k3s.client, "install.yaml",
                                  namespace="argocd")


def test_apply_downloads_urls(k3s):
    with patch("k3sboot.deploy.k3s.create_from_yaml") as create, \
            patch("k3sboot.deploy.k3s.download") as download:
        download.side_effect = lambda url, dest: dest
        k3s.apply_manifest("https://example.org/install.yaml", "argocd")

    path = create.call_args[0][1]
    assert path.endswith(".yaml")
    assert not os.path.exists(path)


def test_deployment_available(k3s):
    k3s.apps.read_namespaced_deployment.side_effect = ApiException(status=404)
    assert not k3s.deployment_available("argocd-server", "argocd")

    k3s.apps.read_namespaced_deployment.side_effect = None
    k3s.apps.read_namespaced_deployment.return_value = Munch(
        status=Munch(conditions=[Munch(type="Available", status="True")]))
    assert k3s.deployment_available("argocd-server", "argocd")

    k3s.apps.read_namespaced_deployment.return_value = Munch(
        status=Munch(conditions=None))
    assert not k3s.deployment_available("argocd-server", "argocd")


def test_admin_password(k3s):
    k3s.api.read_namespaced_secret.side_effect = ApiException(status=404)
    assert k3s.admin_password("argocd", "argocd-initial-admin-secret") is None

    k3s.api.read_namespaced_secret.side_effect = None
    k3s.api.read_namespaced_secret.return_value = Munch(data={
        "password": base64.b64encode(b"s3cret").decode()})
    assert k3s.admin_password("argocd", "argocd-initial-admin-secret") == \
        "s3cret"

    k3s.api.read_namespaced_secret.return_value = Munch(data=None)
    assert k3s.admin_password("argocd", "argocd-initial-admin-secret") is None


def test_render_cluster_info():
    info = render_cluster_info("demo", "203.0.113.10", "argocd",
                               "argocd-server", "argocd-initial-admin-secret")

    assert "Cluster: demo" in info
    assert "ArgoCD URL: http://203.0.113.10" in info
    assert "ArgoCD Username: admin" in info
    assert "get secret argocd-initial-admin-secret" in info
    assert "svc/argocd-server -n argocd 8080:80" in info

    info = render_cluster_info("demo", "203.0.113.10", "argocd",
                               "argocd-server", "argocd-initial-admin-secret",
                               password="s3cret")
    assert "ArgoCD Password: s3cret" in info


def test_installer_needs_ready_nodes(config, outputs, tmp_path):
    k3s = MagicMock()
    k3s.wait_for_nodes.side_effect = WaitTimeout("all nodes to be Ready", 300)

    with pytest.raises(WaitTimeout):
        GitOpsInstaller(k3s, config, outputs).run(str(tmp_path / "info.txt"))

    k3s.ensure_namespace.assert_not_called()
    k3s.apply_manifest.assert_not_called()
    assert not (tmp_path / "info.txt").exists()


def test_installer(config, outputs, tmp_path):
    k3s = MagicMock()
    k3s.wait_for_admin_password.return_value = "s3cret"
    info_path = str(tmp_path / "info.txt")

    GitOpsInstaller(k3s, config, outputs).run(info_path)

    k3s.wait_for_nodes.assert_called_once_with(300)
    k3s.apply_manifest.assert_called_once_with(
        config["gitops"]["manifest-url"], "argocd")
    k3s.wait_for_deployment.assert_called_once_with("argocd-server",
                                                    "argocd", 600)
    assert stat.S_IMODE(os.stat(info_path).st_mode) == 0o600
    with open(info_path) as fh:
        info = fh.read()
    assert "s3cret" not in info
    assert "ArgoCD URL: http://203.0.113.10" in info


def test_installer_writes_password(config, outputs, tmp_path):
    config = merge(config, {"gitops": {"write-password": True,
                                       "manifest": "install.yaml"}})
    k3s = MagicMock()
    k3s.wait_for_admin_password.return_value = "s3cret"
    info_path = str(tmp_path / "info.txt")

    installer = GitOpsInstaller(k3s, config, outputs)
    assert installer.manifest == "install.yaml"
    installer.run(info_path)

    with open(info_path) as fh:
        assert "ArgoCD Password: s3cret" in fh.read()


def test_fetch_kubeconfig(outputs, tmp_path):
    dest = str(tmp_path / "test-kubeconfig")
    commands = []

    def fake_scp(cmd, check):
        assert check
        commands.append(cmd)
        with open(cmd[-1], "w") as fh:
            fh.write(KUBECONFIG)

    fetch_kubeconfig(outputs, dest, run=fake_scp)

    cmd = commands[0]
    assert cmd[:3] == ["scp", "-i", outputs.private_key]
    assert cmd[-2] == "ubuntu@203.0.113.10:/home/ubuntu/.kube/config"
    assert stat.S_IMODE(os.stat(dest).st_mode) == 0o600
    with open(dest) as fh:
        content = fh.read()
    assert "https://203.0.113.10:6443" in content
    assert "127.0.0.1" not in content
