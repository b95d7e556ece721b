"""
deploy the GitOps controller to k3s via the API server
"""
import base64
import os
import subprocess as sp
import tempfile
import textwrap

import urllib3

from kubernetes import client as k8sclient
from kubernetes.client.rest import ApiException
from kubernetes.client import api_client
from kubernetes.config import kube_config
from kubernetes.utils import create_from_yaml, FailToCreateError

from k3sboot.util.logger import Logger
from k3sboot.util.util import wait_for, write_file

LOGGER = Logger(__name__)

# seconds to wait for the admin secret once the server is available
SECRET_TIMEOUT = 300


def download(url, dest):
    """Download ``url`` to the file ``dest``

    Raises:
        ValueError if the server does not answer with 200.
    """
    http = urllib3.PoolManager()
    resp = http.request("GET", url, preload_content=False)
    try:
        if resp.status != 200:
            raise ValueError(f"unable to download {url}: HTTP {resp.status}")
        with open(dest, "wb") as fh:
            for chunk in resp.stream(64 * 1024):
                fh.write(chunk)
    finally:
        resp.release_conn()
    return dest


class K3S:
    """Class allowing various interactions with a k3s cluster.

    Args:
        config (str): File path for the kubernetes configuration file
    """

    def __init__(self, config):

        self.config = config
        kube_config.load_kube_config(config_file=config)
        self.api = k8sclient.CoreV1Api()
        self.apps = k8sclient.AppsV1Api()
        self.client = api_client.ApiClient()

    def nodes_ready(self):
        """True if the cluster has nodes and all of them are Ready"""
        nodes = self.api.list_node().items
        if not nodes:
            return False

        cond = {'Ready': 'True'}
        for item in nodes:
            if cond not in [{c.type: c.status}
                            for c in item.status.conditions or []]:
                LOGGER.debug("Node %s is not Ready", item.metadata.name)
                return False
        return True

    def wait_for_nodes(self, timeout):
        """Block until all nodes are Ready.

        Raises:
            WaitTimeout if the nodes are not Ready after ``timeout`` seconds.
        """
        wait_for(self.nodes_ready, timeout, "all nodes to be Ready",
                 logger=LOGGER.debug)
        LOGGER.success("All nodes are Ready")

    def ensure_namespace(self, namespace):
        """Create ``namespace`` unless it exists.

        Returns:
            True if the namespace was created
        """
        try:
            self.api.read_namespace(namespace)
            return False
        except ApiException as exc:
            if exc.status != 404:
                raise

        LOGGER.info("Creating namespace %s ...", namespace)
        self.api.create_namespace(k8sclient.V1Namespace(
            metadata=k8sclient.V1ObjectMeta(name=namespace)))
        return True

    def apply_manifest(self, manifest, namespace):
        """Create all objects of a manifest file or URL.

        Objects that already exist are left alone, so applying the same
        manifest twice is fine.

        Args:
            manifest (str): a path or an http(s) URL
            namespace (str): the namespace of objects without one
        """
        if manifest.startswith(("http://", "https://")):
            fd, path = tempfile.mkstemp(suffix=".yaml")
            os.close(fd)
            try:
                LOGGER.debug("Downloading %s ...", manifest)
                return self._create_from_yaml(download(manifest, path),
                                              namespace)
            finally:
                os.remove(path)

        return self._create_from_yaml(manifest, namespace)

    def _create_from_yaml(self, path, namespace):
        LOGGER.info("Applying %s to namespace %s ...", path, namespace)
        try:
            create_from_yaml(self.client, path, namespace=namespace)
        except FailToCreateError as exc:
            errors = [e for e in exc.api_exceptions if e.status != 409]
            if errors:
                raise
            LOGGER.debug("%d objects already existed",
                         len(exc.api_exceptions))

    def deployment_available(self, name, namespace):
        """True if the deployment reports the Available condition"""
        try:
            deployment = self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                return False
            raise

        conditions = deployment.status.conditions or []
        return {'Available': 'True'} in [{c.type: c.status}
                                         for c in conditions]

    def wait_for_deployment(self, name, namespace, timeout):
        """Block until a deployment is available.

        Raises:
            WaitTimeout if it is not available after ``timeout`` seconds.
        """
        wait_for(lambda: self.deployment_available(name, namespace), timeout,
                 f"deployment/{name} in {namespace}", logger=LOGGER.debug)
        LOGGER.success("deployment/%s is available", name)

    def admin_password(self, namespace, secret):
        """Read the admin password from a secret.

        Returns:
            the decoded password, or None if the secret does not exist yet
        """
        try:
            sec = self.api.read_namespaced_secret(secret, namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise

        data = sec.data or {}
        if "password" not in data:
            return None
        return base64.b64decode(data["password"]).decode()

    def wait_for_admin_password(self, namespace, secret,
                                timeout=SECRET_TIMEOUT):
        """Block until the admin secret exists and return the password"""
        return wait_for(lambda: self.admin_password(namespace, secret),
                        timeout, f"secret/{secret} in {namespace}",
                        logger=LOGGER.debug)


# pylint: disable=too-many-arguments
def render_cluster_info(cluster_name, public_ip, namespace, deployment,
                        secret, password=None):
    """Render the summary an operator needs to log in.

    Without a password the summary shows the command to read it.
    """
    if password is None:
        password = ("kubectl -n %s get secret %s -o "
                    "jsonpath='{.data.password}' | base64 -d" % (
                        namespace, secret))

    return textwrap.dedent("""\
        K3s Cluster Information
        ======================
        Cluster: {name}
        Cluster Status: Ready
        ArgoCD URL: http://{ip}
        ArgoCD Username: admin
        ArgoCD Password: {password}

        Commands:
        - kubectl get nodes
        - kubectl get pods -A
        - kubectl port-forward svc/{deployment} -n {namespace} 8080:80
        """).format(name=cluster_name, ip=public_ip, password=password,
                    deployment=deployment, namespace=namespace)


class GitOpsInstaller:
    """Install the GitOps controller from the operator's machine.

    This repeats what the boot script does after k3s is up, so a failed
    boot can be finished with ``k3sboot gitops``.

    Args:
        k3s (K3S): a client of the cluster
        config (dict): the cluster configuration
        outputs (:class:`k3sboot.cloud.builder.Outputs`): the server values
    """

    def __init__(self, k3s, config, outputs):
        self.k3s = k3s
        self.config = config
        self.outputs = outputs

    @property
    def manifest(self):
        """the local manifest path or the manifest URL"""
        gitops = self.config["gitops"]
        return gitops["manifest"] or gitops["manifest-url"]

    def run(self, info_path=None):
        """Gate on Ready nodes, apply the manifest and write the summary.

        Nothing is applied if the nodes do not become Ready in time.

        Returns:
            the path of the written summary
        """
        gitops = self.config["gitops"]
        namespace = gitops["namespace"]

        self.k3s.wait_for_nodes(self.config["k3s"]["node-timeout"])

        self.k3s.ensure_namespace(namespace)
        self.k3s.apply_manifest(self.manifest, namespace)
        self.k3s.wait_for_deployment(gitops["deployment"], namespace,
                                     gitops["timeout"])

        password = self.k3s.wait_for_admin_password(namespace,
                                                    gitops["secret"])
        info = render_cluster_info(
            self.config["cluster-name"], self.outputs.public_ip, namespace,
            gitops["deployment"], gitops["secret"],
            password if gitops["write-password"] else None)

        info_path = info_path or "%s-cluster-info.txt" % (
            self.config["cluster-name"])
        write_file(info_path, info, 0o600)
        LOGGER.success("Wrote %s", info_path)
        return info_path


def fetch_kubeconfig(outputs, dest, run=sp.run):
    """Copy the kubeconfig from the server and point it to the public IP.

    k3s writes ``https://127.0.0.1:6443`` as the server address, which is
    only right on the machine itself.

    Returns:
        the path of the written kubeconfig
    """
    cmd = ["scp", "-i", outputs.private_key,
           "-o", "StrictHostKeyChecking=accept-new",
           "%s@%s:%s" % (outputs.ssh_user, outputs.public_ip,
                         outputs.remote_kubeconfig),
           dest]
    LOGGER.debug("Running %s", " ".join(cmd))
    run(cmd, check=True)

    with open(dest) as fh:
        kubeconfig = fh.read()

    kubeconfig = kubeconfig.replace("https://127.0.0.1:",
                                    "https://%s:" % outputs.public_ip)
    write_file(dest, kubeconfig, 0o600)
    LOGGER.success("You can use your config with:")
    LOGGER.success("kubectl get nodes --kubeconfig=%s", dest)
    return dest
