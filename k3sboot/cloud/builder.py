"""
Builder
=======

Build a single node k3s cluster on a cloud
"""
from k3sboot.cloud import InstanceNotFound, get_provider
from k3sboot.cloud.resources import (INSTANCE, Change, Plan,
                                     declare_resources)
from k3sboot.provision.cloud_init import ServerInit
from k3sboot.util.config import require_public_key
from k3sboot.util.logger import Logger
from k3sboot.util.util import private_key_path

LOGGER = Logger(__name__)

# seconds to wait for a created instance to run
INSTANCE_TIMEOUT = 600


class Outputs:
    """The values an operator needs to reach the cluster.

    Args:
        cluster_name (str)
        public_ip (str)
        private_ip (str)
        ssh_user (str): the operator account on the machine
        key_path (str): the public key path, the private key is next to it
    """
    # pylint: disable=too-many-arguments
    def __init__(self, cluster_name, public_ip, private_ip, ssh_user,
                 key_path):
        self.cluster_name = cluster_name
        self.public_ip = public_ip
        self.private_ip = private_ip
        self.ssh_user = ssh_user
        self.private_key = private_key_path(key_path)

    @property
    def remote_kubeconfig(self):
        """the kubeconfig path inside the operator's home on the machine"""
        return f"/home/{self.ssh_user}/.kube/config"

    @property
    def ssh_command(self):
        """ssh into the server"""
        return "ssh -i %s %s@%s" % (self.private_key, self.ssh_user,
                                    self.public_ip)

    @property
    def scp_command(self):
        """copy the kubeconfig to the current directory"""
        return "scp -i %s %s@%s:%s ./%s-kubeconfig" % (
            self.private_key, self.ssh_user, self.public_ip,
            self.remote_kubeconfig, self.cluster_name)

    @property
    def gitops_url(self):
        """the address of the GitOps controller"""
        return f"http://{self.public_ip}"

    def as_dict(self):
        """all output values by name"""
        return {"public_ip": self.public_ip,
                "private_ip": self.private_ip,
                "ssh_command": self.ssh_command,
                "scp_command": self.scp_command,
                "gitops_url": self.gitops_url}

    def __str__(self):
        return "\n".join("%s = %s" % (key, val)
                         for key, val in self.as_dict().items())


class ClusterBuilder:
    """Bring the declared resources of a cluster to life.

    Every step looks the resource up first, so ``run`` can be repeated
    after a failure and ``destroy`` after a partial delete.

    Args:
        config (dict): a validated cluster configuration
        provider: a :class:`k3sboot.cloud.Provider`, picked from the
            configuration if None
    """

    def __init__(self, config, provider=None):
        self.config = config
        self.provider = provider or get_provider(config)
        self.resources = declare_resources(config)

    def _instance_resource(self):
        return [r for r in self.resources if r.kind == INSTANCE][0]

    def plan(self):
        """Compare the declarations with the cloud without changing it.

        Returns:
            :class:`k3sboot.cloud.resources.Plan`
        """
        changes = []
        for resource in self.resources:
            record = self.provider.find(resource)
            if record is None:
                changes.append(Change("create", resource))
                continue

            missing = self.provider.drift(resource, record)
            if missing:
                changes.append(Change("update", resource, missing))
            else:
                changes.append(Change("noop", resource))

        return Plan(changes)

    def userdata(self):
        """Render the userdata of the server"""
        manifest = None
        if self.config["gitops"]["manifest"]:
            with open(self.config["gitops"]["manifest"]) as fh:
                manifest = fh.read()
        return str(ServerInit(self.config, manifest))

    def run(self):
        """
        execute the complete cluster build

        Returns:
            :class:`Outputs` of the running server
        """
        require_public_key(self.config)
        state = {}

        # a broken userdata must fail before anything is created
        instance = self._instance_resource()
        if self.provider.find(instance) is None:
            instance.properties["userdata"] = self.userdata()

        for resource in self.resources:
            record = self.provider.find(resource)
            if record is None:
                record = self.provider.create(resource, state)
            elif self.provider.drift(resource, record):
                record = self.provider.update(resource, record, state)
            else:
                LOGGER.info("Using existing %s [%s] ...", resource.kind,
                            resource.name)
            state[resource.kind] = record

        LOGGER.info("Waiting for the server to run ...")
        record = self.provider.wait_for_instance(state[INSTANCE],
                                                 INSTANCE_TIMEOUT)
        outputs = self._outputs(record)
        LOGGER.success("Server %s is running at %s",
                       self._instance_resource().name, outputs.public_ip)
        return outputs

    def _outputs(self, record):
        public_ip, private_ip = self.provider.addresses(record)
        return Outputs(self.config["cluster-name"], public_ip, private_ip,
                       self.config["ssh-user"], self.config["key-path"])

    def outputs(self):
        """Read the output values from the live server.

        Raises:
            InstanceNotFound if the server does not exist.
        """
        resource = self._instance_resource()
        record = self.provider.find(resource)
        if record is None:
            raise InstanceNotFound(f"server {resource.name} does not exist")
        return self._outputs(record)

    def destroy(self):
        """Delete all resources of the cluster in reverse order.

        Resources that are already gone are skipped.

        Returns:
            the number of deleted resources
        """
        deleted = 0
        for resource in reversed(self.resources):
            record = self.provider.find(resource)
            if record is None:
                LOGGER.debug("%s [%s] does not exist", resource.kind,
                             resource.name)
                continue
            self.provider.delete(resource, record)
            deleted += 1

        LOGGER.success("Deleted %d resources of cluster %s", deleted,
                       self.config["cluster-name"])
        return deleted
