"""
This modules contains some helper functions to inject cloud-init
to booted machines. At the moment only a Cloud Init for Ubuntu
is provided
"""
import base64
from datetime import datetime
import os
import textwrap
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import yaml

from k3sboot import (__version__, BOOTSTRAP_ENV_PATH, GITOPS_MANIFEST_PATH)
from k3sboot.ssl import read_public_key
from k3sboot.util.logger import Logger

LOGGER = Logger(__name__)


BOOTSTRAP_SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "userdata")


class BaseInit:  # pylint: disable=unnecessary-lambda
    """
    Attributes:
        cloud_config_data       this attribute contains the text/cloud-config
                                files that is passed to the instances
        attachments             this attribute contains other parts of the
                                userdata, e.g scripts that are directly
                                executed by cloud-init. They should be
                                instances of MIMEText with the header
                                'Content-Disposition' set to 'attachment'
    """
    role = None
    os_type = "ubuntu"

    def __init__(self):
        self._cloud_config_data = {}
        self._attachments = []

        self._cloud_config_data['write_files'] = []

        # assemble the parts
        self._write_k3sboot_info()

    def write_file(self, path, content, owner="root", group="root",
                   permissions="0600", encoder=lambda x: base64.b64encode(x)):
        """
        writes a file to the instance
        path: e.g. /etc/k3sboot/k3sboot.conf
        content: string of the content of the file
        owner: e.g. root
        group: e.g. root
        permissions: e.g. "0644", as string
        encode: Optional encoder to use for the needed base64 encoding
        """
        data = {
            "path": path,
            "owner": owner + ":" + group,
            "encoding": "b64",
            "permissions": permissions,
            "content": encoder(content.encode()).decode()
        }
        self._cloud_config_data['write_files'].append(data)

    @property
    def write_files(self):
        """the files written to the instance, as cloud-init sees them"""
        return self._cloud_config_data['write_files']

    def add_bootstrap_script(self):
        """
        add the bootstrap script to the userdata.
        """
        name, script = self._get_bootstrap_script()
        part = MIMEText(script, _subtype='x-shellscript')
        part.add_header('Content-Disposition', 'attachment',
                        filename=name)
        self._attachments.append(part)

    def add_ssh_public_key(self, keyline):
        """
        keyline is an OpenSSH public key line
        """
        self._cloud_config_data.setdefault("ssh_authorized_keys", [])
        self._cloud_config_data["ssh_authorized_keys"].append(keyline)

    def _write_k3sboot_info(self):
        """
        Generate the k3sboot.conf configuration file.
        """
        content = """
        # This file contains meta information about k3sboot
        k3sboot_version={}
        creation_date={}
        """.format(
            __version__,
            datetime.strftime(datetime.now(), format="%c"))
        content = textwrap.dedent(content)

        self.write_file("/etc/k3sboot/k3sboot.conf", content, "root", "root",
                        "0644")

    def _get_bootstrap_script(self):
        name = "bootstrap-k3s-%s-%s.sh" % (self.role, self.os_type)
        path = os.path.join(BOOTSTRAP_SCRIPTS_DIR, name)

        with open(path) as fh:
            script = fh.read()

        return name, script

    def __str__(self):
        """
        This method generates a string from the cloud_config_data and the
        attachments that have been set in the corresponding attributes.
        """
        self._attachments = []
        self.add_bootstrap_script()
        userdata = MIMEMultipart()

        # first add the cloud-config-data script
        config = MIMEText(yaml.dump(self._cloud_config_data),
                          _subtype='cloud-config')
        config.add_header('Content-Disposition', 'attachment')
        userdata.attach(config)

        for attachment in self._attachments:
            userdata.attach(attachment)

        return userdata.as_string()


class ServerInit(BaseInit):
    """
    The userdata of the k3s server. It writes the boot variables and the
    GitOps manifest to the machine and runs the bootstrap script once.

    Args:
        config (dict): a validated cluster configuration
        manifest (str): the GitOps manifest to embed; when None the machine
            downloads ``gitops.manifest-url``
    """
    role = "server"

    def __init__(self, config, manifest=None):
        super().__init__()
        self.config = config
        self.manifest = manifest

        self.add_ssh_public_key(read_public_key(config["key-path"]))
        self._write_k3sboot_env()
        if manifest:
            self.write_file(GITOPS_MANIFEST_PATH,
                            base64.b64encode(manifest.encode()).decode(),
                            "root", "root", "0600")
        else:
            LOGGER.debug("No local manifest, the server downloads %s",
                         config["gitops"]["manifest-url"])

    def _write_k3sboot_env(self):
        """
        writes the necessary k3sboot information for the server to the file
        /etc/k3sboot/k3sboot.env
        """
        k3s = self.config["k3s"]
        gitops = self.config["gitops"]
        content = """
            #!/bin/bash
            export CLUSTER_NAME="{}"
            export OPERATOR_USER="{}"

            export K3S_CHANNEL="{}"
            export K3S_VERSION="{}"
            export K3S_DISABLE="{}"
            export NODE_TIMEOUT="{}"

            export GITOPS_NAMESPACE="{}"
            export GITOPS_DEPLOYMENT="{}"
            export GITOPS_SECRET="{}"
            export GITOPS_TIMEOUT="{}"
            export GITOPS_MANIFEST_FILE="{}"
            export GITOPS_MANIFEST_URL="{}"
            export WRITE_ADMIN_PASSWORD="{}"
        """.format(self.config["cluster-name"], self.config["ssh-user"],
                   k3s["channel"], k3s["version"] or "",
                   " ".join(k3s["disable"]), k3s["node-timeout"],
                   gitops["namespace"], gitops["deployment"],
                   gitops["secret"], gitops["timeout"],
                   GITOPS_MANIFEST_PATH if self.manifest else "",
                   "" if self.manifest else gitops["manifest-url"],
                   "true" if gitops["write-password"] else "false")
        content = textwrap.dedent(content)
        self.write_file(BOOTSTRAP_ENV_PATH, content, "root", "root", "0600")
