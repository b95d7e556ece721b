"""
k3sboot
=======

The main entry point for the single node k3s cluster build.
Don't use it directly, instead install the package with setup.py.
It automatically creates an executable in your path.

"""
import argparse
import os
import subprocess as sp
import sys

import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.utils import FailToCreateError

from mach import mach1

from . import __version__
from .cli import (confirm, read_config, print_plan, print_outputs,
                  remove_cluster)
from .ci import jenkins, keys, teardown
from .cloud import BuilderError, InstanceNotFound
from .cloud.builder import ClusterBuilder
from .deploy.k3s import K3S, GitOpsInstaller, fetch_kubeconfig
from .ssl import ensure_keypair
from .util.config import ConfigError, require_public_key
from .util.logger import Logger, to_level
from .util.util import WaitTimeout

LOGGER = Logger(__name__)

CI_ACTIONS = ("keygen", "register", "teardown")


def _fail(err):
    LOGGER.error(f"Error: {err}")
    sys.exit(1)


@mach1()
class K3sboot:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and descides which action shoud be taken
    """
    def __init__(self):
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default=3)

    def _get_version(self):
        print("%s version: %s" % (self.__class__.__name__, __version__))

    def _get_verbosity(self):
        pass

    def plan(self, config):
        """
        Show which cloud resources apply would create or change

        config - cluster file
        """
        config = read_config(config)
        try:
            plan = ClusterBuilder(config).plan()
        except BuilderError as err:
            _fail(err)

        print_plan(plan)

    def apply(self, config):
        """
        Create the cloud resources and boot the k3s server

        config - cluster file
        ---
        Every resource is looked up first, so apply can be run again after
        a failure. The server installs k3s and the GitOps controller on its
        first boot; follow the progress in /var/log/k3sboot-bootstrap.log.
        """
        config = read_config(config)
        try:
            outputs = ClusterBuilder(config).run()
        except (BuilderError, ConfigError, WaitTimeout, OSError,
                ValueError) as err:
            _fail(err)

        print_outputs(outputs)

    def output(self, config, name: str = None):
        """
        Print the output values of a running cluster

        config - cluster file
        name - print only this value
        """
        config = read_config(config)
        try:
            outputs = ClusterBuilder(config).outputs()
            print_outputs(outputs, name)
        except (BuilderError, InstanceNotFound) as err:
            _fail(err)
        except KeyError:
            _fail(f"no output named {name}")

    def destroy(self, config: str, force: bool = False):
        """
        Delete the complete cluster stack

        config - cluster file
        force - do not ask for confirmation
        """
        config = read_config(config)
        try:
            remove_cluster(ClusterBuilder(config), force)
        except (BuilderError, WaitTimeout) as err:
            _fail(err)

    def keygen(self, path: str = "~/.ssh/k3sboot", size: int = 4096):
        """
        Create the SSH key pair of the cluster

        path - private key path, the public key is written next to it
        size - RSA key size in bits
        """
        path = os.path.expanduser(path)
        ensure_keypair(path, size, comment="k3sboot")
        LOGGER.info("Set key-path: %s.pub in your cluster file", path)

    def kubeconfig(self, config, dest: str = None):
        """
        Copy the kubeconfig from the server

        config - cluster file
        dest - where to write it, defaults to <cluster-name>-kubeconfig
        """
        config = read_config(config)
        dest = dest or "%s-kubeconfig" % config["cluster-name"]
        try:
            require_public_key(config)
            fetch_kubeconfig(ClusterBuilder(config).outputs(), dest)
        except (BuilderError, ConfigError, InstanceNotFound,
                sp.CalledProcessError) as err:
            _fail(err)

    def gitops(self, config, kubeconfig: str = None):
        """
        Install the GitOps controller from this machine

        config - cluster file
        kubeconfig - kubeconfig of the cluster, fetched if not given
        ---
        Repeats what the server does on first boot after k3s is up. Use it
        when the boot script failed after installing k3s.
        """
        config = read_config(config)
        try:
            outputs = ClusterBuilder(config).outputs()
            if not kubeconfig:
                kubeconfig = fetch_kubeconfig(
                    outputs, "%s-kubeconfig" % config["cluster-name"])
            GitOpsInstaller(K3S(kubeconfig), config, outputs).run()
        except WaitTimeout as err:
            _fail(f"{err}, the GitOps controller was not installed")
        except (BuilderError, InstanceNotFound, sp.CalledProcessError,
                ApiException, FailToCreateError, ValueError,
                urllib3.exceptions.MaxRetryError) as err:
            _fail(err)

    def ci(self, action: str, compose: str = keys.COMPOSE_FILE,
           key: str = keys.AGENT_KEY, agents: int = 2, force: bool = False):
        """
        Manage the local Jenkins CI server

        action - one of keygen, register or teardown
        compose - the docker-compose file
        key - the agent private key path
        agents - number of agents to register
        force - do not ask for confirmation on teardown
        """
        if action not in CI_ACTIONS:
            _fail('action must be [%s]' % " | ".join(CI_ACTIONS))

        try:
            if action == "keygen":
                public_key = keys.generate_agent_key(key)
                keys.update_compose(compose, public_key)
                LOGGER.info("Start Jenkins with: docker-compose up -d")
            elif action == "register":
                jenkins.JenkinsMaster().setup(key, agents)
            else:
                LOGGER.question("Removing the Jenkins containers, keys and "
                                "images")
                if confirm(force) == 'y':
                    teardown.teardown(compose, key)
        except (OSError, ValueError, WaitTimeout,
                sp.CalledProcessError) as err:
            _fail(err)


def main():
    """
    run and execute k3sboot
    """
    k = K3sboot()

    # Display a little information message, at the k3sboot --help page.
    # pylint: disable=no-member
    k.parser.description = 'Cloud credentials are taken from the '\
                           'environment: the AWS credential chain or a '\
                           'sourced OpenStack RC file.'

    # Setting verbosity level
    level = k.parser.parse_args().verbosity
    try:
        Logger.set_global_level(to_level(level))
    except ValueError:
        LOGGER.error("Error: unknown verbosity %s", level)
        sys.exit(2)

    # pylint misses the fact that K3sboot is decorated with mach.
    # the mach decorator analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
