"""
Register the SSH credential and the agents with a Jenkins master running
in a docker container.

All calls go through ``docker exec`` and the ``jenkins-cli.jar`` inside
the container, so nothing but docker is needed on the host.
"""
import subprocess as sp
import xml.etree.ElementTree as ET

import urllib3

from k3sboot.ci.keys import AGENT_KEY
from k3sboot.util.logger import Logger
from k3sboot.util.util import retry, wait_for

LOGGER = Logger(__name__)

CONTAINER = "jenkins-master"
URL = "http://localhost:8080"
USER = "admin"
PASSWORD_FILE = "/var/jenkins_home/secrets/initialAdminPassword"
CLI_JAR = "/tmp/jenkins-cli.jar"
CREDENTIAL_ID = "jenkins-ssh-key"
CREDENTIAL_STORE = ["system::system::jenkins", "_"]

SSH_KEY_CLASS = "com.cloudbees.jenkins.plugins.sshcredentials.impl." \
                "BasicSSHUserPrivateKey"


def credential_xml(private_key, cred_id=CREDENTIAL_ID, username="jenkins"):
    """The XML of an SSH private key credential"""
    root = ET.Element(SSH_KEY_CLASS)
    ET.SubElement(root, "scope").text = "GLOBAL"
    ET.SubElement(root, "id").text = cred_id
    ET.SubElement(root, "username").text = username
    source = ET.SubElement(
        root, "privateKeySource",
        {"class": SSH_KEY_CLASS + "$DirectEntryPrivateKeySource"})
    ET.SubElement(source, "privateKey").text = private_key
    return ET.tostring(root, encoding="unicode")


def agent_name(index):
    """the node and host name of agent ``index``"""
    return f"jenkins-agent-{index}"


def agent_xml(index, cred_id=CREDENTIAL_ID, executors=2):
    """The XML of an agent started over SSH"""
    name = agent_name(index)
    root = ET.Element("slave")
    ET.SubElement(root, "name").text = name
    ET.SubElement(root, "description").text = f"Jenkins Agent {index}"
    ET.SubElement(root, "remoteFS").text = "/home/jenkins/agent"
    ET.SubElement(root, "numExecutors").text = str(executors)
    ET.SubElement(root, "mode").text = "NORMAL"
    launcher = ET.SubElement(root, "launcher",
                             {"class": "hudson.plugins.sshslaves.SSHLauncher"})
    for tag, text in (("host", name),
                      ("port", "22"),
                      ("credentialsId", cred_id),
                      ("launchTimeoutSeconds", "60"),
                      ("maxNumRetries", "10"),
                      ("retryWaitTime", "15")):
        ET.SubElement(launcher, tag).text = text
    return ET.tostring(root, encoding="unicode")


class JenkinsMaster:
    """A Jenkins master in a docker container.

    Args:
        container (str): the container name
        url (str): the Jenkins URL, as seen from the host and the container
        user (str): the admin user
        run (callable): runs a command, :func:`subprocess.run` by default
    """

    def __init__(self, container=CONTAINER, url=URL, user=USER, run=sp.run):
        self.container = container
        self.url = url
        self.user = user
        self.password = None
        self._run = run
        self._http = urllib3.PoolManager()

    def docker_exec(self, args, stdin=None):
        """Run ``args`` in the container and return its output.

        Raises:
            subprocess.CalledProcessError if the command fails
        """
        cmd = ["docker", "exec"]
        if stdin is not None:
            cmd.append("-i")
        cmd.append(self.container)
        cmd.extend(args)
        proc = self._run(cmd, input=stdin, stdout=sp.PIPE, stderr=sp.PIPE,
                         universal_newlines=True, check=True)
        return proc.stdout

    def initial_password(self):
        """the initial admin password, None while Jenkins starts"""
        try:
            return self.docker_exec(["cat", PASSWORD_FILE]).strip() or None
        except sp.CalledProcessError:
            return None

    def login_ready(self):
        """True if the login page answers"""
        try:
            resp = self._http.request("GET", self.url + "/login",
                                      retries=False, timeout=5.0)
        except urllib3.exceptions.HTTPError:
            return False
        return resp.status == 200

    def _ready(self):
        password = self.initial_password()
        if password and self.login_ready():
            return password
        return None

    def wait_until_ready(self, timeout=600):
        """Block until Jenkins serves its login page.

        Raises:
            WaitTimeout if Jenkins is not ready after ``timeout`` seconds.
        """
        LOGGER.info("Waiting for Jenkins to be ready ...")
        self.password = wait_for(self._ready, timeout, "Jenkins",
                                 delay=5, logger=LOGGER.debug)
        LOGGER.success("Jenkins is ready")
        return self.password

    def download_cli(self):
        """Download the CLI jar into the container unless it is there"""
        try:
            self.docker_exec(["test", "-f", CLI_JAR])
            LOGGER.debug("%s exists", CLI_JAR)
            return
        except sp.CalledProcessError:
            pass

        LOGGER.info("Downloading the Jenkins CLI ...")
        self.docker_exec(["curl", "-sf", "-o", CLI_JAR,
                          self.url + "/jnlpJars/jenkins-cli.jar"])

    def _cli(self, args, stdin=None):
        return self.docker_exec(
            ["java", "-jar", CLI_JAR, "-s", self.url,
             "-auth", "%s:%s" % (self.user, self.password)] + list(args),
            stdin=stdin)

    # the CLI fails until the credentials and ssh plugins are loaded
    @retry(sp.CalledProcessError, tries=6, delay=5, logger=LOGGER.debug)
    def cli(self, args, stdin=None):
        """Run a Jenkins CLI command, retried while plugins load"""
        return self._cli(args, stdin)

    def exists(self, args):
        """True if a ``get-*`` CLI command succeeds"""
        try:
            self._cli(args)
            return True
        except sp.CalledProcessError:
            return False

    def create_credential(self, key_path=AGENT_KEY):
        """Create the SSH credential of the agents.

        Returns:
            True if it was created
        """
        if self.exists(["get-credentials-as-xml"] + CREDENTIAL_STORE +
                       [CREDENTIAL_ID]):
            LOGGER.info("Credential %s exists", CREDENTIAL_ID)
            return False

        with open(key_path) as fh:
            private_key = fh.read().strip()

        self.cli(["create-credentials-by-xml"] + CREDENTIAL_STORE,
                 stdin=credential_xml(private_key))
        LOGGER.success("Created credential %s", CREDENTIAL_ID)
        return True

    def add_agents(self, count=2):
        """Create the agent nodes that do not exist yet.

        Returns:
            the names of the created agents
        """
        created = []
        for index in range(1, count + 1):
            name = agent_name(index)
            if self.exists(["get-node", name]):
                LOGGER.info("Agent %s exists", name)
                continue
            self.cli(["create-node", name], stdin=agent_xml(index))
            LOGGER.success("Added %s", name)
            created.append(name)
        return created

    def setup(self, key_path=AGENT_KEY, agents=2, timeout=600):
        """Wait for Jenkins, then register the credential and agents"""
        self.wait_until_ready(timeout)
        self.download_cli()
        self.create_credential(key_path)
        created = self.add_agents(agents)
        LOGGER.success("Setup complete! Check nodes at: %s/computer/",
                       self.url)
        return created
