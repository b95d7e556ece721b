"""
SSH keys of the Jenkins agents
"""
import os

from k3sboot.ssl import ensure_keypair, read_public_key
from k3sboot.util.logger import Logger

LOGGER = Logger(__name__)

AGENT_KEY = "jenkins_key"
COMPOSE_FILE = "docker-compose.yml"
# the public key shipped in docker-compose.yml until a real one is generated
PLACEHOLDER = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABgQC7..."


def generate_agent_key(path=AGENT_KEY, size=4096):
    """Create the agent key pair unless it exists.

    Returns:
        the public key as OpenSSH line
    """
    ensure_keypair(path, size, comment="jenkins-agent")
    return read_public_key(path + ".pub")


def update_compose(compose=COMPOSE_FILE, public_key=None,
                   placeholder=PLACEHOLDER):
    """Put the agents' public key into the compose file.

    Args:
        compose (str): path of the docker-compose file
        public_key (str): an OpenSSH public key line
        placeholder (str): the text to replace

    Returns:
        True if the file was changed
    """
    if not os.path.isfile(compose):
        raise FileNotFoundError(f"{compose} not found")

    with open(compose) as fh:
        content = fh.read()

    if placeholder not in content:
        if public_key in content:
            LOGGER.info("%s already has the agent key", compose)
        else:
            LOGGER.warning("%s has neither the placeholder nor the agent "
                           "key, not changing it", compose)
        return False

    with open(compose, "w") as fh:
        fh.write(content.replace(placeholder, public_key))

    LOGGER.success("Updated %s with the agent key", compose)
    return True
