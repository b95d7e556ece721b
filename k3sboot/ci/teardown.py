"""
Remove the Jenkins containers, keys and images.

Anything that is already gone counts as removed, so the teardown can be
repeated. Any other failure is raised.
"""
import os
import subprocess as sp

from k3sboot.ci.keys import AGENT_KEY, COMPOSE_FILE
from k3sboot.util.logger import Logger

LOGGER = Logger(__name__)

IMAGES = ("jenkins/jenkins:lts", "jenkins/ssh-agent:latest")


def remove_file(path):
    """Remove ``path``; return False if it did not exist"""
    try:
        os.remove(path)
    except FileNotFoundError:
        LOGGER.debug("%s does not exist", path)
        return False
    LOGGER.debug("Removed %s", path)
    return True


def image_exists(image, run=sp.run):
    """True if docker has ``image`` locally"""
    proc = run(["docker", "image", "inspect", image],
               stdout=sp.DEVNULL, stderr=sp.DEVNULL)
    return proc.returncode == 0


def teardown(compose=COMPOSE_FILE, key_path=AGENT_KEY, images=IMAGES,
             run=sp.run):
    """Stop the CI stack and remove everything it left behind.

    Returns:
        dict with the removed ``files`` and ``images``
    """
    if os.path.isfile(compose):
        LOGGER.info("Stopping and removing Jenkins containers ...")
        run(["docker-compose", "-f", compose, "down", "-v"], check=True)
    else:
        LOGGER.warning("%s not found, skipping docker-compose down", compose)

    LOGGER.info("Removing SSH keys ...")
    files = [p for p in (key_path, key_path + ".pub") if remove_file(p)]

    LOGGER.info("Removing Docker images ...")
    removed = []
    for image in images:
        if not image_exists(image, run):
            LOGGER.debug("Image %s is not present", image)
            continue
        run(["docker", "rmi", image], check=True)
        removed.append(image)

    LOGGER.info("Cleaning up Docker system ...")
    run(["docker", "system", "prune", "-f"], check=True)

    LOGGER.success("Jenkins setup completely destroyed.")
    return {"files": files, "images": removed}
