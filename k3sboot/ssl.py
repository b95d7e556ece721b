"""
ssl.py holds the SSH key pair utilities.

The keys are plain RSA keys created with ``cryptography``; the private half
is written as PEM, the public half in OpenSSH format so it can be imported
into the cloud or pasted into ``authorized_keys``.
"""
import os

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from k3sboot.util.logger import Logger
from k3sboot.util.util import write_file

LOGGER = Logger(__name__)


def create_key(size=4096, public_exponent=65537):
    """Create an RSA private key

    Args:
        size (int) - the key size in bits
        public_exponent (int) - the key public_exponent

    Return:
        rsa key object instance
    """
    key = rsa.generate_private_key(
        public_exponent=public_exponent,
        key_size=size,
        backend=default_backend()
    )
    return key


def public_openssh(key, comment=""):
    """Return the public half of ``key`` as an OpenSSH line"""
    line = key.public_key().public_bytes(
        serialization.Encoding.OpenSSH,
        serialization.PublicFormat.OpenSSH).decode()
    if comment:
        line = f"{line} {comment}"
    return line


def private_pem(key):
    """Return the unencrypted private key as PEM text"""
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()).decode()


def write_keypair(key, path, comment=""):
    """Write a key pair to ``path`` and ``path.pub``.

    The private key is readable by the owner only.

    Returns:
        tuple of private and public key path
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    write_file(path, private_pem(key), 0o600)
    write_file(path + ".pub", public_openssh(key, comment) + "\n", 0o644)
    LOGGER.debug("Wrote key pair %s(.pub)", path)
    return path, path + ".pub"


def ensure_keypair(path, size=4096, comment=""):
    """Create a key pair at ``path`` unless one exists already.

    Returns:
        True if a new key pair was written
    """
    if os.path.exists(path) and os.path.exists(path + ".pub"):
        LOGGER.info("Using existing key pair %s", path)
        return False

    write_keypair(create_key(size), path, comment)
    LOGGER.success("Created key pair %s", path)
    return True


def read_public_key(path):
    """Read an OpenSSH public key and return it as a single stripped line.

    Raises:
        ValueError if the file does not look like an OpenSSH public key.
    """
    with open(path) as fh:
        line = fh.read().strip()

    if not line.startswith(("ssh-rsa ", "ssh-ed25519 ", "ecdsa-sha2-")):
        raise ValueError(f"{path} is not an OpenSSH public key")

    return line
