"""
Reading and validating the k3sboot cluster file.

A minimal cluster file only needs a name and a public key::

    cluster-name: demo
    key-path: ~/.ssh/demo.pub

Everything else falls back to :data:`DEFAULTS`.
"""
import copy
import os

import yaml

from k3sboot import ARGOCD_MANIFEST_URL
from k3sboot.util.net import is_cidr, cidr_contains
from k3sboot.util.util import name_validation

PROVIDERS = ("aws", "openstack")

DEFAULTS = {
    "provider": "aws",
    "region": "us-east-1",
    "availability-zone": None,
    "instance-type": "t3.medium",
    "volume-size": 20,
    "ssh-user": "ubuntu",
    "allowed-cidr": "0.0.0.0/0",
    "network": {
        "cidr": "10.0.0.0/16",
        "subnet-cidr": "10.0.1.0/24",
        "external-network": None,
    },
    "image": {
        "name": "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*",
        "owner": "099720109477",
    },
    "k3s": {
        "channel": "stable",
        "version": None,
        "disable": ["traefik"],
        "node-timeout": 300,
    },
    "gitops": {
        "manifest": None,
        "manifest-url": ARGOCD_MANIFEST_URL,
        "namespace": "argocd",
        "deployment": "argocd-server",
        "secret": "argocd-initial-admin-secret",
        "timeout": 600,
        "write-password": False,
    },
}


class ConfigError(Exception):
    """raised when the cluster file is invalid"""


def merge(defaults, overrides):
    """Deep merge ``overrides`` into a copy of ``defaults``"""
    out = copy.deepcopy(defaults)
    for key, val in (overrides or {}).items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = merge(out[key], val)
        else:
            out[key] = val
    return out


def load_config(path):
    """Read a cluster file, apply the defaults and validate it.

    Args:
        path (str): path of the YAML cluster file

    Returns:
        the configuration as ``dict``

    Raises:
        ConfigError if the file is missing or invalid.
    """
    try:
        with open(path, 'r') as stream:
            user_config = yaml.safe_load(stream)
    except FileNotFoundError:
        raise ConfigError(f"cluster file {path} not found")
    except yaml.YAMLError as exc:
        raise ConfigError(f"cluster file {path} is not valid YAML: {exc}")

    if not isinstance(user_config, dict):
        raise ConfigError(f"cluster file {path} must be a mapping")

    config = merge(DEFAULTS, user_config)
    validate_config(config)
    return config


def _positive_int(config, section, key):
    val = config[section][key] if section else config[key]
    if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
        name = f"{section}.{key}" if section else key
        raise ConfigError(f"{name} must be a positive integer, got {val!r}")


def validate_config(config):
    """Check a merged configuration.

    Exits with status 2 if the cluster name is invalid, like every other
    name check in k3sboot.

    Raises:
        ConfigError on any other invalid value.
    """
    if "cluster-name" not in config:
        raise ConfigError("cluster-name is required")
    name_validation(config["cluster-name"])

    if config["provider"] not in PROVIDERS:
        raise ConfigError("provider must be one of [%s]" % " | ".join(
            PROVIDERS))

    if not config.get("key-path"):
        raise ConfigError("key-path is required")
    config["key-path"] = os.path.expanduser(config["key-path"])

    if not config.get("instance-type"):
        raise ConfigError("instance-type is required")

    net = config["network"]
    for key in ("cidr", "subnet-cidr"):
        if not is_cidr(net[key]):
            raise ConfigError(f"network.{key} is not a valid CIDR: "
                              f"{net[key]!r}")
    if not cidr_contains(net["cidr"], net["subnet-cidr"]):
        raise ConfigError("network.subnet-cidr %s is not inside %s" % (
            net["subnet-cidr"], net["cidr"]))

    if not is_cidr(config["allowed-cidr"]):
        raise ConfigError("allowed-cidr is not a valid CIDR: "
                          f"{config['allowed-cidr']!r}")

    _positive_int(config, None, "volume-size")
    _positive_int(config, "k3s", "node-timeout")
    _positive_int(config, "gitops", "timeout")

    if not isinstance(config["k3s"]["disable"], list):
        raise ConfigError("k3s.disable must be a list")

    gitops = config["gitops"]
    if gitops["manifest"]:
        gitops["manifest"] = os.path.expanduser(gitops["manifest"])
        if not os.path.isfile(gitops["manifest"]):
            raise ConfigError("gitops.manifest %s not found" %
                              gitops["manifest"])
    elif not gitops["manifest-url"]:
        raise ConfigError("either gitops.manifest or gitops.manifest-url "
                          "is required")

    return config


def require_public_key(config):
    """Make sure the configured public key exists.

    Returns:
        the public key path
    """
    path = config["key-path"]
    if not os.path.isfile(path):
        raise ConfigError(f"public key {path} not found, create one with "
                          "'k3sboot keygen'")
    return path
