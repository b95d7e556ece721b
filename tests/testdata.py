"""Defines test data shared among tests"""

# pylint: disable=invalid-name,missing-docstring

import copy

from munch import Munch

from k3sboot.util.config import DEFAULTS, merge, validate_config

NAUGHTY_STRINGS = [
    "",
    "true",
    "then",
    "1/2",
    "$1.0",
    "Ω≈ç√∫˜µ≤≥÷",
    "社會科學院語學研究所",
    "😍",
    "<script>alert(123)</script>",
    "'; DROP TABLE users; --",
    "a b",
    "under_score",
    "dot.ted",
]

PUBLIC_KEY = ("ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQDlRmJhY2tlbmQ= "
              "operator@example")

CONFIG = merge(DEFAULTS, {"cluster-name": "test",
                          "key-path": "/tmp/k3sboot-test/test.pub"})


def make_config(tmp_path, **overrides):
    """A validated configuration with its public key in ``tmp_path``"""
    key = tmp_path / "test.pub"
    key.write_text(PUBLIC_KEY + "\n")
    config = merge(copy.deepcopy(CONFIG), overrides)
    config["key-path"] = str(key)
    return validate_config(config)


def ready_node(name, ready=True):
    return Munch(metadata=Munch(name=name),
                 status=Munch(conditions=[
                     Munch(type="MemoryPressure", status="False"),
                     Munch(type="Ready", status="True" if ready else "False")]))
