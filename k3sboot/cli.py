"""
cli.py
======

misc functions to interact with the cluster, usually called from
``k3sboot.k3sboot.K3sboot``.

Don't use directly
"""
import sys

from huepy import que, bold  # pylint: disable=no-name-in-module

from .util.config import load_config, ConfigError
from .util.logger import Logger


LOGGER = Logger(__name__)


def confirm(force):
    """Asks the user for confirmation."""
    if not force:
        ans = input(que(bold("Are you sure? [y/N]: ")))
    else:
        ans = 'y'

    return ans.lower()


def read_config(path):
    """Load the cluster file or exit with status 1"""
    try:
        return load_config(path)
    except ConfigError as err:
        LOGGER.error(f"Error: {err}")
        sys.exit(1)


def print_plan(plan):
    """Show what ``apply`` would change"""
    for change in plan:
        if change.action == "create":
            LOGGER.success(str(change))
        elif change.action == "update":
            LOGGER.warning(str(change))
        else:
            LOGGER.debug(str(change))

    LOGGER.info(plan.summary())


def print_outputs(outputs, name=None):
    """Print all output values, or only ``name`` without decoration.

    Raises:
        KeyError if there is no output value ``name``.
    """
    values = outputs.as_dict()
    if name:
        print(values[name])
        return

    for key, val in values.items():
        print("%s = %s" % (key, val))


def remove_cluster(builder, force):
    """Delete all cloud resources of a cluster after confirmation.

    Returns:
        the number of deleted resources, None if the user declined
    """
    name = builder.config["cluster-name"]
    LOGGER.question("Deleting cluster '{}'".format(name))
    if confirm(force) != 'y':
        LOGGER.info("Not deleting %s", name)
        return None

    return builder.destroy()
