"""
General purpose utilities
"""
import os
import re
import sys
import time

from functools import wraps

from huepy import red  # pylint: disable=no-name-in-module


class WaitTimeout(Exception):
    """Raised when a polled condition did not become true in time.

    Args:
        description (str): what was waited for
        elapsed (float): seconds spent waiting
    """
    def __init__(self, description, elapsed):
        super().__init__(
            "timed out after %ds waiting for %s" % (elapsed, description))
        self.description = description
        self.elapsed = elapsed


def name_validation(name):
    """
    Validates a name that will be used as prefix of every cloud resource.
    Each name should conform to the following convention:
    not too long (maximum 244 characters)
    only ASCII-letters, numbers and dashes

    Args:
        name (str): The name to be checked

    Returns:
        Name if valid, Exits with Status code 2 if name is invalid.
    """
    if not isinstance(name, str) or not name:
        print(red("cluster-name must be a non empty string"))
        sys.exit(2)
    if len(name) > 244:
        print(red("cluster-name is too long"))
        sys.exit(2)
    allowed = re.compile(r"^[a-zA-Z\d-]+$")
    if not allowed.match(name):
        print(red("cluster-name '{}' is using illegal characters. \
              Please change cluster-name in config file".format(name)))
        sys.exit(2)
    return name


def retry(exceptions, tries=4, delay=3, backoff=2, logger=None):
    """
    Retry calling the decorated function using an exponential backoff.

    Args:
        exceptions: The exception to check. may be a tuple of exceptions to check.
        tries: Number of times to try (not retry) before giving up.
        delay: Initial delay between retries in seconds.
        backoff: Backoff multiplier (e.g. value of 2 will double the delay each retry).
        logger: Logger to use. If None, print.
    """
    def deco_retry(f):  # pylint: disable=invalid-name

        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:  # pylint: disable=invalid-name
                    msg = '{}, Retrying in {} seconds...'.format(e,
                                                                 int(mdelay))
                    if logger:
                        logger(msg)
                    else:
                        print(msg)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)

        return f_retry  # true decorator

    return deco_retry


# pylint: disable=too-many-arguments
def wait_for(condition, timeout, description="condition", delay=2,
             backoff=2, max_delay=30, logger=None,
             clock=time.monotonic, sleep=time.sleep):
    """Poll ``condition`` until it returns something truthy.

    The pause between two polls starts at ``delay`` and is multiplied by
    ``backoff`` after each failed poll, but never exceeds ``max_delay`` or
    the time left until ``timeout``.

    Args:
        condition (callable): called without arguments
        timeout (int): seconds after which to give up
        description (str): used in log lines and in the error
        logger (callable): called with a progress message after each poll

    Returns:
        the first truthy value returned by ``condition``

    Raises:
        WaitTimeout if the deadline passes first.
    """
    start = clock()
    deadline = start + timeout
    pause = delay
    while True:
        result = condition()
        if result:
            return result

        now = clock()
        if now >= deadline:
            raise WaitTimeout(description, now - start)

        step = min(pause, max_delay, deadline - now)
        if logger:
            logger("Waiting for %s, next check in %ds ..." % (description,
                                                             step))
        sleep(step)
        pause = min(pause * backoff, max_delay)


def private_key_path(public_key_path):
    """Derive the private key path from the public key path"""
    if public_key_path.endswith(".pub"):
        return public_key_path[:-len(".pub")]
    return public_key_path


def write_file(path, content, mode=0o600):
    """Write ``content`` to ``path``, creating it with ``mode``.

    The mode is also applied when the file already exists.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w") as fh:
        fh.write(content)
    os.chmod(path, mode)
