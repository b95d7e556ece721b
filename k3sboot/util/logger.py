"""Logging for k3sboot.

All modules log through :class:`Logger`, which prints colored, prefixed
messages to STDOUT. The verbosity is shared by the whole application and
is set once from the command line.
"""

import logging
import sys
import time

from huepy import (bad, red, info as infomsg, yellow, run,  # pylint: disable=no-name-in-module
                   grey, que, good, green)

LOG_LEVELS = list(range(5))
DEFAULT_LOG_LEVEL = 3

# k3sboot verbosity -> Python logging level, 0 disables the logger
PYTHON_LEVELS = {1: logging.ERROR,
                 2: logging.WARNING,
                 3: logging.INFO,
                 4: logging.DEBUG}

LEVEL_NAMES = {'quiet': 0,
               'error': 1,
               'warning': 2,
               'info': 3,
               'debug': 4}


def to_level(level):
    """Convert a level name or number to a k3sboot verbosity level.

    Args:
        level (str or int): e.g. ``"debug"``, ``"4"`` or ``4``.

    Raises:
        ValueError if the level is unknown.
    """
    try:
        level = LEVEL_NAMES[level]
    except (KeyError, TypeError):
        level = int(level)

    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    return level


def get_logger(name):
    """Returns a Python logger writing plain messages to STDOUT.

    Only one handler is attached per logger name, so asking for the same
    name twice does not print every message twice.
    """
    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(sh)
        log.propagate = False

    return log


def set_level(logger, level):
    """Sets the level of a Python logger from a k3sboot verbosity level.

    Raises:
        ValueError if log level is unsupported.
    """
    level = to_level(level)
    logger.disabled = level == 0
    if level:
        logger.setLevel(PYTHON_LEVELS[level])


class Singleton(type):
    """Metaclass returning one instance per logger name.

    Calling ``Logger("a")`` twice gives back the same object, which is
    re-initialized so that a changed ``Logger.LOG_LEVEL`` is picked up.
    """
    _instances = {}

    def __call__(cls, name, *args, **kwargs):
        key = (cls, name)
        if key not in cls._instances:
            cls._instances[key] = super(Singleton, cls).__call__(
                name, *args, **kwargs)
        else:
            cls._instances[key].__init__(name, *args, **kwargs)

        return cls._instances[key]

    @classmethod
    def instances(mcs):
        """all loggers created so far"""
        return list(mcs._instances.values())


class Logger(metaclass=Singleton):
    """Colored logging proxy around :class:`logging.Logger`.

    The levels are::

        0 - quiet (no output)
        1 - error
        2 - warning
        3 - info
        4 - debug

    All methods except :meth:`question` accept ``%``-style arguments.

    Example:
        >>> log = Logger(__name__)
        >>> log.info("applying %s", "demo.yml")
        [~] applying demo.yml
        >>> log.success("done")
        [+] done

    Attributes:
        LOG_LEVEL (int): the level used by every newly created logger.
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.name = name
        self.logger = get_logger(name)

    @classmethod
    def set_global_level(cls, level):
        """Set the verbosity of all existing and future loggers."""
        cls.LOG_LEVEL = to_level(level)
        for instance in Singleton.instances():
            set_level(instance.logger, cls.LOG_LEVEL)

    @property
    def level(self):
        """The Python level of the wrapped logger, 0 if disabled."""
        if self.logger.disabled:
            return 0

        return self.logger.level

    @level.setter
    def level(self, level):
        set_level(self.logger, level)

    @property
    def handlers(self):
        """handlers of the wrapped logger"""
        return self.logger.handlers

    def error(self, msg, *args, color=True, **kwargs):
        """Log in red with a ``[-]`` prefix."""
        if color:
            msg = bad(red(msg))

        self.logger.error(msg, *args, **kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        """Log in yellow with a ``[!]`` prefix."""
        if color:
            msg = infomsg(yellow(msg))

        self.logger.warning(msg, *args, **kwargs)

    def warn(self, msg, *args, color=True, **kwargs):
        """Alias of :meth:`warning`."""
        self.warning(msg, *args, color=color, **kwargs)

    def info(self, msg, *args, color=True, **kwargs):
        """Log in grey with a ``[~]`` prefix."""
        if color:
            msg = run(grey(msg))

        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        """Log in grey, prefixed with the current time."""
        if color:
            now = time.strftime("%Y%m%d-%H%M%S")
            msg = grey(f"[{now}] {msg}")

        self.logger.debug(msg, *args, **kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """Log a success on info level, green with a ``[+]`` prefix."""
        if color:
            msg = good(green(msg))

        self.logger.info(msg, *args, **kwargs)

    @staticmethod
    def question(msg, color=True):
        """Print a question, regardless of the log level."""
        if color:
            msg = que(msg)

        print(msg)
