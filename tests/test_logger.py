import pytest

from k3sboot.util.logger import (Logger, LOG_LEVELS, DEFAULT_LOG_LEVEL,
                                 to_level)


@pytest.fixture(autouse=True)
def restore_level():
    yield
    Logger.set_global_level(DEFAULT_LOG_LEVEL)


def test_logger_default_state():
    assert Logger.LOG_LEVEL == DEFAULT_LOG_LEVEL


def test_logger_creation():
    for i in LOG_LEVELS:
        Logger.LOG_LEVEL = i
        log = Logger("test")
        assert log is not None
        assert log.LOG_LEVEL == i


def test_logger_is_singleton():
    assert Logger("test") is Logger("test")
    assert Logger("test") is not Logger("other")


def test_logger_fail():
    for i in [-1, 100, 23, 42]:
        Logger.LOG_LEVEL = i
        assert Logger.LOG_LEVEL == i

        with pytest.raises(ValueError):
            Logger("test")


def test_one_handler_per_name():
    Logger("test")
    Logger("test")
    assert len(Logger("test").handlers) == 1


def test_to_level():
    assert to_level("debug") == 4
    assert to_level("quiet") == 0
    assert to_level("2") == 2
    assert to_level(3) == 3

    for bad in ["loud", "5", -1]:
        with pytest.raises(ValueError):
            to_level(bad)


def test_quiet_disables():
    log = Logger("test")
    log.level = 0
    assert log.level == 0
    assert log.logger.disabled

    log.level = "debug"
    assert not log.logger.disabled


def test_set_global_level():
    log = Logger("test")
    Logger.set_global_level("error")
    assert Logger.LOG_LEVEL == 1
    assert log.level == 40


# Run tests with -s to verify the output:
# py.test -s tests/test_logger.py
def test_level_logging():
    for i in LOG_LEVELS:
        Logger.LOG_LEVEL = i
        log = Logger("test")

        msg = "The quick brown fox jumps over the lazy dog"
        msg2 = "-123.00"

        log.error(msg)
        log.error("%s: %s", msg, msg2, color=False)

        log.warning(msg)
        log.warn("%s: %s", msg, msg2, color=False)

        log.info(msg)
        log.info("%s: %s", msg, msg2, color=False)

        log.debug(msg)
        log.debug("%s: %s", msg, msg2, color=False)

        log.question(msg)
        log.question(msg, color=False)

        log.success(msg)
        log.success("%s: %s", msg, msg2, color=False)
