import os
import stat
import unittest

import pytest

from k3sboot.util.util import (name_validation, retry, wait_for, WaitTimeout,
                               private_key_path, write_file)
from k3sboot.util.net import is_cidr, cidr_contains

from .testdata import NAUGHTY_STRINGS


class FakeClock:
    """a clock that only moves when someone sleeps"""
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class Test_name_validation(unittest.TestCase):
    def test_names(self):
        """test name_validation func using different cluster-names"""
        for cluster_name in ["example", "11-04-2019-example",
                             "example-11-04-2019", "K3S"]:
            assert name_validation(cluster_name) == cluster_name

        # assert this raises system exit
        with self.assertRaises(SystemExit):
            name_validation("bad" * 250)

        with self.assertRaises(SystemExit):
            name_validation("bad:)chars")

    def test_naughty_strings(self):
        for cluster_name in NAUGHTY_STRINGS:
            if cluster_name in ("true", "then"):
                continue
            with self.assertRaises(SystemExit) as ctx:
                name_validation(cluster_name)
            assert ctx.exception.code == 2


def test_wait_for_returns_first_truthy_value():
    clock = FakeClock()
    answers = iter([None, False, "ready"])

    result = wait_for(lambda: next(answers), 60, clock=clock,
                      sleep=clock.sleep)

    assert result == "ready"
    assert clock.sleeps == [2, 4]


def test_wait_for_backoff_is_capped():
    clock = FakeClock()

    with pytest.raises(WaitTimeout) as err:
        wait_for(lambda: False, 100, "nothing", delay=2, backoff=2,
                 max_delay=30, clock=clock, sleep=clock.sleep)

    assert clock.sleeps[:5] == [2, 4, 8, 16, 30]
    assert max(clock.sleeps) == 30
    # the last pause ends exactly at the deadline
    assert sum(clock.sleeps) == 100
    assert err.value.description == "nothing"
    assert err.value.elapsed == 100
    assert "nothing" in str(err.value)


def test_wait_for_zero_timeout_polls_once():
    clock = FakeClock()
    calls = []

    def condition():
        calls.append(1)
        return False

    with pytest.raises(WaitTimeout):
        wait_for(condition, 0, clock=clock, sleep=clock.sleep)

    assert calls == [1]
    assert clock.sleeps == []


def test_wait_for_logs_progress():
    clock = FakeClock()
    answers = iter([False, True])
    messages = []

    wait_for(lambda: next(answers), 10, "the node", clock=clock,
             sleep=clock.sleep, logger=messages.append)

    assert len(messages) == 1
    assert "the node" in messages[0]


def test_retry(monkeypatch):
    monkeypatch.setattr("k3sboot.util.util.time.sleep", lambda x: None)
    calls = []

    @retry(ValueError, tries=3, delay=1, logger=calls.append)
    def flaky():
        if len(calls) < 2:
            raise ValueError("not yet")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 2


def test_retry_gives_up(monkeypatch):
    monkeypatch.setattr("k3sboot.util.util.time.sleep", lambda x: None)

    @retry(ValueError, tries=2, delay=1, logger=lambda msg: None)
    def broken():
        raise ValueError("never")

    with pytest.raises(ValueError):
        broken()


def test_private_key_path():
    assert private_key_path("/home/op/.ssh/demo.pub") == "/home/op/.ssh/demo"
    assert private_key_path("/home/op/.ssh/demo") == "/home/op/.ssh/demo"


def test_write_file_mode(tmp_path):
    path = tmp_path / "secret.txt"
    path.write_text("old")
    os.chmod(path, 0o644)

    write_file(str(path), "new")

    assert path.read_text() == "new"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_net():
    assert is_cidr("10.0.0.0/16")
    assert not is_cidr("10.0.0.1")
    assert not is_cidr("nonsense/12")
    assert cidr_contains("10.0.0.0/16", "10.0.1.0/24")
    assert not cidr_contains("10.0.0.0/16", "10.1.1.0/24")
