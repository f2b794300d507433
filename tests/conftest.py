"""
Pytest configuration and fixtures for the sort battle tests.
"""

import os
import random
from concurrent.futures import Future

import pytest
from hypothesis import Verbosity, settings

from channel import RecordingChannel
from config import BattleConfig
from models import ExecutionOutcome
from orchestrator import SessionOrchestrator
from registry import RoomRegistry

settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal, deadline=None)
settings.register_profile("ci", max_examples=200, verbosity=Verbosity.normal, deadline=None)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose, deadline=None)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


class ManualScheduler:
    """Timers that only fire when the test says so."""

    class Handle:
        def __init__(self, delay, fn, args):
            self.delay = delay
            self.fn = fn
            self.args = args
            self.cancelled = False

        def cancel(self):
            self.cancelled = True

    def __init__(self):
        self.handles = []

    def call_later(self, delay, fn, *args):
        handle = self.Handle(delay, fn, args)
        self.handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def run_next(self):
        pending = self.pending()
        if not pending:
            return False
        handle = pending[0]
        self.handles.remove(handle)
        handle.fn(*handle.args)
        return True

    def run_all(self, limit=100):
        for _ in range(limit):
            if not self.run_next():
                return


class InlinePool:
    """Runs submitted work on the calling thread."""

    def submit(self, fn, *args):
        future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class DeferredPool:
    """Holds submitted work until release() so tests control completion order."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        future = Future()
        self.jobs.append((future, fn, args))
        return future

    def release(self, index=0):
        future, fn, args = self.jobs.pop(index)
        future.set_result(fn(*args))
        return future.result()

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class FakeExecutor:
    """Interprets a few code keywords instead of spawning a sandbox."""

    def __init__(self, elapsed=None):
        self.elapsed = elapsed or {}
        self.calls = []

    def execute(self, participant_id, code, test_input, timeout_ms=None):
        self.calls.append((participant_id, code, tuple(test_input)))
        elapsed = self.elapsed.get(participant_id, 10)
        if code == "good":
            return ExecutionOutcome.success(participant_id, elapsed, sorted(test_input))
        if code == "unsorted":
            return ExecutionOutcome.success(participant_id, elapsed, list(test_input)[::-1])
        if code == "loop":
            return ExecutionOutcome.failure(participant_id, timeout_ms, "execution_timeout",
                                            f"Time limit exceeded ({timeout_ms}ms)")
        if code == "crash":
            raise OSError("cannot spawn sandbox")
        return ExecutionOutcome.failure(participant_id, elapsed, "runtime_fault", "ValueError: boom")


@pytest.fixture
def battle_config():
    return BattleConfig(array_length=20, countdown_ticks=3, tick_seconds=1.0,
                        submission_timeout_ms=2000, round_timeout_ms=10000)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def make_orchestrator(registry, channel, executor, battle_config, scheduler):
    def factory(pool=None, **overrides):
        options = dict(config=battle_config, scheduler=scheduler,
                       pool=pool or InlinePool(), rng=random.Random(7))
        options.update(overrides)
        return SessionOrchestrator(registry, channel, executor, **options)
    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
