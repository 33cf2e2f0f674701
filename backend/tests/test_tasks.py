import asyncio
import threading

import pytest

from paywatch.tasks import PeriodicTask, TaskState


class CountingTask(PeriodicTask):
    name = "counting"

    def __init__(self, interval=0.01, fail_initialize=False, fail_ticks=0):
        super().__init__(interval)
        self.fail_initialize = fail_initialize
        self.fail_ticks = fail_ticks
        self.initialized = False
        self.ticks = 0
        self.threads = set()

    def initialize(self):
        if self.fail_initialize:
            raise RuntimeError("rpc unreachable")
        self.initialized = True

    def tick(self):
        self.threads.add(threading.get_ident())
        self.ticks += 1
        if self.ticks <= self.fail_ticks:
            raise RuntimeError("transient")


def run(coro):
    return asyncio.run(coro)


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        CountingTask(interval=0)


def test_start_ticks_until_stopped():
    task = CountingTask()

    async def scenario():
        await task.start()
        assert task.state == TaskState.RUNNING
        await asyncio.sleep(0.1)
        await task.stop()

    run(scenario())
    assert task.initialized
    assert task.ticks >= 2
    assert task.state == TaskState.STOPPED
    assert threading.get_ident() not in task.threads


def test_no_tick_after_stop():
    task = CountingTask()

    async def scenario():
        await task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        count = task.ticks
        await asyncio.sleep(0.05)
        return count

    assert run(scenario()) == task.ticks


def test_stop_wakes_a_long_sleep():
    task = CountingTask(interval=60)

    async def scenario():
        await task.start()
        await asyncio.wait_for(task.stop(), timeout=1)

    run(scenario())
    assert task.ticks == 0


def test_failures_do_not_kill_the_loop():
    task = CountingTask(fail_initialize=True, fail_ticks=2)

    async def scenario():
        await task.start()
        await asyncio.sleep(0.15)
        await task.stop()

    run(scenario())
    assert not task.initialized
    assert task.ticks > 2


def test_start_and_stop_are_idempotent():
    task = CountingTask()

    async def scenario():
        await task.start()
        await task.start()
        await task.stop()
        await task.stop()

    run(scenario())
    assert task.state == TaskState.STOPPED
