#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: 0BSD

import asyncio
import logging
import threading

from concurrent.futures import ThreadPoolExecutor
from functools import partial

import pytest

import aiopromise


class TestQueueScheduler:
    factory = aiopromise.QueueScheduler

    def test_base(self, /):
        calls = []

        scheduler = self.factory()
        scheduler.call_soon(calls.append, 1)
        scheduler.call_soon(calls.append, 2)

        assert not calls
        assert len(scheduler) == 2

        assert scheduler.run() == 2
        assert calls == [1, 2]
        assert len(scheduler) == 0
        assert scheduler.run() == 0

    def test_nested_scheduling(self, /):
        calls = []

        scheduler = self.factory()

        def first():
            calls.append("first")
            scheduler.call_soon(calls.append, "third")

        scheduler.call_soon(first)
        scheduler.call_soon(calls.append, "second")

        assert scheduler.run() == 3
        assert calls == ["first", "second", "third"]

    def test_report_error(self, /):
        calls = []
        exc = ValueError("x")

        scheduler = self.factory()
        scheduler.report_error(exc)
        scheduler.call_soon(calls.append, 1)

        with pytest.raises(ValueError) as excinfo:
            scheduler.run()

        assert excinfo.value is exc
        assert not calls
        assert len(scheduler) == 1

        scheduler.run()

        assert calls == [1]

    def test_clear(self, /):
        scheduler = self.factory()
        scheduler.call_soon(print)
        scheduler.clear()

        assert scheduler.run() == 0

    def test_repr(self, /):
        scheduler = self.factory()
        scheduler.call_soon(print)

        assert repr(scheduler).startswith("<aiopromise.QueueScheduler() at")
        assert repr(scheduler).endswith("[queued=1]>")


class TestThreadScheduler:
    factory = aiopromise.ThreadScheduler

    def test_base(self, /):
        results = []
        finished = threading.Event()

        def react(value):
            results.append((value, threading.current_thread().name))
            finished.set()

        with self.factory("worker") as scheduler:
            promise = aiopromise.Promise.resolve(1, scheduler=scheduler)
            promise.then(lambda value: value + 1).then(react)

            assert finished.wait(5)

        assert results == [(2, "worker")]

    def test_report_error(self, /, caplog):
        exc = ValueError("x")

        with caplog.at_level(logging.ERROR, logger="aiopromise"):
            with self.factory() as scheduler:
                aiopromise.Promise.reject(exc, scheduler=scheduler).done()

        records = [
            record
            for record in caplog.records
            if record.name == "aiopromise._schedulers"
        ]

        assert len(records) == 1
        assert records[0].exc_info[1] is exc

    def test_callback_raises(self, /, caplog):
        calls = []

        def broken():
            raise RuntimeError

        with caplog.at_level(logging.ERROR, logger="aiopromise"):
            with self.factory() as scheduler:
                scheduler.call_soon(broken)
                scheduler.call_soon(calls.append, 1)

        assert calls == [1]
        assert any(
            record.getMessage().startswith("exception calling callback")
            for record in caplog.records
        )

    def test_restart(self, /):
        calls = []

        scheduler = self.factory()

        assert repr(scheduler).endswith("[stopped]>")

        scheduler.call_soon(calls.append, 1)

        assert repr(scheduler).endswith("[running]>")

        scheduler.shutdown()

        assert repr(scheduler).endswith("[stopped]>")

        scheduler.call_soon(calls.append, 2)
        scheduler.shutdown()

        assert calls == [1, 2]

    def test_shutdown_from_worker(self, /):
        gate = threading.Event()

        scheduler = self.factory()
        scheduler.call_soon(gate.wait)
        scheduler.call_soon(scheduler.shutdown)

        thread = scheduler._thread
        gate.set()
        thread.join(5)

        assert not thread.is_alive()

    @pytest.mark.filterwarnings(
        "ignore::pytest.PytestUnhandledThreadExceptionWarning"
    )
    def test_callback_raises_base_exception(self, /):
        class Stop(BaseException):
            pass

        def stop():
            raise Stop

        calls = []
        gate = threading.Event()

        scheduler = self.factory()
        scheduler.call_soon(gate.wait)

        thread = scheduler._thread

        scheduler.call_soon(stop)
        scheduler.call_soon(calls.append, 1)

        gate.set()
        thread.join(5)

        assert not thread.is_alive()

        scheduler.call_soon(calls.append, 2)
        scheduler.shutdown()

        assert calls == [1, 2]
        assert repr(scheduler).endswith("[stopped]>")

    def test_call_soon_shutdown_threadsafe(self, /, test_thread_safety):
        for _ in range(100):
            calls = []

            scheduler = self.factory()
            scheduler.call_soon(calls.append, 0)

            test_thread_safety(
                partial(scheduler.call_soon, calls.append, 1),
                scheduler.shutdown,
            )

            scheduler.shutdown()

            assert sorted(calls) == [0, 1]


class TestAsyncioScheduler:
    factory = aiopromise.AsyncioScheduler

    def test_base(self, /):
        async def main():
            loop = asyncio.get_running_loop()
            scheduler = self.factory()

            assert scheduler.loop is loop
            assert scheduler == self.factory(loop)
            assert hash(scheduler) == hash(self.factory(loop))

            results = []
            finished = asyncio.Event()

            def react(value):
                results.append(value)
                finished.set()

            with ThreadPoolExecutor(1) as executor:
                executor.submit(scheduler.call_soon, react, 1).result()

            await finished.wait()

            assert results == [1]

        asyncio.run(main())

    def test_report_error(self, /):
        contexts = []
        exc = ValueError("x")

        async def main():
            loop = asyncio.get_running_loop()
            loop.set_exception_handler(
                lambda loop, context: contexts.append(context)
            )

            aiopromise.Promise.reject(exc).done()

            await asyncio.sleep(0)
            await asyncio.sleep(0)

        asyncio.run(main())

        assert len(contexts) == 1
        assert contexts[0]["exception"] is exc

    def test_explicit_loop(self, /):
        loop = asyncio.new_event_loop()

        try:
            scheduler = self.factory(loop)
            promise = aiopromise.Promise.resolve(1, scheduler=scheduler)
            derived = promise.then(lambda value: value + 1)

            assert derived.state is aiopromise.PromiseState.PENDING

            loop.run_until_complete(asyncio.sleep(0))

            assert derived.value == 2
        finally:
            loop.close()


class TestTrioScheduler:
    factory = aiopromise.TrioScheduler

    def test_base(self, /):
        trio = pytest.importorskip("trio")

        async def main():
            token = trio.lowlevel.current_trio_token()
            scheduler = self.factory()

            assert scheduler.token is token
            assert scheduler == self.factory(token)

            promise = aiopromise.Promise.resolve(1, scheduler=scheduler)
            derived = promise.then(lambda value: value + 1)

            assert derived.state is aiopromise.PromiseState.PENDING
            assert await derived == 2

        trio.run(main)

    def test_report_error(self, /, caplog):
        trio = pytest.importorskip("trio")

        exc = ValueError("x")

        async def main():
            aiopromise.Promise.reject(exc).done()

            # reactions run in order, so this one runs after the report
            await aiopromise.Promise.resolve(None).then(lambda value: value)

        with caplog.at_level(logging.ERROR, logger="aiopromise"):
            trio.run(main)

        records = [
            record
            for record in caplog.records
            if record.name == "aiopromise._schedulers"
        ]

        assert [record.exc_info[1] for record in records] == [exc]


class TestCurrentScheduler:
    def test_sync(self, /, scheduler):
        assert aiopromise.current_scheduler() is scheduler
        assert aiopromise.default_scheduler() is scheduler

    def test_default_queue_per_thread(self, /, monkeypatch):
        monkeypatch.setattr(
            aiopromise._schedulers,
            "SYNC_SCHEDULER_DEFAULT",
            "queue",
        )

        scheduler = aiopromise.default_scheduler()

        assert isinstance(scheduler, aiopromise.QueueScheduler)
        assert aiopromise.default_scheduler() is scheduler

        with ThreadPoolExecutor(1) as executor:
            other = executor.submit(aiopromise.default_scheduler).result()

        assert isinstance(other, aiopromise.QueueScheduler)
        assert other is not scheduler

    def test_default_thread(self, /, monkeypatch):
        monkeypatch.setattr(
            aiopromise._schedulers,
            "SYNC_SCHEDULER_DEFAULT",
            "thread",
        )
        monkeypatch.setattr(aiopromise._schedulers, "_thread_scheduler", None)

        scheduler = aiopromise.default_scheduler()

        try:
            assert isinstance(scheduler, aiopromise.ThreadScheduler)
            assert aiopromise.default_scheduler() is scheduler

            with ThreadPoolExecutor(1) as executor:
                future = executor.submit(aiopromise.default_scheduler)

                assert future.result() is scheduler
        finally:
            scheduler.shutdown()

    def test_default_invalid(self, /, monkeypatch):
        monkeypatch.setattr(
            aiopromise._schedulers,
            "SYNC_SCHEDULER_DEFAULT",
            "eventlet",
        )

        with pytest.raises(ValueError):
            aiopromise.default_scheduler()


async def test_current_scheduler(library):
    scheduler = aiopromise.current_scheduler()

    if library == "asyncio":
        assert scheduler == aiopromise.AsyncioScheduler(
            asyncio.get_running_loop()
        )
    else:
        import trio

        assert scheduler == aiopromise.TrioScheduler(
            trio.lowlevel.current_trio_token()
        )
