#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: 0BSD

import inspect
import sys
import threading

from concurrent.futures import ThreadPoolExecutor
from functools import partial, wraps

import pytest

import aiopromise

ASYNC_LIBRARIES = ("asyncio", "trio")


def _run_decorator(func):
    @wraps(func)
    def wrapper(*args, library, **kwargs):
        if library == "asyncio":
            import asyncio

            return asyncio.run(func(*args, library=library, **kwargs))

        if library == "trio":
            import trio

            return trio.run(partial(func, *args, library=library, **kwargs))

        msg = f"unsupported async library {library!r}"
        raise RuntimeError(msg)

    return wrapper


@pytest.fixture
def library(request):
    pytest.importorskip(request.param)

    return request.param


@pytest.fixture
def scheduler(monkeypatch):
    scheduler = aiopromise.QueueScheduler()

    # make it the default for the current thread regardless of the
    # environment, so that promises created without an explicit scheduler
    # land in it as well
    monkeypatch.setattr(
        aiopromise._schedulers,
        "SYNC_SCHEDULER_DEFAULT",
        "queue",
    )
    monkeypatch.setattr(
        aiopromise._schedulers._queue_scheduler_tlocal,
        "scheduler",
        scheduler,
    )

    yield scheduler

    scheduler.clear()


@pytest.fixture
def test_thread_safety():
    def _impl(*functions):
        barrier = threading.Barrier(len(functions))

        def _call(func):
            barrier.wait()

            return func()

        interval = sys.getswitchinterval()
        sys.setswitchinterval(min(1e-6, interval))

        try:
            with ThreadPoolExecutor(len(functions)) as executor:
                futures = [executor.submit(_call, f) for f in functions]

                return [future.result(timeout=6) for future in futures]
        finally:
            sys.setswitchinterval(interval)

    return _impl


def pytest_generate_tests(metafunc):
    if "library" in metafunc.fixturenames:
        if inspect.iscoroutinefunction(metafunc.function):
            metafunc.parametrize("library", ASYNC_LIBRARIES, indirect=True)


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "library" in item.fixturenames:
            if inspect.iscoroutinefunction(item.obj):
                item.obj = _run_decorator(item.obj)
