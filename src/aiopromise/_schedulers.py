#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

import os
import sys

from _thread import allocate_lock
from collections import deque
from logging import Logger, getLogger
from queue import Empty, SimpleQueue
from threading import Thread, current_thread, local
from typing import TYPE_CHECKING, Any, Final, Protocol

from ._libraries import current_async_library

if sys.version_info >= (3, 9):
    from collections.abc import Callable
else:
    from typing import Callable

if TYPE_CHECKING:
    from asyncio import AbstractEventLoop
    from types import TracebackType

    from trio.lowlevel import TrioToken

    if sys.version_info >= (3, 11):
        from typing import Self
    else:
        from typing_extensions import Self

LOGGER: Final[Logger] = getLogger(__name__)

SYNC_SCHEDULER_DEFAULT: Final[str] = (
    os.getenv("AIOPROMISE_SYNC_SCHEDULER") or "queue"
)


class Scheduler(Protocol):
    """
    The host environment's deferred callback mechanism.

    Promises never call their reactions directly. They hand them to a
    scheduler, which must run them later (never inside the
    :meth:`call_soon` call itself) and in the order they were passed.
    """

    __slots__ = ()

    def call_soon(
        self,
        callback: Callable[..., object],
        /,
        *args: Any,
    ) -> object:
        """Arrange for ``callback(*args)`` to be called in a later turn."""
        ...

    def report_error(self, exc: BaseException, /) -> object:
        """Report an error that ended a promise chain unhandled."""
        ...


def _reraise(exc: BaseException, /) -> None:
    try:
        raise exc
    finally:
        del exc


class QueueScheduler:
    """
    A scheduler for synchronous code.

    Callbacks are queued in FIFO order and nothing runs until the host drains
    the queue with :meth:`run`. Unhandled errors are re-raised out of
    :meth:`run` at the position they were reported, leaving the rest of the
    queue intact.

    Example:
        >>> scheduler = QueueScheduler()
        >>> promise = aiopromise.Promise.resolve(42, scheduler=scheduler)
        >>> _ = promise.then(print)
        >>> scheduler.run()
        42
        1
    """

    __slots__ = (
        "__weakref__",
        "_callbacks",
    )

    def __init__(self, /) -> None:
        self._callbacks = deque()

    def __repr__(self, /) -> str:
        cls = self.__class__
        cls_repr = f"{cls.__module__}.{cls.__qualname__}"

        return f"<{cls_repr}() at {id(self):#x} [queued={len(self)}]>"

    def __len__(self, /) -> int:
        return len(self._callbacks)

    def call_soon(
        self,
        callback: Callable[..., object],
        /,
        *args: Any,
    ) -> None:
        self._callbacks.append((callback, args))

    def report_error(self, exc: BaseException, /) -> None:
        self._callbacks.append((_reraise, (exc,)))

    def run(self, /) -> int:
        """
        Run queued callbacks, including those queued while running, until the
        queue is empty.

        Returns:
          The number of callbacks that were run.
        """

        callbacks = self._callbacks
        count = 0

        while callbacks:
            try:
                callback, args = callbacks.popleft()
            except IndexError:  # drained by another thread
                break

            count += 1

            callback(*args)

        return count

    def clear(self, /) -> None:
        self._callbacks.clear()


class ThreadScheduler:
    """
    A scheduler that runs callbacks on a dedicated daemon thread.

    The worker thread is started on the first :meth:`call_soon` and stopped by
    :meth:`shutdown` (a later :meth:`call_soon` starts a new one). Errors are
    logged since there is nobody to raise them to.
    """

    __slots__ = (
        "__weakref__",
        "_lock",
        "_name",
        "_queue",
        "_thread",
    )

    def __init__(self, /, name: str = "aiopromise") -> None:
        self._lock = allocate_lock()
        self._name = name
        self._queue = None
        self._thread = None

    def __repr__(self, /) -> str:
        cls = self.__class__
        cls_repr = f"{cls.__module__}.{cls.__qualname__}"

        if self._thread is not None:
            extra = "running"
        else:
            extra = "stopped"

        return f"<{cls_repr}({self._name!r}) at {id(self):#x} [{extra}]>"

    def __enter__(self, /) -> Self:
        return self

    def __exit__(
        self,
        /,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.shutdown()

    def _run(self, queue: SimpleQueue, /) -> None:
        try:
            while (item := queue.get()) is not None:
                callback, args = item

                try:
                    callback(*args)
                except Exception:
                    LOGGER.exception("exception calling callback %r", callback)
                finally:
                    del item, callback, args
        finally:
            with self._lock:
                if abandoned := self._queue is queue:
                    self._queue = None
                    self._thread = None

            if abandoned:
                # no shutdown() was requested, hand what is left to a new
                # worker
                while True:
                    try:
                        item = queue.get_nowait()
                    except Empty:
                        break

                    self.call_soon(item[0], *item[1])

    def call_soon(
        self,
        callback: Callable[..., object],
        /,
        *args: Any,
    ) -> None:
        # a put outside the lock could land after the shutdown sentinel
        with self._lock:
            if (queue := self._queue) is None:
                queue = SimpleQueue()

                thread = Thread(
                    target=self._run,
                    args=(queue,),
                    name=self._name,
                    daemon=True,
                )
                thread.start()

                self._queue = queue
                self._thread = thread

            queue.put((callback, args))

    def report_error(self, exc: BaseException, /) -> None:
        LOGGER.error("unhandled error in promise chain", exc_info=exc)

    def shutdown(self, /, wait: bool = True) -> None:
        """
        Stop the worker thread after it has run the already queued callbacks.
        """

        with self._lock:
            queue, self._queue = self._queue, None
            thread, self._thread = self._thread, None

        if queue is not None:
            queue.put(None)

            if wait and thread is not current_thread():
                thread.join()


class AsyncioScheduler:
    """
    A scheduler that runs callbacks on an asyncio event loop.

    Callbacks may be scheduled from any thread.
    """

    __slots__ = (
        "__weakref__",
        "_loop",
    )

    def __init__(self, /, loop: AbstractEventLoop | None = None) -> None:
        if loop is None:
            from asyncio import get_running_loop

            loop = get_running_loop()

        self._loop = loop

    def __repr__(self, /) -> str:
        cls = self.__class__
        cls_repr = f"{cls.__module__}.{cls.__qualname__}"

        return f"{cls_repr}({self._loop!r})"

    def __eq__(self, /, other: object) -> bool:
        if isinstance(other, AsyncioScheduler):
            return self._loop is other._loop

        return NotImplemented

    def __hash__(self, /) -> int:
        return hash(self._loop)

    @property
    def loop(self, /) -> AbstractEventLoop:
        return self._loop

    def call_soon(
        self,
        callback: Callable[..., object],
        /,
        *args: Any,
    ) -> None:
        from asyncio import _get_running_loop

        loop = self._loop

        if _get_running_loop() is loop:
            loop.call_soon(callback, *args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def report_error(self, exc: BaseException, /) -> None:
        self._loop.call_exception_handler({
            "message": "Unhandled error in promise chain",
            "exception": exc,
        })


class TrioScheduler:
    """
    A scheduler that runs callbacks in a trio run.

    Callbacks may be scheduled from any thread. Errors are logged, since
    raising them inside the run would crash it.
    """

    __slots__ = (
        "__weakref__",
        "_token",
    )

    def __init__(self, /, token: TrioToken | None = None) -> None:
        if token is None:
            from trio.lowlevel import current_trio_token

            token = current_trio_token()

        self._token = token

    def __repr__(self, /) -> str:
        cls = self.__class__
        cls_repr = f"{cls.__module__}.{cls.__qualname__}"

        return f"{cls_repr}({self._token!r})"

    def __eq__(self, /, other: object) -> bool:
        if isinstance(other, TrioScheduler):
            return self._token is other._token

        return NotImplemented

    def __hash__(self, /) -> int:
        return hash(self._token)

    @property
    def token(self, /) -> TrioToken:
        return self._token

    def call_soon(
        self,
        callback: Callable[..., object],
        /,
        *args: Any,
    ) -> None:
        self._token.run_sync_soon(callback, *args)

    def report_error(self, exc: BaseException, /) -> None:
        LOGGER.error("unhandled error in promise chain", exc_info=exc)


class _SchedulerLocal(local):
    scheduler: QueueScheduler | None = None


_queue_scheduler_tlocal: _SchedulerLocal = _SchedulerLocal()

_thread_scheduler: ThreadScheduler | None = None
_thread_scheduler_lock = allocate_lock()


def default_scheduler() -> Scheduler:
    """
    Return the scheduler used outside of async contexts.

    Depending on the ``AIOPROMISE_SYNC_SCHEDULER`` environment variable, this
    is either a :class:`QueueScheduler` owned by the current thread
    (``"queue"``, the default) that the thread has to drain itself, or a
    :class:`ThreadScheduler` shared by the whole process (``"thread"``).

    Raises:
      ValueError:
        if the environment variable has an unsupported value.
    """

    global _thread_scheduler

    if SYNC_SCHEDULER_DEFAULT == "queue":
        if (scheduler := _queue_scheduler_tlocal.scheduler) is None:
            scheduler = _queue_scheduler_tlocal.scheduler = QueueScheduler()

        return scheduler

    if SYNC_SCHEDULER_DEFAULT == "thread":
        if (scheduler := _thread_scheduler) is None:
            with _thread_scheduler_lock:
                if (scheduler := _thread_scheduler) is None:
                    scheduler = _thread_scheduler = ThreadScheduler()

        return scheduler

    msg = (
        "AIOPROMISE_SYNC_SCHEDULER must be 'queue' or 'thread',"
        f" not {SYNC_SCHEDULER_DEFAULT!r}"
    )
    raise ValueError(msg)


def current_scheduler() -> Scheduler:
    """
    Return the scheduler of the running async library.

    Returns an :class:`AsyncioScheduler` inside asyncio, a
    :class:`TrioScheduler` inside trio, and :func:`default_scheduler`
    otherwise (including other async libraries).
    """

    library = current_async_library(failsafe=True)

    if library == "asyncio":
        return AsyncioScheduler()

    if library == "trio":
        return TrioScheduler()

    return default_scheduler()
