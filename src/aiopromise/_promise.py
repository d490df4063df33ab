#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

import enum
import sys

from _thread import allocate_lock
from functools import partial
from logging import Logger, getLogger
from typing import (
    TYPE_CHECKING,
    Any,
    Final,
    Generic,
    Protocol,
    runtime_checkable,
)

from ._errors import InvalidStateError, as_exception
from ._libraries import current_async_library
from ._schedulers import Scheduler, current_scheduler

if sys.version_info >= (3, 13):
    from typing import TypeVar
else:
    from typing_extensions import TypeVar

if sys.version_info >= (3, 9):
    from collections.abc import Callable, Generator, Iterable
else:
    from typing import Callable, Generator, Iterable

if TYPE_CHECKING:
    if sys.version_info >= (3, 11):
        from typing import Self
    else:
        from typing_extensions import Self

LOGGER: Final[Logger] = getLogger(__name__)

_T = TypeVar("_T", default=Any)

_Reaction = Callable[["PromiseState", Any], object]


class PromiseState(enum.Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


_PENDING: Final = PromiseState.PENDING
_FULFILLED: Final = PromiseState.FULFILLED
_REJECTED: Final = PromiseState.REJECTED


@runtime_checkable
class Thenable(Protocol):
    """
    Anything that can be assimilated by a promise.

    Objects with a callable ``then(on_fulfilled, on_rejected)`` member are
    treated as promises regardless of their type, which allows bridging
    foreign promise implementations without explicit conversion.

    This protocol is meant for annotations. Like any runtime-checkable
    protocol, :func:`isinstance` only checks that ``then`` exists, so use
    :func:`isthenable` to check that it is callable as well.
    """

    __slots__ = ()

    def then(
        self,
        on_fulfilled: Callable[[Any], object] | None = None,
        on_rejected: Callable[[Any], object] | None = None,
        /,
    ) -> object: ...


def isthenable(obj: object, /) -> bool:
    """
    Return :data:`True` if *obj* exposes a callable ``then`` member.

    This is the check promise resolution uses to decide whether a value is
    followed or becomes the fulfillment value as is.
    """

    try:
        return callable(getattr(obj, "then", None))
    except Exception:  # a broken descriptor is not a capability
        return False


def _then_reaction(
    derived: Promise[Any],
    on_fulfilled: Callable[[Any], object] | None,
    on_rejected: Callable[[Any], object] | None,
    state: PromiseState,
    result: Any,
    /,
) -> None:
    if state is _FULFILLED:
        handler = on_fulfilled
    else:
        handler = on_rejected

    if not callable(handler):
        derived._settle(state, result)

        return

    try:
        value = handler(result)
    except Exception as exc:
        derived._settle(_REJECTED, exc)
    else:
        derived._resolve_with(value)


def _call_soon(
    scheduler: Scheduler,
    callback: Callable[..., object],
    /,
    *args: Any,
) -> None:
    try:
        scheduler.call_soon(callback, *args)
    except Exception:  # e.g. a closed event loop
        LOGGER.exception("cannot schedule %r on %r", callback, scheduler)


def _errback(
    callback: Callable[[Any, Any], object],
    reason: Any,
    /,
) -> None:
    callback(reason, None)


class _Gatherer:
    __slots__ = (
        "_lock",
        "_promise",
        "_remaining",
        "_results",
    )

    def __init__(self, /, promise: Promise[Any], count: int) -> None:
        self._lock = allocate_lock()
        self._promise = promise
        self._remaining = count
        self._results = [None] * count

    def react(self, index: int, state: PromiseState, result: Any, /) -> None:
        if state is _REJECTED:
            self._promise._settle(state, result)

            return

        with self._lock:
            self._results[index] = result
            self._remaining -= 1

            completed = not self._remaining

        if completed:
            self._promise._settle(_FULFILLED, self._results)


class Promise(Generic[_T]):
    """
    The eventual result of an operation.

    A promise starts out pending and settles at most once, either fulfilled
    with a value or rejected with a reason. Consumers register reactions with
    :meth:`then` (or :meth:`done` at the end of a chain), which are always
    run later by the promise's scheduler and never inside the registering
    call, in the order they were registered.

    The *executor* is called immediately with two callbacks, ``fulfill`` and
    ``reject``. Only the first call to either of them has an effect. Calling
    ``fulfill`` with a thenable makes the promise follow it. If the executor
    raises an exception before settling the promise, the promise is rejected
    with it.

    Example:
        >>> scheduler = aiopromise.QueueScheduler()
        >>> promise = aiopromise.Promise(
        ...     lambda fulfill, reject: fulfill(21),
        ...     scheduler=scheduler,
        ... )
        >>> doubled = promise.then(lambda value: value * 2)
        >>> doubled.state
        <PromiseState.PENDING: 'pending'>
        >>> scheduler.run()
        1
        >>> doubled.value
        42
    """

    __slots__ = (
        "__weakref__",
        "_lock",
        "_reactions",
        "_resolved",
        "_result",
        "_scheduler",
        "_state",
    )

    def __init__(
        self,
        executor: Callable[
            [Callable[[Any], None], Callable[[Any], None]],
            object,
        ],
        /,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        if not callable(executor):
            msg = f"executor must be callable, not {executor!r}"
            raise TypeError(msg)

        self._setup(scheduler)

        try:
            executor(self._fulfill, self._reject)
        except Exception as exc:
            self._reject(exc)

    def _setup(self, scheduler: Scheduler | None, /) -> None:
        if scheduler is None:
            scheduler = current_scheduler()

        self._lock = allocate_lock()
        self._reactions = []
        self._resolved = False
        self._result = None
        self._scheduler = scheduler
        self._state = _PENDING

    @classmethod
    def _pending(cls, scheduler: Scheduler | None, /) -> Self:
        self = object.__new__(cls)
        self._setup(scheduler)

        return self

    def __reduce__(self, /) -> Any:
        msg = f"cannot reduce {self!r}"
        raise TypeError(msg)

    def __repr__(self, /) -> str:
        cls = self.__class__
        cls_repr = f"{cls.__module__}.{cls.__qualname__}"

        state = self._state

        if state is _PENDING:
            extra = f"pending, reactions={len(self._reactions or ())}"
        else:
            extra = f"{state.value} {self._result!r}"

        return f"<{cls_repr} object at {id(self):#x} [{extra}]>"

    def __await__(self, /) -> Generator[Any, Any, _T]:
        return self.wait().__await__()

    def _lock_in(self, /) -> bool:
        with self._lock:
            if self._resolved:
                return False

            self._resolved = True

        return True

    def _fulfill(self, value: Any = None, /) -> None:
        if self._lock_in():
            self._resolve_with(value)

    def _reject(self, reason: Any = None, /) -> None:
        if self._lock_in():
            self._settle(_REJECTED, reason)

    def _resolve_with(self, value: Any, /) -> None:
        if value is self:
            msg = "promise cannot be resolved with itself"
            self._settle(_REJECTED, TypeError(msg))

            return

        if isinstance(value, Promise):
            value._react(self._settle)

            return

        try:
            then = getattr(value, "then", None)
        except Exception as exc:
            self._settle(_REJECTED, exc)

            return

        if callable(then):
            try:
                self._scheduler.call_soon(self._assimilate, then)
            except Exception as exc:
                self._settle(_REJECTED, exc)
        else:
            self._settle(_FULFILLED, value)

    def _assimilate(self, then: Callable[..., object], /) -> None:
        # a foreign thenable may call its callbacks any number of times, and
        # may raise after calling them, so only the first signal counts
        once = allocate_lock()

        def resolve(value: Any = None, /) -> None:
            if once.acquire(False):
                self._resolve_with(value)

        def reject(reason: Any = None, /) -> None:
            if once.acquire(False):
                self._settle(_REJECTED, reason)

        try:
            then(resolve, reject)
        except Exception as exc:
            reject(exc)

    def _settle(self, state: PromiseState, result: Any, /) -> None:
        with self._lock:
            if self._state is not _PENDING:
                return

            self._state = state
            self._result = result

            reactions, self._reactions = self._reactions, None

            # scheduling under the lock keeps the registration order when
            # another thread registers right after the transition
            for reaction in reactions:
                _call_soon(self._scheduler, reaction, state, result)

    def _react(self, reaction: _Reaction, /) -> None:
        with self._lock:
            if self._state is _PENDING:
                self._reactions.append(reaction)
            else:
                _call_soon(
                    self._scheduler,
                    reaction,
                    self._state,
                    self._result,
                )

    def _report_rejection(self, state: PromiseState, result: Any, /) -> None:
        if state is _REJECTED:
            self._scheduler.report_error(as_exception(result))

    @property
    def state(self, /) -> PromiseState:
        """
        The current state of the promise.

        Polling is not part of the chaining contract, register a reaction
        with :meth:`then` instead wherever possible.
        """

        return self._state

    @property
    def value(self, /) -> _T:
        """
        The value of a fulfilled promise.

        Raises:
          InvalidStateError:
            if the promise is not fulfilled.
        """

        if self._state is not _FULFILLED:
            msg = f"promise is {self._state.value}, not fulfilled"
            raise InvalidStateError(msg)

        return self._result

    @property
    def reason(self, /) -> Any:
        """
        The reason of a rejected promise.

        Raises:
          InvalidStateError:
            if the promise is not rejected.
        """

        if self._state is not _REJECTED:
            msg = f"promise is {self._state.value}, not rejected"
            raise InvalidStateError(msg)

        return self._result

    @property
    def scheduler(self, /) -> Scheduler:
        return self._scheduler

    def then(
        self,
        on_fulfilled: Callable[[_T], object] | None = None,
        on_rejected: Callable[[Any], object] | None = None,
        /,
    ) -> Promise[Any]:
        """
        Register reactions and return a promise for their result.

        The returned promise:

        * takes over the state of this promise if the matching reaction is
          absent;
        * is fulfilled with the value returned by the reaction;
        * follows the returned thenable if the reaction returns one;
        * is rejected with the exception raised by the reaction.
        """

        derived = self._pending(self._scheduler)

        self._react(
            partial(_then_reaction, derived, on_fulfilled, on_rejected)
        )

        return derived

    def catch(self, on_rejected: Callable[[Any], object], /) -> Promise[Any]:
        return self.then(None, on_rejected)

    def done(
        self,
        on_fulfilled: Callable[[_T], object] | None = None,
        on_rejected: Callable[[Any], object] | None = None,
        /,
    ) -> None:
        """
        Register reactions that end the chain.

        Works like :meth:`then`, but returns nothing. A rejection that
        reaches this point unhandled, including an exception raised by the
        reactions themselves, is passed to the scheduler's
        :meth:`~Scheduler.report_error` instead of being silently dropped.
        """

        if on_fulfilled is None and on_rejected is None:
            promise = self
        else:
            promise = self.then(on_fulfilled, on_rejected)

        promise._react(promise._report_rejection)

    def nodeify(
        self,
        callback: Callable[[Any, Any], object] | None = None,
        /,
    ) -> Self | None:
        """
        Pass the outcome to a callback of the form ``callback(err, result)``.

        Without a callback the promise itself is returned, which lets
        callback-style APIs return promises to callers that pass none.
        """

        if callback is None:
            return self

        self.done(partial(callback, None), partial(_errback, callback))

        return None

    async def wait(self, /) -> _T:
        """
        Wait for the promise to settle in the current async library (asyncio
        or trio).

        Returns:
          The fulfillment value.

        Raises:
          BaseException:
            the rejection reason (wrapped in :class:`RejectionError` if it is
            not an exception).
        """

        if self._state is _PENDING:
            library = current_async_library()

            if library == "asyncio":
                await self._asyncio_wait()
            elif library == "trio":
                await self._trio_wait()
            else:
                msg = f"unsupported async library {library!r}"
                raise RuntimeError(msg)

        if self._state is _FULFILLED:
            return self._result

        exc = as_exception(self._result)

        try:
            raise exc
        finally:
            del exc

    async def _asyncio_wait(self, /) -> None:
        from asyncio import Event, _get_running_loop, get_running_loop

        loop = get_running_loop()
        event = Event()

        def wake(state: PromiseState, result: Any, /) -> None:
            if _get_running_loop() is loop:
                event.set()
            else:
                try:
                    loop.call_soon_threadsafe(event.set)
                except RuntimeError:  # event loop is closed
                    pass

        self._react(wake)

        await event.wait()

    async def _trio_wait(self, /) -> None:
        from trio import Event, RunFinishedError
        from trio.lowlevel import current_trio_token

        token = current_trio_token()
        event = Event()

        def wake(state: PromiseState, result: Any, /) -> None:
            try:
                token.run_sync_soon(event.set)
            except RunFinishedError:
                pass

        self._react(wake)

        await event.wait()

    @classmethod
    def resolve(
        cls,
        value: Any = None,
        /,
        *,
        scheduler: Scheduler | None = None,
    ) -> Promise[Any]:
        """
        Convert *value* to a promise.

        Promises are returned unchanged, other thenables are followed, and
        anything else becomes the value of a fulfilled promise.
        """

        if isinstance(value, cls):
            return value

        promise = cls._pending(scheduler)
        promise._resolve_with(value)

        return promise

    @classmethod
    def reject(
        cls,
        reason: Any,
        /,
        *,
        scheduler: Scheduler | None = None,
    ) -> Promise[Any]:
        promise = cls._pending(scheduler)
        promise._settle(_REJECTED, reason)

        return promise

    @classmethod
    def all(
        cls,
        iterable: Iterable[Any],
        /,
        *,
        scheduler: Scheduler | None = None,
    ) -> Promise[list[Any]]:
        """
        Combine promises into a promise for the list of their values.

        The list has the same order as *iterable*. Elements that are not
        thenables are treated as values of fulfilled promises. The combined
        promise is rejected with the reason of the first rejected input, the
        remaining inputs are left running. An empty *iterable* gives a
        promise fulfilled with an empty list.
        """

        if scheduler is None:
            scheduler = current_scheduler()

        promises = [
            cls.resolve(item, scheduler=scheduler) for item in iterable
        ]

        combined = cls._pending(scheduler)

        if not promises:
            combined._settle(_FULFILLED, [])

            return combined

        gatherer = _Gatherer(combined, len(promises))

        for index, promise in enumerate(promises):
            promise._react(partial(gatherer.react, index))

        return combined

    @classmethod
    def race(
        cls,
        iterable: Iterable[Any],
        /,
        *,
        scheduler: Scheduler | None = None,
    ) -> Promise[Any]:
        """
        Return a promise that settles like the first input to settle.

        An empty *iterable* gives a promise that stays pending forever.
        """

        if scheduler is None:
            scheduler = current_scheduler()

        combined = cls._pending(scheduler)

        for item in iterable:
            cls.resolve(item, scheduler=scheduler)._react(combined._settle)

        return combined
