#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

"""
Promises for Python

This package provides a promise: a container for the eventual result of an
operation with a fixed life cycle (pending, then either fulfilled or rejected,
exactly once) and chaining operators that compose such results. Promises are
interoperable with any object exposing a ``then()`` method and run their
reactions through a scheduler supplied by the host:

* an asyncio event loop (:class:`AsyncioScheduler`)
* a trio run (:class:`TrioScheduler`)
* a dedicated worker thread (:class:`ThreadScheduler`)
* a queue drained by synchronous code (:class:`QueueScheduler`)

Reactions are never run inside the call that registers them, so code that
calls :meth:`Promise.then` always finishes before any of its reactions start.
"""

from __future__ import annotations

__author__: str = "Ilya Egorov <0x42005e1f@gmail.com>"
__version__: str = "0.1.0"

from ._errors import (
    InvalidStateError as InvalidStateError,
    RejectionError as RejectionError,
)
from ._exports import export
from ._interop import (
    denodeify as denodeify,
    nodeify as nodeify,
)
from ._libraries import (
    AsyncLibraryNotFoundError as AsyncLibraryNotFoundError,
    current_async_library as current_async_library,
)
from ._promise import (
    Promise as Promise,
    PromiseState as PromiseState,
    Thenable as Thenable,
    isthenable as isthenable,
)
from ._schedulers import (
    AsyncioScheduler as AsyncioScheduler,
    QueueScheduler as QueueScheduler,
    Scheduler as Scheduler,
    ThreadScheduler as ThreadScheduler,
    TrioScheduler as TrioScheduler,
    current_scheduler as current_scheduler,
    default_scheduler as default_scheduler,
)

# prepare for external use
export(globals())

del export
