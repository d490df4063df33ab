#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

import sys

from typing import Literal

from sniffio import (
    AsyncLibraryNotFoundError as AsyncLibraryNotFoundError,
    thread_local as current_async_library_tlocal,
)
from wrapt import when_imported

from ._utils import replaces

if sys.version_info >= (3, 11):
    from typing import overload
else:
    from typing_extensions import overload


def _asyncio_running() -> bool:
    return False


@when_imported("asyncio")
def _(_):
    @replaces(globals())
    def _asyncio_running():
        # asyncio.get_running_loop() raises a RuntimeError when there is no
        # running loop, which is slow to handle, so we use the private
        # asyncio._get_running_loop() that returns None instead.

        from asyncio import _get_running_loop

        if sys.version_info >= (3, 12):

            @replaces(globals())
            def _asyncio_running():
                return _get_running_loop() is not None

        else:
            from sniffio import current_async_library_cvar

            @replaces(globals())
            def _asyncio_running():
                return (
                    current_async_library_cvar.get() == "asyncio"
                    or _get_running_loop() is not None
                )

        return _asyncio_running()


@overload
def current_async_library(*, failsafe: Literal[False] = False) -> str: ...
@overload
def current_async_library(*, failsafe: Literal[True]) -> str | None: ...
def current_async_library(*, failsafe=False):
    """
    Detect which async library is currently running.

    Libraries that register themselves in :data:`sniffio.thread_local` (such
    as trio) are detected through it, asyncio is detected through its running
    event loop.

    Args:
      failsafe:
        Unless set to :data:`True`, the function will raise an exception when
        there is no current async library. Otherwise the function returns
        :data:`None` in that case.

    Returns:
      A string like ``"trio"`` or :data:`None`.

    Raises:
      AsyncLibraryNotFoundError:
        if the current async library was not recognized.
    """

    if (name := current_async_library_tlocal.name) is not None:
        return name

    if _asyncio_running():
        return "asyncio"

    if failsafe:
        return None

    msg = "unknown async library, or not in async context"
    raise AsyncLibraryNotFoundError(msg)
