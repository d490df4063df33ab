#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

import sys

from functools import partial, update_wrapper
from typing import Any, TypeVar

if sys.version_info >= (3, 10):
    from typing import ParamSpec
else:
    from typing_extensions import ParamSpec

if sys.version_info >= (3, 9):
    from collections.abc import Callable
else:
    from typing import Callable

_T = TypeVar("_T")
_P = ParamSpec("_P")


def replaces(
    namespace: dict[str, Any],
    wrapper: Callable[_P, _T] | None = None,
    /,
) -> Any:
    """
    Replace the function of the same name in *namespace* with *wrapper*.

    Used to specialise a module-level function on first use: the stub looks
    up what it needs once and then rebinds its own name to the fast path, so
    that later calls skip the lookup entirely.

    Can be used as a decorator:

    .. code:: python

        @replaces(globals())
        def _asyncio_running():
            return _get_running_loop() is not None
    """

    if wrapper is None:
        return partial(replaces, namespace)

    wrapper = update_wrapper(wrapper, namespace[wrapper.__name__])

    del wrapper.__wrapped__

    namespace[wrapper.__name__] = wrapper

    return wrapper
