#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

import sys

from typing import Any, TypeVar

from wrapt import decorator

from ._promise import Promise

if sys.version_info >= (3, 9):
    from collections.abc import Callable
else:
    from typing import Callable

_T = TypeVar("_T")


@decorator
def _denodeified(wrapped, instance, args, kwargs):
    def executor(fulfill, reject):
        def callback(err=None, result=None, /):
            if err:
                reject(err)
            else:
                fulfill(result)

        wrapped(*args, callback, **kwargs)

    return Promise(executor)


def denodeify(func: Callable[..., object], /) -> Callable[..., Promise[Any]]:
    """
    Turn a function that reports its outcome through a trailing
    ``callback(err, result)`` argument into one that returns a promise.

    The promise is rejected with ``err`` if it is truthy, and fulfilled with
    ``result`` otherwise. An exception raised by *func* itself rejects the
    promise as well. The wrapper keeps the name, docstring and signature of
    *func*.

    Example:
      .. code:: python

        def read_config(path, callback):
            try:
                with open(path) as file:
                    data = file.read()
            except OSError as exc:
                callback(exc)
            else:
                callback(None, data)

        read_config_async = aiopromise.denodeify(read_config)
        read_config_async("app.toml").then(parse, log_failure)
    """

    return _denodeified(func)


def nodeify(
    promise: _T,
    callback: Callable[[Any, Any], object] | None = None,
    /,
) -> _T | None:
    """
    Bridge a promise back to callback style.

    If *callback* is given, it is called as ``callback(None, value)`` once
    the promise is fulfilled, or as ``callback(reason, None)`` once it is
    rejected, and :data:`None` is returned. Exceptions raised by *callback*
    are reported as unhandled, like in :meth:`Promise.done`.

    Without *callback*, *promise* is returned unchanged, so that a function
    can serve both callers that pass a callback and callers that expect a
    promise:

    .. code:: python

        def fetch(url, callback=None):
            return aiopromise.nodeify(fetch_async(url), callback)
    """

    if callback is None:
        return promise

    Promise.resolve(promise).nodeify(callback)

    return None
