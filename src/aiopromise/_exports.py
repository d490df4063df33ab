#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

from types import FunctionType
from typing import Any


def _issubmodule(module_name: str | None, package_name: str, /) -> bool:
    return module_name is not None and (
        module_name == package_name
        or module_name.startswith(f"{package_name}.")
    )


def _export_one(package_name: str, name: str, value: object, /) -> None:
    # Only classes and functions defined in our own package are touched, so
    # that re-exported third-party objects (sniffio's exception, for example)
    # keep their original identity.

    if isinstance(value, (type, FunctionType)):
        if not _issubmodule(value.__module__, package_name):
            return

        if isinstance(value, type):
            # methods are left alone, but their qualified names stay correct
            # since the class keeps its name
            value.__name__ = name
            value.__qualname__ = name

        value.__module__ = package_name


def export(namespace: dict[str, Any], /) -> None:
    """
    Make the public objects of a package look as if they were defined in it.

    Rebinds ``__module__`` of every public class and function found in
    *namespace* to the package name, which gives them stable names in reprs,
    tracebacks and pickles regardless of the private module they live in.

    Example:
      .. code:: python

        from ._promise import Promise as Promise

        # prepare for external use
        export(globals())
    """

    package_name = namespace["__name__"]

    for name, value in {**namespace}.items():
        if name.startswith("_"):
            continue

        _export_one(package_name, name, value)
