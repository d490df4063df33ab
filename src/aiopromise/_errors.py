#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2025 Ilya Egorov <0x42005e1f@gmail.com>
# SPDX-License-Identifier: ISC

from __future__ import annotations

from typing import Any


class RejectionError(Exception):
    """
    Raised in place of a rejection reason that is not an exception.

    A promise may be rejected with any object (``Promise.reject("boom")``),
    but only exceptions can be raised, so awaiting such a promise or reporting
    it as unhandled raises this error with the original object in
    :attr:`reason`.
    """

    reason: Any

    def __init__(self, /, reason: Any) -> None:
        super().__init__(reason)

        self.reason = reason


class InvalidStateError(RuntimeError):
    pass


def as_exception(reason: Any, /) -> BaseException:
    if isinstance(reason, BaseException):
        return reason

    return RejectionError(reason)
