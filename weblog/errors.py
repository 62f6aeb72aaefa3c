# FILE: weblog/errors.py
from __future__ import annotations


class WeblogError(Exception):
    """Base class for errors raised by weblog itself."""


class InvalidArgumentError(WeblogError, ValueError):
    """
    A required argument was missing or malformed.

    Raised synchronously while configuring, never while handling a request.
    """


class InvalidConfigurationError(WeblogError, RuntimeError):
    """A configuration value reached an evaluator that cannot interpret it."""
