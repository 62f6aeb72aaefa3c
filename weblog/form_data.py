# FILE: weblog/form_data.py
from __future__ import annotations

import enum
from typing import Any, Callable, Iterable, List, NamedTuple

from .context import FormMultiMap
from .errors import InvalidConfigurationError
from .redaction import redact


class FormDataMode(str, enum.Enum):
    NEVER = "never"
    ALWAYS = "always"
    ONLY_ON_ERROR = "only_on_error"
    ON_MATCH = "on_match"


class FormField(NamedTuple):
    name: str
    value: str

    def to_dict(self) -> dict:
        return {"Name": self.name, "Value": self.value}


def should_attach(mode: FormDataMode, match: Callable[[Any], bool], ctx: Any) -> bool:
    """
    Decide whether posted form data belongs on the event.

    Independent of whether the request actually carries form data; an
    empty form is dropped later.
    """
    if mode is FormDataMode.NEVER:
        return False
    if mode is FormDataMode.ALWAYS:
        return True
    if mode is FormDataMode.ONLY_ON_ERROR:
        return ctx.status_code >= 500
    if mode is FormDataMode.ON_MATCH:
        return bool(match(ctx))
    raise InvalidConfigurationError(f"unknown form data mode: {mode!r}")


def build_snapshot(form: FormMultiMap, enabled: bool, keywords: Iterable[str]) -> List[FormField]:
    """
    Flatten ``form`` into (name, redacted value) pairs.

    Keys keep their original order; a key with several values yields one
    pair per value, in insertion order.
    """
    kws = tuple(keywords)
    out: List[FormField] = []
    for key in form.keys():
        for value in form.getlist(key) or ():
            out.append(FormField(key, redact(key, value, enabled, kws)))
    return out
