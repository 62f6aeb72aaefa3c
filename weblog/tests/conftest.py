# weblog/tests/conftest.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import pytest
from starlette.datastructures import MultiDict

from weblog.config import reset_configuration
from weblog.context import RequestItems
from weblog.logging import SOURCE_CONTEXT, set_default_logger


@dataclass
class FakeRequest:
    http_method: str = "GET"
    raw_url: str = "/"
    form: MultiDict = field(default_factory=MultiDict)

    @property
    def unvalidated_form(self) -> MultiDict:
        return self.form


@dataclass
class FakeContext:
    request: Optional[FakeRequest] = field(default_factory=FakeRequest)
    status_code: int = 200
    last_error: Optional[BaseException] = None
    all_errors: List[BaseException] = field(default_factory=list)
    items: RequestItems = field(default_factory=RequestItems)


@pytest.fixture(autouse=True)
def _clean_state():
    reset_configuration()
    set_default_logger(None)
    yield
    reset_configuration()
    set_default_logger(None)


@pytest.fixture
def make_ctx():
    def _make(method: str = "GET", url: str = "/", status: int = 200, form: Any = None) -> FakeContext:
        return FakeContext(
            request=FakeRequest(method, url, MultiDict(form or [])),
            status_code=status,
        )

    return _make


@pytest.fixture
def events(caplog):
    """Records emitted by the request logger, at every level."""
    caplog.set_level(1, logger=SOURCE_CONTEXT)

    def _events() -> List[logging.LogRecord]:
        return [r for r in caplog.records if r.name == SOURCE_CONTEXT]

    return _events
