# weblog/tests/test_handler.py
import logging
import time

import pytest

from weblog.config import ConfigurationBuilder
from weblog.handler import MESSAGE_TEMPLATE, RequestEventHandler
from weblog.levels import LogLevel
from weblog.logging import SOURCE_CONTEXT
from weblog.redaction import MASK
from weblog.request_errors import push

handler = RequestEventHandler()


def run(ctx, config, delay: float = 0.0):
    handler.on_begin_request(ctx, config)
    if delay:
        time.sleep(delay)
    return handler.on_log_request(ctx, config)


def test_end_to_end_redirect(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx("GET", "https://nblumhardt.com/", status=302)

    level = run(ctx, config, delay=0.005)

    assert level is LogLevel.INFORMATION
    (rec,) = events()
    assert rec.levelno == logging.INFO
    assert rec.Method == "GET"
    assert rec.RawUrl == "https://nblumhardt.com/"
    assert rec.StatusCode == 302
    assert isinstance(rec.ElapsedMilliseconds, int)
    assert rec.ElapsedMilliseconds >= 4
    assert rec.exc_info is None
    assert rec.SourceContext == SOURCE_CONTEXT
    assert rec.MessageTemplate == MESSAGE_TEMPLATE
    assert rec.getMessage() == f"HTTP GET https://nblumhardt.com/ responded 302 in {rec.ElapsedMilliseconds}ms"
    assert not hasattr(rec, "FormData")


def test_pushed_error_overrides_level(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx(status=200)
    err = ValueError("bad input")

    handler.on_begin_request(ctx, config)
    push(ctx, err)
    level = handler.on_log_request(ctx, config)

    assert level is LogLevel.ERROR
    (rec,) = events()
    assert rec.levelno == logging.ERROR
    assert rec.StatusCode == 200
    assert rec.exc_info[1] is err


def test_pushed_error_wins_over_host_error(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx()
    pushed, hosted = ValueError("pushed"), RuntimeError("hosted")
    ctx.last_error = hosted
    handler.on_begin_request(ctx, config)
    push(ctx, pushed)
    handler.on_log_request(ctx, config)
    assert events()[0].exc_info[1] is pushed


def test_host_last_error(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx()
    ctx.last_error = RuntimeError("hosted")
    assert run(ctx, config) is LogLevel.ERROR
    assert events()[0].exc_info[1] is ctx.last_error


def test_5xx_without_error_falls_back_to_error_history(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx(status=503)
    first, last = RuntimeError("first"), RuntimeError("last")
    ctx.all_errors.extend([first, last])

    assert run(ctx, config) is LogLevel.ERROR
    assert events()[0].exc_info[1] is last


def test_5xx_without_any_error(make_ctx, events):
    config = ConfigurationBuilder().build()
    assert run(make_ctx(status=500), config) is LogLevel.ERROR
    (rec,) = events()
    assert rec.exc_info is None


def test_configured_level_for_success(make_ctx, events):
    config = ConfigurationBuilder().log_at_level("Debug").build()
    assert run(make_ctx(status=404), config) is LogLevel.DEBUG
    assert events()[0].levelno == logging.DEBUG


def test_disabled_emits_nothing_and_starts_no_timer(make_ctx, events):
    config = ConfigurationBuilder().disable().build()
    ctx = make_ctx()
    handler.on_begin_request(ctx, config)
    assert ctx.items.timer is None
    assert handler.on_log_request(ctx, config) is None
    assert events() == []


def test_missing_timer_is_a_noop(make_ctx, events):
    config = ConfigurationBuilder().build()
    assert handler.on_log_request(make_ctx(), config) is None
    assert events() == []


def test_timer_is_consumed(make_ctx, events):
    config = ConfigurationBuilder().build()
    ctx = make_ctx()
    run(ctx, config)
    assert handler.on_log_request(ctx, config) is None
    assert len(events()) == 1


def test_missing_context_or_request(make_ctx, events):
    config = ConfigurationBuilder().build()
    handler.on_begin_request(None, config)
    assert handler.on_log_request(None, config) is None
    ctx = make_ctx()
    ctx.request = None
    assert run(ctx, config) is None
    assert events() == []


def test_excluded_requests_are_not_logged(make_ctx, events):
    config = ConfigurationBuilder().ignore_requests_matching(lambda c: c.request.raw_url == "/healthz").build()
    assert run(make_ctx(url="/healthz"), config) is None
    assert run(make_ctx(url="/api"), config) is LogLevel.INFORMATION
    assert [r.RawUrl for r in events()] == ["/api"]


def test_below_logger_threshold_returns_none(make_ctx, caplog):
    caplog.set_level(logging.WARNING, logger=SOURCE_CONTEXT)
    config = ConfigurationBuilder().build()
    assert run(make_ctx(), config) is None


def test_custom_logger_keeps_source_context(make_ctx, caplog):
    custom = logging.getLogger("weblog.tests.custom")
    caplog.set_level(logging.INFO, logger=custom.name)
    config = ConfigurationBuilder().use_logger(custom).build()
    run(make_ctx(), config)
    (rec,) = [r for r in caplog.records if r.name == custom.name]
    assert rec.SourceContext == SOURCE_CONTEXT


# ---- form data ---------------------------------------------------------------

FORM = [("user", "bob"), ("password", "hunter2"), ("tag", "a"), ("tag", "b")]


def test_form_data_attached_and_redacted(make_ctx, events):
    config = ConfigurationBuilder().enable_form_data_logging().build()
    run(make_ctx("POST", "/login", form=FORM), config)
    (rec,) = events()
    assert rec.FormData == [
        {"Name": "user", "Value": "bob"},
        {"Name": "password", "Value": MASK},
        {"Name": "tag", "Value": "a"},
        {"Name": "tag", "Value": "b"},
    ]


def test_form_data_without_redaction(make_ctx, events):
    config = ConfigurationBuilder().enable_form_data_logging(lambda f: f.disable_password_filtering()).build()
    run(make_ctx("POST", "/login", form=FORM), config)
    assert {"Name": "password", "Value": "hunter2"} in events()[0].FormData


def test_empty_form_adds_no_property(make_ctx, events):
    config = ConfigurationBuilder().enable_form_data_logging().build()
    run(make_ctx("POST", "/login"), config)
    assert not hasattr(events()[0], "FormData")


@pytest.mark.parametrize("status", [200, 302, 401, 403, 404, 499])
def test_only_on_error_skips_form_below_500(make_ctx, events, status):
    config = ConfigurationBuilder().enable_form_data_logging(lambda f: f.only_on_error()).build()
    run(make_ctx("POST", "/login", status=status, form=FORM), config)
    assert not hasattr(events()[0], "FormData")


@pytest.mark.parametrize("status", [500, 502])
def test_only_on_error_attaches_form_at_500(make_ctx, events, status):
    config = ConfigurationBuilder().enable_form_data_logging(lambda f: f.only_on_error()).build()
    run(make_ctx("POST", "/login", status=status, form=FORM), config)
    assert len(events()[0].FormData) == 4


@pytest.mark.parametrize("status", [200, 500])
@pytest.mark.parametrize("decision", [True, False])
def test_on_match_follows_predicate(make_ctx, events, status, decision):
    config = ConfigurationBuilder().enable_form_data_logging(lambda f: f.on_match(lambda c: decision)).build()
    run(make_ctx("POST", "/login", status=status, form=FORM), config)
    assert hasattr(events()[0], "FormData") is decision


@pytest.mark.parametrize(
    "minimum, attached",
    [(logging.INFO, False), (logging.DEBUG, False), (LogLevel.VERBOSE, True)],
)
def test_form_data_level_gating(make_ctx, caplog, minimum, attached):
    caplog.set_level(int(minimum), logger=SOURCE_CONTEXT)
    config = (
        ConfigurationBuilder()
        .enable_form_data_logging(lambda f: f.at_level(LogLevel.VERBOSE))
        .build()
    )
    run(make_ctx("POST", "/login", form=FORM), config)
    (rec,) = [r for r in caplog.records if r.name == SOURCE_CONTEXT]
    assert hasattr(rec, "FormData") is attached


class _BrokenForm:
    def keys(self):
        raise RuntimeError("unreadable body")

    def getlist(self, key):
        return []


def test_broken_form_still_logs_event(make_ctx, events):
    config = ConfigurationBuilder().enable_form_data_logging().build()
    ctx = make_ctx("POST", "/login")
    ctx.request.form = _BrokenForm()
    assert run(ctx, config) is LogLevel.INFORMATION
    (rec,) = events()
    assert not hasattr(rec, "FormData")


def test_request_checked_before_exclusion(make_ctx, events):
    config = ConfigurationBuilder().ignore_requests_matching(lambda c: c.request.raw_url == "/healthz").build()
    ctx = make_ctx()
    handler.on_begin_request(ctx, config)
    ctx.request = None
    assert handler.on_log_request(ctx, config) is None
    assert events() == []
