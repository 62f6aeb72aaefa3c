# weblog/tests/test_redaction.py
import pytest

from weblog.redaction import MASK, redact

KW = ("password",)


@pytest.mark.parametrize("key", ["password", "PASSWORD", "EndWithPassword", "PasswordPrefix"])
def test_keyword_is_case_insensitive_substring(key):
    assert redact(key, "hunter2", True, KW) == MASK


def test_other_keys_untouched():
    assert redact("Other", "value", True, KW) == "value"


def test_mask_is_eight_asterisks():
    assert MASK == "********"


def test_masking_twice_is_a_noop():
    once = redact("password", "hunter2", True, KW)
    assert redact("password", once, True, KW) == once
    assert redact("Other", redact("Other", "v", True, KW), True, KW) == "v"


def test_disabled_or_missing_key_returns_value():
    assert redact("password", "hunter2", False, KW) == "hunter2"
    assert redact(None, "hunter2", True, KW) == "hunter2"


def test_keywords_are_ored():
    kws = ("password", "secret")
    assert redact("client_secret", "x", True, kws) == MASK
    assert redact("Password", "x", True, kws) == MASK
    assert redact("username", "x", True, kws) == "x"


def test_no_keywords_masks_nothing():
    assert redact("password", "x", True, ()) == "x"
