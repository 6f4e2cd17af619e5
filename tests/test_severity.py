import pytest

from aisec.types import Severity
from aisec.utils import normalize_severity, stable_id, to_int


@pytest.mark.parametrize("raw, expected", [
    ("error", Severity.HIGH),
    ("warning", Severity.MEDIUM),
    ("note", Severity.LOW),
    ("blocker", Severity.CRITICAL),
    ("info", Severity.LOW),
    ("", Severity.UNKNOWN),
    ("  Moderate ", Severity.MEDIUM),
    ("CRITICAL", Severity.CRITICAL),
    ("none", Severity.INFO),
    ("bogus", Severity.UNKNOWN),
    (None, Severity.UNKNOWN),
    (3, Severity.UNKNOWN),
])
def test_normalize_severity(raw, expected):
    assert normalize_severity(raw) == expected


def test_stable_id_is_deterministic_and_short():
    a = stable_id("rule", "a.py", 3, "msg")
    assert a == stable_id("rule", "a.py", 3, "msg")
    assert len(a) == 16
    assert a != stable_id("rule", "a.py", 4, "msg")


def test_stable_id_uses_message_prefix_only():
    base = "x" * 140
    assert stable_id("r", None, None, base + "tail-1") == stable_id("r", None, None, base + "tail-2")


@pytest.mark.parametrize("raw, expected", [
    (12, 12),
    ("7", 7),
    (0, None),
    ("n/a", None),
    (None, None),
    (float("inf"), None),
    (float("nan"), None),
])
def test_to_int_tolerates_garbage(raw, expected):
    assert to_int(raw) == expected
