import json

from aisec.ai.parsing import (
    decode_nested,
    parse_enrichment,
    repair_truncated_array,
    strip_code_fence,
)


def test_truncated_array_keeps_complete_elements():
    assert parse_enrichment('[{"id":"a","x":1},{"id":"b","x":2') == [{"id": "a", "x": 1}]


def test_repair_cuts_at_closed_array():
    assert repair_truncated_array('Here you go: [{"id": "a"}] hope this helps') == '[{"id": "a"}]'


def test_repair_ignores_brackets_inside_strings():
    text = '[{"id": "a", "remediation": "use ] and } carefully"}, {"id": "b", "remediation": "x'
    repaired = repair_truncated_array(text)
    assert json.loads(repaired) == [{"id": "a", "remediation": "use ] and } carefully"}]


def test_repair_without_array():
    assert repair_truncated_array('{"id": "a"}') is None
    assert repair_truncated_array("[ ") is None


def test_code_fences_are_stripped():
    reply = 'Sure!\n```json\n[{"id": "a", "explanation": "bad"}]\n```'
    assert parse_enrichment(reply) == [{"id": "a", "explanation": "bad"}]


def test_unclosed_fence_is_repaired():
    reply = '```json\n[{"id": "a"}, {"id": "b", "expl'
    assert parse_enrichment(reply) == [{"id": "a"}]


def test_fence_inside_valid_json_survives():
    reply = json.dumps([{"id": "a", "remediation": "```python\nsafe()\n```"}])
    assert parse_enrichment(reply) == [{"id": "a", "remediation": "```python\nsafe()\n```"}]


def test_double_encoded_reply():
    inner = [{"id": "a", "severity": "high"}]
    reply = json.dumps(json.dumps(inner))
    assert parse_enrichment(reply) == inner


def test_wrapped_array():
    assert parse_enrichment('{"findings": [{"id": "a"}, 3]}') == [{"id": "a"}]


def test_decode_nested_rounds():
    assert decode_nested('"[1]"') == [1]
    assert decode_nested("not json") is None


def test_strip_code_fence_without_fence():
    assert strip_code_fence("  [1]  ") == "[1]"


def test_give_up_returns_none():
    assert parse_enrichment("I cannot help with that.") is None
    assert parse_enrichment("") is None
    assert parse_enrichment(None) is None
    assert parse_enrichment('{"id": "a"}') is None
