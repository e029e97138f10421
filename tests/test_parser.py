# tests/test_parser.py
"""
Tests for recovering JSON and findings from model output.
"""

import pytest

from models import Category, Severity
from scanner.errors import MalformedResponse
from scanner.parser import extract_json, parse_findings_response, parse_summary_response

from conftest import findings_payload


@pytest.mark.parametrize("text", [
    '```json\n{"a":1}\n```',
    '```\n{"a":1}\n```',
    '```JSON {"a":1}```',
    'Sure! {"a":1} Hope that helps',
    '{"a":1}',
    'Here you go:\n```json\n{"a": 1}\n```\nLet me know if you need more.',
])
def test_extract_json_shapes(text):
    assert extract_json(text) == {"a": 1}


def test_fenced_block_wins_over_surrounding_braces():
    text = 'Example {not json}\n```json\n{"a": 2}\n```\n'
    assert extract_json(text) == {"a": 2}


def test_broken_fence_falls_back_to_braces():
    text = '```yaml\nkey: value\n``` but the answer is {"a": 3}'
    assert extract_json(text) == {"a": 3}


@pytest.mark.parametrize("text", ["not json at all", "", "   ", "{broken", "[1, 2, 3]", "} backwards {"])
def test_extract_json_failures(text):
    with pytest.raises(MalformedResponse):
        extract_json(text)


DEEPLY_NESTED = '{"a":' + "[" * 100000 + "]" * 100000 + "}"


@pytest.mark.parametrize("text", [DEEPLY_NESTED, "```json\n" + DEEPLY_NESTED + "\n```"])
def test_deeply_nested_output_is_malformed(text):
    with pytest.raises(MalformedResponse):
        extract_json(text)
    with pytest.raises(MalformedResponse):
        parse_findings_response(text, "Bucket")


def test_parse_findings_normalizes_enums():
    text = findings_payload("Bucket", ("No versioning", "HIGH", "security"))
    findings = parse_findings_response(text, "Bucket")
    assert len(findings) == 1
    f = findings[0]
    assert f.severity is Severity.HIGH
    assert f.category is Category.SECURITY
    assert f.recommendation == "Fix: No versioning"
    assert f.source == "ai"


def test_parse_findings_attributes_to_requested_resource():
    text = findings_payload("SomethingElse", ("Open", "Low", "Compliance"))
    assert parse_findings_response(text, "Bucket")[0].resource == "Bucket"


def test_parse_empty_issue_list():
    assert parse_findings_response('{"resource": "Bucket", "issues": []}', "Bucket") == []


@pytest.mark.parametrize("text", [
    '{"resource": "Bucket"}',
    '{"issues": "none"}',
    '{"issues": ["just text"]}',
    '{"issues": [{"issue": "x", "recommendation": "y", "severity": "Urgent", "category": "Security"}]}',
    '{"issues": [{"issue": "x", "recommendation": "y", "severity": "Low", "category": "Risk Scoring"}]}',
    '{"issues": [{"issue": "", "recommendation": "y", "severity": "Low", "category": "Security"}]}',
    '{"issues": [{"issue": "x", "severity": "Low", "category": "Security"}]}',
])
def test_schema_drift_is_malformed(text):
    with pytest.raises(MalformedResponse):
        parse_findings_response(text, "Bucket")


def test_parse_summary():
    assert parse_summary_response('Summary: {"summary": " Two issues. "}') == "Two issues."
    with pytest.raises(MalformedResponse):
        parse_summary_response('{"overview": "x"}')
