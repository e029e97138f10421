# tests/test_prompt.py
"""
Tests for prompt construction and resource truncation.
"""

import pytest

from config import TRUNCATION_MARKER
from models import AnalysisMode, Resource
from scanner.prompt import build_resource_prompt, build_summary_prompt, truncate_resource


def big_resource():
    return Resource(
        id="BigFn",
        type="AWS::Lambda::Function",
        properties={"Environment": {"Variables": {f"VAR_{i}": "x" * 50 for i in range(200)}}},
        metadata={"aws:cdk:path": "Stack/BigFn/Resource"},
    )


def test_prompt_names_resource_shape_and_enums():
    prompt = build_resource_prompt(big_resource())
    assert "BigFn" in prompt
    assert "AWS::Lambda::Function" in prompt
    assert "ONLY a JSON object" in prompt
    assert "code fences" in prompt
    assert '"issues"' in prompt
    for value in ("Security", "Cost Optimization", "Compliance", "Operational Excellence"):
        assert value in prompt
    for value in ("'Critical'", "'High'", "'Medium'", "'Low'"):
        assert value in prompt
    assert "Stack/BigFn/Resource" in prompt


def test_prompt_focus_follows_modes():
    prompt = build_resource_prompt(big_resource(), [AnalysisMode.COST])
    assert "- Cost Optimization: Analyze cost inefficiencies" in prompt
    assert "- Security: Identify" not in prompt


def test_prompt_defaults_to_all_modes():
    prompt = build_resource_prompt(big_resource(), None)
    for mode in AnalysisMode:
        assert mode.description in prompt


def test_truncation_respects_budget():
    text = truncate_resource(big_resource(), max_chars=500)
    assert text.endswith(TRUNCATION_MARKER)
    assert len(text) == 500 + len(TRUNCATION_MARKER)

    prompt = build_resource_prompt(big_resource(), max_chars=500)
    assert TRUNCATION_MARKER in prompt
    assert "VAR_199" not in prompt


def test_small_resource_is_not_truncated():
    small = Resource(id="Q", type="AWS::SQS::Queue", properties={"VisibilityTimeout": 30})
    text = truncate_resource(small, max_chars=4000)
    assert TRUNCATION_MARKER not in text
    assert '"VisibilityTimeout": 30' in text


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        build_resource_prompt(big_resource(), ["vibes"])


@pytest.mark.parametrize("modes", [None, []])
def test_empty_modes_default_to_all(modes):
    prompt = build_resource_prompt(big_resource(), modes)
    for mode in AnalysisMode:
        assert f"- {mode.category.value}: {mode.description}" in prompt


def test_summary_prompt_lists_findings(sample_template):
    from models import resources_from_template
    from scanner.evaluator import evaluate_resources

    results = evaluate_resources(resources_from_template(sample_template))
    findings = [f for group in results.values() for f in group]
    prompt = build_summary_prompt(findings)
    assert '"summary"' in prompt
    assert "HighMemoryLambda" in prompt
